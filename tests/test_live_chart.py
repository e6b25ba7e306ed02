# tests/test_live_chart.py
# How to run:
#   From repo root: pytest -q
#
# Renders a ChartFrame headless (Agg) and checks axes + PNG output.

import io

from app.analytics.window import WindowAggregator
from app.controller.session import ChartFrame
from ui.live_chart import LiveChart

NOW = 1_700_000_000_000


def _frame(y_max=15):
    agg = WindowAggregator(kinds=("new", "delivered"))
    for t in (NOW - 1, NOW - 2, NOW - 60_000):
        agg.on_event("new", t)
    agg.on_event("delivered", NOW - 30_000)
    return ChartFrame(snapshot=agg.tick(NOW), y_max=y_max, time_range="22:10:20 - 22:13:20")


def test_render_sets_axes_from_frame():
    chart = LiveChart()
    chart.render(_frame(y_max=15))
    assert chart.ax.get_ylim() == (0.0, 15.0)
    assert chart.ax.get_xlim() == (-180.0, 0.0)
    assert "22:10:20 - 22:13:20" in chart.ax.get_title()
    labels = [line.get_label() for line in chart.ax.get_lines()]
    assert labels == ["New orders", "Delivered orders"]
    assert len(chart.ax.get_lines()[0].get_xdata()) == 19
    assert chart.frames_drawn == 1


def test_rerender_replaces_previous_lines():
    chart = LiveChart()
    chart.render(_frame())
    chart.render(_frame(y_max=20))
    assert len(chart.ax.get_lines()) == 2
    assert chart.ax.get_ylim() == (0.0, 20.0)


def test_save_png_to_buffer():
    chart = LiveChart()
    chart.render(_frame())
    buf = io.BytesIO()
    chart.save_png(buf)
    assert buf.getvalue().startswith(b"\x89PNG")
