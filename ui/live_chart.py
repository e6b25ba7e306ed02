from __future__ import annotations
from typing import BinaryIO, Dict, Union
import numpy as np

from matplotlib.figure import Figure
from matplotlib.backends.backend_agg import FigureCanvasAgg

from app.controller.session import ChartFrame

LABELS: Dict[str, str] = {
    "new": "New orders",
    "delivered": "Delivered orders",
}

class LiveChart:
    """
    Headless renderer for ChartFrame:
      - one line per series, x = bucket start (seconds relative to now)
      - y axis fixed to [0, stabilised max]
      - title carries the window's time range
    """
    def __init__(self, figsize=(7.5, 2.8), dpi: int = 100):
        self.fig = Figure(figsize=figsize, dpi=dpi)
        self.canvas = FigureCanvasAgg(self.fig)
        self.ax = self.fig.add_subplot(111)
        self.frames_drawn = 0

    def render(self, frame: ChartFrame) -> None:
        snap = frame.snapshot
        starts = np.array(snap.bucket_starts, dtype=float)
        x = (starts - snap.now_ms) / 1000.0

        self.ax.clear()
        for kind, counts in snap.counts.items():
            self.ax.plot(x, np.array(counts, dtype=float), label=LABELS.get(kind, kind), marker="o", markersize=3)
        self.ax.set_xlim((snap.window_start_ms - snap.now_ms) / 1000.0, max(float(x[-1]), 0.0))
        self.ax.set_ylim(0, frame.y_max)
        self.ax.set_title(f"Orders per {snap.bucket_ms // 1000}s ({frame.time_range})")
        self.ax.set_xlabel("Seconds (relative to now)")
        self.ax.set_ylabel("Count")
        if snap.counts:
            self.ax.legend(loc="upper left")
        self.canvas.draw()
        self.frames_drawn += 1

    def save_png(self, target: Union[str, BinaryIO]) -> None:
        self.fig.savefig(target, format="png")
