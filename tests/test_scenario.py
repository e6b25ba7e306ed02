# tests/test_scenario.py
# How to run:
#   From repo root: pytest -q
#
# End-to-end through FeedRuntime (sessions driven by hand, fixed clock):
#   create ORD-1 -> two early subscribers see it, a late one does not;
#   mark Delivered -> everybody connected sees the change and the
#   Delivered series counts it in the current bucket.

from app.analytics.config import WindowConfig
from app.controller.runner import FeedRuntime
from core.orders.model import OrderStatus
from core.utils.queueing import drain

NOW = 1_700_000_000_000


def test_create_then_deliver_scenario():
    with FeedRuntime(window=WindowConfig()) as rt:
        a = rt.connect(start=False, clock=lambda: NOW)
        b = rt.connect(start=False, clock=lambda: NOW)

        order = rt.lifecycle.create("ORD-1", "keyboard", 120)

        c = rt.connect(start=False, clock=lambda: NOW)
        assert drain(c.subscriber.inbox) == []

        assert a.pump() == 2
        assert [r["order_number"] for r in a.recent_orders()] == ["ORD-1"]
        assert [e.name for e in drain(b.subscriber.inbox)] == ["new-order", "new-order-notify"]

        rt.lifecycle.set_status(order.id, "Delivered")

        for sess in (b, c):
            envs = drain(sess.subscriber.inbox)
            assert [e.name for e in envs] == ["order-status-changed", "delivered-order-notify"]
            assert envs[0].payload["status"] == "delivered"
            assert envs[1].payload == "ORD-1"

        assert a.pump() == 2
        frame = a.tick(NOW)
        delivered = frame.snapshot.counts["delivered"]
        assert delivered[-1] == 1 and sum(delivered) == 1
        assert sum(frame.snapshot.counts["new"]) == 1
        assert a.recent_orders()[0]["status"] == "delivered"
        assert rt.store.find_by_id(order.id).status == OrderStatus.DELIVERED

    # shutdown closed everything
    assert len(rt.registry) == 0
    assert rt.sessions == []


def test_disconnect_stops_deliveries_to_that_session():
    rt = FeedRuntime()
    try:
        a = rt.connect(start=False)
        b = rt.connect(start=False)
        rt.disconnect(b)
        rt.lifecycle.create("ORD-2")
        assert len(drain(a.subscriber.inbox)) == 2
        assert [e for e in drain(b.subscriber.inbox) if e is not None] == []
        assert rt.sessions == [a]
    finally:
        rt.shutdown()


def test_runtime_sessions_tick_on_their_own():
    import time

    rt = FeedRuntime(window=WindowConfig(tick_interval_ms=20))
    try:
        frames = []
        rt.connect(on_frame=frames.append)
        rt.lifecycle.create("ORD-3")
        deadline = time.monotonic() + 3
        while time.monotonic() < deadline:
            if frames and frames[-1].snapshot.totals()["new"] == 1:
                break
            time.sleep(0.01)
        assert frames and frames[-1].snapshot.totals()["new"] == 1
    finally:
        rt.shutdown()
