# tests/test_broadcaster.py
# How to run:
#   From repo root: pytest -q
#
# What this covers:
#   - Every subscriber registered before publish gets exactly one delivery
#   - FIFO per subscriber; late subscribers get nothing retroactively
#   - Idempotent unsubscribe; closed / broken subscribers never reach the publisher
#   - Reconnect under the same conn_id: a stale close leaves the new handle alone
#   - Full inbox drops oldest instead of blocking
#   - Registry safety under concurrent subscribe / unsubscribe / publish

import gc
import threading

from app.controller.broadcaster import Broadcaster, SubscriberRegistry, SubscriberClosed, Subscriber
from core.events.events import OrderNotify
from core.orders.model import OrderStatus
from core.utils.queueing import drain

import pytest


def _notify(n, status=OrderStatus.NEW):
    return OrderNotify(order_number=f"ORD-{n}", status=status)


def test_each_registered_subscriber_gets_exactly_one_delivery():
    bc = Broadcaster()
    subs = [bc.subscribe() for _ in range(5)]
    assert bc.publish(_notify(1)) == 5
    for s in subs:
        envs = drain(s.inbox)
        assert [(e.name, e.payload) for e in envs] == [("new-order-notify", "ORD-1")]
    assert bc.published == 1 and bc.delivered == 5 and bc.failed == 0


def test_fifo_per_subscriber():
    bc = Broadcaster()
    sub = bc.subscribe()
    for n in range(20):
        bc.publish(_notify(n))
    assert [e.payload for e in drain(sub.inbox)] == [f"ORD-{n}" for n in range(20)]


def test_late_subscriber_receives_nothing_retroactively():
    bc = Broadcaster()
    early = bc.subscribe()
    bc.publish(_notify(1))
    late = bc.subscribe()
    assert drain(late.inbox) == []
    bc.publish(_notify(2))
    assert [e.payload for e in drain(late.inbox)] == ["ORD-2"]
    assert [e.payload for e in drain(early.inbox)] == ["ORD-1", "ORD-2"]


def test_unsubscribe_is_idempotent():
    bc = Broadcaster()
    sub = bc.subscribe()
    assert bc.unsubscribe(sub) is True
    assert bc.unsubscribe(sub) is False
    assert bc.unsubscribe("never-registered") is False
    assert sub.closed
    assert bc.publish(_notify(1)) == 0
    assert drain(sub.inbox) == []


def test_closed_subscriber_refuses_delivery():
    sub = Subscriber(conn_id="c1")
    sub.close()
    with pytest.raises(SubscriberClosed):
        sub.deliver("new-order-notify", "ORD-1")


def test_broken_transport_is_swallowed_and_others_still_receive():
    seen = []

    def deliver(sub, name, payload):
        if sub.conn_id == "bad":
            raise ConnectionError("broken pipe")
        seen.append((sub.conn_id, name, payload))

    bc = Broadcaster(deliver=deliver)
    good = bc.subscribe("good")
    bad = bc.subscribe("bad")
    assert bc.publish(_notify(1, OrderStatus.DELIVERED)) == 1
    assert seen == [("good", "delivered-order-notify", "ORD-1")]
    assert bc.failed == 1
    # still registered: a failed push is not a disconnect
    assert "bad" in bc.registry and good.conn_id in bc.registry


def test_full_inbox_drops_oldest_without_blocking():
    bc = Broadcaster(inbox_size=2)
    sub = bc.subscribe()
    for n in range(1, 6):
        bc.publish(_notify(n))
    assert [e.payload for e in drain(sub.inbox)] == ["ORD-4", "ORD-5"]
    assert sub.dropped == 3


def test_reconnect_with_same_id_survives_stale_close():
    bc = Broadcaster()
    old = bc.subscribe("conn-1")
    new = bc.subscribe("conn-1")
    # the displaced handle is closed right away
    assert old.closed and not new.closed

    # the old connection's close arrives after the reconnect
    assert bc.unsubscribe(old) is False
    assert not new.closed
    assert "conn-1" in bc.registry

    assert bc.publish(_notify(1)) == 1
    assert [e.payload for e in drain(new.inbox)] == ["ORD-1"]
    assert drain(old.inbox) == []

    assert bc.unsubscribe(new) is True
    assert len(bc.registry) == 0


def test_unsubscribe_by_id_removes_current_handle():
    bc = Broadcaster()
    bc.subscribe("conn-1")
    cur = bc.subscribe("conn-1")
    assert bc.unsubscribe("conn-1") is True
    assert cur.closed


def test_drop_counter_is_exact_under_concurrent_publishers(monkeypatch):
    import app.controller.broadcaster as broadcaster
    monkeypatch.setattr(broadcaster, "safe_put", lambda q, item: False)
    sub = Subscriber(inbox_size=1)
    barrier = threading.Barrier(4)

    def worker():
        barrier.wait()
        for n in range(500):
            sub.deliver("new-order-notify", f"ORD-{n}")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    assert sub.dropped == 2000


def test_registry_holds_subscribers_weakly():
    reg = SubscriberRegistry()
    bc = Broadcaster(reg)
    sub = bc.subscribe()
    cid = sub.conn_id
    assert cid in reg
    del sub
    gc.collect()
    assert cid not in reg
    assert bc.publish(_notify(1)) == 0


def test_shutdown_clears_registry_and_closes_handles():
    bc = Broadcaster()
    subs = [bc.subscribe() for _ in range(3)]
    bc.shutdown()
    assert len(bc.registry) == 0
    assert all(s.closed for s in subs)


def test_publish_concurrent_with_subscribe_and_unsubscribe():
    bc = Broadcaster(inbox_size=10_000)
    stable = bc.subscribe()
    errors = []
    stop = threading.Event()

    def churn():
        try:
            while not stop.is_set():
                s = bc.subscribe()
                bc.unsubscribe(s)
        except Exception as e:  # pragma: no cover - failure path
            errors.append(e)

    def publisher():
        try:
            for n in range(500):
                bc.publish(_notify(n))
        except Exception as e:  # pragma: no cover - failure path
            errors.append(e)

    churners = [threading.Thread(target=churn) for _ in range(3)]
    pub = threading.Thread(target=publisher)
    for t in churners:
        t.start()
    pub.start()
    pub.join(timeout=10)
    stop.set()
    for t in churners:
        t.join(timeout=5)

    assert errors == []
    assert [e.payload for e in drain(stable.inbox)] == [f"ORD-{n}" for n in range(500)]
