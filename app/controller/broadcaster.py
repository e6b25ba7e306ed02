"""
Fanout of domain events to every connected subscriber.

- The registry is an owned object handed to the Broadcaster, not a module global.
- Registry mutation and the delivery snapshot are taken under one lock.
- Delivery is best-effort and at-most-once per subscriber; failures are logged, never raised.
- The default push is a non-blocking put into the subscriber's bounded inbox, so a slow
  subscriber loses its oldest pending items instead of stalling the publisher.
"""
from __future__ import annotations
import threading
import uuid
import weakref
from dataclasses import dataclass
from queue import Queue
from typing import Any, Callable, List, Optional, Union
import structlog

from core.events.events import DomainEvent, now_ms
from core.utils.queueing import safe_put

log = structlog.get_logger()


class SubscriberClosed(Exception):
    pass


@dataclass(frozen=True)
class Envelope:
    """One delivery as seen by the subscriber: wire name, payload, emission time."""
    name: str
    payload: Any
    timestamp_ms: int


class Subscriber:
    """Handle for one live connection. Owns its inbox; holds no order data."""
    def __init__(self, conn_id: Optional[str] = None, inbox_size: int = 1000):
        self.conn_id = conn_id or uuid.uuid4().hex
        self.inbox: Queue = Queue(maxsize=inbox_size)
        self.dropped = 0
        self._lock = threading.Lock()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def deliver(self, name: str, payload: Any, timestamp_ms: Optional[int] = None) -> None:
        if self._closed.is_set():
            raise SubscriberClosed(self.conn_id)
        env = Envelope(name=name, payload=payload, timestamp_ms=timestamp_ms if timestamp_ms is not None else now_ms())
        if not safe_put(self.inbox, env):
            with self._lock:
                self.dropped += 1
                dropped = self.dropped
            log.debug("subscriber.inbox.drop", conn_id=self.conn_id, name=name, dropped=dropped)

    def close(self) -> None:
        self._closed.set()

    def __repr__(self) -> str:
        return f"Subscriber(conn_id={self.conn_id!r}, closed={self.closed})"


class SubscriberRegistry:
    """Active subscribers keyed by connection id. Entries are weak: the transport owns the handle."""
    def __init__(self):
        self._lock = threading.RLock()
        self._subs: "weakref.WeakValueDictionary[str, Subscriber]" = weakref.WeakValueDictionary()

    def add(self, sub: Subscriber) -> Optional[Subscriber]:
        """Register sub; returns the handle it displaced under the same conn_id, if any."""
        with self._lock:
            prev = self._subs.get(sub.conn_id)
            self._subs[sub.conn_id] = sub
        return prev if prev is not sub else None

    def discard(self, conn_id: str, expected: Optional[Subscriber] = None) -> Optional[Subscriber]:
        # with `expected`, only that exact handle is removed (a stale close must not evict a reconnect)
        with self._lock:
            cur = self._subs.get(conn_id)
            if cur is None or (expected is not None and cur is not expected):
                return None
            del self._subs[conn_id]
            return cur

    def snapshot(self) -> List[Subscriber]:
        with self._lock:
            return list(self._subs.values())

    def clear(self) -> List[Subscriber]:
        with self._lock:
            subs = list(self._subs.values())
            self._subs.clear()
        return subs

    def __contains__(self, conn_id: object) -> bool:
        with self._lock:
            return conn_id in self._subs

    def __len__(self) -> int:
        with self._lock:
            return len(self._subs)


# Transport push primitive: (subscriber, event name, payload) -> None
DeliverFn = Callable[[Subscriber, str, Any], None]


class Broadcaster:
    def __init__(
        self,
        registry: Optional[SubscriberRegistry] = None,
        deliver: Optional[DeliverFn] = None,
        inbox_size: int = 1000,
    ):
        self.registry = registry if registry is not None else SubscriberRegistry()
        self._deliver = deliver
        self.inbox_size = inbox_size

        self._stats_lock = threading.Lock()
        self.published = 0
        self.delivered = 0
        self.failed = 0

    def subscribe(self, conn_id: Optional[str] = None) -> Subscriber:
        sub = Subscriber(conn_id=conn_id, inbox_size=self.inbox_size)
        displaced = self.registry.add(sub)
        if displaced is not None:
            displaced.close()
            log.info("broadcast.subscribe.replaced", conn_id=sub.conn_id)
        log.info("broadcast.subscribe", conn_id=sub.conn_id, subscribers=len(self.registry))
        return sub

    def unsubscribe(self, sub: Union[Subscriber, str]) -> bool:
        """Idempotent. Returns True only when something was actually removed."""
        if isinstance(sub, Subscriber):
            conn_id = sub.conn_id
            removed = self.registry.discard(conn_id, expected=sub)
            sub.close()
        else:
            conn_id = sub
            removed = self.registry.discard(conn_id)
        if removed is None:
            return False
        removed.close()
        log.info("broadcast.unsubscribe", conn_id=conn_id, subscribers=len(self.registry))
        return True

    def publish(self, event: DomainEvent) -> int:
        name = event.wire_name
        payload = event.payload()
        delivered = failed = 0
        for sub in self.registry.snapshot():
            if sub.closed:
                continue
            try:
                if self._deliver is not None:
                    self._deliver(sub, name, payload)
                else:
                    sub.deliver(name, payload, event.timestamp_ms)
                delivered += 1
            except SubscriberClosed:
                log.debug("broadcast.deliver.gone", conn_id=sub.conn_id, name=name)
            except Exception as e:
                failed += 1
                log.warning("broadcast.deliver.error", conn_id=sub.conn_id, name=name, err=str(e))

        with self._stats_lock:
            self.published += 1
            self.delivered += delivered
            self.failed += failed
        log.debug("broadcast.publish", name=name, delivered=delivered, failed=failed)
        return delivered

    def shutdown(self) -> None:
        subs = self.registry.clear()
        for sub in subs:
            sub.close()
        log.info("broadcast.shutdown", closed=len(subs))
