from __future__ import annotations
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, tzinfo
from queue import Empty
from typing import Any, Callable, Deque, Dict, List, Optional
import structlog

from app.analytics.config import WindowConfig, ScaleConfig, SessionConfig
from app.analytics.scale import ScaleStabilizer
from app.analytics.window import WindowAggregator, WindowSnapshot
from app.controller.broadcaster import Broadcaster, Subscriber, Envelope
from core.events.events import EventKind, NOTIFY_SERIES, now_ms
from core.orders.model import OrderStatus
from core.utils.queueing import safe_put

log = structlog.get_logger()

SERIES_KINDS = (OrderStatus.NEW.value, OrderStatus.DELIVERED.value)
_SNAPSHOT_EVENTS = (EventKind.ORDER_CREATED.value, EventKind.ORDER_STATUS_CHANGED.value)


def format_time_range(start_ms: int, end_ms: int, tz: Optional[tzinfo] = None) -> str:
    def hms(ms: int) -> str:
        dt = datetime.fromtimestamp(ms / 1000.0, tz=tz) if tz else datetime.fromtimestamp(ms / 1000.0)
        return dt.strftime("%H:%M:%S")
    return f"{hms(start_ms)} - {hms(end_ms)}"


@dataclass(frozen=True)
class ChartFrame:
    snapshot: WindowSnapshot
    y_max: float
    time_range: str


class SubscriberSession:
    """
    Client side of one connection: drains the subscriber inbox, feeds the window
    aggregator from notify events, keeps recent order snapshots for list views,
    and produces a ChartFrame every tick.
    One worker thread does both inbox handling and ticks, so they never overlap.
    """
    def __init__(
        self,
        broadcaster: Broadcaster,
        window: Optional[WindowConfig] = None,
        scale: Optional[ScaleConfig] = None,
        config: Optional[SessionConfig] = None,
        clock: Callable[[], int] = now_ms,
        on_frame: Optional[Callable[[ChartFrame], None]] = None,
        tz: Optional[tzinfo] = None,
    ):
        self.broadcaster = broadcaster
        self.window_cfg = window or WindowConfig()
        self.cfg = config or SessionConfig()
        self.clock = clock
        self.on_frame = on_frame
        self.tz = tz

        self.aggregator = WindowAggregator(self.window_cfg, kinds=SERIES_KINDS)
        self.stabilizer = ScaleStabilizer(scale)
        self.recent: Deque[Dict[str, Any]] = deque(maxlen=self.cfg.recent_orders)
        self.received = 0

        self.subscriber: Optional[Subscriber] = None
        self._frame: Optional[ChartFrame] = None
        self._lock = threading.RLock()
        self._stop_evt = threading.Event()
        self._thr: Optional[threading.Thread] = None

    # --- lifecycle ---
    def open(self) -> Subscriber:
        if self.subscriber is None or self.subscriber.closed:
            self.subscriber = self.broadcaster.subscribe()
        return self.subscriber

    def start(self) -> "SubscriberSession":
        self.open()
        if self._thr and self._thr.is_alive():
            return self
        self._stop_evt.clear()
        self._thr = threading.Thread(target=self._loop, name=f"session-{self.subscriber.conn_id[:8]}", daemon=True)
        self._thr.start()
        log.info("session.start", conn_id=self.subscriber.conn_id)
        return self

    def close(self) -> None:
        self._stop_evt.set()
        sub = self.subscriber
        if sub is not None:
            self.broadcaster.unsubscribe(sub)
            safe_put(sub.inbox, None)  # wake the worker
        if self._thr:
            self._thr.join(timeout=self.window_cfg.tick_interval_ms / 1000.0 + 1.0)
            self._thr = None
        self.aggregator.clear()
        with self._lock:
            self.recent.clear()
        log.info("session.close", conn_id=sub.conn_id if sub else None, received=self.received)

    @property
    def running(self) -> bool:
        return bool(self._thr and self._thr.is_alive())

    # --- inbound ---
    def handle(self, env: Envelope) -> None:
        self.received += 1
        series = NOTIFY_SERIES.get(env.name)
        if series is not None:
            # stamped on receipt: the chart follows this side's clock
            self.aggregator.on_event(series.value, self.clock())
        elif env.name in _SNAPSHOT_EVENTS:
            self._upsert_recent(env.payload)
        else:
            log.debug("session.event.unknown", name=env.name)

    def pump(self, timeout: float = 0.0, limit: Optional[int] = None) -> int:
        """Handle what is waiting in the inbox; the first get may wait up to `timeout`."""
        sub = self.subscriber
        if sub is None:
            return 0
        handled = 0
        wait = timeout
        while limit is None or handled < limit:
            try:
                env = sub.inbox.get(timeout=wait) if wait > 0 else sub.inbox.get_nowait()
            except Empty:
                break
            wait = 0.0
            if env is None:
                continue
            try:
                self.handle(env)
            except Exception as e:
                log.warning("session.handle.error", name=getattr(env, "name", None), err=str(e))
            handled += 1
        return handled

    def _upsert_recent(self, rec: Any) -> None:
        if not isinstance(rec, dict):
            return
        with self._lock:
            oid = rec.get("id")
            for i, cur in enumerate(self.recent):
                if oid is not None and cur.get("id") == oid:
                    self.recent[i] = rec
                    return
            self.recent.appendleft(rec)

    def recent_orders(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.recent)

    # --- ticking ---
    def tick(self, now: Optional[int] = None) -> ChartFrame:
        now = self.clock() if now is None else now
        snap = self.aggregator.tick(now)
        y_max = self.stabilizer.update(snap.observed_maxima().values())
        frame = ChartFrame(
            snapshot=snap,
            y_max=y_max,
            time_range=format_time_range(snap.window_start_ms, snap.now_ms, self.tz),
        )
        with self._lock:
            self._frame = frame
        if self.on_frame:
            try:
                self.on_frame(frame)
            except Exception as e:
                log.warning("session.on_frame.error", err=str(e))
        return frame

    @property
    def frame(self) -> Optional[ChartFrame]:
        with self._lock:
            return self._frame

    def _loop(self):
        interval = self.window_cfg.tick_interval_ms / 1000.0
        next_tick = time.monotonic()
        while not self._stop_evt.is_set():
            self.pump(timeout=max(0.0, next_tick - time.monotonic()), limit=500)
            if self._stop_evt.is_set():
                break
            now_mono = time.monotonic()
            if now_mono >= next_tick:
                try:
                    self.tick()
                except Exception as e:
                    log.warning("session.tick.error", err=str(e))
                next_tick += interval
                if next_tick < now_mono:
                    next_tick = now_mono + interval
