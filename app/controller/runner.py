from __future__ import annotations
import threading
from typing import Callable, List, Optional
import structlog

from app.analytics.config import WindowConfig, ScaleConfig, SessionConfig
from app.controller.broadcaster import Broadcaster, SubscriberRegistry, DeliverFn
from app.controller.lifecycle import OrderLifecycle
from app.controller.session import SubscriberSession, ChartFrame
from core.events.events import now_ms
from core.store.order_store import OrderStore, InMemoryOrderStore


log = structlog.get_logger()

class FeedRuntime:
    """Owns the subscriber registry for the life of the process; wires store, broadcaster and lifecycle."""
    def __init__(
        self,
        store: Optional[OrderStore] = None,
        window: Optional[WindowConfig] = None,
        scale: Optional[ScaleConfig] = None,
        session: Optional[SessionConfig] = None,
        deliver: Optional[DeliverFn] = None,
    ):
        self.window = window or WindowConfig()
        self.scale = scale or ScaleConfig()
        self.session_cfg = session or SessionConfig()

        self.store: OrderStore = store if store is not None else InMemoryOrderStore()
        self.registry = SubscriberRegistry()
        self.broadcaster = Broadcaster(self.registry, deliver=deliver, inbox_size=self.session_cfg.inbox_size)
        self.lifecycle = OrderLifecycle(self.store, self.broadcaster)

        self._sessions: List[SubscriberSession] = []
        self._lock = threading.RLock()

    def connect(
        self,
        on_frame: Optional[Callable[[ChartFrame], None]] = None,
        start: bool = True,
        clock: Optional[Callable[[], int]] = None,
    ) -> SubscriberSession:
        sess = SubscriberSession(
            self.broadcaster,
            window=self.window,
            scale=self.scale,
            config=self.session_cfg,
            clock=clock or now_ms,
            on_frame=on_frame,
        )
        if start:
            sess.start()
        else:
            sess.open()
        with self._lock:
            self._sessions.append(sess)
        return sess

    def disconnect(self, sess: SubscriberSession) -> None:
        with self._lock:
            if sess in self._sessions:
                self._sessions.remove(sess)
        sess.close()

    @property
    def sessions(self) -> List[SubscriberSession]:
        with self._lock:
            return list(self._sessions)

    def shutdown(self) -> None:
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for sess in sessions:
            try:
                sess.close()
            except Exception as e:
                log.warning("runtime.session.close.error", err=str(e))
        self.broadcaster.shutdown()
        log.info("runtime.shutdown", sessions=len(sessions))

    def __enter__(self) -> "FeedRuntime":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
