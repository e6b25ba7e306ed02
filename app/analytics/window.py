# app/analytics/window.py
from __future__ import annotations
import math
import numbers
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Optional, Tuple
import numpy as np
import structlog

from app.analytics.config import WindowConfig

log = structlog.get_logger()


@dataclass(frozen=True)
class WindowSnapshot:
    """Bucketed counts for one tick. bucket_starts[i] opens [start, start + bucket_ms)."""
    now_ms: int
    window_start_ms: int
    bucket_ms: int
    bucket_starts: Tuple[int, ...]
    counts: Dict[str, Tuple[int, ...]]

    def series(self, kind: str) -> List[Tuple[int, int]]:
        counts = self.counts.get(kind) or (0,) * len(self.bucket_starts)
        return list(zip(self.bucket_starts, counts))

    def totals(self) -> Dict[str, int]:
        return {k: sum(c) for k, c in self.counts.items()}

    def observed_maxima(self) -> Dict[str, int]:
        return {k: (max(c) if c else 0) for k, c in self.counts.items()}

    def max_count(self) -> int:
        return max(self.observed_maxima().values(), default=0)


def _coerce_ms(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    f = float(value)
    if not math.isfinite(f):
        return None
    return int(f)


class WindowAggregator:
    """
    Keeps raw event timestamps per kind for the trailing window and rebuilds the
    bucket histogram from them on every tick:
      - on_event: append to the kind's log (insertion order)
      - tick: prune everything older than now - window, then re-bucket
    Buckets are aligned on window_start, so the same logs and the same `now`
    always give the same snapshot.
    """
    def __init__(self, config: Optional[WindowConfig] = None, kinds: Iterable[str] = ()):
        self.cfg = config or WindowConfig()
        self._lock = threading.RLock()
        self._logs: Dict[str, Deque[int]] = {k: deque() for k in kinds}
        self.skipped = 0

    @property
    def bucket_count(self) -> int:
        # at least two points, so a renderer never drops an empty trace
        return max(2, math.ceil(self.cfg.window_ms / self.cfg.bucket_ms) + 1)

    @property
    def kinds(self) -> List[str]:
        with self._lock:
            return list(self._logs)

    def on_event(self, kind: str, timestamp_ms) -> bool:
        ts = _coerce_ms(timestamp_ms)
        if ts is None:
            with self._lock:
                self.skipped += 1
            log.warning("window.sample.skip", kind=kind, value=repr(timestamp_ms))
            return False
        with self._lock:
            q = self._logs.get(kind)
            if q is None:
                q = self._logs[kind] = deque()
            q.append(ts)
        return True

    def retained(self, kind: str) -> List[int]:
        with self._lock:
            return list(self._logs.get(kind, ()))

    def prune(self, now_ms: int) -> int:
        cutoff = int(now_ms) - self.cfg.window_ms
        removed = 0
        with self._lock:
            for q in self._logs.values():
                while q and q[0] < cutoff:
                    q.popleft()
                    removed += 1
                # late arrivals can leave older stamps behind newer ones
                if any(t < cutoff for t in q):
                    kept = [t for t in q if t >= cutoff]
                    removed += len(q) - len(kept)
                    q.clear()
                    q.extend(kept)
        return removed

    def tick(self, now_ms: int) -> WindowSnapshot:
        now = int(now_ms)
        start = now - self.cfg.window_ms
        n = self.bucket_count
        with self._lock:
            self.prune(now)
            counts: Dict[str, Tuple[int, ...]] = {}
            for kind, q in self._logs.items():
                try:
                    counts[kind] = self._bucketize(q, start, n)
                except Exception as e:
                    log.warning("window.tick.error", kind=kind, err=str(e))
                    counts[kind] = (0,) * n

        starts = start + np.arange(n, dtype=np.int64) * self.cfg.bucket_ms
        return WindowSnapshot(
            now_ms=now,
            window_start_ms=start,
            bucket_ms=self.cfg.bucket_ms,
            bucket_starts=tuple(int(s) for s in starts),
            counts=counts,
        )

    def _bucketize(self, q: Deque[int], start: int, n: int) -> Tuple[int, ...]:
        if not q:
            return (0,) * n
        ts = np.fromiter(q, dtype=np.int64, count=len(q))
        idx = (ts - start) // self.cfg.bucket_ms
        # stamps ahead of the last bucket (clock skew) stay logged but are not drawn yet
        idx = idx[(idx >= 0) & (idx < n)]
        return tuple(int(c) for c in np.bincount(idx, minlength=n)[:n])

    def clear(self) -> None:
        with self._lock:
            self._logs.clear()
