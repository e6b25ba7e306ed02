from __future__ import annotations
from dataclasses import dataclass

@dataclass(frozen=True)
class WindowConfig:
    # all in milliseconds
    window_ms: int = 180_000        # trailing window (3 min)
    bucket_ms: int = 10_000         # bucket width
    tick_interval_ms: int = 1_000   # recompute cadence

    def __post_init__(self):
        if self.window_ms <= 0 or self.bucket_ms <= 0 or self.tick_interval_ms <= 0:
            raise ValueError(
                f"window_ms, bucket_ms and tick_interval_ms must be > 0 "
                f"(got {self.window_ms}, {self.bucket_ms}, {self.tick_interval_ms})"
            )

@dataclass(frozen=True)
class ScaleConfig:
    floor: int = 10                 # never show less than this

    # growth / shrink thresholds, relative to the current max
    grow_ratio: float = 0.85
    shrink_ratio: float = 0.4
    headroom: float = 1.3           # candidate = observed * headroom, rounded up to a step

    # step units
    fine_step: int = 5
    coarse_step: int = 10
    coarse_above: float = 20        # observed max above this uses coarse_step

    # a shrink must land at least this many steps below the current max
    shrink_min_steps: int = 2

@dataclass(frozen=True)
class SessionConfig:
    inbox_size: int = 1000          # bounded per-subscriber channel
    recent_orders: int = 50         # latest full snapshots kept for list views
