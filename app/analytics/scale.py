# app/analytics/scale.py
from __future__ import annotations
import math
import numbers
from typing import Iterable, Optional, Union

from app.analytics.config import ScaleConfig

Observed = Union[float, Iterable[float]]


def _peak(observed: Observed) -> float:
    if isinstance(observed, numbers.Real):
        return float(observed)
    return float(max(observed, default=0))


def next_max(current_max: float, observed: Observed, cfg: Optional[ScaleConfig] = None) -> float:
    """
    Decide the chart's y-axis upper bound for this tick.
    Grows as soon as the peak comes near the top, shrinks only when the peak is
    far below it and the new bound is a real drop; otherwise holds.
    """
    cfg = cfg or ScaleConfig()
    peak = _peak(observed)
    step = cfg.coarse_step if peak > cfg.coarse_above else cfg.fine_step
    candidate = max(math.ceil(peak * cfg.headroom / step) * step, cfg.floor)

    if peak > current_max * cfg.grow_ratio:
        return max(candidate, current_max)
    if peak < current_max * cfg.shrink_ratio and candidate <= current_max - cfg.shrink_min_steps * step:
        return candidate
    return current_max


class ScaleStabilizer:
    """Stateful wrapper: remembers the current bound between ticks."""
    def __init__(self, config: Optional[ScaleConfig] = None, initial: Optional[float] = None):
        self.cfg = config or ScaleConfig()
        self.current_max = float(initial if initial is not None else self.cfg.floor)

    def update(self, observed: Observed) -> float:
        self.current_max = next_max(self.current_max, observed, self.cfg)
        return self.current_max
