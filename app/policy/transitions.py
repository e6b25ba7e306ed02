from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from core.orders.model import OrderStatus

@dataclass
class Verdict:
    allowed: bool
    reason: str

def _default_edges() -> Dict[OrderStatus, FrozenSet[OrderStatus]]:
    # Two states, no terminal one; re-setting the current status is allowed too.
    every = frozenset(OrderStatus)
    return {st: every for st in OrderStatus}

@dataclass
class TransitionPolicy:
    edges: Dict[OrderStatus, FrozenSet[OrderStatus]] = field(default_factory=_default_edges)

    def decide(self, current: Optional[OrderStatus], target: "OrderStatus | str") -> Verdict:
        try:
            to = OrderStatus.parse(target)
        except ValueError:
            return Verdict(False, f"unknown-status:{target}")
        if current is None:
            return Verdict(to == OrderStatus.NEW, f"initial:{to.value}")
        if to in self.edges.get(current, frozenset()):
            return Verdict(True, f"{current.value}->{to.value}")
        return Verdict(False, f"deny:{current.value}->{to.value}")
