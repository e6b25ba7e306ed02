from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional
import time
from datetime import datetime, timezone

from core.orders.model import Order, OrderStatus

# --- timing helpers ---
def now_ms() -> int:
    # Wall-clock epoch milliseconds; buckets are aligned on this scale.
    return int(time.time() * 1000)

def ms_to_iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).isoformat(timespec="milliseconds")

# --- core enums ---
class EventKind(Enum):
    """Wire names of everything the broadcaster pushes."""
    ORDER_CREATED = "new-order"
    ORDER_STATUS_CHANGED = "order-status-changed"
    NEW_ORDER_NOTIFY = "new-order-notify"
    DELIVERED_ORDER_NOTIFY = "delivered-order-notify"

    @property
    def is_notify(self) -> bool:
        return self in (EventKind.NEW_ORDER_NOTIFY, EventKind.DELIVERED_ORDER_NOTIFY)

# Which aggregator series a notify event feeds.
NOTIFY_SERIES: Dict[str, OrderStatus] = {
    EventKind.NEW_ORDER_NOTIFY.value: OrderStatus.NEW,
    EventKind.DELIVERED_ORDER_NOTIFY.value: OrderStatus.DELIVERED,
}

# --- base event ---
@dataclass(frozen=True)
class DomainEvent:
    """Common shape for all events. Never persisted, only transmitted."""
    kind: EventKind = field(init=False)          # auto-set by subclasses
    timestamp_ms: int = field(default_factory=now_ms)

    @property
    def wire_name(self) -> str:
        return self.kind.value

    def payload(self) -> Any:
        raise NotImplementedError

    def to_record(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "timestamp_ms": self.timestamp_ms,
            "timestamp": ms_to_iso(self.timestamp_ms),
            "payload": self.payload(),
        }

# --- full-snapshot events (list views) ---
@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    order: Optional[Order] = None

    def __post_init__(self):
        object.__setattr__(self, "kind", EventKind.ORDER_CREATED)

    @property
    def order_number(self) -> str:
        return self.order.order_number if self.order else ""

    def payload(self) -> Dict[str, Any]:
        return self.order.to_record() if self.order else {}

@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    order: Optional[Order] = None

    def __post_init__(self):
        object.__setattr__(self, "kind", EventKind.ORDER_STATUS_CHANGED)

    @property
    def order_number(self) -> str:
        return self.order.order_number if self.order else ""

    @property
    def status(self) -> Optional[OrderStatus]:
        return self.order.status if self.order else None

    def payload(self) -> Dict[str, Any]:
        return self.order.to_record() if self.order else {}

# --- derived notify events (aggregator feed) ---
@dataclass(frozen=True)
class OrderNotify(DomainEvent):
    """Carries just the order number; the kind follows the status it announces."""
    order_number: str = ""
    status: OrderStatus = OrderStatus.NEW

    def __post_init__(self):
        kind = EventKind.DELIVERED_ORDER_NOTIFY if self.status == OrderStatus.DELIVERED else EventKind.NEW_ORDER_NOTIFY
        object.__setattr__(self, "kind", kind)

    def payload(self) -> str:
        return self.order_number
