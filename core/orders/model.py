from __future__ import annotations
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat(timespec="milliseconds")


class OrderStatus(Enum):
    NEW = "new"
    DELIVERED = "delivered"

    @classmethod
    def parse(cls, value: "str | OrderStatus") -> "OrderStatus":
        """Accepts enum members, wire values, member names and the legacy PT-BR values."""
        if isinstance(value, OrderStatus):
            return value
        key = str(value).strip().lower()
        key = _LEGACY_STATUS.get(key, key)
        for st in cls:
            if key in (st.value, st.name.lower()):
                return st
        raise ValueError(f"unknown order status: {value!r}")


# wire values of the first deployment
_LEGACY_STATUS = {"novo": "new", "entregue": "delivered"}


@dataclass(frozen=True)
class DeliveryAddress:
    cep: str = ""
    street: str = ""
    number: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""

    def to_record(self) -> Dict[str, Any]:
        return {
            "cep": self.cep,
            "street": self.street,
            "number": self.number,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "state": self.state,
        }

    @classmethod
    def from_record(cls, rec: Optional[Dict[str, Any]]) -> "DeliveryAddress":
        rec = rec or {}
        return cls(**{k: str(rec.get(k, "")) for k in ("cep", "street", "number", "neighborhood", "city", "state")})


@dataclass(frozen=True)
class Order:
    """Order snapshot. Mutations produce a new instance (see with_status)."""
    order_number: str
    description: str = ""
    value: Decimal = Decimal("0")
    delivery_address: DeliveryAddress = field(default_factory=DeliveryAddress)
    status: OrderStatus = OrderStatus.NEW
    user_id: str = ""
    user_name: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    def with_status(self, status: OrderStatus, at: Optional[datetime] = None) -> "Order":
        return replace(self, status=status, updated_at=at or utc_now())

    def to_record(self) -> Dict[str, Any]:
        """Full order snapshot, as pushed to list views."""
        return {
            "id": self.id,
            "order_number": self.order_number,
            "description": self.description,
            "value": str(self.value),
            "delivery_address": self.delivery_address.to_record(),
            "status": self.status.value,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
