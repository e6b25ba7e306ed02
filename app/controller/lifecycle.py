from __future__ import annotations
from decimal import Decimal
from typing import Callable, Optional, Union
import structlog

from app.controller.broadcaster import Broadcaster
from app.policy.transitions import TransitionPolicy
from core.events.events import DomainEvent, OrderCreated, OrderStatusChanged, OrderNotify, now_ms
from core.orders.model import Order, OrderStatus, DeliveryAddress
from core.store.order_store import OrderStore, DuplicateOrderNumber

log = structlog.get_logger()


class OrderError(Exception):
    pass

class OrderConflict(OrderError):
    def __init__(self, order_number: str):
        super().__init__(f"an order with number {order_number!r} already exists")
        self.order_number = order_number

class OrderNotFound(OrderError):
    def __init__(self, order_id: str):
        super().__init__(f"order not found: {order_id}")
        self.order_id = order_id

class TransitionRefused(OrderError):
    pass


class OrderLifecycle:
    """
    Validates order mutations, writes them through the store and emits the
    resulting domain events on the broadcaster.

    Each call is an independent unit of work. The order-number check runs right
    before the insert but is not atomic with it; the store's own uniqueness
    rejection is reported as the same OrderConflict.
    """
    def __init__(
        self,
        store: OrderStore,
        broadcaster: Broadcaster,
        policy: Optional[TransitionPolicy] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.policy = policy or TransitionPolicy()
        self.clock = clock

    def create(
        self,
        order_number: str,
        description: str = "",
        value: Union[Decimal, int, float, str] = 0,
        address: Optional[DeliveryAddress] = None,
        owner_id: str = "",
        owner_name: Optional[str] = None,
    ) -> Order:
        verdict = self.policy.decide(None, OrderStatus.NEW)
        if not verdict.allowed:
            raise TransitionRefused(verdict.reason)
        if self.store.find_by_order_number(order_number) is not None:
            log.info("order.create.conflict", order_number=order_number, stage="precheck")
            raise OrderConflict(order_number)

        order = Order(
            order_number=order_number,
            description=description,
            value=Decimal(str(value)),
            delivery_address=address or DeliveryAddress(),
            status=OrderStatus.NEW,
            user_id=owner_id,
            user_name=owner_name,
        )
        try:
            created = self.store.insert(order)
        except DuplicateOrderNumber as e:
            log.info("order.create.conflict", order_number=order_number, stage="store")
            raise OrderConflict(order_number) from e

        log.info("order.created", order_number=created.order_number, order_id=created.id, user_id=owner_id)
        ts = self.clock()
        self._emit(OrderCreated(order=created, timestamp_ms=ts))
        self._emit(OrderNotify(order_number=created.order_number, status=OrderStatus.NEW, timestamp_ms=ts))
        return created

    def set_status(self, order_id: str, status: Union[OrderStatus, str]) -> Order:
        # Same-status updates are not deduplicated: each call emits and is counted downstream.
        target = OrderStatus.parse(status)
        current = self.store.find_by_id(order_id)
        if current is None:
            raise OrderNotFound(order_id)

        verdict = self.policy.decide(current.status, target)
        if not verdict.allowed:
            raise TransitionRefused(verdict.reason)

        if not self.store.update_status(order_id, target):
            raise OrderNotFound(order_id)
        updated = self.store.find_by_id(order_id)
        if updated is None:
            raise OrderNotFound(order_id)

        log.info("order.status.updated", order_id=order_id, order_number=updated.order_number,
                 status=target.value, previous=current.status.value)
        ts = self.clock()
        self._emit(OrderStatusChanged(order=updated, timestamp_ms=ts))
        self._emit(OrderNotify(order_number=updated.order_number, status=target, timestamp_ms=ts))
        return updated

    def _emit(self, ev: DomainEvent) -> None:
        n = self.broadcaster.publish(ev)
        log.debug("order.event.emit", kind=ev.wire_name, delivered=n)
