from __future__ import annotations
import json, sqlite3, threading
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Tuple, Protocol

from core.orders.model import Order, OrderStatus, DeliveryAddress, utc_now


class DuplicateOrderNumber(Exception):
    """Raised by a store when its uniqueness constraint rejects an insert."""
    def __init__(self, order_number: str):
        super().__init__(f"order number already exists: {order_number}")
        self.order_number = order_number


class OrderStore(Protocol):
    def find_by_order_number(self, order_number: str) -> Optional[Order]: ...
    def insert(self, order: Order) -> Order: ...
    def find_by_id(self, order_id: str) -> Optional[Order]: ...
    def update_status(self, order_id: str, status: OrderStatus) -> bool: ...
    def list_all(self) -> List[Order]: ...


class InMemoryOrderStore:
    """Dict-backed store with a unique index on order_number."""
    def __init__(self):
        self._lock = threading.RLock()
        self._by_id: Dict[str, Order] = {}
        self._by_number: Dict[str, str] = {}

    def find_by_order_number(self, order_number: str) -> Optional[Order]:
        with self._lock:
            oid = self._by_number.get(order_number)
            return self._by_id.get(oid) if oid else None

    def insert(self, order: Order) -> Order:
        with self._lock:
            if order.order_number in self._by_number:
                raise DuplicateOrderNumber(order.order_number)
            self._by_id[order.id] = order
            self._by_number[order.order_number] = order.id
            return order

    def find_by_id(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return self._by_id.get(order_id)

    def update_status(self, order_id: str, status: OrderStatus) -> bool:
        with self._lock:
            cur = self._by_id.get(order_id)
            if cur is None:
                return False
            self._by_id[order_id] = cur.with_status(status)
            return True

    def list_all(self) -> List[Order]:
        with self._lock:
            return sorted(self._by_id.values(), key=lambda o: o.created_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)


_COLUMNS = "id, order_number, description, value, address, status, user_id, user_name, created_at, updated_at"

class SqliteOrderStore:
    """sqlite3 store; the UNIQUE index on order_number is the durable uniqueness backstop."""
    def __init__(self, db_path: str = "orders.sqlite3"):
        self.db_path = db_path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=5.0)

    def _init_db(self):
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS orders(
                  id TEXT PRIMARY KEY,
                  order_number TEXT NOT NULL UNIQUE,
                  description TEXT NOT NULL,
                  value TEXT NOT NULL,
                  address TEXT NOT NULL,
                  status TEXT NOT NULL,
                  user_id TEXT NOT NULL,
                  user_name TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _one(self, where: str, arg: str) -> Optional[Order]:
        conn = self._connect()
        try:
            row = conn.execute(f"SELECT {_COLUMNS} FROM orders WHERE {where} = ?", (arg,)).fetchone()
        finally:
            conn.close()
        return _row_to_order(row) if row else None

    def find_by_order_number(self, order_number: str) -> Optional[Order]:
        return self._one("order_number", order_number)

    def find_by_id(self, order_id: str) -> Optional[Order]:
        return self._one("id", order_id)

    def insert(self, order: Order) -> Order:
        conn = self._connect()
        try:
            conn.execute(
                f"INSERT INTO orders({_COLUMNS}) VALUES (?,?,?,?,?,?,?,?,?,?)",
                _order_to_row(order),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            if "order_number" in str(e):
                raise DuplicateOrderNumber(order.order_number) from e
            raise
        finally:
            conn.close()
        return order

    def update_status(self, order_id: str, status: OrderStatus) -> bool:
        conn = self._connect()
        try:
            cur = conn.execute(
                "UPDATE orders SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, utc_now().isoformat(), order_id),
            )
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def list_all(self) -> List[Order]:
        conn = self._connect()
        try:
            rows = conn.execute(f"SELECT {_COLUMNS} FROM orders ORDER BY created_at, rowid").fetchall()
        finally:
            conn.close()
        return [_row_to_order(r) for r in rows]


def _order_to_row(o: Order) -> Tuple:
    return (
        o.id, o.order_number, o.description, str(o.value),
        json.dumps(o.delivery_address.to_record()), o.status.value,
        o.user_id, o.user_name, o.created_at.isoformat(),
        o.updated_at.isoformat() if o.updated_at else None,
    )

def _row_to_order(row: Tuple) -> Order:
    oid, number, desc, value, address, status, user_id, user_name, created, updated = row
    return Order(
        id=oid,
        order_number=number,
        description=desc,
        value=Decimal(value),
        delivery_address=DeliveryAddress.from_record(json.loads(address)),
        status=OrderStatus.parse(status),
        user_id=user_id,
        user_name=user_name,
        created_at=datetime.fromisoformat(created),
        updated_at=datetime.fromisoformat(updated) if updated else None,
    )
