# storefront/order_manager.py
# 📦 Заказы поверх KeyValueStore: order:<id>, orders:index, orders:by-amount:<amount> (с TTL)
# статус меняется только через compare_and_set
import random
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from .amounts import amount_key_candidates, format_amount, generate_unique_amount, parse_amount
from .errors import InvalidInput, InvalidTransition, NotFound
from .schemas import Order, OrderItem, OrderStatus, can_transition
from .store import KeyValueStore

logger = structlog.get_logger(__name__)

ORDER_PREFIX = "order:"
ORDER_INDEX = "orders:index"
AMOUNT_INDEX = "orders:by-amount:"

# compare_and_set retries before giving up on a contended order
MAX_WRITE_ATTEMPTS = 5

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_order_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"ord_{int(time.time() * 1000)}_{suffix}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderManager:
    def __init__(
        self,
        store: KeyValueStore,
        amount_index_ttl: int = 3600,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.amount_index_ttl = amount_index_ttl
        self.rng = rng

    async def create_order(self, items: Any, subtotal: Any) -> Order:
        if not items or not isinstance(items, (list, tuple)):
            raise InvalidInput("Items are required")
        # JSON numbers only; "24.99" as a string is rejected like a missing subtotal
        amount = parse_amount(subtotal) if not isinstance(subtotal, str) else None
        if amount is None or amount <= 0:
            raise InvalidInput("Valid subtotal is required")
        try:
            validated = [item if isinstance(item, OrderItem) else OrderItem.model_validate(item) for item in items]
        except ValidationError as e:
            raise InvalidInput(f"Invalid order item: {e.errors()[0]['msg']}") from e

        created_at = utcnow()
        order = Order(
            id=generate_order_id(),
            items=validated,
            subtotal=amount,
            unique_amount=generate_unique_amount(amount, self.rng),
            status=OrderStatus.PENDING,
            created_at=created_at,
        )

        # three independent writes; a failure part-way leaves what was written
        await self.store.set(self._order_key(order.id), order.to_json())
        try:
            await self.store.zadd(ORDER_INDEX, created_at.timestamp() * 1000, order.id)
            await self.store.set(
                AMOUNT_INDEX + format_amount(order.unique_amount),
                order.id.encode("utf-8"),
                ttl=self.amount_index_ttl,
            )
        except Exception:
            logger.error("order_partially_written", order_id=order.id)
            raise

        logger.info(
            "order_created",
            order_id=order.id,
            subtotal=order.subtotal,
            unique_amount=format_amount(order.unique_amount),
            items=len(order.items),
        )
        return order

    @staticmethod
    def _order_key(order_id: str) -> str:
        return f"{ORDER_PREFIX}{order_id}"

    async def _read(self, order_id: str) -> Tuple[Optional[bytes], Optional[Order]]:
        raw = await self.store.get(self._order_key(order_id))
        if raw is None:
            return None, None
        return raw, Order.model_validate_json(raw)

    async def get_order(self, order_id: str) -> Optional[Order]:
        _, order = await self._read(order_id)
        return order

    async def require_order(self, order_id: str) -> Order:
        order = await self.get_order(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    async def list_orders(self, limit: int = 50) -> List[Order]:
        """Most recently created first."""
        if limit <= 0:
            return []
        order_ids = await self.store.zrange(ORDER_INDEX, 0, limit - 1, reverse=True)
        orders = []
        for order_id in order_ids:
            order = await self.get_order(order_id)
            if order:
                orders.append(order)
        return orders

    async def get_orders_by_status(self, status: OrderStatus, limit: int = 50) -> List[Order]:
        # only the newest 2*limit orders are scanned
        orders = await self.list_orders(limit * 2)
        return [o for o in orders if o.status == status][:limit]

    async def get_pending_orders(self) -> List[Order]:
        return await self.get_orders_by_status(OrderStatus.PENDING)

    async def find_order_by_amount(self, amount: float) -> Optional[Order]:
        for amount_key in amount_key_candidates(amount):
            order_id = await self.store.get(AMOUNT_INDEX + amount_key)
            if order_id:
                return await self.get_order(order_id.decode("utf-8"))
        return None

    async def _write(
        self,
        order_id: str,
        status: OrderStatus,
        extra: Optional[Dict[str, Any]],
        expected: Optional[OrderStatus],
    ) -> Optional[Order]:
        for _ in range(MAX_WRITE_ATTEMPTS):
            raw, current = await self._read(order_id)
            if current is None:
                return None
            if expected is not None and current.status != expected:
                return None
            if not can_transition(current.status, status):
                raise InvalidTransition(
                    f"Order {order_id} cannot move from {current.status.value} to {status.value}"
                )
            data = current.model_dump()
            data.update(extra or {})
            data["status"] = status
            try:
                updated = Order.model_validate(data)
            except ValidationError as e:
                raise InvalidInput(f"Invalid update for order {order_id}: {e.errors()[0]['msg']}") from e

            if await self.store.compare_and_set(self._order_key(order_id), raw, updated.to_json()):
                logger.info(
                    "order_status_updated",
                    order_id=order_id,
                    from_status=current.status.value,
                    to_status=status.value,
                )
                return updated
            logger.debug("order_write_conflict", order_id=order_id, to_status=status.value)

        logger.warning("order_write_contended", order_id=order_id, to_status=status.value)
        return None

    async def update_order_status(
        self, order_id: str, status: OrderStatus, extra: Optional[Dict[str, Any]] = None
    ) -> Optional[Order]:
        """Read-modify-write of status plus extra fields; ``None`` if the order is missing."""
        return await self._write(order_id, status, extra, expected=None)

    async def transition(
        self,
        order_id: str,
        expected: OrderStatus,
        status: OrderStatus,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[Order]:
        """Move the order to ``status`` only if it is still at ``expected``.

        Returns ``None`` when the order is missing or another caller moved it
        first.
        """
        return await self._write(order_id, status, extra, expected=expected)
