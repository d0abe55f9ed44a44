import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from storefront import order_manager as om
from storefront.errors import InvalidInput, InvalidTransition, NotFound
from storefront.order_manager import AMOUNT_INDEX, ORDER_INDEX, OrderManager
from storefront.schemas import OrderStatus
from storefront.store import MemoryStore

from .conftest import COFFEE


@pytest.mark.asyncio
async def test_create_order_coffee(manager, store):
    order = await manager.create_order([COFFEE], 24.99)

    assert order.status == OrderStatus.PENDING
    assert 24.99 <= order.unique_amount < 25.00
    assert order.id.startswith("ord_")
    assert order.items[0].name == "Coffee"

    # record, index and amount lookup were all written
    assert await store.get(f"order:{order.id}") is not None
    assert await store.zrange(ORDER_INDEX, 0, -1) == [order.id]
    assert await store.get(AMOUNT_INDEX + f"{order.unique_amount:.6f}") == order.id.encode()


@pytest.mark.asyncio
@pytest.mark.parametrize("items", [None, []])
async def test_create_order_requires_items(manager, items):
    with pytest.raises(InvalidInput, match="Items are required"):
        await manager.create_order(items, 10.0)


@pytest.mark.asyncio
@pytest.mark.parametrize("subtotal", [0, -5, None, "24.99", float("nan")])
async def test_create_order_requires_positive_subtotal(manager, subtotal):
    with pytest.raises(InvalidInput, match="Valid subtotal is required"):
        await manager.create_order([COFFEE], subtotal)


@pytest.mark.asyncio
async def test_create_order_rejects_bad_item(manager):
    with pytest.raises(InvalidInput):
        await manager.create_order([{**COFFEE, "quantity": 0}], 24.99)


@pytest.mark.asyncio
async def test_amount_lookup_expires_after_ttl():
    now = [1000.0]
    store = MemoryStore(clock=lambda: now[0])
    manager = OrderManager(store, amount_index_ttl=3600)
    order = await manager.create_order([COFFEE], 24.99)

    assert (await manager.find_order_by_amount(order.unique_amount)).id == order.id
    now[0] += 3601
    assert await manager.find_order_by_amount(order.unique_amount) is None
    # the order itself stays
    assert (await manager.get_order(order.id)).status == OrderStatus.PENDING
    assert [o.id for o in await manager.get_pending_orders()] == [order.id]


@pytest.mark.asyncio
async def test_find_order_by_amount_absorbs_float_drift(manager):
    order = await manager.create_order([COFFEE], 24.99)
    assert (await manager.find_order_by_amount(order.unique_amount + 0.000001)).id == order.id
    assert (await manager.find_order_by_amount(order.unique_amount - 0.000002)).id == order.id
    assert await manager.find_order_by_amount(order.unique_amount + 0.00001) is None


@pytest.mark.asyncio
async def test_list_orders_newest_first(manager, monkeypatch):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    ticks = iter(range(10))
    monkeypatch.setattr(om, "utcnow", lambda: base + timedelta(seconds=next(ticks)))

    first = await manager.create_order([COFFEE], 24.99)
    second = await manager.create_order([COFFEE], 24.99)
    third = await manager.create_order([COFFEE], 24.99)

    assert [o.id for o in await manager.list_orders()] == [third.id, second.id, first.id]
    assert [o.id for o in await manager.list_orders(2)] == [third.id, second.id]
    assert await manager.list_orders(0) == []


@pytest.mark.asyncio
async def test_get_orders_by_status(manager):
    a = await manager.create_order([COFFEE], 24.99)
    b = await manager.create_order([COFFEE], 24.99)
    await manager.update_order_status(a.id, OrderStatus.PAID)

    assert [o.id for o in await manager.get_orders_by_status(OrderStatus.PAID)] == [a.id]
    assert [o.id for o in await manager.get_pending_orders()] == [b.id]


@pytest.mark.asyncio
async def test_update_order_status_missing_order(manager):
    assert await manager.update_order_status("ord_missing", OrderStatus.PAID) is None
    assert await manager.get_order("ord_missing") is None


@pytest.mark.asyncio
async def test_update_order_status_merges_fields(manager):
    order = await manager.create_order([COFFEE], 24.99)
    updated = await manager.update_order_status(
        order.id, OrderStatus.PAYOUT_PENDING, {"cop_amount": 99964.0, "exchange_rate": 4000.0}
    )
    assert updated.status == OrderStatus.PAYOUT_PENDING
    assert updated.cop_amount == 99964.0
    stored = await manager.get_order(order.id)
    assert stored == updated
    assert stored.unique_amount == order.unique_amount


@pytest.mark.asyncio
async def test_status_never_regresses(manager):
    order = await manager.create_order([COFFEE], 24.99)
    await manager.update_order_status(
        order.id, OrderStatus.PAYOUT_COMPLETED, {"payout_id": "po_1", "payout_status": "EXECUTED"}
    )
    for status in (OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.PAYOUT_PENDING, OrderStatus.FAILED):
        with pytest.raises(InvalidTransition):
            await manager.update_order_status(order.id, status)
    assert (await manager.get_order(order.id)).status == OrderStatus.PAYOUT_COMPLETED


@pytest.mark.asyncio
async def test_failed_is_reachable_but_terminal(manager):
    order = await manager.create_order([COFFEE], 24.99)
    failed = await manager.update_order_status(order.id, OrderStatus.FAILED)
    assert failed.status == OrderStatus.FAILED
    with pytest.raises(InvalidTransition):
        await manager.update_order_status(order.id, OrderStatus.PAID)


@pytest.mark.asyncio
async def test_payout_fields_rejected_while_pending(manager):
    order = await manager.create_order([COFFEE], 24.99)
    with pytest.raises(InvalidInput):
        await manager.update_order_status(order.id, OrderStatus.PENDING, {"payout_id": "po_1"})
    with pytest.raises(InvalidInput):
        await manager.update_order_status(order.id, OrderStatus.PAID, {"exchange_rate": 4000.0})
    assert (await manager.get_order(order.id)).payout_id is None


@pytest.mark.asyncio
async def test_transition_only_from_expected_status(manager):
    order = await manager.create_order([COFFEE], 24.99)
    assert await manager.transition(order.id, OrderStatus.PAID, OrderStatus.PAYOUT_PENDING) is None
    paid = await manager.transition(order.id, OrderStatus.PENDING, OrderStatus.PAID)
    assert paid.status == OrderStatus.PAID
    assert await manager.transition(order.id, OrderStatus.PENDING, OrderStatus.PAID) is None


@pytest.mark.asyncio
async def test_concurrent_transitions_single_winner(manager):
    order = await manager.create_order([COFFEE], 24.99)
    results = await asyncio.gather(
        *[manager.transition(order.id, OrderStatus.PENDING, OrderStatus.PAID) for _ in range(5)]
    )
    assert sum(r is not None for r in results) == 1


class LosingStore(MemoryStore):
    """compare_and_set loses once, as if another writer got there first."""

    def __init__(self):
        super().__init__()
        self.lost = False

    async def compare_and_set(self, key, expected, value):
        if not self.lost:
            self.lost = True
            return False
        return await super().compare_and_set(key, expected, value)


@pytest.mark.asyncio
async def test_update_retries_after_write_conflict():
    store = LosingStore()
    manager = OrderManager(store)
    order = await manager.create_order([COFFEE], 24.99)
    updated = await manager.update_order_status(order.id, OrderStatus.PAID)
    assert store.lost
    assert updated.status == OrderStatus.PAID


@pytest.mark.asyncio
async def test_require_order_raises_for_unknown_id(manager):
    with pytest.raises(NotFound):
        await manager.require_order("ord_missing")

    order = await manager.create_order([COFFEE], 24.99)
    assert (await manager.require_order(order.id)).id == order.id


@pytest.mark.asyncio
async def test_failed_keeps_payout_details(manager):
    order = await manager.create_order([COFFEE], 24.99)
    await manager.update_order_status(order.id, OrderStatus.PAID)
    await manager.update_order_status(
        order.id, OrderStatus.PAYOUT_PENDING, {"cop_amount": 99960.0, "exchange_rate": 4000.0}
    )

    failed = await manager.update_order_status(order.id, OrderStatus.FAILED)

    assert failed.status == OrderStatus.FAILED
    assert failed.exchange_rate == 4000.0
    assert (await manager.get_order(order.id)).cop_amount == 99960.0
