# storefront/orders.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .amounts import format_amount
from .config import Settings, is_configured
from .dependencies import get_order_manager, get_settings
from .errors import GatewayFailure, InvalidInput, NotFound
from .order_manager import OrderManager
from .schemas import Order, OrderCreate, OrderList, OrderStatus, PaymentInstructions

router = APIRouter(prefix="/api/orders", tags=["orders"])


# ✅ Оформление заказа: покупатель получает уникальную сумму к оплате
@router.post("", response_model=Order, response_model_exclude_none=True, status_code=status.HTTP_201_CREATED)
async def create_order(payload: OrderCreate, manager: OrderManager = Depends(get_order_manager)):
    try:
        return await manager.create_order(payload.items, payload.subtotal)
    except InvalidInput as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except GatewayFailure:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Failed to create order")


# 🧾 Список заказов для кабинета продавца (новые сверху)
@router.get("", response_model=OrderList, response_model_exclude_none=True)
async def list_orders(
    limit: int = Query(100, ge=1, le=500),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    manager: OrderManager = Depends(get_order_manager),
):
    try:
        if status_filter is not None:
            orders = await manager.get_orders_by_status(status_filter, limit)
        else:
            orders = await manager.list_orders(limit)
    except GatewayFailure:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Failed to list orders")
    return OrderList(orders=orders)


async def _load_order(order_id: str, manager: OrderManager) -> Order:
    try:
        return await manager.require_order(order_id)
    except NotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    except GatewayFailure:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Failed to load order")


# 📦 Детали одного заказа
@router.get("/{order_id}", response_model=Order, response_model_exclude_none=True)
async def get_order(order_id: str, manager: OrderManager = Depends(get_order_manager)):
    return await _load_order(order_id, manager)


# 💳 Что и куда отправить (страница оплаты рисует по этим данным QR)
@router.get("/{order_id}/payment", response_model=PaymentInstructions)
async def payment_instructions(
    order_id: str,
    manager: OrderManager = Depends(get_order_manager),
    settings: Settings = Depends(get_settings),
):
    order = await _load_order(order_id, manager)
    if not is_configured(settings.deposit_address):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="DEPOSIT_ADDRESS not configured")

    amount = format_amount(order.unique_amount)
    return PaymentInstructions(
        order_id=order.id,
        amount=amount,
        currency=settings.payout_source_currency,
        network=settings.deposit_network,
        deposit_address=settings.deposit_address,
        payment_uri=f"ethereum:{settings.deposit_address}?value={amount}",
        status=order.status,
    )
