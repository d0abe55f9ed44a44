# storefront/reconciliation.py
# 🔁 Сверка платежей: вебхук Mural или опрос счёта -> paid -> выплата
from typing import Any, Dict, List, Optional

import structlog

from .amounts import amounts_match, format_amount, parse_amount
from .config import Settings
from .errors import GatewayFailure, Unconfigured
from .mural import PaymentGateway
from .order_manager import OrderManager, utcnow
from .payouts import PayoutOrchestrator
from .schemas import MuralTransaction, Order, OrderStatus, PollError, PollResult, WebhookResult

logger = structlog.get_logger(__name__)

# Mural event types that mean "money arrived"
PAYMENT_EVENTS = ("account_credited", "deposit.completed", "transfer.completed")
DEPOSIT_TYPES = ("deposit", "credit")


def _first(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return None


def extract_event_type(body: Dict[str, Any]) -> Optional[str]:
    event_type = _first(body.get("eventType"), body.get("event"), body.get("type"))
    return event_type if isinstance(event_type, str) else None


def is_payment_event(event_type: Optional[str]) -> bool:
    if not event_type:
        return False
    return any(e in event_type or e == event_type for e in PAYMENT_EVENTS)


def extract_payload(body: Dict[str, Any]) -> Dict[str, Any]:
    payload = _first(body.get("payload"), body.get("data")) or body
    return payload if isinstance(payload, dict) else {}


def extract_amount(body: Dict[str, Any], payload: Dict[str, Any]) -> Optional[float]:
    raw = _first(payload.get("amount"), payload.get("value"), payload.get("tokenAmount"), body.get("amount"))
    return parse_amount(raw)


def extract_transaction_hash(body: Dict[str, Any], payload: Dict[str, Any]) -> Optional[str]:
    tx_hash = _first(
        payload.get("transactionHash"),
        payload.get("txHash"),
        payload.get("hash"),
        body.get("transactionHash"),
    )
    return str(tx_hash) if tx_hash is not None else None


def find_deposit(deposits: List[MuralTransaction], amount: float) -> Optional[MuralTransaction]:
    for tx in deposits:
        tx_amount = parse_amount(tx.amount)
        if tx_amount is not None and amounts_match(tx_amount, amount):
            return tx
    return None


class ReconciliationEngine:
    def __init__(
        self,
        settings: Settings,
        orders: OrderManager,
        gateway: PaymentGateway,
        payouts: Optional[PayoutOrchestrator] = None,
    ):
        self.settings = settings
        self.orders = orders
        self.gateway = gateway
        self.payouts = payouts or PayoutOrchestrator(settings, orders, gateway)

    async def _mark_paid(self, order: Order, transaction_hash: Optional[str]) -> Optional[Order]:
        extra = {"paid_at": utcnow()}
        if transaction_hash:
            extra["transaction_hash"] = transaction_hash
        return await self.orders.transition(order.id, OrderStatus.PENDING, OrderStatus.PAID, extra)

    # 🔔 Webhook
    async def handle_webhook(self, body: Any) -> WebhookResult:
        if not isinstance(body, dict):
            logger.info("webhook_ignored", reason="body_not_object")
            return WebhookResult(reason="ignored_event")

        event_type = extract_event_type(body)
        if not is_payment_event(event_type):
            logger.info("webhook_ignored", event_type=event_type)
            return WebhookResult(reason="ignored_event")

        payload = extract_payload(body)
        amount = extract_amount(body, payload)
        if amount is None or amount <= 0:
            logger.info("webhook_without_amount", event_type=event_type)
            return WebhookResult(reason="no_amount")

        log = logger.bind(event_type=event_type, amount=format_amount(amount))
        order = await self.orders.find_order_by_amount(amount)
        if order is None:
            log.info("webhook_no_matching_order")
            return WebhookResult(reason="no_matching_order")

        if order.status != OrderStatus.PENDING:
            log.info("webhook_already_processed", order_id=order.id, status=order.status.value)
            return WebhookResult(reason="already_processed", order_id=order.id)

        paid = await self._mark_paid(order, extract_transaction_hash(body, payload))
        if paid is None:
            log.info("webhook_lost_race", order_id=order.id)
            return WebhookResult(reason="already_processed", order_id=order.id)
        log.info("order_paid", order_id=order.id, source="webhook")

        outcome = await self.payouts.attempt_payout(paid)
        return WebhookResult(
            processed=True,
            order_id=order.id,
            payout_id=outcome.payout_id,
            payout_error=outcome.error,
            note=outcome.note,
        )

    # 🔁 Polling
    async def _process_payment(self, order_id: str, transaction_hash: Optional[str]) -> bool:
        order = await self.orders.get_order(order_id)
        if order is None or order.status != OrderStatus.PENDING:
            return False
        paid = await self._mark_paid(order, transaction_hash)
        if paid is None:
            return False
        logger.info("order_paid", order_id=order_id, source="poll")
        outcome = await self.payouts.attempt_payout(paid)
        if outcome.error:
            logger.warning("poll_payout_incomplete", order_id=order_id, error=outcome.error)
        return True

    async def poll(self) -> PollResult:
        pending = await self.orders.get_pending_orders()
        if not pending:
            return PollResult(checked=0, matched=0, message="No pending orders")

        if not self.settings.polling_enabled:
            return PollResult(
                checked=len(pending),
                matched=0,
                message="MURAL_ACCOUNT_ID not configured. Use webhook simulation for testing.",
            )

        try:
            transactions = await self.gateway.list_account_transactions(
                self.settings.mural_account_id, limit=self.settings.transaction_window
            )
        except Unconfigured as e:
            return PollResult(checked=len(pending), matched=0, message=str(e))
        deposits = [tx for tx in transactions if tx.type in DEPOSIT_TYPES]

        result = PollResult(checked=len(pending))
        for order in pending:
            match = find_deposit(deposits, order.unique_amount)
            if match is None:
                continue
            try:
                processed = await self._process_payment(order.id, match.transaction_hash)
            except GatewayFailure as e:
                logger.error("poll_order_failed", order_id=order.id, error=str(e))
                result.errors.append(PollError(order_id=order.id, error=str(e)))
                continue
            if processed:
                result.matched += 1
                result.order_ids.append(order.id)

        logger.info(
            "poll_completed",
            checked=result.checked,
            matched=result.matched,
            deposits=len(deposits),
            errors=len(result.errors),
        )
        return result
