# storefront/payouts.py
from dataclasses import dataclass
from typing import Optional

import structlog

from .amounts import round2
from .config import Settings
from .errors import GatewayFailure, Unconfigured
from .mural import PaymentGateway
from .order_manager import OrderManager
from .schemas import Order, OrderStatus

logger = structlog.get_logger(__name__)

NO_PAYOUT_METHOD = "No payout method configured"


@dataclass
class PayoutOutcome:
    attempted: bool = False
    payout_id: Optional[str] = None
    payout_status: Optional[str] = None
    cop_amount: Optional[float] = None
    exchange_rate: Optional[float] = None
    error: Optional[str] = None
    note: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.attempted and self.error is None and self.payout_id is not None


class PayoutOrchestrator:
    """Converts a paid order's USDC into COP and sends it to the merchant's bank.

    Failures are logged and returned in the outcome; the order keeps whatever
    status it reached (``paid`` or ``payout_pending``) for manual follow-up.
    """

    def __init__(self, settings: Settings, orders: OrderManager, gateway: PaymentGateway):
        self.settings = settings
        self.orders = orders
        self.gateway = gateway

    async def attempt_payout(self, order: Order) -> PayoutOutcome:
        if not self.settings.payouts_enabled:
            logger.info("payout_skipped", order_id=order.id, reason="unconfigured")
            return PayoutOutcome(note=NO_PAYOUT_METHOD)

        source = self.settings.payout_source_currency
        target = self.settings.payout_target_currency
        outcome = PayoutOutcome(attempted=True)
        log = logger.bind(order_id=order.id, amount=order.unique_amount)

        try:
            fx = await self.gateway.get_fx_rate(source, target)
        except (GatewayFailure, Unconfigured) as e:
            log.error("payout_fx_rate_failed", error=str(e))
            outcome.error = f"FX rate unavailable: {e}"
            return outcome

        outcome.exchange_rate = fx.rate
        outcome.cop_amount = round2(order.unique_amount * fx.rate)

        try:
            pending = await self.orders.transition(
                order.id,
                OrderStatus.PAID,
                OrderStatus.PAYOUT_PENDING,
                {"cop_amount": outcome.cop_amount, "exchange_rate": fx.rate},
            )
        except GatewayFailure as e:
            log.error("payout_state_write_failed", error=str(e))
            outcome.error = str(e)
            return outcome
        if pending is None:
            # someone else already started (or finished) this payout
            log.warning("payout_already_started")
            outcome.attempted = False
            outcome.note = "Payout already in progress"
            return outcome

        try:
            payout = await self.gateway.create_payout(
                order.unique_amount,
                self.settings.mural_counterparty_id,
                self.settings.mural_payout_method_id,
                memo=f"Order {order.id}",
                currency=source,
            )
            log.info("payout_created", payout_id=payout.id)
            payout = await self.gateway.execute_payout(payout.id)
        except (GatewayFailure, Unconfigured) as e:
            log.error("payout_failed", error=str(e))
            outcome.error = str(e)
            return outcome

        outcome.payout_id = payout.id
        outcome.payout_status = payout.status

        try:
            completed = await self.orders.transition(
                order.id,
                OrderStatus.PAYOUT_PENDING,
                OrderStatus.PAYOUT_COMPLETED,
                {"payout_id": payout.id, "payout_status": payout.status},
            )
        except GatewayFailure as e:
            # money has moved; only the bookkeeping write failed
            log.error("payout_record_failed", payout_id=payout.id, error=str(e))
            outcome.error = f"Payout {payout.id} executed but not recorded: {e}"
            return outcome
        if completed is None:
            # order moved off payout_pending (or vanished) while the payout ran
            log.error("payout_record_skipped", payout_id=payout.id)
            outcome.error = f"Payout {payout.id} executed but order is no longer payout_pending"
            return outcome

        log.info("payout_completed", payout_id=payout.id, cop_amount=outcome.cop_amount, rate=fx.rate)
        return outcome
