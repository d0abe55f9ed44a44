"""
Shared fixtures: settings, an in-memory store, and a fake Mural gateway.
"""
import asyncio
import random
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from storefront.config import Settings
from storefront.errors import GatewayFailure
from storefront.main import create_app
from storefront.mural import PaymentGateway
from storefront.order_manager import OrderManager
from storefront.reconciliation import ReconciliationEngine
from storefront.schemas import FxRate, MuralPayout, MuralTransaction
from storefront.store import MemoryStore

COFFEE = {"id": "c1", "name": "Coffee", "price": 24.99, "quantity": 1}


class FakeGateway(PaymentGateway):
    """Records calls; failures are switched on per operation."""

    def __init__(self, rate: float = 4000.0):
        self.rate = rate
        self.transactions: List[MuralTransaction] = []
        self.fail_fx = False
        self.fail_create = False
        self.fail_execute = False
        self.fail_list = False
        self.list_calls = 0
        self.fx_calls = 0
        self.created: List[dict] = []
        self.executed: List[str] = []

    async def list_account_transactions(
        self, account_id: str, limit: int = 50, status: Optional[str] = None
    ) -> List[MuralTransaction]:
        self.list_calls += 1
        await asyncio.sleep(0)
        if self.fail_list:
            raise GatewayFailure("Mural API error: 503 - unavailable", status_code=503)
        return self.transactions[:limit]

    async def get_fx_rate(self, from_currency: str = "USDC", to_currency: str = "COP") -> FxRate:
        self.fx_calls += 1
        await asyncio.sleep(0)
        if self.fail_fx:
            raise GatewayFailure("Mural API error: 500 - fx down", status_code=500)
        return FxRate(rate=self.rate, valid_until="2030-01-01T00:00:00Z")

    async def create_payout(self, amount, counterparty_id, payout_method_id, memo=None, currency="USDC"):
        await asyncio.sleep(0)
        if self.fail_create:
            raise GatewayFailure("Mural API error: 400 - insufficient balance", status_code=400)
        payout_id = f"po_{len(self.created) + 1}"
        self.created.append(
            {
                "id": payout_id,
                "amount": amount,
                "counterparty_id": counterparty_id,
                "payout_method_id": payout_method_id,
                "memo": memo,
                "currency": currency,
            }
        )
        return MuralPayout(id=payout_id, status="AWAITING_EXECUTION")

    async def execute_payout(self, payout_id: str) -> MuralPayout:
        await asyncio.sleep(0)
        if self.fail_execute:
            raise GatewayFailure("Mural API error: 409 - cannot execute", status_code=409)
        self.executed.append(payout_id)
        return MuralPayout(id=payout_id, status="EXECUTED")

    def add_deposit(self, amount: str, tx_hash: str = "0xabc", type_: str = "deposit") -> None:
        self.transactions.append(
            MuralTransaction(
                id=f"tx_{len(self.transactions) + 1}",
                status="completed",
                type=type_,
                amount=amount,
                token_symbol="USDC",
                transaction_hash=tx_hash,
            )
        )


def make_settings(**overrides) -> Settings:
    values = dict(
        store_backend="memory",
        mural_api_key="test-key",
        mural_transfer_api_key="test-transfer-key",
        mural_account_id="acc_123",
        mural_counterparty_id="cp_123",
        mural_payout_method_id="pm_123",
        deposit_address="0xd4e3bc48E59b3Cad1A038a4014A1299bD8D038DA",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def no_payout_settings() -> Settings:
    return make_settings(mural_counterparty_id=None, mural_payout_method_id=None)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def manager(store) -> OrderManager:
    return OrderManager(store, amount_index_ttl=3600, rng=random.Random(1234))


@pytest.fixture
def engine(settings, manager, gateway) -> ReconciliationEngine:
    return ReconciliationEngine(settings, manager, gateway)


@pytest_asyncio.fixture
async def client(settings, store, gateway):
    app = create_app(settings, store=store, gateway=gateway)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
