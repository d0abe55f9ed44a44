# storefront/dependencies.py
"""Per-request access to the long-lived collaborators kept on ``app.state``."""
from fastapi import Request

from .config import Settings
from .mural import PaymentGateway
from .order_manager import OrderManager
from .reconciliation import ReconciliationEngine
from .store import KeyValueStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> KeyValueStore:
    return request.app.state.store


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_order_manager(request: Request) -> OrderManager:
    settings = get_settings(request)
    return OrderManager(get_store(request), amount_index_ttl=settings.amount_index_ttl)


def get_reconciliation(request: Request) -> ReconciliationEngine:
    return ReconciliationEngine(get_settings(request), get_order_manager(request), get_gateway(request))
