# storefront/main.py
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import orders, payments, shop
from .config import Settings, get_settings
from .logging_config import setup_logging
from .mural import MuralClient, PaymentGateway
from .store import KeyValueStore, build_store

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    settings: Settings = app.state.settings
    owned = []

    if app.state.store is None:
        app.state.store = await build_store(settings)
        owned.append(app.state.store)
    if app.state.gateway is None:
        app.state.gateway = MuralClient.from_settings(settings)
        owned.append(app.state.gateway)

    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        store_backend=settings.store_backend,
        payouts_enabled=settings.payouts_enabled,
        polling_enabled=settings.polling_enabled,
    )
    yield

    logger.info("application_shutdown")
    for resource in owned:
        await resource.close()


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    gateway: Optional[PaymentGateway] = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="USDC Storefront",
        description="Orders paid in USDC, matched to deposits and paid out in COP via Mural Pay",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.gateway = gateway

    # ✅ CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ✅ Роутеры
    app.include_router(shop.router)
    app.include_router(orders.router)
    app.include_router(payments.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


def main() -> None:
    setup_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
