# storefront/payments.py
import json
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from .dependencies import get_reconciliation
from .errors import GatewayFailure
from .reconciliation import ReconciliationEngine
from .schemas import PollResult, WebhookResult

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["payments"])


# 🔔 Mural webhook: always 200 for business outcomes so Mural doesn't redeliver
@router.post("/webhooks/mural", response_model=WebhookResult, response_model_exclude_none=True)
async def mural_webhook(request: Request, engine: ReconciliationEngine = Depends(get_reconciliation)):
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("webhook_malformed_json")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON body"})

    try:
        return await engine.handle_webhook(body)
    except GatewayFailure as e:
        # store unavailable: let Mural retry the delivery
        logger.error("webhook_processing_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )


@router.get("/webhooks/mural")
async def mural_webhook_status():
    return {
        "status": "ok",
        "message": "Mural webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# 🔁 Опрос Mural: вызывается из кабинета или по cron
@router.api_route("/poll", methods=["GET", "POST"], response_model=PollResult, response_model_exclude_none=True)
async def poll_payments(engine: ReconciliationEngine = Depends(get_reconciliation)):
    try:
        return await engine.poll()
    except GatewayFailure as e:
        logger.error("poll_failed", error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Polling failed: {e}")
