# storefront/mural.py
# 💸 Клиент Mural Pay: один на процесс, ошибки наружу как GatewayFailure
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from .config import Settings
from .errors import GatewayFailure, Unconfigured
from .schemas import FxRate, MuralPayout, MuralTransaction

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _parse(model: Type[M], data: Any, endpoint: str) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error("mural_unexpected_response", endpoint=endpoint, error=str(e))
        raise GatewayFailure(f"Unexpected Mural response from {endpoint}: {e.errors()[0]['msg']}") from e


class PaymentGateway(ABC):
    """What the reconciliation and payout code needs from the payments vendor."""

    @abstractmethod
    async def list_account_transactions(
        self, account_id: str, limit: int = 50, status: Optional[str] = None
    ) -> List[MuralTransaction]:
        ...

    @abstractmethod
    async def get_fx_rate(self, from_currency: str = "USDC", to_currency: str = "COP") -> FxRate:
        ...

    @abstractmethod
    async def create_payout(
        self,
        amount: float,
        counterparty_id: str,
        payout_method_id: str,
        memo: Optional[str] = None,
        currency: str = "USDC",
    ) -> MuralPayout:
        ...

    @abstractmethod
    async def execute_payout(self, payout_id: str) -> MuralPayout:
        ...

    async def close(self) -> None:
        return None


class MuralClient(PaymentGateway):
    def __init__(
        self,
        api_key: Optional[str],
        transfer_api_key: Optional[str] = None,
        base_url: str = "https://api-staging.muralpay.com/api",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.transfer_api_key = transfer_api_key
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "MuralClient":
        return cls(
            api_key=settings.mural_api_key,
            transfer_api_key=settings.mural_transfer_api_key,
            base_url=settings.mural_api_base,
            timeout=settings.mural_timeout,
        )

    def _auth_header(self, use_transfer_key: bool) -> Dict[str, str]:
        key = self.transfer_api_key if use_transfer_key else self.api_key
        if not key:
            name = "MURAL_TRANSFER_API_KEY" if use_transfer_key else "MURAL_API_KEY"
            raise Unconfigured(f"Mural API key not configured: {name}")
        return {"Authorization": f"Bearer {key}"}

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        use_transfer_key: bool = False,
    ) -> Any:
        headers = self._auth_header(use_transfer_key)
        try:
            resp = await self._client.request(method, endpoint, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.error("mural_request_failed", method=method, endpoint=endpoint, error=str(e))
            raise GatewayFailure(f"Mural API unreachable: {e}") from e

        if resp.status_code >= 400:
            logger.error(
                "mural_api_error",
                method=method,
                endpoint=endpoint,
                status_code=resp.status_code,
                body=resp.text,
            )
            raise GatewayFailure(
                f"Mural API error: {resp.status_code} - {resp.text}",
                status_code=resp.status_code,
                detail=resp.text,
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise GatewayFailure(f"Mural API returned invalid JSON for {endpoint}") from e

    # Accounts
    async def get_accounts(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/accounts")
        return (data or {}).get("results", [])

    async def get_account(self, account_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/accounts/{account_id}")

    # Transactions (payment detection by polling)
    async def list_account_transactions(
        self, account_id: str, limit: int = 50, status: Optional[str] = None
    ) -> List[MuralTransaction]:
        params: Dict[str, Any] = {"limit": limit}
        if status:
            params["status"] = status
        endpoint = f"/accounts/{account_id}/transactions"
        data = await self._request("GET", endpoint, params=params)
        return [_parse(MuralTransaction, tx, endpoint) for tx in (data or {}).get("results", [])]

    async def get_transaction(self, transaction_id: str) -> MuralTransaction:
        data = await self._request("GET", f"/transactions/{transaction_id}")
        return _parse(MuralTransaction, data, f"/transactions/{transaction_id}")

    # Counterparties (payout recipients)
    async def get_counterparties(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/counterparties")
        return (data or {}).get("results", [])

    async def get_counterparty(self, counterparty_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/counterparties/{counterparty_id}")

    # FX
    async def get_fx_rate(self, from_currency: str = "USDC", to_currency: str = "COP") -> FxRate:
        data = await self._request("GET", "/fx-rates", params={"from": from_currency, "to": to_currency})
        try:
            return FxRate(rate=float(data["rate"]), valid_until=data.get("validUntil"))
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayFailure(f"Unexpected FX rate response: {data!r}") from e

    # Payouts (transfer key)
    async def create_payout(
        self,
        amount: float,
        counterparty_id: str,
        payout_method_id: str,
        memo: Optional[str] = None,
        currency: str = "USDC",
    ) -> MuralPayout:
        body = {
            "payouts": [
                {
                    "counterpartyId": counterparty_id,
                    "payoutMethodId": payout_method_id,
                    "amount": str(amount),
                    "currency": currency,
                    "memo": memo or "Merchant payout",
                }
            ]
        }
        data = await self._request("POST", "/payout-requests", json=body, use_transfer_key=True)
        return _parse(MuralPayout, data, "/payout-requests")

    async def execute_payout(self, payout_id: str) -> MuralPayout:
        data = await self._request("POST", f"/payout-requests/{payout_id}/execute", use_transfer_key=True)
        return _parse(MuralPayout, data, f"/payout-requests/{payout_id}/execute")

    async def get_payout_request(self, payout_id: str) -> MuralPayout:
        data = await self._request("GET", f"/payout-requests/{payout_id}")
        return _parse(MuralPayout, data, f"/payout-requests/{payout_id}")

    # Webhooks
    async def register_webhook(self, url: str, events: List[str]) -> Dict[str, Any]:
        return await self._request("POST", "/webhooks", json={"url": url, "events": events})

    async def list_webhooks(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/webhooks")
        return (data or {}).get("results", [])

    async def delete_webhook(self, webhook_id: str) -> None:
        await self._request("DELETE", f"/webhooks/{webhook_id}")

    async def close(self) -> None:
        await self._client.aclose()
