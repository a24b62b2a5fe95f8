"""Off-ramp payout gateway (mobile money / bank transfer provider)."""

import logging
from decimal import Decimal
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from flowpay.config import get_settings
from flowpay.data.models import PayoutResult
from flowpay.utils.rate_limiter import CircuitBreaker

logger = logging.getLogger(__name__)


class PayoutGateway:
    """Client for the payout provider API.

    Every public call returns a `PayoutResult`; provider errors, HTTP errors
    and exhausted retries come back as `success=False` instead of raising.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize payout gateway.

        Args:
            base_url: Provider API base URL. Defaults to config value.
            api_key: Provider API key. Defaults to config value.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        settings = get_settings()
        self.base_url = base_url or settings.payout_api_url
        self.api_key = api_key or settings.payout_api_key
        self.reference_prefix = settings.payout_reference_prefix
        self.enabled = bool(self.base_url and self.api_key)
        self.breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60.0, name="payout")
        self.client = httpx.AsyncClient(
            base_url=self.base_url or "http://payout.invalid",
            timeout=timeout or settings.payout_timeout_seconds,
            transport=transport,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "X-API-KEY": self.api_key or "",
                "User-Agent": "flowpay/0.1.0",
            },
        )

        if not self.enabled:
            logger.warning(
                "Payout gateway DISABLED - missing API URL or key. Off-ramp intents will fail."
            )

    async def __aenter__(self) -> "PayoutGateway":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        reraise=True,
    )
    async def _post(self, endpoint: str, json: dict[str, Any]) -> httpx.Response:
        """Send a payout request, retrying only when it never left this host.

        Read and write timeouts are not retried: the provider may already have
        the payout, and the reference is shared by every run of an intent.
        """
        logger.debug(f"POST {endpoint}")
        return await self.client.post(endpoint, json=json)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def _get(self, endpoint: str, params: dict[str, Any]) -> httpx.Response:
        """Send a read-only request, retrying transport-level failures."""
        logger.debug(f"GET {endpoint}")
        return await self.client.get(endpoint, params=params)

    async def payout(
        self,
        phone: str,
        country: str,
        amount_usd: Decimal,
        user_id: str,
        intent_id: str,
    ) -> PayoutResult:
        """Send a mobile-money payout."""
        body = {
            "payouts": [
                {
                    "phoneNumber": phone,
                    "valueInUSD": float(amount_usd),
                    "country": country,
                    "reference": f"{self.reference_prefix}-{intent_id}",
                    "meta": {"userId": user_id, "intentId": intent_id},
                }
            ]
        }
        return await self._submit("/payouts/mobile-money", body, intent_id=intent_id)

    async def bank_payout(
        self,
        account_number: str,
        bank_code: str,
        country: str,
        amount_usd: Decimal,
        user_id: str,
        intent_id: str,
    ) -> PayoutResult:
        """Send a bank-transfer payout."""
        body = {
            "payouts": [
                {
                    "accountNumber": account_number,
                    "bankCode": bank_code,
                    "valueInUSD": float(amount_usd),
                    "country": country,
                    "reference": f"{self.reference_prefix}-{intent_id}",
                    "meta": {"userId": user_id, "intentId": intent_id},
                }
            ]
        }
        return await self._submit("/payouts/bank", body, intent_id=intent_id)

    async def payout_status(self, payout_id: str) -> PayoutResult:
        """Look up the provider-side status of a previous payout."""
        if not self.enabled:
            return PayoutResult.failed("Payout provider is not configured")
        try:
            response = await self._get("/payouts/status", params={"id": payout_id})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Payout status lookup failed for {payout_id}: {e}")
            return PayoutResult.failed(str(e))
        return self._parse(data, default_error="Status lookup failed")

    async def _submit(self, endpoint: str, body: dict[str, Any], intent_id: str) -> PayoutResult:
        if not self.enabled:
            return PayoutResult.failed("Payout provider is not configured")
        if self.breaker.is_open:
            return PayoutResult.failed("Payout provider temporarily unavailable")

        try:
            response = await self._post(endpoint, json=body)
        except httpx.HTTPError as e:
            self.breaker.record_failure()
            logger.error(
                f"Payout request failed: {e}",
                extra={"intent_id": intent_id, "endpoint": endpoint},
            )
            return PayoutResult.failed(str(e) or e.__class__.__name__)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error:
            if response.status_code >= 500:
                self.breaker.record_failure()
            error = data.get("error") if isinstance(data, dict) else None
            logger.error(
                f"Payout rejected with HTTP {response.status_code}",
                extra={"intent_id": intent_id, "endpoint": endpoint, "error": error},
            )
            return PayoutResult.failed(error or f"HTTP {response.status_code}", raw=data if isinstance(data, dict) else {})

        self.breaker.record_success()
        result = self._parse(data, default_error="Payout failed")
        logger.info(
            f"Payout {'accepted' if result.success else 'rejected'} for intent {intent_id[:8]}",
            extra={
                "intent_id": intent_id,
                "payout_id": result.payout_id,
                "provider_status": result.provider_status,
                "error": result.error,
            },
        )
        return result

    @staticmethod
    def _parse(data: Any, default_error: str) -> PayoutResult:
        if not isinstance(data, dict):
            return PayoutResult.failed(default_error)
        if data.get("status") == "success":
            payload = data.get("data") or {}
            return PayoutResult(
                success=True,
                payout_id=str(payload["id"]) if payload.get("id") is not None else None,
                provider_status=payload.get("status"),
                raw=data,
            )
        return PayoutResult.failed(data.get("error") or default_error, raw=data)
