"""Payment processor clients.

Amounts are in minor currency units; one token is one minor unit.
A ``False`` result is a decline. An unreachable processor raises
ExternalServiceError so the caller can retry later.
"""
import asyncio
import logging
from typing import Optional, Protocol
from uuid import UUID

import aiohttp
from aiohttp import ClientError, ClientTimeout

from backend.config import get_settings
from backend.utils.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class PaymentProcessor(Protocol):

    async def charge(self, user_id: UUID, amount_minor: int) -> bool: ...

    async def payout(self, user_id: UUID, amount_minor: int) -> bool: ...


class SandboxPaymentProcessor:
    """In-process processor for development and tests."""

    def __init__(self, succeed: bool = True, reachable: bool = True):
        self.succeed = succeed
        self.reachable = reachable
        self.charges: list[tuple[UUID, int]] = []
        self.payouts: list[tuple[UUID, int]] = []

    async def charge(self, user_id: UUID, amount_minor: int) -> bool:
        if not self.reachable:
            raise ExternalServiceError("Payment processor unreachable")
        if self.succeed:
            self.charges.append((user_id, amount_minor))
        return self.succeed

    async def payout(self, user_id: UUID, amount_minor: int) -> bool:
        if not self.reachable:
            raise ExternalServiceError("Payment processor unreachable")
        if self.succeed:
            self.payouts.append((user_id, amount_minor))
        return self.succeed


class HttpPaymentProcessor:
    """
    Client for the card processor gateway.

    POSTs ``{"user_id", "amount"}`` to ``/charges`` and ``/payouts`` and reads
    ``{"success": bool}`` back.
    """

    def __init__(self, base_url: str, api_key: str = "", timeout_seconds: int = 20):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=headers)
            logger.debug("Created new aiohttp session for payment processor")

    async def close(self):
        """Close the underlying aiohttp client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _make_request(self, endpoint: str, user_id: UUID, amount_minor: int) -> bool:
        await self._ensure_session()
        url = f"{self.base_url}{endpoint}"
        payload = {"user_id": str(user_id), "amount": amount_minor}

        try:
            async with self._session.post(url, json=payload) as response:
                if response.status >= 500:
                    error_text = await response.text()
                    logger.error(f"Payment processor error {response.status} on {endpoint}: {error_text}")
                    raise ExternalServiceError(f"Payment processor error: {response.status}")
                if response.status != 200:
                    logger.warning(f"Payment processor rejected {endpoint} with {response.status}")
                    return False
                data = await response.json()
                return bool(data.get("success", False))
        except asyncio.TimeoutError as e:
            logger.error(f"Payment processor timeout for {endpoint}")
            raise ExternalServiceError("Payment processor timeout - please try again") from e
        except ClientError as e:
            logger.error(f"Payment processor client error for {endpoint}: {e}")
            raise ExternalServiceError("Payment processor unavailable - please try again") from e

    async def charge(self, user_id: UUID, amount_minor: int) -> bool:
        return await self._make_request("/charges", user_id, amount_minor)

    async def payout(self, user_id: UUID, amount_minor: int) -> bool:
        return await self._make_request("/payouts", user_id, amount_minor)


_processor: PaymentProcessor | None = None


def get_payment_processor() -> PaymentProcessor:
    global _processor
    if _processor is None:
        settings = get_settings()
        if settings.payment_processor_mode == "http":
            _processor = HttpPaymentProcessor(
                settings.payment_processor_url,
                settings.payment_processor_api_key,
                settings.external_timeout_seconds,
            )
        else:
            _processor = SandboxPaymentProcessor()
    return _processor


async def close_payment_processor() -> None:
    global _processor
    if isinstance(_processor, HttpPaymentProcessor):
        await _processor.close()
    _processor = None
