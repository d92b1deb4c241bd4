"""
STK push client.

The customer-facing flow never talks to the mobile-money API directly. It
posts {phone, amount, reference} to a serverless proxy function, which
holds the gateway credentials and relays the gateway's JSON answer.
"""

import logging
import math
from typing import Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from sanaalink.config import settings
from sanaalink.errors import GatewayUnavailable
from sanaalink.schemas.payment_schema import StkPushRequest, StkPushResponse

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    async def initiate_push(self, phone: str, amount: float, reference: str) -> StkPushResponse: ...


class StkPushGateway:
    """Calls the mpesa-stk-push proxy function over HTTP."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url or settings.payment.stk_push_url
        self.api_key = api_key if api_key is not None else settings.payment.stk_push_api_key
        self.timeout = timeout or settings.payment.timeout_sec
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    async def initiate_push(self, phone: str, amount: float, reference: str) -> StkPushResponse:
        """
        Ask the gateway to prompt ``phone`` for ``amount``.

        The gateway only takes whole shillings, so the amount is rounded up.

        Returns:
            The gateway response; check ``accepted`` before waiting for payment.

        Raises:
            GatewayUnavailable: on timeout, transport failure, an error
                answer from the proxy, or a body that is not a gateway response.
        """
        payload = StkPushRequest(phone=phone, amount=math.ceil(amount), reference=reference)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url, json=payload.model_dump(), headers=self._headers()
                )
        except httpx.TimeoutException:
            logger.warning("STK push timed out after %.1fs (ref=%s)", self.timeout, reference)
            raise GatewayUnavailable("The payment request timed out. Please try again.") from None
        except httpx.HTTPError as exc:
            logger.warning("STK push transport error (ref=%s): %s", reference, exc)
            raise GatewayUnavailable("Could not reach the payment service.") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.is_error or "error" in data:
            message = data.get("error") or f"Payment service returned HTTP {response.status_code}"
            logger.warning("STK push proxy error (ref=%s): %s", reference, message)
            raise GatewayUnavailable(str(message))

        try:
            return StkPushResponse.model_validate(data)
        except PydanticValidationError as exc:
            logger.warning("Unexpected STK push response (ref=%s): %s", reference, data)
            raise GatewayUnavailable("Unexpected response from the payment service.") from exc
