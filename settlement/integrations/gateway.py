"""
Payment Gateway Client

Charge intents are reservations: the gateway holds the amount until the
shopper completes payment off-system. Every call runs with a bounded timeout
and any transport failure, timeout or non-2xx answer is raised as
GatewayError; a timeout is never treated as a possible success.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog

from settlement.errors import GatewayError

logger = structlog.get_logger(__name__)

STATUS_SUCCEEDED = "succeeded"
STATUS_CREATED = "created"
STATUS_REQUIRES_ACTION = "requires_action"


@dataclass(frozen=True)
class GatewayIntent:
    """Gateway-side view of a charge intent"""
    id: str
    amount: int
    status: str
    client_secret: Optional[str] = None


class PaymentGateway(Protocol):
    """Operations the settlement pipeline needs from a payment gateway."""

    async def create_intent(self, amount: int, currency: str, metadata: Dict[str, Any]) -> GatewayIntent:
        ...

    async def update_intent(self, intent_id: str, amount: int, metadata: Dict[str, Any]) -> GatewayIntent:
        ...

    async def get_intent_status(self, intent_id: str) -> str:
        ...

    async def refund(self, intent_id: str, reason: str) -> Dict[str, Any]:
        ...

    async def aclose(self) -> None:
        ...


def _form_metadata(metadata: Dict[str, Any]) -> Dict[str, str]:
    return {f"metadata[{key}]": str(value) for key, value in metadata.items()}


class StripeGateway:
    """
    Payment intent client for a Stripe-compatible REST API.

    Example:
        gateway = StripeGateway(secret_key="sk_test_...")
        intent = await gateway.create_intent(2200, "jpy", {"purchase": "pending"})
    """

    def __init__(
        self,
        secret_key: str,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.api_base,
            headers={"Authorization": f"Bearer {secret_key}"},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            response = await self._client.request(method, path, data=data, headers=headers)
        except httpx.TimeoutException as e:
            logger.error("Gateway request timed out", method=method, path=path)
            raise GatewayError(f"Gateway timed out on {method} {path}") from e
        except httpx.HTTPError as e:
            logger.error("Gateway request failed", method=method, path=path, error=str(e))
            raise GatewayError(f"Gateway unreachable on {method} {path}: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                message = response.text
            logger.error(
                "Gateway rejected request",
                method=method,
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise GatewayError(f"Gateway rejected {method} {path}: {message}", upstream_status=response.status_code)

        return response.json()

    @staticmethod
    def _to_intent(body: Dict[str, Any]) -> GatewayIntent:
        return GatewayIntent(
            id=body["id"],
            amount=int(body["amount"]),
            status=body.get("status", STATUS_CREATED),
            client_secret=body.get("client_secret"),
        )

    async def create_intent(self, amount: int, currency: str, metadata: Dict[str, Any]) -> GatewayIntent:
        body = await self._request(
            "POST",
            "/payment_intents",
            data={"amount": amount, "currency": currency, **_form_metadata(metadata)},
        )
        intent = self._to_intent(body)
        logger.info("Gateway intent created", payment_intent_id=intent.id, amount=intent.amount)
        return intent

    async def update_intent(self, intent_id: str, amount: int, metadata: Dict[str, Any]) -> GatewayIntent:
        body = await self._request(
            "POST",
            f"/payment_intents/{intent_id}",
            data={"amount": amount, **_form_metadata(metadata)},
        )
        return self._to_intent(body)

    async def get_intent_status(self, intent_id: str) -> str:
        body = await self._request("GET", f"/payment_intents/{intent_id}")
        return body.get("status", STATUS_CREATED)

    async def refund(self, intent_id: str, reason: str) -> Dict[str, Any]:
        # One refund per intent, even if cancel is retried
        body = await self._request(
            "POST",
            "/refunds",
            data={"payment_intent": intent_id, "reason": reason},
            idempotency_key=f"refund-{intent_id}",
        )
        logger.info("Gateway refund issued", payment_intent_id=intent_id, refund_id=body.get("id"))
        return body
