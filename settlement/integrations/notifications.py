"""
Order Confirmation Notifications

Fire-and-forget from the pipeline's point of view: callers log failures
instead of escalating them.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import httpx
import structlog

from settlement.config.settings import NotificationSettings
from settlement.database.models import LineItem, Product, Purchase
from settlement.errors import UpstreamError
from settlement.pricing.engine import line_total

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    async def send_order_confirmation(
        self,
        email: str,
        purchase: Purchase,
        lines: Sequence[LineItem],
        products: Mapping[int, Product],
    ) -> None:
        ...

    async def aclose(self) -> None:
        ...


def build_confirmation_message(
    email: str,
    purchase: Purchase,
    lines: Sequence[LineItem],
    products: Mapping[int, Product],
) -> Dict[str, Any]:
    """Render-agnostic message body handed to the messaging collaborator."""
    items: List[Dict[str, Any]] = []
    for line in lines:
        product = products.get(line.product_key)
        items.append({
            "line_item_key": line.line_item_key,
            "product": product.title if product else None,
            "quantity": line.quantity,
            "line_total": line_total(line),
        })
    return {
        "to": email,
        "template": "order_confirmation",
        "purchase_key": purchase.purchase_key,
        "amount": purchase.amount,
        "discount": purchase.coupon_discount,
        "payable": purchase.payable,
        "items": items,
    }


class LogNotifier:
    """Development notifier: records the message in the log."""

    async def send_order_confirmation(self, email, purchase, lines, products) -> None:
        message = build_confirmation_message(email, purchase, lines, products)
        logger.info(
            "Order confirmation",
            purchase_key=message["purchase_key"],
            payable=message["payable"],
            item_count=len(message["items"]),
        )

    async def aclose(self) -> None:
        return None


class HttpNotifier:
    """Posts confirmation messages to a mail relay as JSON."""

    def __init__(
        self,
        url: str,
        sender: str,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.url = url
        self.sender = sender
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send_order_confirmation(self, email, purchase, lines, products) -> None:
        message = build_confirmation_message(email, purchase, lines, products)
        message["from"] = self.sender
        try:
            response = await self._client.post(self.url, json=message)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamError(f"Mail relay failed: {e}") from e


def build_notifier(settings: NotificationSettings) -> Notifier:
    """Pick the notifier backend configured for this deployment."""
    if settings.backend == "http":
        if not settings.url:
            raise ValueError("NOTIFY_URL is required for the http notification backend")
        return HttpNotifier(
            url=settings.url,
            sender=settings.sender,
            api_key=settings.api_key.get_secret_value() if settings.api_key else None,
            timeout=settings.timeout_seconds,
        )
    return LogNotifier()
