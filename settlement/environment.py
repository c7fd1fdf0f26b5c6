"""
Settlement Environment

Everything an operation needs to reach the outside world, resolved once and
passed explicitly to every settlement operation.
"""

from dataclasses import dataclass

import structlog

from settlement.config.settings import Settings
from settlement.database.store import SettlementStore
from settlement.integrations.erp import ErpClient, HttpErpClient
from settlement.integrations.gateway import PaymentGateway, StripeGateway
from settlement.integrations.notifications import Notifier, build_notifier

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Environment:
    """Injected collaborators and environment policy"""
    store: SettlementStore
    gateway: PaymentGateway
    erp: ErpClient
    notifier: Notifier
    currency: str = "jpy"
    minimum_charge: int = 50
    order_endpoint: str = "orders"
    order_number_prefix: str = "ORD-"
    stamp_refund_time: bool = False

    def order_number(self, purchase_key: int) -> str:
        return f"{self.order_number_prefix}{purchase_key}"

    async def aclose(self) -> None:
        """Close collaborator HTTP clients."""
        await self.gateway.aclose()
        await self.erp.aclose()
        await self.notifier.aclose()


def build_environment(settings: Settings, store: SettlementStore) -> Environment:
    """Build the production environment from settings."""
    environment = Environment(
        store=store,
        gateway=StripeGateway(
            secret_key=settings.gateway.secret_key.get_secret_value(),
            api_base=settings.gateway.api_base,
            timeout=settings.gateway.timeout_seconds,
        ),
        erp=HttpErpClient(
            base_url=settings.erp.base_url,
            api_key=settings.erp.api_key.get_secret_value(),
            api_key_header=settings.erp.api_key_header,
            timeout=settings.erp.timeout_seconds,
        ),
        notifier=build_notifier(settings.notifications),
        currency=settings.gateway.currency,
        minimum_charge=settings.gateway.minimum_charge,
        order_endpoint=settings.erp.order_endpoint,
        order_number_prefix=settings.erp.order_number_prefix,
        stamp_refund_time=settings.stamps_refund_time,
    )
    logger.info(
        "Settlement environment ready",
        environment=settings.app_env,
        currency=environment.currency,
        erp_base_url=settings.erp.base_url,
    )
    return environment
