"""
External Collaborators Module
"""
from .gateway import GatewayIntent, PaymentGateway, StripeGateway
from .erp import ErpClient, HttpErpClient
from .notifications import Notifier, LogNotifier, HttpNotifier, build_notifier
from .identity import IdentityValidator, TokenIdentityValidator, hash_token

__all__ = [
    "GatewayIntent",
    "PaymentGateway",
    "StripeGateway",
    "ErpClient",
    "HttpErpClient",
    "Notifier",
    "LogNotifier",
    "HttpNotifier",
    "build_notifier",
    "IdentityValidator",
    "TokenIdentityValidator",
    "hash_token",
]
