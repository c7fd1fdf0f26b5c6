"""
Request Dependencies

Resolves the settlement environment and the caller's identity for routes.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, Request

from settlement.config import Settings, get_settings
from settlement.environment import Environment
from settlement.errors import AuthorizationError
from settlement.integrations.identity import IdentityValidator, TokenIdentityValidator


def get_environment(request: Request) -> Environment:
    """Environment built by the application lifespan."""
    environment = getattr(request.app.state, "environment", None)
    if environment is None:
        raise RuntimeError("Settlement environment not initialized")
    return environment


def get_identity_validator(env: Environment = Depends(get_environment)) -> IdentityValidator:
    return TokenIdentityValidator(env.store)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def require_customer(
    x_customer_key: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
    validator: IdentityValidator = Depends(get_identity_validator),
) -> int:
    """Validated customer key; any credential problem is a 401."""
    return await validator.validate(x_customer_key, _bearer_token(authorization))


async def optional_customer(
    x_customer_key: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
    validator: IdentityValidator = Depends(get_identity_validator),
) -> Optional[int]:
    """
    Guest checkout when no credentials are sent at all.

    Credentials that are sent must validate; a bad token never degrades to
    guest.
    """
    if x_customer_key is None and authorization is None:
        return None
    return await validator.validate(x_customer_key, _bearer_token(authorization))


async def require_erp_callback(
    x_erp_key: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.erp.callback_key.get_secret_value()
    if not x_erp_key or not hmac.compare_digest(x_erp_key.encode("utf-8"), expected.encode("utf-8")):
        raise AuthorizationError("Invalid ERP callback key")
