"""
Identity Validation

Turns caller-asserted credentials into a validated customer key. Any failure
is an AuthorizationError; identity is never inferred.
"""

import hashlib
import re
from typing import Optional, Protocol

from settlement.database import queries
from settlement.database.store import SettlementStore
from settlement.errors import AuthorizationError

TOKEN_PATTERN = re.compile(r"^[0-9a-f]{96}$", re.IGNORECASE)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.lower().encode("utf-8")).hexdigest()


class IdentityValidator(Protocol):
    async def validate(self, customer_key: Optional[str], token: Optional[str]) -> int:
        ...


class TokenIdentityValidator:
    """Checks a (customer key, session token) pair against the customer table."""

    def __init__(self, store: SettlementStore):
        self.store = store

    async def validate(self, customer_key: Optional[str], token: Optional[str]) -> int:
        if not customer_key or not token:
            raise AuthorizationError("Missing customer credentials")
        try:
            key = int(customer_key)
        except (TypeError, ValueError):
            raise AuthorizationError("Malformed customer key")
        if key <= 0:
            raise AuthorizationError("Malformed customer key")
        if not TOKEN_PATTERN.match(token):
            raise AuthorizationError("Malformed token")

        async with self.store.transaction() as session:
            customer = await queries.get_customer_by_token_hash(session, key, hash_token(token))
        if customer is None:
            raise AuthorizationError("Unknown customer credentials")
        return customer.customer_key
