"""
Address Resolution

The fallback address is used for every line that was not given a
per-destination address during checkout. Resolution order:

1. the requested (billing) address, if it is one of the candidates
2. the candidate flagged as default
3. any candidate on file
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from settlement.database.models import Address
from settlement.errors import NotFoundError, ValidationError


@dataclass(frozen=True)
class AddressFields:
    """Full postal fields submitted for a new destination"""
    first_name: str
    last_name: str
    postal_code: str
    city: str
    pref_code: Optional[int] = None
    pref: Optional[str] = None
    ward: Optional[str] = None
    address2: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None

    def validate(self) -> None:
        for name in ("first_name", "last_name", "postal_code", "city"):
            if not (getattr(self, name) or "").strip():
                raise ValidationError(f"Address field '{name}' is required")

    def to_model(self, customer_key: Optional[int]) -> Address:
        return Address(
            customer_key=customer_key,
            first_name=self.first_name.strip(),
            last_name=self.last_name.strip(),
            postal_code=self.postal_code.strip(),
            city=self.city.strip(),
            pref_code=self.pref_code,
            pref=self.pref,
            ward=self.ward,
            address2=self.address2,
            phone_number=self.phone_number,
            email=self.email,
            default_address=False,
        )


def resolve_fallback_address(
    requested_key: Optional[int],
    addresses: Sequence[Address],
    owner: Optional[int] = None,
) -> Address:
    """
    Pick the fallback address from the candidates.

    Args:
        requested_key: Caller-supplied billing address key, if any
        addresses: Candidate addresses (the customer's, or a guest's destinations)
        owner: Customer key, only used in the error

    Raises:
        NotFoundError: If there is no candidate at all
    """
    if not addresses:
        raise NotFoundError("Address", f"customer {owner}" if owner else "guest checkout")

    if requested_key is not None:
        for address in addresses:
            if address.address_key == requested_key:
                return address

    for address in addresses:
        if address.default_address:
            return address

    return addresses[0]
