"""
Unit Tests - Address Handling
"""
import pytest

from settlement.checkout.addresses import AddressFields, resolve_fallback_address
from settlement.database.models import Address
from settlement.errors import NotFoundError, ValidationError


def address(key, default=False) -> Address:
    return Address(
        address_key=key,
        first_name="Taro",
        last_name="Yamada",
        postal_code="150-0001",
        city="Shibuya-ku",
        default_address=default,
    )


class TestFallbackAddress:
    """Tests for resolve_fallback_address"""

    def test_requested_address_wins(self):
        candidates = [address(1), address(2, default=True), address(3)]

        assert resolve_fallback_address(3, candidates).address_key == 3

    def test_default_when_not_requested(self):
        candidates = [address(1), address(2, default=True)]

        assert resolve_fallback_address(None, candidates).address_key == 2

    def test_unknown_request_falls_back_to_default(self):
        candidates = [address(1), address(2, default=True)]

        assert resolve_fallback_address(99, candidates).address_key == 2

    def test_first_when_no_default(self):
        candidates = [address(4), address(5)]

        assert resolve_fallback_address(None, candidates).address_key == 4

    def test_no_candidates(self):
        with pytest.raises(NotFoundError):
            resolve_fallback_address(None, [], owner=1)


class TestAddressFields:
    """Tests for submitted destination fields"""

    def test_required_fields(self):
        fields = AddressFields(first_name="Jiro", last_name="", postal_code="060-0001", city="Sapporo")

        with pytest.raises(ValidationError):
            fields.validate()

    def test_to_model_strips_and_keeps_owner(self):
        fields = AddressFields(first_name=" Jiro ", last_name="Sato", postal_code="060-0001", city="Sapporo")

        model = fields.to_model(None)

        assert model.customer_key is None
        assert model.first_name == "Jiro"
        assert model.full_name == "Sato Jiro"
