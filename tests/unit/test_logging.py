"""
Unit Tests - Logging
"""
from settlement.config.logging import REDACTED, redact_sensitive


class TestRedaction:
    """Tests for masking payment secrets in log events"""

    def test_sensitive_keys_masked(self):
        event = redact_sensitive(None, "info", {
            "event": "Payment intent created",
            "client_secret": "pi_1_secret_abc",
            "authorization": "Bearer 0123",
            "payment_intent_id": "pi_1",
        })

        assert event["client_secret"] == REDACTED
        assert event["authorization"] == REDACTED
        assert event["payment_intent_id"] == "pi_1"

    def test_missing_values_left_alone(self):
        event = redact_sensitive(None, "info", {"event": "Coupon cleared", "coupon_code": None})

        assert event["coupon_code"] is None
