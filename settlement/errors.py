"""
Settlement Error Taxonomy

Every failure raised by the settlement engines derives from SettlementError and
carries the HTTP status the API layer answers with.
"""

from typing import Any, Dict, Optional


class SettlementError(Exception):
    """Base exception for all settlement errors."""

    status_code = 500
    error_type = "settlement_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error_type, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(SettlementError):
    """Raised when a request is malformed; rejected before any external call."""

    status_code = 400
    error_type = "validation_error"


class AuthorizationError(SettlementError):
    """Raised when the caller cannot be identified or does not own the resource."""

    status_code = 401
    error_type = "authorization_error"


class NotFoundError(SettlementError):
    """Raised when a referenced purchase, intent, product or line item is unknown."""

    status_code = 404
    error_type = "not_found"

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            f"{resource} not found: {identifier}",
            details={"resource": resource, "identifier": str(identifier)},
        )


class SplitMismatchError(SettlementError):
    """Raised when a multi-address split produced a different number of lines than requested."""

    error_type = "split_mismatch"

    def __init__(self, line_item_key: int, expected: int, actual: int):
        self.line_item_key = line_item_key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Line item {line_item_key} split into {actual} lines, expected {expected}",
            details={"line_item_key": line_item_key, "expected": expected, "actual": actual},
        )


class UpstreamError(SettlementError):
    """Raised when an external collaborator fails, times out or rejects a request."""

    status_code = 502
    error_type = "upstream_error"

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        self.upstream_status = upstream_status
        details = {"upstream_status": upstream_status} if upstream_status else None
        super().__init__(message, details=details)


class GatewayError(UpstreamError):
    """Raised when the payment gateway call fails."""

    error_type = "gateway_error"


class ErpError(UpstreamError):
    """Raised when the ERP rejects or does not acknowledge a payload."""

    error_type = "erp_error"
