"""
Typed errors raised by the settlement core.

Each error carries the HTTP status the API surfaces it with and a stable code
for logs and metrics.
"""


class SettlementError(Exception):
    """Base exception for settlement pipeline errors."""

    status_code = 500
    code = "settlement_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SettlementError):
    """Raised when request input is invalid."""

    status_code = 400
    code = "validation_error"


class InsufficientBalance(ValidationError):
    """Raised when a withdrawal exceeds the affiliate's available balance."""

    code = "insufficient_balance"


class Unauthorized(SettlementError):
    status_code = 401
    code = "unauthorized"


class Forbidden(SettlementError):
    status_code = 403
    code = "forbidden"


class NotFound(SettlementError):
    status_code = 404
    code = "not_found"


class Conflict(SettlementError):
    """Raised when a duplicate processing attempt is detected."""

    status_code = 409
    code = "conflict"


class ConfigurationError(SettlementError):
    """Raised when required platform setup is missing (e.g. no admin user)."""

    status_code = 500
    code = "configuration_error"


class UpstreamFailure(SettlementError):
    """Raised when the payout gateway or the ledger store is unavailable."""

    status_code = 502
    code = "upstream_failure"
