"""
Error Taxonomy for the Payment Ledger

Every failure the core raises is a LedgerError carrying the HTTP status the
adapters should answer with and the numeric quantities involved, so callers
can correct the request and retry.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Base class for all ledger failures."""

    http_status = 500
    status = "failed"
    retryable = False

    def __init__(self, message: str, details: dict | None = None, **quantities):
        super().__init__(message)
        self.message = message
        self.details = {**(details or {}), **quantities}

    def to_dict(self) -> dict:
        body = {"error": self.message, "status": self.status}
        if self.details:
            body["details"] = {
                key: float(value) if isinstance(value, Decimal) else value
                for key, value in self.details.items()
            }
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(LedgerError, ValueError):
    """Missing or invalid amount, date or id. Nothing was mutated."""

    http_status = 400
    status = "validation_failed"


class NoInvoiceToAllocate(ValidationError):
    """Tenant has no outstanding invoice and synthesis was not requested."""


class NotFound(LedgerError, LookupError):
    http_status = 404
    status = "not_found"


class AccessDenied(LedgerError):
    http_status = 403
    status = "access_denied"


class ConflictError(LedgerError):
    """Overpayment rejected, or a concurrent writer won a uniqueness race."""

    http_status = 409
    status = "conflict"


class TransactionTimeout(LedgerError):
    """Lock contention or a run exceeding its deadline. Safe to retry as-is."""

    http_status = 503
    status = "timeout"
    retryable = True


class StorageFailure(LedgerError):
    """Post-commit receipt rendering or upload failed."""

    http_status = 502
    status = "storage_failed"
