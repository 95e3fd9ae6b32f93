"""
Input Validation for the Payment Ledger

Validates requests before any transaction is opened.
Raises ValidationError with clear messages for any constraint violations.
"""

from decimal import Decimal

from .calculators.charges import quantize_money
from .errors import ValidationError
from .models import PaymentRequest
from .periods import parse_period

INCOME_FREQUENCIES = ("MONTHLY", "QUARTERLY", "ANNUAL", "ONE_OFF")


class InputValidator:
    """Validates payment and income input according to business rules."""

    def validate(self, request: PaymentRequest) -> None:
        """
        Run all validations. Raises ValidationError if any check fails.
        """
        self._validate_tenant(request.tenant_id)
        self._validate_amount(request)
        self._validate_invoice_ids(request)
        self._validate_period(request)

    def validate_income(self, amount: Decimal, property_id: str | None, frequency: str) -> None:
        if not property_id:
            raise ValidationError("property_id is required")
        if amount <= 0:
            raise ValidationError(f"amount must be positive, got: {amount}", amount=amount)
        if frequency not in INCOME_FREQUENCIES:
            raise ValidationError(
                f"Invalid frequency: {frequency}. Must be one of {', '.join(INCOME_FREQUENCIES)}"
            )

    def _validate_tenant(self, tenant_id) -> None:
        if not tenant_id or not isinstance(tenant_id, str):
            raise ValidationError("tenant_id is required")

    def _validate_amount(self, request: PaymentRequest) -> None:
        """Cash may be zero (a credit-only payment) but never negative."""
        if request.amount_paid < 0:
            raise ValidationError(
                f"amount_paid cannot be negative, got: {request.amount_paid}",
                amount_paid=request.amount_paid,
            )
        if request.amount_paid != quantize_money(request.amount_paid):
            raise ValidationError(
                f"amount_paid cannot have more than 2 decimal places, got: {request.amount_paid}",
                amount_paid=request.amount_paid,
            )

    def _validate_invoice_ids(self, request: PaymentRequest) -> None:
        for invoice_id in request.invoice_ids:
            if not invoice_id or not isinstance(invoice_id, str):
                raise ValidationError(f"Invalid invoice id: {invoice_id!r}")

    def _validate_period(self, request: PaymentRequest) -> None:
        # Policy only affects alignment; this just rejects unparseable input early
        if request.payment_period is not None:
            parse_period(request.payment_period, "MONTHLY")

    @staticmethod
    def validate_page(page=1, limit=10, max_limit: int = 100) -> tuple[int, int]:
        """Parse 1-based page and page size from query input."""
        try:
            page = int(page if page is not None else 1)
            limit = int(limit if limit is not None else 10)
        except (TypeError, ValueError):
            raise ValidationError(f"page and limit must be integers, got: {page!r}, {limit!r}") from None
        if page < 1:
            raise ValidationError(f"page must be at least 1, got: {page}")
        if not 1 <= limit <= max_limit:
            raise ValidationError(f"limit must be between 1 and {max_limit}, got: {limit}")
        return page, limit
