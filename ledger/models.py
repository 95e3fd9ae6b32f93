"""
Domain Models for the Payment Ledger

These dataclasses are the type-safe view of tenants, invoices and the results
of each reconciliation step. All monetary values use Decimal for precision.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from .errors import ValidationError


class PaymentPolicy(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUAL = "ANNUAL"


class VatType(str, Enum):
    INCLUSIVE = "INCLUSIVE"
    EXCLUSIVE = "EXCLUSIVE"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class EscalationFrequency(str, Enum):
    ANNUALLY = "ANNUALLY"
    BI_ANNUALLY = "BI_ANNUALLY"


class ServiceChargeType(str, Enum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"
    PER_SQ_FT = "PER_SQ_FT"


class InvoiceStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PAID = "PAID"
    PARTIAL = "PARTIAL"
    UNPAID = "UNPAID"
    CREDIT = "CREDIT"
    PREPAID = "PREPAID"


class CommissionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


OUTSTANDING_STATUSES = (InvoiceStatus.UNPAID, InvoiceStatus.PARTIAL, InvoiceStatus.OVERDUE)


def to_decimal(value, name: str = "value") -> Decimal:
    """Parse a money/rate input, raising ValidationError for anything non-numeric."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number, got: {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number, got: {value!r}") from None
    if not result.is_finite():
        raise ValidationError(f"{name} must be a finite number, got: {value!r}")
    return result


def _optional_decimal(value) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


def _pick(data: dict, *keys, default=None):
    """First present key wins; lets API callers use snake_case or camelCase."""
    for key in keys:
        if key in data:
            return data[key]
    return default


# =============================================================================
# INPUT MODELS
# =============================================================================


@dataclass
class ServiceChargeTerms:
    """A tenant's service-charge configuration."""

    type: ServiceChargeType
    fixed_amount: Decimal | None = None
    percentage: Decimal | None = None
    per_sq_ft_rate: Decimal | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ServiceChargeTerms":
        return cls(
            type=ServiceChargeType(data["type"]),
            fixed_amount=_optional_decimal(_pick(data, "fixed_amount", "fixedAmount")),
            percentage=_optional_decimal(data.get("percentage")),
            per_sq_ft_rate=_optional_decimal(_pick(data, "per_sq_ft_rate", "perSqFtRate")),
        )


@dataclass
class TenantTerms:
    """Everything the calculators need to know about a tenant and its property."""

    tenant_id: str
    rent: Decimal
    payment_policy: PaymentPolicy = PaymentPolicy.MONTHLY
    vat_type: VatType = VatType.NOT_APPLICABLE
    vat_rate: Decimal | None = None
    rent_start: date | None = None
    escalation_rate: Decimal | None = None
    escalation_frequency: str | None = None
    unit_size_sq_ft: Decimal = Decimal("0")
    service_charge: ServiceChargeTerms | None = None
    property_id: str | None = None
    manager_id: str | None = None
    commission_fee: Decimal | None = None
    full_name: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "TenantTerms":
        service_charge = _pick(data, "service_charge", "serviceCharge")
        rent_start = _pick(data, "rent_start", "rentStart")
        return cls(
            tenant_id=_pick(data, "tenant_id", "id"),
            rent=Decimal(str(data["rent"])),
            payment_policy=PaymentPolicy(_pick(data, "payment_policy", "paymentPolicy", default="MONTHLY")),
            vat_type=VatType(_pick(data, "vat_type", "vatType", default="NOT_APPLICABLE")),
            vat_rate=_optional_decimal(_pick(data, "vat_rate", "vatRate")),
            rent_start=date.fromisoformat(rent_start) if isinstance(rent_start, str) else rent_start,
            escalation_rate=_optional_decimal(_pick(data, "escalation_rate", "escalationRate")),
            escalation_frequency=_pick(data, "escalation_frequency", "escalationFrequency"),
            unit_size_sq_ft=Decimal(str(_pick(data, "unit_size_sq_ft", "sizeSqFt", default=0) or 0)),
            service_charge=ServiceChargeTerms.from_dict(service_charge) if service_charge else None,
            property_id=_pick(data, "property_id", "propertyId"),
            manager_id=_pick(data, "manager_id", "managerId"),
            commission_fee=_optional_decimal(_pick(data, "commission_fee", "commissionFee")),
            full_name=_pick(data, "full_name", "fullName", default=""),
        )


@dataclass
class OutstandingInvoice:
    """Snapshot of an invoice that can still receive money."""

    invoice_id: str
    payment_period: str
    due_date: date
    total_due: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: InvoiceStatus = InvoiceStatus.UNPAID
    invoice_number: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "OutstandingInvoice":
        total_due = Decimal(str(data["total_due"]))
        amount_paid = Decimal(str(data.get("amount_paid", 0)))
        due_date = data["due_date"]
        return cls(
            invoice_id=data["invoice_id"],
            payment_period=data.get("payment_period", ""),
            due_date=date.fromisoformat(due_date) if isinstance(due_date, str) else due_date,
            total_due=total_due,
            amount_paid=amount_paid,
            balance=Decimal(str(data.get("balance", total_due - amount_paid))),
            status=InvoiceStatus(data.get("status", "UNPAID")),
            invoice_number=data.get("invoice_number", ""),
        )


@dataclass
class PaymentOptions:
    """Switches controlling how a payment may reshape the ledger."""

    create_missing_invoices: bool = False
    update_existing_invoices: bool = True
    handle_overpayment: bool = True

    @classmethod
    def from_dict(cls, data: dict | None) -> "PaymentOptions":
        data = data or {}
        return cls(
            create_missing_invoices=bool(_pick(data, "create_missing_invoices", "createMissingInvoices", default=False)),
            update_existing_invoices=bool(_pick(data, "update_existing_invoices", "updateExistingInvoices", default=True)),
            handle_overpayment=bool(_pick(data, "handle_overpayment", "handleOverpayment", default=True)),
        )


@dataclass
class PaymentRequest:
    """One incoming tenant payment."""

    tenant_id: str
    amount_paid: Decimal
    invoice_ids: list[str] = field(default_factory=list)
    payment_period: str | date | None = None
    notes: str | None = None
    options: PaymentOptions = field(default_factory=PaymentOptions)
    paid_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentRequest":
        amount = _pick(data, "amount_paid", "amountPaid")
        if amount is None:
            raise ValidationError("amount_paid is required")
        paid_at = _pick(data, "paid_at", "datePaid")
        # Options may be nested or given at the top level of the request
        options = data.get("options")
        if options is None:
            options = data
        return cls(
            tenant_id=_pick(data, "tenant_id", "tenantId"),
            amount_paid=to_decimal(amount, "amount_paid"),
            invoice_ids=list(_pick(data, "invoice_ids", "invoiceIds", default=None) or []),
            payment_period=_pick(data, "payment_period", "paymentPeriod"),
            notes=data.get("notes"),
            options=PaymentOptions.from_dict(options),
            paid_at=datetime.fromisoformat(paid_at) if isinstance(paid_at, str) else paid_at,
        )


# =============================================================================
# OUTPUT / RESULT MODELS
# =============================================================================


@dataclass
class ExpectedCharge:
    """What a tenant should be billed for one period."""

    rent: Decimal = Decimal("0")
    service_charge: Decimal = Decimal("0")
    vat: Decimal = Decimal("0")
    total_due: Decimal = Decimal("0")
    period_start: date | None = None
    period_end: date | None = None


@dataclass
class RentScheduleEntry:
    period: int
    date: date
    rent: Decimal


@dataclass
class InvoiceAllocation:
    """The effect of one allocation on one invoice."""

    invoice_id: str
    payment_period: str
    applied: Decimal
    amount_paid: Decimal
    balance: Decimal
    status_before: InvoiceStatus
    status: InvoiceStatus
    invoice_number: str = ""


@dataclass
class AllocationResult:
    allocations: list[InvoiceAllocation] = field(default_factory=list)
    total_applied: Decimal = Decimal("0")
    remainder: Decimal = Decimal("0")


@dataclass
class CreditApplication:
    """Results of consuming the tenant's carried credit."""

    existing_credit: Decimal = Decimal("0")
    credit_used: Decimal = Decimal("0")
    credit_after: Decimal = Decimal("0")


@dataclass
class PrepaidPeriod:
    payment_period: str
    period_start: date
    amount_covered: Decimal
    entry_id: str | None = None


@dataclass
class OverpaymentDistribution:
    """Where the money beyond the considered invoices went."""

    excess: Decimal = Decimal("0")
    invoice_allocations: list[InvoiceAllocation] = field(default_factory=list)
    prepaid_periods: list[PrepaidPeriod] = field(default_factory=list)
    credit_remainder: Decimal = Decimal("0")

    @property
    def applied_to_invoices(self) -> Decimal:
        return sum((a.applied for a in self.invoice_allocations), Decimal("0"))

    @property
    def prepaid_total(self) -> Decimal:
        return sum((p.amount_covered for p in self.prepaid_periods), Decimal("0"))


@dataclass
class CommissionAccrual:
    """A manager commission delta for one payment."""

    manager_id: str
    property_id: str
    commission_fee: Decimal
    fee_rate: Decimal
    original_amount: Decimal
    income_amount: Decimal
    commission_amount: Decimal
    period_start: date
    period_end: date
    vat_type: VatType
    vat_rate: Decimal
    commission_id: str | None = None


@dataclass
class PaymentContext:
    """
    Holds all intermediate state while a payment is reconciled.
    This is the "bag" that flows through the pipeline.
    """

    request: PaymentRequest
    tenant: TenantTerms
    paid_at: datetime
    target_period_start: date
    invoices: list[OutstandingInvoice] = field(default_factory=list)
    existing_credit: Decimal = Decimal("0")
    synthesized_invoice_id: str | None = None

    available: Decimal = Decimal("0")
    total_outstanding: Decimal = Decimal("0")
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    ledger_entry_id: str | None = None

    credit: CreditApplication = field(default_factory=CreditApplication)
    allocation: AllocationResult = field(default_factory=AllocationResult)
    overpayment: OverpaymentDistribution | None = None
    income_id: str | None = None
    commission: CommissionAccrual | None = None

    @property
    def excess(self) -> Decimal:
        return max(Decimal("0"), self.available - self.total_outstanding)


@dataclass
class PaymentResult:
    """Final output of payment processing."""

    ledger_entry: dict
    updated_invoices: list
    overpayment: dict | None
    commission: dict | None
    credit_used: float
    warnings: list = field(default_factory=list)
