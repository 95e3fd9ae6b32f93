"""
SQLAlchemy ORM schema for the payment ledger.

Cash receipts, prepaid placeholders and the credit balance share the
`payment_reports` table through single-table inheritance on `kind`, so each is
its own mapped class while the storage stays one table.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import (
    Column, Date, DateTime, ForeignKey, Index, Numeric, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship


# Declarative base for all models
Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def Money():
    return Numeric(14, 2)


def Rate():
    return Numeric(9, 4)


class TimestampMixin:
    """Mixin for automatic timestamp tracking"""
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class BaseModel:
    """Base model with common functionality"""

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, Decimal):
                value = float(value)
            elif hasattr(value, "isoformat"):
                value = value.isoformat()
            result[column.name] = value
        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={getattr(self, 'id', None)!r})>"


# ============================================================================
# Property / Unit / Tenant (maintained by the CRUD service, read here)
# ============================================================================


class Property(Base, BaseModel, TimestampMixin):
    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    manager_id = Column(String(36), index=True, comment="User id of the managing agent")
    commission_fee = Column(Rate(), comment="Percent (10 = 10%) or decimal (0.1)")

    units = relationship("Unit", back_populates="property")


class Unit(Base, BaseModel, TimestampMixin):
    __tablename__ = "units"

    id = Column(String(36), primary_key=True, default=new_id)
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    label = Column(String(50))
    size_sq_ft = Column(Numeric(12, 2))

    property = relationship("Property", back_populates="units")
    tenants = relationship("Tenant", back_populates="unit")


class Tenant(Base, BaseModel, TimestampMixin):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=new_id)
    full_name = Column(String(255), nullable=False)
    unit_id = Column(String(36), ForeignKey("units.id"), index=True)
    rent = Column(Money(), nullable=False)
    escalation_rate = Column(Rate())
    escalation_frequency = Column(String(20), comment="ANNUALLY | BI_ANNUALLY")
    rent_start = Column(Date)
    payment_policy = Column(String(20), nullable=False, default="MONTHLY")
    vat_type = Column(String(20), nullable=False, default="NOT_APPLICABLE")
    vat_rate = Column(Rate())

    unit = relationship("Unit", back_populates="tenants")
    service_charge = relationship("ServiceCharge", back_populates="tenant", uselist=False)


class ServiceCharge(Base, BaseModel, TimestampMixin):
    __tablename__ = "service_charges"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True)
    type = Column(String(20), nullable=False, comment="FIXED | PERCENTAGE | PER_SQ_FT")
    fixed_amount = Column(Money())
    percentage = Column(Rate())
    per_sq_ft_rate = Column(Rate())

    tenant = relationship("Tenant", back_populates="service_charge")


# ============================================================================
# Invoices
# ============================================================================


class Invoice(Base, BaseModel, TimestampMixin):
    """Rent invoice. Invariant: balance == total_due - amount_paid >= 0."""
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_number = Column(String(40), nullable=False, unique=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_report_id = Column(String(36), ForeignKey("payment_reports.id", ondelete="SET NULL"))
    issue_date = Column(DateTime, default=utcnow, nullable=False)
    due_date = Column(Date, nullable=False)
    payment_period = Column(String(40), nullable=False, comment="Period key, e.g. 'October 2026'")
    payment_policy = Column(String(20))
    rent = Column(Money(), nullable=False)
    service_charge = Column(Money(), nullable=False, default=0)
    vat = Column(Money(), nullable=False, default=0)
    total_due = Column(Money(), nullable=False)
    amount_paid = Column(Money(), nullable=False, default=0)
    balance = Column(Money(), nullable=False)
    status = Column(String(20), nullable=False, default="UNPAID", index=True)
    notes = Column(Text)

    __table_args__ = (
        Index("ix_invoices_tenant_period", "tenant_id", "payment_period"),
    )


class BillInvoice(Base, BaseModel, TimestampMixin):
    """Utility bill invoice, issued by the billing service and read for arrears."""
    __tablename__ = "bill_invoices"

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_number = Column(String(40), nullable=False, unique=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    bill_type = Column(String(30), nullable=False)
    due_date = Column(Date, nullable=False)
    grand_total = Column(Money(), nullable=False)
    amount_paid = Column(Money(), nullable=False, default=0)
    balance = Column(Money(), nullable=False)
    status = Column(String(20), nullable=False, default="UNPAID", index=True)


# ============================================================================
# Payment records
# ============================================================================


class PaymentRecord(Base, BaseModel, TimestampMixin):
    """Common storage for cash entries, prepaid placeholders and credit balances."""
    __tablename__ = "payment_reports"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    amount_paid = Column(Money(), nullable=False, default=0)
    credit_used = Column(Money(), nullable=False, default=0)
    total_due = Column(Money(), nullable=False, default=0)
    arrears = Column(Money(), nullable=False, default=0)
    payment_period = Column(Date, comment="Start of the period the record belongs to")
    date_paid = Column(DateTime)
    notes = Column(Text)
    receipt_url = Column(String(500))
    source_entry_id = Column(String(36), comment="Cash entry that produced a prepaid record")

    __mapper_args__ = {"polymorphic_on": kind}
    __table_args__ = (
        Index(
            "uq_payment_reports_credit_per_tenant", "tenant_id",
            unique=True,
            postgresql_where=(status == "CREDIT"),
            sqlite_where=(status == "CREDIT"),
        ),
        Index("ix_payment_reports_tenant_period", "tenant_id", "payment_period"),
    )


class PaymentLedgerEntry(PaymentRecord):
    """A real cash receipt (status PAID | PARTIAL | UNPAID)."""
    __mapper_args__ = {"polymorphic_identity": "payment"}

    invoices = relationship("Invoice", primaryjoin="PaymentLedgerEntry.id == foreign(Invoice.payment_report_id)", viewonly=True)


class PrepaidEntry(PaymentRecord):
    """A future period settled in advance by an overpayment."""
    __mapper_args__ = {"polymorphic_identity": "prepaid"}


class CreditBalance(PaymentRecord):
    """The tenant's carried overpayment; `amount_paid` holds the balance."""
    __mapper_args__ = {"polymorphic_identity": "credit"}


class Income(Base, BaseModel):
    """Append-only record of cash received."""
    __tablename__ = "incomes"

    id = Column(String(36), primary_key=True, default=new_id)
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="SET NULL"), index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="SET NULL"), index=True)
    payment_report_id = Column(String(36), ForeignKey("payment_reports.id", ondelete="SET NULL"))
    amount = Column(Money(), nullable=False)
    frequency = Column(String(20), nullable=False, default="MONTHLY")
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ============================================================================
# Commissions
# ============================================================================


class ManagerCommission(Base, BaseModel, TimestampMixin):
    """One row per manager, property and calendar month."""
    __tablename__ = "manager_commissions"

    id = Column(String(36), primary_key=True, default=new_id)
    manager_id = Column(String(36), nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)
    commission_fee = Column(Rate(), nullable=False)
    income_amount = Column(Money(), nullable=False, default=0, comment="VAT-exclusive base")
    original_income_amount = Column(Money(), nullable=False, default=0, comment="Raw cash received")
    commission_amount = Column(Money(), nullable=False, default=0)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    vat_type = Column(String(20), nullable=False, default="NOT_APPLICABLE")
    vat_rate = Column(Rate(), nullable=False, default=0)
    paid_date = Column(DateTime)
    notes = Column(Text)

    property = relationship("Property")
    invoice = relationship("CommissionInvoice", back_populates="commission", uselist=False)

    __table_args__ = (
        UniqueConstraint("manager_id", "property_id", "period_start", "period_end",
                         name="uq_manager_commissions_period"),
    )


class CommissionInvoice(Base, BaseModel, TimestampMixin):
    """Invoice a manager raises against a commission; at most one per commission."""
    __tablename__ = "commission_invoices"

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_number = Column(String(40), nullable=False, unique=True)
    invoice_date = Column(DateTime, default=utcnow, nullable=False)
    commission_id = Column(String(36), ForeignKey("manager_commissions.id", ondelete="CASCADE"),
                           nullable=False, unique=True)
    property_name = Column(String(200), nullable=False, default="")
    reference = Column(String(200))
    description = Column(Text, nullable=False)
    collection_amount = Column(Money(), nullable=False)
    commission_rate = Column(Rate(), nullable=False)
    commission_amount = Column(Money(), nullable=False)
    vat_type = Column(String(20), nullable=False, default="NOT_APPLICABLE")
    vat_rate = Column(Rate(), nullable=False, default=0)
    vat_amount = Column(Money(), nullable=False, default=0)
    total_amount = Column(Money(), nullable=False)
    bank_name = Column(String(120), nullable=False)
    account_name = Column(String(120), nullable=False)
    account_number = Column(String(60), nullable=False)
    branch = Column(String(120))
    bank_code = Column(String(30))
    swift_code = Column(String(30))
    currency = Column(String(3), nullable=False, default="KES")
    document_url = Column(String(500))

    commission = relationship("ManagerCommission", back_populates="invoice")
