"""
Ledger Repository

All reads and writes the ledger performs, against one SQLAlchemy session.
The caller owns the transaction (see SessionManager.session_scope).
"""

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import func, select, update

from ..errors import ConflictError, NotFound, ValidationError
from ..models import (
    OUTSTANDING_STATUSES, CommissionAccrual, CommissionStatus, ExpectedCharge, InvoiceAllocation,
    InvoiceStatus, OutstandingInvoice, PaymentPolicy, PaymentStatus, PrepaidPeriod,
    ServiceChargeTerms, ServiceChargeType, TenantTerms, VatType
)
from .numbering import SequenceNumberGenerator
from .schema import (
    BillInvoice, CommissionInvoice, CreditBalance, Income, Invoice, ManagerCommission,
    PaymentLedgerEntry, PaymentRecord, PrepaidEntry, Property, Tenant, Unit, new_id, utcnow
)
from .session import check_deadline
from .upsert import get_upsert_strategy


logger = logging.getLogger(__name__)

_OUTSTANDING = [status.value for status in OUTSTANDING_STATUSES]


class LedgerRepository:
    """Storage access for tenants, invoices, payment records and commissions."""

    def __init__(self, session):
        self.session = session
        self.invoice_numbers = SequenceNumberGenerator(session, Invoice.invoice_number, "INV")
        self.commission_invoice_numbers = SequenceNumberGenerator(
            session, CommissionInvoice.invoice_number, "COM-INV"
        )

    def check_deadline(self) -> None:
        check_deadline(self.session)

    # =========================================================================
    # Tenants and properties
    # =========================================================================

    def get_tenant(self, tenant_id: str, lock: bool = False) -> Tenant:
        stmt = select(Tenant).where(Tenant.id == tenant_id)
        if lock:
            stmt = stmt.with_for_update()
        tenant = self.session.execute(stmt).scalar_one_or_none()
        if tenant is None:
            raise NotFound(f"Tenant {tenant_id} not found", details={"tenant_id": tenant_id})
        return tenant

    def load_tenant_terms(self, tenant_id: str, lock: bool = False) -> TenantTerms:
        """Load a tenant with its unit, property and service charge as TenantTerms."""
        return self.to_terms(self.get_tenant(tenant_id, lock=lock))

    def get_property(self, property_id: str) -> Property:
        prop = self.session.get(Property, property_id)
        if prop is None:
            raise NotFound(f"Property {property_id} not found", details={"property_id": property_id})
        return prop

    def tenants_for_property(self, property_id: str) -> list[Tenant]:
        stmt = (
            select(Tenant)
            .join(Unit, Tenant.unit_id == Unit.id)
            .where(Unit.property_id == property_id)
            .order_by(Tenant.full_name, Tenant.id)
        )
        return list(self.session.execute(stmt).scalars())

    @staticmethod
    def to_terms(tenant: Tenant) -> TenantTerms:
        unit = tenant.unit
        prop = unit.property if unit is not None else None
        sc = tenant.service_charge

        return TenantTerms(
            tenant_id=tenant.id,
            full_name=tenant.full_name,
            rent=tenant.rent,
            payment_policy=PaymentPolicy(tenant.payment_policy or PaymentPolicy.MONTHLY.value),
            vat_type=VatType(tenant.vat_type or VatType.NOT_APPLICABLE.value),
            vat_rate=tenant.vat_rate,
            rent_start=tenant.rent_start,
            escalation_rate=tenant.escalation_rate,
            escalation_frequency=tenant.escalation_frequency,
            unit_size_sq_ft=(unit.size_sq_ft if unit is not None else None) or Decimal('0'),
            service_charge=ServiceChargeTerms(
                type=ServiceChargeType(sc.type),
                fixed_amount=sc.fixed_amount,
                percentage=sc.percentage,
                per_sq_ft_rate=sc.per_sq_ft_rate,
            ) if sc is not None else None,
            property_id=prop.id if prop is not None else None,
            manager_id=prop.manager_id if prop is not None else None,
            commission_fee=prop.commission_fee if prop is not None else None,
        )

    # =========================================================================
    # Invoices
    # =========================================================================

    def outstanding_invoices(self, tenant_id: str, lock: bool = False) -> list[OutstandingInvoice]:
        """UNPAID, PARTIAL and OVERDUE invoices with a positive balance, FIFO ordered."""
        stmt = (
            select(Invoice)
            .where(
                Invoice.tenant_id == tenant_id,
                Invoice.status.in_(_OUTSTANDING),
                Invoice.balance > 0,
            )
            .order_by(Invoice.due_date, Invoice.invoice_number, Invoice.id)
        )
        if lock:
            stmt = stmt.with_for_update()
        return [self._snapshot(row) for row in self.session.execute(stmt).scalars()]

    def invoices_by_ids(self, tenant_id: str, invoice_ids: list[str], lock: bool = False) -> list[OutstandingInvoice]:
        """
        Load exactly the named invoices.

        Every id must exist, belong to the tenant and still be open.
        """
        wanted = list(dict.fromkeys(invoice_ids))
        stmt = select(Invoice).where(Invoice.id.in_(wanted))
        if lock:
            stmt = stmt.with_for_update()
        rows = {row.id: row for row in self.session.execute(stmt).scalars()}

        missing = [invoice_id for invoice_id in wanted if invoice_id not in rows]
        if missing:
            raise NotFound(f"Invoice not found: {', '.join(missing)}", details={"invoice_ids": missing})

        for row in rows.values():
            if row.tenant_id != tenant_id:
                raise ValidationError(
                    f"Invoice {row.invoice_number} does not belong to tenant {tenant_id}",
                    details={"invoice_id": row.id, "tenant_id": tenant_id},
                )
            if row.status not in _OUTSTANDING:
                raise ValidationError(
                    f"Invoice {row.invoice_number} is {row.status} and cannot receive payments",
                    details={"invoice_id": row.id, "status": row.status},
                )

        return [self._snapshot(rows[invoice_id]) for invoice_id in wanted]

    def has_invoice_for_period(self, tenant_id: str, period_key: str) -> bool:
        stmt = (
            select(func.count(Invoice.id))
            .where(
                Invoice.tenant_id == tenant_id,
                Invoice.payment_period == period_key,
                Invoice.status != InvoiceStatus.CANCELLED.value,
            )
        )
        return self.session.execute(stmt).scalar() > 0

    def create_invoice(
        self,
        tenant: TenantTerms,
        charge: ExpectedCharge,
        period_key: str,
        due_date: date,
        notes: str | None = None
    ) -> OutstandingInvoice:
        invoice = Invoice(
            id=new_id(),
            invoice_number=self.invoice_numbers.next(),
            tenant_id=tenant.tenant_id,
            due_date=due_date,
            payment_period=period_key,
            payment_policy=tenant.payment_policy.value,
            rent=charge.rent,
            service_charge=charge.service_charge,
            vat=charge.vat,
            total_due=charge.total_due,
            amount_paid=Decimal('0'),
            balance=charge.total_due,
            status=InvoiceStatus.UNPAID.value,
            notes=notes,
        )
        self.session.add(invoice)
        self.session.flush()
        logger.info(f"Created invoice {invoice.invoice_number} for tenant {tenant.tenant_id} ({period_key})")
        return self._snapshot(invoice)

    def apply_allocations(self, allocations: list[InvoiceAllocation], ledger_entry_id: str) -> list[Invoice]:
        """
        Write allocation deltas back to their invoice rows.

        Each row must still hold the balance the allocation was computed from.
        """
        if not allocations:
            return []

        rows = {
            row.id: row for row in self.session.execute(
                select(Invoice).where(Invoice.id.in_([a.invoice_id for a in allocations]))
            ).scalars()
        }

        updated = []
        for allocation in allocations:
            row = rows[allocation.invoice_id]
            if row.balance != allocation.balance + allocation.applied:
                raise ConflictError(
                    f"Invoice {row.invoice_number} changed while the payment was being applied",
                    details={"invoice_id": row.id, "balance": row.balance,
                             "expected_balance": allocation.balance + allocation.applied},
                )
            row.amount_paid = allocation.amount_paid
            row.balance = allocation.balance
            row.status = allocation.status.value
            row.payment_report_id = ledger_entry_id

            if row.balance < 0 or row.balance != row.total_due - row.amount_paid:
                raise ConflictError(
                    f"Invoice {row.invoice_number} balance does not reconcile",
                    details={"invoice_id": row.id, "total_due": row.total_due,
                             "amount_paid": row.amount_paid, "balance": row.balance},
                )
            updated.append(row)

        self.session.flush()
        return updated

    def outstanding_bills(self, tenant_id: str) -> list[BillInvoice]:
        stmt = (
            select(BillInvoice)
            .where(
                BillInvoice.tenant_id == tenant_id,
                BillInvoice.status.in_(_OUTSTANDING),
                BillInvoice.balance > 0,
            )
            .order_by(BillInvoice.due_date, BillInvoice.invoice_number)
        )
        return list(self.session.execute(stmt).scalars())

    @staticmethod
    def _snapshot(row: Invoice) -> OutstandingInvoice:
        return OutstandingInvoice(
            invoice_id=row.id,
            invoice_number=row.invoice_number,
            payment_period=row.payment_period,
            due_date=row.due_date,
            total_due=row.total_due,
            amount_paid=row.amount_paid,
            balance=row.balance,
            status=InvoiceStatus(row.status),
        )

    # =========================================================================
    # Credit
    # =========================================================================

    def get_credit(self, tenant_id: str, lock: bool = False) -> CreditBalance | None:
        stmt = select(CreditBalance).where(
            CreditBalance.tenant_id == tenant_id,
            CreditBalance.status == PaymentStatus.CREDIT.value,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def upsert_credit(
        self,
        tenant_id: str,
        amount: Decimal,
        note: str | None = None,
        expected: Decimal | None = None
    ) -> CreditBalance:
        """
        Overwrite the tenant's single credit row, creating it when absent.

        When `expected` is given the write only lands if the stored credit
        still equals it; a concurrent writer that got there first raises
        ConflictError instead of being silently overwritten.
        """
        credit = self.get_credit(tenant_id, lock=True)
        if credit is None:
            if expected is not None and expected != 0:
                raise ConflictError(
                    f"Credit for tenant {tenant_id} disappeared while the payment was being applied",
                    details={"tenant_id": tenant_id, "expected_credit": expected},
                )
            credit = CreditBalance(
                id=new_id(),
                tenant_id=tenant_id,
                status=PaymentStatus.CREDIT.value,
                amount_paid=amount,
                date_paid=utcnow(),
                notes=note,
            )
            self.session.add(credit)
            self.session.flush()
            return credit

        values = {"amount_paid": amount, "date_paid": utcnow()}
        if note:
            values["notes"] = note
        table = PaymentRecord.__table__
        stmt = update(table).where(table.c.id == credit.id).values(**values)
        if expected is not None:
            stmt = stmt.where(table.c.amount_paid == expected)

        changed = self.session.execute(stmt).rowcount
        if changed != 1:
            raise ConflictError(
                f"Credit for tenant {tenant_id} changed while the payment was being applied",
                details={"tenant_id": tenant_id, "expected_credit": expected},
            )
        self.session.expire(credit)
        return credit

    # =========================================================================
    # Payment entries
    # =========================================================================

    def create_payment_entry(
        self,
        tenant_id: str,
        status: PaymentStatus,
        amount_paid: Decimal,
        credit_used: Decimal,
        total_due: Decimal,
        arrears: Decimal,
        period_start: date,
        paid_at: datetime,
        notes: str | None = None
    ) -> PaymentLedgerEntry:
        entry = PaymentLedgerEntry(
            id=new_id(),
            tenant_id=tenant_id,
            status=status.value,
            amount_paid=amount_paid,
            credit_used=credit_used,
            total_due=total_due,
            arrears=arrears,
            payment_period=period_start,
            date_paid=paid_at,
            notes=notes,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def create_prepaid_entry(
        self,
        tenant_id: str,
        period: PrepaidPeriod,
        source_entry_id: str,
        paid_at: datetime
    ) -> PrepaidEntry:
        entry = PrepaidEntry(
            id=new_id(),
            tenant_id=tenant_id,
            status=PaymentStatus.PREPAID.value,
            amount_paid=period.amount_covered,
            total_due=period.amount_covered,
            payment_period=period.period_start,
            date_paid=paid_at,
            source_entry_id=source_entry_id,
            notes=f"Prepaid {period.payment_period}",
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def latest_prepaid_period(self, tenant_id: str) -> date | None:
        stmt = select(func.max(PaymentRecord.payment_period)).where(
            PaymentRecord.tenant_id == tenant_id,
            PaymentRecord.kind == "prepaid",
        )
        return self.session.execute(stmt).scalar()

    def prepaid_amount(self, tenant_id: str, period_start: date) -> Decimal:
        stmt = select(func.coalesce(func.sum(PaymentRecord.amount_paid), 0)).where(
            PaymentRecord.tenant_id == tenant_id,
            PaymentRecord.kind == "prepaid",
            PaymentRecord.payment_period == period_start,
        )
        return Decimal(str(self.session.execute(stmt).scalar()))

    def get_payment_entry(self, entry_id: str) -> PaymentLedgerEntry:
        entry = self.session.get(PaymentLedgerEntry, entry_id)
        if entry is None:
            raise NotFound(f"Payment {entry_id} not found", details={"payment_id": entry_id})
        return entry

    def attach_receipt(self, entry_id: str, receipt_url: str) -> None:
        self.get_payment_entry(entry_id).receipt_url = receipt_url
        self.session.flush()

    def payment_records(self, tenant_id: str, offset: int = 0, limit: int | None = None) -> tuple[list[PaymentRecord], int]:
        """Every payment-report row for a tenant (cash, prepaid and credit), newest period first."""
        criteria = [PaymentRecord.tenant_id == tenant_id]
        total = self.session.execute(select(func.count(PaymentRecord.id)).where(*criteria)).scalar()
        stmt = (
            select(PaymentRecord)
            .where(*criteria)
            .order_by(PaymentRecord.payment_period.desc(), PaymentRecord.date_paid.desc(), PaymentRecord.id)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars()), total

    # =========================================================================
    # Income
    # =========================================================================

    def create_income(
        self,
        amount: Decimal,
        property_id: str | None = None,
        tenant_id: str | None = None,
        frequency: str = "MONTHLY",
        payment_report_id: str | None = None
    ) -> Income:
        income = Income(
            id=new_id(),
            property_id=property_id,
            tenant_id=tenant_id,
            amount=amount,
            frequency=frequency,
            payment_report_id=payment_report_id,
        )
        self.session.add(income)
        self.session.flush()
        return income

    # =========================================================================
    # Commissions
    # =========================================================================

    def upsert_commission(self, accrual: CommissionAccrual, note: str | None = None) -> ManagerCommission:
        """
        Add an accrual to the manager's row for its calendar month.

        Amounts are incremented in SQL; a fresh row starts PENDING with the
        accrual's VAT context.
        """
        now = utcnow()
        values = {
            "id": new_id(),
            "manager_id": accrual.manager_id,
            "property_id": accrual.property_id,
            "period_start": accrual.period_start,
            "period_end": accrual.period_end,
            "commission_fee": accrual.commission_fee,
            "income_amount": accrual.income_amount,
            "original_income_amount": accrual.original_amount,
            "commission_amount": accrual.commission_amount,
            "status": CommissionStatus.PENDING.value,
            "vat_type": accrual.vat_type.value,
            "vat_rate": accrual.vat_rate,
            "notes": note,
            "created_at": now,
            "updated_at": now,
        }
        get_upsert_strategy(self.session).upsert(
            self.session,
            ManagerCommission,
            values,
            constraint_columns=["manager_id", "property_id", "period_start", "period_end"],
            increment_columns=["income_amount", "original_income_amount", "commission_amount"],
            update_columns=["updated_at"],
        )

        stmt = (
            select(ManagerCommission)
            .where(
                ManagerCommission.manager_id == accrual.manager_id,
                ManagerCommission.property_id == accrual.property_id,
                ManagerCommission.period_start == accrual.period_start,
                ManagerCommission.period_end == accrual.period_end,
            )
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one()

    def get_commission(self, commission_id: str, lock: bool = False) -> ManagerCommission:
        stmt = select(ManagerCommission).where(ManagerCommission.id == commission_id)
        if lock:
            stmt = stmt.with_for_update()
        commission = self.session.execute(stmt).scalar_one_or_none()
        if commission is None:
            raise NotFound(f"Commission {commission_id} not found", details={"commission_id": commission_id})
        return commission

    def get_commission_invoice(self, commission_id: str) -> CommissionInvoice | None:
        stmt = (
            select(CommissionInvoice)
            .where(CommissionInvoice.commission_id == commission_id)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def upsert_commission_invoice(self, values: dict) -> CommissionInvoice:
        """Create or regenerate the single invoice for a commission."""
        existing = self.get_commission_invoice(values["commission_id"])
        now = utcnow()
        values = {
            **values,
            "id": existing.id if existing is not None else new_id(),
            "invoice_number": existing.invoice_number if existing is not None else self.commission_invoice_numbers.next(),
            "invoice_date": now,
            "created_at": now,
            "updated_at": now,
        }
        update_columns = [k for k in values if k not in ("id", "invoice_number", "commission_id", "created_at")]
        get_upsert_strategy(self.session).upsert(
            self.session,
            CommissionInvoice,
            values,
            constraint_columns=["commission_id"],
            update_columns=update_columns,
        )
        return self.get_commission_invoice(values["commission_id"])

    def commissions_for_manager(
        self,
        manager_id: str,
        property_id: str | None = None,
        status: str | None = None,
        start: date | None = None,
        end: date | None = None,
        offset: int = 0,
        limit: int | None = None
    ) -> tuple[list[ManagerCommission], int]:
        """A page of the manager's commissions, newest period first, plus the total count."""
        criteria = [ManagerCommission.manager_id == manager_id]
        if property_id is not None:
            criteria.append(ManagerCommission.property_id == property_id)
        if status is not None:
            criteria.append(ManagerCommission.status == status)
        if start is not None:
            criteria.append(ManagerCommission.period_start >= start)
        if end is not None:
            criteria.append(ManagerCommission.period_end <= end)

        total = self.session.execute(select(func.count(ManagerCommission.id)).where(*criteria)).scalar()
        stmt = (
            select(ManagerCommission)
            .where(*criteria)
            .order_by(ManagerCommission.period_start.desc(), ManagerCommission.id)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars()), total
