"""
Shared fixtures: a fresh in-memory SQLite ledger per test and a seeder for
properties, tenants, invoices and credit.
"""

from datetime import date
from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy import func, select

from ledger.db import (
    BillInvoice, CreditBalance, Invoice, ManagerCommission, PaymentLedgerEntry, PrepaidEntry,
    Property, ServiceCharge, SessionManager, Tenant, Unit, create_ledger_engine
)

# Shared across seeders so fixture numbers stay unique in a long-lived database
_NUMBERS = count(1)


@pytest.fixture
def session_manager():
    manager = SessionManager(create_ledger_engine("sqlite://"))
    manager.create_tables()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def seed(session_manager):
    return LedgerSeeder(session_manager)


class LedgerSeeder:
    """Writes fixture rows and reads them back for assertions."""

    def __init__(self, session_manager: SessionManager):
        self.session_manager = session_manager

    def property(self, manager_id="manager-1", commission_fee=Decimal("10"), name="Riverside Plaza") -> str:
        with self.session_manager.session_scope() as session:
            prop = Property(name=name, manager_id=manager_id, commission_fee=commission_fee)
            session.add(prop)
            session.flush()
            return prop.id

    def tenant(
        self,
        rent=Decimal("5000"),
        property_id=None,
        payment_policy="MONTHLY",
        vat_type="NOT_APPLICABLE",
        vat_rate=None,
        rent_start=date(2026, 1, 1),
        escalation_rate=None,
        escalation_frequency=None,
        service_charge=None,
        size_sq_ft=None,
        full_name="Jane Wanjiru",
    ) -> str:
        if property_id is None:
            property_id = self.property()
        with self.session_manager.session_scope() as session:
            unit = Unit(property_id=property_id, label="A1", size_sq_ft=size_sq_ft)
            session.add(unit)
            session.flush()
            tenant = Tenant(
                full_name=full_name,
                unit_id=unit.id,
                rent=Decimal(str(rent)),
                payment_policy=payment_policy,
                vat_type=vat_type,
                vat_rate=vat_rate,
                rent_start=rent_start,
                escalation_rate=escalation_rate,
                escalation_frequency=escalation_frequency,
            )
            session.add(tenant)
            session.flush()
            if service_charge:
                session.add(ServiceCharge(tenant_id=tenant.id, **service_charge))
            return tenant.id

    def invoice(
        self,
        tenant_id,
        total_due,
        payment_period="October 2026",
        due_date=date(2026, 10, 1),
        amount_paid=Decimal("0"),
        status="UNPAID",
        rent=None,
        vat=Decimal("0"),
    ) -> str:
        total_due = Decimal(str(total_due))
        amount_paid = Decimal(str(amount_paid))
        with self.session_manager.session_scope() as session:
            invoice = Invoice(
                invoice_number=f"INV-{due_date:%Y%m}-{next(_NUMBERS):06d}",
                tenant_id=tenant_id,
                due_date=due_date,
                payment_period=payment_period,
                rent=rent if rent is not None else total_due - vat,
                vat=vat,
                service_charge=Decimal("0"),
                total_due=total_due,
                amount_paid=amount_paid,
                balance=total_due - amount_paid,
                status=status,
            )
            session.add(invoice)
            session.flush()
            return invoice.id

    def bill(self, tenant_id, balance, bill_type="WATER", due_date=date(2026, 10, 5)) -> str:
        with self.session_manager.session_scope() as session:
            bill = BillInvoice(
                invoice_number=f"BILL-{next(_NUMBERS):06d}",
                tenant_id=tenant_id,
                bill_type=bill_type,
                due_date=due_date,
                grand_total=Decimal(str(balance)),
                amount_paid=Decimal("0"),
                balance=Decimal(str(balance)),
                status="UNPAID",
            )
            session.add(bill)
            session.flush()
            return bill.id

    def credit(self, tenant_id, amount) -> str:
        with self.session_manager.session_scope() as session:
            credit = CreditBalance(tenant_id=tenant_id, status="CREDIT", amount_paid=Decimal(str(amount)))
            session.add(credit)
            session.flush()
            return credit.id

    # Readers

    def get_invoice(self, invoice_id) -> Invoice:
        with self.session_manager.session_scope() as session:
            return session.get(Invoice, invoice_id)

    def credit_rows(self, tenant_id) -> list[CreditBalance]:
        with self.session_manager.session_scope() as session:
            return list(session.execute(
                select(CreditBalance).where(CreditBalance.tenant_id == tenant_id)
            ).scalars())

    def prepaid_rows(self, tenant_id) -> list[PrepaidEntry]:
        with self.session_manager.session_scope() as session:
            return list(session.execute(
                select(PrepaidEntry)
                .where(PrepaidEntry.tenant_id == tenant_id)
                .order_by(PrepaidEntry.payment_period)
            ).scalars())

    def payment_rows(self, tenant_id) -> list[PaymentLedgerEntry]:
        with self.session_manager.session_scope() as session:
            return list(session.execute(
                select(PaymentLedgerEntry).where(PaymentLedgerEntry.tenant_id == tenant_id)
            ).scalars())

    def commissions(self) -> list[ManagerCommission]:
        with self.session_manager.session_scope() as session:
            return list(session.execute(select(ManagerCommission)).scalars())

    def count(self, model) -> int:
        with self.session_manager.session_scope() as session:
            return session.execute(select(func.count()).select_from(model)).scalar()
