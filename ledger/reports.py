"""
Read-side ledger queries: charge preview, outstanding invoices, arrears and
tenant payment history.

Nothing here writes; each call runs in its own transaction that commits no
changes.
"""

import logging
from datetime import date
from decimal import Decimal

from .calculators import ChargeCalculator
from .db import LedgerRepository
from .output import pagination, to_money
from .periods import period_key, policy_period_start, to_date
from .validators import InputValidator


logger = logging.getLogger(__name__)


class LedgerReports:
    """Previews and rollups over the ledger."""

    def __init__(self, session_manager, charge_calculator: ChargeCalculator | None = None):
        self.session_manager = session_manager
        self.charge_calculator = charge_calculator or ChargeCalculator()

    def preview_expected_charge(self, tenant_id: str, period_start=None) -> dict:
        """
        Expected charge for the month containing `period_start` (today when
        omitted), at the preview VAT rate.

        `total_available` is what the tenant already has on account for that
        month: carried credit plus any prepaid amount covering its period.
        """
        as_of = to_date(period_start) if period_start is not None else date.today()

        with self.session_manager.session_scope() as session:
            repo = LedgerRepository(session)
            tenant = repo.load_tenant_terms(tenant_id)
            credit = repo.get_credit(tenant_id)
            existing_credit = credit.amount_paid if credit is not None else Decimal('0')
            prepaid = repo.prepaid_amount(tenant_id, policy_period_start(as_of, tenant.payment_policy))

        charge = self.charge_calculator.calculate(
            tenant, as_of, vat_rate=self.charge_calculator.PREVIEW_VAT_RATE
        )
        total_available = existing_credit + prepaid

        return {
            "tenant_id": tenant_id,
            "period_start": charge.period_start.isoformat(),
            "period_end": charge.period_end.isoformat(),
            "rent": to_money(charge.rent),
            "service_charge": to_money(charge.service_charge),
            "vat": to_money(charge.vat),
            "total_due": to_money(charge.total_due),
            "existing_credit": to_money(existing_credit),
            "total_available": to_money(total_available),
            "amount_to_pay": to_money(max(Decimal('0'), charge.total_due - total_available)),
        }

    def get_outstanding(self, tenant_id: str) -> dict:
        """Open invoices (UNPAID, PARTIAL, OVERDUE) in FIFO order with their total."""
        with self.session_manager.session_scope() as session:
            repo = LedgerRepository(session)
            repo.get_tenant(tenant_id)
            invoices = repo.outstanding_invoices(tenant_id)

        return {
            "tenant_id": tenant_id,
            "invoices": [
                {
                    "invoice_id": inv.invoice_id,
                    "invoice_number": inv.invoice_number,
                    "payment_period": inv.payment_period,
                    "due_date": inv.due_date.isoformat(),
                    "total_due": to_money(inv.total_due),
                    "amount_paid": to_money(inv.amount_paid),
                    "balance": to_money(inv.balance),
                    "status": inv.status.value,
                }
                for inv in invoices
            ],
            "count": len(invoices),
            "total_balance": to_money(sum((inv.balance for inv in invoices), Decimal('0'))),
        }

    def get_payments_by_tenant(self, tenant_id: str, page=1, limit=10) -> dict:
        """The tenant's payment history: cash entries, prepaid periods and the credit row."""
        page, limit = InputValidator.validate_page(page, limit)

        with self.session_manager.session_scope() as session:
            repo = LedgerRepository(session)
            tenant = repo.load_tenant_terms(tenant_id)
            records, total = repo.payment_records(tenant_id, offset=(page - 1) * limit, limit=limit)
            payments = [record.to_dict() for record in records]

        return {
            "tenant": {
                "tenant_id": tenant.tenant_id,
                "full_name": tenant.full_name,
                "property_id": tenant.property_id,
            },
            "payments": payments,
            "pagination": pagination(page, limit, total),
        }

    def get_arrears(self, property_id: str, as_of=None) -> dict:
        """
        Per-tenant arrears for a property.

        Combines unpaid rent invoices, unpaid bills and, when the current
        period has neither an invoice nor a prepayment, its expected charge.
        """
        as_of = to_date(as_of) if as_of is not None else date.today()
        rows = []

        with self.session_manager.session_scope() as session:
            repo = LedgerRepository(session)
            prop = repo.get_property(property_id)

            for tenant_row in repo.tenants_for_property(property_id):
                tenant = repo.to_terms(tenant_row)
                invoices = repo.outstanding_invoices(tenant.tenant_id)
                bills = repo.outstanding_bills(tenant.tenant_id)
                gap = self._uninvoiced_period(repo, tenant, as_of)

                rent_arrears = sum((inv.balance for inv in invoices), Decimal('0'))
                bill_arrears = sum((bill.balance for bill in bills), Decimal('0'))
                gap_amount = gap["amount"] if gap else Decimal('0')
                total = rent_arrears + bill_arrears + gap_amount
                if total <= 0:
                    continue

                rows.append({
                    "tenant_id": tenant.tenant_id,
                    "full_name": tenant.full_name,
                    "rent_arrears": to_money(rent_arrears),
                    "bill_arrears": to_money(bill_arrears),
                    "uninvoiced_period": {
                        "payment_period": gap["payment_period"],
                        "amount": to_money(gap_amount),
                    } if gap else None,
                    "total_arrears": to_money(total),
                    "invoices": [
                        {"invoice_id": inv.invoice_id, "invoice_number": inv.invoice_number,
                         "payment_period": inv.payment_period, "balance": to_money(inv.balance),
                         "status": inv.status.value}
                        for inv in invoices
                    ],
                    "bills": [
                        {"invoice_id": bill.id, "invoice_number": bill.invoice_number,
                         "bill_type": bill.bill_type, "balance": to_money(bill.balance),
                         "status": bill.status}
                        for bill in bills
                    ],
                })
            property_name = prop.name

        logger.debug(f"Arrears for property {property_id}: {len(rows)} tenant(s) in arrears")
        return {
            "property_id": property_id,
            "property_name": property_name,
            "as_of": as_of.isoformat(),
            "tenants": rows,
            "total_arrears": round(sum(row["total_arrears"] for row in rows), 2),
        }

    def _uninvoiced_period(self, repo: LedgerRepository, tenant, as_of: date) -> dict | None:
        period_start = policy_period_start(as_of, tenant.payment_policy)
        if tenant.rent_start and tenant.rent_start > as_of:
            return None

        key = period_key(period_start, tenant.payment_policy)
        if repo.has_invoice_for_period(tenant.tenant_id, key):
            return None

        charge = self.charge_calculator.charge_for_period(tenant, period_start)
        amount = charge.total_due - repo.prepaid_amount(tenant.tenant_id, period_start)
        if amount <= 0:
            return None
        return {"payment_period": key, "amount": amount}
