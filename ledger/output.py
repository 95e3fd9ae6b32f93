"""
Output Builder

Constructs the API responses from the processing context.
"""

from datetime import date, datetime
from decimal import Decimal

from .models import (
    CommissionAccrual, InvoiceAllocation, OverpaymentDistribution, PaymentContext, PaymentResult,
    TenantTerms
)
from .periods import period_key


def to_money(value: Decimal) -> float:
    """Convert Decimal to float with 2 decimal places."""
    return round(float(value), 2)


def to_rate(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class OutputBuilder:
    """Builds the final output responses."""

    def build(self, ctx: PaymentContext) -> PaymentResult:
        """Construct the complete payment result from processing context."""
        updated = list(ctx.allocation.allocations)
        if ctx.overpayment is not None:
            updated.extend(ctx.overpayment.invoice_allocations)

        return PaymentResult(
            ledger_entry=self._build_ledger_entry(ctx),
            updated_invoices=[self.invoice_allocation(a) for a in updated],
            overpayment=self._build_overpayment(ctx.overpayment),
            commission=self.commission(ctx.commission),
            credit_used=to_money(ctx.credit.credit_used),
        )

    @staticmethod
    def receipt_payload(result: PaymentResult, tenant: TenantTerms) -> dict:
        """Everything a receipt shows: the entry, what it paid off and who paid."""
        overpayment = result.overpayment["excess"] if result.overpayment else 0.0
        return {
            "ledger_entry": dict(result.ledger_entry),
            "updated_invoices": result.updated_invoices,
            "tenant": {
                "tenant_id": tenant.tenant_id,
                "full_name": tenant.full_name,
                "property_id": tenant.property_id,
            },
            "overpayment_amount": overpayment,
            "credit_used": result.credit_used,
        }

    def _build_ledger_entry(self, ctx: PaymentContext) -> dict:
        policy = ctx.tenant.payment_policy
        return {
            "id": ctx.ledger_entry_id,
            "tenant_id": ctx.tenant.tenant_id,
            "status": ctx.payment_status.value,
            "amount_paid": to_money(ctx.request.amount_paid),
            "credit_used": to_money(ctx.credit.credit_used),
            "available": to_money(ctx.available),
            "total_due": to_money(ctx.total_outstanding),
            "arrears": to_money(max(Decimal('0'), ctx.total_outstanding - ctx.available)),
            "payment_period": period_key(ctx.target_period_start, policy),
            "period_start": _iso(ctx.target_period_start),
            "date_paid": _iso(ctx.paid_at),
            "notes": ctx.request.notes,
            "income_id": ctx.income_id,
            "synthesized_invoice_id": ctx.synthesized_invoice_id,
            "receipt_url": None,
        }

    @staticmethod
    def invoice_allocation(allocation: InvoiceAllocation) -> dict:
        return {
            "invoice_id": allocation.invoice_id,
            "invoice_number": allocation.invoice_number,
            "payment_period": allocation.payment_period,
            "applied": to_money(allocation.applied),
            "amount_paid": to_money(allocation.amount_paid),
            "balance": to_money(allocation.balance),
            "status_before": allocation.status_before.value,
            "status": allocation.status.value,
        }

    def _build_overpayment(self, distribution: OverpaymentDistribution | None) -> dict | None:
        if distribution is None:
            return None
        return {
            "excess": to_money(distribution.excess),
            "applied_to_invoices": to_money(distribution.applied_to_invoices),
            "invoice_allocations": [self.invoice_allocation(a) for a in distribution.invoice_allocations],
            "prepaid_periods": [
                {
                    "entry_id": period.entry_id,
                    "payment_period": period.payment_period,
                    "period_start": _iso(period.period_start),
                    "amount_covered": to_money(period.amount_covered),
                }
                for period in distribution.prepaid_periods
            ],
            "prepaid_total": to_money(distribution.prepaid_total),
            "credit_remainder": to_money(distribution.credit_remainder),
        }

    @staticmethod
    def commission(accrual: CommissionAccrual | None) -> dict | None:
        if accrual is None:
            return None
        return {
            "commission_id": accrual.commission_id,
            "manager_id": accrual.manager_id,
            "property_id": accrual.property_id,
            "period_start": _iso(accrual.period_start),
            "period_end": _iso(accrual.period_end),
            "original_amount": to_money(accrual.original_amount),
            "income_amount": to_money(accrual.income_amount),
            "commission_fee": to_rate(accrual.commission_fee),
            "fee_rate": to_rate(accrual.fee_rate),
            "commission_amount": to_money(accrual.commission_amount),
            "vat_type": accrual.vat_type.value,
            "vat_rate": to_rate(accrual.vat_rate),
        }

    def build_income(self, income, accrual: CommissionAccrual | None) -> dict:
        return {
            "income": {
                "id": income.id,
                "property_id": income.property_id,
                "tenant_id": income.tenant_id,
                "amount": to_money(income.amount),
                "frequency": income.frequency,
                "created_at": _iso(income.created_at),
            },
            "commission": self.commission(accrual),
        }


def pagination(page: int, limit: int, total: int) -> dict:
    total_pages = -(-total // limit)
    return {
        "current_page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
