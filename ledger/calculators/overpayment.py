"""
Overpayment Distributor

Spreads money left over after the current invoices are settled: first onto
the tenant's other open invoices, then onto whole future periods, and finally
into the tenant's credit.
"""

from datetime import date
from decimal import Decimal

from ..models import OutstandingInvoice, OverpaymentDistribution, PrepaidPeriod, TenantTerms
from ..periods import next_period_start, period_key, policy_period_start
from .allocation import InvoiceAllocator
from .charges import ChargeCalculator


class OverpaymentDistributor:
    """Distributes an overpayment across invoices, prepaid periods and credit."""

    def __init__(
        self,
        allocator: InvoiceAllocator | None = None,
        charge_calculator: ChargeCalculator | None = None
    ):
        self.allocator = allocator or InvoiceAllocator()
        self.charge_calculator = charge_calculator or ChargeCalculator()

    def distribute(
        self,
        excess: Decimal,
        tenant: TenantTerms,
        other_invoices: list[OutstandingInvoice],
        prepay_after: date
    ) -> OverpaymentDistribution:
        """
        Distribute `excess` in three steps:
        1. FIFO across `other_invoices` (those not touched by this payment)
        2. Whole future periods after `prepay_after`, one prepaid entry each
        3. Whatever is left becomes the tenant's credit
        """
        distribution = OverpaymentDistribution(excess=excess)
        remaining = excess

        if other_invoices and remaining > 0:
            result = self.allocator.allocate(self.allocator.order_fifo(other_invoices), remaining)
            distribution.invoice_allocations = result.allocations
            remaining = result.remainder

        distribution.prepaid_periods, remaining = self._prepay_periods(tenant, remaining, prepay_after)
        distribution.credit_remainder = remaining
        return distribution

    def _prepay_periods(
        self,
        tenant: TenantTerms,
        remaining: Decimal,
        prepay_after: date
    ) -> tuple[list[PrepaidPeriod], Decimal]:
        """
        Cover whole future periods while the money lasts.

        A period costs the calculator's total due across the policy period,
        so for a tenant without service charge or VAT that is rent x 1, 3 or 12.
        """
        policy = tenant.payment_policy
        periods = []
        period_start = policy_period_start(prepay_after, policy)

        while remaining > 0:
            period_start = next_period_start(period_start, policy)
            amount_due = self.charge_calculator.charge_for_period(tenant, period_start).total_due
            if amount_due <= 0 or remaining < amount_due:
                break

            periods.append(PrepaidPeriod(
                payment_period=period_key(period_start, policy),
                period_start=period_start,
                amount_covered=amount_due,
            ))
            remaining -= amount_due

        return periods, remaining
