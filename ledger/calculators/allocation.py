"""
Invoice Allocator

Applies an available amount against outstanding invoices, oldest first.
"""

from decimal import Decimal

from ..models import AllocationResult, InvoiceAllocation, InvoiceStatus, OutstandingInvoice


class InvoiceAllocator:
    """Allocates money across invoices in FIFO order."""

    @staticmethod
    def order_fifo(invoices: list[OutstandingInvoice]) -> list[OutstandingInvoice]:
        """Oldest due date first; invoice number and id break ties deterministically."""
        return sorted(invoices, key=lambda inv: (inv.due_date, inv.invoice_number, inv.invoice_id))

    def select(
        self,
        outstanding: list[OutstandingInvoice],
        period_key: str | None = None
    ) -> list[OutstandingInvoice]:
        """
        Choose the invoices a payment is applied to.

        When the payment names a period and invoices exist for it, only those
        are considered; otherwise every outstanding invoice is.
        """
        ordered = self.order_fifo(outstanding)
        if period_key:
            scoped = [inv for inv in ordered if inv.payment_period == period_key]
            if scoped:
                return scoped
        return ordered

    def allocate(self, invoices: list[OutstandingInvoice], available: Decimal) -> AllocationResult:
        """
        Apply `available` to `invoices` in the order given.

        Returns one delta per invoice that received money and the unapplied
        remainder.
        """
        remaining = available
        allocations = []

        for invoice in invoices:
            if remaining <= 0:
                break
            if invoice.balance <= 0:
                continue

            applied = min(invoice.balance, remaining)
            balance = invoice.balance - applied

            allocations.append(InvoiceAllocation(
                invoice_id=invoice.invoice_id,
                invoice_number=invoice.invoice_number,
                payment_period=invoice.payment_period,
                applied=applied,
                amount_paid=invoice.amount_paid + applied,
                balance=balance,
                status_before=invoice.status,
                status=self._next_status(invoice.status, applied, balance),
            ))
            remaining -= applied

        return AllocationResult(
            allocations=allocations,
            total_applied=available - remaining,
            remainder=remaining,
        )

    @staticmethod
    def _next_status(current: InvoiceStatus, applied: Decimal, balance: Decimal) -> InvoiceStatus:
        if balance == 0:
            return InvoiceStatus.PAID
        if applied > 0 and current == InvoiceStatus.UNPAID:
            return InvoiceStatus.PARTIAL
        return current
