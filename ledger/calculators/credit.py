"""
Credit Store

Reads and writes a tenant's carried overpayment, and works out how much of it
a payment consumes.
"""

from decimal import Decimal

from ..models import CreditApplication


class CreditStore:
    """
    Manages the per-tenant credit balance.

    A write made after `balance` only lands if the stored credit still holds
    the value that was read.
    """

    def __init__(self, repository=None):
        self.repository = repository
        self._read = {}

    def balance(self, tenant_id: str) -> Decimal:
        """Current credit for the tenant, 0 when no credit row exists."""
        credit = self.repository.get_credit(tenant_id, lock=True)
        amount = credit.amount_paid if credit is not None else Decimal('0')
        self._read[tenant_id] = amount
        return amount

    def store(self, tenant_id: str, amount: Decimal, note: str | None = None) -> None:
        """Overwrite the tenant's credit with `amount`, creating the row if absent."""
        self.repository.upsert_credit(tenant_id, amount, note, expected=self._read.get(tenant_id))
        self._read[tenant_id] = amount

    def apply(self, existing_credit: Decimal, total_outstanding: Decimal) -> CreditApplication:
        """
        Consume credit against the outstanding balance.

        Credit is used up to the outstanding balance; what is left stays as
        credit until the overpayment step re-derives it.
        """
        credit_used = min(existing_credit, max(total_outstanding, Decimal('0')))
        return CreditApplication(
            existing_credit=existing_credit,
            credit_used=credit_used,
            credit_after=existing_credit - credit_used,
        )
