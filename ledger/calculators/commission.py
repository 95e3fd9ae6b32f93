"""
Commission Calculator

Handles manager commission accrual on cash collected for the current period.
"""

from datetime import datetime
from decimal import Decimal

from ..models import CommissionAccrual, TenantTerms, VatType
from ..periods import month_range
from .charges import quantize_money


class CommissionCalculator:
    """Calculates a manager's commission on the VAT-exclusive cash base."""

    # Applied when a VAT-registered tenant has no rate on file
    DEFAULT_VAT_RATE = Decimal('16')

    def calculate(
        self,
        amount: Decimal,
        tenant: TenantTerms,
        paid_at: datetime
    ) -> CommissionAccrual | None:
        """
        Calculate the commission delta for `amount`.

        `amount` must only be the cash cleared against current-period
        obligations; overpayment, prepaid and credit money never earn
        commission.

        Returns None when the property has no manager or fee, or when there
        is nothing to commission.
        """
        if not tenant.manager_id or not tenant.property_id or tenant.commission_fee is None:
            return None
        if amount <= 0:
            return None

        vat_rate = self._vat_rate(tenant)
        base = self.vat_exclusive_base(amount, tenant.vat_type, vat_rate)
        fee_rate = self.fee_rate(tenant.commission_fee)
        period_start, period_end = month_range(paid_at.date() if isinstance(paid_at, datetime) else paid_at)

        return CommissionAccrual(
            manager_id=tenant.manager_id,
            property_id=tenant.property_id,
            commission_fee=tenant.commission_fee,
            fee_rate=fee_rate,
            original_amount=amount,
            income_amount=base,
            commission_amount=quantize_money(base * fee_rate),
            period_start=period_start,
            period_end=period_end,
            vat_type=tenant.vat_type,
            vat_rate=vat_rate,
        )

    @staticmethod
    def vat_exclusive_base(amount: Decimal, vat_type: VatType, vat_rate: Decimal) -> Decimal:
        """
        Strip VAT out of a cash amount.

        Cash received from INCLUSIVE and EXCLUSIVE tenants both carry VAT
        collected on someone else's behalf, so both are divided down.
        """
        if vat_type in (VatType.INCLUSIVE, VatType.EXCLUSIVE):
            return quantize_money(amount / (Decimal('1') + vat_rate / Decimal('100')))
        return amount

    @staticmethod
    def fee_rate(commission_fee: Decimal) -> Decimal:
        """Fees above 1 are percentages (10 -> 0.10); 1 or below are already decimal."""
        if commission_fee > 1:
            return commission_fee / Decimal('100')
        return commission_fee

    def _vat_rate(self, tenant: TenantTerms) -> Decimal:
        if tenant.vat_type == VatType.NOT_APPLICABLE:
            return Decimal('0')
        return tenant.vat_rate if tenant.vat_rate is not None else self.DEFAULT_VAT_RATE
