"""
Charge Calculator

Works out what a tenant owes for a billing period: escalated rent, service
charge and VAT. All amounts use Decimal with ROUND_HALF_UP rounding.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from ..models import (
    EscalationFrequency, ExpectedCharge, RentScheduleEntry, ServiceChargeType, TenantTerms, VatType
)
from ..periods import add_months, interval_months, month_range, months_between, policy_period_start


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half up."""
    return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def vat_component(base: Decimal, vat_type: VatType, rate: Decimal) -> Decimal:
    """
    VAT carried by `base` under the tenant's VAT regime.

    EXCLUSIVE adds VAT on top of the base, INCLUSIVE extracts the VAT already
    inside it, NOT_APPLICABLE carries none.
    """
    if vat_type == VatType.EXCLUSIVE:
        return base * rate / Decimal('100')
    if vat_type == VatType.INCLUSIVE:
        return base * rate / (Decimal('100') + rate)
    return Decimal('0')


class ChargeCalculator:
    """Calculates the expected charge for a tenant and period."""

    # Rate used by the charge preview; invoice generation uses the tenant's own rate
    PREVIEW_VAT_RATE = Decimal('16')

    ESCALATION_INTERVAL_MONTHS = {
        EscalationFrequency.ANNUALLY: 12,
        EscalationFrequency.BI_ANNUALLY: 6,
    }

    def __init__(self, preview_vat_rate: Decimal | None = None):
        if preview_vat_rate is not None:
            self.PREVIEW_VAT_RATE = preview_vat_rate

    def calculate(
        self,
        tenant: TenantTerms,
        as_of: date | None = None,
        vat_rate: Decimal | None = None
    ) -> ExpectedCharge:
        """
        Expected rent, service charge, VAT and total for the calendar month
        containing `as_of` (today when omitted).

        `vat_rate` selects the path: None uses the tenant's configured rate
        (invoice generation); pass PREVIEW_VAT_RATE for the charge preview.
        """
        period_start, period_end = month_range(as_of or date.today())

        rent = self.expected_rent(tenant, period_start)
        service_charge = self._service_charge(tenant, rent)

        rate = vat_rate if vat_rate is not None else (tenant.vat_rate or Decimal('0'))
        vat = vat_component(rent + service_charge, tenant.vat_type, rate)

        rent = quantize_money(rent)
        service_charge = quantize_money(service_charge)
        vat = quantize_money(vat)

        if tenant.vat_type == VatType.EXCLUSIVE:
            total_due = rent + service_charge + vat
        else:
            # VAT is already inside the rent for INCLUSIVE tenants
            total_due = rent + service_charge

        return ExpectedCharge(
            rent=rent,
            service_charge=service_charge,
            vat=vat,
            total_due=total_due,
            period_start=period_start,
            period_end=period_end,
        )

    def charge_for_period(
        self,
        tenant: TenantTerms,
        period_start: date,
        vat_rate: Decimal | None = None
    ) -> ExpectedCharge:
        """Sum the monthly charges across one payment-policy period."""
        start = policy_period_start(period_start, tenant.payment_policy)
        months = interval_months(tenant.payment_policy)

        total = ExpectedCharge(period_start=start)
        for offset in range(months):
            monthly = self.calculate(tenant, add_months(start, offset), vat_rate)
            total.rent += monthly.rent
            total.service_charge += monthly.service_charge
            total.vat += monthly.vat
            total.total_due += monthly.total_due
            total.period_end = monthly.period_end
        return total

    def expected_rent(self, tenant: TenantTerms, period_start: date) -> Decimal:
        """Base rent compounded once per elapsed escalation interval."""
        periods_elapsed = self.escalations_applied(tenant, period_start)
        if periods_elapsed == 0:
            return tenant.rent
        factor = (Decimal('1') + tenant.escalation_rate / Decimal('100')) ** periods_elapsed
        return tenant.rent * factor

    def escalations_applied(self, tenant: TenantTerms, period_start: date) -> int:
        interval = self._escalation_interval(tenant)
        if interval is None or tenant.rent_start > period_start:
            return 0
        return months_between(tenant.rent_start, period_start) // interval

    def rent_schedule(self, tenant: TenantTerms, periods: int = 5) -> list[RentScheduleEntry]:
        """Project the rent after each of the next `periods` escalations."""
        interval = self._escalation_interval(tenant)
        if interval is None:
            return [RentScheduleEntry(period=0, date=tenant.rent_start, rent=tenant.rent)]

        growth = Decimal('1') + tenant.escalation_rate / Decimal('100')
        return [
            RentScheduleEntry(
                period=i,
                date=add_months(tenant.rent_start, i * interval),
                rent=quantize_money(tenant.rent * growth ** i),
            )
            for i in range(periods + 1)
        ]

    def _escalation_interval(self, tenant: TenantTerms) -> int | None:
        if not tenant.escalation_rate or tenant.escalation_rate <= 0 or not tenant.rent_start:
            return None
        try:
            return self.ESCALATION_INTERVAL_MONTHS[EscalationFrequency(tenant.escalation_frequency)]
        except ValueError:
            return None

    def _service_charge(self, tenant: TenantTerms, rent: Decimal) -> Decimal:
        sc = tenant.service_charge
        if sc is None:
            return Decimal('0')
        if sc.type == ServiceChargeType.FIXED:
            return sc.fixed_amount or Decimal('0')
        if sc.type == ServiceChargeType.PERCENTAGE:
            return rent * (sc.percentage or Decimal('0')) / Decimal('100')
        if sc.type == ServiceChargeType.PER_SQ_FT:
            return (tenant.unit_size_sq_ft or Decimal('0')) * (sc.per_sq_ft_rate or Decimal('0'))
        return Decimal('0')
