"""
Unit Tests for Charge Calculator

Tests verify escalated rent, service charge, VAT and totals per period.
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger.calculators.charges import ChargeCalculator, quantize_money, vat_component
from ledger.models import PaymentPolicy, ServiceChargeTerms, ServiceChargeType, TenantTerms, VatType


class TestVatExtraction:
    """Test the single VAT rule shared by preview and invoicing."""

    def test_exclusive_adds_on_top(self):
        assert vat_component(Decimal('10000'), VatType.EXCLUSIVE, Decimal('16')) == Decimal('1600')

    def test_inclusive_extracts_from_base(self):
        vat = vat_component(Decimal('11600'), VatType.INCLUSIVE, Decimal('16'))
        assert quantize_money(vat) == Decimal('1600.00')

    def test_not_applicable_is_zero(self):
        assert vat_component(Decimal('10000'), VatType.NOT_APPLICABLE, Decimal('16')) == Decimal('0')

    @pytest.mark.parametrize("total", ["11600", "1000", "12345.67", "99.99", "0.01", "58000.05"])
    def test_inclusive_split_adds_back_to_total(self, total):
        """Net plus extracted VAT, or net grossed up again at 16%, lands within a cent of the total."""
        total = Decimal(total)
        rate = Decimal('16')

        vat = quantize_money(vat_component(total, VatType.INCLUSIVE, rate))
        net = total - vat

        assert abs(net + vat - total) <= Decimal('0.01')
        regrossed = net + vat_component(net, VatType.EXCLUSIVE, rate)
        assert abs(regrossed - total) <= Decimal('0.01')


class TestMonthlyCharge:
    """Test the expected charge for one calendar month."""

    @pytest.fixture
    def calculator(self):
        return ChargeCalculator()

    def test_exclusive_vat_total(self, calculator):
        """10000 rent + 16% exclusive VAT = 11600 due."""
        tenant = _make_tenant(rent=10000, vat_type=VatType.EXCLUSIVE, vat_rate=16)
        charge = calculator.calculate(tenant, date(2026, 10, 15))

        assert charge.rent == Decimal('10000.00')
        assert charge.vat == Decimal('1600.00')
        assert charge.total_due == Decimal('11600.00')
        assert charge.period_start == date(2026, 10, 1)
        assert charge.period_end == date(2026, 10, 31)

    def test_inclusive_vat_not_added_to_total(self, calculator):
        tenant = _make_tenant(rent=11600, vat_type=VatType.INCLUSIVE, vat_rate=16)
        charge = calculator.calculate(tenant, date(2026, 10, 1))

        assert charge.vat == Decimal('1600.00')
        assert charge.total_due == Decimal('11600.00')

    def test_preview_rate_overrides_tenant_rate(self, calculator):
        """Preview path uses the fixed 16% whatever the tenant is configured with."""
        tenant = _make_tenant(rent=10000, vat_type=VatType.EXCLUSIVE, vat_rate=8)

        invoice_path = calculator.calculate(tenant, date(2026, 10, 1))
        preview_path = calculator.calculate(tenant, date(2026, 10, 1), vat_rate=calculator.PREVIEW_VAT_RATE)

        assert invoice_path.vat == Decimal('800.00')
        assert preview_path.vat == Decimal('1600.00')

    def test_total_is_sum_of_rounded_parts(self, calculator):
        tenant = _make_tenant(rent=Decimal('1000.005'), vat_type=VatType.EXCLUSIVE, vat_rate=16)
        charge = calculator.calculate(tenant, date(2026, 10, 1))

        assert charge.total_due == charge.rent + charge.service_charge + charge.vat


class TestServiceCharge:

    @pytest.fixture
    def calculator(self):
        return ChargeCalculator()

    def test_fixed(self, calculator):
        tenant = _make_tenant(service_charge=ServiceChargeTerms(ServiceChargeType.FIXED, fixed_amount=Decimal('750')))
        assert calculator.calculate(tenant, date(2026, 10, 1)).service_charge == Decimal('750.00')

    def test_percentage_of_expected_rent(self, calculator):
        tenant = _make_tenant(
            rent=10000,
            service_charge=ServiceChargeTerms(ServiceChargeType.PERCENTAGE, percentage=Decimal('5')),
        )
        assert calculator.calculate(tenant, date(2026, 10, 1)).service_charge == Decimal('500.00')

    def test_per_square_foot(self, calculator):
        tenant = _make_tenant(
            unit_size_sq_ft=Decimal('1200'),
            service_charge=ServiceChargeTerms(ServiceChargeType.PER_SQ_FT, per_sq_ft_rate=Decimal('2.5')),
        )
        assert calculator.calculate(tenant, date(2026, 10, 1)).service_charge == Decimal('3000.00')

    def test_vat_applies_to_rent_plus_service_charge(self, calculator):
        tenant = _make_tenant(
            rent=10000,
            vat_type=VatType.EXCLUSIVE,
            vat_rate=16,
            service_charge=ServiceChargeTerms(ServiceChargeType.FIXED, fixed_amount=Decimal('1000')),
        )
        charge = calculator.calculate(tenant, date(2026, 10, 1))

        assert charge.vat == Decimal('1760.00')
        assert charge.total_due == Decimal('12760.00')


class TestEscalation:
    """Test compounding rent escalation."""

    @pytest.fixture
    def calculator(self):
        return ChargeCalculator()

    def test_no_escalation_before_first_interval(self, calculator):
        tenant = _make_tenant(rent=10000, escalation_rate=5, escalation_frequency="ANNUALLY",
                              rent_start=date(2026, 1, 1))
        assert calculator.calculate(tenant, date(2026, 12, 1)).rent == Decimal('10000.00')

    def test_annual_escalation_compounds(self, calculator):
        tenant = _make_tenant(rent=10000, escalation_rate=5, escalation_frequency="ANNUALLY",
                              rent_start=date(2024, 1, 1))
        # Two full years elapsed: 10000 * 1.05^2
        assert calculator.calculate(tenant, date(2026, 1, 1)).rent == Decimal('11025.00')

    def test_bi_annual_escalation(self, calculator):
        tenant = _make_tenant(rent=10000, escalation_rate=10, escalation_frequency="BI_ANNUALLY",
                              rent_start=date(2026, 1, 1))
        assert calculator.calculate(tenant, date(2026, 7, 1)).rent == Decimal('11000.00')

    def test_unknown_frequency_does_not_compound(self, calculator):
        tenant = _make_tenant(rent=10000, escalation_rate=10, escalation_frequency="WEEKLY",
                              rent_start=date(2020, 1, 1))
        assert calculator.calculate(tenant, date(2026, 7, 1)).rent == Decimal('10000.00')

    def test_rent_start_after_period_does_not_compound(self, calculator):
        tenant = _make_tenant(rent=10000, escalation_rate=10, escalation_frequency="ANNUALLY",
                              rent_start=date(2027, 1, 1))
        assert calculator.calculate(tenant, date(2026, 7, 1)).rent == Decimal('10000.00')

    def test_rent_schedule(self, calculator):
        tenant = _make_tenant(rent=10000, escalation_rate=10, escalation_frequency="ANNUALLY",
                              rent_start=date(2026, 1, 1))
        schedule = calculator.rent_schedule(tenant, periods=2)

        assert [entry.rent for entry in schedule] == [Decimal('10000.00'), Decimal('11000.00'), Decimal('12100.00')]
        assert schedule[2].date == date(2028, 1, 1)


class TestPolicyPeriodCharge:

    def test_quarterly_sums_three_months(self):
        tenant = _make_tenant(rent=1000, payment_policy=PaymentPolicy.QUARTERLY)
        charge = ChargeCalculator().charge_for_period(tenant, date(2026, 11, 15))

        assert charge.period_start == date(2026, 10, 1)
        assert charge.period_end == date(2026, 12, 31)
        assert charge.total_due == Decimal('3000.00')

    def test_annual_sums_twelve_months(self):
        tenant = _make_tenant(rent=1000, payment_policy=PaymentPolicy.ANNUAL)
        assert ChargeCalculator().charge_for_period(tenant, date(2026, 3, 1)).total_due == Decimal('12000.00')


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _make_tenant(
    rent=5000,
    payment_policy=PaymentPolicy.MONTHLY,
    vat_type=VatType.NOT_APPLICABLE,
    vat_rate=None,
    rent_start=date(2026, 1, 1),
    escalation_rate=None,
    escalation_frequency=None,
    service_charge=None,
    unit_size_sq_ft=Decimal('0'),
) -> TenantTerms:
    return TenantTerms(
        tenant_id="tenant-1",
        rent=Decimal(str(rent)),
        payment_policy=payment_policy,
        vat_type=vat_type,
        vat_rate=Decimal(str(vat_rate)) if vat_rate is not None else None,
        rent_start=rent_start,
        escalation_rate=Decimal(str(escalation_rate)) if escalation_rate is not None else None,
        escalation_frequency=escalation_frequency,
        service_charge=service_charge,
        unit_size_sq_ft=unit_size_sq_ft,
    )
