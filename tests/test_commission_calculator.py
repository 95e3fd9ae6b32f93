"""
Unit Tests for Commission Calculator

Tests verify the VAT-exclusive base, fee normalisation and accrual period.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from ledger.calculators.commission import CommissionCalculator
from ledger.models import TenantTerms, VatType


class TestVatExclusiveBase:
    """Test VAT stripping before commission is applied."""

    @pytest.fixture
    def calculator(self):
        return CommissionCalculator()

    def test_exclusive_tenant_base(self, calculator):
        """11600 collected at 16% exclusive -> base 10000 -> 1000 at 10%."""
        accrual = calculator.calculate(Decimal('11600'), _make_tenant(VatType.EXCLUSIVE, 16), datetime(2026, 10, 5))

        assert accrual.income_amount == Decimal('10000.00')
        assert accrual.original_amount == Decimal('11600')
        assert accrual.commission_amount == Decimal('1000.00')

    def test_inclusive_tenant_base(self, calculator):
        accrual = calculator.calculate(Decimal('11600'), _make_tenant(VatType.INCLUSIVE, 16), datetime(2026, 10, 5))

        assert accrual.income_amount == Decimal('10000.00')

    def test_not_applicable_keeps_full_amount(self, calculator):
        accrual = calculator.calculate(Decimal('5000'), _make_tenant(VatType.NOT_APPLICABLE, None), datetime(2026, 10, 5))

        assert accrual.income_amount == Decimal('5000')
        assert accrual.commission_amount == Decimal('500.00')
        assert accrual.vat_rate == Decimal('0')

    def test_missing_rate_defaults_to_sixteen(self, calculator):
        accrual = calculator.calculate(Decimal('11600'), _make_tenant(VatType.EXCLUSIVE, None), datetime(2026, 10, 5))

        assert accrual.vat_rate == Decimal('16')
        assert accrual.income_amount == Decimal('10000.00')

    def test_vat_context_is_captured(self, calculator):
        accrual = calculator.calculate(Decimal('1080'), _make_tenant(VatType.INCLUSIVE, 8), datetime(2026, 10, 5))

        assert accrual.vat_type == VatType.INCLUSIVE
        assert accrual.vat_rate == Decimal('8')


class TestFeeRate:

    @pytest.mark.parametrize("fee,expected", [
        (Decimal('10'), Decimal('0.10')),
        (Decimal('85'), Decimal('0.85')),
        (Decimal('0.1'), Decimal('0.1')),
        (Decimal('1'), Decimal('1')),
    ])
    def test_percent_or_decimal(self, fee, expected):
        assert CommissionCalculator.fee_rate(fee) == expected


class TestAccrualPeriod:

    def test_calendar_month_of_payment(self):
        accrual = CommissionCalculator().calculate(
            Decimal('5000'), _make_tenant(VatType.NOT_APPLICABLE, None), datetime(2026, 2, 14, 16, 0)
        )
        assert accrual.period_start == date(2026, 2, 1)
        assert accrual.period_end == date(2026, 2, 28)


class TestNoCommission:

    @pytest.fixture
    def calculator(self):
        return CommissionCalculator()

    def test_no_manager(self, calculator):
        tenant = _make_tenant(VatType.NOT_APPLICABLE, None, manager_id=None)
        assert calculator.calculate(Decimal('5000'), tenant, datetime(2026, 10, 5)) is None

    def test_no_fee(self, calculator):
        tenant = _make_tenant(VatType.NOT_APPLICABLE, None, commission_fee=None)
        assert calculator.calculate(Decimal('5000'), tenant, datetime(2026, 10, 5)) is None

    def test_zero_amount(self, calculator):
        tenant = _make_tenant(VatType.NOT_APPLICABLE, None)
        assert calculator.calculate(Decimal('0'), tenant, datetime(2026, 10, 5)) is None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _make_tenant(vat_type, vat_rate, manager_id="manager-1", commission_fee=Decimal('10')) -> TenantTerms:
    return TenantTerms(
        tenant_id="tenant-1",
        rent=Decimal('10000'),
        vat_type=vat_type,
        vat_rate=Decimal(str(vat_rate)) if vat_rate is not None else None,
        property_id="property-1",
        manager_id=manager_id,
        commission_fee=commission_fee,
    )
