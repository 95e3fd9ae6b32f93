"""
Unit Tests for Credit Store

Tests verify credit consumption and the single-row-per-tenant upsert.
"""

from decimal import Decimal

import pytest

from ledger.calculators.credit import CreditStore
from ledger.db import LedgerRepository
from ledger.errors import ConflictError


class TestCreditApplication:
    """Test how much credit a payment consumes."""

    @pytest.fixture
    def store(self):
        return CreditStore()

    def test_credit_used_up_to_outstanding(self, store):
        result = store.apply(Decimal('2000'), Decimal('4000'))

        assert result.credit_used == Decimal('2000')
        assert result.credit_after == Decimal('0')

    def test_credit_larger_than_outstanding(self, store):
        result = store.apply(Decimal('5000'), Decimal('3000'))

        assert result.credit_used == Decimal('3000')
        assert result.credit_after == Decimal('2000')

    def test_no_credit(self, store):
        result = store.apply(Decimal('0'), Decimal('3000'))

        assert result.credit_used == Decimal('0')
        assert result.credit_after == Decimal('0')

    def test_nothing_outstanding(self, store):
        result = store.apply(Decimal('1000'), Decimal('0'))

        assert result.credit_used == Decimal('0')
        assert result.credit_after == Decimal('1000')


class TestCreditPersistence:
    """Test the stored credit row."""

    def test_balance_is_zero_without_row(self, session_manager, seed):
        tenant_id = seed.tenant()
        with session_manager.session_scope() as session:
            assert CreditStore(LedgerRepository(session)).balance(tenant_id) == Decimal('0')

    def test_store_creates_then_overwrites_single_row(self, session_manager, seed):
        tenant_id = seed.tenant()

        with session_manager.session_scope() as session:
            CreditStore(LedgerRepository(session)).store(tenant_id, Decimal('1500'), "first")
        with session_manager.session_scope() as session:
            CreditStore(LedgerRepository(session)).store(tenant_id, Decimal('400'), "second")

        rows = seed.credit_rows(tenant_id)
        assert len(rows) == 1
        assert rows[0].amount_paid == Decimal('400')
        assert rows[0].status == "CREDIT"

    def test_balance_reads_stored_credit(self, session_manager, seed):
        tenant_id = seed.tenant()
        seed.credit(tenant_id, 2500)

        with session_manager.session_scope() as session:
            assert CreditStore(LedgerRepository(session)).balance(tenant_id) == Decimal('2500')

    def test_store_refuses_credit_changed_since_read(self, session_manager, seed):
        tenant_id = seed.tenant()
        seed.credit(tenant_id, 2000)

        with pytest.raises(ConflictError):
            with session_manager.session_scope() as session:
                repo = LedgerRepository(session)
                store = CreditStore(repo)
                store.balance(tenant_id)
                repo.upsert_credit(tenant_id, Decimal('500'))
                store.store(tenant_id, Decimal('0'), "spent")

        [credit] = seed.credit_rows(tenant_id)
        assert credit.amount_paid == Decimal('2000')
