"""
Tests for the commission lifecycle: status changes, access rules and
commission invoices.
"""

import re
from datetime import date, datetime
from decimal import Decimal

import pytest

from ledger.commissions import Actor, CommissionService
from ledger.db import CommissionInvoice
from ledger.errors import AccessDenied, NotFound, ValidationError
from ledger.models import PaymentRequest
from ledger.processor import PaymentProcessor
from ledger.receipts import JsonReceiptRenderer, LocalStorageUploader, StorageUploader

ADMIN = Actor(user_id="admin-1", role="ADMIN")
MANAGER = Actor(user_id="manager-1", role="MANAGER")
OTHER_MANAGER = Actor(user_id="manager-2", role="MANAGER")

BANK = {"bank_name": "Equity Bank", "account_name": "Jane Agent", "account_number": "0123456789"}


@pytest.fixture
def service(session_manager):
    return CommissionService(session_manager)


@pytest.fixture
def commission_id(session_manager, seed):
    """A PENDING commission of 1000 on a 10000 base, accrued from a 16% VAT-exclusive tenant."""
    tenant_id = seed.tenant(rent=10000, vat_type="EXCLUSIVE", vat_rate=Decimal('16'))
    seed.invoice(tenant_id, 11600, rent=Decimal('10000'), vat=Decimal('1600'))
    result = PaymentProcessor(session_manager).record_payment(PaymentRequest(
        tenant_id=tenant_id,
        amount_paid=Decimal('11600'),
        paid_at=datetime(2026, 10, 5, 10, 30),
    ))
    return result.commission["commission_id"]


class TestUpdateStatus:

    def test_admin_marks_paid(self, service, commission_id):
        result = service.update_status(commission_id, "PAID", actor=ADMIN, notes="Paid by transfer",
                                       paid_date="2026-10-18")

        assert result["status"] == "PAID"
        assert result["notes"] == "Paid by transfer"
        assert result["paid_date"] == "2026-10-18T00:00:00"

    def test_manager_marks_own_commission_processing(self, service, commission_id):
        result = service.update_status(commission_id, "PROCESSING", actor=MANAGER)

        assert result["status"] == "PROCESSING"

    def test_manager_cannot_touch_other_managers_row(self, service, commission_id):
        with pytest.raises(AccessDenied):
            service.update_status(commission_id, "PROCESSING", actor=OTHER_MANAGER)

    def test_manager_cannot_cancel(self, service, commission_id):
        with pytest.raises(AccessDenied):
            service.update_status(commission_id, "CANCELLED", actor=MANAGER)

    def test_manager_cannot_set_notes(self, service, commission_id):
        with pytest.raises(AccessDenied):
            service.update_status(commission_id, "PAID", actor=MANAGER, notes="done")

    def test_invalid_status(self, service, commission_id):
        with pytest.raises(ValidationError):
            service.update_status(commission_id, "SETTLED", actor=ADMIN)

    def test_unknown_commission(self, service):
        with pytest.raises(NotFound):
            service.update_status("missing", "PAID", actor=ADMIN)


class TestTransitions:
    """Test the guarded PENDING -> PROCESSING -> PAID moves."""

    def test_pending_to_processing_to_paid(self, service, commission_id):
        assert service.mark_processing(commission_id, actor=MANAGER)["status"] == "PROCESSING"

        result = service.mark_paid(commission_id, actor=MANAGER, paid_date=date(2026, 10, 20))

        assert result["status"] == "PAID"
        assert result["paid_date"] == "2026-10-20T00:00:00"

    def test_processing_only_from_pending(self, service, commission_id):
        service.mark_processing(commission_id)

        with pytest.raises(ValidationError):
            service.mark_processing(commission_id)

    def test_paid_is_final(self, service, commission_id):
        service.mark_paid(commission_id)

        with pytest.raises(ValidationError):
            service.mark_paid(commission_id)

    def test_transition_checks_owner(self, service, commission_id):
        with pytest.raises(AccessDenied):
            service.mark_paid(commission_id, actor=OTHER_MANAGER)


class TestCommissionInvoice:

    def test_invoice_amounts(self, service, commission_id):
        result = service.generate_invoice(commission_id, "October collections", actor=MANAGER, **BANK)

        invoice = result["invoice"]
        assert re.match(r"^COM-INV-\d{6}-\d{6}$", invoice["invoice_number"])
        assert invoice["collection_amount"] == 10000.0
        assert invoice["commission_rate"] == 0.1
        assert invoice["commission_amount"] == 1000.0
        assert invoice["vat_type"] == "EXCLUSIVE"
        assert invoice["vat_amount"] == 160.0
        assert invoice["total_amount"] == 1160.0
        assert invoice["currency"] == "KES"
        assert invoice["reference"] == "COM-OCT-2026-Riverside Plaza"
        assert result["warnings"] == []

    def test_pending_commission_moves_to_processing(self, service, commission_id):
        result = service.generate_invoice(commission_id, "October collections", **BANK)

        assert result["commission"]["status"] == "PROCESSING"

    def test_regeneration_updates_in_place(self, service, commission_id, seed):
        first = service.generate_invoice(commission_id, "First draft", **BANK)
        second = service.generate_invoice(commission_id, "Corrected", vat_rate=0, **BANK)

        assert second["invoice"]["id"] == first["invoice"]["id"]
        assert second["invoice"]["invoice_number"] == first["invoice"]["invoice_number"]
        assert second["invoice"]["description"] == "Corrected"
        assert second["invoice"]["vat_amount"] == 0.0
        assert second["invoice"]["total_amount"] == 1000.0
        assert seed.count(CommissionInvoice) == 1

    def test_bank_details_required(self, service, commission_id):
        with pytest.raises(ValidationError):
            service.generate_invoice(commission_id, "October collections", bank_name="Equity Bank",
                                     account_name="", account_number="0123456789")

    def test_cancelled_commission_cannot_be_invoiced(self, service, commission_id):
        service.update_status(commission_id, "CANCELLED", actor=ADMIN)

        with pytest.raises(ValidationError):
            service.generate_invoice(commission_id, "October collections", **BANK)

    def test_other_manager_denied(self, service, commission_id):
        with pytest.raises(AccessDenied):
            service.generate_invoice(commission_id, "October collections", actor=OTHER_MANAGER, **BANK)

    def test_document_stored_after_commit(self, session_manager, commission_id, tmp_path):
        service = CommissionService(session_manager, JsonReceiptRenderer(), LocalStorageUploader(str(tmp_path)))

        result = service.generate_invoice(commission_id, "October collections", **BANK)

        assert result["invoice"]["document_url"].startswith("file://")
        assert (tmp_path / "commission-invoices" / f"{result['invoice']['invoice_number']}.json").exists()

    def test_document_failure_is_a_warning(self, session_manager, commission_id, seed):
        service = CommissionService(session_manager, JsonReceiptRenderer(), _FailingUploader())

        result = service.generate_invoice(commission_id, "October collections", **BANK)

        assert result["warnings"] == ["invoice recorded, document pending"]
        assert seed.count(CommissionInvoice) == 1


class TestManagerListing:

    def test_newest_period_first(self, service, session_manager, seed):
        property_id = seed.property()
        september = _make_income(session_manager, property_id, 2000, month=9)
        october = _make_income(session_manager, property_id, 3000, month=10)

        result = service.list_manager_commissions("manager-1", actor=MANAGER)

        assert [row["id"] for row in result["commissions"]] == [october, september]
        assert result["commissions"][0]["commission_amount"] == 300.0
        assert result["commissions"][0]["property"]["name"] == "Riverside Plaza"
        assert result["pagination"] == {
            "current_page": 1, "limit": 10, "total": 2, "total_pages": 1, "has_next": False, "has_prev": False,
        }

    def test_second_page(self, service, session_manager, seed):
        property_id = seed.property()
        september = _make_income(session_manager, property_id, 2000, month=9)
        _make_income(session_manager, property_id, 3000, month=10)

        result = service.list_manager_commissions("manager-1", page=2, limit=1)

        assert [row["id"] for row in result["commissions"]] == [september]
        assert result["pagination"]["total_pages"] == 2
        assert result["pagination"]["has_prev"] is True
        assert result["pagination"]["has_next"] is False

    def test_status_filter(self, service, session_manager, seed):
        property_id = seed.property()
        _make_income(session_manager, property_id, 2000, month=9)
        october = _make_income(session_manager, property_id, 3000, month=10)
        service.mark_paid(october)

        paid = service.list_manager_commissions("manager-1", status="PAID")
        everything = service.list_manager_commissions("manager-1", status="ALL")

        assert [row["id"] for row in paid["commissions"]] == [october]
        assert everything["pagination"]["total"] == 2

    def test_date_range_needs_whole_period_inside(self, service, session_manager, seed):
        property_id = seed.property()
        _make_income(session_manager, property_id, 2000, month=9)
        october = _make_income(session_manager, property_id, 3000, month=10)

        result = service.list_manager_commissions("manager-1", start_date="2026-10-01", end_date="2026-10-31")

        assert [row["id"] for row in result["commissions"]] == [october]

    def test_other_managers_rows_are_not_listed(self, service, session_manager, seed):
        _make_income(session_manager, seed.property(manager_id="manager-2", name="Hilltop Court"), 2000)

        assert service.list_manager_commissions("manager-1")["commissions"] == []

    def test_manager_cannot_list_someone_else(self, service):
        with pytest.raises(AccessDenied):
            service.list_manager_commissions("manager-1", actor=OTHER_MANAGER)

    def test_admin_can_list_anyone(self, service, commission_id):
        result = service.list_manager_commissions("manager-1", actor=ADMIN)

        assert [row["id"] for row in result["commissions"]] == [commission_id]

    def test_invalid_status(self, service):
        with pytest.raises(ValidationError):
            service.list_manager_commissions("manager-1", status="SETTLED")

    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), ("two", 10), (1, 500)])
    def test_invalid_paging(self, service, page, limit):
        with pytest.raises(ValidationError):
            service.list_manager_commissions("manager-1", page=page, limit=limit)


class TestPropertyListing:

    def test_only_the_named_property(self, service, session_manager, seed):
        riverside = seed.property()
        hilltop = seed.property(name="Hilltop Court")
        _make_income(session_manager, riverside, 2000)
        wanted = _make_income(session_manager, hilltop, 4000)

        result = service.list_property_commissions("manager-1", hilltop, actor=MANAGER)

        assert [row["id"] for row in result["commissions"]] == [wanted]
        assert result["commissions"][0]["property"]["name"] == "Hilltop Court"
        assert result["pagination"]["total"] == 1

    def test_other_manager_denied(self, service, seed):
        with pytest.raises(AccessDenied):
            service.list_property_commissions("manager-1", seed.property(), actor=OTHER_MANAGER)


class TestCommissionStats:

    def test_summary_and_breakdowns(self, service, session_manager, seed):
        riverside = seed.property()
        hilltop = seed.property(name="Hilltop Court")
        paid = _make_income(session_manager, riverside, 2000, month=9)
        processing = _make_income(session_manager, riverside, 3000, month=10)
        _make_income(session_manager, hilltop, 4000, month=10)
        service.mark_paid(paid)
        service.mark_processing(processing)

        stats = service.get_commission_stats("manager-1", actor=MANAGER)

        assert stats["summary"] == {
            "total_commissions": 3,
            "total_earned": 200.0,
            "pending_amount": 400.0,
            "processing_amount": 300.0,
        }
        assert stats["status_breakdown"] == {"PAID": 1, "PROCESSING": 1, "PENDING": 1}
        assert stats["property_breakdown"]["Riverside Plaza"] == {
            "total_commissions": 2,
            "total_amount": 500.0,
            "pending_amount": 0.0,
            "processing_amount": 300.0,
            "paid_amount": 200.0,
        }
        assert stats["property_breakdown"]["Hilltop Court"]["pending_amount"] == 400.0

    def test_no_commissions(self, service):
        stats = service.get_commission_stats("manager-1")

        assert stats["summary"]["total_commissions"] == 0
        assert stats["summary"]["total_earned"] == 0.0
        assert stats["property_breakdown"] == {}

    def test_other_manager_denied(self, service):
        with pytest.raises(AccessDenied):
            service.get_commission_stats("manager-1", actor=OTHER_MANAGER)


class TestCommissionLookup:

    def test_owner_reads_commission_with_invoice(self, service, commission_id):
        service.generate_invoice(commission_id, "October collections", **BANK)

        result = service.get_commission(commission_id, actor=MANAGER)

        assert result["id"] == commission_id
        assert result["status"] == "PROCESSING"
        assert result["property"]["name"] == "Riverside Plaza"
        assert result["invoice"]["total_amount"] == 1160.0

    def test_not_yet_invoiced(self, service, commission_id):
        assert service.get_commission(commission_id)["invoice"] is None

    def test_other_manager_denied(self, service, commission_id):
        with pytest.raises(AccessDenied):
            service.get_commission(commission_id, actor=OTHER_MANAGER)

    def test_unknown_commission(self, service):
        with pytest.raises(NotFound):
            service.get_commission("missing", actor=ADMIN)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

class _FailingUploader(StorageUploader):
    def upload(self, data: bytes, name: str) -> str:
        raise OSError("bucket unavailable")


def _make_income(session_manager, property_id, amount, month=10) -> str:
    result = PaymentProcessor(session_manager).record_income(
        property_id, amount, paid_at=datetime(2026, month, 10, 9, 0)
    )
    return result["commission"]["commission_id"]
