"""
Commission lifecycle: status changes, commission invoices and the manager
read side (listings and stats).

Accrual happens in the payment pipeline; this module covers what happens to a
commission afterwards.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from .calculators import CommissionCalculator
from .calculators.charges import quantize_money
from .db import LedgerRepository
from .errors import AccessDenied, LedgerError, ValidationError
from .models import CommissionStatus, VatType
from .output import pagination, to_money
from .periods import MONTH_NAMES, to_date
from .validators import InputValidator


logger = logging.getLogger(__name__)

MANAGER_STATUSES = (CommissionStatus.PROCESSING, CommissionStatus.PAID)

_STATUS_BUCKETS = {
    CommissionStatus.PENDING.value: "pending_amount",
    CommissionStatus.PROCESSING.value: "processing_amount",
    CommissionStatus.PAID.value: "paid_amount",
}


@dataclass
class Actor:
    """Who is asking. ADMIN may do anything; a manager only touches their own rows."""

    user_id: str
    role: str = "MANAGER"

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


class CommissionService:
    """Moves commissions through PENDING -> PROCESSING -> PAID and raises their invoices."""

    def __init__(self, session_manager, renderer=None, uploader=None):
        self.session_manager = session_manager
        self.renderer = renderer
        self.uploader = uploader

    def update_status(
        self,
        commission_id: str,
        status: str,
        actor: Actor | None = None,
        notes: str | None = None,
        paid_date=None
    ) -> dict:
        try:
            new_status = CommissionStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid status value: {status}") from None

        with self.session_manager.session_scope() as session:
            commission = LedgerRepository(session).get_commission(commission_id, lock=True)
            self._check_owner(commission, actor)

            if actor is not None and not actor.is_admin:
                if new_status not in MANAGER_STATUSES:
                    raise AccessDenied("Managers can only mark commissions as PROCESSING or PAID")
                if notes is not None or paid_date is not None:
                    raise AccessDenied("Managers cannot update notes or paid date")

            commission.status = new_status.value
            if notes is not None:
                commission.notes = notes
            if new_status == CommissionStatus.PAID:
                commission.paid_date = self._paid_at(paid_date)
            session.flush()
            result = commission.to_dict()

        logger.info(f"Commission {commission_id} set to {new_status.value}")
        return result

    def mark_processing(self, commission_id: str, actor: Actor | None = None) -> dict:
        return self._transition(commission_id, actor, (CommissionStatus.PENDING,), CommissionStatus.PROCESSING)

    def mark_paid(self, commission_id: str, actor: Actor | None = None, paid_date=None) -> dict:
        return self._transition(
            commission_id, actor,
            (CommissionStatus.PENDING, CommissionStatus.PROCESSING),
            CommissionStatus.PAID,
            paid_date=paid_date,
        )

    def generate_invoice(
        self,
        commission_id: str,
        description: str,
        bank_name: str,
        account_name: str,
        account_number: str,
        actor: Actor | None = None,
        branch: str | None = None,
        bank_code: str | None = None,
        swift_code: str | None = None,
        currency: str = "KES",
        vat_rate=None
    ) -> dict:
        """
        Create the commission's invoice, or regenerate it in place.

        VAT comes from the commission's own VAT context unless `vat_rate`
        (percent) overrides it. A PENDING commission moves to PROCESSING.
        """
        if not description:
            raise ValidationError("description is required")
        if not bank_name or not account_name or not account_number:
            raise ValidationError("bank_name, account_name and account_number are required")

        with self.session_manager.session_scope() as session:
            repo = LedgerRepository(session)
            commission = repo.get_commission(commission_id, lock=True)
            self._check_owner(commission, actor)
            if commission.status == CommissionStatus.CANCELLED.value:
                raise ValidationError("Cannot invoice a cancelled commission", commission_id=commission_id)

            values = self._invoice_values(commission, vat_rate)
            values.update(
                commission_id=commission.id,
                description=description,
                bank_name=bank_name,
                account_name=account_name,
                account_number=account_number,
                branch=branch,
                bank_code=bank_code,
                swift_code=swift_code,
                currency=currency,
            )
            invoice = repo.upsert_commission_invoice(values)

            if commission.status == CommissionStatus.PENDING.value:
                commission.status = CommissionStatus.PROCESSING.value
            session.flush()
            result = {"invoice": invoice.to_dict(), "commission": commission.to_dict(), "warnings": []}

        logger.info(f"Commission invoice {result['invoice']['invoice_number']} issued for {commission_id}")
        self._store_document(result)
        return result

    # =========================================================================
    # Read side
    # =========================================================================

    def list_manager_commissions(
        self,
        manager_id: str,
        actor: Actor | None = None,
        status: str | None = None,
        start_date=None,
        end_date=None,
        page=1,
        limit=10
    ) -> dict:
        """
        A manager's commissions, newest period first.

        `status` of None or "ALL" returns every status. The date range only
        applies when both ends are given, and keeps rows whose whole period
        falls inside it.
        """
        self._check_reader(manager_id, actor)
        page, limit = InputValidator.validate_page(page, limit)
        if status is not None and status != "ALL":
            try:
                status = CommissionStatus(status).value
            except ValueError:
                raise ValidationError(f"Invalid status value: {status}") from None
        else:
            status = None
        start = end = None
        if start_date and end_date:
            start, end = to_date(start_date), to_date(end_date)

        with self.session_manager.session_scope() as session:
            rows, total = LedgerRepository(session).commissions_for_manager(
                manager_id, status=status, start=start, end=end,
                offset=(page - 1) * limit, limit=limit,
            )
            commissions = [self._with_property(row) for row in rows]

        return {"commissions": commissions, "pagination": pagination(page, limit, total)}

    def list_property_commissions(self, manager_id: str, property_id: str, actor: Actor | None = None,
                                  page=1, limit=10) -> dict:
        self._check_reader(manager_id, actor)
        page, limit = InputValidator.validate_page(page, limit)

        with self.session_manager.session_scope() as session:
            rows, total = LedgerRepository(session).commissions_for_manager(
                manager_id, property_id=property_id, offset=(page - 1) * limit, limit=limit,
            )
            commissions = [self._with_property(row) for row in rows]

        return {"commissions": commissions, "pagination": pagination(page, limit, total)}

    def get_commission_stats(self, manager_id: str, actor: Actor | None = None) -> dict:
        """Totals by status and by property for one manager."""
        self._check_reader(manager_id, actor)

        with self.session_manager.session_scope() as session:
            rows, _ = LedgerRepository(session).commissions_for_manager(manager_id)
            entries = [
                (row.status, row.property.name if row.property is not None else row.property_id,
                 row.commission_amount)
                for row in rows
            ]

        by_status = {}
        status_amounts = {}
        by_property = {}
        for status, property_name, amount in entries:
            by_status[status] = by_status.get(status, 0) + 1
            status_amounts[status] = status_amounts.get(status, Decimal('0')) + amount

            stats = by_property.setdefault(property_name, {
                "total_commissions": 0,
                "total_amount": Decimal('0'),
                "pending_amount": Decimal('0'),
                "processing_amount": Decimal('0'),
                "paid_amount": Decimal('0'),
            })
            stats["total_commissions"] += 1
            stats["total_amount"] += amount
            bucket = _STATUS_BUCKETS.get(status)
            if bucket:
                stats[bucket] += amount

        zero = Decimal('0')
        return {
            "manager_id": manager_id,
            "summary": {
                "total_commissions": len(entries),
                "total_earned": to_money(status_amounts.get(CommissionStatus.PAID.value, zero)),
                "pending_amount": to_money(status_amounts.get(CommissionStatus.PENDING.value, zero)),
                "processing_amount": to_money(status_amounts.get(CommissionStatus.PROCESSING.value, zero)),
            },
            "status_breakdown": by_status,
            "property_breakdown": {
                name: {key: to_money(value) if isinstance(value, Decimal) else value for key, value in stats.items()}
                for name, stats in by_property.items()
            },
        }

    def get_commission(self, commission_id: str, actor: Actor | None = None) -> dict:
        with self.session_manager.session_scope() as session:
            commission = LedgerRepository(session).get_commission(commission_id)
            self._check_reader(commission.manager_id, actor)
            result = self._with_property(commission)
            result["invoice"] = commission.invoice.to_dict() if commission.invoice is not None else None
        return result

    def _invoice_values(self, commission, vat_rate) -> dict:
        fee_rate = CommissionCalculator.fee_rate(commission.commission_fee)
        collection = commission.income_amount
        commission_amount = commission.commission_amount

        if vat_rate is not None:
            rate = Decimal(str(vat_rate))
        elif commission.vat_type == VatType.NOT_APPLICABLE.value:
            rate = Decimal('0')
        else:
            rate = commission.vat_rate
        vat_amount = quantize_money(commission_amount * rate / Decimal('100'))

        period = to_date(commission.period_start)
        property_name = commission.property.name if commission.property is not None else ""
        return {
            "property_name": property_name,
            "collection_amount": collection,
            "commission_rate": fee_rate,
            "commission_amount": commission_amount,
            "vat_type": commission.vat_type,
            "vat_rate": rate,
            "vat_amount": vat_amount,
            "total_amount": commission_amount + vat_amount,
            "reference": f"COM-{MONTH_NAMES[period.month - 1][:3].upper()}-{period.year}-{property_name or 'PROPERTY'}",
        }

    def _store_document(self, result: dict) -> None:
        """Render and upload the invoice document after commit; failure is a warning."""
        if self.renderer is None or self.uploader is None:
            return
        invoice = result["invoice"]
        try:
            data = self.renderer.render(invoice)
            url = self.uploader.upload(data, f"commission-invoices/{invoice['invoice_number']}.json")
            with self.session_manager.session_scope() as session:
                LedgerRepository(session).get_commission_invoice(invoice["commission_id"]).document_url = url
        except (LedgerError, OSError, SQLAlchemyError) as e:
            logger.warning(f"Commission invoice {invoice['invoice_number']} document not stored: {e}")
            result["warnings"].append("invoice recorded, document pending")
            return
        invoice["document_url"] = url

    def _transition(self, commission_id, actor, allowed, target, paid_date=None) -> dict:
        with self.session_manager.session_scope() as session:
            commission = LedgerRepository(session).get_commission(commission_id, lock=True)
            self._check_owner(commission, actor)
            if commission.status not in [s.value for s in allowed]:
                raise ValidationError(
                    f"Only {' or '.join(s.value for s in allowed)} commissions can be marked as {target.value}",
                    commission_id=commission_id,
                    status=commission.status,
                )
            commission.status = target.value
            if target == CommissionStatus.PAID:
                commission.paid_date = self._paid_at(paid_date)
            session.flush()
            result = commission.to_dict()

        logger.info(f"Commission {commission_id} marked {target.value}")
        return result

    @staticmethod
    def _check_owner(commission, actor: Actor | None) -> None:
        if actor is not None and not actor.is_admin and actor.user_id != commission.manager_id:
            raise AccessDenied("Access denied. You can only manage your own commissions.",
                               commission_id=commission.id)

    @staticmethod
    def _check_reader(manager_id: str, actor: Actor | None) -> None:
        if actor is not None and not actor.is_admin and actor.user_id != manager_id:
            raise AccessDenied("Access denied. You can only view your own commissions.",
                               manager_id=manager_id)

    @staticmethod
    def _with_property(commission) -> dict:
        result = commission.to_dict()
        prop = commission.property
        result["property"] = {"id": prop.id, "name": prop.name} if prop is not None else None
        return result

    @staticmethod
    def _paid_at(paid_date) -> datetime:
        if paid_date is None:
            return datetime.now()
        if isinstance(paid_date, datetime):
            return paid_date
        return datetime.combine(to_date(paid_date), datetime.min.time())
