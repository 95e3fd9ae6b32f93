"""
Wiring for the entry points: one session manager shared by the processor,
the reports and the commission service.
"""

import logging
from dataclasses import dataclass

from .commissions import CommissionService
from .config import LedgerSettings
from .db import SessionManager
from .calculators import ChargeCalculator
from .processor import PaymentProcessor
from .receipts import JsonReceiptRenderer, LocalStorageUploader, ReceiptService
from .reports import LedgerReports


logger = logging.getLogger(__name__)


@dataclass
class LedgerServices:
    settings: LedgerSettings
    session_manager: SessionManager
    processor: PaymentProcessor
    reports: LedgerReports
    commissions: CommissionService

    @classmethod
    def from_settings(cls, settings: LedgerSettings | None = None, create_tables: bool = True) -> "LedgerServices":
        settings = settings or LedgerSettings.from_env()
        session_manager = SessionManager.from_settings(settings)
        if create_tables:
            session_manager.create_tables()

        renderer = uploader = receipt_service = None
        if settings.receipt_dir:
            renderer = JsonReceiptRenderer()
            uploader = LocalStorageUploader(settings.receipt_dir)
            receipt_service = ReceiptService(session_manager, renderer, uploader)

        charges = ChargeCalculator(preview_vat_rate=settings.preview_vat_rate)
        logger.info(f"Ledger services ready ({settings.environment}, {session_manager.engine.dialect.name})")
        return cls(
            settings=settings,
            session_manager=session_manager,
            processor=PaymentProcessor(session_manager, receipt_service=receipt_service, charge_calculator=charges),
            reports=LedgerReports(session_manager, charge_calculator=charges),
            commissions=CommissionService(session_manager, renderer=renderer, uploader=uploader),
        )
