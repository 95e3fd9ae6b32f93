"""
Payment receipts.

Receipts are rendered and uploaded after the payment transaction commits, so
a rendering or storage outage never loses a recorded payment.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from .db import LedgerRepository
from .errors import StorageFailure


logger = logging.getLogger(__name__)


class ReceiptRenderer(ABC):
    """Turns a recorded payment into a receipt document."""

    @abstractmethod
    def render(self, payload: dict) -> bytes:
        pass


class StorageUploader(ABC):
    """Stores a document and returns the URL it can be fetched from."""

    @abstractmethod
    def upload(self, data: bytes, name: str) -> str:
        pass


class JsonReceiptRenderer(ReceiptRenderer):
    def render(self, payload: dict) -> bytes:
        return json.dumps(payload, indent=2, default=str).encode("utf-8")


class LocalStorageUploader(StorageUploader):
    """Writes documents under a local directory and returns file:// URLs."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def upload(self, data: bytes, name: str) -> str:
        path = (self.base_dir / name).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path.as_uri()


class ReceiptService:
    """Renders, uploads and attaches the receipt for a ledger entry."""

    def __init__(self, session_manager, renderer: ReceiptRenderer, uploader: StorageUploader):
        self.session_manager = session_manager
        self.renderer = renderer
        self.uploader = uploader

    def issue(self, payload: dict) -> str:
        """
        Produce the receipt and record its URL on the entry.

        `payload` carries the ledger entry, the invoices it updated, the
        tenant, the overpayment amount and the credit used. Runs in its own
        short transaction. Raises StorageFailure when rendering, upload or
        attaching the URL fails.
        """
        entry_id = payload["ledger_entry"]["id"]
        try:
            document = self.renderer.render(payload)
            url = self.uploader.upload(document, f"receipts/{entry_id}.json")
        except StorageFailure:
            raise
        except Exception as e:
            raise StorageFailure(f"Receipt for payment {entry_id} could not be stored: {e}",
                                 payment_id=entry_id) from e

        try:
            with self.session_manager.session_scope() as session:
                LedgerRepository(session).attach_receipt(entry_id, url)
        except SQLAlchemyError as e:
            raise StorageFailure(f"Receipt for payment {entry_id} could not be attached: {e}",
                                 payment_id=entry_id, receipt_url=url) from e

        logger.info(f"Receipt for payment {entry_id} stored at {url}")
        return url
