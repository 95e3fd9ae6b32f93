"""
Runtime configuration, read from the environment.
"""

import os
from dataclasses import dataclass
from decimal import Decimal


@dataclass
class LedgerSettings:
    """Settings shared by the Flask app and the Lambda handler."""

    environment: str = "dev"
    database_url: str = "sqlite://"
    # Mirrors the max-wait / timeout pair used for payment transactions in production
    tx_max_wait_seconds: float = 20.0
    tx_timeout_seconds: float = 60.0
    preview_vat_rate: Decimal = Decimal("16")
    receipt_dir: str | None = None
    port: int = 8080

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        return cls(
            environment=os.environ.get("ENVIRONMENT", "dev"),
            database_url=os.environ.get("DATABASE_URL", "sqlite://"),
            tx_max_wait_seconds=float(os.environ.get("LEDGER_TX_MAX_WAIT", 20)),
            tx_timeout_seconds=float(os.environ.get("LEDGER_TX_TIMEOUT", 60)),
            preview_vat_rate=Decimal(os.environ.get("LEDGER_PREVIEW_VAT_RATE", "16")),
            receipt_dir=os.environ.get("LEDGER_RECEIPT_DIR") or None,
            port=int(os.environ.get("PORT", 8080)),
        )
