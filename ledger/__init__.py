"""
PAYMENT RECONCILIATION & COMMISSION LEDGER

Turns tenant payments into invoice updates, credit, prepaid periods and
manager commission accruals, one transaction per payment.
"""

from .commissions import Actor, CommissionService
from .config import LedgerSettings
from .errors import (
    AccessDenied, ConflictError, LedgerError, NoInvoiceToAllocate, NotFound, StorageFailure,
    TransactionTimeout, ValidationError
)
from .models import PaymentOptions, PaymentRequest, PaymentResult
from .processor import PaymentProcessor
from .reports import LedgerReports
from .services import LedgerServices

__all__ = [
    'AccessDenied',
    'Actor',
    'CommissionService',
    'ConflictError',
    'LedgerError',
    'LedgerReports',
    'LedgerServices',
    'LedgerSettings',
    'NoInvoiceToAllocate',
    'NotFound',
    'PaymentOptions',
    'PaymentProcessor',
    'PaymentRequest',
    'PaymentResult',
    'StorageFailure',
    'TransactionTimeout',
    'ValidationError',
]
