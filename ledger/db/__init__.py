"""
Persistence layer: ORM schema, session management and the ledger repository.
"""

from .repository import LedgerRepository
from .schema import (
    Base, BillInvoice, CommissionInvoice, CreditBalance, Income, Invoice, ManagerCommission,
    PaymentLedgerEntry, PaymentRecord, PrepaidEntry, Property, ServiceCharge, Tenant, Unit
)
from .session import SessionManager, create_ledger_engine

__all__ = [
    "Base",
    "BillInvoice",
    "CommissionInvoice",
    "CreditBalance",
    "Income",
    "Invoice",
    "LedgerRepository",
    "ManagerCommission",
    "PaymentLedgerEntry",
    "PaymentRecord",
    "PrepaidEntry",
    "Property",
    "ServiceCharge",
    "SessionManager",
    "Tenant",
    "Unit",
    "create_ledger_engine",
]
