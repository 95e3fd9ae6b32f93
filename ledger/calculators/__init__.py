"""
Calculators Package

Provides all calculation components for payment reconciliation.
"""

from .allocation import InvoiceAllocator
from .charges import ChargeCalculator
from .commission import CommissionCalculator
from .credit import CreditStore
from .overpayment import OverpaymentDistributor

__all__ = [
    "ChargeCalculator",
    "CreditStore",
    "InvoiceAllocator",
    "OverpaymentDistributor",
    "CommissionCalculator",
]
