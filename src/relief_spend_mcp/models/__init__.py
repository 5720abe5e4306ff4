"""
Pydantic models for the relief spending core.
"""

from relief_spend_mcp.models.category import AidCategory, CategoryBalance
from relief_spend_mcp.models.payment_code import PaymentCode
from relief_spend_mcp.models.spend_attempt import AttemptStatus, SpendAttempt
from relief_spend_mcp.models.transaction import SpendReceipt, Transaction
from relief_spend_mcp.models.vendor import Vendor

__all__ = [
    "AidCategory",
    "CategoryBalance",
    "PaymentCode",
    "AttemptStatus",
    "SpendAttempt",
    "SpendReceipt",
    "Transaction",
    "Vendor",
]
