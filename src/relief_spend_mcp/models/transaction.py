"""
Transaction records produced by settled spends.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from relief_spend_mcp.models.category import AidCategory
from relief_spend_mcp.utils.money import to_amount

UNKNOWN_VENDOR = "Unknown Vendor"


class SpendReceipt(BaseModel):
    """
    Backend confirmation of a spend.

    ``category_balance_after`` is the backend's view of the category balance
    once the spend settled; some backend versions omit it.
    """

    model_config = {"populate_by_name": True}

    transaction_id: str = Field(alias="transactionId", min_length=1)
    category_balance_after: Optional[Decimal] = Field(
        default=None, alias="categoryBalanceAfter"
    )
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    status: str = "confirmed"

    @field_validator("category_balance_after", mode="before")
    @classmethod
    def normalize_balance(cls, v: Any) -> Optional[Decimal]:
        return None if v is None else to_amount(v)


class Transaction(BaseModel):
    """
    A settled spend, kept for display in the beneficiary's history.

    Append-only: nothing in the spending core modifies a Transaction once
    it has been created.
    """

    model_config = {"strict": True, "populate_by_name": True, "frozen": True}

    # Required fields
    id: str
    amount: Decimal
    category: AidCategory
    timestamp: datetime

    # Counterparty
    vendor_id: str
    vendor_name: str = UNKNOWN_VENDOR

    description: str = ""
    status: str = "confirmed"

    # References
    payment_code: Optional[str] = None
    transaction_hash: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Decimal:
        """Spends are strictly positive."""
        amount = to_amount(v)
        if amount <= 0:
            raise ValueError(f"Transaction amount must be positive, got {amount}")
        return amount

    @field_validator("category", mode="before")
    @classmethod
    def parse_category(cls, v: Any) -> AidCategory:
        return AidCategory.parse(v)
