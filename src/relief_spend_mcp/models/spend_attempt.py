"""
The mutable record of a single spend attempt.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from relief_spend_mcp.models.category import AidCategory
from relief_spend_mcp.models.payment_code import PaymentCode


class AttemptStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTING = "submitting"
    SETTLED = "settled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class SpendAttempt(BaseModel):
    """
    One user action, from opening the spend dialog to closing it.

    ``scanned_code`` is None when the beneficiary picked a vendor without
    scanning; ``vendor_id`` is always set once a vendor is known.
    """

    model_config = {"validate_assignment": True}

    vendor_id: Optional[str] = None
    scanned_code: Optional[PaymentCode] = None
    selected_category: Optional[AidCategory] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    status: AttemptStatus = AttemptStatus.DRAFT

    @property
    def code(self) -> Optional[str]:
        """The scanned code token, if any."""
        return self.scanned_code.code if self.scanned_code else None
