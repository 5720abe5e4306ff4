"""
Aid category models for beneficiary balances.
"""

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from relief_spend_mcp.utils.money import to_amount


class AidCategory(str, Enum):
    """
    A partition of a beneficiary's relief funds.

    Each category restricts spending to one class of essential goods.
    """

    FOOD = "food"
    MEDICAL = "medical"
    SHELTER = "shelter"
    WATER = "water"
    CLOTHING = "clothing"
    EMERGENCY_SUPPLIES = "emergency_supplies"
    EDUCATION = "education"
    TRANSPORTATION = "transportation"
    UTILITIES = "utilities"

    @property
    def display_name(self) -> str:
        """Human readable name, e.g. "Emergency Supplies"."""
        return self.value.replace("_", " ").title()

    @classmethod
    def parse(cls, value: Any) -> "AidCategory":
        """
        Parse a category from an enum member or a loose string.

        Accepts backend display names ("Emergency Supplies") and
        hyphenated forms ("emergency-supplies").

        Raises:
            ValueError: If the value names no known category
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown aid category: {value!r}")
        key = value.strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown aid category: {value!r}") from None


class CategoryBalance(BaseModel):
    """
    One beneficiary's balance in one aid category.

    Server-sourced and cached client-side by the category ledger. Instances
    are immutable; the ledger replaces them when a settlement is applied.
    """

    model_config = {"strict": True, "populate_by_name": True, "frozen": True}

    category: AidCategory

    # Amounts, two-decimal fixed point
    available_balance: Decimal = Field(alias="availableBalance")
    total_received: Decimal = Field(alias="totalReceived")
    total_spent: Decimal = Field(alias="totalSpent")

    transaction_count: int = Field(default=0, alias="transactionCount", ge=0)

    @field_validator("category", mode="before")
    @classmethod
    def parse_category(cls, v: Any) -> AidCategory:
        return AidCategory.parse(v)

    @field_validator("available_balance", "total_received", "total_spent", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Decimal:
        """Normalize to two decimals and reject negative amounts."""
        amount = to_amount(v)
        if amount < 0:
            raise ValueError(f"Amount {amount} must not be negative")
        return amount

    @model_validator(mode="after")
    def check_balance_identity(self) -> "CategoryBalance":
        """Available balance must equal received minus spent."""
        expected = self.total_received - self.total_spent
        if self.available_balance != expected:
            raise ValueError(
                f"{self.category.value}: available {self.available_balance} != "
                f"received {self.total_received} - spent {self.total_spent}"
            )
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_name(self) -> str:
        """Get the display name of the category."""
        return self.category.display_name

    @property
    def is_visible(self) -> bool:
        """A category the beneficiary never received aid in is hidden."""
        return self.available_balance > 0 or self.total_received > 0
