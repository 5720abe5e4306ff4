"""
Vendor model for the approved-vendor directory.
"""

from typing import List

from pydantic import BaseModel, Field


class Vendor(BaseModel):
    """An approved vendor a beneficiary can pay."""

    model_config = {"strict": True, "populate_by_name": True}

    vendor_id: str = Field(alias="id")
    name: str
    categories: List[str] = Field(default_factory=list)
