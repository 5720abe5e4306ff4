"""
Payment code model exchanged between vendor and beneficiary.
"""

from typing import Literal

from pydantic import AliasChoices, BaseModel, Field

RELIEF_PAYMENT_KIND = "RELIEF_PAYMENT"
SCHEMA_VERSION = "1.0"


class PaymentCode(BaseModel):
    """
    A vendor-issued, short-lived payment token.

    Serialized as JSON into an optical code by the vendor and decoded by
    the beneficiary's scanner. Older vendor builds used the field names
    ``type``, ``paymentCode``, ``timestamp`` and ``version``; those are
    accepted on input, output always uses the current names.
    """

    model_config = {"strict": True, "populate_by_name": True, "frozen": True}

    kind: Literal["RELIEF_PAYMENT"] = Field(
        default=RELIEF_PAYMENT_KIND,
        validation_alias=AliasChoices("kind", "type"),
        serialization_alias="kind",
    )
    vendor_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("vendorId", "vendor_id"),
        serialization_alias="vendorId",
    )
    code: str = Field(
        min_length=1,
        validation_alias=AliasChoices("code", "paymentCode"),
        serialization_alias="code",
    )
    issued_at: int = Field(  # epoch millis
        ge=0,
        validation_alias=AliasChoices("issuedAt", "timestamp", "issued_at"),
        serialization_alias="issuedAt",
    )
    schema_version: str = Field(
        default=SCHEMA_VERSION,
        validation_alias=AliasChoices("schemaVersion", "version", "schema_version"),
        serialization_alias="schemaVersion",
    )
