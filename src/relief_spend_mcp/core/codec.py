"""
Payment-code codec.

Vendors encode their identity and a fresh code token into a JSON payload
that is rendered as an optical code; beneficiaries decode the scanned
text back into a PaymentCode. Decoding is pure and performs no I/O.

Wire format::

    {"kind":"RELIEF_PAYMENT","vendorId":"...","code":"...",
     "issuedAt":<epoch millis>,"schemaVersion":"1.0"}

Unknown extra fields are ignored for forward compatibility.
"""

import json
import logging
import secrets
import string
import time
from typing import Any, Dict, FrozenSet, Optional, Set

from pydantic import ValidationError

from relief_spend_mcp.core.exceptions import (
    MalformedPayload,
    MissingFields,
    UnsupportedVersion,
    WrongKind,
)
from relief_spend_mcp.models.payment_code import (
    RELIEF_PAYMENT_KIND,
    SCHEMA_VERSION,
    PaymentCode,
)

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS: FrozenSet[str] = frozenset({SCHEMA_VERSION})

CODE_ALPHABET = string.digits + string.ascii_uppercase
CODE_SUFFIX_LENGTH = 4

# Largest payload a version 40 QR code can carry in byte mode
MAX_PAYLOAD_LENGTH = 2953


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def encode(vendor_id: str, code: str, issued_at: Optional[int] = None) -> str:
    """
    Serialize a vendor's payment code to its transport string.

    Args:
        vendor_id: Opaque identifier of the issuing vendor
        code: Code token, unique to this payload
        issued_at: Epoch millis; defaults to now

    Returns:
        Compact JSON text for the optical code

    Raises:
        ValueError: If vendor_id or code is empty
    """
    if not vendor_id or not code:
        raise ValueError("vendor_id and code are required")

    payment_code = PaymentCode(
        vendor_id=vendor_id,
        code=code,
        issued_at=now_millis() if issued_at is None else issued_at,
    )
    return json.dumps(payment_code.model_dump(by_alias=True), separators=(",", ":"))


def _first(data: Dict[str, Any], *keys: str) -> Any:
    """Return the value of the first key present in data."""
    for key in keys:
        if key in data:
            return data[key]
    return None


def decode(raw_text: str) -> PaymentCode:
    """
    Parse scanned text into a validated PaymentCode.

    Args:
        raw_text: Text yielded by the optical decoder

    Returns:
        Fully populated PaymentCode

    Raises:
        MalformedPayload: Text is not a JSON object, is too large or too deeply
            nested, or a field has the wrong type
        WrongKind: The object is not a relief payment code
        MissingFields: vendorId, code or issuedAt is absent or empty
        UnsupportedVersion: schemaVersion is absent or not understood
    """
    if isinstance(raw_text, str) and len(raw_text) > MAX_PAYLOAD_LENGTH:
        raise MalformedPayload("Scanned code is too large to be a payment payload")

    try:
        data = json.loads(raw_text)
    except (TypeError, ValueError, RecursionError):
        raise MalformedPayload("Scanned code is not a valid payment payload") from None

    if not isinstance(data, dict):
        raise MalformedPayload("Scanned code is not a valid payment payload")

    if _first(data, "kind", "type") != RELIEF_PAYMENT_KIND:
        raise WrongKind("Invalid QR code. Please scan a valid vendor payment code.")

    vendor_id = _first(data, "vendorId", "vendor_id")
    code = _first(data, "code", "paymentCode")
    issued_at = _first(data, "issuedAt", "timestamp", "issued_at")

    for name, value in (("vendorId", vendor_id), ("code", code)):
        if value is not None and not isinstance(value, str):
            raise MalformedPayload(f"Field {name} must be a string")

    missing = [
        name
        for name, value in (("vendorId", vendor_id), ("code", code), ("issuedAt", issued_at))
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise MissingFields(f"Payment code is missing: {', '.join(missing)}")

    if isinstance(issued_at, bool) or not isinstance(issued_at, int):
        raise MalformedPayload("Field issuedAt must be integer epoch millis")

    version = _first(data, "schemaVersion", "version", "schema_version")
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(f"Unsupported payment code version: {version!r}")

    try:
        return PaymentCode(
            vendor_id=vendor_id.strip(),
            code=code.strip(),
            issued_at=issued_at,
            schema_version=version,
        )
    except ValidationError as e:
        raise MalformedPayload(f"Invalid payment code: {e.error_count()} field error(s)") from e


class PaymentCodeIssuer:
    """
    Session-scoped generator of payment code tokens.

    Tokens look like ``"4821-K9ZQ"``: the last four digits of a strictly
    increasing millisecond clock, then a random base-36 suffix. Every
    token issued is remembered and never handed out twice.

    The remembered set grows by one token per issue for the life of the
    issuer, so scope an issuer to one session rather than the process.
    """

    def __init__(self) -> None:
        self._issued: Set[str] = set()
        self._last_clock = 0

    def _tick(self) -> int:
        clock = max(now_millis(), self._last_clock + 1)
        self._last_clock = clock
        return clock

    def new_code(self) -> str:
        """Generate a token not previously issued by this issuer."""
        while True:
            clock = str(self._tick())[-4:].rjust(4, "0")
            suffix = "".join(
                secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH)
            )
            token = f"{clock}-{suffix}"
            if token not in self._issued:
                self._issued.add(token)
                return token
            logger.debug("Payment code collision on %s, redrawing", token)

    def issue(self, vendor_id: str) -> str:
        """
        Produce a fresh encoded payload for a vendor.

        Each call yields a different code token, so a previously displayed
        code is never silently replayed after regeneration.
        """
        return encode(vendor_id, self.new_code())

    @property
    def issued_count(self) -> int:
        return len(self._issued)
