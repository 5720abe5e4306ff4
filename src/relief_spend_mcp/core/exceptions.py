"""
Custom exceptions for the relief spending core.

Every error an operation can surface derives from ReliefSpendError. The
MCP tool layer turns them into error payloads via ``to_dict``.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class ReliefSpendError(Exception):
    """Base exception for relief spending errors."""

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": str(self)}


class CameraUnavailable(ReliefSpendError):
    """Raised when the frame source cannot be started."""
    pass


class InvalidTransition(ReliefSpendError):
    """Raised when an operation is not accepted in the current state."""

    def __init__(self, operation: str, state: str):
        super().__init__(f"Cannot {operation} while {state}")
        self.operation = operation
        self.state = state


# Decode errors: recoverable while scanning


class DecodeError(ReliefSpendError):
    """Raised when scanned text is not a usable payment code."""
    pass


class MalformedPayload(DecodeError):
    """The scanned text is not parseable structured data."""
    pass


class WrongKind(DecodeError):
    """The payload is structured data but not a relief payment code."""
    pass


class MissingFields(DecodeError):
    """A required payment code field is absent or empty."""
    pass


class UnsupportedVersion(DecodeError):
    """The payload was produced by an incompatible schema version."""
    pass


# Input errors: rejected before any network call


class InputError(ReliefSpendError):
    """Base class for invalid user input."""
    pass


class NoCategorySelected(InputError):
    """An amount was entered before a category was chosen."""

    def __init__(self, message: str = "Please select a category for this payment"):
        super().__init__(message)


class CategoryUnavailable(InputError):
    """The chosen category is unknown or has nothing left to spend."""

    def __init__(self, category: str):
        super().__init__(f"No spendable balance in category: {category}")
        self.category = category


class InvalidAmount(InputError):
    """The amount is not a positive number."""
    pass


class MissingDescription(InputError):
    """A purchase description is required."""

    def __init__(self, message: str = "Please describe the purchase"):
        super().__init__(message)


class InsufficientBalance(ReliefSpendError):
    """The requested amount exceeds the category's available balance."""

    def __init__(self, requested: Decimal, available: Decimal, category: str):
        super().__init__(
            f"Insufficient balance in {category}: "
            f"requested {requested}, available {available}"
        )
        self.requested = requested
        self.available = available
        self.category = category

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            requested=str(self.requested),
            available=str(self.available),
            category=self.category,
        )
        return data


# Remote errors: reported after a submission, ledger untouched


class RemoteError(ReliefSpendError):
    """Base class for failures reported by or on the way to the backend."""
    pass


class SettlementFailed(RemoteError):
    """The backend refused the spend."""

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class NetworkError(RemoteError):
    """The backend could not be reached or did not answer in time."""
    pass
