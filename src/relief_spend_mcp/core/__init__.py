"""
Core functionality for the relief spending flow.
"""

from relief_spend_mcp.core.api_client import ReliefApiClient
from relief_spend_mcp.core.codec import PaymentCodeIssuer, decode, encode
from relief_spend_mcp.core.exceptions import (
    CameraUnavailable,
    CategoryUnavailable,
    DecodeError,
    InsufficientBalance,
    InvalidAmount,
    InvalidTransition,
    MalformedPayload,
    MissingDescription,
    MissingFields,
    NetworkError,
    NoCategorySelected,
    ReliefSpendError,
    SettlementFailed,
    UnsupportedVersion,
    WrongKind,
)
from relief_spend_mcp.core.ledger import CategoryLedger
from relief_spend_mcp.core.orchestrator import SpendingOrchestrator, SpendState
from relief_spend_mcp.core.scanner import FrameSource, ScanSession
from relief_spend_mcp.core.session import BeneficiarySession

__all__ = [
    "BeneficiarySession",
    "CategoryLedger",
    "FrameSource",
    "PaymentCodeIssuer",
    "ReliefApiClient",
    "ScanSession",
    "SpendState",
    "SpendingOrchestrator",
    "decode",
    "encode",
    "ReliefSpendError",
    "CameraUnavailable",
    "CategoryUnavailable",
    "DecodeError",
    "InsufficientBalance",
    "InvalidAmount",
    "InvalidTransition",
    "MalformedPayload",
    "MissingDescription",
    "MissingFields",
    "NetworkError",
    "NoCategorySelected",
    "SettlementFailed",
    "UnsupportedVersion",
    "WrongKind",
]
