"""
Spending orchestrator: drives one spend attempt from scan to settlement.

States::

    IDLE -> SCANNING -> CODE_READY -> CATEGORY_SELECTED -> AMOUNT_ENTERED
         -> SUBMITTING -> SETTLED | REJECTED (retry -> AMOUNT_ENTERED)

CANCELLED is reachable from every state except SUBMITTING. The ledger is
written only here, at most once per attempt, and only after the backend
confirmed the spend. A spend that settles after the ledger was reloaded is
not applied on top of the reloaded snapshot.
"""

import asyncio
import logging
from contextlib import aclosing
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from relief_spend_mcp.core.api_client import SettlementService
from relief_spend_mcp.core.codec import decode
from relief_spend_mcp.core.exceptions import (
    CameraUnavailable,
    CategoryUnavailable,
    DecodeError,
    InsufficientBalance,
    InvalidTransition,
    MissingDescription,
    NetworkError,
    NoCategorySelected,
    RemoteError,
    ReliefSpendError,
    SettlementFailed,
)
from relief_spend_mcp.core.ledger import CategoryKey, CategoryLedger
from relief_spend_mcp.core.scanner import FrameDecoder, FrameSource, ScanSession
from relief_spend_mcp.models.category import AidCategory
from relief_spend_mcp.models.payment_code import PaymentCode
from relief_spend_mcp.models.spend_attempt import AttemptStatus, SpendAttempt
from relief_spend_mcp.models.transaction import UNKNOWN_VENDOR, SpendReceipt, Transaction
from relief_spend_mcp.models.vendor import Vendor
from relief_spend_mcp.utils.money import AmountLike

logger = logging.getLogger(__name__)


class SpendState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CODE_READY = "code_ready"
    CATEGORY_SELECTED = "category_selected"
    AMOUNT_ENTERED = "amount_entered"
    SUBMITTING = "submitting"
    SETTLED = "settled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({SpendState.SETTLED, SpendState.CANCELLED})

# States in which a vendor is known and a category may be (re)chosen
_VENDOR_KNOWN = frozenset(
    {SpendState.CODE_READY, SpendState.CATEGORY_SELECTED, SpendState.AMOUNT_ENTERED}
)


class SpendingOrchestrator:
    """
    State machine for a single spend attempt.

    One orchestrator per opened spend dialog. All methods are meant to be
    called from one event loop; the only await points are camera start,
    frame delivery and the settlement call.
    """

    def __init__(
        self,
        ledger: CategoryLedger,
        settlement: SettlementService,
        vendors: Optional[Mapping[str, Vendor]] = None,
        submit_timeout: Optional[float] = None,
        on_settled: Optional[Callable[[Transaction], None]] = None,
    ):
        """
        Initialize an attempt in the IDLE state.

        Args:
            ledger: The session's category ledger
            settlement: Remote settlement interface
            vendors: Known vendors by id, used for display names
            submit_timeout: Default bound on the settlement call, in seconds
            on_settled: Called once with the transaction when the spend settles
        """
        self._ledger = ledger
        self._settlement = settlement
        self._vendors: Mapping[str, Vendor] = vendors or {}
        self.submit_timeout = submit_timeout
        self._on_settled = on_settled

        self.state = SpendState.IDLE
        self.attempt = SpendAttempt()
        self.last_error: Optional[ReliefSpendError] = None
        self.transaction: Optional[Transaction] = None

        self._scanner: Optional[ScanSession] = None
        self._cancel_requested = False
        self._settled = False

    # State helpers

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _set_state(self, state: SpendState) -> None:
        logger.debug("Spend attempt %s -> %s", self.state.value, state.value)
        self.state = state
        if state in TERMINAL_STATES or state is SpendState.IDLE:
            self._release_camera()

    def _require(self, operation: str, *states: SpendState) -> None:
        if self.state not in states:
            raise InvalidTransition(operation, self.state.value)

    def _fail(self, error: ReliefSpendError) -> ReliefSpendError:
        self.last_error = error
        return error

    def _release_camera(self) -> None:
        if self._scanner is not None:
            self._scanner.close()
            self._scanner = None

    # Scanning

    async def request_scan(
        self,
        source: Optional[FrameSource] = None,
        decoder: Optional[FrameDecoder] = None,
    ) -> None:
        """
        IDLE -> SCANNING.

        With a frame source, the camera is started now and held until the
        attempt returns to IDLE or ends. Without one, decoded text is
        expected through ``accept_scan``.

        Raises:
            CameraUnavailable: The source failed to start; state stays IDLE
        """
        self._require("start scanning", SpendState.IDLE)
        self.last_error = None
        if source is not None:
            if decoder is None:
                raise ValueError("A frame decoder is required with a frame source")
            session = ScanSession(source, decoder)
            try:
                await session.open()
            except CameraUnavailable as e:
                raise self._fail(e)
            self._scanner = session
        self._set_state(SpendState.SCANNING)

    async def scan(self) -> Optional[PaymentCode]:
        """
        Consume frames until a valid payment code is decoded.

        Decode errors are recorded in ``last_error`` and scanning goes on.
        If the source runs dry the attempt returns to IDLE.

        Returns:
            The decoded code, or None if scanning ended without one
        """
        self._require("scan", SpendState.SCANNING)
        if self._scanner is None:
            raise self._fail(CameraUnavailable("No frame source attached"))

        async with aclosing(self._scanner.attempts()) as attempts:
            async for result in attempts:
                if self.state is not SpendState.SCANNING:
                    break
                if isinstance(result, DecodeError):
                    logger.info("Rejected scanned code: %s", result)
                    self.last_error = result
                    continue
                return self._code_ready(result)

        if self.state is SpendState.SCANNING:
            logger.info("Frame source ended without a payment code")
            self._set_state(SpendState.IDLE)
        return None

    def accept_scan(self, raw_text: str) -> PaymentCode:
        """
        SCANNING -> CODE_READY with text decoded outside the frame loop.

        Raises:
            DecodeError: The text is not a valid payment code; state stays SCANNING
        """
        self._require("accept a scanned code", SpendState.SCANNING)
        try:
            payment_code = decode(raw_text)
        except DecodeError as e:
            raise self._fail(e)
        return self._code_ready(payment_code)

    def _code_ready(self, payment_code: PaymentCode) -> PaymentCode:
        self.attempt.scanned_code = payment_code
        self.attempt.vendor_id = payment_code.vendor_id
        self.last_error = None
        self._set_state(SpendState.CODE_READY)
        logger.info("Payment code %s scanned for vendor %s", payment_code.code, payment_code.vendor_id)
        return payment_code

    def select_vendor(self, vendor_id: str) -> None:
        """IDLE or SCANNING -> CODE_READY for a vendor chosen without scanning."""
        self._require("select a vendor", SpendState.IDLE, SpendState.SCANNING)
        if not vendor_id:
            raise ValueError("vendor_id is required")
        self._release_camera()
        self.attempt.vendor_id = vendor_id
        self.attempt.scanned_code = None
        self.last_error = None
        self._set_state(SpendState.CODE_READY)

    # Category and amount

    def select_category(self, category: CategoryKey) -> AidCategory:
        """
        Choose the category to charge.

        Raises:
            CategoryUnavailable: The category is unknown or has zero balance;
                state is unchanged
        """
        self._require("select a category", *_VENDOR_KNOWN)
        balance = self._ledger.get(category)
        if balance is None or balance.available_balance <= 0:
            raise self._fail(CategoryUnavailable(str(getattr(category, "value", category))))

        self.attempt.selected_category = balance.category
        self.last_error = None
        self._set_state(SpendState.CATEGORY_SELECTED)
        return balance.category

    def enter_amount(self, amount: AmountLike, description: str) -> None:
        """
        CATEGORY_SELECTED -> AMOUNT_ENTERED once the amount fits the balance.

        Raises:
            NoCategorySelected: No category has been chosen yet
            InvalidAmount: amount is not a positive number
            MissingDescription: description is blank
            InsufficientBalance: amount exceeds the category's balance;
                the attempt stays (or returns to) CATEGORY_SELECTED
        """
        if self.state is SpendState.CODE_READY:
            raise self._fail(NoCategorySelected())
        self._require("enter an amount", SpendState.CATEGORY_SELECTED, SpendState.AMOUNT_ENTERED)

        category = self.attempt.selected_category
        if category is None:
            raise self._fail(NoCategorySelected())

        try:
            checked = self._ledger.reserve(category, amount)
        except InsufficientBalance as e:
            self.attempt.amount = None
            self._set_state(SpendState.CATEGORY_SELECTED)
            raise self._fail(e)
        except ReliefSpendError as e:
            raise self._fail(e)

        if not description or not description.strip():
            raise self._fail(MissingDescription())

        self.attempt.amount = checked
        self.attempt.description = description.strip()
        self.last_error = None
        self._set_state(SpendState.AMOUNT_ENTERED)

    # Settlement

    async def confirm(self, timeout: Optional[float] = None) -> Optional[Transaction]:
        """
        AMOUNT_ENTERED -> SUBMITTING -> SETTLED | REJECTED.

        Calls the settlement interface exactly once. A confirm arriving
        while a submission is in flight is ignored and returns None.

        Args:
            timeout: Bound on the settlement call; defaults to submit_timeout

        Returns:
            The settled transaction, or None for an ignored duplicate confirm

        Raises:
            SettlementFailed: The backend refused the spend
            NetworkError: The backend was unreachable or timed out
        """
        if self.state is SpendState.SUBMITTING:
            logger.warning("Ignoring confirm: a submission is already in flight")
            return None
        self._require("confirm", SpendState.AMOUNT_ENTERED)

        # Keep our own reference: the caller may tear the dialog down
        # while the call is outstanding.
        attempt = self.attempt
        vendor_id = attempt.vendor_id
        category = attempt.selected_category
        amount = attempt.amount
        description = attempt.description or ""
        if vendor_id is None or category is None or amount is None:
            raise InvalidTransition("confirm", "incomplete attempt")

        attempt.status = AttemptStatus.SUBMITTING
        generation = self._ledger.generation
        self._set_state(SpendState.SUBMITTING)
        if timeout is None:
            timeout = self.submit_timeout

        try:
            receipt = await asyncio.wait_for(
                self._settlement.submit_spend(
                    vendor_id=vendor_id,
                    code=attempt.code,
                    category=category,
                    amount=amount,
                    description=description,
                ),
                timeout,
            )
        except asyncio.TimeoutError:
            raise self._reject(NetworkError(f"Settlement did not answer within {timeout}s"))
        except RemoteError as e:
            raise self._reject(e)
        except asyncio.CancelledError:
            self._reject(NetworkError("Settlement call was interrupted"))
            raise
        except Exception as e:
            logger.exception("Unexpected error from settlement interface")
            raise self._reject(SettlementFailed(str(e))) from e

        return self._settle(receipt, category, amount, generation)

    def _settle(
        self, receipt: SpendReceipt, category: AidCategory, amount: Decimal, generation: int
    ) -> Transaction:
        attempt = self.attempt
        if self._settled and self.transaction is not None:
            return self.transaction
        self._settled = True

        try:
            self._ledger.apply_settlement(
                category,
                amount,
                balance_after=receipt.category_balance_after,
                generation=generation,
            )
        except (CategoryUnavailable, InsufficientBalance) as e:
            # The backend already moved the money; the cached ledger is behind.
            logger.warning("Settled spend %s does not fit the ledger: %s", receipt.transaction_id, e)

        vendor_id = attempt.vendor_id or ""
        vendor = self._vendors.get(vendor_id)
        self.transaction = Transaction(
            id=receipt.transaction_id,
            amount=amount,
            category=category,
            timestamp=datetime.now(timezone.utc),
            vendor_id=vendor_id,
            vendor_name=vendor.name if vendor else UNKNOWN_VENDOR,
            description=attempt.description or "",
            status=receipt.status,
            payment_code=attempt.code,
            transaction_hash=receipt.transaction_hash,
        )

        attempt.status = AttemptStatus.SETTLED
        self.last_error = None
        self._set_state(SpendState.SETTLED)
        logger.info(
            "Spent %s from %s at vendor %s (transaction %s)",
            amount,
            category.value,
            vendor_id,
            receipt.transaction_id,
        )
        if self._on_settled is not None:
            self._on_settled(self.transaction)
        return self.transaction

    def _reject(self, error: RemoteError) -> RemoteError:
        self.last_error = error
        if self._cancel_requested:
            self.attempt.status = AttemptStatus.CANCELLED
            self._set_state(SpendState.CANCELLED)
        else:
            self.attempt.status = AttemptStatus.REJECTED
            self._set_state(SpendState.REJECTED)
        logger.warning("Spend attempt rejected: %s", error)
        return error

    def retry(self) -> None:
        """
        REJECTED -> AMOUNT_ENTERED, keeping vendor, category, amount and description.

        Raises:
            InsufficientBalance: The ledger was refreshed meanwhile and the
                amount no longer fits; the attempt returns to CATEGORY_SELECTED
        """
        self._require("retry", SpendState.REJECTED)
        attempt = self.attempt
        if attempt.selected_category is None or attempt.amount is None:
            raise InvalidTransition("retry", "incomplete attempt")
        try:
            self._ledger.reserve(attempt.selected_category, attempt.amount)
        except InsufficientBalance as e:
            attempt.amount = None
            attempt.status = AttemptStatus.DRAFT
            self._set_state(SpendState.CATEGORY_SELECTED)
            raise self._fail(e)
        except CategoryUnavailable as e:
            attempt.status = AttemptStatus.DRAFT
            attempt.selected_category = None
            attempt.amount = None
            self._set_state(SpendState.CODE_READY)
            raise self._fail(e)

        attempt.status = AttemptStatus.DRAFT
        self.last_error = None
        self._set_state(SpendState.AMOUNT_ENTERED)

    def cancel(self) -> None:
        """
        Discard the attempt without touching the ledger.

        During SUBMITTING the call already sent cannot be recalled: the
        cancellation is recorded and the eventual response decides the
        outcome (a confirmed spend still settles).
        """
        if self.state is SpendState.SUBMITTING:
            logger.info("Cancel requested while submitting; waiting for the response")
            self._cancel_requested = True
            return
        if self.is_terminal:
            return
        self.attempt.status = AttemptStatus.CANCELLED
        self._set_state(SpendState.CANCELLED)

    def snapshot(self) -> dict[str, Any]:
        """JSON-friendly view of the attempt for display."""
        attempt = self.attempt
        return {
            "state": self.state.value,
            "vendor_id": attempt.vendor_id,
            "payment_code": attempt.code,
            "category": attempt.selected_category.value if attempt.selected_category else None,
            "amount": str(attempt.amount) if attempt.amount is not None else None,
            "description": attempt.description,
            "status": attempt.status.value,
            "cancel_requested": self._cancel_requested,
            "error": self.last_error.to_dict() if self.last_error else None,
            "transaction": self.transaction.model_dump(mode="json") if self.transaction else None,
        }
