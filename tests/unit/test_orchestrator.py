"""
Unit tests for the spending orchestrator state machine.
"""

import asyncio
from decimal import Decimal

import pytest

from relief_spend_mcp.core.codec import encode
from relief_spend_mcp.core.exceptions import (
    CategoryUnavailable,
    InsufficientBalance,
    InvalidAmount,
    InvalidTransition,
    MalformedPayload,
    MissingDescription,
    NetworkError,
    NoCategorySelected,
    SettlementFailed,
    WrongKind,
)
from relief_spend_mcp.core.ledger import CategoryLedger
from relief_spend_mcp.core.orchestrator import SpendingOrchestrator, SpendState
from relief_spend_mcp.models.category import AidCategory
from relief_spend_mcp.models.spend_attempt import AttemptStatus

V1_CODE = encode("V1", "1234-ABCD", issued_at=1700000000000)

pytestmark = pytest.mark.unit


async def ready_to_confirm(
    orchestrator: SpendingOrchestrator, category: str = "food", amount: str = "30"
) -> None:
    await orchestrator.request_scan()
    orchestrator.accept_scan(V1_CODE)
    orchestrator.select_category(category)
    orchestrator.enter_amount(amount, "Rice and beans")


class TestScanning:
    @pytest.mark.asyncio
    async def test_accept_scan_moves_to_code_ready(self, orchestrator) -> None:
        await orchestrator.request_scan()
        assert orchestrator.state is SpendState.SCANNING

        code = orchestrator.accept_scan(V1_CODE)
        assert code.vendor_id == "V1"
        assert orchestrator.state is SpendState.CODE_READY
        assert orchestrator.attempt.vendor_id == "V1"
        assert orchestrator.attempt.code == "1234-ABCD"

    @pytest.mark.asyncio
    async def test_bad_scan_keeps_scanning(self, orchestrator) -> None:
        await orchestrator.request_scan()
        with pytest.raises(MalformedPayload):
            orchestrator.accept_scan("not json")
        assert orchestrator.state is SpendState.SCANNING
        assert isinstance(orchestrator.last_error, MalformedPayload)

        with pytest.raises(WrongKind):
            orchestrator.accept_scan('{"kind":"OTHER"}')

        orchestrator.accept_scan(V1_CODE)
        assert orchestrator.state is SpendState.CODE_READY
        assert orchestrator.last_error is None

    def test_accept_scan_requires_scanning(self, orchestrator) -> None:
        with pytest.raises(InvalidTransition):
            orchestrator.accept_scan(V1_CODE)

    def test_select_vendor_without_scanning(self, orchestrator) -> None:
        orchestrator.select_vendor("V1")
        assert orchestrator.state is SpendState.CODE_READY
        assert orchestrator.attempt.scanned_code is None
        assert orchestrator.attempt.code is None


class TestCategoryAndAmount:
    @pytest.mark.asyncio
    async def test_select_category(self, orchestrator) -> None:
        await orchestrator.request_scan()
        orchestrator.accept_scan(V1_CODE)
        assert orchestrator.select_category("Food") is AidCategory.FOOD
        assert orchestrator.state is SpendState.CATEGORY_SELECTED

    def test_zero_balance_category_does_not_transition(self, make_balance, backend) -> None:
        ledger = CategoryLedger([make_balance("food", "0", received="10"), make_balance("medical", "5")])
        orchestrator = SpendingOrchestrator(ledger, backend)
        orchestrator.select_vendor("V1")

        with pytest.raises(CategoryUnavailable):
            orchestrator.select_category("food")
        assert orchestrator.state is SpendState.CODE_READY

        with pytest.raises(CategoryUnavailable):
            orchestrator.select_category("shelter")
        assert orchestrator.state is SpendState.CODE_READY

    def test_amount_before_category(self, orchestrator) -> None:
        orchestrator.select_vendor("V1")
        with pytest.raises(NoCategorySelected):
            orchestrator.enter_amount("10", "Bread")
        assert orchestrator.state is SpendState.CODE_READY

    @pytest.mark.parametrize("amount", ["0", "-3", "ten"])
    def test_invalid_amount_rejected(self, orchestrator, amount) -> None:
        orchestrator.select_vendor("V1")
        orchestrator.select_category("food")
        with pytest.raises(InvalidAmount):
            orchestrator.enter_amount(amount, "Bread")
        assert orchestrator.state is SpendState.CATEGORY_SELECTED

    def test_description_required(self, orchestrator) -> None:
        orchestrator.select_vendor("V1")
        orchestrator.select_category("food")
        with pytest.raises(MissingDescription):
            orchestrator.enter_amount("10", "   ")
        assert orchestrator.state is SpendState.CATEGORY_SELECTED

    @pytest.mark.asyncio
    async def test_insufficient_balance_before_any_network_call(self, make_backend, make_balance) -> None:
        backend = make_backend(balances=[make_balance("medical", "10")])
        orchestrator = SpendingOrchestrator(CategoryLedger(backend.balances), backend)
        orchestrator.select_vendor("V1")
        orchestrator.select_category("medical")

        with pytest.raises(InsufficientBalance) as exc_info:
            orchestrator.enter_amount("15", "Antibiotics")

        error = exc_info.value
        assert error.requested == Decimal("15.00")
        assert error.available == Decimal("10.00")
        assert error.category == "medical"
        assert orchestrator.state is SpendState.CATEGORY_SELECTED
        assert orchestrator.last_error is error
        assert backend.spend_calls == []

    def test_reentering_too_much_returns_to_category_selected(self, orchestrator) -> None:
        orchestrator.select_vendor("V1")
        orchestrator.select_category("food")
        orchestrator.enter_amount("10", "Bread")
        assert orchestrator.state is SpendState.AMOUNT_ENTERED

        with pytest.raises(InsufficientBalance):
            orchestrator.enter_amount("60", "Bread")
        assert orchestrator.state is SpendState.CATEGORY_SELECTED
        assert orchestrator.attempt.amount is None

    def test_amount_is_normalized(self, orchestrator) -> None:
        orchestrator.select_vendor("V1")
        orchestrator.select_category("food")
        orchestrator.enter_amount(12.5, "  Bread  ")
        assert orchestrator.attempt.amount == Decimal("12.50")
        assert orchestrator.attempt.description == "Bread"


class TestConfirm:
    @pytest.mark.asyncio
    async def test_successful_settlement(self, orchestrator, ledger, backend) -> None:
        backend.balance_after = Decimal("20")
        await ready_to_confirm(orchestrator)

        transaction = await orchestrator.confirm()

        assert orchestrator.state is SpendState.SETTLED
        assert orchestrator.attempt.status is AttemptStatus.SETTLED
        assert transaction.amount == Decimal("30.00")
        assert transaction.category is AidCategory.FOOD
        assert transaction.vendor_id == "V1"
        assert transaction.vendor_name == "Corner Grocery"
        assert transaction.payment_code == "1234-ABCD"
        assert ledger.get("food").available_balance == Decimal("20.00")
        assert ledger.get("medical").available_balance == Decimal("20.00")
        assert ledger.is_stale is False
        assert backend.spend_calls == [
            {
                "vendor_id": "V1",
                "code": "1234-ABCD",
                "category": AidCategory.FOOD,
                "amount": Decimal("30.00"),
                "description": "Rice and beans",
            }
        ]

    @pytest.mark.asyncio
    async def test_unknown_vendor_name(self, ledger, backend) -> None:
        orchestrator = SpendingOrchestrator(ledger, backend)
        await ready_to_confirm(orchestrator)
        transaction = await orchestrator.confirm()
        assert transaction.vendor_name == "Unknown Vendor"

    @pytest.mark.asyncio
    async def test_double_confirm_submits_once(self, orchestrator, ledger, backend) -> None:
        backend.gate = asyncio.Event()
        await ready_to_confirm(orchestrator)

        first = asyncio.create_task(orchestrator.confirm())
        await asyncio.sleep(0)
        assert orchestrator.state is SpendState.SUBMITTING

        second = await orchestrator.confirm()
        assert second is None

        backend.gate.set()
        transaction = await first

        assert len(backend.spend_calls) == 1
        assert transaction is not None
        assert ledger.get("food").transaction_count == 1
        assert ledger.get("food").available_balance == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_rejected_attempt_leaves_ledger_untouched(self, make_backend, make_balance) -> None:
        backend = make_backend(balances=[make_balance("food", "100")])
        ledger = CategoryLedger(backend.balances)
        orchestrator = SpendingOrchestrator(ledger, backend)
        backend.fail_with = SettlementFailed("Payment code expired")
        await ready_to_confirm(orchestrator, amount="40")

        with pytest.raises(SettlementFailed, match="Payment code expired"):
            await orchestrator.confirm()

        assert orchestrator.state is SpendState.REJECTED
        assert orchestrator.attempt.status is AttemptStatus.REJECTED
        assert orchestrator.last_error.reason == "Payment code expired"
        assert ledger.get("food").available_balance == Decimal("100.00")
        assert ledger.get("food").transaction_count == 0

    @pytest.mark.asyncio
    async def test_network_error_is_rejection(self, orchestrator, ledger, backend) -> None:
        backend.fail_with = NetworkError("connection refused")
        await ready_to_confirm(orchestrator)

        with pytest.raises(NetworkError):
            await orchestrator.confirm()
        assert orchestrator.state is SpendState.REJECTED
        assert ledger.get("food").available_balance == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self, orchestrator, ledger, backend) -> None:
        backend.delay = 5
        await ready_to_confirm(orchestrator)

        with pytest.raises(NetworkError, match="within"):
            await orchestrator.confirm(timeout=0.01)

        assert orchestrator.state is SpendState.REJECTED
        assert ledger.get("food").available_balance == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_settlement_failure(self, orchestrator, ledger, backend) -> None:
        backend.fail_with = KeyError("transactionId")
        await ready_to_confirm(orchestrator)

        with pytest.raises(SettlementFailed):
            await orchestrator.confirm()
        assert orchestrator.state is SpendState.REJECTED
        assert ledger.get("food").available_balance == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_retry_keeps_entered_details(self, orchestrator, ledger, backend) -> None:
        backend.fail_with = NetworkError("offline")
        await ready_to_confirm(orchestrator)
        with pytest.raises(NetworkError):
            await orchestrator.confirm()

        orchestrator.retry()
        assert orchestrator.state is SpendState.AMOUNT_ENTERED
        assert orchestrator.attempt.amount == Decimal("30.00")
        assert orchestrator.attempt.selected_category is AidCategory.FOOD
        assert orchestrator.attempt.description == "Rice and beans"

        backend.fail_with = None
        await orchestrator.confirm()
        assert orchestrator.state is SpendState.SETTLED
        assert len(backend.spend_calls) == 2
        assert ledger.get("food").available_balance == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_retry_rechecks_refreshed_balance(self, orchestrator, ledger, backend, make_balance) -> None:
        backend.fail_with = NetworkError("offline")
        await ready_to_confirm(orchestrator)
        with pytest.raises(NetworkError):
            await orchestrator.confirm()

        ledger.load([make_balance("food", "10", received="50")])
        with pytest.raises(InsufficientBalance):
            orchestrator.retry()
        assert orchestrator.state is SpendState.CATEGORY_SELECTED

    def test_confirm_requires_amount(self, orchestrator) -> None:
        orchestrator.select_vendor("V1")
        with pytest.raises(InvalidTransition):
            asyncio.run(orchestrator.confirm())

    @pytest.mark.asyncio
    async def test_settlement_mismatch_marks_ledger_stale(self, orchestrator, ledger, backend) -> None:
        backend.balance_after = Decimal("5")
        await ready_to_confirm(orchestrator)
        await orchestrator.confirm()
        assert ledger.is_stale is True
        assert ledger.get("food").available_balance == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_on_settled_called_once(self, ledger, backend) -> None:
        settled = []
        orchestrator = SpendingOrchestrator(ledger, backend, on_settled=settled.append)
        await ready_to_confirm(orchestrator)
        transaction = await orchestrator.confirm()
        assert settled == [transaction]


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_from_any_pre_submit_state(self, orchestrator, ledger) -> None:
        await ready_to_confirm(orchestrator)
        orchestrator.cancel()
        assert orchestrator.state is SpendState.CANCELLED
        assert orchestrator.attempt.status is AttemptStatus.CANCELLED
        assert ledger.get("food").available_balance == Decimal("50.00")

    def test_cancel_is_idempotent(self, orchestrator) -> None:
        orchestrator.cancel()
        orchestrator.cancel()
        assert orchestrator.state is SpendState.CANCELLED

    def test_cancelled_attempt_accepts_nothing(self, orchestrator) -> None:
        orchestrator.cancel()
        with pytest.raises(InvalidTransition):
            orchestrator.select_vendor("V1")

    @pytest.mark.asyncio
    async def test_cancel_during_submit_still_applies_success(self, orchestrator, ledger, backend) -> None:
        backend.gate = asyncio.Event()
        await ready_to_confirm(orchestrator)

        task = asyncio.create_task(orchestrator.confirm())
        await asyncio.sleep(0)
        orchestrator.cancel()
        assert orchestrator.state is SpendState.SUBMITTING

        backend.gate.set()
        transaction = await task

        assert orchestrator.state is SpendState.SETTLED
        assert transaction is not None
        assert ledger.get("food").available_balance == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_cancel_during_submit_then_failure_is_cancelled(self, orchestrator, ledger, backend) -> None:
        backend.gate = asyncio.Event()
        backend.fail_with = SettlementFailed("Vendor not found or not verified")
        await ready_to_confirm(orchestrator)

        task = asyncio.create_task(orchestrator.confirm())
        await asyncio.sleep(0)
        orchestrator.cancel()
        backend.gate.set()

        with pytest.raises(SettlementFailed):
            await task
        assert orchestrator.state is SpendState.CANCELLED
        assert ledger.get("food").available_balance == Decimal("50.00")


def test_snapshot_is_json_friendly(orchestrator) -> None:
    orchestrator.select_vendor("V1")
    orchestrator.select_category("food")
    orchestrator.enter_amount("12", "Bread")
    snapshot = orchestrator.snapshot()
    assert snapshot["state"] == "amount_entered"
    assert snapshot["amount"] == "12.00"
    assert snapshot["category"] == "food"
    assert snapshot["error"] is None
