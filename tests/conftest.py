"""
Pytest configuration and fixtures for relief-spend-mcp tests.
"""

import asyncio
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

import pytest

from relief_spend_mcp.core.ledger import CategoryLedger
from relief_spend_mcp.core.orchestrator import SpendingOrchestrator
from relief_spend_mcp.models.category import AidCategory, CategoryBalance
from relief_spend_mcp.models.transaction import SpendReceipt, Transaction
from relief_spend_mcp.models.vendor import Vendor


def build_balance(
    category: str,
    available: str,
    received: Optional[str] = None,
    count: int = 0,
) -> CategoryBalance:
    """Build a consistent CategoryBalance; spent is derived."""
    received_amount = Decimal(received if received is not None else available)
    return CategoryBalance(
        category=category,
        available_balance=Decimal(available),
        total_received=received_amount,
        total_spent=received_amount - Decimal(available),
        transaction_count=count,
    )


class FakeFrameSource:
    """Synthetic camera delivering a fixed list of frames."""

    def __init__(self, frames: Sequence[Any] = (), fail_on_start: bool = False):
        self._frames = list(frames)
        self.fail_on_start = fail_on_start
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.delivered = 0

    async def start(self) -> None:
        self.start_calls += 1
        if self.fail_on_start:
            raise RuntimeError("camera permission denied")
        self.running = True

    def stop(self) -> None:
        self.stop_calls += 1
        self.running = False

    async def frames(self) -> AsyncIterator[Any]:
        for frame in self._frames:
            if not self.running:
                return
            self.delivered += 1
            yield frame
            await asyncio.sleep(0)


def passthrough_decoder(frame: Any) -> Optional[str]:
    """Frames in tests are already decoded text (or None for an empty frame)."""
    return frame


class FakeBackend:
    """In-memory stand-in for the relief backend's remote interfaces."""

    def __init__(
        self,
        balances: Optional[List[CategoryBalance]] = None,
        vendors: Optional[List[Vendor]] = None,
    ):
        self.balances = list(balances or [])
        self.vendors = list(vendors or [])
        self.history: List[Transaction] = []
        self.spend_calls: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.delay = 0.0
        self.balance_after: Optional[Decimal] = None

    async def fetch_category_balances(self, beneficiary_id: str) -> List[CategoryBalance]:
        return list(self.balances)

    async def fetch_vendors(self) -> List[Vendor]:
        return list(self.vendors)

    async def fetch_transactions(self, limit: int = 10) -> List[Transaction]:
        return list(self.history[:limit])

    async def submit_spend(
        self,
        vendor_id: str,
        code: Optional[str],
        category: AidCategory,
        amount: Decimal,
        description: str,
    ) -> SpendReceipt:
        self.spend_calls.append(
            {
                "vendor_id": vendor_id,
                "code": code,
                "category": category,
                "amount": amount,
                "description": description,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return SpendReceipt(
            transaction_id=f"txn-{len(self.spend_calls)}",
            category_balance_after=self.balance_after,
        )


@pytest.fixture
def make_balance() -> Callable[..., CategoryBalance]:
    """Factory for consistent CategoryBalance objects."""
    return build_balance


@pytest.fixture
def make_frame_source() -> Callable[..., FakeFrameSource]:
    """Factory for synthetic frame sources."""
    return FakeFrameSource


@pytest.fixture
def frame_decoder() -> Callable[[Any], Optional[str]]:
    return passthrough_decoder


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    """Factory for in-memory backends."""
    return FakeBackend


@pytest.fixture
def backend() -> FakeBackend:
    """Backend with food 50 / medical 20, and vendor V1."""
    return FakeBackend(
        balances=[build_balance("food", "50"), build_balance("medical", "20")],
        vendors=[Vendor(vendor_id="V1", name="Corner Grocery", categories=["food"])],
    )


@pytest.fixture
def ledger(backend: FakeBackend) -> CategoryLedger:
    return CategoryLedger(backend.balances)


@pytest.fixture
def orchestrator(ledger: CategoryLedger, backend: FakeBackend) -> SpendingOrchestrator:
    vendors = {v.vendor_id: v for v in backend.vendors}
    return SpendingOrchestrator(ledger, backend, vendors=vendors)
