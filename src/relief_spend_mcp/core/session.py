"""
Beneficiary session: everything the spending flow keeps between attempts.
"""

import logging
from typing import Dict, List, Optional

from relief_spend_mcp.core.api_client import (
    BalanceService,
    SettlementService,
    TransactionHistory,
    VendorDirectory,
)
from relief_spend_mcp.core.codec import PaymentCodeIssuer
from relief_spend_mcp.core.exceptions import RemoteError
from relief_spend_mcp.core.ledger import CategoryLedger
from relief_spend_mcp.core.orchestrator import SpendingOrchestrator
from relief_spend_mcp.models.transaction import UNKNOWN_VENDOR, Transaction
from relief_spend_mcp.models.vendor import Vendor

logger = logging.getLogger(__name__)

RECENT_TRANSACTION_LIMIT = 10


class BeneficiarySession:
    """
    One signed-in beneficiary's spending state.

    Owns the category ledger, the payment code issuer, the vendor
    directory, the current spend attempt and the recent transactions.
    The ledger is only ever written by the session's orchestrators.
    """

    def __init__(
        self,
        beneficiary_id: str,
        balances: BalanceService,
        settlement: SettlementService,
        vendor_directory: Optional[VendorDirectory] = None,
        submit_timeout: Optional[float] = None,
        history: Optional[TransactionHistory] = None,
    ):
        self.beneficiary_id = beneficiary_id
        self._balances = balances
        self._settlement = settlement
        self._vendor_directory = vendor_directory
        self._history = history
        self.submit_timeout = submit_timeout

        self.ledger = CategoryLedger()
        self.issuer = PaymentCodeIssuer()
        self.vendors: Dict[str, Vendor] = {}
        self.current: Optional[SpendingOrchestrator] = None
        self._transactions: List[Transaction] = []
        self._recorded = 0
        self.loaded = False

    async def refresh(self) -> None:
        """
        Reload balances, the vendor directory and the recent transactions.

        A failing vendor directory or transaction history is logged and
        leaves the previous data in place; balance failures propagate.
        """
        balances = await self._balances.fetch_category_balances(self.beneficiary_id)
        self.ledger.load(balances)
        self.loaded = True

        if self._vendor_directory is not None:
            try:
                vendors = await self._vendor_directory.fetch_vendors()
            except RemoteError as e:
                logger.warning("Vendor directory unavailable: %s", e)
            else:
                self.vendors.clear()
                self.vendors.update((v.vendor_id, v) for v in vendors)

        if self._history is not None:
            await self._load_history()

        logger.info(
            "Loaded %d aid categories for beneficiary %s",
            len(self.ledger.categories()),
            self.beneficiary_id,
        )

    def open_spend(self) -> SpendingOrchestrator:
        """
        Start a new spend attempt.

        An unfinished previous attempt is cancelled first. An attempt that
        is still submitting keeps running on its own and will still record
        its transaction when it settles.
        """
        if self.current is not None and not self.current.is_terminal:
            self.current.cancel()

        self.current = SpendingOrchestrator(
            self.ledger,
            self._settlement,
            vendors=self.vendors,
            submit_timeout=self.submit_timeout,
            on_settled=self.record,
        )
        return self.current

    def require_current(self) -> SpendingOrchestrator:
        """The open attempt, opening one if there is none."""
        if self.current is None or self.current.is_terminal:
            return self.open_spend()
        return self.current

    async def _load_history(self) -> None:
        recorded_before = self._recorded
        try:
            history = await self._history.fetch_transactions(limit=RECENT_TRANSACTION_LIMIT)
        except RemoteError as e:
            logger.warning("Transaction history unavailable: %s", e)
            return

        # Spends that settled while the history was in flight
        fetched_ids = {t.id for t in history}
        settled_meanwhile = [
            t
            for t in self._transactions[: self._recorded - recorded_before]
            if t.id not in fetched_ids
        ]
        self._transactions = settled_meanwhile + [self._with_vendor_name(t) for t in history]
        del self._transactions[RECENT_TRANSACTION_LIMIT:]

    def _with_vendor_name(self, transaction: Transaction) -> Transaction:
        vendor = self.vendors.get(transaction.vendor_id)
        if vendor is None or transaction.vendor_name != UNKNOWN_VENDOR:
            return transaction
        return transaction.model_copy(update={"vendor_name": vendor.name})

    def record(self, transaction: Transaction) -> None:
        self._recorded += 1
        self._transactions.insert(0, transaction)
        del self._transactions[RECENT_TRANSACTION_LIMIT:]

    @property
    def recent_transactions(self) -> List[Transaction]:
        """Settled spends, most recent first."""
        return list(self._transactions)

