"""
Category ledger: the client-side view of a beneficiary's aid balances.

Loaded from the balance-query interface and mutated only when the
spending orchestrator confirms a settlement with the backend.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union

from relief_spend_mcp.core.exceptions import CategoryUnavailable, InsufficientBalance, InvalidAmount
from relief_spend_mcp.models.category import AidCategory, CategoryBalance
from relief_spend_mcp.utils.money import to_amount

logger = logging.getLogger(__name__)

CategoryKey = Union[AidCategory, str]


class CategoryLedger:
    """
    Per-beneficiary, per-category balances.

    Reads are synchronous and always reflect the latest applied
    settlement. ``available_balance == total_received - total_spent``
    holds for every entry at all times.
    """

    def __init__(self, balances: Optional[Iterable[CategoryBalance]] = None):
        self._balances: Dict[AidCategory, CategoryBalance] = {}
        self._stale = False
        self._generation = 0
        if balances is not None:
            self.load(balances)

    def load(self, balances: Iterable[CategoryBalance]) -> None:
        """
        Replace the whole snapshot.

        Categories with neither an available balance nor any aid received
        are dropped. A later entry for the same category wins.
        """
        snapshot: Dict[AidCategory, CategoryBalance] = {}
        for balance in balances:
            if balance.is_visible:
                snapshot[balance.category] = balance
        self._balances = snapshot
        self._stale = False
        self._generation += 1
        logger.debug("Ledger loaded with %d categories", len(snapshot))

    def get(self, category: CategoryKey) -> Optional[CategoryBalance]:
        """Get the balance for a category, or None if it is not visible."""
        try:
            key = AidCategory.parse(category)
        except ValueError:
            return None
        return self._balances.get(key)

    def categories(self) -> List[CategoryBalance]:
        """All visible balances, in category declaration order."""
        return [self._balances[c] for c in AidCategory if c in self._balances]

    def spendable(self) -> List[CategoryBalance]:
        """Balances with something left to spend."""
        return [b for b in self.categories() if b.available_balance > 0]

    def total_available(self) -> Decimal:
        return sum((b.available_balance for b in self._balances.values()), Decimal("0.00"))

    @property
    def is_empty(self) -> bool:
        """True when there is no category to show."""
        return not self._balances

    @property
    def is_stale(self) -> bool:
        """True when the backend reported a balance that disagrees with ours."""
        return self._stale

    @property
    def generation(self) -> int:
        """Counter bumped by every load; identifies the current snapshot."""
        return self._generation

    def reserve(self, category: CategoryKey, amount: Union[Decimal, int, str]) -> Decimal:
        """
        Check that amount can be spent from category. Never mutates.

        Returns:
            The normalized amount

        Raises:
            InvalidAmount: amount is not positive
            CategoryUnavailable: category is not in the ledger
            InsufficientBalance: amount exceeds the available balance
        """
        amount = _positive_amount(amount)
        balance = self.get(category)
        if balance is None:
            raise CategoryUnavailable(str(getattr(category, "value", category)))
        if amount > balance.available_balance:
            raise InsufficientBalance(
                requested=amount,
                available=balance.available_balance,
                category=balance.category.value,
            )
        return amount

    def apply_settlement(
        self,
        category: CategoryKey,
        amount: Union[Decimal, int, str],
        balance_after: Optional[Decimal] = None,
        generation: Optional[int] = None,
    ) -> Optional[CategoryBalance]:
        """
        Record a backend-confirmed spend.

        Must be called at most once per settled attempt; the spending
        orchestrator is the only caller.

        When ``generation`` names an older snapshot, the ledger was reloaded
        while the spend was in flight and the reloaded balances are taken
        as authoritative: the spend is not applied again. Unless
        ``balance_after`` confirms the reloaded balance, the ledger is marked
        stale.

        Args:
            category: Category the spend was charged against
            amount: Settled amount
            balance_after: Backend's balance after the spend, if reported
            generation: Snapshot generation the spend was submitted against

        Returns:
            The balance after the spend, or None if a reloaded snapshot no
            longer has the category

        Raises:
            InsufficientBalance: The settled amount exceeds the cached balance;
                the ledger is left unchanged and marked stale
        """
        if generation is not None and generation != self._generation:
            return self._reconcile_reloaded(category, balance_after)

        amount = self._checked_settlement(category, amount)
        current = self._balances[AidCategory.parse(category)]

        updated = current.model_copy(
            update={
                "available_balance": current.available_balance - amount,
                "total_spent": current.total_spent + amount,
                "transaction_count": current.transaction_count + 1,
            }
        )
        self._balances[current.category] = updated
        logger.debug(
            "Settled %s from %s, available now %s",
            amount,
            current.category.value,
            updated.available_balance,
        )

        if balance_after is not None and balance_after != updated.available_balance:
            logger.warning(
                "Backend reports %s balance %s, ledger has %s; refresh needed",
                current.category.value,
                balance_after,
                updated.available_balance,
            )
            self._stale = True

        return updated

    def _reconcile_reloaded(
        self, category: CategoryKey, balance_after: Optional[Decimal]
    ) -> Optional[CategoryBalance]:
        current = self.get(category)
        logger.info(
            "Ledger reloaded during settlement of %s; keeping reloaded balance",
            getattr(category, "value", category),
        )
        if balance_after is None or current is None or current.available_balance != balance_after:
            logger.warning(
                "Backend reports %s balance %s, reloaded ledger has %s; refresh needed",
                getattr(category, "value", category),
                balance_after,
                current.available_balance if current else None,
            )
            self._stale = True
        return current

    def _checked_settlement(self, category: CategoryKey, amount: Union[Decimal, int, str]) -> Decimal:
        try:
            return self.reserve(category, amount)
        except (CategoryUnavailable, InsufficientBalance):
            self._stale = True
            raise


def _positive_amount(amount: Union[Decimal, int, str]) -> Decimal:
    try:
        value = to_amount(amount)
    except ValueError as e:
        raise InvalidAmount(str(e)) from None
    if value <= 0:
        raise InvalidAmount("Please enter an amount greater than zero")
    return value
