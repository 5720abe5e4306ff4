"""
REST client for the relief backend.

Implements the three remote interfaces the spending core consumes:
category balances, spend settlement and the approved-vendor directory.
"""

import logging
import time
from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import TypeAdapter, ValidationError

from relief_spend_mcp.core.exceptions import NetworkError, RemoteError, SettlementFailed
from relief_spend_mcp.models.category import AidCategory, CategoryBalance
from relief_spend_mcp.models.transaction import UNKNOWN_VENDOR, SpendReceipt, Transaction
from relief_spend_mcp.models.vendor import Vendor
from relief_spend_mcp.utils.money import format_amount, from_base_units, to_amount

logger = logging.getLogger(__name__)

# Backend transaction types that move a beneficiary's aid to a vendor
SPENDING_TYPES = frozenset({"spending", "vendor_payment"})

_timestamp = TypeAdapter(datetime)


class BalanceService(Protocol):
    async def fetch_category_balances(self, beneficiary_id: str) -> List[CategoryBalance]:
        ...


class SettlementService(Protocol):
    async def submit_spend(
        self,
        vendor_id: str,
        code: Optional[str],
        category: AidCategory,
        amount: Decimal,
        description: str,
    ) -> SpendReceipt:
        """Settle a spend; raises SettlementFailed or NetworkError."""
        ...


class VendorDirectory(Protocol):
    async def fetch_vendors(self) -> List[Vendor]:
        ...


class TransactionHistory(Protocol):
    async def fetch_transactions(self, limit: int = 10) -> List[Transaction]:
        """Settled spends, most recent first."""
        ...


class ReliefApiClient:
    """HTTP client for the relief backend API."""

    def __init__(
        self,
        base_url: str = "http://localhost:3001/api",
        token: Optional[str] = None,
        timeout: float = 30.0,
        amount_decimals: int = 18,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: API root, e.g. http://localhost:3001/api
            token: Bearer token of the signed-in beneficiary
            timeout: Per-request timeout in seconds
            amount_decimals: Scale of base-unit amounts in balance responses
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.amount_decimals = amount_decimals
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self.client

    async def __aenter__(self) -> "ReliefApiClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send a request and unwrap the ``{"success": ..., "data": ...}`` envelope.

        Raises:
            NetworkError: The backend could not be reached
            RemoteError: The backend answered with an error
        """
        client = self._ensure_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach relief backend: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_error or body.get("success") is False:
            message = body.get("message") or f"Request failed with status {response.status_code}"
            logger.warning("%s %s failed: %s", method, path, message)
            raise RemoteError(message)

        data = body.get("data", {})
        return data if isinstance(data, dict) else {}

    async def fetch_category_balances(self, beneficiary_id: str) -> List[CategoryBalance]:
        """
        Get the beneficiary's per-category balances.

        Records with unknown categories or inconsistent amounts are skipped
        with a warning.
        """
        data = await self._request(
            "GET", "/beneficiaries/balance", params={"beneficiaryId": beneficiary_id}
        )

        balances: List[CategoryBalance] = []
        for record in data.get("categoryBalances") or []:
            try:
                balances.append(
                    CategoryBalance(
                        category=record.get("category"),
                        available_balance=self._units(record.get("availableBalance", 0)),
                        total_received=self._units(record.get("totalReceived", 0)),
                        total_spent=self._units(record.get("totalSpent", 0)),
                        transaction_count=int(record.get("transactionCount") or 0),
                    )
                )
            except (AttributeError, TypeError, ValueError, ValidationError) as e:
                logger.warning("Skipping category balance %r: %s", record, e)
                continue

        return balances

    async def submit_spend(
        self,
        vendor_id: str,
        code: Optional[str],
        category: AidCategory,
        amount: Decimal,
        description: str,
    ) -> SpendReceipt:
        """
        Ask the backend to settle a spend. Not idempotent: call once per confirm.

        Raises:
            SettlementFailed: The backend refused the spend
            NetworkError: The backend could not be reached
        """
        payload = {
            "vendorId": vendor_id,
            "paymentCode": code,
            "category": category.value,
            "amount": format_amount(amount),
            "description": description,
            "timestamp": int(time.time() * 1000),
        }
        try:
            data = await self._request("POST", "/beneficiaries/spend", json=payload)
        except NetworkError:
            raise
        except RemoteError as e:
            raise SettlementFailed(str(e)) from e

        balance_after = data.get("categoryBalanceAfter")
        if balance_after is None and isinstance(data.get("categoryBalance"), dict):
            balance_after = data["categoryBalance"].get("availableAfterSpending")

        transaction_id = data.get("transactionId")
        if not transaction_id:
            raise SettlementFailed("Backend confirmed the spend without a transaction id")

        try:
            return SpendReceipt(
                transaction_id=str(transaction_id),
                category_balance_after=balance_after,
                transaction_hash=data.get("transactionHash"),
                status=data.get("status") or "confirmed",
            )
        except ValidationError as e:
            raise SettlementFailed(f"Unreadable settlement response: {e.error_count()} field error(s)") from e

    async def fetch_vendors(self) -> List[Vendor]:
        """Get the approved-vendor directory."""
        data = await self._request("GET", "/beneficiaries/vendors")

        vendors: List[Vendor] = []
        for record in data.get("vendors") or []:
            try:
                vendors.append(
                    Vendor(
                        vendor_id=str(record.get("id") or record.get("address") or ""),
                        name=record.get("name") or UNKNOWN_VENDOR,
                        categories=[str(c) for c in record.get("categories") or []],
                    )
                )
            except (AttributeError, ValidationError) as e:
                logger.warning("Skipping vendor %r: %s", record, e)
                continue
        return [v for v in vendors if v.vendor_id]

    async def fetch_transactions(self, limit: int = 10) -> List[Transaction]:
        """
        Get the beneficiary's recent spends, most recent first.

        Records that are not spends (donations, allocations) or that cannot
        be read are skipped. Vendor names are left for the caller to resolve
        from the vendor directory.
        """
        data = await self._request("GET", "/beneficiaries/transactions", params={"limit": limit})

        transactions: List[Transaction] = []
        for record in data.get("transactions") or []:
            if not isinstance(record, dict) or record.get("type", "spending") not in SPENDING_TYPES:
                continue
            metadata = record.get("metadata") or {}
            try:
                transactions.append(
                    Transaction(
                        id=str(record.get("id") or ""),
                        amount=self._units(record.get("amount")),
                        category=record.get("category"),
                        timestamp=_timestamp.validate_python(record.get("timestamp")),
                        vendor_id=str(record.get("to") or ""),
                        description=record.get("description") or metadata.get("description") or "",
                        status=record.get("status") or "confirmed",
                        payment_code=metadata.get("paymentCode"),
                        transaction_hash=record.get("transactionHash"),
                    )
                )
            except (AttributeError, TypeError, ValueError, ValidationError) as e:
                logger.warning("Skipping transaction %r: %s", record.get("id"), e)
                continue
        return [t for t in transactions if t.id]

    def _units(self, value: Any) -> Decimal:
        """
        Convert a backend amount to units.

        Integers, and strings of digits only, are base units scaled by
        ``amount_decimals``. Anything with a decimal point is already in units.
        """
        if isinstance(value, int) and not isinstance(value, bool):
            return from_base_units(value, self.amount_decimals)
        if isinstance(value, str) and value.strip().isdigit():
            return from_base_units(value, self.amount_decimals)
        return to_amount(value)
