"""
MCP tool definitions for the beneficiary spending flow.

Exposes the beneficiary session through the Model Context Protocol.
"""

from typing import Any, Dict, List, Union

from relief_spend_mcp.core.codec import decode
from relief_spend_mcp.core.exceptions import RemoteError
from relief_spend_mcp.core.orchestrator import SpendState
from relief_spend_mcp.core.session import BeneficiarySession


class ReliefSpendTools:
    """Collection of MCP tools driving a beneficiary's spend attempts."""

    def __init__(self, session: BeneficiarySession):
        """
        Initialize tools with a beneficiary session.

        Args:
            session: BeneficiarySession instance
        """
        self.session = session

    async def get_category_balances(self) -> Dict[str, Any]:
        """
        Get the beneficiary's aid balances per category.

        Loads them from the backend on first use.

        Returns:
            Dict with the visible categories and the total available
        """
        if not self.session.loaded:
            await self.session.refresh()

        ledger = self.session.ledger
        categories = ledger.categories()
        return {
            "count": len(categories),
            "total_available": str(ledger.total_available()),
            "is_empty": ledger.is_empty,
            "is_stale": ledger.is_stale,
            "categories": [balance.model_dump(mode="json") for balance in categories],
        }

    async def refresh_balances(self) -> Dict[str, Any]:
        """Reload balances from the backend and return them."""
        await self.session.refresh()
        return await self.get_category_balances()

    def generate_payment_code(self, vendor_id: str) -> Dict[str, Any]:
        """
        Generate a fresh payment code payload for a vendor.

        Every call yields a new code token.

        Args:
            vendor_id: Vendor the code is issued for

        Returns:
            Dict with the payload text to render as an optical code
        """
        payload = self.session.issuer.issue(vendor_id)
        payment_code = decode(payload)
        return {
            "vendor_id": payment_code.vendor_id,
            "code": payment_code.code,
            "issued_at": payment_code.issued_at,
            "payload": payload,
        }

    def start_spend(self) -> Dict[str, Any]:
        """Open a new spend attempt, cancelling any unfinished one."""
        return self.session.open_spend().snapshot()

    async def scan_payment_code(self, payload: str) -> Dict[str, Any]:
        """
        Feed the text decoded from a vendor's optical code.

        A rejected payload leaves the attempt scanning, so another code can
        be scanned straight away.

        Args:
            payload: Decoded text from the scanner
        """
        orchestrator = self.session.require_current()
        if orchestrator.state is SpendState.IDLE:
            await orchestrator.request_scan()
        orchestrator.accept_scan(payload)
        return orchestrator.snapshot()

    def select_vendor(self, vendor_id: str) -> Dict[str, Any]:
        """Pick a vendor without scanning a code."""
        orchestrator = self.session.require_current()
        orchestrator.select_vendor(vendor_id)
        return orchestrator.snapshot()

    def select_category(self, category: str) -> Dict[str, Any]:
        """Choose the aid category to charge."""
        orchestrator = self.session.require_current()
        orchestrator.select_category(category)
        return orchestrator.snapshot()

    def enter_amount(self, amount: Union[str, float, int], description: str) -> Dict[str, Any]:
        """
        Enter the amount and purchase description.

        The amount is checked against the category's available balance
        before anything is sent to the backend.
        """
        orchestrator = self.session.require_current()
        orchestrator.enter_amount(amount, description)
        return orchestrator.snapshot()

    async def confirm_spend(self) -> Dict[str, Any]:
        """
        Submit the spend for settlement.

        Returns:
            The attempt snapshot. On a backend failure it carries the error
            and ``retry_available``; the balances are unchanged.
        """
        orchestrator = self.session.require_current()
        try:
            await orchestrator.confirm()
        except RemoteError:
            result = orchestrator.snapshot()
            result["retry_available"] = orchestrator.state is SpendState.REJECTED
            return result
        return orchestrator.snapshot()

    def retry_spend(self) -> Dict[str, Any]:
        """Return a rejected attempt to the confirm step with its details kept."""
        orchestrator = self.session.require_current()
        orchestrator.retry()
        return orchestrator.snapshot()

    def cancel_spend(self) -> Dict[str, Any]:
        """Discard the current attempt."""
        if self.session.current is None:
            return {"state": None, "message": "No spend in progress"}
        self.session.current.cancel()
        return self.session.current.snapshot()

    def get_spend_status(self) -> Dict[str, Any]:
        """Get the state of the current attempt."""
        if self.session.current is None:
            return {"state": None, "message": "No spend in progress"}
        return self.session.current.snapshot()

    async def get_recent_transactions(self, limit: int = 10) -> Dict[str, Any]:
        """
        Get recent spends, most recent first.

        Loaded from the backend on refresh; spends settled since then are
        added in front.

        Args:
            limit: Maximum number of transactions (default: 10)
        """
        if not self.session.loaded:
            await self.session.refresh()

        transactions = self.session.recent_transactions[:limit]
        return {
            "count": len(transactions),
            "transactions": [txn.model_dump(mode="json") for txn in transactions],
        }


def create_tool_schemas() -> List[Dict[str, Any]]:
    """
    Create MCP tool schemas for all tools.

    Returns:
        List of tool schema definitions
    """
    return [
        {
            "name": "get_category_balances",
            "description": (
                "Get the beneficiary's aid balances per category (food, medical, "
                "shelter, ...), with available, received and spent amounts."
            ),
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "refresh_balances",
            "description": "Reload category balances from the relief backend.",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "generate_payment_code",
            "description": (
                "Vendor side: generate a fresh payment code payload to display "
                "as a QR code. Every call produces a new code."
            ),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "vendor_id": {
                        "type": "string",
                        "description": "Vendor identifier",
                    },
                },
                "required": ["vendor_id"],
            },
        },
        {
            "name": "start_spend",
            "description": "Open a new spend attempt, discarding any unfinished one.",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "scan_payment_code",
            "description": (
                "Submit the text decoded from a vendor's payment QR code. "
                "Invalid codes are reported and scanning continues."
            ),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "payload": {
                        "type": "string",
                        "description": "Decoded QR code text",
                    },
                },
                "required": ["payload"],
            },
        },
        {
            "name": "select_vendor",
            "description": "Choose a vendor by ID without scanning a code.",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "vendor_id": {
                        "type": "string",
                        "description": "Vendor identifier",
                    },
                },
                "required": ["vendor_id"],
            },
        },
        {
            "name": "select_category",
            "description": "Choose the aid category to pay from. It must have a balance left.",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "category": {
                        "type": "string",
                        "description": "Aid category, e.g. food, medical, shelter",
                    },
                },
                "required": ["category"],
            },
        },
        {
            "name": "enter_amount",
            "description": (
                "Enter the amount to pay and what is being bought. The amount "
                "is checked against the category balance."
            ),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "amount": {
                        "type": ["number", "string"],
                        "description": "Amount, up to two decimals",
                    },
                    "description": {
                        "type": "string",
                        "description": "Purchase description",
                    },
                },
                "required": ["amount", "description"],
            },
        },
        {
            "name": "confirm_spend",
            "description": (
                "Submit the payment for settlement. Balances are only updated "
                "after the backend confirms."
            ),
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "retry_spend",
            "description": "After a failed payment, return to the confirm step keeping all details.",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "cancel_spend",
            "description": "Cancel the current payment without changing any balance.",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "get_spend_status",
            "description": "Get the state of the current payment attempt.",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "get_recent_transactions",
            "description": "Get recent payments, most recent first.",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of results (default: 10)",
                        "default": 10,
                    },
                },
            },
        },
    ]
