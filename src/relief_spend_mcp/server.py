"""
MCP server for beneficiary aid spending.

Exposes category balances, payment codes and the spend flow through the
Model Context Protocol.
"""

import inspect
import json
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from relief_spend_mcp.config import ReliefConfig
from relief_spend_mcp.core.api_client import ReliefApiClient
from relief_spend_mcp.core.exceptions import ReliefSpendError
from relief_spend_mcp.core.session import BeneficiarySession
from relief_spend_mcp.tools.tools import ReliefSpendTools, create_tool_schemas

logger = logging.getLogger(__name__)

TOOL_NAMES = frozenset(schema["name"] for schema in create_tool_schemas())


class ReliefSpendServer:
    """MCP server for one beneficiary's spending session."""

    def __init__(
        self,
        config: Optional[ReliefConfig] = None,
        api: Optional[ReliefApiClient] = None,
    ):
        """
        Initialize the MCP server.

        Args:
            config: Server configuration. If None, defaults are used.
            api: Optional pre-built API client (tests inject one with a
                mock transport)
        """
        self.config = config or ReliefConfig()
        self.api = api or ReliefApiClient(
            base_url=self.config.api_url,
            token=self.config.api_token,
            timeout=self.config.submit_timeout,
            amount_decimals=self.config.amount_decimals,
        )
        self.session = BeneficiarySession(
            beneficiary_id=self.config.beneficiary_id or "me",
            balances=self.api,
            settlement=self.api,
            vendor_directory=self.api,
            submit_timeout=self.config.submit_timeout,
            history=self.api,
        )
        self.tools = ReliefSpendTools(self.session)
        self.server = Server("relief-spend-mcp")

        # Register handlers
        self._register_handlers()

    async def dispatch(self, name: str, arguments: dict[str, Any]) -> Any:
        """
        Route a tool call to its handler.

        Raises:
            ValueError: If the tool name is unknown
        """
        if name not in TOOL_NAMES:
            raise ValueError(f"Unknown tool: {name}")
        result = getattr(self.tools, name)(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def handle_call(self, name: str, arguments: Optional[dict[str, Any]]) -> list[TextContent]:
        """Run a tool and render its result (or error) as JSON text."""
        try:
            result = await self.dispatch(name, arguments or {})
        except ReliefSpendError as e:
            # Domain errors are expected outcomes, shown to the user as-is
            logger.info("Tool %s: %s", name, e)
            result = e.to_dict()
        except (ValueError, TypeError) as e:
            return [TextContent(type="text", text=f"Error: {str(e)}")]
        except Exception as e:
            logger.exception(f"Error executing tool {name}")
            return [
                TextContent(
                    type="text",
                    text=f"Error executing tool: {str(e)}",
                )
            ]

        return [TextContent(type="text", text=json.dumps(result, indent=2))]

    def _register_handlers(self) -> None:
        """Register MCP protocol handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """List available tools."""
            schemas = create_tool_schemas()
            return [
                Tool(
                    name=schema["name"],
                    description=schema["description"],
                    inputSchema=schema["inputSchema"],
                )
                for schema in schemas
            ]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Handle tool calls."""
            return await self.handle_call(name, arguments)

    async def run(self) -> None:  # pragma: no cover
        """Run the MCP server using stdio transport."""
        async with self.api:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )


async def run_server(config: Optional[ReliefConfig] = None) -> None:  # pragma: no cover
    """
    Run the relief spending MCP server.

    Args:
        config: Server configuration. If None, defaults are used.
    """
    server = ReliefSpendServer(config)
    await server.run()
