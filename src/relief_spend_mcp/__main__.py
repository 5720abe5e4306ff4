"""
CLI entry point for the relief spending MCP server.
"""

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from relief_spend_mcp.config import load_config
from relief_spend_mcp.server import run_server


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Relief Spend MCP Server - Spend category aid through MCP"
    )
    parser.add_argument(
        "--api-url",
        help="Relief backend API root (default: $RELIEF_API_URL or http://localhost:3001/api)",
    )
    parser.add_argument(
        "--beneficiary-id",
        help="Beneficiary whose balances are loaded (default: $RELIEF_BENEFICIARY_ID)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Settlement timeout in seconds (default: $RELIEF_SUBMIT_TIMEOUT or 30)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,  # MCP uses stdout for protocol, so log to stderr
    )

    try:
        config = load_config(
            api_url=args.api_url,
            beneficiary_id=args.beneficiary_id,
            submit_timeout=args.timeout,
        )
    except ValidationError as e:
        logging.error(f"Invalid configuration: {e}")
        sys.exit(2)

    # Run the server
    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logging.info("Server stopped by user")
        sys.exit(0)
    except Exception as e:
        logging.exception(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
