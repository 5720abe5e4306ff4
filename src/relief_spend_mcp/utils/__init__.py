"""
Utility functions for the relief spending core.
"""

from relief_spend_mcp.utils.money import format_amount, from_base_units, to_amount

__all__ = [
    "to_amount",
    "from_base_units",
    "format_amount",
]
