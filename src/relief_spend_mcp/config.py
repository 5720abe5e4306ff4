"""
Configuration for the relief spending MCP server.

Values come from the environment (a local .env file is honoured);
command-line flags override them.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_API_URL = "http://localhost:3001/api"


class ReliefConfig(BaseModel):
    """Settings for talking to the relief backend."""

    api_url: str = DEFAULT_API_URL
    api_token: Optional[str] = None
    beneficiary_id: Optional[str] = None
    submit_timeout: float = Field(default=30.0, gt=0)
    amount_decimals: int = Field(default=18, ge=0)


def load_config(**overrides: object) -> ReliefConfig:
    """
    Build the configuration from environment variables.

    Args:
        overrides: Values that win over the environment; None values are ignored

    Returns:
        Validated configuration
    """
    load_dotenv()

    values = {
        "api_url": os.getenv("RELIEF_API_URL", DEFAULT_API_URL),
        "api_token": os.getenv("RELIEF_API_TOKEN") or None,
        "beneficiary_id": os.getenv("RELIEF_BENEFICIARY_ID") or None,
        "submit_timeout": os.getenv("RELIEF_SUBMIT_TIMEOUT", "30"),
        "amount_decimals": os.getenv("RELIEF_AMOUNT_DECIMALS", "18"),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ReliefConfig.model_validate(values)
