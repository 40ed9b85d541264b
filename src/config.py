"""
Runtime configuration read from environment variables.
"""

import os
from dataclasses import dataclass
from typing import Optional

AGROMONITORING_BASE_URL = "https://api.agromonitoring.com/agro/1.0"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./farmdata.db"


@dataclass
class Settings:
    """Settings shared by the aggregator, provider client and profile store."""
    agromonitoring_api_key: Optional[str] = None
    agromonitoring_base_url: str = AGROMONITORING_BASE_URL
    database_url: str = DEFAULT_DATABASE_URL
    fetch_timeout_s: float = 10.0
    http_timeout_s: float = 30.0
    default_history_days: int = 30
    max_history_days: int = 90

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment, keeping defaults for unset keys."""
        env = os.environ
        return cls(
            agromonitoring_api_key=env.get("AGROMONITORING_API_KEY"),
            agromonitoring_base_url=env.get("AGROMONITORING_BASE_URL", AGROMONITORING_BASE_URL),
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            fetch_timeout_s=float(env.get("FETCH_TIMEOUT_S", 10.0)),
            http_timeout_s=float(env.get("HTTP_TIMEOUT_S", 30.0)),
            default_history_days=int(env.get("DEFAULT_HISTORY_DAYS", 30)),
            max_history_days=int(env.get("MAX_HISTORY_DAYS", 90)),
        )
