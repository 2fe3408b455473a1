"""Environment-driven settings."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() not in ("0", "false", "")


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str
    log_json: bool
    db_connect_attempts: int

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    # Fall back to local SQLite when no DATABASE_URL is configured
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./caregate.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=_flag("LOG_JSON"),
        db_connect_attempts=int(os.getenv("DB_CONNECT_ATTEMPTS", "30")),
    )
