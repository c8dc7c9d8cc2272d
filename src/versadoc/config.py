"""Configuration for versadoc stores, repositories and jobs."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class VersadocConfig:
    """Configuration for the document store and the bulk migration job."""

    db_path: str = "versadoc.db"
    table_name: str = "user_data"
    batch_size: int = 100
    fail_fast: bool = False
    busy_timeout_ms: int = 5000
    default_list_limit: int | None = None

    @classmethod
    def from_env(cls) -> VersadocConfig:
        """Build a config from ``VERSADOC_*`` environment variables."""
        cfg = cls()
        if db_path := os.getenv("VERSADOC_DB"):
            cfg.db_path = db_path
        if batch_size := os.getenv("VERSADOC_BATCH_SIZE"):
            cfg.batch_size = int(batch_size)
        if fail_fast := os.getenv("VERSADOC_FAIL_FAST"):
            cfg.fail_fast = _env_bool(fail_fast)
        if busy := os.getenv("VERSADOC_BUSY_TIMEOUT_MS"):
            cfg.busy_timeout_ms = int(busy)
        return cfg
