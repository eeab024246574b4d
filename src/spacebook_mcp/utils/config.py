from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Config:
    """Central configuration loaded from environment variables."""

    # Database
    db_path: Path = field(
        default_factory=lambda: Path(
            os.environ.get("SPACEBOOK_DB_PATH", "data/spacebook.db")
        )
    )

    # Technical capacity seed (only applied when the singleton row is missing)
    tech_block_minutes: int = field(
        default_factory=lambda: int(os.environ.get("SPACEBOOK_TECH_BLOCK_MINUTES", "30"))
    )
    tech_slots_per_block: int = field(
        default_factory=lambda: int(os.environ.get("SPACEBOOK_TECH_SLOTS_PER_BLOCK", "10"))
    )

    # Logging
    log_level: str = field(
        default_factory=lambda: os.environ.get("SPACEBOOK_LOG_LEVEL", "INFO")
    )


def get_config() -> Config:
    """Return a Config instance (singleton-friendly via module caching)."""
    return Config()
