"""
Application settings (Pydantic Settings) and logging setup.
"""

import logging
import sys
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env at the repository root (parent of slotbook/)
_env_path = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_env_path, env_prefix="SLOTBOOK_", extra="ignore"
    )

    environment: Literal["development", "production"] = "development"
    log_level: str = "INFO"
    # used when the directory has no active workers
    default_capacity: int = 3
    slot_minutes: int = 60
    timezone: str = "UTC"

    @field_validator("log_level", mode="after")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return (v or "INFO").strip().upper()


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger("slotbook")
    root.setLevel(getattr(logging, level or settings.log_level, logging.INFO))

    # Avoid adding handlers multiple times
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
