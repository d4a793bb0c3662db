"""Configuration helpers for scraper runtime settings."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)


def _load_env_file() -> None:
    """Load variables from a local ``.env`` file when available."""

    env_path = Path(os.getenv("SCRAPER_ENV_FILE", Path.cwd() / ".env"))
    if not env_path.exists():
        LOGGER.debug("No .env file found at %s", env_path)
        return

    load_dotenv(env_path)
    LOGGER.info("Loaded environment variables from %s", env_path)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_optional_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is not None and raw.strip().lower() in ("", "none", "off"):
        return None
    if raw is None:
        return default
    return _env_float(name, default if default is not None else 0.0)


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


_load_env_file()


class Config:
    """Central access point for runtime configuration."""

    # Request cadence ----------------------------------------------------------
    MIN_DELAY: float = _env_float("SCRAPER_MIN_DELAY", 2.0)
    MAX_DELAY: float = _env_float("SCRAPER_MAX_DELAY", 5.0)
    REQUEST_TIMEOUT: float = _env_float("SCRAPER_REQUEST_TIMEOUT", 60.0)
    RUN_TIMEOUT: float = _env_float("SCRAPER_RUN_TIMEOUT", 300.0)

    # Retry policy -------------------------------------------------------------
    RETRY_MAX_ATTEMPTS: int = int(_env_float("SCRAPER_RETRY_MAX_ATTEMPTS", 3))
    RETRY_BASE_DELAY: float = _env_float("SCRAPER_RETRY_BASE_DELAY", 1.0)
    RETRY_MULTIPLIER: float = _env_float("SCRAPER_RETRY_MULTIPLIER", 2.0)
    RETRY_MAX_DELAY: Optional[float] = _env_optional_float("SCRAPER_RETRY_MAX_DELAY", 30.0)

    # Sources ------------------------------------------------------------------
    BANKS: List[str] = _env_list("SCRAPER_BANKS")
    SOURCES_FILE: Optional[str] = os.getenv("SCRAPER_SOURCES_FILE")

    # Feature flags ------------------------------------------------------------
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"

    @classmethod
    def validate(cls) -> bool:
        """Validate that the active configuration is usable."""

        valid = True
        if cls.MAX_DELAY < cls.MIN_DELAY:
            LOGGER.warning(
                "SCRAPER_MAX_DELAY (%s) is below SCRAPER_MIN_DELAY (%s); delays will be fixed at the minimum",
                cls.MAX_DELAY,
                cls.MIN_DELAY,
            )
            valid = False
        if cls.RETRY_MAX_ATTEMPTS < 1:
            LOGGER.warning("SCRAPER_RETRY_MAX_ATTEMPTS must be at least 1; using 1")
            valid = False
        return valid
