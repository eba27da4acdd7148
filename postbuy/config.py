"""
Runtime settings.

Values come from the process environment. A local ``.env`` (or the legacy
``env.txt``) is loaded first for development; real environment variables
always win.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv
from loguru import logger

from postbuy.errors import ConfigurationError

DEFAULT_TABLE = "property_detail"
REQUIRED_KEYS = ("SUPABASE_URL", "SUPABASE_SERVICE_KEY")
HOUSECANARY_KEYS = ("HOUSECANARY_EMAIL", "HOUSECANARY_PASSWORD")

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    supabase_url: str = ""
    supabase_service_key: str = ""
    housecanary_email: str = ""
    housecanary_password: str = ""
    table: str = DEFAULT_TABLE
    headless: bool = True
    work_dir: Path = field(default_factory=lambda: Path("data/postbuy"))
    max_retries: int = 5
    retry_delay: float = 2.0
    run_timeout: float | None = None
    environment: str = "development"
    port: int = 8080

    def task_dir(self, task_name: str) -> Path:
        """Per-task working directory (downloads, screenshots). Never shared."""
        path = self.work_dir / task_name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def require(self, keys: Iterable[str]) -> None:
        missing = [key for key in keys if not getattr(self, key.lower(), "")]
        if missing:
            raise ConfigurationError(missing)


def _load_env_files(env_file: str | Path | None) -> None:
    if env_file is not None:
        load_dotenv(env_file, override=False)
        return
    load_dotenv(override=False)
    legacy = Path("env.txt")
    if legacy.exists():
        load_dotenv(legacy, override=False)
        logger.debug("Loaded env.txt configuration")


def _float_or_none(value: str | None) -> float | None:
    if value in (None, ""):
        return None
    return float(value)


def load_settings(
    *,
    required: Iterable[str] = REQUIRED_KEYS,
    env_file: str | Path | None = None,
) -> Settings:
    """Build ``Settings`` from the environment; raise ``ConfigurationError`` on missing keys."""
    _load_env_files(env_file)

    try:
        settings = Settings(
            supabase_url=os.getenv("SUPABASE_URL", "").strip(),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY", "").strip(),
            housecanary_email=os.getenv("HOUSECANARY_EMAIL", "").strip(),
            housecanary_password=os.getenv("HOUSECANARY_PASSWORD", "").strip(),
            table=os.getenv("POSTBUY_TABLE", DEFAULT_TABLE),
            headless=os.getenv("POSTBUY_HEADLESS", "1").lower() in _TRUTHY,
            work_dir=Path(os.getenv("POSTBUY_WORK_DIR", "data/postbuy")),
            max_retries=int(os.getenv("POSTBUY_MAX_RETRIES", "5")),
            retry_delay=float(os.getenv("POSTBUY_RETRY_DELAY", "2")),
            run_timeout=_float_or_none(os.getenv("POSTBUY_RUN_TIMEOUT")),
            environment=os.getenv("APP_ENV", "development"),
            port=int(os.getenv("PORT", "8080")),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid numeric setting: {exc}") from exc

    settings.require(required)
    logger.info(f"Configuration loaded (environment={settings.environment}, table={settings.table})")
    return settings
