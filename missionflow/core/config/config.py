"""
Deployment settings read from the environment (and `.env`) at import time.

Engine tuning (graph thresholds, promotion cap, cache TTLs) lives in the YAML
files behind ConfigManager; this class only holds what differs between
deployments: where the store is, which cache backend to use and how to log.

Malformed values fall back to the default with a warning, except in
production where `validate()` raises.
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from dotenv import load_dotenv

load_dotenv()

T = TypeVar("T")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _positive(value: int) -> bool:
    return value > 0


class Config:
    """Class-level settings; call `Config.load()` again after changing the environment."""

    DATABASE_URL: str = "sqlite+aiosqlite:///./missionflow.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False
    DATABASE_STATEMENT_TIMEOUT_MS: int = 5000
    DATABASE_RETRY_ATTEMPTS: int = 3

    CACHE_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: int = 5

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: Optional[bool] = None
    LOG_COLORS: bool = True
    LOG_TO_FILE: bool = False

    PROJECT_ROOT = Path(__file__).resolve().parents[3]
    LOGS_DIR = PROJECT_ROOT / "logs"
    CONFIG_DIR = PROJECT_ROOT / "config"

    APP_VERSION: str = "1.0.0"

    _problems: Dict[str, str] = {}

    @classmethod
    def _read(
        cls,
        key: str,
        default: T,
        parse: Callable[[str], Any],
        check: Optional[Callable[[Any], bool]] = None,
    ) -> T:
        raw = os.getenv(key)
        if raw is None or raw == "":
            return default
        try:
            value = parse(raw)
        except ValueError as exc:
            cls._problems[key] = str(exc)
            return default
        if check is not None and not check(value):
            cls._problems[key] = f"{value!r} is out of range"
            return default
        return value

    @classmethod
    def load(cls) -> None:
        cls._problems = {}

        cls.DATABASE_URL = cls._read("DATABASE_URL", cls.DATABASE_URL, str)
        cls.DATABASE_POOL_SIZE = cls._read("DATABASE_POOL_SIZE", 20, int, _positive)
        cls.DATABASE_MAX_OVERFLOW = cls._read(
            "DATABASE_MAX_OVERFLOW", 10, int, lambda value: value >= 0
        )
        cls.DATABASE_ECHO = cls._read("DATABASE_ECHO", False, _parse_bool)
        cls.DATABASE_STATEMENT_TIMEOUT_MS = cls._read(
            "DATABASE_STATEMENT_TIMEOUT_MS", 5000, int, _positive
        )
        cls.DATABASE_RETRY_ATTEMPTS = cls._read(
            "DATABASE_RETRY_ATTEMPTS", 3, int, lambda value: 1 <= value <= 10
        )

        cls.CACHE_BACKEND = cls._read(
            "CACHE_BACKEND", "memory", str.lower, lambda value: value in ("memory", "redis")
        )
        cls.REDIS_URL = cls._read("REDIS_URL", cls.REDIS_URL, str)
        cls.REDIS_SOCKET_TIMEOUT = cls._read("REDIS_SOCKET_TIMEOUT", 5, int, _positive)

        cls.ENVIRONMENT = cls._read("ENVIRONMENT", "development", str.lower)
        cls.LOG_LEVEL = cls._read(
            "LOG_LEVEL",
            "INFO",
            str.upper,
            lambda value: value in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        )
        cls.LOG_JSON = cls._read("LOG_JSON", None, _parse_bool)
        cls.LOG_COLORS = cls._read("LOG_COLORS", True, _parse_bool)
        cls.LOG_TO_FILE = cls._read("LOG_TO_FILE", False, _parse_bool)

    @classmethod
    def validate(cls) -> None:
        """
        Load settings and report values that were rejected.

        Raises:
            ValueError: in production, when any value was rejected
        """
        cls.load()
        # the logging subsystem is configured from these values, so plain logging here
        for key, problem in cls._problems.items():
            logging.warning("Ignoring %s: %s; using the default", key, problem)

        if cls.is_production():
            if cls._problems:
                raise ValueError(f"Invalid settings: {sorted(cls._problems)}")
            if cls.DATABASE_URL.startswith("sqlite"):
                logging.warning("Production is using SQLite; writers will queue on one file lock")

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT == "production"

    @classmethod
    def is_testing(cls) -> bool:
        return cls.ENVIRONMENT == "testing"

    @classmethod
    def get_config_summary(cls) -> Dict[str, Any]:
        """Settings safe to log (no URLs)."""
        return {
            "environment": cls.ENVIRONMENT,
            "log_level": cls.LOG_LEVEL,
            "database_backend": cls.DATABASE_URL.split(":", 1)[0],
            "cache_backend": cls.CACHE_BACKEND,
            "retry_attempts": cls.DATABASE_RETRY_ATTEMPTS,
            "app_version": cls.APP_VERSION,
        }


Config.validate()
