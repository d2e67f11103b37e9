# sharescan/config/defaults.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

_TRUTHY = ("1", "true", "yes", "y", "on")


def _env_bool(name: str, fallback: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    try:
        return int(raw.strip())
    except ValueError:
        logging.getLogger("sharescan").warning(f"[config] invalid integer for {name}: {raw!r}, using {fallback}")
        return fallback


def _env_str(name: str, fallback: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    return raw.strip()


@dataclass(frozen=True)
class Default:
    """
    Process settings, read from SHARESCAN_* environment variables (after .env).

    Components take these as constructor defaults; pass explicit values to
    override for a single resolver or cache.
    """
    PREDICATE_HINTS_ENABLED: bool = True
    PREDICATE_V2_ENABLED: bool = False
    LIMIT_PUSHDOWN_ENABLED: bool = True
    URL_CACHE_ENABLED: bool = True
    STRUCTURAL_SCHEMA_MATCH_ENABLED: bool = False
    CACHE_POPULATION: str = "eager"
    URL_REFRESH_SKEW_SEC: int = 60
    URL_CACHE_MAX_ENTRIES: int = 100_000
    REFRESH_LEASE_SEC: int = 30
    REFRESH_TIMEOUT_SEC: int = 60
    CACHE_SWEEP_INTERVAL_SEC: int = 60
    FILE_PATH_SCHEME: str = "delta-sharing"
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls, prefix: str = "SHARESCAN_") -> "Default":
        values = {}
        for f in fields(cls):
            name = prefix + f.name
            if f.type in ("bool", bool):
                values[f.name] = _env_bool(name, f.default)
            elif f.type in ("int", int):
                values[f.name] = _env_int(name, f.default)
            else:
                values[f.name] = _env_str(name, f.default)
        return cls(**values)


def _configure_logger(level: Optional[str]) -> logging.Logger:
    log = logging.getLogger("sharescan")
    resolved = logging.getLevelName((level or "INFO").upper())
    if isinstance(resolved, int):
        log.setLevel(resolved)
    else:
        log.setLevel(logging.INFO)
    if not log.handlers:
        log.addHandler(logging.NullHandler())
    return log


default = Default.from_env()
logger = _configure_logger(default.LOG_LEVEL)
