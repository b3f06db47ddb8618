"""Runtime configuration for the finance tracker client.

Values come from the environment (optionally a `.env` file) with
`FINTRACK_` prefixed names and fall back to the local development server.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_URL = "http://localhost:8001"
DEFAULT_TIMEOUT = 15.0
DEFAULT_REFRESH_TIMEOUT = 10.0
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


@dataclass(frozen=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    auth_api_url: str = DEFAULT_API_URL
    timeout: float = DEFAULT_TIMEOUT
    refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT
    token_file: Optional[Path] = None
    entry_route: str = "/"
    log_level: str = "INFO"


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_settings(env_file: Optional[str] = None) -> Settings:
    load_dotenv(env_file)

    api_url = os.getenv("FINTRACK_API_URL", DEFAULT_API_URL).rstrip("/")
    auth_api_url = os.getenv("FINTRACK_AUTH_API_URL", api_url).rstrip("/")
    token_file = os.getenv("FINTRACK_TOKEN_FILE")

    return Settings(
        api_url=api_url,
        auth_api_url=auth_api_url,
        timeout=_float_env("FINTRACK_TIMEOUT", DEFAULT_TIMEOUT),
        refresh_timeout=_float_env("FINTRACK_REFRESH_TIMEOUT", DEFAULT_REFRESH_TIMEOUT),
        token_file=Path(token_file) if token_file else None,
        entry_route=os.getenv("FINTRACK_ENTRY_ROUTE", "/"),
        log_level=os.getenv("FINTRACK_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format=LOG_FORMAT,
    )
