"""Configuration loader for the charging ledger updater."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .errors import MissingCredentials
from .models import MonthKey


def _get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is not None:
        value = value.strip()
        if value == "":
            return default
        return value
    return default


def _get_int(key: str, default: int) -> int:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be an integer") from exc


def _get_float(key: str, default: float) -> float:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be a number") from exc


def _get_bool(key: str, default: bool) -> bool:
    value = _get_env(key)
    if value is None:
        return default
    value_lower = value.lower()
    if value_lower in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if value_lower in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(f"Environment variable {key} must be a boolean")


def _get_paths(key: str, default: str) -> Tuple[Path, ...]:
    value = _get_env(key, default) or ""
    return tuple(Path(part.strip()) for part in value.split(",") if part.strip())


@dataclass(frozen=True, slots=True)
class Credentials:
    """Easee credentials; a pre-issued token wins over username/password."""

    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    def resolve(self) -> Tuple[Optional[str], Optional[Tuple[str, str]]]:
        """Return ``(token, None)`` or ``(None, (username, password))``."""
        if self.token:
            return self.token, None
        if self.username and self.password:
            return None, (self.username, self.password)
        raise MissingCredentials(
            "Missing Easee credentials. Set EASEE_TOKEN or EASEE_USERNAME/EASEE_PASSWORD."
        )


@dataclass(slots=True)
class AppConfig:
    ledger_path: Path
    publish_paths: Tuple[Path, ...]
    start_month: MonthKey
    tariff_page_url: str
    usage_api_base_url: str
    http_timeout: float
    http_retries: int
    http_retry_delay_ms: int
    http_user_agent: str
    verify_site_users: bool
    log_level: str
    credentials: Credentials

    @property
    def output_paths(self) -> Tuple[Path, ...]:
        """Canonical ledger first, then publish copies, without duplicates."""
        ordered = [self.ledger_path]
        for path in self.publish_paths:
            if path not in ordered:
                ordered.append(path)
        return tuple(ordered)


DEFAULT_TARIFF_PAGE_URL = (
    "https://www.jamtkraft.se/privat/elavtal/vara-elavtal/"
    "rorligt-elpris/prishistorik-rorlig-elpris/"
)
DEFAULT_USAGE_API_BASE_URL = "https://api.easee.com"
DEFAULT_USER_AGENT = "the-charging-rally/1.0"


def load_config() -> AppConfig:
    start_raw = _get_env("LEDGER_START_MONTH", "2024-01")
    try:
        start_month = MonthKey.parse(start_raw)
    except ValueError as exc:
        raise ValueError("Environment variable LEDGER_START_MONTH must be YYYY-MM") from exc

    return AppConfig(
        ledger_path=Path(_get_env("LEDGER_PATH", "data/ledger.json")),
        publish_paths=_get_paths("LEDGER_PUBLISH_PATHS", "docs/data/ledger.json"),
        start_month=start_month,
        tariff_page_url=_get_env("TARIFF_PAGE_URL", DEFAULT_TARIFF_PAGE_URL),
        usage_api_base_url=_get_env("USAGE_API_BASE_URL", DEFAULT_USAGE_API_BASE_URL),
        http_timeout=_get_float("HTTP_TIMEOUT_SECONDS", 30.0),
        http_retries=max(1, _get_int("HTTP_RETRIES", 3)),
        http_retry_delay_ms=max(0, _get_int("HTTP_RETRY_DELAY_MS", 1000)),
        http_user_agent=_get_env("HTTP_USER_AGENT", DEFAULT_USER_AGENT),
        verify_site_users=_get_bool("VERIFY_SITE_USERS", True),
        log_level=_get_env("LOG_LEVEL", "INFO").upper(),
        credentials=Credentials(
            token=_get_env("EASEE_TOKEN"),
            username=_get_env("EASEE_USERNAME"),
            password=_get_env("EASEE_PASSWORD"),
        ),
    )
