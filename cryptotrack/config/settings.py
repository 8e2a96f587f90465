# cryptotrack/config/settings.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Dict, Optional


class SettingsError(RuntimeError):
    """Raised when an environment value cannot be parsed."""


def parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_int(value: str | None, default: int) -> int:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise SettingsError(f"Expected an integer, got {value!r}") from exc


def parse_float(value: str | None, default: float) -> float:
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise SettingsError(f"Expected a number, got {value!r}") from exc


def parse_headers(value: str | None) -> Dict[str, str]:
    """
    Supports:
      - JSON: {"x-cg-demo-api-key": "abc"}
      - CSV map: "x-cg-demo-api-key=abc,Accept-Language=en"
    """
    if not value:
        return {}

    v = value.strip()
    if v.startswith("{"):
        try:
            data = json.loads(v)
        except json.JSONDecodeError as exc:
            raise SettingsError(f"Bad API_DEFAULT_HEADERS json: {exc}") from exc
        return {str(k): str(val) for k, val in data.items()}

    out: Dict[str, str] = {}
    for part in v.split(","):
        part = part.strip()
        if not part:
            continue
        if "=" not in part:
            raise SettingsError(f"Bad API_DEFAULT_HEADERS part: {part}")
        k, val = part.split("=", 1)
        out[k.strip()] = val.strip()
    return out


@dataclass(frozen=True)
class Settings:
    API_BASE_URL: str
    API_AUTH_TOKEN: Optional[str]
    API_DEFAULT_HEADERS: Dict[str, str]
    HTTP_TIMEOUT_SECONDS: float
    HTTP_DEBUG_LOGGING: bool
    PREFERENCES_DB_URL: str
    REFRESH_ENABLED: bool
    REFRESH_INTERVAL_SECONDS: int
    LISTING_PER_PAGE: int
    VS_CURRENCY: str
    LOG_LEVEL: str

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            API_BASE_URL=os.getenv("API_BASE_URL", "https://api.coingecko.com/api/v3"),
            API_AUTH_TOKEN=os.getenv("API_AUTH_TOKEN") or None,
            API_DEFAULT_HEADERS=parse_headers(os.getenv("API_DEFAULT_HEADERS")),
            HTTP_TIMEOUT_SECONDS=parse_float(os.getenv("HTTP_TIMEOUT_SECONDS"), 30.0),
            HTTP_DEBUG_LOGGING=parse_bool(os.getenv("HTTP_DEBUG_LOGGING"), False),
            PREFERENCES_DB_URL=os.getenv("PREFERENCES_DB_URL", "sqlite:///./cryptotrack.db"),
            REFRESH_ENABLED=parse_bool(os.getenv("REFRESH_ENABLED"), True),
            REFRESH_INTERVAL_SECONDS=parse_int(os.getenv("REFRESH_INTERVAL_SECONDS"), 60),
            LISTING_PER_PAGE=parse_int(os.getenv("LISTING_PER_PAGE"), 20),
            VS_CURRENCY=os.getenv("VS_CURRENCY", "usd").strip().lower() or "usd",
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
