"""Durable key-value preferences (watchlist ids, theme) backed by SQLAlchemy."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

from sqlalchemy.orm import Session, sessionmaker

from cryptotrack.db.models import Preference
from cryptotrack.models.preferences import DEFAULT_THEME, AppTheme

logger = logging.getLogger("cryptotrack.preferences")

THEME_KEY = "appTheme"
WATCHLIST_KEY = "WatchlistCoins"


class PreferenceStore(Protocol):
    def get_list(self, key: str) -> Optional[list[str]]: ...

    def set_list(self, key: str, values: list[str]) -> None: ...

    def get_string(self, key: str) -> Optional[str]: ...

    def set_string(self, key: str, value: str) -> None: ...


class SqlPreferenceStore:
    """
    One row per key, value stored as json. Every write commits immediately
    so the value survives a restart; concurrent writers are last-write-wins.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _read(self, key: str) -> Any:
        with self._session_factory() as session:
            row = session.get(Preference, key)
            if row is None:
                return None
            try:
                return json.loads(row.value_json)
            except ValueError:
                logger.warning("discarding unreadable preference | key=%s", key)
                return None

    def _write(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._session_factory() as session:
            row = session.get(Preference, key)
            if row is None:
                session.add(Preference(key=key, value_json=encoded))
            else:
                row.value_json = encoded
            session.commit()

    def get_list(self, key: str) -> Optional[list[str]]:
        value = self._read(key)
        if not isinstance(value, list):
            return None
        return [str(v) for v in value]

    def set_list(self, key: str, values: list[str]) -> None:
        self._write(key, [str(v) for v in values])

    def get_string(self, key: str) -> Optional[str]:
        value = self._read(key)
        return value if isinstance(value, str) else None

    def set_string(self, key: str, value: str) -> None:
        self._write(key, str(value))


class ThemePreferences:
    def __init__(self, store: PreferenceStore, key: str = THEME_KEY) -> None:
        self._store = store
        self._key = key

    def current(self) -> AppTheme:
        raw = self._store.get_string(self._key)
        try:
            return AppTheme(raw) if raw is not None else DEFAULT_THEME
        except ValueError:
            logger.warning("unknown theme %r in preferences, using %s", raw, DEFAULT_THEME.value)
            return DEFAULT_THEME

    def set(self, theme: AppTheme) -> AppTheme:
        theme = AppTheme(theme)
        self._store.set_string(self._key, theme.value)
        return theme

    def toggle(self) -> AppTheme:
        return self.set(self.current().toggled())
