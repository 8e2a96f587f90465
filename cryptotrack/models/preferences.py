from __future__ import annotations

from enum import Enum


class AppTheme(str, Enum):
    LIGHT = "light"
    DARK = "dark"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    def toggled(self) -> "AppTheme":
        return AppTheme.LIGHT if self is AppTheme.DARK else AppTheme.DARK


DEFAULT_THEME = AppTheme.DARK
