from __future__ import annotations

from typing import Optional

from fastapi import Request

from cryptotrack.jobs.price_refresher import PriceRefresher
from cryptotrack.services.alerts import AlertFeed
from cryptotrack.services.market_state import MarketState
from cryptotrack.services.preferences import ThemePreferences


def get_market_state(request: Request) -> MarketState:
    return request.app.state.market_state


def get_theme_preferences(request: Request) -> ThemePreferences:
    return request.app.state.theme_preferences


def get_alert_feed(request: Request) -> AlertFeed:
    return request.app.state.alerts


def get_price_refresher(request: Request) -> Optional[PriceRefresher]:
    return getattr(request.app.state, "price_refresher", None)
