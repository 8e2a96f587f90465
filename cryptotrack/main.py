# cryptotrack/main.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from cryptotrack.api.health import router as health_router
from cryptotrack.api.market import router as market_router
from cryptotrack.api.preferences import router as preferences_router
from cryptotrack.api.watchlist import router as watchlist_router
from cryptotrack.config.settings import Settings, get_settings
from cryptotrack.db.session import create_tables, make_engine, make_session_factory
from cryptotrack.jobs.price_refresher import PriceRefresher
from cryptotrack.services.alerts import AlertFeed
from cryptotrack.services.http_client import HttpClient
from cryptotrack.services.market_state import MarketState
from cryptotrack.services.preferences import SqlPreferenceStore, ThemePreferences

logger = logging.getLogger("cryptotrack")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s | %(message)s",
    )


def build_http_client(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> HttpClient:
    client = HttpClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport)
    client.configure(
        settings.API_BASE_URL,
        default_headers=settings.API_DEFAULT_HEADERS,
        debug_logging=settings.HTTP_DEBUG_LOGGING,
    )
    if settings.API_AUTH_TOKEN:
        client.set_auth_token(settings.API_AUTH_TOKEN)
    return client


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings.LOG_LEVEL)

    create_tables(app.state.engine)
    app.state.http_client.bind_loop(asyncio.get_running_loop())

    state: MarketState = app.state.market_state
    await state.fetch_listing()

    refresher: Optional[PriceRefresher] = None
    if settings.REFRESH_ENABLED:
        refresher = PriceRefresher(state, interval_seconds=settings.REFRESH_INTERVAL_SECONDS)
        refresher.start()
    else:
        logger.info("price refresh disabled (REFRESH_ENABLED=false)")
    app.state.price_refresher = refresher

    try:
        yield
    finally:
        if refresher is not None:
            await refresher.stop()
        app.state.price_refresher = None
        await app.state.http_client.aclose()
        app.state.engine.dispose()


def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="CryptoTrack", lifespan=lifespan)

    # Routers
    app.include_router(health_router)
    app.include_router(market_router)
    app.include_router(watchlist_router)
    app.include_router(preferences_router)

    engine = make_engine(settings.PREFERENCES_DB_URL)
    store = SqlPreferenceStore(make_session_factory(engine))
    alerts = AlertFeed()
    http_client = build_http_client(settings, transport=transport)

    app.state.settings = settings
    app.state.engine = engine
    app.state.alerts = alerts
    app.state.http_client = http_client
    app.state.theme_preferences = ThemePreferences(store)
    app.state.market_state = MarketState(
        http_client,
        store,
        alerts,
        vs_currency=settings.VS_CURRENCY,
        per_page=settings.LISTING_PER_PAGE,
    )
    app.state.price_refresher = None
    return app


app = create_app()
