from __future__ import annotations

from typing import Any, Optional

import httpx
import pytest

from cryptotrack.db.session import create_tables, make_engine, make_session_factory
from cryptotrack.services.http_client import HttpClient
from cryptotrack.services.preferences import SqlPreferenceStore


COINGECKO_BASE = "https://api.coingecko.test/api/v3"


def market_rows() -> list[dict[str, Any]]:
    return [
        {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "current_price": 64000.0, "image": "https://img.test/btc.png"},
        {"id": "ethereum", "symbol": "eth", "name": "Ethereum", "current_price": 3100.0, "image": "https://img.test/eth.png"},
        {"id": "tether", "symbol": "usdt", "name": "Tether", "current_price": None, "image": None},
    ]


class FakeCoinGecko:
    """MockTransport handler serving the two CoinGecko endpoints the app uses."""

    def __init__(self) -> None:
        self.markets: Any = market_rows()
        self.prices: dict[str, dict[str, Any]] = {}
        self.fail_with: Optional[Exception] = None
        self.requests: list[httpx.Request] = []

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with

        if request.url.path.endswith("/coins/markets"):
            return httpx.Response(200, json=self.markets)

        if request.url.path.endswith("/simple/price"):
            ids = request.url.params.get("ids", "").split(",")
            return httpx.Response(200, json={i: self.prices[i] for i in ids if i in self.prices})

        return httpx.Response(404, json={"error": "coin not found"})


@pytest.fixture()
def coingecko() -> FakeCoinGecko:
    return FakeCoinGecko()


@pytest.fixture()
def http_client(coingecko) -> HttpClient:
    client = HttpClient(transport=httpx.MockTransport(coingecko))
    client.configure(COINGECKO_BASE, debug_logging=False)
    return client


@pytest.fixture()
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'prefs.db'}"


@pytest.fixture()
def engine(db_url):
    engine = make_engine(db_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(engine) -> SqlPreferenceStore:
    return SqlPreferenceStore(make_session_factory(engine))
