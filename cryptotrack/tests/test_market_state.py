from __future__ import annotations

import httpx
import pytest

from cryptotrack.db.session import make_engine, make_session_factory
from cryptotrack.models.market import CryptoAsset
from cryptotrack.services.alerts import AlertFeed
from cryptotrack.services.market_state import CONNECT_ERROR_MESSAGE, MarketState
from cryptotrack.services.preferences import WATCHLIST_KEY, SqlPreferenceStore


def _asset(asset_id: str, price: float | None = None) -> CryptoAsset:
    return CryptoAsset(id=asset_id, symbol=asset_id[:3], name=asset_id.title(), current_price=price)


@pytest.fixture()
def alerts() -> AlertFeed:
    return AlertFeed()


@pytest.fixture()
def state(http_client, store, alerts) -> MarketState:
    return MarketState(http_client, store, alerts)


@pytest.mark.asyncio
async def test_fetch_listing_replaces_listing_in_provider_order(state):
    events = []
    state.subscribe(events.append)

    ok = await state.fetch_listing()

    assert ok is True
    assert [a.id for a in state.listing] == ["bitcoin", "ethereum", "tether"]
    assert state.listing[0].current_price == 64000.0
    assert state.listing[2].current_price is None
    assert events == ["listing", "watchlist"]


@pytest.mark.asyncio
async def test_fetch_listing_rederives_watchlist_from_new_listing(state, store, coingecko):
    store.set_list(WATCHLIST_KEY, ["tether", "bitcoin"])
    await state.fetch_listing()
    old_bitcoin = state.get_asset("bitcoin")

    coingecko.markets = [row for row in coingecko.markets if row["id"] != "tether"]
    coingecko.markets[0]["current_price"] = 70000.0
    await state.fetch_listing()

    assert [a.id for a in state.watchlist] == ["bitcoin"]
    assert state.watchlist[0] is state.get_asset("bitcoin")
    assert state.watchlist[0] is not old_bitcoin
    assert state.watchlist[0].current_price == 70000.0


@pytest.mark.asyncio
async def test_fetch_listing_decode_failure_leaves_listing_untouched(state, coingecko):
    await state.fetch_listing()
    before = list(state.listing)

    coingecko.markets = coingecko.markets + [{"id": "broken-without-name"}]
    ok = await state.fetch_listing()

    assert ok is False
    assert state.listing == before
    assert all(a is b for a, b in zip(state.listing, before))


@pytest.mark.asyncio
async def test_fetch_listing_error_payload_is_decode_failure(state, coingecko, alerts):
    coingecko.markets = {"status": {"error_code": 429, "error_message": "rate limited"}}

    assert await state.fetch_listing() is False
    assert state.listing == []
    assert alerts.latest() is None


@pytest.mark.asyncio
async def test_fetch_listing_transport_failure_raises_alert(state, coingecko, alerts):
    coingecko.fail_with = httpx.ConnectError("offline")

    ok = await state.fetch_listing()

    assert ok is False
    assert state.listing == []
    alert = alerts.latest()
    assert alert is not None
    assert alert.title == "Error"
    assert alert.message == CONNECT_ERROR_MESSAGE


@pytest.mark.asyncio
async def test_refresh_patches_price_of_single_asset(state, coingecko):
    state.listing = [_asset("bitcoin")]
    coingecko.prices = {"bitcoin": {"usd": 65000.5}}

    patched = await state.refresh_prices()

    assert patched == 1
    assert state.listing == [_asset("bitcoin", 65000.5)]


@pytest.mark.asyncio
async def test_refresh_with_partial_response_only_touches_returned_ids(state, coingecko):
    state.listing = [_asset("bitcoin", 1.0), _asset("ethereum"), _asset("tether", 3.0)]
    coingecko.prices = {"ethereum": {"usd": 3200.0}}

    events = []
    state.subscribe(events.append)
    patched = await state.refresh_prices()

    assert patched == 1
    assert [a.current_price for a in state.listing] == [1.0, 3200.0, 3.0]
    assert [a.name for a in state.listing] == ["Bitcoin", "Ethereum", "Tether"]
    assert "prices" in events

    sent = coingecko.requests[-1]
    assert sent.url.params["ids"] == "bitcoin,ethereum,tether"
    assert sent.url.params["vs_currencies"] == "usd"


@pytest.mark.asyncio
async def test_refresh_with_no_matching_ids_is_not_an_error(state, coingecko):
    state.listing = [_asset("bitcoin", 10.0)]
    coingecko.prices = {}

    assert await state.refresh_prices() == 0
    assert state.listing[0].current_price == 10.0
    assert state.last_refresh_error is None


@pytest.mark.asyncio
async def test_refresh_with_empty_listing_makes_no_request(state, coingecko):
    assert await state.refresh_prices() == 0
    assert coingecko.requests == []


@pytest.mark.asyncio
async def test_refresh_transport_failure_keeps_prices(state, coingecko):
    state.listing = [_asset("bitcoin", 10.0)]
    coingecko.fail_with = httpx.ReadTimeout("slow")

    assert await state.refresh_prices() == 0
    assert state.listing[0].current_price == 10.0
    assert state.last_refresh_error == "Request timeout"


@pytest.mark.asyncio
async def test_refresh_rederives_watchlist_from_persisted_ids(state, store, coingecko):
    state.listing = [_asset("bitcoin", 1.0), _asset("ethereum", 2.0)]
    store.set_list(WATCHLIST_KEY, ["ethereum"])
    coingecko.prices = {"ethereum": {"usd": 2500.0}}

    await state.refresh_prices()

    assert state.watchlist == [_asset("ethereum", 2500.0)]


def test_load_watchlist_drops_unknown_ids(state, store):
    state.listing = [_asset("bitcoin", 1.0)]
    store.set_list(WATCHLIST_KEY, ["bitcoin", "doge"])

    watchlist = state.load_watchlist()

    assert watchlist == [_asset("bitcoin", 1.0)]
    assert state.watchlist == watchlist


def test_load_watchlist_keeps_persisted_order_and_replaces_previous(state, store):
    state.listing = [_asset("bitcoin"), _asset("ethereum"), _asset("tether")]
    state.watchlist = [_asset("tether")]
    store.set_list(WATCHLIST_KEY, ["ethereum", "bitcoin"])

    state.load_watchlist()

    assert [a.id for a in state.watchlist] == ["ethereum", "bitcoin"]


def test_load_watchlist_without_saved_ids_is_empty(state):
    state.listing = [_asset("bitcoin")]
    state.watchlist = [_asset("bitcoin")]

    assert state.load_watchlist() == []


def test_add_to_watchlist_is_idempotent(state, store):
    bitcoin = _asset("bitcoin", 1.0)

    assert state.add_to_watchlist(bitcoin) is True
    assert state.add_to_watchlist(_asset("bitcoin", 1.0)) is False

    assert state.watchlist == [bitcoin]
    assert store.get_list(WATCHLIST_KEY) == ["bitcoin"]


def test_add_appends_in_add_order(state, store):
    state.add_to_watchlist(_asset("tether"))
    state.add_to_watchlist(_asset("bitcoin"))

    assert store.get_list(WATCHLIST_KEY) == ["tether", "bitcoin"]


def test_remove_from_watchlist_matches_by_id(state, store):
    state.add_to_watchlist(_asset("bitcoin", 1.0))
    state.add_to_watchlist(_asset("ethereum"))

    removed = state.remove_from_watchlist(_asset("bitcoin", 99.0))

    assert removed == 1
    assert [a.id for a in state.watchlist] == ["ethereum"]
    assert store.get_list(WATCHLIST_KEY) == ["ethereum"]


def test_clear_watchlist_persists_empty_list(state, store):
    state.add_to_watchlist(_asset("bitcoin"))

    state.clear_watchlist()

    assert state.watchlist == []
    assert store.get_list(WATCHLIST_KEY) == []


@pytest.mark.asyncio
async def test_watchlist_survives_restart(http_client, db_url, engine, coingecko):
    first = MarketState(http_client, SqlPreferenceStore(make_session_factory(engine)))
    await first.fetch_listing()
    ethereum = first.get_asset("ethereum")
    first.add_to_watchlist(ethereum)

    # a fresh engine on the same file stands in for a new process
    reopened = make_engine(db_url)
    try:
        second = MarketState(http_client, SqlPreferenceStore(make_session_factory(reopened)))
        await second.fetch_listing()
        second.load_watchlist()
        assert second.watchlist == [ethereum]

        coingecko.markets = [row for row in coingecko.markets if row["id"] != "ethereum"]
        await second.fetch_listing()
        assert second.load_watchlist() == []
    finally:
        reopened.dispose()


def test_is_in_watchlist_and_search(state):
    state.listing = [_asset("bitcoin"), _asset("bitcoin-cash"), _asset("ethereum")]
    state.add_to_watchlist(state.listing[2])

    assert state.is_in_watchlist("ethereum")
    assert not state.is_in_watchlist("bitcoin")
    assert [a.id for a in state.search("BITCOIN")] == ["bitcoin", "bitcoin-cash"]
    assert [a.id for a in state.search("  ")] == ["bitcoin", "bitcoin-cash", "ethereum"]
    assert state.search("doge") == []


def test_unsubscribed_listener_is_not_called(state):
    events = []
    unsubscribe = state.subscribe(events.append)

    state.clear_watchlist()
    unsubscribe()
    state.clear_watchlist()

    assert events == ["watchlist"]
