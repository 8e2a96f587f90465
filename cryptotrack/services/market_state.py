"""In-memory market listing and watchlist, kept in sync with CoinGecko and preferences."""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional

from cryptotrack.models.market import CryptoAsset
from cryptotrack.services.alerts import AlertFeed
from cryptotrack.services.coingecko import (
    ListingDecodeError,
    PriceDecodeError,
    decode_listing,
    decode_prices,
    fetch_market_listing,
    fetch_simple_prices,
)
from cryptotrack.services.http_client import APIError, HttpClient
from cryptotrack.services.preferences import WATCHLIST_KEY, PreferenceStore

logger = logging.getLogger("cryptotrack.market")

CONNECT_ERROR_MESSAGE = "Getting difficulty to connect to server. Please try again later."

Listener = Callable[[str], None]


class MarketState:
    """
    Owns the session's listing and the derived watchlist.

    Every method must run on the event loop that owns the HttpClient; the
    coroutines only touch `listing`/`watchlist` after their awaits resume on
    that loop, so readers on the same loop never see a half-applied update.
    Listeners get one of "listing", "prices" or "watchlist" after a change.
    """

    def __init__(
        self,
        client: HttpClient,
        store: PreferenceStore,
        alerts: AlertFeed | None = None,
        *,
        vs_currency: str = "usd",
        per_page: int = 20,
        watchlist_key: str = WATCHLIST_KEY,
    ) -> None:
        self._client = client
        self._store = store
        self._alerts = alerts or AlertFeed()
        self._watchlist_key = watchlist_key
        self._listeners: list[Listener] = []

        self.vs_currency = vs_currency
        self.per_page = per_page
        self.listing: list[CryptoAsset] = []
        self.watchlist: list[CryptoAsset] = []
        self.last_refresh_error: Optional[str] = None

    # ----------------------------
    # change notification
    # ----------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("state listener failed | event=%s", event)

    # ----------------------------
    # listing
    # ----------------------------
    async def fetch_listing(self) -> bool:
        """Replace the listing and re-derive the watchlist from the saved ids."""
        try:
            response = await fetch_market_listing(
                self._client, vs_currency=self.vs_currency, per_page=self.per_page
            )
        except APIError as exc:
            logger.warning("listing fetch failed | err=%s", exc)
            self._alerts.show_alert(CONNECT_ERROR_MESSAGE, title="Error")
            return False

        try:
            assets = decode_listing(response.data)
        except ListingDecodeError as exc:
            logger.error("listing decode failed | status=%s | err=%s", response.status_code, exc)
            return False

        self.listing = assets
        logger.info("listing loaded | assets=%d", len(assets))
        self._notify("listing")
        self.load_watchlist()
        return True

    async def refresh_prices(self) -> int:
        """Patch current prices in place; returns how many listing entries changed."""
        ids = [asset.id for asset in self.listing]
        if not ids:
            return 0

        try:
            response = await fetch_simple_prices(self._client, ids, vs_currency=self.vs_currency)
            prices = decode_prices(response.data, vs_currency=self.vs_currency)
        except (APIError, PriceDecodeError) as exc:
            self.last_refresh_error = str(exc)
            logger.warning("price refresh failed | err=%s", exc)
            return 0

        self.last_refresh_error = None
        patched = self.apply_prices(prices)
        self.load_watchlist()
        logger.info("prices refreshed | requested=%d | patched=%d", len(ids), patched)
        return patched

    def apply_prices(self, prices: Mapping[str, float]) -> int:
        patched = 0
        for asset in self.listing:
            if asset.id in prices:
                asset.current_price = prices[asset.id]
                patched += 1
        if patched:
            self._notify("prices")
        return patched

    def get_asset(self, asset_id: str) -> Optional[CryptoAsset]:
        return next((a for a in self.listing if a.id == asset_id), None)

    def search(self, query: str) -> list[CryptoAsset]:
        needle = query.strip().casefold()
        if not needle:
            return list(self.listing)
        return [a for a in self.listing if needle in a.name.casefold()]

    # ----------------------------
    # watchlist
    # ----------------------------
    def load_watchlist(self) -> list[CryptoAsset]:
        saved_ids = self._store.get_list(self._watchlist_key) or []

        by_id: dict[str, CryptoAsset] = {}
        for asset in self.listing:
            by_id.setdefault(asset.id, asset)

        self.watchlist = [by_id[asset_id] for asset_id in saved_ids if asset_id in by_id]
        self._notify("watchlist")
        return list(self.watchlist)

    def add_to_watchlist(self, asset: CryptoAsset) -> bool:
        if asset in self.watchlist:
            return False
        self.watchlist.append(asset)
        self._save_watchlist()
        return True

    def remove_from_watchlist(self, asset: CryptoAsset) -> int:
        before = len(self.watchlist)
        self.watchlist = [a for a in self.watchlist if a.id != asset.id]
        self._save_watchlist()
        return before - len(self.watchlist)

    def clear_watchlist(self) -> None:
        self.watchlist = []
        self._save_watchlist()

    def is_in_watchlist(self, asset_id: str) -> bool:
        return any(a.id == asset_id for a in self.watchlist)

    def _save_watchlist(self) -> None:
        self._store.set_list(self._watchlist_key, [a.id for a in self.watchlist])
        self._notify("watchlist")
