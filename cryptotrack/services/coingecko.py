"""Helpers for interacting with the public CoinGecko API."""

from __future__ import annotations

import json
import math
from typing import Any, Iterable

from pydantic import TypeAdapter, ValidationError

from cryptotrack.models.market import CryptoAsset
from cryptotrack.services.http_client import APIResponse, HttpClient, HTTPMethod


MARKETS_PATH = "/coins/markets"
SIMPLE_PRICE_PATH = "/simple/price"

_listing_adapter = TypeAdapter(list[CryptoAsset])


class ListingDecodeError(ValueError):
    """The markets payload could not be turned into CryptoAsset records."""


class PriceDecodeError(ValueError):
    """The simple/price payload was not valid JSON."""


def listing_params(
    vs_currency: str = "usd",
    order: str = "market_cap_desc",
    per_page: int = 20,
    page: int = 0,
    sparkline: bool = False,
) -> dict[str, Any]:
    return {
        "vs_currency": vs_currency,
        "order": order,
        "per_page": per_page,
        "page": page,
        "sparkline": sparkline,
    }


def price_params(ids: Iterable[str], vs_currency: str = "usd") -> dict[str, str]:
    return {"ids": ",".join(ids), "vs_currencies": vs_currency}


async def fetch_market_listing(
    client: HttpClient,
    vs_currency: str = "usd",
    per_page: int = 20,
) -> APIResponse:
    return await client.request(
        MARKETS_PATH,
        method=HTTPMethod.GET,
        parameters=listing_params(vs_currency=vs_currency, per_page=per_page),
    )


async def fetch_simple_prices(
    client: HttpClient,
    ids: Iterable[str],
    vs_currency: str = "usd",
) -> APIResponse:
    return await client.request(
        SIMPLE_PRICE_PATH,
        method=HTTPMethod.GET,
        parameters=price_params(ids, vs_currency=vs_currency),
    )


def decode_listing(raw: bytes) -> list[CryptoAsset]:
    """Decode a markets payload. Any malformed record fails the whole batch."""
    try:
        return _listing_adapter.validate_json(raw)
    except ValidationError as exc:
        raise ListingDecodeError(str(exc)) from exc


def decode_prices(raw: bytes, vs_currency: str = "usd") -> dict[str, float]:
    """
    Map asset id -> price from a simple/price payload.
    Entries without a numeric price for `vs_currency` are left out.
    """
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise PriceDecodeError(str(exc)) from exc

    if not isinstance(payload, dict):
        return {}

    prices: dict[str, float] = {}
    for asset_id, quote in payload.items():
        if not isinstance(quote, dict):
            continue
        value = quote.get(vs_currency)
        # bool is an int subclass; json true/false is not a price
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if not math.isfinite(value):
            continue
        prices[str(asset_id)] = float(value)
    return prices
