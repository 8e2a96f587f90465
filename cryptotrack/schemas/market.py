from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from cryptotrack.models.market import CryptoAsset
from cryptotrack.models.preferences import AppTheme


class ListedAsset(CryptoAsset):
    """Listing row plus whether it is currently on the watchlist."""

    in_watchlist: bool = False


class ListingResponse(BaseModel):
    count: int
    assets: List[ListedAsset]


class FetchResult(BaseModel):
    ok: bool
    count: int


class RefreshResult(BaseModel):
    requested: int
    patched: int


class WatchlistResponse(BaseModel):
    ids: List[str]
    assets: List[CryptoAsset]


class WatchlistChange(BaseModel):
    changed: bool
    watchlist: WatchlistResponse


class ThemeResponse(BaseModel):
    theme: AppTheme
    display_name: str


class ThemeUpdate(BaseModel):
    theme: AppTheme = Field(..., description="light or dark")


class AlertOut(BaseModel):
    title: str
    message: str
    created_at: datetime
