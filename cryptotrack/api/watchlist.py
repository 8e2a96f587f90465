from fastapi import APIRouter, Depends, HTTPException

from cryptotrack.api.deps import get_market_state
from cryptotrack.schemas.market import WatchlistChange, WatchlistResponse
from cryptotrack.services.market_state import MarketState


router = APIRouter(prefix="/watchlist", tags=["watchlist"])


def _watchlist_payload(state: MarketState) -> WatchlistResponse:
    return WatchlistResponse(
        ids=[asset.id for asset in state.watchlist],
        assets=list(state.watchlist),
    )


@router.get("", response_model=WatchlistResponse)
async def get_watchlist(state: MarketState = Depends(get_market_state)):
    return _watchlist_payload(state)


@router.post("/{asset_id}", response_model=WatchlistChange)
async def add_to_watchlist(asset_id: str, state: MarketState = Depends(get_market_state)):
    asset = state.get_asset(asset_id)
    if asset is None:
        raise HTTPException(status_code=404, detail=f"Unknown asset: {asset_id}")

    added = state.add_to_watchlist(asset)
    return WatchlistChange(changed=added, watchlist=_watchlist_payload(state))


@router.delete("/{asset_id}", response_model=WatchlistChange)
async def remove_from_watchlist(asset_id: str, state: MarketState = Depends(get_market_state)):
    asset = next((a for a in state.watchlist if a.id == asset_id), None) or state.get_asset(asset_id)
    if asset is None:
        raise HTTPException(status_code=404, detail=f"Unknown asset: {asset_id}")

    removed = state.remove_from_watchlist(asset)
    return WatchlistChange(changed=removed > 0, watchlist=_watchlist_payload(state))


@router.delete("", response_model=WatchlistChange)
async def clear_watchlist(state: MarketState = Depends(get_market_state)):
    had_entries = bool(state.watchlist)
    state.clear_watchlist()
    return WatchlistChange(changed=had_entries, watchlist=_watchlist_payload(state))
