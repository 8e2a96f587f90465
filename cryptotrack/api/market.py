from fastapi import APIRouter, Depends, HTTPException

from cryptotrack.api.deps import get_market_state
from cryptotrack.schemas.market import FetchResult, ListedAsset, ListingResponse, RefreshResult
from cryptotrack.services.market_state import MarketState


router = APIRouter(prefix="/market", tags=["market"])


@router.get("/listing", response_model=ListingResponse)
async def get_listing(search: str = "", state: MarketState = Depends(get_market_state)):
    """
    Current listing in provider order.
    Example: /market/listing?search=bit
    """
    assets = state.search(search)
    rows = [
        ListedAsset(**asset.model_dump(), in_watchlist=state.is_in_watchlist(asset.id))
        for asset in assets
    ]
    return ListingResponse(count=len(rows), assets=rows)


@router.get("/listing/{asset_id}", response_model=ListedAsset)
async def get_listed_asset(asset_id: str, state: MarketState = Depends(get_market_state)):
    asset = state.get_asset(asset_id)
    if asset is None:
        raise HTTPException(status_code=404, detail=f"Unknown asset: {asset_id}")
    return ListedAsset(**asset.model_dump(), in_watchlist=state.is_in_watchlist(asset_id))


@router.post("/listing/fetch", response_model=FetchResult)
async def fetch_listing(state: MarketState = Depends(get_market_state)):
    ok = await state.fetch_listing()
    if not ok:
        raise HTTPException(status_code=502, detail="Unable to load market listing")
    return FetchResult(ok=True, count=len(state.listing))


@router.post("/prices/refresh", response_model=RefreshResult)
async def refresh_prices(state: MarketState = Depends(get_market_state)):
    requested = len(state.listing)
    patched = await state.refresh_prices()
    return RefreshResult(requested=requested, patched=patched)
