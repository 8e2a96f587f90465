"""Pydantic models for market records held in memory."""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class CryptoAsset(BaseModel):
    """One row of the CoinGecko markets payload, trimmed to what the app shows."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    id: str
    symbol: Optional[str] = None
    name: str
    current_price: Optional[float] = None
    image: Optional[str] = None
