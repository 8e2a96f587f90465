# cryptotrack/api/health.py
from __future__ import annotations

import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cryptotrack.api.deps import get_market_state, get_price_refresher
from cryptotrack.jobs.price_refresher import PriceRefresher
from cryptotrack.services.market_state import MarketState
from cryptotrack.utils.time import iso_z_from_epoch

router = APIRouter(tags=["health"])

APP_STARTED_AT = time.time()


def _now_meta() -> Dict[str, Any]:
    now_ts = time.time()
    return {
        "now_unix": int(now_ts),
        "now_iso": iso_z_from_epoch(now_ts),
        "uptime_s": int(now_ts - APP_STARTED_AT),
    }


def _check_preferences_db(request: Request) -> Dict[str, Any]:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return {"ok": False, "latency_ms": 0, "error": "preference store not initialised"}

    t0 = time.time()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"ok": True, "latency_ms": int((time.time() - t0) * 1000)}
    except SQLAlchemyError as e:
        return {"ok": False, "latency_ms": int((time.time() - t0) * 1000), "error": str(e)}


def _check_listing(state: MarketState) -> Dict[str, Any]:
    return {
        "ok": bool(state.listing),
        "assets": len(state.listing),
        "watchlist": len(state.watchlist),
        "last_refresh_error": state.last_refresh_error,
    }


def _check_refresher(refresher: Optional[PriceRefresher]) -> Dict[str, Any]:
    if refresher is None:
        return {"ok": True, "enabled": False, "running": False}
    info = refresher.info()
    return {"ok": info["running"], "enabled": True, **info}


@router.get("/live")
async def live():
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    response: Response,
    state: MarketState = Depends(get_market_state),
    refresher: Optional[PriceRefresher] = Depends(get_price_refresher),
):
    checks = {
        "preferences": _check_preferences_db(request),
        "listing": _check_listing(state),
        "refresher": _check_refresher(refresher),
    }

    # listing check is informational only
    degraded_reasons = []
    if not checks["preferences"]["ok"]:
        degraded_reasons.append("preferences_unhealthy")
    if not checks["refresher"]["ok"]:
        degraded_reasons.append("refresher_not_running")

    payload: Dict[str, Any] = {**_now_meta(), "checks": checks}
    if degraded_reasons:
        payload["status"] = "degraded"
        payload["degraded_reasons"] = degraded_reasons
        response.status_code = 503
    else:
        payload["status"] = "ok"
        payload["degraded_reasons"] = []
    return payload
