# cryptotrack/jobs/price_refresher.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from cryptotrack.services.market_state import MarketState
from cryptotrack.utils.time import iso_z_from_epoch

logger = logging.getLogger("cryptotrack.refresher")


@dataclass
class RefresherStats:
    started_at: Optional[float] = None
    ticks: int = 0
    last_run_ts: Optional[float] = None
    last_success_ts: Optional[float] = None
    last_success_patched: Optional[int] = None
    last_success_ms: Optional[int] = None
    consecutive_failures: int = 0
    last_error_ts: Optional[float] = None
    last_error: Optional[str] = None


class PriceRefresher:
    """
    Fires `tick()` every `interval_seconds` on the running loop.

    Ticks are spawned as their own tasks, so a slow refresh never delays the
    next one and two refreshes may overlap; MarketState patches by id, so
    overlapping ticks only race on which price lands last.
    """

    def __init__(
        self,
        state: MarketState,
        interval_seconds: int = 60,
        *,
        run_immediately: bool = False,
    ) -> None:
        self.state = state
        self.interval_seconds = max(1, int(interval_seconds))
        self.run_immediately = run_immediately
        self.stats = RefresherStats()

        self._stop_event: Optional[asyncio.Event] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(
            self._timer_task is not None
            and not self._timer_task.done()
            and self._stop_event is not None
            and not self._stop_event.is_set()
        )

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def start(self) -> bool:
        if self.running:
            logger.warning("price refresher already started (in-process)")
            return False

        self._stop_event = asyncio.Event()
        self.stats = RefresherStats(started_at=time.time())
        self._timer_task = asyncio.create_task(
            self._timer_loop(self._stop_event), name="price-refresher"
        )
        logger.info("price refresher started | interval_s=%s", self.interval_seconds)
        return True

    async def stop(self, timeout_s: float = 6.0) -> None:
        if self._stop_event is None:
            return

        self._stop_event.set()
        tasks = [t for t in [self._timer_task, *self._inflight] if t is not None]

        try:
            if tasks:
                await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=timeout_s)
        except asyncio.TimeoutError:
            for t in tasks:
                if not t.done():
                    t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._timer_task = None
            self._stop_event = None
            self._inflight.clear()

        logger.info("price refresher stopped")

    async def tick(self) -> int:
        """One refresh cycle. Loads the listing first when it is still empty."""
        self.stats.ticks += 1
        self.stats.last_run_ts = time.time()
        t0 = time.perf_counter()

        error: Optional[str] = None
        patched = 0
        try:
            if not self.state.listing:
                if not await self.state.fetch_listing():
                    error = "listing unavailable"
            else:
                patched = await self.state.refresh_prices()
                error = self.state.last_refresh_error
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = repr(e)[:300]
            logger.exception("price refresh tick crashed")

        dt_ms = int((time.perf_counter() - t0) * 1000)
        if error is None:
            self.stats.last_success_ts = time.time()
            self.stats.last_success_patched = patched
            self.stats.last_success_ms = dt_ms
            self.stats.consecutive_failures = 0
            logger.debug("refresh tick done | patched=%s | %dms", patched, dt_ms)
        else:
            self.stats.last_error_ts = time.time()
            self.stats.last_error = error
            self.stats.consecutive_failures += 1
            logger.warning("refresh tick failed | err=%s | %dms", error, dt_ms)
        return patched

    def info(self) -> Dict[str, Any]:
        s = self.stats
        return {
            "running": self.running,
            "interval_s": self.interval_seconds,
            "inflight": self.inflight,
            "started_at_iso": iso_z_from_epoch(s.started_at),
            "ticks": s.ticks,
            "last_run_iso": iso_z_from_epoch(s.last_run_ts),
            "last_success_iso": iso_z_from_epoch(s.last_success_ts),
            "last_success_patched": s.last_success_patched,
            "last_success_ms": s.last_success_ms,
            "consecutive_failures": s.consecutive_failures,
            "last_error_iso": iso_z_from_epoch(s.last_error_ts),
            "last_error": s.last_error,
        }

    def _spawn_tick(self) -> asyncio.Task:
        task = asyncio.create_task(self.tick())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _timer_loop(self, stop_event: asyncio.Event) -> None:
        next_tick = time.monotonic()
        if not self.run_immediately:
            next_tick += self.interval_seconds

        while not stop_event.is_set():
            now = time.monotonic()
            if now < next_tick:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=(next_tick - now))
                except asyncio.TimeoutError:
                    pass
                continue

            self._spawn_tick()

            next_tick += self.interval_seconds
            if next_tick < time.monotonic() - self.interval_seconds:
                next_tick = time.monotonic() + self.interval_seconds
