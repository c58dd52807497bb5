# services/price_simulator.py
"""
Simulated price feed for one owner's positions.

A background asyncio task wakes every `interval` seconds, nudges each tracked
position's price by a uniform random step, persists the new price pair and
hands the batch to `on_update`. Every batch runs while holding `lock`, which
the portfolio coordinator shares, so ticks never interleave with user edits.

`on_update` is called with the lock held; it must not try to take it again.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import os
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Union

from portfolio_tracker.models.position import PositionOut
from portfolio_tracker.services.errors import (
    LedgerValidationError,
    NotFoundOrUnauthorized,
    PersistenceFailure,
)
from portfolio_tracker.services.repository import LedgerRepository, PriceUpdate
from portfolio_tracker.utils.common_helpers import utcnow

logger = logging.getLogger(__name__)

PRICE_UPDATE_INTERVAL_SEC = float(os.getenv("PRICE_UPDATE_INTERVAL_SEC", "5"))
PRICE_MAX_CHANGE_PCT = float(os.getenv("PRICE_MAX_CHANGE_PCT", "0.02"))  # ±2% per tick
PRICE_FLOOR = float(os.getenv("PRICE_FLOOR", "0.01"))

OnUpdate = Callable[[List[PositionOut]], Union[None, Awaitable[Any]]]


class PriceSimulator:
    def __init__(
        self,
        repository: LedgerRepository,
        *,
        interval: float = PRICE_UPDATE_INTERVAL_SEC,
        max_change: float = PRICE_MAX_CHANGE_PCT,
        price_floor: float = PRICE_FLOOR,
        rng: Optional[random.Random] = None,
        lock: Optional[asyncio.Lock] = None,
    ):
        self._repo = repository
        self._interval = interval
        self._max_change = max_change
        self._price_floor = price_floor
        self._rng = rng or random.Random()
        self.lock = lock or asyncio.Lock()

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        # task currently holding `lock` for a batch
        self._batch_task: Optional[asyncio.Task] = None

        self._owner_id: Optional[int] = None
        self._positions: List[PositionOut] = []
        self._on_update: Optional[OnUpdate] = None

    # ── state ───────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def owner_id(self) -> Optional[int]:
        return self._owner_id

    @property
    def asset_count(self) -> int:
        return len(self._positions)

    @property
    def tracked_positions(self) -> List[PositionOut]:
        return list(self._positions)

    # ── lifecycle ───────────────────────────────────────────────────

    async def start(self, owner_id: int, positions: Sequence[PositionOut], on_update: OnUpdate) -> None:
        await self.stop()

        self._owner_id = owner_id
        self._positions = list(positions)
        self._on_update = on_update
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event), name=f"price-simulator-{owner_id}")
        logger.info(
            "price simulator started owner_id=%s positions=%d interval=%.1fs",
            owner_id, len(self._positions), self._interval,
        )

    async def stop(self) -> None:
        """
        Stop the loop and forget all tracked state.

        A loop task that is sleeping or queued on the lock is cancelled; one in
        the middle of a batch finishes it and is then awaited. Batches started
        by `trigger_update` or the market events are waited out by taking the
        lock, so once this returns no further price writes can happen.

        Safe to call from `on_update`. Any other caller must not hold `lock`.
        """
        task, self._task = self._task, None
        if self._stop_event is not None:
            self._stop_event.set()

        current = asyncio.current_task()
        if task is not None and not task.done() and task is not current:
            if self._batch_task is not task:
                task.cancel()
            await asyncio.wait({task})

        if self._batch_task is not None and self._batch_task is current:
            # re-entered from on_update, the lock is already ours
            self._reset()
        else:
            async with self.lock:
                self._reset()

    def _reset(self) -> None:
        was_running = self._owner_id is not None
        self._owner_id = None
        self._positions = []
        self._on_update = None
        self._stop_event = None
        if was_running:
            logger.info("price simulator stopped")

    def update_asset_list(self, positions: Sequence[PositionOut]) -> None:
        """Replace the tracked set without touching run state."""
        self._positions = list(positions)

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self._update_prices(stop_event)
            except Exception:
                logger.exception("price simulator: tick failed owner_id=%s", self._owner_id)

    # ── ticks ───────────────────────────────────────────────────────

    async def trigger_update(self) -> None:
        """Run one tick right now (tests, demos)."""
        await self._update_prices(None)

    async def _update_prices(self, stop_event: Optional[asyncio.Event]) -> None:
        async with self._batch():
            if stop_event is not None and stop_event.is_set():
                return
            owner_id = self._owner_id
            if owner_id is None or not self._positions or self._on_update is None:
                return

            updated: List[PositionOut] = []
            for p in list(self._positions):
                if self._owner_id != owner_id:
                    break
                change = self._rng.uniform(-self._max_change, self._max_change)
                new_price = max(p.current_price * (1.0 + change), self._price_floor)
                try:
                    await asyncio.to_thread(
                        self._repo.update_price, owner_id, p.id, new_price, p.current_price
                    )
                except (PersistenceFailure, NotFoundOrUnauthorized) as exc:
                    # one bad row must not sink the whole tick
                    logger.warning(
                        "price tick: skipped position_id=%s symbol=%s: %s", p.id, p.symbol, exc,
                        extra={"owner_id": owner_id, "position_id": p.id},
                    )
                    continue
                updated.append(self._repriced(p, new_price))

            self._merge(updated)
            await self._notify(updated)

    async def simulate_market_crash(self, pct: float = 0.10) -> List[PositionOut]:
        if not 0 < pct < 1:
            raise LedgerValidationError("crash percent must be between 0 and 1")
        return await self._shift_all(-pct)

    async def simulate_market_rally(self, pct: float = 0.10) -> List[PositionOut]:
        if pct <= 0:
            raise LedgerValidationError("rally percent must be positive")
        return await self._shift_all(pct)

    async def _shift_all(self, signed_pct: float) -> List[PositionOut]:
        async with self._batch():
            owner_id = self._owner_id
            if owner_id is None or not self._positions:
                return []

            repriced = [
                self._repriced(p, max(p.current_price * (1.0 + signed_pct), self._price_floor))
                for p in self._positions
            ]
            updates = [
                PriceUpdate(
                    position_id=new.id,
                    current_price=new.current_price,
                    previous_reference=new.previous_reference,
                )
                for new in repriced
            ]
            try:
                await asyncio.to_thread(self._repo.bulk_update_prices, owner_id, updates)
            except (PersistenceFailure, NotFoundOrUnauthorized):
                logger.warning(
                    "price shift %.2f%% failed owner_id=%s, no prices changed",
                    signed_pct * 100.0, owner_id,
                )
                raise

            self._merge(repriced)
            await self._notify(repriced)
            return repriced

    async def simulate_price_change(
        self, position_id: int, new_price: float, *, persist: bool = True
    ) -> Optional[PositionOut]:
        if new_price < self._price_floor:
            raise LedgerValidationError(f"price must be at least {self._price_floor}")

        async with self._batch():
            owner_id = self._owner_id
            if owner_id is None:
                return None
            current = next((p for p in self._positions if p.id == position_id), None)
            if current is None:
                return None

            repriced = self._repriced(current, new_price)
            if persist:
                try:
                    await asyncio.to_thread(
                        self._repo.update_price, owner_id, position_id, new_price, current.current_price
                    )
                except (PersistenceFailure, NotFoundOrUnauthorized) as exc:
                    logger.warning("price change: position_id=%s not persisted: %s", position_id, exc)

            self._merge([repriced])
            await self._notify([repriced])
            return repriced

    # ── helpers ─────────────────────────────────────────────────────

    @asynccontextmanager
    async def _batch(self) -> AsyncIterator[None]:
        async with self.lock:
            self._batch_task = asyncio.current_task()
            try:
                yield
            finally:
                self._batch_task = None

    @staticmethod
    def _repriced(p: PositionOut, new_price: float) -> PositionOut:
        return p.model_copy(
            update={
                "current_price": new_price,
                "previous_reference": p.current_price,
                "updated_at": utcnow(),
            }
        )

    def _merge(self, updated: Sequence[PositionOut]) -> None:
        by_id = {p.id: p for p in updated}
        self._positions = [by_id.get(p.id, p) for p in self._positions]

    async def _notify(self, batch: List[PositionOut]) -> None:
        if self._on_update is None:
            return
        result = self._on_update(list(batch))
        if inspect.isawaitable(result):
            await result
