# services/portfolio_state.py
"""
Canonical in-memory portfolio state for one active owner.

`PortfolioStateCoordinator` is the only holder of mutable portfolio state.
Every mutation (user edits and simulator ticks alike) runs under one
asyncio lock, builds the next state in locals, and only then swaps it in and
publishes an immutable `PortfolioSnapshot`. If any step raises, the previous
snapshot stays in place and nothing is published.

Transaction mutations always follow the same pipeline:

    persist change -> re-read the position's ledger -> recompute
    -> persist quantity/avg cost -> reload position -> summarize -> publish
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from portfolio_tracker.models.enums import AssetClass, TransactionKind
from portfolio_tracker.models.position import PositionOut
from portfolio_tracker.models.transaction import TransactionOut
from portfolio_tracker.schemas.position import PositionCreate, PositionUpdate
from portfolio_tracker.schemas.summary import PortfolioSnapshot, PortfolioSummary
from portfolio_tracker.schemas.transaction import TransactionCreate, TransactionUpdate
from portfolio_tracker.services import cost_basis
from portfolio_tracker.services import portfolio_calculator as calc
from portfolio_tracker.services.errors import (
    LedgerValidationError,
    NoActiveOwner,
    NotFoundOrUnauthorized,
    StaleStateError,
)
from portfolio_tracker.services.price_simulator import PriceSimulator
from portfolio_tracker.services.repository import LedgerRepository
from portfolio_tracker.utils.common_helpers import normalize_symbol, utcnow

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[PortfolioSnapshot]], Any]
M = TypeVar("M", bound=BaseModel)


def _coerce(model: Type[M], data: M | Dict[str, Any]) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise LedgerValidationError(str(exc)) from exc


class PortfolioStateCoordinator:
    def __init__(self, repository: LedgerRepository, simulator: Optional[PriceSimulator] = None):
        self._repo = repository
        self._simulator = simulator or PriceSimulator(repository)
        # one serialization point shared with the simulator's ticks
        self._lock = self._simulator.lock

        self._owner_id: Optional[int] = None
        self._positions: Tuple[PositionOut, ...] = ()
        self._transactions: Tuple[TransactionOut, ...] = ()
        self._summary: Optional[PortfolioSummary] = None
        self._snapshot: Optional[PortfolioSnapshot] = None
        self._listeners: List[Listener] = []

    # ── read side ───────────────────────────────────────────────────

    @property
    def owner_id(self) -> Optional[int]:
        return self._owner_id

    @property
    def snapshot(self) -> Optional[PortfolioSnapshot]:
        return self._snapshot

    @property
    def positions(self) -> Tuple[PositionOut, ...]:
        return self._positions

    @property
    def transactions(self) -> Tuple[TransactionOut, ...]:
        return self._transactions

    @property
    def summary(self) -> Optional[PortfolioSummary]:
        return self._summary

    @property
    def is_price_updates_active(self) -> bool:
        return self._simulator.is_running

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def get_position(self, position_id: int) -> Optional[PositionOut]:
        return next((p for p in self._positions if p.id == position_id), None)

    def get_position_transactions(self, position_id: int) -> List[TransactionOut]:
        rows = [t for t in self._transactions if t.position_id == position_id]
        return sorted(rows, key=lambda t: t.occurred_at, reverse=True)

    def get_positions_by_class(self, asset_class: AssetClass) -> List[PositionOut]:
        return [p for p in self._positions if p.asset_class == asset_class]

    def get_recent_transactions(self, limit: int = 10) -> List[TransactionOut]:
        rows = sorted(self._transactions, key=lambda t: t.occurred_at, reverse=True)
        return rows[:limit]

    def get_top_performers(self, limit: int = 5) -> List[PositionOut]:
        return calc.get_top_performers(self._positions, limit)

    def get_worst_performers(self, limit: int = 5) -> List[PositionOut]:
        return calc.get_worst_performers(self._positions, limit)

    def realized_gains(self) -> float:
        return cost_basis.total_realized_gain(self._transactions, self._positions)

    async def symbol_exists(self, symbol: str) -> bool:
        if self._owner_id is None:
            return False
        return await asyncio.to_thread(self._repo.symbol_exists, self._owner_id, normalize_symbol(symbol))

    async def search_positions(self, query: str) -> List[PositionOut]:
        if self._owner_id is None:
            return []
        return await asyncio.to_thread(self._repo.search_positions, self._owner_id, query)

    async def total_buy_volume(self) -> float:
        owner_id = self._require_owner()
        return await asyncio.to_thread(self._repo.total_buy_volume, owner_id)

    async def total_sell_volume(self) -> float:
        owner_id = self._require_owner()
        return await asyncio.to_thread(self._repo.total_sell_volume, owner_id)

    # ── owner session ───────────────────────────────────────────────

    async def set_owner(self, owner_id: int) -> PortfolioSnapshot:
        if self._owner_id is not None and self._owner_id != owner_id:
            await self._simulator.stop()

        exists = await asyncio.to_thread(self._repo.owner_exists, owner_id)
        if not exists:
            raise NotFoundOrUnauthorized("Owner", owner_id)

        async with self._lock:
            positions, transactions = await self._load(owner_id)
            self._owner_id = owner_id
            return self._commit(positions, transactions)

    async def reload(self) -> PortfolioSnapshot:
        owner_id = self._require_owner()
        async with self._lock:
            positions, transactions = await self._load(owner_id)
            return self._commit(positions, transactions)

    async def refresh_prices(self) -> PortfolioSnapshot:
        """Re-read positions only (prices may have moved in storage)."""
        owner_id = self._require_owner()
        async with self._lock:
            positions = await asyncio.to_thread(self._repo.list_positions, owner_id)
            return self._commit(positions, self._transactions)

    async def _load(self, owner_id: int) -> Tuple[List[PositionOut], List[TransactionOut]]:
        positions = await asyncio.to_thread(self._repo.list_positions, owner_id)
        transactions = await asyncio.to_thread(self._repo.list_transactions, owner_id)
        return positions, transactions

    # ── positions ───────────────────────────────────────────────────

    async def add_position(self, data: PositionCreate | Dict[str, Any]) -> PositionOut:
        payload = _coerce(PositionCreate, data)
        owner_id = self._require_owner()

        async with self._lock:
            position = await asyncio.to_thread(self._repo.insert_position, owner_id, payload)
            positions = self._replace_position(self._positions, position)
            transactions = self._transactions

            if payload.initial_quantity is not None:
                opening = TransactionCreate(
                    position_id=position.id,
                    kind=TransactionKind.BUY,
                    quantity=payload.initial_quantity,
                    price_per_unit=payload.initial_price or payload.current_price,
                    occurred_at=utcnow(),
                    notes="Opening position",
                )
                await asyncio.to_thread(self._repo.insert_transaction, owner_id, opening)
                position = await self._recompute_position(owner_id, position.id)
                positions = self._replace_position(positions, position)
                transactions = tuple(await asyncio.to_thread(self._repo.list_transactions, owner_id))

            logger.info(
                "position added owner_id=%s position_id=%s", owner_id, position.id,
                extra={"owner_id": owner_id, "position_id": position.id},
            )
            self._commit(positions, transactions)
            return position

    async def update_position(
        self, position_id: int, data: PositionUpdate | Dict[str, Any]
    ) -> PositionOut:
        payload = _coerce(PositionUpdate, data)
        owner_id = self._require_owner()

        async with self._lock:
            position = await asyncio.to_thread(
                self._repo.update_position_details,
                owner_id,
                position_id,
                name=payload.name,
                asset_class=payload.asset_class,
                current_price=payload.current_price,
            )
            self._commit(self._replace_position(self._positions, position), self._transactions)
            return position

    async def delete_position(self, position_id: int) -> None:
        owner_id = self._require_owner()

        async with self._lock:
            await asyncio.to_thread(self._repo.delete_position, owner_id, position_id)
            positions = tuple(p for p in self._positions if p.id != position_id)
            transactions = tuple(t for t in self._transactions if t.position_id != position_id)
            logger.info(
                "position deleted owner_id=%s position_id=%s", owner_id, position_id,
                extra={"owner_id": owner_id, "position_id": position_id},
            )
            self._commit(positions, transactions)

    # ── transactions ────────────────────────────────────────────────

    async def add_transaction(self, data: TransactionCreate | Dict[str, Any]) -> TransactionOut:
        payload = _coerce(TransactionCreate, data)
        owner_id = self._require_owner()

        async with self._lock:
            tx = await asyncio.to_thread(self._repo.insert_transaction, owner_id, payload)
            await self._after_ledger_change(owner_id, tx.position_id)
            return tx

    async def update_transaction(
        self, transaction_id: int, data: TransactionUpdate | Dict[str, Any]
    ) -> TransactionOut:
        payload = _coerce(TransactionUpdate, data)
        owner_id = self._require_owner()

        async with self._lock:
            tx = await asyncio.to_thread(self._repo.update_transaction, owner_id, transaction_id, payload)
            await self._after_ledger_change(owner_id, tx.position_id)
            return tx

    async def delete_transaction(self, transaction_id: int) -> None:
        owner_id = self._require_owner()

        async with self._lock:
            # read from storage, not from the in-memory copy
            existing = await asyncio.to_thread(self._repo.get_transaction, owner_id, transaction_id)
            if existing is None:
                raise NotFoundOrUnauthorized("Transaction", transaction_id)
            await asyncio.to_thread(self._repo.delete_transaction, owner_id, transaction_id)
            await self._after_ledger_change(owner_id, existing.position_id)

    async def _after_ledger_change(self, owner_id: int, position_id: int) -> None:
        position = await self._recompute_position(owner_id, position_id)
        transactions = await asyncio.to_thread(self._repo.list_transactions, owner_id)
        self._commit(self._replace_position(self._positions, position), transactions)

    async def _recompute_position(self, owner_id: int, position_id: int) -> PositionOut:
        ledger = await asyncio.to_thread(self._repo.list_position_transactions, owner_id, position_id)
        basis = cost_basis.recompute(ledger)
        if basis.quantity < 0:
            logger.warning(
                "negative quantity after recompute owner_id=%s position_id=%s quantity=%s",
                owner_id, position_id, basis.quantity,
            )
        try:
            await asyncio.to_thread(
                self._repo.update_quantity_and_cost,
                owner_id,
                position_id,
                basis.quantity,
                basis.average_cost,
            )
        except NotFoundOrUnauthorized as exc:
            raise StaleStateError(f"position {position_id} vanished during recompute") from exc

        position = await asyncio.to_thread(self._repo.get_position, owner_id, position_id)
        if position is None:
            raise StaleStateError(f"position {position_id} vanished during recompute")
        return position

    # ── price updates ───────────────────────────────────────────────

    async def start_price_updates(self) -> bool:
        if self._owner_id is None or not self._positions:
            return False
        await self._simulator.start(self._owner_id, self._positions, self._handle_price_update)
        return True

    async def stop_price_updates(self) -> None:
        await self._simulator.stop()

    def _handle_price_update(self, updated: List[PositionOut]) -> None:
        # runs inside the simulator's batch, so the lock is already held
        if self._owner_id is None or not updated:
            return
        by_id = {p.id: p for p in updated}
        positions = tuple(
            p.model_copy(
                update={
                    "current_price": by_id[p.id].current_price,
                    "previous_reference": by_id[p.id].previous_reference,
                    "updated_at": by_id[p.id].updated_at,
                }
            )
            if p.id in by_id
            else p
            for p in self._positions
        )
        self._commit(positions, self._transactions)

    # ── teardown ────────────────────────────────────────────────────

    async def clear_owner_data(self) -> None:
        owner_id = self._require_owner()
        await self._simulator.stop()

        async with self._lock:
            remaining = list(self._positions)
            try:
                for p in list(remaining):
                    await asyncio.to_thread(self._repo.delete_position, owner_id, p.id)
                    remaining.remove(p)
            finally:
                # rows already deleted stay deleted; publish what is left even when a delete fails
                kept_ids = {p.id for p in remaining}
                self._commit(
                    tuple(remaining),
                    tuple(t for t in self._transactions if t.position_id in kept_ids),
                )
            logger.info("owner data cleared owner_id=%s", owner_id)

    async def logout(self) -> None:
        await self._simulator.stop()
        async with self._lock:
            self._owner_id = None
            self._positions = ()
            self._transactions = ()
            self._summary = None
            self._snapshot = None
            self._publish(None)

    # ── internals ───────────────────────────────────────────────────

    def _require_owner(self) -> int:
        if self._owner_id is None:
            raise NoActiveOwner()
        return self._owner_id

    @staticmethod
    def _replace_position(
        positions: Sequence[PositionOut], position: PositionOut
    ) -> Tuple[PositionOut, ...]:
        out = [position if p.id == position.id else p for p in positions]
        if not any(p.id == position.id for p in positions):
            out.append(position)
            out.sort(key=lambda p: p.symbol)
        return tuple(out)

    def _commit(
        self,
        positions: Sequence[PositionOut],
        transactions: Sequence[TransactionOut],
    ) -> PortfolioSnapshot:
        owner_id = self._require_owner()
        positions = tuple(positions)
        transactions = tuple(transactions)
        summary = calc.calculate_summary(positions, transaction_count=len(transactions))
        snapshot = PortfolioSnapshot(
            owner_id=owner_id,
            positions=positions,
            transactions=transactions,
            summary=summary,
            as_of=utcnow(),
        )

        self._positions = positions
        self._transactions = transactions
        self._summary = summary
        self._snapshot = snapshot

        if self._simulator.is_running:
            self._simulator.update_asset_list(positions)

        self._publish(snapshot)
        return snapshot

    def _publish(self, snapshot: Optional[PortfolioSnapshot]) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("snapshot listener failed")
