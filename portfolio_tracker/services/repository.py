# services/repository.py
"""
Owner-scoped storage access for positions and transactions.

`LedgerRepository` is the seam the coordinator and the price simulator
depend on. `SqlLedgerRepository` is the SQLAlchemy implementation; every
method opens and commits its own short session, so no database transaction
is ever held open across an await in the async layers above.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional, Protocol, Sequence

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from portfolio_tracker.models.enums import AssetClass, TransactionKind
from portfolio_tracker.models.position import Position, PositionOut, to_dto as position_dto
from portfolio_tracker.models.transaction import Transaction, TransactionOut, to_dto as transaction_dto
from portfolio_tracker.models.user import User
from portfolio_tracker.schemas.position import PositionCreate
from portfolio_tracker.schemas.transaction import TransactionCreate, TransactionUpdate
from portfolio_tracker.services.errors import (
    LedgerError,
    LedgerValidationError,
    NotFoundOrUnauthorized,
    PersistenceFailure,
)
from portfolio_tracker.utils.common_helpers import normalize_symbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceUpdate:
    position_id: int
    current_price: float
    previous_reference: float


class LedgerRepository(Protocol):
    def owner_exists(self, owner_id: int) -> bool: ...

    # positions
    def list_positions(self, owner_id: int) -> List[PositionOut]: ...

    def get_position(self, owner_id: int, position_id: int) -> Optional[PositionOut]: ...

    def insert_position(self, owner_id: int, data: PositionCreate) -> PositionOut: ...

    def update_position_details(
        self,
        owner_id: int,
        position_id: int,
        *,
        name: Optional[str] = None,
        asset_class: Optional[AssetClass] = None,
        current_price: Optional[float] = None,
    ) -> PositionOut: ...

    def update_quantity_and_cost(
        self, owner_id: int, position_id: int, quantity: float, average_cost: float
    ) -> PositionOut: ...

    def update_price(
        self, owner_id: int, position_id: int, current_price: float, previous_reference: float
    ) -> PositionOut: ...

    def bulk_update_prices(self, owner_id: int, updates: Sequence[PriceUpdate]) -> List[PositionOut]: ...

    def delete_position(self, owner_id: int, position_id: int) -> None: ...

    def symbol_exists(self, owner_id: int, symbol: str) -> bool: ...

    def search_positions(self, owner_id: int, query: str) -> List[PositionOut]: ...

    # transactions
    def list_transactions(
        self,
        owner_id: int,
        *,
        kind: Optional[TransactionKind] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[TransactionOut]: ...

    def list_position_transactions(self, owner_id: int, position_id: int) -> List[TransactionOut]: ...

    def get_transaction(self, owner_id: int, transaction_id: int) -> Optional[TransactionOut]: ...

    def insert_transaction(self, owner_id: int, data: TransactionCreate) -> TransactionOut: ...

    def update_transaction(
        self, owner_id: int, transaction_id: int, data: TransactionUpdate
    ) -> TransactionOut: ...

    def delete_transaction(self, owner_id: int, transaction_id: int) -> None: ...

    def count_transactions(self, owner_id: int) -> int: ...

    def total_buy_volume(self, owner_id: int) -> float: ...

    def total_sell_volume(self, owner_id: int) -> float: ...


class SqlLedgerRepository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, op: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except LedgerError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("repository: %s failed: %s", op, type(exc).__name__)
            raise PersistenceFailure(f"{op} failed") from exc
        finally:
            db.close()

    # ── owners ──────────────────────────────────────────────────────

    def create_owner(self, username: str) -> int:
        with self._session("create_owner") as db:
            user = User(username=username)
            db.add(user)
            db.commit()
            return user.id

    def owner_exists(self, owner_id: int) -> bool:
        with self._session("owner_exists") as db:
            return db.get(User, owner_id) is not None

    # ── positions ───────────────────────────────────────────────────

    @staticmethod
    def _owned_position(db: Session, owner_id: int, position_id: int) -> Position:
        row = (
            db.query(Position)
            .filter(Position.owner_id == owner_id, Position.id == position_id)
            .first()
        )
        if row is None:
            raise NotFoundOrUnauthorized("Position", position_id)
        return row

    def list_positions(self, owner_id: int) -> List[PositionOut]:
        with self._session("list_positions") as db:
            rows = (
                db.query(Position)
                .filter(Position.owner_id == owner_id)
                .order_by(Position.symbol.asc())
                .all()
            )
            return [position_dto(r) for r in rows]

    def get_position(self, owner_id: int, position_id: int) -> Optional[PositionOut]:
        with self._session("get_position") as db:
            row = (
                db.query(Position)
                .filter(Position.owner_id == owner_id, Position.id == position_id)
                .first()
            )
            return position_dto(row) if row else None

    def insert_position(self, owner_id: int, data: PositionCreate) -> PositionOut:
        with self._session("insert_position") as db:
            if self._symbol_taken(db, owner_id, data.symbol):
                raise LedgerValidationError(f"Symbol {data.symbol} already exists in portfolio")
            row = Position(
                owner_id=owner_id,
                symbol=data.symbol,
                name=data.name,
                asset_class=data.asset_class,
                current_price=data.current_price,
                previous_reference=data.current_price,
                quantity=0.0,
                average_cost=0.0,
            )
            db.add(row)
            db.commit()
            return position_dto(row)

    def update_position_details(
        self,
        owner_id: int,
        position_id: int,
        *,
        name: Optional[str] = None,
        asset_class: Optional[AssetClass] = None,
        current_price: Optional[float] = None,
    ) -> PositionOut:
        with self._session("update_position_details") as db:
            row = self._owned_position(db, owner_id, position_id)
            if name is not None:
                row.name = name
            if asset_class is not None:
                row.asset_class = asset_class
            if current_price is not None:
                row.current_price = current_price
            db.commit()
            return position_dto(row)

    def update_quantity_and_cost(
        self, owner_id: int, position_id: int, quantity: float, average_cost: float
    ) -> PositionOut:
        with self._session("update_quantity_and_cost") as db:
            row = self._owned_position(db, owner_id, position_id)
            row.quantity = quantity
            row.average_cost = average_cost
            db.commit()
            return position_dto(row)

    def update_price(
        self, owner_id: int, position_id: int, current_price: float, previous_reference: float
    ) -> PositionOut:
        with self._session("update_price") as db:
            row = self._owned_position(db, owner_id, position_id)
            row.current_price = current_price
            row.previous_reference = previous_reference
            db.commit()
            return position_dto(row)

    def bulk_update_prices(self, owner_id: int, updates: Sequence[PriceUpdate]) -> List[PositionOut]:
        if not updates:
            return []
        with self._session("bulk_update_prices") as db:
            rows = []
            for u in updates:
                row = self._owned_position(db, owner_id, u.position_id)
                row.current_price = u.current_price
                row.previous_reference = u.previous_reference
                rows.append(row)
            # single commit: either every price lands or none does
            db.commit()
            return [position_dto(r) for r in rows]

    def delete_position(self, owner_id: int, position_id: int) -> None:
        with self._session("delete_position") as db:
            row = self._owned_position(db, owner_id, position_id)
            db.delete(row)  # transactions go with it (ORM cascade + ON DELETE CASCADE)
            db.commit()

    @staticmethod
    def _symbol_taken(db: Session, owner_id: int, symbol: str) -> bool:
        return (
            db.query(Position.id)
            .filter(Position.owner_id == owner_id, Position.symbol == normalize_symbol(symbol))
            .first()
            is not None
        )

    def symbol_exists(self, owner_id: int, symbol: str) -> bool:
        with self._session("symbol_exists") as db:
            return self._symbol_taken(db, owner_id, symbol)

    def search_positions(self, owner_id: int, query: str) -> List[PositionOut]:
        """Symbol or name contains `query`, case-insensitive, symbol order."""
        text = (query or "").strip()
        with self._session("search_positions") as db:
            rows = (
                db.query(Position)
                .filter(
                    Position.owner_id == owner_id,
                    or_(
                        Position.symbol.like(f"%{text.upper()}%"),
                        Position.name.ilike(f"%{text}%"),
                    ),
                )
                .order_by(Position.symbol.asc())
                .all()
            )
            return [position_dto(r) for r in rows]

    # ── transactions ────────────────────────────────────────────────

    @staticmethod
    def _owned_transaction(db: Session, owner_id: int, transaction_id: int) -> Transaction:
        row = (
            db.query(Transaction)
            .filter(Transaction.owner_id == owner_id, Transaction.id == transaction_id)
            .first()
        )
        if row is None:
            raise NotFoundOrUnauthorized("Transaction", transaction_id)
        return row

    def list_transactions(
        self,
        owner_id: int,
        *,
        kind: Optional[TransactionKind] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[TransactionOut]:
        with self._session("list_transactions") as db:
            query = db.query(Transaction).filter(Transaction.owner_id == owner_id)
            if kind is not None:
                query = query.filter(Transaction.kind == kind)
            if start is not None:
                query = query.filter(Transaction.occurred_at >= start)
            if end is not None:
                query = query.filter(Transaction.occurred_at <= end)
            query = query.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            if limit is not None:
                query = query.limit(limit)
            return [transaction_dto(r) for r in query.all()]

    def list_position_transactions(self, owner_id: int, position_id: int) -> List[TransactionOut]:
        with self._session("list_position_transactions") as db:
            rows = (
                db.query(Transaction)
                .filter(Transaction.owner_id == owner_id, Transaction.position_id == position_id)
                .order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
                .all()
            )
            return [transaction_dto(r) for r in rows]

    def get_transaction(self, owner_id: int, transaction_id: int) -> Optional[TransactionOut]:
        with self._session("get_transaction") as db:
            row = (
                db.query(Transaction)
                .filter(Transaction.owner_id == owner_id, Transaction.id == transaction_id)
                .first()
            )
            return transaction_dto(row) if row else None

    def insert_transaction(self, owner_id: int, data: TransactionCreate) -> TransactionOut:
        with self._session("insert_transaction") as db:
            self._owned_position(db, owner_id, data.position_id)
            row = Transaction(
                owner_id=owner_id,
                position_id=data.position_id,
                kind=data.kind,
                quantity=data.quantity,
                price_per_unit=data.price_per_unit,
                occurred_at=data.occurred_at,
                notes=data.notes,
            )
            db.add(row)
            db.commit()
            return transaction_dto(row)

    def update_transaction(
        self, owner_id: int, transaction_id: int, data: TransactionUpdate
    ) -> TransactionOut:
        with self._session("update_transaction") as db:
            row = self._owned_transaction(db, owner_id, transaction_id)
            row.kind = data.kind
            row.quantity = data.quantity
            row.price_per_unit = data.price_per_unit
            row.occurred_at = data.occurred_at
            row.notes = data.notes
            db.commit()
            return transaction_dto(row)

    def delete_transaction(self, owner_id: int, transaction_id: int) -> None:
        with self._session("delete_transaction") as db:
            row = self._owned_transaction(db, owner_id, transaction_id)
            db.delete(row)
            db.commit()

    def count_transactions(self, owner_id: int) -> int:
        with self._session("count_transactions") as db:
            return (
                db.query(func.count(Transaction.id))
                .filter(Transaction.owner_id == owner_id)
                .scalar()
                or 0
            )

    def total_buy_volume(self, owner_id: int) -> float:
        return self._volume(owner_id, TransactionKind.BUY)

    def total_sell_volume(self, owner_id: int) -> float:
        return self._volume(owner_id, TransactionKind.SELL)

    def _volume(self, owner_id: int, kind: TransactionKind) -> float:
        # sum of quantity * price over the owner's ledger, 0.0 for no rows
        with self._session(f"total_{kind.value}_volume") as db:
            total = (
                db.query(func.sum(Transaction.quantity * Transaction.price_per_unit))
                .filter(Transaction.owner_id == owner_id, Transaction.kind == kind)
                .scalar()
            )
            return float(total or 0.0)
