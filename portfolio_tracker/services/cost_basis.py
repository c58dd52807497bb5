# services/cost_basis.py
"""
Weighted-average cost basis derived from a position's transaction ledger.

Quantity and average cost are never edited directly; they are always the
output of `recompute` over every transaction on file for the position.
"""
from __future__ import annotations

from typing import Iterable, NamedTuple, Sequence

from portfolio_tracker.models.enums import TransactionKind
from portfolio_tracker.models.position import PositionOut
from portfolio_tracker.models.transaction import TransactionOut


class CostBasis(NamedTuple):
    quantity: float
    average_cost: float


def recompute(transactions: Iterable[TransactionOut]) -> CostBasis:
    """
    Replay buys and sells in occurrence order.

    A sell removes the same fraction of running cost as of running quantity,
    so it never moves the average. A sell against zero or negative running
    quantity is skipped entirely (oversell is under-accounted, not repaired).
    Negative resulting quantity is returned as-is for the caller to flag.
    """
    # sorted() is stable, equal timestamps keep their insertion order
    ordered = sorted(transactions, key=lambda t: t.occurred_at)

    running_qty = 0.0
    running_cost = 0.0
    for tx in ordered:
        if tx.kind == TransactionKind.BUY:
            running_cost += tx.quantity * tx.price_per_unit
            running_qty += tx.quantity
        elif tx.kind == TransactionKind.SELL:
            if running_qty > 0:
                proportion = tx.quantity / running_qty
                running_cost -= running_cost * proportion
                running_qty -= tx.quantity

    average_cost = running_cost / running_qty if running_qty > 0 else 0.0
    return CostBasis(quantity=running_qty, average_cost=average_cost)


def realized_gain(sell: TransactionOut, average_cost: float) -> float:
    # Measured against the position's average cost *now*, not at sale time.
    return (sell.price_per_unit - average_cost) * sell.quantity


def total_realized_gain(
    transactions: Iterable[TransactionOut],
    positions: Sequence[PositionOut],
) -> float:
    """Sum realized gain over every sell whose position is still held."""
    avg_by_id = {p.id: p.average_cost for p in positions}
    total = 0.0
    for tx in transactions:
        if tx.kind != TransactionKind.SELL:
            continue
        avg = avg_by_id.get(tx.position_id)
        if avg is None:
            continue
        total += realized_gain(tx, avg)
    return total
