# services/portfolio_calculator.py
"""
Pure portfolio math over immutable `PositionOut` values.

Nothing here touches storage or mutates its input; every function returns a
zero-valued result (or an empty list / None) for an empty position set.
"""
from __future__ import annotations

from math import fsum
from typing import Dict, List, Optional, Sequence

from portfolio_tracker.models.enums import AssetClass
from portfolio_tracker.models.position import PositionOut
from portfolio_tracker.schemas.summary import PortfolioSummary
from portfolio_tracker.utils.common_helpers import pct_change, safe_div

MAX_DIVERSITY_SCORE = 100.0
SINGLE_POSITION_DIVERSITY = 20.0

# -----------------------
# Per-position metrics
# -----------------------

def current_value(p: PositionOut) -> float:
    return p.current_price * p.quantity


def total_cost(p: PositionOut) -> float:
    return p.average_cost * p.quantity


def unrealized_gain(p: PositionOut) -> float:
    return current_value(p) - total_cost(p)


def unrealized_gain_percent(p: PositionOut) -> float:
    cost = total_cost(p)
    if cost == 0:
        return 0.0
    return unrealized_gain(p) / cost * 100.0


def day_change(p: PositionOut) -> float:
    return (p.current_price - p.previous_reference) * p.quantity


def day_change_percent(p: PositionOut) -> float:
    return pct_change(p.current_price, p.previous_reference) or 0.0


# -----------------------
# Portfolio totals
# -----------------------

def calculate_total_value(positions: Sequence[PositionOut]) -> float:
    return fsum(current_value(p) for p in positions)


def calculate_total_cost(positions: Sequence[PositionOut]) -> float:
    return fsum(total_cost(p) for p in positions)


def calculate_total_gain(positions: Sequence[PositionOut]) -> float:
    return calculate_total_value(positions) - calculate_total_cost(positions)


def calculate_total_gain_percent(positions: Sequence[PositionOut]) -> float:
    cost = calculate_total_cost(positions)
    if cost <= 0:
        return 0.0
    return calculate_total_gain(positions) / cost * 100.0


def calculate_day_change(positions: Sequence[PositionOut]) -> float:
    return fsum(day_change(p) for p in positions)


def calculate_day_change_percent(positions: Sequence[PositionOut]) -> float:
    change = calculate_day_change(positions)
    previous_total = calculate_total_value(positions) - change
    if previous_total <= 0:
        return 0.0
    return change / previous_total * 100.0


def calculate_value_by_class(positions: Sequence[PositionOut], asset_class: AssetClass) -> float:
    return fsum(current_value(p) for p in positions if p.asset_class == asset_class)


def calculate_value_breakdown(positions: Sequence[PositionOut]) -> Dict[AssetClass, float]:
    return {cls: calculate_value_by_class(positions, cls) for cls in AssetClass}


def calculate_allocation(positions: Sequence[PositionOut]) -> Dict[AssetClass, float]:
    """Percent of total value per asset class; every class is always present."""
    total = calculate_total_value(positions)
    if total == 0:
        return {cls: 0.0 for cls in AssetClass}
    return {
        cls: value / total * 100.0
        for cls, value in calculate_value_breakdown(positions).items()
    }


def herfindahl_index(positions: Sequence[PositionOut]) -> float:
    total = calculate_total_value(positions)
    if total <= 0:
        return 0.0
    return fsum((current_value(p) / total) ** 2 for p in positions)


def calculate_diversity_score(positions: Sequence[PositionOut]) -> float:
    """
    0-100 score built from three parts:

    - count: 3 points per position, capped at 30
    - classes: 10 points per distinct asset class
    - distribution: (1 - Herfindahl) * 40

    An empty portfolio scores 0 and a single position a flat 20. A portfolio
    with no market value gets no distribution points.
    """
    n = len(positions)
    if n == 0:
        return 0.0
    if n == 1:
        return SINGLE_POSITION_DIVERSITY

    count_score = float(min(3 * n, 30))
    type_score = float(10 * len({p.asset_class for p in positions}))
    if calculate_total_value(positions) > 0:
        distribution_score = (1.0 - herfindahl_index(positions)) * 40.0
    else:
        distribution_score = 0.0

    return min(count_score + type_score + distribution_score, MAX_DIVERSITY_SCORE)


def calculate_weighted_average_cost(positions: Sequence[PositionOut]) -> float:
    cost = calculate_total_cost(positions)
    if cost == 0:
        return 0.0
    return safe_div(cost, fsum(p.quantity for p in positions)) or 0.0


def calculate_roi(positions: Sequence[PositionOut]) -> float:
    return calculate_total_gain_percent(positions)


def calculate_cagr(positions: Sequence[PositionOut], years: float = 1.0) -> float:
    if years <= 0:
        return 0.0
    cost = calculate_total_cost(positions)
    if cost <= 0:
        return 0.0
    ratio = max(calculate_total_value(positions) / cost, 0.0)
    return (ratio ** (1.0 / years) - 1.0) * 100.0


# -----------------------
# Rankings
# -----------------------

def get_top_performers(positions: Sequence[PositionOut], limit: int = 5) -> List[PositionOut]:
    ranked = sorted(positions, key=unrealized_gain_percent, reverse=True)
    return ranked[:max(limit, 0)]


def get_worst_performers(positions: Sequence[PositionOut], limit: int = 5) -> List[PositionOut]:
    ranked = sorted(positions, key=unrealized_gain_percent)
    return ranked[:max(limit, 0)]


def get_positions_by_value(positions: Sequence[PositionOut], descending: bool = True) -> List[PositionOut]:
    return sorted(positions, key=current_value, reverse=descending)


def get_largest_holding(positions: Sequence[PositionOut]) -> Optional[PositionOut]:
    return max(positions, key=current_value, default=None)


def get_smallest_holding(positions: Sequence[PositionOut]) -> Optional[PositionOut]:
    return min(positions, key=current_value, default=None)


def get_count_by_class(positions: Sequence[PositionOut]) -> Dict[AssetClass, int]:
    counts = {cls: 0 for cls in AssetClass}
    for p in positions:
        counts[p.asset_class] += 1
    return counts


# -----------------------
# Summary
# -----------------------

def calculate_summary(positions: Sequence[PositionOut], transaction_count: int = 0) -> PortfolioSummary:
    if not positions:
        return PortfolioSummary(transaction_count=transaction_count)

    return PortfolioSummary(
        total_value=calculate_total_value(positions),
        total_cost=calculate_total_cost(positions),
        total_gain=calculate_total_gain(positions),
        total_gain_percent=calculate_total_gain_percent(positions),
        day_change=calculate_day_change(positions),
        day_change_percent=calculate_day_change_percent(positions),
        value_by_class=calculate_value_breakdown(positions),
        allocation=calculate_allocation(positions),
        diversity_score=calculate_diversity_score(positions),
        position_count=len(positions),
        transaction_count=transaction_count,
    )
