from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from portfolio_tracker.models.enums import AssetClass
from portfolio_tracker.models.position import PositionOut
from portfolio_tracker.models.transaction import TransactionOut


def _zero_by_class() -> Dict[AssetClass, float]:
    return {cls: 0.0 for cls in AssetClass}


class PortfolioSummary(BaseModel):
    """Aggregate over an owner's positions. Recomputed, never stored."""

    model_config = ConfigDict(frozen=True)

    total_value: float = 0.0
    total_cost: float = 0.0
    total_gain: float = 0.0
    total_gain_percent: float = 0.0
    day_change: float = 0.0
    day_change_percent: float = 0.0
    value_by_class: Dict[AssetClass, float] = Field(default_factory=_zero_by_class)
    allocation: Dict[AssetClass, float] = Field(default_factory=_zero_by_class)
    diversity_score: float = 0.0
    position_count: int = 0
    transaction_count: int = 0

    @classmethod
    def empty(cls) -> "PortfolioSummary":
        return cls()


class PortfolioSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner_id: int
    positions: Tuple[PositionOut, ...] = ()
    transactions: Tuple[TransactionOut, ...] = ()
    summary: PortfolioSummary = Field(default_factory=PortfolioSummary.empty)
    as_of: Optional[datetime] = None
