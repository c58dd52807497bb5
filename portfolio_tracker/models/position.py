from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import DateTime, Enum as SAEnum, Float, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portfolio_tracker.database import Base
from portfolio_tracker.models.enums import AssetClass
from portfolio_tracker.utils.common_helpers import as_utc, utcnow


class Position(Base):
    __tablename__ = "positions"
    __table_args__ = (
        UniqueConstraint("owner_id", "symbol", name="uq_positions_owner_symbol"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    symbol: Mapped[str] = mapped_column(String(10), index=True)
    name: Mapped[str] = mapped_column(String(120))
    asset_class: Mapped[AssetClass] = mapped_column(
        SAEnum(AssetClass, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        index=True,
    )
    current_price: Mapped[float] = mapped_column(Float)
    previous_reference: Mapped[float] = mapped_column(Float)

    # written only by the cost-basis recompute path
    quantity: Mapped[float] = mapped_column(Float, default=0.0)
    average_cost: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    owner = relationship("User", back_populates="positions")
    transactions = relationship(
        "Transaction",
        back_populates="position",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Transaction.occurred_at",
    )


class PositionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    owner_id: int
    symbol: str
    name: str
    asset_class: AssetClass
    current_price: float
    previous_reference: float
    quantity: float = 0.0
    average_cost: float = 0.0
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return as_utc(value)


def to_dto(p: Position) -> PositionOut:
    return PositionOut.model_validate(p)
