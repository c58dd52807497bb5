from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import DateTime, Enum as SAEnum, Float, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portfolio_tracker.database import Base
from portfolio_tracker.models.enums import TransactionKind
from portfolio_tracker.utils.common_helpers import as_utc, utcnow


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    position_id: Mapped[int] = mapped_column(ForeignKey("positions.id", ondelete="CASCADE"), index=True)
    kind: Mapped[TransactionKind] = mapped_column(
        SAEnum(TransactionKind, native_enum=False, values_callable=lambda e: [m.value for m in e]),
    )
    quantity: Mapped[float] = mapped_column(Float)
    price_per_unit: Mapped[float] = mapped_column(Float)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    position = relationship("Position", back_populates="transactions")


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    owner_id: int
    position_id: int
    kind: TransactionKind
    quantity: float
    price_per_unit: float
    occurred_at: datetime
    notes: str | None = None
    created_at: datetime

    @field_validator("occurred_at", "created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def total_amount(self) -> float:
        return self.quantity * self.price_per_unit


def to_dto(t: Transaction) -> TransactionOut:
    return TransactionOut.model_validate(t)
