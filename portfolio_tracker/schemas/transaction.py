from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from portfolio_tracker.models.enums import TransactionKind
from portfolio_tracker.utils.common_helpers import as_utc

MAX_NOTES_CHARS = 500


def _clean_notes(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    notes = value.strip()
    if not notes:
        return None
    if len(notes) > MAX_NOTES_CHARS:
        raise ValueError(f"notes must be at most {MAX_NOTES_CHARS} characters")
    return notes


class TransactionCreate(BaseModel):
    position_id: int
    kind: TransactionKind
    quantity: float = Field(gt=0)
    price_per_unit: float = Field(gt=0)
    occurred_at: datetime
    notes: Optional[str] = None

    @field_validator("occurred_at")
    @classmethod
    def check_occurred_at(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("notes")
    @classmethod
    def check_notes(cls, value: Optional[str]) -> Optional[str]:
        return _clean_notes(value)


class TransactionUpdate(BaseModel):
    """Full replacement of a transaction's economic fields."""

    kind: TransactionKind
    quantity: float = Field(gt=0)
    price_per_unit: float = Field(gt=0)
    occurred_at: datetime
    notes: Optional[str] = None

    @field_validator("occurred_at")
    @classmethod
    def check_occurred_at(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("notes")
    @classmethod
    def check_notes(cls, value: Optional[str]) -> Optional[str]:
        return _clean_notes(value)
