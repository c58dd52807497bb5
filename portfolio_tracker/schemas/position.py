from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from portfolio_tracker.models.enums import AssetClass
from portfolio_tracker.utils.common_helpers import normalize_symbol

SYMBOL_PATTERN = re.compile(r"^[A-Z][A-Z0-9-]{0,9}$")
MIN_PRICE = 0.01


def validate_symbol(value: str) -> str:
    symbol = normalize_symbol(value)
    if not SYMBOL_PATTERN.match(symbol):
        raise ValueError(
            "symbol must be 1-10 characters, start with a letter and contain only A-Z, 0-9 or '-'"
        )
    return symbol


def _validate_name(value: str) -> str:
    name = (value or "").strip()
    if not name or len(name) > 120:
        raise ValueError("name must be 1-120 characters")
    return name


class PositionCreate(BaseModel):
    symbol: str
    name: str
    asset_class: AssetClass
    current_price: float = Field(ge=MIN_PRICE)
    # optional opening buy, recorded as a transaction
    initial_quantity: Optional[float] = Field(default=None, gt=0)
    initial_price: Optional[float] = Field(default=None, gt=0)

    @field_validator("symbol")
    @classmethod
    def check_symbol(cls, value: str) -> str:
        return validate_symbol(value)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _validate_name(value)

    @model_validator(mode="after")
    def check_opening_buy(self) -> "PositionCreate":
        if self.initial_price is not None and self.initial_quantity is None:
            raise ValueError("initial_price requires initial_quantity")
        return self


class PositionUpdate(BaseModel):
    name: Optional[str] = None
    asset_class: Optional[AssetClass] = None
    current_price: Optional[float] = Field(default=None, ge=MIN_PRICE)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _validate_name(value)
