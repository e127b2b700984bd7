"""Price record model."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from rsuledger.models.enums import PriceSource


class PriceRecord(BaseModel):
    """One price observation for one symbol on one calendar date."""

    symbol: str
    date: date
    price: Decimal = Field(ge=0)
    source: PriceSource = PriceSource.MANUAL
    open: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    close: Decimal | None = None
    volume: int | None = None
    metadata: dict = Field(default_factory=dict)

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()
