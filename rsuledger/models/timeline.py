"""Portfolio timeline output models."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from rsuledger.models.enums import EventType
from rsuledger.models.grant import TaxResult


class TimelineEvent(BaseModel):
    date: date
    event_type: EventType
    grant_id: str
    symbol: str
    shares: int
    price_per_share: Decimal | None  # None when no price is reachable
    tax: TaxResult | None = None  # stored result, sales only


class GrantSnapshot(BaseModel):
    """Accumulated state of one grant after its latest event."""

    grant_id: str
    symbol: str
    company: str | None = None
    shares_held: int = 0
    vested_to_date: int = 0
    sold_to_date: int = 0
    value: Decimal = Decimal("0")
    tax_liability: Decimal = Decimal("0")
    net_value: Decimal = Decimal("0")
    realized_tax: Decimal = Decimal("0")
    realized_net_value: Decimal = Decimal("0")
    is_long_term: bool = False
    price_known: bool = True


class TimelinePoint(BaseModel):
    """One calendar month's consolidated snapshot across all grants."""

    month_key: str
    month_start: date
    month_end: date
    is_historical: bool
    events: list[TimelineEvent] = Field(default_factory=list)
    total_shares: int = 0
    total_value: Decimal = Decimal("0")
    total_net_value: Decimal = Decimal("0")
    total_tax_liability: Decimal = Decimal("0")
    total_realized_tax: Decimal = Decimal("0")
    price_unknown: bool = False
    grants: list[GrantSnapshot] = Field(default_factory=list)


class TimelineValidation(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    points: int = 0
    start: date | None = None
    end: date | None = None
