"""Core grant, tranche, sale and tax models."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rsuledger.models.enums import GrantStatus


class VestingPlan(BaseModel):
    """Named, immutable vesting configuration."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    period_count: int = Field(gt=0)
    interval_months: int = Field(gt=0)
    is_default: bool = False

    @property
    def duration_months(self) -> int:
        return self.period_count * self.interval_months


class TaxRates(BaseModel):
    model_config = ConfigDict(frozen=True)

    wage_income: Decimal = Decimal("0.65")
    capital_gains_long_term: Decimal = Decimal("0.25")
    capital_gains_short_term: Decimal = Decimal("0.65")
    long_term_years: int = Field(default=2, gt=0)
    # Off by default: a loss yields a negative capital gains tax (credit).
    clamp_capital_losses: bool = False


class TaxResult(BaseModel):
    """Tax breakdown for one (possibly hypothetical) sale."""

    original_value: Decimal
    sale_value: Decimal
    profit: Decimal
    is_long_term: bool
    holding_period_days: int
    wage_income_tax: Decimal
    capital_gains_tax: Decimal
    total_tax: Decimal
    net_value: Decimal
    effective_tax_rate: Decimal


class Tranche(BaseModel):
    vest_date: date
    shares: int = Field(ge=0)
    vested: bool = False
    vested_price: Decimal | None = None

    def is_vested_on(self, on_date: date) -> bool:
        return self.vested or self.vest_date <= on_date


class Grant(BaseModel):
    id: str
    user_id: str
    symbol: str
    company: str | None = None
    name: str | None = None
    grant_date: date
    total_shares: int = Field(gt=0)
    total_value: Decimal = Field(ge=0)
    plan_id: str
    status: GrantStatus = GrantStatus.ACTIVE
    notes: str | None = None
    tranches: list[Tranche] = Field(default_factory=list)

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def price_per_share(self) -> Decimal:
        return self.total_value / Decimal(self.total_shares)

    @property
    def scheduled_shares(self) -> int:
        return sum(t.shares for t in self.tranches)

    def vested_shares(self, as_of: date) -> int:
        return sum(t.shares for t in self.tranches if t.is_vested_on(as_of))

    def unvested_shares(self, as_of: date) -> int:
        return sum(t.shares for t in self.tranches if not t.is_vested_on(as_of))

    def vesting_progress(self, as_of: date) -> Decimal:
        """Percent of total shares vested as of a date, rounded to a whole percent."""
        pct = Decimal(self.vested_shares(as_of) * 100) / Decimal(self.total_shares)
        return pct.quantize(Decimal("1"))

    @property
    def all_vested(self) -> bool:
        return bool(self.tranches) and all(t.vested for t in self.tranches)


class Sale(BaseModel):
    id: str
    grant_id: str
    user_id: str
    sale_date: date
    shares: int = Field(gt=0)
    price_per_share: Decimal = Field(ge=0)
    tax: TaxResult
    notes: str | None = None

    @property
    def sale_value(self) -> Decimal:
        return self.shares * self.price_per_share
