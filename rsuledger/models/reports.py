"""Report output models."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from rsuledger.models.grant import Tranche


class ScheduleValidation(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    scheduled_shares: int
    expected_shares: int


class PlanChangePreview(BaseModel):
    grant_id: str
    current_plan_id: str
    new_plan_id: str
    can_change: bool
    reason: str | None = None
    vested_shares_unchanged: int
    unvested_shares: int
    periods_kept: int
    periods_replaced: int
    new_periods: int
    projected_vested_shares: int
    next_vest_date: date | None = None
    new_schedule: list[Tranche] = Field(default_factory=list)


class PlanChangeResult(BaseModel):
    grant_id: str
    original_plan_id: str
    new_plan_id: str
    original_periods: int
    new_periods: int
    original_vested_shares: int
    new_vested_shares: int
    unvested_shares: int
    revested: bool


class VestingProgress(BaseModel):
    grant_id: str
    symbol: str
    total_shares: int
    vested_shares: int
    unvested_shares: int
    progress_percent: Decimal
    next_vest_date: date | None = None
    next_vest_shares: int = 0
    upcoming: list[Tranche] = Field(default_factory=list)


class VestedTranche(BaseModel):
    grant_id: str
    symbol: str
    vest_date: date
    shares: int
    vested_price: Decimal | None = None


class VestingRunSummary(BaseModel):
    as_of: date
    grants_affected: int = 0
    grants_completed: int = 0
    tranches_vested: int = 0
    shares_vested: int = 0
    events: list[VestedTranche] = Field(default_factory=list)


class UnrealizedEstimate(BaseModel):
    shares: int
    price_per_share: Decimal
    original_value: Decimal
    current_value: Decimal
    profit: Decimal
    is_long_term: bool
    wage_income_tax: Decimal
    capital_gains_tax: Decimal
    total_tax: Decimal
    net_value: Decimal


class GrantTaxSummary(BaseModel):
    grant_id: str
    symbol: str
    grant_date: date
    total_shares: int
    sales_count: int
    shares_sold: int
    remaining_vested_shares: int
    realized_sale_value: Decimal
    realized_original_value: Decimal
    realized_profit: Decimal
    realized_wage_income_tax: Decimal
    realized_capital_gains_tax: Decimal
    realized_total_tax: Decimal
    realized_net_value: Decimal
    realized_effective_tax_rate: Decimal
    unrealized: UnrealizedEstimate | None = None


class MonthlyTaxLine(BaseModel):
    month: int
    sales: int
    sale_value: Decimal
    profit: Decimal
    total_tax: Decimal


class AnnualTaxSummary(BaseModel):
    year: int
    sales_count: int
    shares_sold: int
    sale_value: Decimal
    original_value: Decimal
    profit: Decimal
    wage_income_tax: Decimal
    capital_gains_tax: Decimal
    total_tax: Decimal
    net_value: Decimal
    long_term_sales: int
    short_term_sales: int
    effective_tax_rate: Decimal
    monthly: list[MonthlyTaxLine] = Field(default_factory=list)


class QuarterlyPayment(BaseModel):
    quarter: str
    due_date: date
    amount: Decimal


class TimingRecommendation(BaseModel):
    grant_id: str
    as_of: date
    long_term_date: date
    days_until_long_term: int
    sell_now_total_tax: Decimal
    sell_now_net_value: Decimal
    wait_total_tax: Decimal
    wait_net_value: Decimal
    tax_savings: Decimal
    recommendation: str


class IntegrityReport(BaseModel):
    """Result of a diagnostic pass over stored grants and sales."""

    is_valid: bool
    grants_checked: int = 0
    sales_checked: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class UpcomingVest(BaseModel):
    grant_id: str
    symbol: str
    company: str | None = None
    vest_date: date
    shares: int
    estimated_value: Decimal


class VestingCalendarMonth(BaseModel):
    month_key: str
    year: int
    month: int
    total_shares: int = 0
    total_estimated_value: Decimal = Decimal("0")
    events: list[UpcomingVest] = Field(default_factory=list)


class VestingStatistics(BaseModel):
    """Vesting and valuation totals across a user's active and fully vested grants.

    Grants whose symbol has no stored price are valued at their grant price;
    those symbols are listed in unpriced_symbols.
    """

    as_of: date
    total_grants: int
    total_shares: int
    vested_shares: int
    unvested_shares: int
    overall_progress: Decimal
    total_original_value: Decimal
    total_current_value: Decimal
    estimated_vested_value: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal
    next_vest_date: date | None = None
    upcoming: list[UpcomingVest] = Field(default_factory=list)
    unpriced_symbols: list[str] = Field(default_factory=list)


class PortfolioSummary(BaseModel):
    as_of: date
    vesting: VestingStatistics
    available_shares: int
    available_value: Decimal
    estimated_tax_liability: Decimal
    vested_liquid_value: Decimal
    recent_sales_count: int
    recent_net_proceeds: Decimal
    last_sale_date: date | None = None
