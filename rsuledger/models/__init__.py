"""Data models for rsuledger."""

from rsuledger.models.enums import EventType, GrantStatus, PriceSource, Timeframe
from rsuledger.models.grant import Grant, Sale, TaxRates, TaxResult, Tranche, VestingPlan
from rsuledger.models.price import PriceRecord
from rsuledger.models.reports import (
    AnnualTaxSummary,
    GrantTaxSummary,
    IntegrityReport,
    MonthlyTaxLine,
    PlanChangePreview,
    PlanChangeResult,
    PortfolioSummary,
    QuarterlyPayment,
    ScheduleValidation,
    TimingRecommendation,
    UnrealizedEstimate,
    UpcomingVest,
    VestedTranche,
    VestingCalendarMonth,
    VestingProgress,
    VestingRunSummary,
    VestingStatistics,
)
from rsuledger.models.timeline import (
    GrantSnapshot,
    TimelineEvent,
    TimelinePoint,
    TimelineValidation,
)

__all__ = [
    "AnnualTaxSummary",
    "EventType",
    "Grant",
    "GrantSnapshot",
    "GrantStatus",
    "GrantTaxSummary",
    "IntegrityReport",
    "MonthlyTaxLine",
    "PlanChangePreview",
    "PlanChangeResult",
    "PortfolioSummary",
    "PriceRecord",
    "PriceSource",
    "QuarterlyPayment",
    "Sale",
    "ScheduleValidation",
    "TaxRates",
    "TaxResult",
    "Timeframe",
    "TimelineEvent",
    "TimelinePoint",
    "TimelineValidation",
    "TimingRecommendation",
    "Tranche",
    "UnrealizedEstimate",
    "UpcomingVest",
    "VestedTranche",
    "VestingCalendarMonth",
    "VestingPlan",
    "VestingProgress",
    "VestingRunSummary",
    "VestingStatistics",
]
