"""Enumerations for rsuledger."""

from enum import StrEnum


class GrantStatus(StrEnum):
    ACTIVE = "active"
    FULLY_VESTED = "fully-vested"
    CANCELLED = "cancelled"


class EventType(StrEnum):
    VESTING = "vesting"
    SALE = "sale"


class PriceSource(StrEnum):
    MANUAL = "manual"
    CSV = "csv"


class Timeframe(StrEnum):
    ONE_YEAR = "1Y"
    TWO_YEARS = "2Y"
    FIVE_YEARS = "5Y"
    ALL = "ALL"
