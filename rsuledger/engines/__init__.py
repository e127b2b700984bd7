"""Vesting, tax, ledger and timeline engines."""

from rsuledger.engines.ledger import GrantLedger
from rsuledger.engines.tax import TaxCalculator
from rsuledger.engines.timeline import TimelineReconstructor
from rsuledger.engines.vesting import VestingScheduleGenerator

__all__ = [
    "GrantLedger",
    "TaxCalculator",
    "TimelineReconstructor",
    "VestingScheduleGenerator",
]
