"""Vesting plan and tax rate configuration.

Plans and rates are data, not code: the engines receive them as arguments and
never hardcode period counts, intervals or rates. Extra plans can be loaded
from a JSON file and are merged over the built-in registry.

Default rates follow the Israeli section 102 capital track: 65% marginal wage
income tax on the grant value, 25% capital gains tax on profit once the
shares have been held two years from the grant date, 65% before that.
"""

import json
from decimal import Decimal
from pathlib import Path

from rsuledger.exceptions import UnknownPlanError, ValidationError
from rsuledger.models.grant import TaxRates, VestingPlan

DEFAULT_PLAN_ID = "quarterly-5yr"

BUILTIN_PLANS: dict[str, VestingPlan] = {
    "quarterly-5yr": VestingPlan(
        id="quarterly-5yr",
        name="Quarterly - 5 Years",
        description="Vest every 3 months for 5 years (20 periods)",
        period_count=20,
        interval_months=3,
        is_default=True,
    ),
    "quarterly-4yr": VestingPlan(
        id="quarterly-4yr",
        name="Quarterly - 4 Years",
        description="Vest every 3 months for 4 years (16 periods)",
        period_count=16,
        interval_months=3,
    ),
    "semi-annual-4yr": VestingPlan(
        id="semi-annual-4yr",
        name="Semi-Annual - 4 Years",
        description="Vest every 6 months for 4 years (8 periods)",
        period_count=8,
        interval_months=6,
    ),
}

DEFAULT_TAX_RATES = TaxRates()

# Estimated tax installments for a tax year: (quarter, years after the tax year, month, day).
QUARTERLY_DUE_DATES = (
    ("Q1", 1, 4, 30),
    ("Q2", 1, 7, 31),
    ("Q3", 1, 10, 31),
    ("Q4", 2, 1, 31),
)


class PlanRegistry:
    """Closed set of known vesting plans, keyed by plan id."""

    def __init__(self, plans: dict[str, VestingPlan] | None = None):
        self._plans = dict(plans if plans is not None else BUILTIN_PLANS)

    def get(self, plan_id: str) -> VestingPlan:
        try:
            return self._plans[plan_id]
        except KeyError:
            raise UnknownPlanError(plan_id) from None

    def __contains__(self, plan_id: str) -> bool:
        return plan_id in self._plans

    def all(self) -> list[VestingPlan]:
        return sorted(self._plans.values(), key=lambda p: (not p.is_default, p.id))

    @property
    def default(self) -> VestingPlan:
        for plan in self._plans.values():
            if plan.is_default:
                return plan
        return self.get(DEFAULT_PLAN_ID)


def load_plans(path: Path | None = None) -> PlanRegistry:
    """Build a registry from the built-ins plus an optional JSON list of plans."""
    plans = dict(BUILTIN_PLANS)
    if path is None:
        return PlanRegistry(plans)

    raw = json.loads(path.read_text())
    if not isinstance(raw, list):
        raise ValidationError("plans_file", f"{path} must contain a JSON list of plans")
    for entry in raw:
        plan = VestingPlan.model_validate(entry)
        plans[plan.id] = plan
    return PlanRegistry(plans)


def load_tax_rates(path: Path | None = None) -> TaxRates:
    """Read a JSON object of rate overrides. Missing keys keep their defaults."""
    if path is None:
        return DEFAULT_TAX_RATES
    raw = json.loads(path.read_text())
    if not isinstance(raw, dict):
        raise ValidationError("rates_file", f"{path} must contain a JSON object")
    # JSON floats go through str to keep exact decimal rates
    values = {k: Decimal(str(v)) if isinstance(v, float) else v for k, v in raw.items()}
    return TaxRates.model_validate(values)
