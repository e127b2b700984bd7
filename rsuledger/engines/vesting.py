"""Vesting schedule engine: share distribution, plan changes and vesting evaluation."""

import logging
from datetime import date, timedelta

from rsuledger.dates import add_months
from rsuledger.db.base import PriceLookup
from rsuledger.exceptions import ComputationError, DataUnavailableError, PlanChangeError, ValidationError
from rsuledger.models.enums import GrantStatus
from rsuledger.models.grant import Grant, Tranche, VestingPlan
from rsuledger.models.reports import (
    PlanChangePreview,
    PlanChangeResult,
    ScheduleValidation,
    VestedTranche,
    VestingProgress,
)

logger = logging.getLogger(__name__)


class VestingScheduleGenerator:
    """Turns (grant date, total shares, plan) into tranches and manages their vesting state."""

    def distribute_shares(self, total_shares: int, period_count: int) -> list[int]:
        """Split total_shares over period_count periods.

        The first `total_shares % period_count` periods get one extra share, so
        the earliest vest dates absorb the remainder.
        """
        if total_shares <= 0:
            raise ValidationError("total_shares", "must be a positive whole number")
        if period_count <= 0:
            raise ValidationError("period_count", "must be a positive whole number")

        base, remainder = divmod(total_shares, period_count)
        distribution = [base + 1 if i < remainder else base for i in range(period_count)]

        if sum(distribution) != total_shares:
            logger.error(
                "Share distribution mismatch: %d distributed, %d expected",
                sum(distribution), total_shares,
            )
            raise ComputationError(
                f"share distribution {sum(distribution)} != total shares {total_shares}"
            )
        return distribution

    def vest_dates(self, grant_date: date, plan: VestingPlan) -> list[date]:
        """Vest date for period i is grant_date + (i + 1) * interval, each computed from the grant date."""
        return [
            add_months(grant_date, (i + 1) * plan.interval_months)
            for i in range(plan.period_count)
        ]

    def generate_schedule(self, grant_date: date, total_shares: int, plan: VestingPlan) -> list[Tranche]:
        """Generate the full, all-unvested tranche list for a grant."""
        shares = self.distribute_shares(total_shares, plan.period_count)
        dates = self.vest_dates(grant_date, plan)
        return [Tranche(vest_date=d, shares=s) for d, s in zip(dates, shares)]

    # --- Vesting evaluation ---

    def mark_vested(
        self,
        grant: Grant,
        as_of: date,
        price_lookup: PriceLookup | None = None,
    ) -> list[VestedTranche]:
        """Vest every pending tranche dated on or before as_of. Mutates the grant.

        Each newly vested tranche gets its vest-date price stamped once. A
        missing price leaves vested_price unset; the vesting itself still
        happens since it is a fact of the calendar, not of the market.
        """
        if grant.status == GrantStatus.CANCELLED:
            return []

        vested: list[VestedTranche] = []
        for tranche in grant.tranches:
            if tranche.vested or tranche.vest_date > as_of:
                continue
            tranche.vested = True
            tranche.vested_price = self._lookup_price(grant.symbol, tranche.vest_date, price_lookup)
            vested.append(
                VestedTranche(
                    grant_id=grant.id,
                    symbol=grant.symbol,
                    vest_date=tranche.vest_date,
                    shares=tranche.shares,
                    vested_price=tranche.vested_price,
                )
            )

        if grant.all_vested:
            grant.status = GrantStatus.FULLY_VESTED
        return vested

    def _lookup_price(self, symbol: str, on_date: date, price_lookup: PriceLookup | None):
        if price_lookup is None:
            return None
        try:
            return price_lookup.get_price_on_date(symbol, on_date)
        except DataUnavailableError:
            logger.warning("No price for %s on %s; tranche vested without a price", symbol, on_date)
            return None

    # --- Plan changes ---

    def preview_plan_change(self, grant: Grant, new_plan: VestingPlan, as_of: date) -> PlanChangePreview:
        """Describe the effect of moving a grant to new_plan without touching it."""
        kept = [t for t in grant.tranches if t.is_vested_on(as_of)]
        replaced = [t for t in grant.tranches if not t.is_vested_on(as_of)]
        unvested = sum(t.shares for t in replaced)
        new_schedule = self.generate_schedule(grant.grant_date, grant.total_shares, new_plan)
        projected = sum(t.shares for t in new_schedule if t.vest_date <= as_of)
        upcoming = [t for t in new_schedule if t.vest_date > as_of]

        return PlanChangePreview(
            grant_id=grant.id,
            current_plan_id=grant.plan_id,
            new_plan_id=new_plan.id,
            can_change=unvested > 0,
            reason=None if unvested > 0 else "All shares have already vested",
            vested_shares_unchanged=sum(t.shares for t in kept),
            unvested_shares=unvested,
            periods_kept=len(kept),
            periods_replaced=len(replaced),
            new_periods=len(new_schedule),
            projected_vested_shares=projected,
            next_vest_date=upcoming[0].vest_date if upcoming else None,
            new_schedule=new_schedule,
        )

    def apply_plan_change(
        self,
        grant: Grant,
        new_plan: VestingPlan,
        as_of: date,
        price_lookup: PriceLookup | None = None,
        revest_past_due: bool = True,
    ) -> PlanChangeResult:
        """Replace the grant's tranches with a schedule regenerated under new_plan.

        With revest_past_due, tranches of the new schedule dated on or before
        as_of are vested immediately, so the vested total can move in either
        direction. Without it, they stay pending until the next vesting run.
        """
        if grant.status == GrantStatus.CANCELLED:
            raise PlanChangeError(grant.id, "grant is cancelled")
        unvested = grant.unvested_shares(as_of)
        if unvested <= 0:
            raise PlanChangeError(grant.id, "all shares are already vested")

        original_plan_id = grant.plan_id
        original_periods = len(grant.tranches)
        original_vested = grant.vested_shares(as_of)

        grant.tranches = self.generate_schedule(grant.grant_date, grant.total_shares, new_plan)
        grant.plan_id = new_plan.id
        grant.status = GrantStatus.ACTIVE
        if revest_past_due:
            self.mark_vested(grant, as_of, price_lookup)

        if grant.scheduled_shares != grant.total_shares:
            logger.error("Plan change broke share conservation for grant %s", grant.id)
            raise ComputationError(
                f"grant {grant.id} schedules {grant.scheduled_shares} of {grant.total_shares} shares"
            )

        result = PlanChangeResult(
            grant_id=grant.id,
            original_plan_id=original_plan_id,
            new_plan_id=new_plan.id,
            original_periods=original_periods,
            new_periods=len(grant.tranches),
            original_vested_shares=original_vested,
            new_vested_shares=grant.vested_shares(as_of),
            unvested_shares=grant.unvested_shares(as_of),
            revested=revest_past_due,
        )
        logger.info(
            "Grant %s moved from %s to %s: vested %d -> %d",
            grant.id, original_plan_id, new_plan.id,
            result.original_vested_shares, result.new_vested_shares,
        )
        return result

    # --- Diagnostics ---

    def validate_schedule(self, tranches: list[Tranche], total_shares: int) -> ScheduleValidation:
        errors: list[str] = []
        warnings: list[str] = []
        scheduled = sum(t.shares for t in tranches)

        if not tranches:
            errors.append("Vesting schedule cannot be empty")
            return ScheduleValidation(
                is_valid=False, errors=errors, scheduled_shares=0, expected_shares=total_shares
            )

        if scheduled != total_shares:
            errors.append(f"Scheduled shares ({scheduled}) do not match total shares ({total_shares})")

        negative = [t for t in tranches if t.shares < 0]
        if negative:
            errors.append(f"{len(negative)} tranches have negative share counts")

        empty = [t for t in tranches if t.shares == 0]
        if empty:
            warnings.append(f"{len(empty)} tranches vest zero shares")

        dates = [t.vest_date for t in tranches]
        if len(set(dates)) != len(dates):
            warnings.append("Duplicate vesting dates found")
        if dates != sorted(dates):
            warnings.append("Vesting schedule is not in chronological order")

        return ScheduleValidation(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            scheduled_shares=scheduled,
            expected_shares=total_shares,
        )

    def upcoming_tranches(self, grant: Grant, as_of: date, days: int = 30) -> list[Tranche]:
        horizon = as_of + timedelta(days=days)
        return sorted(
            (t for t in grant.tranches if as_of < t.vest_date <= horizon),
            key=lambda t: t.vest_date,
        )

    def vesting_progress(self, grant: Grant, as_of: date, days: int = 90) -> VestingProgress:
        pending = sorted(
            (t for t in grant.tranches if not t.is_vested_on(as_of)),
            key=lambda t: t.vest_date,
        )
        upcoming = self.upcoming_tranches(grant, as_of, days)
        return VestingProgress(
            grant_id=grant.id,
            symbol=grant.symbol,
            total_shares=grant.total_shares,
            vested_shares=grant.vested_shares(as_of),
            unvested_shares=grant.unvested_shares(as_of),
            progress_percent=grant.vesting_progress(as_of),
            next_vest_date=pending[0].vest_date if pending else None,
            next_vest_shares=pending[0].shares if pending else 0,
            upcoming=upcoming,
        )
