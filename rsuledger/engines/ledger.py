"""Grant ledger: grant, sale and plan-change orchestration over the repository.

Also builds user-level vesting statistics, calendars and portfolio summaries.
"""

import logging
import threading
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from rsuledger.dates import add_months, month_key
from rsuledger.db.base import PriceLookup
from rsuledger.db.repository import LedgerRepository
from rsuledger.engines.tax import ZERO, TaxCalculator, money, percent
from rsuledger.engines.vesting import VestingScheduleGenerator
from rsuledger.exceptions import (
    DataUnavailableError,
    GrantNotFoundError,
    InsufficientSharesError,
    PlanChangeError,
    SaleNotFoundError,
    ValidationError,
)
from rsuledger.models.enums import GrantStatus
from rsuledger.models.grant import Grant, Sale, TaxResult
from rsuledger.models.reports import (
    PlanChangePreview,
    PlanChangeResult,
    PortfolioSummary,
    UpcomingVest,
    VestingCalendarMonth,
    VestingRunSummary,
    VestingStatistics,
)
from rsuledger.plans import PlanRegistry

logger = logging.getLogger(__name__)


class GrantLedger:
    """Enforces grant and sale invariants on top of a LedgerRepository.

    Every mutation of a grant (including recording or deleting one of its
    sales) runs under that grant's lock and persists in one transaction.
    """

    def __init__(
        self,
        repo: LedgerRepository,
        prices: PriceLookup,
        plans: PlanRegistry | None = None,
        tax: TaxCalculator | None = None,
        vesting: VestingScheduleGenerator | None = None,
    ):
        self.repo = repo
        self.prices = prices
        self.plans = plans or PlanRegistry()
        self.tax = tax or TaxCalculator()
        self.vesting = vesting or VestingScheduleGenerator()
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._registry_lock = threading.Lock()

    def _grant_lock(self, grant_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks[grant_id]

    # --- Grants ---

    def create_grant(
        self,
        user_id: str,
        symbol: str,
        grant_date: date,
        total_shares: int,
        total_value: Decimal,
        plan_id: str | None = None,
        company: str | None = None,
        name: str | None = None,
        notes: str | None = None,
        as_of: date | None = None,
    ) -> Grant:
        """Create a grant, generate its schedule and vest anything already past due.

        Args:
            user_id: Owner of the grant.
            symbol: Ticker symbol; stored upper-cased.
            grant_date: Date the award was granted.
            total_shares: Whole number of granted shares, must be positive.
            total_value: Grant value at grant date, must not be negative.
            plan_id: Vesting plan id; the registry default when omitted.
            as_of: Evaluation date for past-due tranches; today when omitted.

        Returns:
            The persisted grant.
        """
        if not symbol or not symbol.strip():
            raise ValidationError("symbol", "is required")
        if isinstance(total_shares, bool) or not isinstance(total_shares, int) or total_shares <= 0:
            raise ValidationError("total_shares", "must be a positive whole number")
        if total_value < 0:
            raise ValidationError("total_value", "must not be negative")
        plan = self.plans.get(plan_id) if plan_id else self.plans.default

        grant = Grant(
            id=str(uuid4()),
            user_id=user_id,
            symbol=symbol,
            company=company,
            name=name,
            grant_date=grant_date,
            total_shares=total_shares,
            total_value=total_value,
            plan_id=plan.id,
            notes=notes,
            tranches=self.vesting.generate_schedule(grant_date, total_shares, plan),
        )
        self.vesting.mark_vested(grant, as_of or date.today(), self.prices)

        with self._grant_lock(grant.id):
            self.repo.save_grant(grant)
        logger.info(
            "Created grant %s: %d %s shares on %s under %s",
            grant.id, total_shares, grant.symbol, grant_date, plan.id,
        )
        return grant

    def get_grant(self, user_id: str, grant_id: str) -> Grant:
        grant = self.repo.get_grant(grant_id)
        if grant is None or grant.user_id != user_id:
            raise GrantNotFoundError(grant_id)
        return grant

    def list_grants(self, user_id: str, status: GrantStatus | None = None) -> list[Grant]:
        return self.repo.list_grants(user_id=user_id, status=status)

    def cancel_grant(self, user_id: str, grant_id: str) -> Grant:
        """Mark a grant cancelled. Its tranches and sales are kept as history."""
        with self._grant_lock(grant_id):
            grant = self.get_grant(user_id, grant_id)
            if grant.status != GrantStatus.CANCELLED:
                grant.status = GrantStatus.CANCELLED
                self.repo.save_grant(grant)
                logger.info("Cancelled grant %s", grant_id)
            return grant

    def delete_grant(self, user_id: str, grant_id: str) -> None:
        """Delete a grant together with its tranches and sales."""
        with self._grant_lock(grant_id):
            self.get_grant(user_id, grant_id)
            self.repo.delete_grant(grant_id)
        logger.info("Deleted grant %s", grant_id)

    def update_grant(
        self,
        user_id: str,
        grant_id: str,
        symbol: str | None = None,
        company: str | None = None,
        name: str | None = None,
        notes: str | None = None,
        grant_date: date | None = None,
        total_shares: int | None = None,
        total_value: Decimal | None = None,
        as_of: date | None = None,
    ) -> Grant:
        """Edit a grant's details.

        A new share count or grant date regenerates the schedule under the
        grant's current plan and vests whatever is past due as of as_of. The
        edit is rejected when a recorded sale would no longer be covered by
        the new schedule. Recorded sales keep their stored tax results.
        """
        as_of = as_of or date.today()
        with self._grant_lock(grant_id):
            grant = self.get_grant(user_id, grant_id)
            updated = grant.model_copy(deep=True)
            changed: list[str] = []

            if symbol is not None:
                if not symbol.strip():
                    raise ValidationError("symbol", "is required")
                updated.symbol = symbol.strip().upper()
            if company is not None:
                updated.company = company
            if name is not None:
                updated.name = name
            if notes is not None:
                updated.notes = notes
            if total_value is not None:
                if total_value < 0:
                    raise ValidationError("total_value", "must not be negative")
                updated.total_value = total_value
            if total_shares is not None:
                if isinstance(total_shares, bool) or not isinstance(total_shares, int) or total_shares <= 0:
                    raise ValidationError("total_shares", "must be a positive whole number")
                updated.total_shares = total_shares
            if grant_date is not None:
                updated.grant_date = grant_date

            for field in ("symbol", "company", "name", "notes", "total_value", "total_shares", "grant_date"):
                if getattr(updated, field) != getattr(grant, field):
                    changed.append(field)
            if not changed:
                return grant

            if "total_shares" in changed or "grant_date" in changed:
                if grant.status == GrantStatus.CANCELLED:
                    raise ValidationError("grant_id", f"grant {grant_id} is cancelled")
                plan = self.plans.get(grant.plan_id)
                updated.tranches = self.vesting.generate_schedule(
                    updated.grant_date, updated.total_shares, plan
                )
                updated.status = GrantStatus.ACTIVE
                self.vesting.mark_vested(updated, as_of, self.prices)

                sales = self.repo.list_sales(grant_id=grant_id)
                if any(s.sale_date < updated.grant_date for s in sales):
                    raise ValidationError("grant_date", "recorded sales precede the new grant date")
                oversold = self._first_oversold_date(updated, sales)
                if oversold is not None:
                    raise ValidationError(
                        "total_shares",
                        f"recorded sales on {oversold.isoformat()} exceed the shares vested by then",
                    )

            self.repo.save_grant(updated)
        logger.info("Updated grant %s: %s", grant_id, ", ".join(changed))
        return updated

    # --- Sales ---

    @staticmethod
    def available_shares(grant: Grant, on_date: date, sales: list[Sale], scheduled: bool = False) -> int:
        """Vested shares with vest_date <= on_date minus shares sold on or before on_date.

        With scheduled, tranches count by vest date alone, whether or not a
        vesting run has flagged them yet.
        """
        vested = sum(
            t.shares for t in grant.tranches
            if (scheduled or t.vested) and t.vest_date <= on_date
        )
        sold = sum(s.shares for s in sales if s.grant_id == grant.id and s.sale_date <= on_date)
        return vested - sold

    def _first_oversold_date(self, grant: Grant, sales: list[Sale], scheduled: bool = False) -> date | None:
        for sale_date in sorted({s.sale_date for s in sales if s.grant_id == grant.id}):
            if self.available_shares(grant, sale_date, sales, scheduled=scheduled) < 0:
                return sale_date
        return None

    def _validate_sale(self, grant: Grant, shares: int, price_per_share: Decimal, sale_date: date) -> None:
        if isinstance(shares, bool) or not isinstance(shares, int) or shares <= 0:
            raise ValidationError("shares", "must be a positive whole number")
        if price_per_share <= 0:
            raise ValidationError("price_per_share", "must be positive")
        if sale_date < grant.grant_date:
            raise ValidationError("sale_date", "cannot be before the grant date")
        if grant.status == GrantStatus.CANCELLED:
            raise ValidationError("grant_id", f"grant {grant.id} is cancelled")

    def preview_sale(
        self,
        user_id: str,
        grant_id: str,
        shares: int,
        price_per_share: Decimal,
        sale_date: date,
    ) -> TaxResult:
        """Tax result of a hypothetical sale. Availability is not checked."""
        grant = self.get_grant(user_id, grant_id)
        self._validate_sale(grant, shares, price_per_share, sale_date)
        return self.tax.compute_sale_tax(grant, shares, price_per_share, sale_date)

    def record_sale(
        self,
        user_id: str,
        grant_id: str,
        shares: int,
        price_per_share: Decimal,
        sale_date: date,
        notes: str | None = None,
    ) -> Sale:
        """Record a sale and store its tax result.

        Rejects the sale when it exceeds the shares available on its date, or
        when it would leave a later recorded sale without enough shares.
        """
        with self._grant_lock(grant_id):
            grant = self.get_grant(user_id, grant_id)
            self._validate_sale(grant, shares, price_per_share, sale_date)
            existing = self.repo.list_sales(grant_id=grant_id)

            available = self.available_shares(grant, sale_date, existing)
            if shares > available:
                raise InsufficientSharesError(grant_id, shares, max(available, 0), sale_date)

            sale = Sale(
                id=str(uuid4()),
                grant_id=grant_id,
                user_id=user_id,
                sale_date=sale_date,
                shares=shares,
                price_per_share=price_per_share,
                tax=self.tax.compute_sale_tax(grant, shares, price_per_share, sale_date),
                notes=notes,
            )

            after = existing + [sale]
            for later in sorted({s.sale_date for s in existing if s.sale_date > sale_date}):
                remaining = self.available_shares(grant, later, after)
                if remaining < 0:
                    raise InsufficientSharesError(grant_id, shares, shares + remaining, later)

            self.repo.save_sale(sale)
        logger.info(
            "Recorded sale %s: %d %s shares at %s on %s (tax %s)",
            sale.id, shares, grant.symbol, price_per_share, sale_date, sale.tax.total_tax,
        )
        return sale

    def get_sale(self, user_id: str, sale_id: str) -> Sale:
        sale = self.repo.get_sale(sale_id)
        if sale is None or sale.user_id != user_id:
            raise SaleNotFoundError(sale_id)
        return sale

    def list_sales(
        self,
        user_id: str,
        grant_id: str | None = None,
        year: int | None = None,
    ) -> list[Sale]:
        if grant_id:
            self.get_grant(user_id, grant_id)
        return self.repo.list_sales(user_id=user_id, grant_id=grant_id, year=year)

    def delete_sale(self, user_id: str, sale_id: str) -> None:
        """Delete a sale. Other sales keep their stored tax results."""
        sale = self.get_sale(user_id, sale_id)
        with self._grant_lock(sale.grant_id):
            if not self.repo.delete_sale(sale_id):
                raise SaleNotFoundError(sale_id)
        logger.info("Deleted sale %s from grant %s", sale_id, sale.grant_id)

    # --- Plan changes ---

    def preview_plan_change(
        self,
        user_id: str,
        grant_id: str,
        new_plan_id: str,
        as_of: date | None = None,
    ) -> PlanChangePreview:
        grant = self.get_grant(user_id, grant_id)
        plan = self.plans.get(new_plan_id)
        preview = self.vesting.preview_plan_change(grant, plan, as_of or date.today())
        if grant.status == GrantStatus.CANCELLED:
            preview.can_change = False
            preview.reason = "Grant is cancelled"
        elif plan.id == grant.plan_id:
            preview.can_change = False
            preview.reason = f"Grant already uses {plan.id}"
        return preview

    def change_plan(
        self,
        user_id: str,
        grant_id: str,
        new_plan_id: str,
        as_of: date | None = None,
        revest_past_due: bool = True,
    ) -> PlanChangeResult:
        """Move a grant to another plan, regenerating its whole schedule.

        The change is rejected when it would leave any recorded sale with
        more shares than the new schedule has vested by the sale date. Without
        revest_past_due, new tranches count by their vest date for that check.
        """
        as_of = as_of or date.today()
        plan = self.plans.get(new_plan_id)
        with self._grant_lock(grant_id):
            grant = self.get_grant(user_id, grant_id)
            if plan.id == grant.plan_id:
                raise PlanChangeError(grant_id, f"grant already uses {plan.id}")

            changed = grant.model_copy(deep=True)
            result = self.vesting.apply_plan_change(
                changed, plan, as_of, self.prices, revest_past_due=revest_past_due
            )

            sales = self.repo.list_sales(grant_id=grant_id)
            oversold = self._first_oversold_date(changed, sales, scheduled=not revest_past_due)
            if oversold is not None:
                raise PlanChangeError(
                    grant_id,
                    f"recorded sales on {oversold.isoformat()} exceed the shares vested under {plan.id}",
                )
            self.repo.save_grant(changed)
        return result

    # --- Scheduled evaluation ---

    def process_vesting(self, as_of: date | None = None, user_id: str | None = None) -> VestingRunSummary:
        """Vest every past-due tranche of every active grant."""
        as_of = as_of or date.today()
        summary = VestingRunSummary(as_of=as_of)

        for candidate in self.repo.list_grants(user_id=user_id, status=GrantStatus.ACTIVE):
            with self._grant_lock(candidate.id):
                grant = self.repo.get_grant(candidate.id)
                if grant is None or grant.status != GrantStatus.ACTIVE:
                    continue
                vested = self.vesting.mark_vested(grant, as_of, self.prices)
                if not vested and grant.status == GrantStatus.ACTIVE:
                    continue
                self.repo.save_grant(grant)

            if vested:
                summary.grants_affected += 1
                summary.tranches_vested += len(vested)
                summary.shares_vested += sum(v.shares for v in vested)
                summary.events.extend(vested)
            if grant.status == GrantStatus.FULLY_VESTED:
                summary.grants_completed += 1

        logger.info(
            "Vesting run as of %s: %d tranches (%d shares) across %d grants, %d completed",
            as_of, summary.tranches_vested, summary.shares_vested,
            summary.grants_affected, summary.grants_completed,
        )
        return summary

    # --- Portfolio reporting ---

    def _holdings(self, user_id: str) -> list[Grant]:
        return [g for g in self.repo.list_grants(user_id=user_id) if g.status != GrantStatus.CANCELLED]

    def _valuation_prices(self, grants: list[Grant], as_of: date) -> dict[str, Decimal | None]:
        """Stored price per symbol on as_of; None where nothing is stored."""
        found: dict[str, Decimal | None] = {}
        for symbol in sorted({g.symbol for g in grants}):
            try:
                found[symbol] = self.prices.get_price_on_date(symbol, as_of)
            except DataUnavailableError:
                logger.warning("No price for %s on %s; valuing at grant price", symbol, as_of)
                found[symbol] = None
        return found

    @staticmethod
    def _price_for(grant: Grant, found: dict[str, Decimal | None]) -> Decimal:
        price = found.get(grant.symbol)
        return price if price is not None else grant.price_per_share

    def _upcoming(self, grants: list[Grant], found: dict, as_of: date, days: int) -> list[UpcomingVest]:
        events = [
            UpcomingVest(
                grant_id=grant.id,
                symbol=grant.symbol,
                company=grant.company,
                vest_date=tranche.vest_date,
                shares=tranche.shares,
                estimated_value=money(tranche.shares * self._price_for(grant, found)),
            )
            for grant in grants
            if grant.status == GrantStatus.ACTIVE
            for tranche in self.vesting.upcoming_tranches(grant, as_of, days)
            if tranche.shares > 0
        ]
        events.sort(key=lambda e: (e.vest_date, e.grant_id))
        return events

    def vesting_statistics(
        self,
        user_id: str,
        as_of: date | None = None,
        days: int = 365,
        limit: int = 10,
    ) -> VestingStatistics:
        """Vesting progress and valuation across a user's grants.

        Args:
            user_id: Owner of the grants.
            as_of: Valuation and vesting date; today when omitted.
            days: Look-ahead window for upcoming vest events.
            limit: Maximum number of upcoming events returned.
        """
        as_of = as_of or date.today()
        grants = self._holdings(user_id)
        return self._statistics(grants, self._valuation_prices(grants, as_of), as_of, days, limit)

    def _statistics(
        self, grants: list[Grant], found: dict, as_of: date, days: int, limit: int
    ) -> VestingStatistics:
        total_shares = sum(g.total_shares for g in grants)
        vested = sum(g.vested_shares(as_of) for g in grants)
        original = sum((g.total_value for g in grants), ZERO)
        current = sum((money(g.total_shares * self._price_for(g, found)) for g in grants), ZERO)
        vested_value = sum(
            (money(g.vested_shares(as_of) * self._price_for(g, found)) for g in grants), ZERO
        )
        pending = [
            t.vest_date for g in grants for t in g.tranches if not t.is_vested_on(as_of) and t.shares > 0
        ]

        return VestingStatistics(
            as_of=as_of,
            total_grants=len(grants),
            total_shares=total_shares,
            vested_shares=vested,
            unvested_shares=total_shares - vested,
            overall_progress=percent(Decimal(vested), Decimal(total_shares)),
            total_original_value=money(original),
            total_current_value=current,
            estimated_vested_value=vested_value,
            gain_loss=money(current - original),
            gain_loss_percent=percent(current - original, original),
            next_vest_date=min(pending) if pending else None,
            upcoming=self._upcoming(grants, found, as_of, days)[:limit],
            unpriced_symbols=[symbol for symbol, price in found.items() if price is None],
        )

    def vesting_calendar(
        self,
        user_id: str,
        as_of: date | None = None,
        months: int = 12,
    ) -> list[VestingCalendarMonth]:
        """Upcoming vest events over the next `months` months, grouped by calendar month."""
        as_of = as_of or date.today()
        grants = self._holdings(user_id)
        found = self._valuation_prices(grants, as_of)
        days = (add_months(as_of, months) - as_of).days

        calendar: dict[str, VestingCalendarMonth] = {}
        for event in self._upcoming(grants, found, as_of, days):
            key = month_key(event.vest_date)
            entry = calendar.setdefault(
                key,
                VestingCalendarMonth(month_key=key, year=event.vest_date.year, month=event.vest_date.month),
            )
            entry.events.append(event)
            entry.total_shares += event.shares
            entry.total_estimated_value += event.estimated_value
        return [calendar[key] for key in sorted(calendar)]

    def portfolio_summary(
        self,
        user_id: str,
        as_of: date | None = None,
        recent_days: int = 90,
    ) -> PortfolioSummary:
        """Current value, sellable shares after tax and recent sale proceeds for a user.

        Available shares are vested shares not yet sold; their tax is
        estimated at the rate that applies on as_of.
        """
        as_of = as_of or date.today()
        grants = self._holdings(user_id)
        found = self._valuation_prices(grants, as_of)
        stats = self._statistics(grants, found, as_of, days=365, limit=10)
        sales = self.repo.list_sales(user_id=user_id)

        available_shares = 0
        available_value = ZERO
        liability = ZERO
        liquid = ZERO
        for grant in grants:
            available = self.available_shares(grant, as_of, sales)
            if available <= 0:
                continue
            estimate = self.tax.estimate_unrealized_liability(
                grant, available, self._price_for(grant, found), as_of
            )
            available_shares += available
            available_value += estimate.current_value
            liability += estimate.total_tax
            liquid += estimate.net_value

        window_start = as_of - timedelta(days=recent_days)
        recent = [s for s in sales if window_start <= s.sale_date <= as_of]
        return PortfolioSummary(
            as_of=as_of,
            vesting=stats,
            available_shares=available_shares,
            available_value=available_value,
            estimated_tax_liability=liability,
            vested_liquid_value=liquid,
            recent_sales_count=len(recent),
            recent_net_proceeds=sum((s.tax.net_value for s in recent), ZERO),
            last_sale_date=max((s.sale_date for s in recent), default=None),
        )
