"""Portfolio timeline reconstruction.

Each grant is replayed on its own into a series of (event, snapshot) pairs.
Series are then merged month by month: a grant's closing state for a month is
its snapshot after the last event on or before month end, and portfolio
totals are plain sums of those states, so the merge does not depend on the
order grants were replayed in.
"""

import logging
from bisect import bisect_right
from collections import defaultdict
from datetime import date
from decimal import Decimal

from rsuledger.dates import add_months, iter_months, month_end, month_key, month_start
from rsuledger.db.base import PriceLookup
from rsuledger.db.repository import LedgerRepository
from rsuledger.engines.ledger import GrantLedger
from rsuledger.engines.tax import ZERO, TaxCalculator, money
from rsuledger.engines.vesting import VestingScheduleGenerator
from rsuledger.exceptions import DataUnavailableError, ValidationError
from rsuledger.models.enums import EventType, GrantStatus, Timeframe
from rsuledger.models.grant import Grant, Sale
from rsuledger.models.reports import IntegrityReport
from rsuledger.models.timeline import GrantSnapshot, TimelineEvent, TimelinePoint, TimelineValidation

logger = logging.getLogger(__name__)

# timeframe -> (months back from as_of, months ahead of as_of)
TIMEFRAME_WINDOWS: dict[Timeframe, tuple[int, int]] = {
    Timeframe.ONE_YEAR: (12, 23),
    Timeframe.TWO_YEARS: (24, 23),
    Timeframe.FIVE_YEARS: (24, 35),
}

JUMP_WARNING_RATIO = Decimal("2")

_EVENT_ORDER = {EventType.VESTING: 0, EventType.SALE: 1}

GrantSeries = list[tuple[TimelineEvent, GrantSnapshot]]


class TimelineReconstructor:
    """Replays vesting and sale events into monthly portfolio snapshots."""

    def __init__(
        self,
        repo: LedgerRepository,
        prices: PriceLookup,
        tax: TaxCalculator | None = None,
    ):
        self.repo = repo
        self.prices = prices
        self.tax = tax or TaxCalculator()
        self.vesting = VestingScheduleGenerator()

    def generate_portfolio_timeline(
        self,
        user_id: str,
        timeframe: Timeframe = Timeframe.ONE_YEAR,
        as_of: date | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[TimelinePoint]:
        """Monthly snapshots of a user's non-cancelled grants.

        Explicit start/end dates override the timeframe window; only their
        months matter.
        """
        as_of = as_of or date.today()
        grants = [
            g for g in self.repo.list_grants(user_id=user_id)
            if g.status != GrantStatus.CANCELLED
        ]
        sales_by_grant: dict[str, list[Sale]] = defaultdict(list)
        for sale in self.repo.list_sales(user_id=user_id):
            sales_by_grant[sale.grant_id].append(sale)

        first, last = self.resolve_range(timeframe, as_of, grants, sales_by_grant, start, end)
        until = month_end(last)

        price_cache: dict[tuple[str, date], Decimal | None] = {}
        series = {
            grant.id: self.replay_grant(grant, sales_by_grant[grant.id], until, price_cache)
            for grant in grants
        }
        points = self.merge_series(series, first, last, as_of)
        logger.info(
            "Timeline for %s: %d grants, %d months from %s",
            user_id, len(grants), len(points), month_key(first),
        )
        return points

    def resolve_range(
        self,
        timeframe: Timeframe,
        as_of: date,
        grants: list[Grant],
        sales_by_grant: dict[str, list[Sale]],
        start: date | None = None,
        end: date | None = None,
    ) -> tuple[date, date]:
        """First and last month (as first-of-month dates) covered by a timeline."""
        if timeframe == Timeframe.ALL:
            if grants:
                default_first = month_start(min(g.grant_date for g in grants))
                event_dates = [t.vest_date for g in grants for t in g.tranches]
                event_dates += [s.sale_date for g in grants for s in sales_by_grant.get(g.id, [])]
                default_last = month_start(max(event_dates, default=as_of))
            else:
                default_first = default_last = month_start(as_of)
        else:
            back, ahead = TIMEFRAME_WINDOWS[Timeframe(timeframe)]
            default_first = add_months(month_start(as_of), -back)
            default_last = add_months(month_start(as_of), ahead)

        first = month_start(start) if start else default_first
        last = month_start(end) if end else default_last
        if first > last:
            raise ValidationError("start", f"{month_key(first)} is after {month_key(last)}")
        return first, last

    # --- Per-grant replay ---

    def _price_on(
        self,
        symbol: str,
        on_date: date,
        cache: dict[tuple[str, date], Decimal | None],
    ) -> Decimal | None:
        key = (symbol, on_date)
        if key not in cache:
            try:
                cache[key] = self.prices.get_price_on_date(symbol, on_date)
            except DataUnavailableError:
                logger.warning("No price for %s on %s; marking timeline point unknown", symbol, on_date)
                cache[key] = None
        return cache[key]

    def grant_events(
        self,
        grant: Grant,
        sales: list[Sale],
        until: date | None = None,
        price_cache: dict | None = None,
    ) -> list[TimelineEvent]:
        """Vesting and sale events of one grant, ordered by date with vesting first on a tie."""
        cache = price_cache if price_cache is not None else {}
        events: list[TimelineEvent] = []
        for tranche in grant.tranches:
            if tranche.shares == 0 or (until and tranche.vest_date > until):
                continue
            price = tranche.vested_price
            if price is None:
                price = self._price_on(grant.symbol, tranche.vest_date, cache)
            events.append(
                TimelineEvent(
                    date=tranche.vest_date,
                    event_type=EventType.VESTING,
                    grant_id=grant.id,
                    symbol=grant.symbol,
                    shares=tranche.shares,
                    price_per_share=price,
                )
            )
        for sale in sales:
            if sale.grant_id != grant.id or (until and sale.sale_date > until):
                continue
            events.append(
                TimelineEvent(
                    date=sale.sale_date,
                    event_type=EventType.SALE,
                    grant_id=grant.id,
                    symbol=grant.symbol,
                    shares=sale.shares,
                    price_per_share=sale.price_per_share,
                    tax=sale.tax,
                )
            )
        # sort is stable, so same-day sales keep their recorded order
        return sorted(events, key=lambda e: (e.date, _EVENT_ORDER[e.event_type]))

    def replay_grant(
        self,
        grant: Grant,
        sales: list[Sale],
        until: date | None = None,
        price_cache: dict | None = None,
    ) -> GrantSeries:
        """Running state of one grant after each of its events."""
        series: GrantSeries = []
        shares_held = vested = sold = 0
        realized_tax = realized_net = ZERO
        last_price: Decimal | None = None

        for event in self.grant_events(grant, sales, until, price_cache):
            if event.event_type == EventType.VESTING:
                shares_held += event.shares
                vested += event.shares
            else:
                shares_held -= event.shares
                sold += event.shares
                realized_tax += event.tax.total_tax
                realized_net += event.tax.net_value
            if event.price_per_share is not None:
                last_price = event.price_per_share

            price_known = last_price is not None or shares_held == 0
            value = liability = ZERO
            if last_price is not None and shares_held > 0:
                value = money(shares_held * last_price)
                estimate = self.tax.estimate_unrealized_liability(grant, shares_held, last_price, event.date)
                liability = estimate.total_tax

            series.append(
                (
                    event,
                    GrantSnapshot(
                        grant_id=grant.id,
                        symbol=grant.symbol,
                        company=grant.company,
                        shares_held=shares_held,
                        vested_to_date=vested,
                        sold_to_date=sold,
                        value=value,
                        tax_liability=liability,
                        net_value=value - liability,
                        realized_tax=realized_tax,
                        realized_net_value=realized_net,
                        is_long_term=self.tax.is_long_term(grant.grant_date, event.date),
                        price_known=price_known,
                    ),
                )
            )
        return series

    # --- Merge ---

    def merge_series(
        self,
        series: dict[str, GrantSeries],
        first: date,
        last: date,
        as_of: date,
    ) -> list[TimelinePoint]:
        """Fold per-grant series into one point per calendar month from first to last."""
        dates = {grant_id: [event.date for event, _ in items] for grant_id, items in series.items()}
        current_month = month_start(as_of)
        points: list[TimelinePoint] = []

        for start in iter_months(first, last):
            end = month_end(start)
            point = TimelinePoint(
                month_key=month_key(start),
                month_start=start,
                month_end=end,
                is_historical=start <= current_month,
            )
            for grant_id in sorted(series):
                items = series[grant_id]
                idx = bisect_right(dates[grant_id], end)
                if idx == 0:
                    continue
                snapshot = items[idx - 1][1]
                point.grants.append(snapshot)
                point.total_shares += snapshot.shares_held
                point.total_value += snapshot.value
                point.total_tax_liability += snapshot.tax_liability
                point.total_net_value += snapshot.net_value
                point.total_realized_tax += snapshot.realized_tax
                if not snapshot.price_known:
                    point.price_unknown = True
                point.events.extend(e for e, _ in items[:idx] if e.date >= start)

            point.events.sort(key=lambda e: (e.date, _EVENT_ORDER[e.event_type], e.grant_id))
            points.append(point)
        return points

    # --- Diagnostics ---

    def validate_timeline(self, points: list[TimelinePoint]) -> TimelineValidation:
        errors: list[str] = []
        warnings: list[str] = []

        for prev, cur in zip(points, points[1:]):
            if cur.month_start <= prev.month_start:
                errors.append(f"{cur.month_key} is out of chronological order after {prev.month_key}")
            elif cur.month_start != add_months(prev.month_start, 1):
                errors.append(f"Missing months between {prev.month_key} and {cur.month_key}")

            if prev.total_value > 0 and cur.total_value > prev.total_value:
                change = (cur.total_value - prev.total_value) / prev.total_value
                if change > JUMP_WARNING_RATIO:
                    warnings.append(
                        f"Value jumps {change * 100:.0f}% from {prev.month_key} to {cur.month_key}"
                    )

        for point in points:
            if point.total_value < 0:
                warnings.append(f"Negative portfolio value in {point.month_key}")
            if point.total_shares < 0:
                errors.append(f"Negative share count in {point.month_key}")
            if point.price_unknown:
                warnings.append(f"Price unknown for at least one grant in {point.month_key}")

        return TimelineValidation(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            points=len(points),
            start=points[0].month_start if points else None,
            end=points[-1].month_end if points else None,
        )

    def validate_integrity(self, user_id: str, as_of: date | None = None) -> IntegrityReport:
        """Check stored grants and sales of a user against the ledger invariants."""
        as_of = as_of or date.today()
        grants = self.repo.list_grants(user_id=user_id)
        sales = self.repo.list_sales(user_id=user_id)
        grant_ids = {g.id for g in grants}
        errors: list[str] = []
        warnings: list[str] = []

        for grant in grants:
            check = self.vesting.validate_schedule(grant.tranches, grant.total_shares)
            errors.extend(f"Grant {grant.id}: {e}" for e in check.errors)
            warnings.extend(f"Grant {grant.id}: {w}" for w in check.warnings)

            early = [t for t in grant.tranches if t.vested and t.vest_date > as_of]
            if early:
                errors.append(f"Grant {grant.id}: {len(early)} tranches vested before their vest date")
            overdue = [t for t in grant.tranches if not t.vested and t.vest_date <= as_of]
            if overdue and grant.status == GrantStatus.ACTIVE:
                warnings.append(f"Grant {grant.id}: {len(overdue)} past-due tranches not yet vested")

            if grant.status == GrantStatus.FULLY_VESTED and not grant.all_vested:
                errors.append(f"Grant {grant.id}: marked fully vested with unvested tranches")
            if grant.status == GrantStatus.ACTIVE and grant.all_vested:
                warnings.append(f"Grant {grant.id}: every tranche vested but status is still active")

            grant_sales = [s for s in sales if s.grant_id == grant.id]
            for sale_date in sorted({s.sale_date for s in grant_sales}):
                available = GrantLedger.available_shares(grant, sale_date, grant_sales)
                if available < 0:
                    errors.append(
                        f"Grant {grant.id}: oversold by {-available} shares on {sale_date.isoformat()}"
                    )
            early_sales = [s for s in grant_sales if s.sale_date < grant.grant_date]
            if early_sales:
                errors.append(f"Grant {grant.id}: {len(early_sales)} sales dated before the grant")

        orphans = [s for s in sales if s.grant_id not in grant_ids]
        if orphans:
            errors.append(f"{len(orphans)} sales reference unknown grants")

        if errors:
            logger.warning("Integrity check for %s found %d errors", user_id, len(errors))
        return IntegrityReport(
            is_valid=not errors,
            grants_checked=len(grants),
            sales_checked=len(sales),
            errors=errors,
            warnings=warnings,
        )
