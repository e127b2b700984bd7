"""Tests for the grant ledger."""

import threading
from datetime import date
from decimal import Decimal

import pytest

from rsuledger.db.price_store import PriceStore
from rsuledger.db.repository import LedgerRepository
from rsuledger.engines.ledger import GrantLedger
from rsuledger.exceptions import (
    GrantNotFoundError,
    InsufficientSharesError,
    NotFoundError,
    PlanChangeError,
    SaleNotFoundError,
    UnknownPlanError,
    ValidationError,
)
from rsuledger.models.enums import GrantStatus
from rsuledger.models.grant import VestingPlan
from rsuledger.plans import BUILTIN_PLANS, PlanRegistry

GRANT_DATE = date(2020, 1, 15)


def _create(ledger: GrantLedger, as_of: date = date(2022, 1, 20), **kwargs):
    params = dict(
        user_id="alice",
        symbol="acme",
        grant_date=GRANT_DATE,
        total_shares=1000,
        total_value=Decimal("50000"),
        as_of=as_of,
    )
    params.update(kwargs)
    return ledger.create_grant(**params)


class TestCreateGrant:
    def test_creates_schedule_and_vests_past_due(self, ledger: GrantLedger):
        grant = _create(ledger)
        assert grant.symbol == "ACME"
        assert grant.plan_id == "quarterly-5yr"
        assert len(grant.tranches) == 20
        assert sum(t.shares for t in grant.tranches) == 1000
        assert sum(t.shares for t in grant.tranches if t.vested) == 400
        assert ledger.get_grant("alice", grant.id) == grant

    def test_stamps_vest_prices(self, ledger: GrantLedger, prices: PriceStore):
        prices.upsert("ACME", date(2020, 1, 1), Decimal("40"))
        prices.upsert("ACME", date(2020, 7, 1), Decimal("45"))
        grant = _create(ledger, as_of=date(2020, 8, 1))
        assert grant.tranches[0].vested_price == Decimal("40")
        assert grant.tranches[1].vested_price == Decimal("45")
        assert grant.tranches[2].vested_price is None

    def test_fully_vested_on_creation(self, ledger: GrantLedger):
        grant = _create(ledger, as_of=date(2030, 1, 1))
        assert grant.status == GrantStatus.FULLY_VESTED

    def test_explicit_plan(self, ledger: GrantLedger):
        grant = _create(ledger, plan_id="semi-annual-4yr")
        assert len(grant.tranches) == 8

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"total_shares": 0}, "total_shares"),
            ({"total_shares": -5}, "total_shares"),
            ({"total_value": Decimal("-1")}, "total_value"),
            ({"symbol": "  "}, "symbol"),
        ],
    )
    def test_rejects_bad_input(self, ledger: GrantLedger, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            _create(ledger, **overrides)
        assert exc_info.value.field == field

    def test_unknown_plan(self, ledger: GrantLedger):
        with pytest.raises(UnknownPlanError):
            _create(ledger, plan_id="monthly-1yr")

    def test_zero_value_allowed(self, ledger: GrantLedger):
        assert _create(ledger, total_value=Decimal("0")).price_per_share == 0


class TestGrantAccess:
    def test_other_user_cannot_see_grant(self, ledger: GrantLedger):
        grant = _create(ledger)
        with pytest.raises(GrantNotFoundError):
            ledger.get_grant("bob", grant.id)
        assert ledger.list_grants("bob") == []

    def test_missing_grant(self, ledger: GrantLedger):
        with pytest.raises(NotFoundError):
            ledger.get_grant("alice", "missing")

    def test_cancel(self, ledger: GrantLedger):
        grant = _create(ledger)
        ledger.cancel_grant("alice", grant.id)
        assert ledger.get_grant("alice", grant.id).status == GrantStatus.CANCELLED
        assert ledger.list_grants("alice", status=GrantStatus.ACTIVE) == []

    def test_delete_removes_sales(self, ledger: GrantLedger, repo: LedgerRepository):
        grant = _create(ledger)
        ledger.record_sale("alice", grant.id, 10, Decimal("80"), date(2022, 1, 20))
        ledger.delete_grant("alice", grant.id)
        assert repo.get_grant(grant.id) is None
        assert repo.list_sales(user_id="alice") == []


class TestSales:
    def test_record_sale_stores_tax(self, ledger: GrantLedger):
        grant = _create(ledger)
        sale = ledger.record_sale("alice", grant.id, 100, Decimal("80"), date(2022, 1, 20))
        assert sale.tax.original_value == Decimal("5000.00")
        assert sale.tax.is_long_term
        assert ledger.get_sale("alice", sale.id) == sale
        sales = ledger.list_sales("alice", grant_id=grant.id)
        assert ledger.available_shares(grant, date(2022, 1, 20), sales) == 300

    def test_oversell_rejected(self, ledger: GrantLedger):
        grant = _create(ledger)
        with pytest.raises(InsufficientSharesError) as exc_info:
            ledger.record_sale("alice", grant.id, 401, Decimal("80"), date(2022, 1, 20))
        assert exc_info.value.available == 400
        assert ledger.list_sales("alice") == []

    def test_sale_before_vesting_rejected(self, ledger: GrantLedger):
        grant = _create(ledger)
        with pytest.raises(InsufficientSharesError):
            ledger.record_sale("alice", grant.id, 10, Decimal("80"), date(2020, 4, 14))

    def test_earlier_sale_cannot_oversell_later_sale(self, ledger: GrantLedger):
        grant = _create(ledger)
        ledger.record_sale("alice", grant.id, 400, Decimal("80"), date(2022, 1, 20))
        with pytest.raises(InsufficientSharesError):
            ledger.record_sale("alice", grant.id, 50, Decimal("80"), date(2021, 10, 20))

    def test_delete_sale_restores_availability(self, ledger: GrantLedger):
        grant = _create(ledger)
        sale = ledger.record_sale("alice", grant.id, 400, Decimal("80"), date(2022, 1, 20))
        with pytest.raises(InsufficientSharesError):
            ledger.record_sale("alice", grant.id, 1, Decimal("80"), date(2022, 1, 20))
        ledger.delete_sale("alice", sale.id)
        ledger.record_sale("alice", grant.id, 400, Decimal("80"), date(2022, 1, 20))

    def test_delete_keeps_other_tax_results(self, ledger: GrantLedger):
        grant = _create(ledger)
        first = ledger.record_sale("alice", grant.id, 50, Decimal("80"), date(2021, 1, 20))
        second = ledger.record_sale("alice", grant.id, 50, Decimal("90"), date(2022, 1, 20))
        ledger.delete_sale("alice", first.id)
        assert ledger.get_sale("alice", second.id).tax == second.tax

    def test_sale_before_grant_date(self, ledger: GrantLedger):
        grant = _create(ledger)
        with pytest.raises(ValidationError):
            ledger.record_sale("alice", grant.id, 1, Decimal("80"), date(2019, 12, 1))

    def test_sale_on_cancelled_grant(self, ledger: GrantLedger):
        grant = _create(ledger)
        ledger.cancel_grant("alice", grant.id)
        with pytest.raises(ValidationError):
            ledger.record_sale("alice", grant.id, 1, Decimal("80"), date(2022, 1, 20))

    def test_non_positive_inputs(self, ledger: GrantLedger):
        grant = _create(ledger)
        with pytest.raises(ValidationError):
            ledger.record_sale("alice", grant.id, 0, Decimal("80"), date(2022, 1, 20))
        with pytest.raises(ValidationError):
            ledger.record_sale("alice", grant.id, 1, Decimal("0"), date(2022, 1, 20))

    def test_delete_other_users_sale(self, ledger: GrantLedger):
        grant = _create(ledger)
        sale = ledger.record_sale("alice", grant.id, 10, Decimal("80"), date(2022, 1, 20))
        with pytest.raises(SaleNotFoundError):
            ledger.delete_sale("bob", sale.id)

    def test_preview_does_not_persist(self, ledger: GrantLedger):
        grant = _create(ledger)
        result = ledger.preview_sale("alice", grant.id, 40, Decimal("150"), date(2021, 1, 15))
        assert not result.is_long_term
        assert ledger.list_sales("alice") == []

    def test_concurrent_sales_never_oversell(self, ledger: GrantLedger):
        grant = _create(ledger)
        outcomes: list[str] = []

        def sell() -> None:
            try:
                ledger.record_sale("alice", grant.id, 100, Decimal("80"), date(2022, 1, 20))
                outcomes.append("ok")
            except InsufficientSharesError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=sell) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert outcomes.count("ok") == 4
        assert sum(s.shares for s in ledger.list_sales("alice")) == 400


class TestPlanChange:
    def test_change_plan_persists(self, ledger: GrantLedger):
        grant = _create(ledger, as_of=date(2021, 2, 1))
        result = ledger.change_plan("alice", grant.id, "semi-annual-4yr", as_of=date(2021, 2, 1))
        assert result.original_vested_shares == 200
        assert result.new_vested_shares == 250
        stored = ledger.get_grant("alice", grant.id)
        assert stored.plan_id == "semi-annual-4yr"
        assert len(stored.tranches) == 8
        assert sum(t.shares for t in stored.tranches) == 1000

    def test_preview(self, ledger: GrantLedger):
        grant = _create(ledger, as_of=date(2021, 2, 1))
        preview = ledger.preview_plan_change("alice", grant.id, "quarterly-4yr", as_of=date(2021, 2, 1))
        assert preview.can_change
        assert preview.new_periods == 16
        assert ledger.get_grant("alice", grant.id).plan_id == "quarterly-5yr"

    def test_same_plan_rejected(self, ledger: GrantLedger):
        grant = _create(ledger)
        with pytest.raises(PlanChangeError):
            ledger.change_plan("alice", grant.id, "quarterly-5yr", as_of=date(2022, 1, 20))

    def test_fully_vested_rejected(self, ledger: GrantLedger):
        grant = _create(ledger, as_of=date(2030, 1, 1))
        with pytest.raises(PlanChangeError):
            ledger.change_plan("alice", grant.id, "quarterly-4yr", as_of=date(2030, 1, 1))

    def test_change_that_oversells_recorded_sale_is_rejected(self, repo, prices):
        plans = PlanRegistry({
            **BUILTIN_PLANS,
            "annual-4yr": VestingPlan(id="annual-4yr", name="Annual", period_count=4, interval_months=12),
        })
        ledger = GrantLedger(repo, prices, plans=plans)
        grant = _create(ledger, as_of=date(2020, 8, 1))
        ledger.record_sale("alice", grant.id, 100, Decimal("80"), date(2020, 7, 20))
        with pytest.raises(PlanChangeError):
            ledger.change_plan("alice", grant.id, "annual-4yr", as_of=date(2020, 8, 1))
        assert ledger.get_grant("alice", grant.id).plan_id == "quarterly-5yr"

    def test_without_revest_waits_for_vesting_run(self, ledger: GrantLedger):
        grant = _create(ledger, as_of=date(2021, 2, 1))
        ledger.change_plan(
            "alice", grant.id, "quarterly-4yr", as_of=date(2021, 2, 1), revest_past_due=False
        )
        stored = ledger.get_grant("alice", grant.id)
        assert not any(t.vested for t in stored.tranches)

        summary = ledger.process_vesting(date(2021, 2, 1))
        assert summary.tranches_vested == 4
        assert summary.shares_vested == 4 * 63

    def test_without_revest_keeps_recorded_sales(self, ledger: GrantLedger):
        grant = _create(ledger, as_of=date(2021, 2, 1))
        ledger.record_sale("alice", grant.id, 10, Decimal("80"), date(2020, 12, 1))
        result = ledger.change_plan(
            "alice", grant.id, "quarterly-4yr", as_of=date(2021, 2, 1), revest_past_due=False
        )
        assert not result.revested
        stored = ledger.get_grant("alice", grant.id)
        assert stored.plan_id == "quarterly-4yr"
        assert not any(t.vested for t in stored.tranches)
        sales = ledger.list_sales("alice", grant_id=grant.id)
        assert ledger.available_shares(stored, date(2020, 12, 1), sales, scheduled=True) == 3 * 63 - 10

    def test_without_revest_still_rejects_oversold_sales(self, repo, prices):
        plans = PlanRegistry({
            **BUILTIN_PLANS,
            "annual-4yr": VestingPlan(id="annual-4yr", name="Annual", period_count=4, interval_months=12),
        })
        ledger = GrantLedger(repo, prices, plans=plans)
        grant = _create(ledger, as_of=date(2020, 8, 1))
        ledger.record_sale("alice", grant.id, 100, Decimal("80"), date(2020, 7, 20))
        with pytest.raises(PlanChangeError):
            ledger.change_plan(
                "alice", grant.id, "annual-4yr", as_of=date(2020, 8, 1), revest_past_due=False
            )


class TestProcessVesting:
    def test_vests_due_tranches_once(self, ledger: GrantLedger):
        grant = _create(ledger, as_of=GRANT_DATE)
        summary = ledger.process_vesting(date(2021, 1, 20))
        assert summary.grants_affected == 1
        assert summary.tranches_vested == 4
        assert summary.shares_vested == 200
        assert ledger.process_vesting(date(2021, 1, 20)).tranches_vested == 0
        stored = ledger.get_grant("alice", grant.id)
        assert sum(t.shares for t in stored.tranches if t.vested) == 200

    def test_completes_grant(self, ledger: GrantLedger):
        grant = _create(ledger, as_of=GRANT_DATE)
        summary = ledger.process_vesting(date(2030, 1, 1))
        assert summary.grants_completed == 1
        assert ledger.get_grant("alice", grant.id).status == GrantStatus.FULLY_VESTED

    def test_skips_cancelled_grants(self, ledger: GrantLedger):
        grant = _create(ledger, as_of=GRANT_DATE)
        ledger.cancel_grant("alice", grant.id)
        assert ledger.process_vesting(date(2030, 1, 1)).tranches_vested == 0

    def test_limits_to_user(self, ledger: GrantLedger):
        _create(ledger, as_of=GRANT_DATE)
        _create(ledger, as_of=GRANT_DATE, user_id="bob")
        summary = ledger.process_vesting(date(2021, 1, 20), user_id="bob")
        assert summary.grants_affected == 1


class TestUpdateGrant:
    def test_details_only(self, ledger: GrantLedger):
        grant = _create(ledger)
        updated = ledger.update_grant("alice", grant.id, company="Acme Inc", notes="refresh grant")
        stored = ledger.get_grant("alice", grant.id)
        assert stored.company == "Acme Inc"
        assert stored.notes == "refresh grant"
        assert stored.tranches == grant.tranches
        assert updated == stored

    def test_new_share_count_regenerates_schedule(self, ledger: GrantLedger):
        grant = _create(ledger)
        ledger.update_grant("alice", grant.id, total_shares=2000, as_of=date(2022, 1, 20))
        stored = ledger.get_grant("alice", grant.id)
        assert len(stored.tranches) == 20
        assert sum(t.shares for t in stored.tranches) == 2000
        assert sum(t.shares for t in stored.tranches if t.vested) == 800

    def test_rejects_shrinking_below_recorded_sales(self, ledger: GrantLedger):
        grant = _create(ledger)
        ledger.record_sale("alice", grant.id, 400, Decimal("80"), date(2022, 1, 20))
        with pytest.raises(ValidationError):
            ledger.update_grant("alice", grant.id, total_shares=500, as_of=date(2022, 1, 20))
        assert ledger.get_grant("alice", grant.id).total_shares == 1000

    def test_rejects_grant_date_after_sales(self, ledger: GrantLedger):
        grant = _create(ledger)
        ledger.record_sale("alice", grant.id, 10, Decimal("80"), date(2022, 1, 20))
        with pytest.raises(ValidationError) as exc_info:
            ledger.update_grant("alice", grant.id, grant_date=date(2022, 6, 1), as_of=date(2022, 1, 20))
        assert exc_info.value.field == "grant_date"

    def test_cancelled_schedule_is_frozen(self, ledger: GrantLedger):
        grant = _create(ledger)
        ledger.cancel_grant("alice", grant.id)
        with pytest.raises(ValidationError):
            ledger.update_grant("alice", grant.id, total_shares=2000)

    def test_other_user(self, ledger: GrantLedger):
        grant = _create(ledger)
        with pytest.raises(GrantNotFoundError):
            ledger.update_grant("bob", grant.id, notes="mine")


class TestPortfolioReports:
    AS_OF = date(2022, 1, 20)

    def test_vesting_statistics(self, ledger: GrantLedger, prices: PriceStore):
        prices.upsert("ACME", date(2022, 1, 1), Decimal("80"))
        _create(ledger)
        stats = ledger.vesting_statistics("alice", self.AS_OF)
        assert stats.total_grants == 1
        assert stats.vested_shares == 400
        assert stats.unvested_shares == 600
        assert stats.overall_progress == Decimal("40.00")
        assert stats.total_original_value == Decimal("50000.00")
        assert stats.total_current_value == Decimal("80000.00")
        assert stats.gain_loss == Decimal("30000.00")
        assert stats.gain_loss_percent == Decimal("60.00")
        assert stats.estimated_vested_value == Decimal("32000.00")
        assert stats.next_vest_date == date(2022, 4, 15)
        assert [e.vest_date for e in stats.upcoming] == [
            date(2022, 4, 15), date(2022, 7, 15), date(2022, 10, 15), date(2023, 1, 15),
        ]
        assert stats.unpriced_symbols == []

    def test_statistics_fall_back_to_grant_price(self, ledger: GrantLedger):
        _create(ledger)
        stats = ledger.vesting_statistics("alice", self.AS_OF)
        assert stats.total_current_value == Decimal("50000.00")
        assert stats.gain_loss == Decimal("0.00")
        assert stats.unpriced_symbols == ["ACME"]

    def test_vesting_calendar(self, ledger: GrantLedger):
        _create(ledger)
        cancelled = _create(ledger, symbol="BETA")
        ledger.cancel_grant("alice", cancelled.id)
        calendar = ledger.vesting_calendar("alice", self.AS_OF, months=6)
        assert [m.month_key for m in calendar] == ["2022-04", "2022-07"]
        assert all(m.total_shares == 50 for m in calendar)
        assert calendar[0].total_estimated_value == Decimal("2500.00")
        assert calendar[0].events[0].symbol == "ACME"

    def test_portfolio_summary(self, ledger: GrantLedger, prices: PriceStore):
        prices.upsert("ACME", date(2022, 1, 1), Decimal("80"))
        grant = _create(ledger)
        ledger.record_sale("alice", grant.id, 100, Decimal("80"), self.AS_OF)
        summary = ledger.portfolio_summary("alice", self.AS_OF)
        assert summary.vesting.total_current_value == Decimal("80000.00")
        assert summary.available_shares == 300
        assert summary.available_value == Decimal("24000.00")
        assert summary.estimated_tax_liability == Decimal("12000.00")
        assert summary.vested_liquid_value == Decimal("12000.00")
        assert summary.recent_sales_count == 1
        assert summary.recent_net_proceeds == Decimal("4000.00")
        assert summary.last_sale_date == self.AS_OF

    def test_old_sales_are_not_recent(self, ledger: GrantLedger):
        grant = _create(ledger)
        ledger.record_sale("alice", grant.id, 10, Decimal("80"), date(2021, 6, 1))
        summary = ledger.portfolio_summary("alice", self.AS_OF)
        assert summary.recent_sales_count == 0
        assert summary.last_sale_date is None
        assert summary.available_shares == 390
