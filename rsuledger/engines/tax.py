"""Sale tax engine.

Dual tax on an RSU sale:
  - wage income tax on the original grant value of the shares sold, charged
    regardless of what the shares later sold for;
  - capital gains tax on profit (sale value minus original value), at the
    long-term rate once the sale date is at least `long_term_years` calendar
    years after the grant date, at the short-term rate before that.
"""

from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from rsuledger.dates import add_years
from rsuledger.models.grant import Grant, Sale, TaxRates, TaxResult
from rsuledger.models.reports import (
    AnnualTaxSummary,
    GrantTaxSummary,
    MonthlyTaxLine,
    QuarterlyPayment,
    TimingRecommendation,
    UnrealizedEstimate,
)
from rsuledger.plans import DEFAULT_TAX_RATES, QUARTERLY_DUE_DATES

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return ZERO.quantize(CENTS)
    return money(part / whole * 100)


class TaxCalculator:
    """Computes sale tax results. Stateless apart from the configured rates."""

    def __init__(self, rates: TaxRates | None = None):
        self.rates = rates or DEFAULT_TAX_RATES

    def long_term_date(self, grant_date: date) -> date:
        return add_years(grant_date, self.rates.long_term_years)

    def is_long_term(self, grant_date: date, sale_date: date) -> bool:
        return sale_date >= self.long_term_date(grant_date)

    def compute_sale_tax(
        self,
        grant: Grant,
        shares: int,
        price_per_share: Decimal,
        sale_date: date,
    ) -> TaxResult:
        """Tax breakdown for selling `shares` of a grant at `price_per_share` on `sale_date`.

        Example: 100-share grant valued 10,000; sell 40 at 150 three years later.
        original 4,000, sale 6,000, profit 2,000, wage tax 2,600,
        capital gains 500, total 3,100, net 2,900.
        """
        original_value = Decimal(shares) * grant.price_per_share
        sale_value = Decimal(shares) * price_per_share
        profit = sale_value - original_value
        long_term = self.is_long_term(grant.grant_date, sale_date)

        wage_income_tax = money(original_value * self.rates.wage_income)
        cg_rate = self.rates.capital_gains_long_term if long_term else self.rates.capital_gains_short_term
        taxable_profit = max(profit, ZERO) if self.rates.clamp_capital_losses else profit
        capital_gains_tax = money(taxable_profit * cg_rate)

        # totals are sums of the rounded parts
        total_tax = wage_income_tax + capital_gains_tax
        net_value = money(sale_value) - total_tax

        return TaxResult(
            original_value=money(original_value),
            sale_value=money(sale_value),
            profit=money(profit),
            is_long_term=long_term,
            holding_period_days=(sale_date - grant.grant_date).days,
            wage_income_tax=wage_income_tax,
            capital_gains_tax=capital_gains_tax,
            total_tax=total_tax,
            net_value=net_value,
            effective_tax_rate=percent(total_tax, money(sale_value)),
        )

    def estimate_unrealized_liability(
        self,
        grant: Grant,
        shares: int,
        price_per_share: Decimal,
        as_of: date,
    ) -> UnrealizedEstimate:
        """Tax that would be due if `shares` were sold at `price_per_share` on as_of."""
        result = self.compute_sale_tax(grant, shares, price_per_share, as_of)
        return UnrealizedEstimate(
            shares=shares,
            price_per_share=price_per_share,
            original_value=result.original_value,
            current_value=result.sale_value,
            profit=result.profit,
            is_long_term=result.is_long_term,
            wage_income_tax=result.wage_income_tax,
            capital_gains_tax=result.capital_gains_tax,
            total_tax=result.total_tax,
            net_value=result.net_value,
        )

    # --- Summaries over stored sale results ---

    def grant_tax_summary(
        self,
        grant: Grant,
        sales: list[Sale],
        as_of: date,
        current_price: Decimal | None = None,
    ) -> GrantTaxSummary:
        """Realized tax from recorded sales plus an estimate for the vested shares still held."""
        sales = [s for s in sales if s.grant_id == grant.id]
        shares_sold = sum(s.shares for s in sales)
        sale_value = sum((s.tax.sale_value for s in sales), ZERO)
        total_tax = sum((s.tax.total_tax for s in sales), ZERO)
        remaining = max(grant.vested_shares(as_of) - shares_sold, 0)

        unrealized = None
        if current_price is not None and remaining > 0:
            unrealized = self.estimate_unrealized_liability(grant, remaining, current_price, as_of)

        return GrantTaxSummary(
            grant_id=grant.id,
            symbol=grant.symbol,
            grant_date=grant.grant_date,
            total_shares=grant.total_shares,
            sales_count=len(sales),
            shares_sold=shares_sold,
            remaining_vested_shares=remaining,
            realized_sale_value=sale_value,
            realized_original_value=sum((s.tax.original_value for s in sales), ZERO),
            realized_profit=sum((s.tax.profit for s in sales), ZERO),
            realized_wage_income_tax=sum((s.tax.wage_income_tax for s in sales), ZERO),
            realized_capital_gains_tax=sum((s.tax.capital_gains_tax for s in sales), ZERO),
            realized_total_tax=total_tax,
            realized_net_value=sum((s.tax.net_value for s in sales), ZERO),
            realized_effective_tax_rate=percent(total_tax, sale_value),
            unrealized=unrealized,
        )

    def annual_summary(self, sales: list[Sale], year: int) -> AnnualTaxSummary:
        in_year = [s for s in sales if s.sale_date.year == year]

        by_month: dict[int, list[Sale]] = defaultdict(list)
        for sale in in_year:
            by_month[sale.sale_date.month].append(sale)
        monthly = [
            MonthlyTaxLine(
                month=month,
                sales=len(items),
                sale_value=sum((s.tax.sale_value for s in items), ZERO),
                profit=sum((s.tax.profit for s in items), ZERO),
                total_tax=sum((s.tax.total_tax for s in items), ZERO),
            )
            for month, items in sorted(by_month.items())
        ]

        sale_value = sum((s.tax.sale_value for s in in_year), ZERO)
        total_tax = sum((s.tax.total_tax for s in in_year), ZERO)
        long_term = sum(1 for s in in_year if s.tax.is_long_term)
        return AnnualTaxSummary(
            year=year,
            sales_count=len(in_year),
            shares_sold=sum(s.shares for s in in_year),
            sale_value=sale_value,
            original_value=sum((s.tax.original_value for s in in_year), ZERO),
            profit=sum((s.tax.profit for s in in_year), ZERO),
            wage_income_tax=sum((s.tax.wage_income_tax for s in in_year), ZERO),
            capital_gains_tax=sum((s.tax.capital_gains_tax for s in in_year), ZERO),
            total_tax=total_tax,
            net_value=sum((s.tax.net_value for s in in_year), ZERO),
            long_term_sales=long_term,
            short_term_sales=len(in_year) - long_term,
            effective_tax_rate=percent(total_tax, sale_value),
            monthly=monthly,
        )

    def quarterly_payments(self, summary: AnnualTaxSummary) -> list[QuarterlyPayment]:
        """Split a year's total tax into quarterly estimated installments.

        Each installment is a quarter of the total rounded to cents; the last
        one absorbs the rounding so the installments add up to the total.
        """
        if summary.total_tax <= 0:
            return []
        count = len(QUARTERLY_DUE_DATES)
        installment = money(summary.total_tax / count)
        payments = []
        for i, (quarter, years_after, month, day) in enumerate(QUARTERLY_DUE_DATES):
            amount = installment if i < count - 1 else summary.total_tax - installment * (count - 1)
            payments.append(
                QuarterlyPayment(
                    quarter=quarter,
                    due_date=date(summary.year + years_after, month, day),
                    amount=amount,
                )
            )
        return payments

    def long_term_timing(
        self,
        grant: Grant,
        shares: int,
        price_per_share: Decimal,
        as_of: date,
    ) -> TimingRecommendation:
        """Compare selling on as_of against selling on the long-term qualification date."""
        qualifies_on = self.long_term_date(grant.grant_date)
        days_until = max((qualifies_on - as_of).days, 0)
        now = self.compute_sale_tax(grant, shares, price_per_share, as_of)
        later = self.compute_sale_tax(grant, shares, price_per_share, max(as_of, qualifies_on))
        savings = now.total_tax - later.total_tax

        if days_until > 0:
            recommendation = (
                f"Waiting {days_until} days until {qualifies_on.isoformat()} qualifies for the "
                f"long-term rate and saves {savings:,.2f} in tax at this price."
            )
        else:
            recommendation = "This sale already qualifies for the long-term capital gains rate."

        return TimingRecommendation(
            grant_id=grant.id,
            as_of=as_of,
            long_term_date=qualifies_on,
            days_until_long_term=days_until,
            sell_now_total_tax=now.total_tax,
            sell_now_net_value=now.net_value,
            wait_total_tax=later.total_tax,
            wait_net_value=later.net_value,
            tax_savings=savings,
            recommendation=recommendation,
        )
