"""Typer CLI interface for rsuledger."""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from rsuledger import __version__
from rsuledger.db.migrations import migrate
from rsuledger.db.price_store import PriceStore
from rsuledger.db.repository import LedgerRepository
from rsuledger.db.schema import create_schema
from rsuledger.engines.ledger import GrantLedger
from rsuledger.engines.tax import TaxCalculator
from rsuledger.engines.timeline import TimelineReconstructor
from rsuledger.exceptions import DataUnavailableError, RSULedgerError
from rsuledger.models.enums import GrantStatus, Timeframe
from rsuledger.models.grant import TaxResult
from rsuledger.models.reports import VestingStatistics
from rsuledger.plans import load_plans, load_tax_rates

app = typer.Typer(
    name="rsuledger",
    help="rsuledger: RSU grants, vesting, sale tax and portfolio timelines.",
    no_args_is_help=True,
)
grant_app = typer.Typer(help="Create, inspect and change grants.", no_args_is_help=True)
sale_app = typer.Typer(help="Preview, record and delete sales.", no_args_is_help=True)
price_app = typer.Typer(help="Manage stored share prices.", no_args_is_help=True)
tax_app = typer.Typer(help="Tax summaries and timing.", no_args_is_help=True)
vest_app = typer.Typer(help="Vest due tranches and look ahead at upcoming vesting.")
app.add_typer(grant_app, name="grant")
app.add_typer(sale_app, name="sale")
app.add_typer(price_app, name="price")
app.add_typer(tax_app, name="tax")
app.add_typer(vest_app, name="vest")


@dataclass
class Settings:
    db: Path
    plans_file: Path | None
    rates_file: Path | None
    user: str


@app.callback()
def main(
    ctx: typer.Context,
    db: Path = typer.Option(
        Path.home() / ".rsuledger" / "rsuledger.db",
        "--db",
        envvar="RSULEDGER_DB",
        help="Path to the SQLite database file",
    ),
    plans_file: Path | None = typer.Option(
        None,
        "--plans-file",
        envvar="RSULEDGER_PLANS",
        help="JSON file with extra vesting plans",
    ),
    rates_file: Path | None = typer.Option(
        None,
        "--rates-file",
        envvar="RSULEDGER_RATES",
        help="JSON file overriding the default tax rates",
    ),
    user: str = typer.Option("default", "--user", envvar="RSULEDGER_USER", help="Ledger owner"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr"),
) -> None:
    """rsuledger: RSU grants, vesting, sale tax and portfolio timelines."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = Settings(db=db, plans_file=plans_file, rates_file=rates_file, user=user)


@dataclass
class Services:
    ledger: GrantLedger
    prices: PriceStore
    timeline: TimelineReconstructor
    user: str


@contextmanager
def _services(ctx: typer.Context):
    """Open the database, build the engines and turn domain errors into exit code 1."""
    settings: Settings = ctx.obj
    conn = None
    try:
        plans = load_plans(settings.plans_file)
        tax = TaxCalculator(load_tax_rates(settings.rates_file))
        settings.db.parent.mkdir(parents=True, exist_ok=True)
        conn = create_schema(settings.db)
        migrate(conn)
        repo = LedgerRepository(conn)
        prices = PriceStore(conn)
        yield Services(
            ledger=GrantLedger(repo, prices, plans=plans, tax=tax),
            prices=prices,
            timeline=TimelineReconstructor(repo, prices, tax=tax),
            user=settings.user,
        )
    except RSULedgerError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)
    finally:
        if conn is not None:
            conn.close()


def _parse_date(value: str | None, option: str = "--date") -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}", param_hint=option) from None


def _parse_money(value: str, option: str) -> Decimal:
    try:
        return Decimal(value.replace(",", "").lstrip("$"))
    except ArithmeticError:
        raise typer.BadParameter(f"not a number: {value!r}", param_hint=option) from None


def _fmt(value: Decimal | None) -> str:
    return f"{value:,.2f}" if value is not None else "-"


@app.command()
def version() -> None:
    """Print the installed version."""
    typer.echo(__version__)


@app.command()
def plans(ctx: typer.Context) -> None:
    """List the available vesting plans."""
    registry = load_plans(ctx.obj.plans_file)
    table = Table(title="Vesting Plans")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Periods", justify="right")
    table.add_column("Months", justify="right")
    table.add_column("Default")
    for plan in registry.all():
        table.add_row(
            plan.id, plan.name, str(plan.period_count), str(plan.interval_months),
            "yes" if plan.is_default else "",
        )
    Console().print(table)


# --- Grants ---


@grant_app.command("add")
def grant_add(
    ctx: typer.Context,
    symbol: str = typer.Argument(..., help="Ticker symbol"),
    grant_date: str = typer.Option(..., "--date", help="Grant date (YYYY-MM-DD)"),
    shares: int = typer.Option(..., "--shares", help="Total granted shares"),
    value: str = typer.Option(..., "--value", help="Total grant value"),
    plan: str | None = typer.Option(None, "--plan", help="Vesting plan id (default plan when omitted)"),
    company: str | None = typer.Option(None, "--company"),
    name: str | None = typer.Option(None, "--name", help="Label for the grant"),
    notes: str | None = typer.Option(None, "--notes"),
    as_of: str | None = typer.Option(None, "--as-of", help="Vest tranches due on or before this date"),
) -> None:
    """Create a grant and generate its vesting schedule."""
    with _services(ctx) as svc:
        grant = svc.ledger.create_grant(
            user_id=svc.user,
            symbol=symbol,
            grant_date=_parse_date(grant_date),
            total_shares=shares,
            total_value=_parse_money(value, "--value"),
            plan_id=plan,
            company=company,
            name=name,
            notes=notes,
            as_of=_parse_date(as_of, "--as-of"),
        )
    typer.echo(f"Created grant {grant.id}")
    typer.echo(f"  {grant.total_shares} {grant.symbol} shares over {len(grant.tranches)} tranches ({grant.plan_id})")


@grant_app.command("list")
def grant_list(
    ctx: typer.Context,
    status: GrantStatus | None = typer.Option(None, "--status", help="Only grants with this status"),
    as_of: str | None = typer.Option(None, "--as-of"),
) -> None:
    """List grants with their vesting progress."""
    as_of_date = _parse_date(as_of, "--as-of") or date.today()
    with _services(ctx) as svc:
        grants = svc.ledger.list_grants(svc.user, status=status)
    if not grants:
        typer.echo("No grants found.")
        return

    table = Table(title="Grants")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Symbol")
    table.add_column("Granted")
    table.add_column("Shares", justify="right")
    table.add_column("Vested", justify="right")
    table.add_column("Plan")
    table.add_column("Status")
    for grant in grants:
        table.add_row(
            grant.id[:8],
            grant.symbol,
            grant.grant_date.isoformat(),
            str(grant.total_shares),
            f"{grant.vested_shares(as_of_date)} ({grant.vesting_progress(as_of_date)}%)",
            grant.plan_id,
            grant.status.value,
        )
    Console().print(table)


def _resolve_grant_id(svc: Services, prefix: str) -> str:
    """Accept a full grant id or a unique prefix of one."""
    matches = [g.id for g in svc.ledger.list_grants(svc.user) if g.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    return prefix


@grant_app.command("show")
def grant_show(
    ctx: typer.Context,
    grant_id: str = typer.Argument(..., help="Grant id or unique prefix"),
    as_of: str | None = typer.Option(None, "--as-of"),
) -> None:
    """Show a grant, its tranches and its sales."""
    as_of_date = _parse_date(as_of, "--as-of") or date.today()
    with _services(ctx) as svc:
        grant = svc.ledger.get_grant(svc.user, _resolve_grant_id(svc, grant_id))
        progress = svc.ledger.vesting.vesting_progress(grant, as_of_date)
        sales = svc.ledger.list_sales(svc.user, grant_id=grant.id)
        available = svc.ledger.available_shares(grant, as_of_date, sales)

    typer.echo(f"Grant {grant.id}")
    typer.echo(f"  Symbol:        {grant.symbol}" + (f" ({grant.company})" if grant.company else ""))
    typer.echo(f"  Grant date:    {grant.grant_date.isoformat()}")
    typer.echo(f"  Total shares:  {grant.total_shares}")
    typer.echo(f"  Total value:   {_fmt(grant.total_value)} ({_fmt(grant.price_per_share)}/share)")
    typer.echo(f"  Plan:          {grant.plan_id}")
    typer.echo(f"  Status:        {grant.status.value}")
    typer.echo(f"  Vested:        {progress.vested_shares} ({progress.progress_percent}%)")
    typer.echo(f"  Available:     {available}")
    if progress.next_vest_date:
        typer.echo(f"  Next vest:     {progress.next_vest_shares} on {progress.next_vest_date.isoformat()}")

    table = Table(title="Tranches")
    table.add_column("#", justify="right")
    table.add_column("Vest date")
    table.add_column("Shares", justify="right")
    table.add_column("Vested")
    table.add_column("Price", justify="right")
    for i, tranche in enumerate(grant.tranches, start=1):
        table.add_row(
            str(i), tranche.vest_date.isoformat(), str(tranche.shares),
            "yes" if tranche.vested else "", _fmt(tranche.vested_price),
        )
    console = Console()
    console.print(table)
    if sales:
        _print_sales(console, sales)


@grant_app.command("update")
def grant_update(
    ctx: typer.Context,
    grant_id: str = typer.Argument(...),
    symbol: str | None = typer.Option(None, "--symbol"),
    company: str | None = typer.Option(None, "--company"),
    name: str | None = typer.Option(None, "--name"),
    notes: str | None = typer.Option(None, "--notes"),
    grant_date: str | None = typer.Option(None, "--date", help="New grant date (regenerates the schedule)"),
    shares: int | None = typer.Option(None, "--shares", help="New total shares (regenerates the schedule)"),
    value: str | None = typer.Option(None, "--value", help="New total grant value"),
    as_of: str | None = typer.Option(None, "--as-of", help="Vest regenerated tranches due on or before this date"),
) -> None:
    """Edit a grant's details."""
    with _services(ctx) as svc:
        grant = svc.ledger.update_grant(
            svc.user,
            _resolve_grant_id(svc, grant_id),
            symbol=symbol,
            company=company,
            name=name,
            notes=notes,
            grant_date=_parse_date(grant_date),
            total_shares=shares,
            total_value=_parse_money(value, "--value") if value is not None else None,
            as_of=_parse_date(as_of, "--as-of"),
        )
    typer.echo(f"Updated grant {grant.id}")
    typer.echo(f"  {grant.total_shares} {grant.symbol} shares over {len(grant.tranches)} tranches ({grant.plan_id})")


@grant_app.command("cancel")
def grant_cancel(ctx: typer.Context, grant_id: str = typer.Argument(...)) -> None:
    """Mark a grant cancelled."""
    with _services(ctx) as svc:
        grant = svc.ledger.cancel_grant(svc.user, _resolve_grant_id(svc, grant_id))
    typer.echo(f"Cancelled grant {grant.id}")


@grant_app.command("delete")
def grant_delete(
    ctx: typer.Context,
    grant_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a grant and all of its sales."""
    with _services(ctx) as svc:
        full_id = _resolve_grant_id(svc, grant_id)
        svc.ledger.get_grant(svc.user, full_id)
        if not yes and not typer.confirm(f"Delete grant {full_id} and its sales?"):
            raise typer.Exit(0)
        svc.ledger.delete_grant(svc.user, full_id)
    typer.echo(f"Deleted grant {full_id}")


@grant_app.command("change-plan")
def grant_change_plan(
    ctx: typer.Context,
    grant_id: str = typer.Argument(...),
    plan_id: str = typer.Argument(..., help="New vesting plan id"),
    as_of: str | None = typer.Option(None, "--as-of"),
    revest: bool = typer.Option(
        True, "--revest/--no-revest", help="Vest new tranches already past due"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Regenerate a grant's schedule under another plan."""
    as_of_date = _parse_date(as_of, "--as-of") or date.today()
    with _services(ctx) as svc:
        full_id = _resolve_grant_id(svc, grant_id)
        preview = svc.ledger.preview_plan_change(svc.user, full_id, plan_id, as_of_date)
        typer.echo(f"Plan change {preview.current_plan_id} -> {preview.new_plan_id}")
        typer.echo(f"  Vested now:        {preview.vested_shares_unchanged}")
        typer.echo(f"  Unvested now:      {preview.unvested_shares}")
        typer.echo(f"  Periods:           {preview.periods_kept + preview.periods_replaced} -> {preview.new_periods}")
        typer.echo(f"  Vested after:      {preview.projected_vested_shares if revest else preview.vested_shares_unchanged}")
        if not preview.can_change:
            typer.echo(f"Error: {preview.reason}", err=True)
            raise typer.Exit(1)
        if not yes and not typer.confirm("Apply this plan change?"):
            raise typer.Exit(0)
        result = svc.ledger.change_plan(
            svc.user, full_id, plan_id, as_of=as_of_date, revest_past_due=revest
        )
    typer.echo(
        f"Moved grant {result.grant_id} to {result.new_plan_id}: "
        f"vested {result.original_vested_shares} -> {result.new_vested_shares}"
    )


# --- Sales ---


def _print_tax(result: TaxResult) -> None:
    term = "long-term" if result.is_long_term else "short-term"
    typer.echo(f"  Sale value:        {_fmt(result.sale_value)}")
    typer.echo(f"  Original value:    {_fmt(result.original_value)}")
    typer.echo(f"  Profit:            {_fmt(result.profit)}")
    typer.echo(f"  Holding period:    {result.holding_period_days} days ({term})")
    typer.echo(f"  Wage income tax:   {_fmt(result.wage_income_tax)}")
    typer.echo(f"  Capital gains tax: {_fmt(result.capital_gains_tax)}")
    typer.echo(f"  Total tax:         {_fmt(result.total_tax)} ({result.effective_tax_rate}%)")
    typer.echo(f"  Net value:         {_fmt(result.net_value)}")


def _print_sales(console: Console, sales) -> None:
    table = Table(title="Sales")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Date")
    table.add_column("Shares", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Total tax", justify="right")
    table.add_column("Net", justify="right")
    for sale in sales:
        table.add_row(
            sale.id[:8], sale.sale_date.isoformat(), str(sale.shares),
            _fmt(sale.price_per_share), _fmt(sale.tax.total_tax), _fmt(sale.tax.net_value),
        )
    console.print(table)


@sale_app.command("preview")
def sale_preview(
    ctx: typer.Context,
    grant_id: str = typer.Argument(...),
    shares: int = typer.Option(..., "--shares"),
    price: str = typer.Option(..., "--price", help="Sale price per share"),
    sale_date: str | None = typer.Option(None, "--date", help="Sale date (default today)"),
) -> None:
    """Show the tax on a hypothetical sale."""
    with _services(ctx) as svc:
        result = svc.ledger.preview_sale(
            svc.user,
            _resolve_grant_id(svc, grant_id),
            shares,
            _parse_money(price, "--price"),
            _parse_date(sale_date) or date.today(),
        )
    typer.echo("Sale preview")
    _print_tax(result)


@sale_app.command("record")
def sale_record(
    ctx: typer.Context,
    grant_id: str = typer.Argument(...),
    shares: int = typer.Option(..., "--shares"),
    price: str = typer.Option(..., "--price", help="Sale price per share"),
    sale_date: str | None = typer.Option(None, "--date", help="Sale date (default today)"),
    notes: str | None = typer.Option(None, "--notes"),
) -> None:
    """Record a sale and store its tax result."""
    with _services(ctx) as svc:
        sale = svc.ledger.record_sale(
            svc.user,
            _resolve_grant_id(svc, grant_id),
            shares,
            _parse_money(price, "--price"),
            _parse_date(sale_date) or date.today(),
            notes=notes,
        )
    typer.echo(f"Recorded sale {sale.id}")
    _print_tax(sale.tax)


@sale_app.command("delete")
def sale_delete(ctx: typer.Context, sale_id: str = typer.Argument(...)) -> None:
    """Delete a recorded sale."""
    with _services(ctx) as svc:
        svc.ledger.delete_sale(svc.user, sale_id)
    typer.echo(f"Deleted sale {sale_id}")


@sale_app.command("list")
def sale_list(
    ctx: typer.Context,
    grant_id: str | None = typer.Option(None, "--grant"),
    year: int | None = typer.Option(None, "--year"),
) -> None:
    """List recorded sales."""
    with _services(ctx) as svc:
        full_id = _resolve_grant_id(svc, grant_id) if grant_id else None
        sales = svc.ledger.list_sales(svc.user, grant_id=full_id, year=year)
    if not sales:
        typer.echo("No sales found.")
        return
    _print_sales(Console(), sales)


# --- Prices ---


@price_app.command("set")
def price_set(
    ctx: typer.Context,
    symbol: str = typer.Argument(...),
    price: str = typer.Argument(..., help="Price per share"),
    price_date: str | None = typer.Option(None, "--date", help="Price date (default today)"),
) -> None:
    """Store a price for a symbol on a date, replacing any existing one."""
    with _services(ctx) as svc:
        record = svc.prices.upsert(
            symbol, _parse_date(price_date) or date.today(), _parse_money(price, "PRICE")
        )
    typer.echo(f"{record.symbol} {record.date.isoformat()}: {_fmt(record.price)}")


@price_app.command("import")
def price_import(
    ctx: typer.Context,
    symbol: str = typer.Argument(...),
    file: Path = typer.Argument(..., help="CSV with date,price or date,open,high,low,close,volume"),
) -> None:
    """Import a price history CSV."""
    if not file.exists():
        typer.echo(f"Error: File not found: {file}", err=True)
        raise typer.Exit(1)
    with _services(ctx) as svc:
        count = svc.prices.import_csv(file, symbol)
    typer.echo(f"Imported {count} prices for {symbol.upper()}")


@price_app.command("show")
def price_show(
    ctx: typer.Context,
    symbol: str = typer.Argument(...),
    price_date: str | None = typer.Option(None, "--date", help="Look up the price on this date"),
) -> None:
    """Show the price in effect on a date (latest price when no date is given)."""
    with _services(ctx) as svc:
        on_date = _parse_date(price_date)
        if on_date is None:
            record = svc.prices.get_latest_record(symbol)
        else:
            record = svc.prices.get_record_on_date(symbol, on_date)
    suffix = "" if on_date is None or record.date == on_date else f" (from {record.date.isoformat()})"
    typer.echo(f"{record.symbol}: {_fmt(record.price)}{suffix}")


@price_app.command("history")
def price_history(
    ctx: typer.Context,
    symbol: str = typer.Argument(...),
    start: str | None = typer.Option(None, "--start"),
    end: str | None = typer.Option(None, "--end"),
) -> None:
    """List stored prices for a symbol."""
    with _services(ctx) as svc:
        records = svc.prices.get_price_history(
            symbol, _parse_date(start, "--start"), _parse_date(end, "--end")
        )
    if not records:
        typer.echo(f"No prices stored for {symbol.upper()}.")
        return
    table = Table(title=f"{symbol.upper()} prices")
    table.add_column("Date")
    table.add_column("Price", justify="right")
    table.add_column("Source")
    for record in records:
        table.add_row(record.date.isoformat(), _fmt(record.price), record.source.value)
    Console().print(table)


# --- Vesting, timeline, diagnostics ---


@vest_app.callback(invoke_without_command=True)
def vest(
    ctx: typer.Context,
    as_of: str | None = typer.Option(None, "--as-of", help="Evaluation date (default today)"),
    all_users: bool = typer.Option(False, "--all-users", help="Process every user's grants"),
) -> None:
    """Vest every tranche that has reached its vest date."""
    if ctx.invoked_subcommand is not None:
        return
    with _services(ctx) as svc:
        summary = svc.ledger.process_vesting(
            _parse_date(as_of, "--as-of"), user_id=None if all_users else svc.user
        )
    typer.echo(
        f"Vested {summary.shares_vested} shares in {summary.tranches_vested} tranches "
        f"across {summary.grants_affected} grants ({summary.grants_completed} fully vested)"
    )
    for event in summary.events:
        typer.echo(f"  {event.vest_date.isoformat()} {event.symbol} {event.shares} @ {_fmt(event.vested_price)}")


@vest_app.command("calendar")
def vest_calendar(
    ctx: typer.Context,
    as_of: str | None = typer.Option(None, "--as-of"),
    months: int = typer.Option(12, "--months", help="Months to look ahead"),
) -> None:
    """Upcoming vest events grouped by month."""
    with _services(ctx) as svc:
        calendar = svc.ledger.vesting_calendar(svc.user, _parse_date(as_of, "--as-of"), months)
    if not calendar:
        typer.echo("No upcoming vesting.")
        return

    table = Table(title="Vesting calendar")
    table.add_column("Month")
    table.add_column("Date")
    table.add_column("Symbol")
    table.add_column("Shares", justify="right")
    table.add_column("Est. value", justify="right")
    for entry in calendar:
        for event in entry.events:
            table.add_row(
                entry.month_key, event.vest_date.isoformat(), event.symbol,
                str(event.shares), _fmt(event.estimated_value),
            )
        table.add_row(
            "", "", "total", str(entry.total_shares), _fmt(entry.total_estimated_value), end_section=True
        )
    Console().print(table)


def _print_statistics(stats: VestingStatistics) -> None:
    typer.echo(f"  Grants:            {stats.total_grants}")
    typer.echo(f"  Shares:            {stats.total_shares} ({stats.vested_shares} vested, "
               f"{stats.unvested_shares} unvested, {stats.overall_progress}%)")
    typer.echo(f"  Original value:    {_fmt(stats.total_original_value)}")
    typer.echo(f"  Current value:     {_fmt(stats.total_current_value)}")
    typer.echo(f"  Gain/loss:         {_fmt(stats.gain_loss)} ({stats.gain_loss_percent}%)")
    typer.echo(f"  Vested value:      {_fmt(stats.estimated_vested_value)}")
    if stats.next_vest_date:
        typer.echo(f"  Next vest:         {stats.next_vest_date.isoformat()}")
    if stats.unpriced_symbols:
        typer.echo(f"  No stored price for {', '.join(stats.unpriced_symbols)}; valued at grant price")


@vest_app.command("stats")
def vest_stats(
    ctx: typer.Context,
    as_of: str | None = typer.Option(None, "--as-of"),
) -> None:
    """Vesting progress and valuation across all grants."""
    with _services(ctx) as svc:
        stats = svc.ledger.vesting_statistics(svc.user, _parse_date(as_of, "--as-of"))
    typer.echo(f"=== Vesting as of {stats.as_of.isoformat()} ===")
    _print_statistics(stats)
    for event in stats.upcoming:
        typer.echo(f"    {event.vest_date.isoformat()} {event.symbol} {event.shares} (~{_fmt(event.estimated_value)})")


@app.command()
def summary(
    ctx: typer.Context,
    as_of: str | None = typer.Option(None, "--as-of"),
) -> None:
    """Portfolio value, sellable shares after tax and recent sales."""
    with _services(ctx) as svc:
        result = svc.ledger.portfolio_summary(svc.user, _parse_date(as_of, "--as-of"))
    typer.echo(f"=== Portfolio as of {result.as_of.isoformat()} ===")
    _print_statistics(result.vesting)
    typer.echo(f"  Available shares:  {result.available_shares} ({_fmt(result.available_value)})")
    typer.echo(f"  Estimated tax:     {_fmt(result.estimated_tax_liability)}")
    typer.echo(f"  Liquid after tax:  {_fmt(result.vested_liquid_value)}")
    last = f", last on {result.last_sale_date.isoformat()}" if result.last_sale_date else ""
    typer.echo(f"  Recent sales:      {result.recent_sales_count} (net {_fmt(result.recent_net_proceeds)}{last})")


@app.command()
def timeline(
    ctx: typer.Context,
    timeframe: Timeframe = typer.Option(Timeframe.ONE_YEAR, "--timeframe", "-t"),
    as_of: str | None = typer.Option(None, "--as-of"),
    start: str | None = typer.Option(None, "--start", help="First month (YYYY-MM-DD)"),
    end: str | None = typer.Option(None, "--end", help="Last month (YYYY-MM-DD)"),
    as_json: bool = typer.Option(False, "--json", help="Print points as JSON"),
) -> None:
    """Month-by-month portfolio value, tax liability and net value."""
    with _services(ctx) as svc:
        points = svc.timeline.generate_portfolio_timeline(
            svc.user,
            timeframe=timeframe,
            as_of=_parse_date(as_of, "--as-of"),
            start=_parse_date(start, "--start"),
            end=_parse_date(end, "--end"),
        )
    if as_json:
        typer.echo(json.dumps([p.model_dump(mode="json") for p in points], indent=2))
        return

    table = Table(title="Portfolio timeline")
    table.add_column("Month")
    table.add_column("Shares", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("Tax", justify="right")
    table.add_column("Net", justify="right")
    table.add_column("Events", justify="right")
    for point in points:
        month = point.month_key if point.is_historical else f"{point.month_key}*"
        value = _fmt(point.total_value) + (" ?" if point.price_unknown else "")
        table.add_row(
            month, str(point.total_shares), value, _fmt(point.total_tax_liability),
            _fmt(point.total_net_value), str(len(point.events)),
        )
    Console().print(table)
    typer.echo("* projected   ? price unknown for some grants")


@app.command()
def validate(
    ctx: typer.Context,
    as_of: str | None = typer.Option(None, "--as-of"),
    timeframe: Timeframe = typer.Option(Timeframe.ALL, "--timeframe", "-t"),
) -> None:
    """Check stored grants, sales and the timeline for inconsistencies."""
    as_of_date = _parse_date(as_of, "--as-of") or date.today()
    with _services(ctx) as svc:
        integrity = svc.timeline.validate_integrity(svc.user, as_of_date)
        points = svc.timeline.generate_portfolio_timeline(svc.user, timeframe=timeframe, as_of=as_of_date)
        check = svc.timeline.validate_timeline(points)

    typer.echo(f"Checked {integrity.grants_checked} grants, {integrity.sales_checked} sales, {check.points} months")
    for message in integrity.errors + check.errors:
        typer.echo(f"  ERROR   {message}")
    for message in integrity.warnings + check.warnings:
        typer.echo(f"  WARNING {message}")
    if not (integrity.is_valid and check.is_valid):
        raise typer.Exit(1)
    typer.echo("OK")


# --- Tax ---


@tax_app.command("summary")
def tax_summary(ctx: typer.Context, year: int = typer.Argument(..., help="Calendar year")) -> None:
    """Totals for sales in a calendar year."""
    with _services(ctx) as svc:
        summary = svc.ledger.tax.annual_summary(svc.ledger.list_sales(svc.user, year=year), year)
        payments = svc.ledger.tax.quarterly_payments(summary)

    typer.echo(f"=== Sales Tax Summary: {year} ===")
    typer.echo(f"  Sales:             {summary.sales_count} ({summary.long_term_sales} long-term, "
               f"{summary.short_term_sales} short-term)")
    typer.echo(f"  Shares sold:       {summary.shares_sold}")
    typer.echo(f"  Sale value:        {_fmt(summary.sale_value)}")
    typer.echo(f"  Profit:            {_fmt(summary.profit)}")
    typer.echo(f"  Wage income tax:   {_fmt(summary.wage_income_tax)}")
    typer.echo(f"  Capital gains tax: {_fmt(summary.capital_gains_tax)}")
    typer.echo(f"  Total tax:         {_fmt(summary.total_tax)} ({summary.effective_tax_rate}%)")
    typer.echo(f"  Net value:         {_fmt(summary.net_value)}")
    for line in summary.monthly:
        typer.echo(f"    {year}-{line.month:02d}: {line.sales} sales, tax {_fmt(line.total_tax)}")
    if payments:
        typer.echo("  Estimated payments:")
        for payment in payments:
            typer.echo(f"    {payment.quarter} due {payment.due_date.isoformat()}: {_fmt(payment.amount)}")


@tax_app.command("grant")
def tax_grant(
    ctx: typer.Context,
    grant_id: str = typer.Argument(...),
    price: str | None = typer.Option(None, "--price", help="Current price (default: latest stored)"),
    as_of: str | None = typer.Option(None, "--as-of"),
) -> None:
    """Realized and unrealized tax for one grant."""
    as_of_date = _parse_date(as_of, "--as-of") or date.today()
    with _services(ctx) as svc:
        grant = svc.ledger.get_grant(svc.user, _resolve_grant_id(svc, grant_id))
        sales = svc.ledger.list_sales(svc.user, grant_id=grant.id)
        if price is not None:
            current = _parse_money(price, "--price")
        else:
            try:
                current = svc.prices.get_price_on_date(grant.symbol, as_of_date)
            except DataUnavailableError:
                typer.echo(f"No stored price for {grant.symbol}; unrealized tax skipped", err=True)
                current = None
        summary = svc.ledger.tax.grant_tax_summary(grant, sales, as_of_date, current)

    typer.echo(f"=== Grant {grant.id} ({grant.symbol}) ===")
    typer.echo(f"  Sales:             {summary.sales_count} ({summary.shares_sold} shares)")
    typer.echo(f"  Realized tax:      {_fmt(summary.realized_total_tax)} ({summary.realized_effective_tax_rate}%)")
    typer.echo(f"  Realized net:      {_fmt(summary.realized_net_value)}")
    typer.echo(f"  Held vested:       {summary.remaining_vested_shares}")
    if summary.unrealized:
        u = summary.unrealized
        term = "long-term" if u.is_long_term else "short-term"
        typer.echo(f"  Unrealized value:  {_fmt(u.current_value)} at {_fmt(u.price_per_share)}")
        typer.echo(f"  Unrealized tax:    {_fmt(u.total_tax)} ({term})")
        typer.echo(f"  Unrealized net:    {_fmt(u.net_value)}")


@tax_app.command("timing")
def tax_timing(
    ctx: typer.Context,
    grant_id: str = typer.Argument(...),
    shares: int = typer.Option(..., "--shares"),
    price: str = typer.Option(..., "--price"),
    as_of: str | None = typer.Option(None, "--as-of"),
) -> None:
    """Compare selling now with waiting for the long-term rate."""
    as_of_date = _parse_date(as_of, "--as-of") or date.today()
    with _services(ctx) as svc:
        grant = svc.ledger.get_grant(svc.user, _resolve_grant_id(svc, grant_id))
        rec = svc.ledger.tax.long_term_timing(grant, shares, _parse_money(price, "--price"), as_of_date)

    typer.echo(f"Long-term from:      {rec.long_term_date.isoformat()} ({rec.days_until_long_term} days)")
    typer.echo(f"  Sell now:          tax {_fmt(rec.sell_now_total_tax)}, net {_fmt(rec.sell_now_net_value)}")
    typer.echo(f"  Wait:              tax {_fmt(rec.wait_total_tax)}, net {_fmt(rec.wait_net_value)}")
    typer.echo(rec.recommendation)


if __name__ == "__main__":
    app()
