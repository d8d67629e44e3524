"""CLI for Trip Expenses."""

import logging
import sys
from collections.abc import Callable
from decimal import Decimal

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .engine import SettlementEngine, build_engine
from .models import ExpenseRecord, RateTable, WriteResult, WriteStatus
from .settlement import (
    aggregate_total,
    convert_to_reference,
    per_person_share,
    to_display_units,
)
from .sync import PollingWatcher
from .ui import confirm_removal, select_member_interactive

app = typer.Typer(
    name="trip-expenses",
    help="Track shared trip expenses and settle them in one currency",
)

console = Console()

CURRENCY_SYMBOLS = {"HKD": "HK$", "JPY": "¥"}


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Downgrade httpx logging to DEBUG (network requests are too noisy at INFO)
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def format_money(amount: Decimal | int, currency: str) -> str:
    """Format an amount with its currency symbol, e.g. ``HK$ 1,234``."""
    symbol = CURRENCY_SYMBOLS.get(str(currency), str(currency))
    return f"{symbol} {amount:,}"


def _open_engine() -> SettlementEngine:
    """Load settings and build the engine, announcing demo mode."""
    settings = load_settings()
    engine = build_engine(settings)
    if engine.is_demo:
        console.print(
            "[yellow]Demo mode: no store configured, changes are not saved.[/yellow]"
        )
    return engine


def _fail(error: Exception, verbose: bool):
    console.print(f"\n[bold red]Error:[/bold red] {error}")
    if verbose:
        raise error
    sys.exit(1)


def _report(result: WriteResult, action: str):
    """Print the outcome of a write; exit non-zero when it did not go through."""
    if result.status is WriteStatus.APPLIED:
        console.print(f"[bold green]✓ Expense {action}[/bold green]")
        if result.record is not None:
            console.print(f"[dim]ID: {result.record.id}[/dim]")
    elif result.status in (WriteStatus.NOOP, WriteStatus.CANCELLED):
        console.print(f"[yellow]{result.message}[/yellow]")
    else:
        console.print(f"[bold red]✗ Not {action}:[/bold red] {result.message}")
        sys.exit(1)


def display_expenses(records: list[ExpenseRecord], rates: RateTable):
    """Display expenses in a table, with reference-currency values."""
    reference = rates.reference.value
    table = Table(title="Expenses", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Date", width=10)
    table.add_column("Title", style="cyan")
    table.add_column("Category", style="yellow")
    table.add_column("Payer")
    table.add_column("Amount", justify="right")
    table.add_column(reference, justify="right")
    table.add_column("Split", justify="center")
    table.add_column("Each", justify="right")

    for record in records:
        value = convert_to_reference(record.amount, record.currency, rates)
        spent = record.spent_on or record.created_at.date()
        table.add_row(
            record.id,
            spent.isoformat(),
            record.title,
            record.category or "",
            record.payer,
            format_money(record.amount, str(record.currency)),
            f"~ {format_money(to_display_units(value), reference)}",
            str(record.split_count),
            format_money(to_display_units(per_person_share(record, rates)), reference),
        )

    console.print(table)
    total = aggregate_total(records, rates)
    console.print(
        f"  {len(records)} expenses, total "
        f"[bold]{format_money(to_display_units(total), reference)}[/bold]"
    )


def _resolve_payer(engine: SettlementEngine, payer: str | None) -> str | None:
    """Use the given payer, or ask for one when members are configured."""
    if payer:
        return payer
    if engine.members:
        return select_member_interactive(engine.members)
    return None


@app.command("list")
def list_expenses(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List the trip's expenses, newest first."""
    setup_logging(verbose)

    try:
        with _open_engine() as engine:
            display_expenses(engine.list_expenses(), engine.rates)
    except Exception as e:
        _fail(e, verbose)


@app.command()
def add(
    title: str = typer.Option(..., "--title", "-t", help="What the expense was"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount paid"),
    currency: str = typer.Option("JPY", "--currency", "-c", help="Currency paid in"),
    payer: str | None = typer.Option(None, "--payer", "-p", help="Who paid"),
    split: int = typer.Option(1, "--split", "-s", help="Number of people sharing"),
    category: str | None = typer.Option(None, "--category", help="Category label"),
    spent_on: str | None = typer.Option(None, "--date", help="Date (YYYY-MM-DD)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a new expense."""
    setup_logging(verbose)

    try:
        with _open_engine() as engine:
            resolved_payer = _resolve_payer(engine, payer)
            if resolved_payer is None:
                console.print("[yellow]No payer given; nothing saved.[/yellow]")
                sys.exit(1)

            result = engine.upsert(
                {
                    "title": title,
                    "amount": amount,
                    "currency": currency,
                    "payer": resolved_payer,
                    "split_count": split,
                    "category": category,
                    "spent_on": spent_on,
                }
            )
            _report(result, "added")
    except Exception as e:
        _fail(e, verbose)


@app.command()
def edit(
    expense_id: str = typer.Argument(..., help="ID of the expense to edit"),
    title: str | None = typer.Option(None, "--title", "-t"),
    amount: str | None = typer.Option(None, "--amount", "-a"),
    currency: str | None = typer.Option(None, "--currency", "-c"),
    payer: str | None = typer.Option(None, "--payer", "-p"),
    split: int | None = typer.Option(None, "--split", "-s"),
    category: str | None = typer.Option(None, "--category"),
    spent_on: str | None = typer.Option(None, "--date"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Edit an expense.

    Fields not given keep their current values.
    """
    setup_logging(verbose)

    try:
        with _open_engine() as engine:
            engine.list_expenses()
            current = next((r for r in engine.records if r.id == expense_id), None)
            if current is None:
                console.print(
                    f"[yellow]Expense {expense_id} not found; nothing changed.[/yellow]"
                )
                return

            values = current.form_values()
            overrides = {
                "title": title,
                "amount": amount,
                "currency": currency,
                "payer": payer,
                "split_count": split,
                "category": category,
                "spent_on": spent_on,
            }
            values.update({k: v for k, v in overrides.items() if v is not None})

            _report(engine.upsert(values, existing_id=expense_id), "updated")
    except Exception as e:
        _fail(e, verbose)


@app.command()
def remove(
    expense_id: str = typer.Argument(..., help="ID of the expense to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete an expense (asks for confirmation)."""
    setup_logging(verbose)

    confirm: Callable[[ExpenseRecord], bool] = (
        (lambda record: True) if yes else confirm_removal
    )

    try:
        with _open_engine() as engine:
            engine.list_expenses()
            _report(engine.remove(expense_id, confirm), "deleted")
    except Exception as e:
        _fail(e, verbose)


@app.command()
def summary(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show trip totals, per-currency totals and what each member paid."""
    setup_logging(verbose)

    try:
        with _open_engine() as engine:
            engine.list_expenses()
            trip = engine.summary()
    except Exception as e:
        _fail(e, verbose)
        return

    reference = trip.reference_currency.value
    console.print(f"\n[bold]Trip {engine.trip_id}[/bold]")
    console.print(
        f"  Total spent: [bold]"
        f"{format_money(to_display_units(trip.total), reference)}[/bold]"
    )
    for code, raw_total in trip.currency_totals.items():
        console.print(f"  Paid in {code}: {format_money(raw_total, code)}")
    console.print(
        f"  Per member: "
        f"{format_money(to_display_units(trip.average_per_member), reference)}"
    )

    table = Table(title="Paid by member", show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column(reference, justify="right")
    for member, paid in sorted(trip.paid_by_member.items(), key=lambda item: -item[1]):
        table.add_row(member, format_money(to_display_units(paid), reference))
    console.print()
    console.print(table)


@app.command()
def watch(
    interval: float | None = typer.Option(
        None, "--interval", "-i", help="Seconds between polls"
    ),
    count: int | None = typer.Option(
        None, "--count", "-n", help="Stop after this many polls"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Follow the expense list, redisplaying it whenever the store changes."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        with build_engine(settings) as engine:
            watcher = PollingWatcher(engine, interval or settings.poll_interval)
            display_expenses(engine.list_expenses(), engine.rates)
            console.print("[dim]Watching for changes, Ctrl+C to stop...[/dim]")
            watcher.run(
                on_change=lambda records: display_expenses(records, engine.rates),
                max_polls=count,
            )
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
    except Exception as e:
        _fail(e, verbose)


if __name__ == "__main__":
    app()
