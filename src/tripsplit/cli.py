"""CLI for tripsplit using Typer."""

import logging
import sys
from decimal import Decimal
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import breakdown
from .calculator import ItemizedCalculator
from .config import load_settings
from .currency import format_amount
from .exceptions import InvalidExpenseError, TripSplitError
from .models import (
    Expense,
    ItemizedResult,
    ReceiptInput,
    SettlementResult,
    TransferBreakdown,
    TripInput,
    ValidationIssue,
)
from .settlement import SettlementAggregator

app = typer.Typer(
    name="tripsplit",
    help="Split shared trip expenses and compute who pays whom",
)

console = Console()


def setup_logging(verbose: bool = False, level: str = "INFO"):
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def load_input(path: Path, model):
    """
    Parse a JSON input file into a model.

    Raises:
        InvalidExpenseError: If the file is not valid for the model
    """
    try:
        return model.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise InvalidExpenseError(f"Invalid input file {path}:\n{e}") from e


def format_money(amount: Decimal, currency: str, use_color: bool = True) -> str:
    """
    Format money in accounting style.

    Negative amounts use parentheses: (85.02)
    """
    formatted = format_amount(abs(amount), currency)
    if amount < 0:
        return f"([red]{formatted}[/red])" if use_color else f"({formatted})"
    return f" [green]{formatted}[/green] " if use_color else f" {formatted} "


def display_issues(issues: list[ValidationIssue]):
    """Print errors and warnings, if any."""
    for issue in issues:
        style = "red" if issue.blocking else "yellow"
        label = "Error" if issue.blocking else "Warning"
        console.print(
            f"[{style}]{label} {escape(f'[{issue.code.value}]')}[/{style}] "
            f"{escape(issue.message)}"
        )


def display_settlement(result: SettlementResult, show_categories: bool = False):
    """Display balances and transfers in table format."""
    currency = result.base_currency

    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("Person", style="cyan")
    table.add_column("Paid", justify="right")
    table.add_column("Owed", justify="right")
    table.add_column("Net", justify="right")
    for summary in result.person_summaries.values():
        table.add_row(
            summary.user_id,
            format_amount(summary.total_paid_base, currency),
            format_amount(summary.total_owed_base, currency),
            format_money(summary.net_base, currency),
        )
    console.print(table)

    if result.transfers:
        transfers = Table(
            title=f"Transfers ({result.strategy})",
            show_header=True,
            header_style="bold magenta",
        )
        transfers.add_column("From", style="cyan")
        transfers.add_column("To", style="cyan")
        transfers.add_column("Amount", justify="right")
        for transfer in result.transfers:
            transfers.add_row(
                transfer.from_user_id,
                transfer.to_user_id,
                format_amount(transfer.amount_base, currency),
            )
        console.print(transfers)
    else:
        console.print("[green]Everyone is settled up.[/green]")

    if show_categories and result.category_spending:
        categories = Table(
            title="Spending by Category", show_header=True, header_style="bold magenta"
        )
        categories.add_column("Person", style="cyan")
        categories.add_column("Category", style="yellow")
        categories.add_column("Amount", justify="right")
        for spending in result.category_spending.values():
            for category in spending.category_breakdown:
                categories.add_row(
                    spending.user_id,
                    category.category_name,
                    format_amount(category.amount, currency),
                )
        console.print(categories)

    display_issues(result.issues)


def display_breakdown(explained: TransferBreakdown, currency: str):
    """Display the expenses behind one transfer."""
    table = Table(
        title=(
            f"{explained.from_user_id} -> {explained.to_user_id}: "
            f"{format_amount(explained.total_amount, currency)}"
        ),
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Expense", style="cyan")
    table.add_column(f"{explained.from_user_id} paid", justify="right")
    table.add_column(f"{explained.from_user_id} owes", justify="right")
    table.add_column(f"{explained.to_user_id} paid", justify="right")
    table.add_column(f"{explained.to_user_id} owes", justify="right")
    table.add_column("Net", justify="right")

    for row in explained.relevant_breakdowns:
        table.add_row(
            escape(row.description or row.expense_id),
            format_amount(row.from_paid, currency),
            format_amount(row.from_owes, currency),
            format_amount(row.to_paid, currency),
            format_amount(row.to_owes, currency),
            format_money(row.net_contribution, currency),
        )
    console.print(table)

    net = explained.net_contribution
    if net != explained.total_amount:
        # Greedy transfers can pair people who share no expense
        console.print(
            f"  [yellow]Direct expenses account for {format_amount(net, currency)} "
            f"of this transfer[/yellow]"
        )


def explain_transfers(result: SettlementResult, expenses: list[Expense]):
    """Print a per-expense breakdown for every transfer."""
    for transfer in result.transfers:
        explained = breakdown.calculate(
            transfer.from_user_id, transfer.to_user_id, transfer.amount_base, expenses
        )
        display_breakdown(explained, result.base_currency)


def display_itemized(result: ItemizedResult, currency: str):
    """Display the per-participant breakdown of a receipt."""
    table = Table(title="Receipt Split", show_header=True, header_style="bold magenta")
    table.add_column("Person", style="cyan")
    for column in ("Items", "Discounts", "Tax", "Fees", "Tip", "Rounding", "Total"):
        table.add_column(column, justify="right")

    for breakdown in result.participant_breakdown.values():
        table.add_row(
            breakdown.user_id,
            format_amount(breakdown.items_subtotal, currency),
            format_amount(breakdown.discounts, currency),
            format_amount(breakdown.tax, currency),
            format_amount(breakdown.fees, currency),
            format_amount(breakdown.tip, currency),
            str(breakdown.rounding_adjustment.normalize()),
            format_amount(breakdown.total, currency),
        )
    console.print(table)

    console.print(f"  Grand total: {format_amount(result.grand_total, currency)} {currency}")
    if result.remainder_recipient:
        console.print(
            f"  Rounding remainder {result.remainder} assigned to "
            f"{result.remainder_recipient}"
        )
    display_issues(result.issues)


@app.command()
def settle(
    trip_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Trip JSON file"
    ),
    strategy: str = typer.Option(
        None, "--strategy", "-s", help="Transfer strategy: pairwise or greedy"
    ),
    categories: bool = typer.Option(
        False, "--categories", "-c", help="Show spending per category"
    ),
    explain: bool = typer.Option(
        False, "--explain", "-e", help="Show the expenses behind each transfer"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Compute balances and transfers for a trip.

    Exits with status 1 when the settlement has blocking issues.
    """
    try:
        settings = load_settings()
        setup_logging(verbose, "WARNING" if json_output else settings.log_level)

        trip = load_input(trip_file, TripInput)
        aggregator = SettlementAggregator(settings)
        result = aggregator.compute(
            trip_id=trip.trip_id,
            expenses=trip.expenses,
            base_currency=trip.base_currency,
            participants=trip.participants or None,
            categories=trip.categories if categories else None,
            strategy=strategy,
        )
    except TripSplitError as e:
        console.print(f"\n[bold red]Error:[/bold red] {escape(str(e))}")
        if verbose:
            raise
        sys.exit(1)

    if json_output:
        typer.echo(result.model_dump_json(indent=2))
    else:
        display_settlement(result, show_categories=categories)
        if explain:
            explain_transfers(result, trip.expenses)

    if not result.is_valid:
        sys.exit(1)


@app.command()
def itemize(
    receipt_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Receipt JSON file"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Split an itemized receipt across participants.

    Exits with status 1 when the receipt has blocking issues.
    """
    try:
        settings = load_settings()
        setup_logging(verbose, "WARNING" if json_output else settings.log_level)

        receipt = load_input(receipt_file, ReceiptInput)
        calculator = ItemizedCalculator(settings)
        result = calculator.calculate(
            items=receipt.items,
            extras=receipt.extras,
            allocation=receipt.allocation,
            participants=receipt.participants,
            payer_id=receipt.payer_user_id,
            currency=receipt.currency,
            seed=receipt.seed,
        )
    except TripSplitError as e:
        console.print(f"\n[bold red]Error:[/bold red] {escape(str(e))}")
        if verbose:
            raise
        sys.exit(1)

    if json_output:
        typer.echo(result.model_dump_json(indent=2))
    else:
        display_itemized(result, receipt.currency)

    if not result.is_valid:
        sys.exit(1)


if __name__ == "__main__":
    app()
