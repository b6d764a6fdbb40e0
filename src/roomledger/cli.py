"""CLI for RoomLedger using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .currencies import (
    Currency,
    currency_name,
    currency_symbol,
    parse_currency,
    quantize,
)
from .db import Database
from .exceptions import UnknownCurrencyError
from .models import BudgetPeriod, ExpenseCategory, MutationResult
from .service import LedgerService
from .ui import select_user_interactive

app = typer.Typer(
    name="roomledger",
    help="Split shared expenses with roommates and settle up",
)

console = Console()

STATIC_FALLBACK_NOTICE = "[yellow]Live rates unavailable, using static rates.[/yellow]"


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@contextmanager
def open_ledger(verbose: bool) -> Iterator[LedgerService]:
    """Load settings, open the ledger, and report any failure as a CLI error."""
    setup_logging(verbose)
    db = None
    service = None
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        service = LedgerService.from_settings(settings, db)
        yield service
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if service is not None:
            service.close()
        if db is not None:
            db.close()


def parse_amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation as e:
        raise typer.BadParameter(f"{value!r} is not a number") from e
    if not amount.is_finite():
        raise typer.BadParameter(f"{value!r} is not a number")
    return amount


def parse_currency_arg(value: str) -> Currency:
    try:
        return parse_currency(value)
    except UnknownCurrencyError as e:
        raise typer.BadParameter(str(e)) from e


def parse_currency_option(value: str | None) -> Currency | None:
    if value is None:
        return None
    return parse_currency_arg(value)


def resolve_user(service: LedgerService, user: str | None) -> str:
    user_id = user or service.settings.current_user_id
    if not user_id:
        console.print(
            "[bold red]Error:[/bold red] pass --user or set CURRENT_USER_ID"
        )
        sys.exit(1)
    return user_id


def report(result: MutationResult, message: str):
    """Print the outcome of a mutation; exit non-zero if it was rejected."""
    if not result.ok:
        console.print("[bold red]Rejected:[/bold red]")
        for error in result.errors:
            console.print(f"  • {error}")
        sys.exit(1)

    for warning in result.warnings:
        console.print(f"[yellow]⚠️  {warning}[/yellow]")
    console.print(f"[bold green]✓ {message}[/bold green]")


def format_money(amount: Decimal, currency: Currency, use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: ($85.02)
    Positive amounts have spaces:      $85.02
    """
    rounded = abs(quantize(amount, currency))
    symbol = currency_symbol(currency)
    if amount < 0 and rounded != 0:
        if use_color:
            return f"({symbol}[red]{rounded:,}[/red])"
        return f"({symbol}{rounded:,})"
    if use_color:
        return f" [green]{symbol}{rounded:,}[/green] "
    return f" {symbol}{rounded:,} "


# ============================================================================
# Directory
# ============================================================================


@app.command("add-user")
def add_user(
    user_id: str = typer.Argument(..., help="Short unique id, e.g. 'alice'"),
    name: str = typer.Argument(..., help="Display name"),
    email: str | None = typer.Option(None, "--email", help="Email address"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Add a person to the directory."""
    with open_ledger(verbose) as service:
        report(service.add_user(user_id, name, email), f"Added {name}")


@app.command("add-group")
def add_group(
    name: str = typer.Argument(..., help="Group name"),
    members: list[str] = typer.Option(..., "--member", "-m", help="Member user id"),
    group_id: str | None = typer.Option(None, "--id", help="Explicit group id"),
    user: str | None = typer.Option(None, "--user", "-u", help="Creating user"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create a group of members who share expenses."""
    with open_ledger(verbose) as service:
        fields = {"name": name, "members": members, "created_by": user}
        if group_id:
            fields["id"] = group_id
        result = service.add_group(**fields)
        report(result, f"Created group {name} ({result.value.id if result.ok else ''})")


# ============================================================================
# Expenses
# ============================================================================


@app.command("add-expense")
def add_expense(
    amount: str = typer.Argument(..., help="Total amount paid"),
    paid_by: str | None = typer.Option(
        None, "--paid-by", "-p", help="Payer (defaults to the current user)"
    ),
    split: list[str] = typer.Option(
        ..., "--split", "-s", help="User sharing the cost (repeat for each)"
    ),
    currency: str | None = typer.Option(None, "--currency", "-c", help="ISO code"),
    title: str = typer.Option("", "--title", "-t", help="Short description"),
    category: ExpenseCategory = typer.Option(
        ExpenseCategory.OTHER, "--category", case_sensitive=False
    ),
    group: str | None = typer.Option(None, "--group", "-g", help="Group id"),
    draft: bool = typer.Option(
        False, "--draft", help="Save without affecting balances"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a shared expense split equally between users."""
    value = parse_amount(amount)
    code = parse_currency_option(currency)
    with open_ledger(verbose) as service:
        payer = resolve_user(service, paid_by)
        result = service.add_expense(
            amount=value,
            currency=code or service.base_currency,
            paid_by=payer,
            split_between=split,
            title=title,
            category=category,
            group_id=group,
            is_draft=draft,
        )
        report(
            result,
            f"{'Drafted' if draft else 'Added'} expense "
            f"{result.value.id if result.ok else ''}",
        )


@app.command()
def publish(
    expense_id: str = typer.Argument(..., help="Draft expense id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Publish a draft expense so it counts toward balances."""
    with open_ledger(verbose) as service:
        report(service.publish_draft(expense_id), f"Published {expense_id}")


@app.command("delete-expense")
def delete_expense(
    expense_id: str = typer.Argument(..., help="Expense id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete an expense. Balances are recomputed on the next read."""
    with open_ledger(verbose) as service:
        report(service.delete_expense(expense_id), f"Deleted {expense_id}")


# ============================================================================
# Settling up
# ============================================================================


@app.command()
def settle(
    amount: str = typer.Argument(..., help="Amount paid"),
    to: str | None = typer.Option(
        None, "--to", help="Who was paid (prompts when omitted)"
    ),
    user: str | None = typer.Option(None, "--user", "-u", help="Who paid"),
    currency: str | None = typer.Option(None, "--currency", "-c", help="ISO code"),
    group: str | None = typer.Option(
        None, "--group", "-g", help="Settle within a group"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a payment that settles (part of) a balance."""
    value = parse_amount(amount)
    code = parse_currency_option(currency)
    with open_ledger(verbose) as service:
        payer = resolve_user(service, user)
        recipient = to
        if recipient is None:
            others = [u for u in service.repository.users if u.id != payer]
            recipient = select_user_interactive(others, prompt="Paid to: ")
            if recipient is None:
                console.print("[yellow]No recipient selected.[/yellow]")
                return

        result = service.record_settlement(
            payer, recipient, value, currency=code, group_id=group
        )
        report(result, f"Recorded payment from {payer} to {recipient}")


@app.command()
def balances(
    user: str | None = typer.Option(None, "--user", "-u", help="Whose balances"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show balances with each friend, each group, and overall."""
    with open_ledger(verbose) as service:
        user_id = resolve_user(service, user)
        base = service.base_currency

        table = Table(title="Friends", show_header=True, header_style="bold magenta")
        table.add_column("Friend", style="cyan")
        table.add_column("Balance", justify="right")
        table.add_column("Last activity", style="dim")
        for fb in service.get_friend_balances(user_id):
            table.add_row(
                fb.friend_name,
                format_money(fb.balance, base),
                (
                    fb.last_transaction.date().isoformat()
                    if fb.last_transaction
                    else "-"
                ),
            )
        console.print(table)

        group_views = service.get_group_balances(user_id)
        if group_views:
            table = Table(title="Groups", show_header=True, header_style="bold magenta")
            table.add_column("Group", style="cyan")
            table.add_column("Owed to you", justify="right")
            table.add_column("You owe", justify="right")
            table.add_column("Net", justify="right")
            for gb in group_views:
                table.add_row(
                    gb.group_name,
                    format_money(gb.total_owed, base),
                    format_money(-gb.total_owing, base),
                    format_money(gb.net_balance, base),
                )
            console.print(table)

        totals = service.get_total_balances(user_id)
        console.print("\n[bold]Totals:[/bold]")
        console.print(f"  Owed to you: {format_money(totals.total_owed, base)}")
        console.print(f"  You owe:     {format_money(-totals.total_owing, base)}")
        console.print(f"  Net:         {format_money(totals.net_balance, base)}")


@app.command()
def suggest(
    group: str | None = typer.Option(None, "--group", "-g", help="Limit to a group"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Suggest the fewest payments that would clear every balance."""
    with open_ledger(verbose) as service:
        transfers = service.suggest_settle_up(group)
        if not transfers:
            console.print("[green]Everyone is settled up.[/green]")
            return

        table = Table(title="Suggested payments", header_style="bold magenta")
        table.add_column("From", style="cyan")
        table.add_column("To", style="cyan")
        table.add_column("Amount", justify="right")
        for transfer in transfers:
            table.add_row(
                transfer.from_user_id,
                transfer.to_user_id,
                format_money(transfer.amount, service.base_currency),
            )
        console.print(table)


# ============================================================================
# Currency
# ============================================================================


@app.command()
def convert(
    amount: str = typer.Argument(..., help="Amount to convert"),
    from_currency: str = typer.Argument(..., help="Source currency"),
    to_currency: str = typer.Argument(..., help="Target currency"),
    live: bool = typer.Option(False, "--live", help="Fetch live rates first"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Convert an amount between currencies."""
    value = parse_amount(amount)
    src = parse_currency_arg(from_currency)
    dst = parse_currency_arg(to_currency)
    with open_ledger(verbose) as service:
        if live and not service.converter.refresh():
            console.print(STATIC_FALLBACK_NOTICE)
        result = service.convert(value, src, dst)
        console.print(
            f"{format_money(value, src, use_color=False).strip()} = "
            f"[bold]{format_money(result, dst, use_color=False).strip()}[/bold]"
        )


@app.command()
def rates(
    refresh: bool = typer.Option(False, "--refresh", help="Fetch live rates first"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List exchange rates against the base currency."""
    with open_ledger(verbose) as service:
        converter = service.converter
        if refresh and not converter.refresh():
            console.print(STATIC_FALLBACK_NOTICE)

        snapshot = converter.live_rates
        source = (
            f"live, fetched {snapshot.fetched_at:%Y-%m-%d %H:%M}"
            if snapshot
            else "static"
        )
        base = service.base_currency
        table = Table(
            title=f"Rates per 1 {base} ({source})", header_style="bold magenta"
        )
        table.add_column("Code", style="cyan")
        table.add_column("Currency")
        table.add_column("Rate", justify="right")
        for code in Currency:
            rate = converter.rate(base, code)
            table.add_row(code.value, currency_name(code), f"{rate:.4f}")
        console.print(table)


# ============================================================================
# Budgets
# ============================================================================


@app.command("add-budget")
def add_budget(
    category: ExpenseCategory = typer.Argument(..., case_sensitive=False),
    limit: str = typer.Argument(..., help="Spending limit"),
    period: BudgetPeriod = typer.Option(
        BudgetPeriod.MONTHLY, "--period", case_sensitive=False
    ),
    threshold: int = typer.Option(80, "--alert-at", help="Alert at this percent"),
    home: bool = typer.Option(False, "--home", help="Budget for home-country spending"),
    user: str | None = typer.Option(None, "--user", "-u", help="Budget owner"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create a spending budget for a category."""
    value = parse_amount(limit)
    with open_ledger(verbose) as service:
        owner = resolve_user(service, user)
        result = service.add_budget(
            category=category,
            limit=value,
            period=period,
            alert_threshold=threshold,
            is_home_country=home,
            user_id=owner,
        )
        report(result, f"Created {period} {category} budget")


@app.command()
def budgets(
    user: str | None = typer.Option(None, "--user", "-u", help="Budget owner"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show spending against each active budget for the current period."""
    with open_ledger(verbose) as service:
        owner = resolve_user(service, user)
        statuses = service.recompute_budgets(owner)
        if not statuses:
            console.print("[yellow]No active budgets.[/yellow]")
            return

        currencies = {b.id: b.currency for b in service.repository.budgets}
        table = Table(title="Budgets", header_style="bold magenta")
        table.add_column("Category", style="cyan")
        table.add_column("Spent", justify="right")
        table.add_column("Limit", justify="right")
        table.add_column("Used", justify="right")
        for status in statuses:
            code = currencies[status.budget_id]
            used = f"{status.percent_used:.0f}%"
            if status.is_over_limit:
                used = f"[red]{used}[/red]"
            elif status.alert_reached:
                used = f"[yellow]{used}[/yellow]"
            table.add_row(
                str(status.category),
                format_money(status.spent, code),
                format_money(status.limit, code),
                used,
            )
        console.print(table)


if __name__ == "__main__":
    app()
