"""CLI commands for groups, expenses and settlements."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

import typer
from rich.console import Console
from rich.table import Table

from ..config import Settings, load_settings
from ..db import Database
from ..exceptions import GroupSettleError, ValidationError
from ..models import Expense, Settlement, SplitType
from .service import LedgerService
from .splits import parse_amount, parse_split_arg

group_app = typer.Typer(name="group", help="Create and inspect groups")
expense_app = typer.Typer(name="expense", help="Record and edit shared expenses")
settle_app = typer.Typer(name="settle", help="List and pay settlements")

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@contextmanager
def cli_session(verbose: bool = False) -> Iterator[tuple[Settings, LedgerService]]:
    """
    Open the database and service for one command.

    Library errors are reported and turned into exit code 1; the database is
    always closed.
    """
    setup_logging(verbose)
    db = None
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        yield settings, LedgerService(db, default_currency=settings.default_currency)
    except GroupSettleError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if db is not None:
            db.close()


def resolve_member(settings: Settings, acting: str | None) -> str:
    """Pick the acting member from --as or the configured default."""
    member = acting or settings.acting_member
    if not member:
        raise ValidationError("No acting member: pass --as or set ACTING_MEMBER")
    return member


def format_money(amount: Decimal, use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: (85.02)
    Positive amounts have spaces:      85.02
    """
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"([red]{abs_amount:,.2f}[/red])"
        return f"({abs_amount:,.2f})"
    if use_color:
        return f" [green]{abs_amount:,.2f}[/green] "
    return f" {abs_amount:,.2f} "


def display_balances(balances: dict[str, Decimal], currency: str):
    """Display member balances in a table."""
    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column(f"Net ({currency})", justify="right")
    for member_id, balance in balances.items():
        table.add_row(member_id, format_money(balance))
    console.print(table)


def display_expenses(expenses: list[Expense]):
    """Display expenses and their splits in a table."""
    table = Table(title="Expenses", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=6)
    table.add_column("Date", width=10)
    table.add_column("Description", style="cyan", width=30)
    table.add_column("Paid by")
    table.add_column("Amount", justify="right")
    table.add_column("Split", style="yellow", no_wrap=False)

    for expense in expenses:
        split_desc = ", ".join(
            f"{split.member_id} {split.amount:,.2f}" for split in expense.splits
        )
        desc = expense.description
        table.add_row(
            str(expense.id),
            str(expense.date.date()),
            desc[:30] + "..." if len(desc) > 30 else desc,
            expense.payer_id,
            f"{expense.amount:,.2f} {expense.currency}",
            f"{expense.split_type.value}: {split_desc}",
        )
    console.print(table)


def display_settlements(settlements: list[Settlement]):
    """Display settlements in a table."""
    table = Table(title="Settlements", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=6)
    table.add_column("Group", style="dim", width=6)
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Status")

    for settlement in settlements:
        status = (
            f"[green]paid {settlement.paid_at:%Y-%m-%d}[/green]"
            if settlement.is_paid and settlement.paid_at
            else "[yellow]outstanding[/yellow]"
        )
        table.add_row(
            str(settlement.id),
            str(settlement.group_id),
            settlement.from_member_id,
            settlement.to_member_id,
            f"{settlement.amount:,.2f} {settlement.currency}",
            status,
        )
    console.print(table)


# ============================================================================
# group
# ============================================================================


@group_app.command("create")
def group_create(
    name: str = typer.Argument(..., help="Group name"),
    members: list[str] | None = typer.Option(
        None, "--member", "-m", help="Member to add (repeatable)"
    ),
    currency: str | None = typer.Option(None, "--currency", help="Group currency"),
    description: str = typer.Option("", "--description", "-d", help="Description"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create a group. The acting member becomes its creator."""
    with cli_session(verbose) as (settings, service):
        creator = resolve_member(settings, acting)
        group = service.create_group(
            name, creator, members or [], currency, description=description
        )
        console.print(
            f"[bold green]✓ Created group {group.id} '{group.name}'[/bold green] "
            f"({group.currency}, members: {', '.join(group.members)})"
        )


@group_app.command("add-member")
def group_add_member(
    group_id: int = typer.Argument(..., help="Group ID"),
    member: str = typer.Argument(..., help="Member to add"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Add a member to a group."""
    with cli_session(verbose) as (settings, service):
        group = service.add_member(group_id, member, resolve_member(settings, acting))
        console.print(
            f"[green]Members of {group.name}: {', '.join(group.members)}[/green]"
        )


@group_app.command("remove-member")
def group_remove_member(
    group_id: int = typer.Argument(..., help="Group ID"),
    member: str = typer.Argument(..., help="Member to remove"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Remove a member who has no expenses in the group."""
    with cli_session(verbose) as (settings, service):
        group = service.remove_member(group_id, member, resolve_member(settings, acting))
        console.print(
            f"[green]Members of {group.name}: {', '.join(group.members)}[/green]"
        )


@group_app.command("edit")
def group_edit(
    group_id: int = typer.Argument(..., help="Group ID"),
    name: str | None = typer.Option(None, "--name", "-n", help="New name"),
    description: str | None = typer.Option(
        None, "--description", "-d", help="New description"
    ),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Rename a group or change its description."""
    with cli_session(verbose) as (settings, service):
        group = service.update_group(
            group_id, resolve_member(settings, acting), name=name, description=description
        )
        console.print(f"[bold green]✓ Updated group {group.id} '{group.name}'[/bold green]")
        if group.description:
            console.print(group.description)


@group_app.command("list")
def group_list(
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List the groups the acting member belongs to."""
    with cli_session(verbose) as (settings, service):
        groups = service.list_member_groups(resolve_member(settings, acting))
        if not groups:
            console.print("[yellow]No groups found.[/yellow]")
            return

        table = Table(title="Groups", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim", width=6)
        table.add_column("Name", style="cyan")
        table.add_column("Currency")
        table.add_column("Members", no_wrap=False)
        for group in groups:
            table.add_row(
                str(group.id), group.name, group.currency, ", ".join(group.members)
            )
        console.print(table)


@group_app.command("show")
def group_show(
    group_id: int = typer.Argument(..., help="Group ID"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show a group's balances and outstanding settlements."""
    with cli_session(verbose) as (settings, service):
        member = resolve_member(settings, acting)
        group = service.get_group(group_id)
        balances = service.get_balances(group_id, member)
        console.print(f"\n[bold]{group.name}[/bold] (created by {group.created_by})")
        if group.description:
            console.print(group.description)
        display_balances(balances, group.currency)

        settlements = service.list_settlements(group_id, member)
        if settlements:
            display_settlements(settlements)
        else:
            console.print("[green]✓ Everyone is settled up[/green]")


@group_app.command("delete")
def group_delete(
    group_id: int = typer.Argument(..., help="Group ID"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete a group with all its expenses and settlements."""
    with cli_session(verbose) as (settings, service):
        member = resolve_member(settings, acting)
        group = service.get_group(group_id)
        if not yes:
            confirm = input(f"Delete group '{group.name}'? [y/N] ").strip().lower()
            if confirm not in ("y", "yes"):
                console.print("[yellow]Cancelled.[/yellow]")
                return
        service.delete_group(group_id, member)
        console.print(f"[bold green]✓ Deleted group {group_id}[/bold green]")


# ============================================================================
# expense
# ============================================================================


@expense_app.command("add")
def expense_add(
    group_id: int = typer.Argument(..., help="Group ID"),
    description: str = typer.Argument(..., help="What the expense was for"),
    amount: str = typer.Argument(..., help="Total amount paid"),
    split_type: SplitType = typer.Option(
        SplitType.EQUAL, "--type", "-t", help="How to split the amount"
    ),
    splits: list[str] | None = typer.Option(
        None,
        "--split",
        "-s",
        help="MEMBER or MEMBER=VALUE (amount for exact, share for shares); "
        "equal splits default to the whole group",
    ),
    payer: str | None = typer.Option(
        None, "--payer", "-p", help="Who paid (defaults to the acting member)"
    ),
    category: str | None = typer.Option(None, "--category", "-c", help="Category"),
    currency: str | None = typer.Option(None, "--currency", help="Currency"),
    notes: str = typer.Option("", "--notes", help="Notes"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record an expense and regenerate the group's settlements."""
    with cli_session(verbose) as (settings, service):
        inputs = [parse_split_arg(s, split_type) for s in splits or []]
        expense = service.create_expense(
            group_id=group_id,
            description=description,
            amount=parse_amount(amount),
            currency=currency,
            category=category,
            split_type=split_type,
            split_inputs=inputs,
            payer=payer or resolve_member(settings, acting),
            notes=notes,
        )
        console.print(f"[bold green]✓ Recorded expense {expense.id}[/bold green]")
        display_expenses([expense])


@expense_app.command("edit")
def expense_edit(
    expense_id: int = typer.Argument(..., help="Expense ID"),
    description: str | None = typer.Option(None, "--description", "-d"),
    amount: str | None = typer.Option(None, "--amount", "-a"),
    splits: list[str] | None = typer.Option(
        None, "--split", "-s", help="Replace the participants (same syntax as add)"
    ),
    category: str | None = typer.Option(None, "--category", "-c"),
    notes: str | None = typer.Option(None, "--notes"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Edit an expense and regenerate the group's settlements."""
    with cli_session(verbose) as (settings, service):
        member = resolve_member(settings, acting)
        inputs = None
        if splits:
            existing = service.get_expense(expense_id)
            inputs = [parse_split_arg(s, existing.split_type) for s in splits]

        expense = service.update_expense(
            expense_id,
            member,
            description=description,
            amount=parse_amount(amount) if amount is not None else None,
            category=category,
            notes=notes,
            split_inputs=inputs,
        )
        console.print(f"[bold green]✓ Updated expense {expense.id}[/bold green]")
        display_expenses([expense])


@expense_app.command("delete")
def expense_delete(
    expense_id: int = typer.Argument(..., help="Expense ID"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete an expense and regenerate the group's settlements."""
    with cli_session(verbose) as (settings, service):
        service.delete_expense(expense_id, resolve_member(settings, acting))
        console.print(f"[bold green]✓ Deleted expense {expense_id}[/bold green]")


@expense_app.command("list")
def expense_list(
    group_id: int = typer.Argument(..., help="Group ID"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List a group's expenses, newest first."""
    with cli_session(verbose) as (settings, service):
        expenses = service.list_expenses(group_id, resolve_member(settings, acting))
        if not expenses:
            console.print("[yellow]No expenses found.[/yellow]")
            return
        display_expenses(expenses)


# ============================================================================
# settle
# ============================================================================


@settle_app.command("list")
def settle_list(
    group_id: int | None = typer.Argument(None, help="Group ID"),
    mine: bool = typer.Option(
        False, "--mine", help="Show the acting member's settlements in every group"
    ),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List outstanding settlements for a group or for yourself."""
    with cli_session(verbose) as (settings, service):
        member = resolve_member(settings, acting)
        if mine:
            settlements = service.list_member_settlements(member, member)
        elif group_id is not None:
            settlements = service.list_settlements(group_id, member)
        else:
            raise ValidationError("Pass a group ID or --mine")

        if not settlements:
            console.print("[green]✓ Nothing to settle[/green]")
            return
        display_settlements(settlements)


@settle_app.command("recompute")
def settle_recompute(
    group_id: int = typer.Argument(..., help="Group ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Regenerate a group's settlements from its expenses."""
    with cli_session(verbose) as (_settings, service):
        settlements = service.recompute_settlements(group_id)
        console.print(
            f"[bold green]✓ Regenerated {len(settlements)} settlements[/bold green]"
        )
        if settlements:
            display_settlements(settlements)


@settle_app.command("pay")
def settle_pay(
    settlement_id: int = typer.Argument(..., help="Settlement ID"),
    acting: str | None = typer.Option(None, "--as", help="Acting member"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Mark a settlement as paid."""
    with cli_session(verbose) as (settings, service):
        settlement = service.mark_settlement_paid(
            settlement_id, resolve_member(settings, acting)
        )
        console.print(
            f"[bold green]✓ Settlement {settlement.id} paid: "
            f"{settlement.from_member_id} → {settlement.to_member_id} "
            f"{settlement.amount:,.2f} {settlement.currency}[/bold green]"
        )
