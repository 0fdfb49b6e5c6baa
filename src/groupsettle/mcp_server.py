"""MCP server for groupsettle: exposes the group ledger as tools."""

import logging
from dataclasses import dataclass
from decimal import Decimal

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .db import Database
from .exceptions import GroupSettleError
from .ledger.service import LedgerService
from .ledger.splits import parse_amount, parse_split_arg
from .models import Settlement, SplitType

logger = logging.getLogger(__name__)

mcp_app = FastMCP("groupsettle")

WORKFLOW_INSTRUCTIONS = """\
You are helping a group keep track of shared expenses. Follow this workflow:

1. FIND THE GROUP: Call list_groups with the user's member id, or show_group
   (group id and member id) if the user already gave a group id.

2. RECORD: For each new expense call add_expense. Use split_type "equal"
   unless the user gives exact amounts ("exact") or proportions ("shares").
   Splits are written as "member" or "member=value".

3. REVIEW: Call show_group to show the new balances and who pays whom.
   Positive balance = is owed money, negative = owes money.

4. PAY: When the user says a payment was made, call mark_paid with the
   settlement id and the member who is reporting it.

Never invent member ids; ask the user if unsure.\
"""


@dataclass
class SessionState:
    """Holds the service between MCP tool calls within a single conversation."""

    service: LedgerService | None = None
    db: Database | None = None


_state = SessionState()


def _ensure_service() -> LedgerService:
    """Lazily initialize the LedgerService (loads .env config)."""
    if _state.service is None:
        settings = load_settings()
        _state.db = Database(settings.database_path)
        _state.service = LedgerService(
            _state.db, default_currency=settings.default_currency
        )
    return _state.service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_amount(amount: Decimal) -> str:
    """Format an amount accounting style."""
    if amount < 0:
        return f"({abs(amount):,.2f})"
    return f"{amount:,.2f}"


def _format_settlement(settlement: Settlement) -> str:
    status = "PAID" if settlement.is_paid else "OUTSTANDING"
    return (
        f"[{settlement.id}] {settlement.from_member_id} pays "
        f"{settlement.to_member_id} {settlement.amount:,.2f} "
        f"{settlement.currency} | {status}"
    )


# ---------------------------------------------------------------------------
# MCP Tools
# ---------------------------------------------------------------------------


@mcp_app.tool()
def list_groups(member_id: str) -> str:
    """List the groups a member belongs to.

    Args:
        member_id: The member whose groups to list.
    """
    try:
        groups = _ensure_service().list_member_groups(member_id)
        if not groups:
            return f"'{member_id}' is not in any group."

        lines = [f"Groups for {member_id}:"]
        for group in groups:
            lines.append(
                f"  [{group.id}] {group.name} ({group.currency}) | "
                f"members: {', '.join(group.members)}"
            )
        return "\n".join(lines)
    except GroupSettleError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception("Unexpected error in MCP tool")
        return f"Failed to list groups: {e}"


@mcp_app.tool()
def show_group(group_id: int, member_id: str) -> str:
    """Show a group's balances and outstanding settlements.

    Args:
        group_id: The group to show.
        member_id: The member asking; must belong to the group.
    """
    try:
        service = _ensure_service()
        group = service.get_group(group_id)
        balances = service.get_balances(group_id, member_id)
        settlements = service.list_settlements(group_id, member_id)

        lines = [f"{group.name} ({group.currency})", "", "Balances:"]
        for member, balance in balances.items():
            lines.append(f"  {member}: {_format_amount(balance)}")

        lines.append("")
        if settlements:
            lines.append("Settlements:")
            lines.extend(f"  {_format_settlement(s)}" for s in settlements)
        else:
            lines.append("Everyone is settled up.")
        return "\n".join(lines)
    except GroupSettleError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception("Unexpected error in MCP tool")
        return f"Failed to show group: {e}"


@mcp_app.tool()
def list_expenses(group_id: int, member_id: str) -> str:
    """List a group's expenses, newest first.

    Args:
        group_id: The group whose expenses to list.
        member_id: The member asking; must belong to the group.
    """
    try:
        expenses = _ensure_service().list_expenses(group_id, member_id)
        if not expenses:
            return "No expenses recorded."

        lines = [f"Expenses ({len(expenses)} total):"]
        for expense in expenses:
            shares = ", ".join(f"{s.member_id} {s.amount:,.2f}" for s in expense.splits)
            lines.append(
                f"  [{expense.id}] {expense.description} | {expense.date.date()} | "
                f"{expense.amount:,.2f} paid by {expense.payer_id} | "
                f"{expense.split_type.value}: {shares}"
            )
        return "\n".join(lines)
    except GroupSettleError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception("Unexpected error in MCP tool")
        return f"Failed to list expenses: {e}"


@mcp_app.tool()
def add_expense(
    group_id: int,
    description: str,
    amount: str,
    payer: str,
    split_type: str = "equal",
    splits: list[str] | None = None,
    category: str | None = None,
) -> str:
    """Record an expense; settlements are regenerated automatically.

    Args:
        group_id: The group the expense belongs to.
        description: What the expense was for.
        amount: Total amount paid, e.g. "42.50".
        payer: Member id of whoever paid.
        split_type: "equal", "exact" or "shares".
        splits: Entries like "alice" or "bob=12.50"; empty splits equally
            across the whole group.
        category: Optional category (food, transport, travel, ...).
    """
    try:
        kind = SplitType(split_type)
    except ValueError:
        return f"Error: unknown split type '{split_type}'"

    try:
        expense = _ensure_service().create_expense(
            group_id=group_id,
            description=description,
            amount=parse_amount(amount),
            currency=None,
            category=category,
            split_type=kind,
            split_inputs=[parse_split_arg(s, kind) for s in splits or []],
            payer=payer,
        )
        shares = ", ".join(f"{s.member_id} {s.amount:,.2f}" for s in expense.splits)
        return f"Recorded expense {expense.id}: {expense.amount:,.2f} | {shares}"
    except GroupSettleError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception("Unexpected error in MCP tool")
        return f"Failed to add expense: {e}"


@mcp_app.tool()
def recompute_settlements(group_id: int) -> str:
    """Regenerate a group's settlements from its expenses.

    Args:
        group_id: The group to recompute.
    """
    try:
        settlements = _ensure_service().recompute_settlements(group_id)
        if not settlements:
            return "Everyone is settled up."
        return "\n".join(_format_settlement(s) for s in settlements)
    except GroupSettleError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception("Unexpected error in MCP tool")
        return f"Failed to recompute settlements: {e}"


@mcp_app.tool()
def mark_paid(settlement_id: int, member_id: str) -> str:
    """Mark a settlement as paid.

    Args:
        settlement_id: The settlement id from show_group.
        member_id: The member reporting the payment (payer or payee).
    """
    try:
        settlement = _ensure_service().mark_settlement_paid(settlement_id, member_id)
        return f"Marked paid: {_format_settlement(settlement)}"
    except GroupSettleError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception("Unexpected error in MCP tool")
        return f"Failed to mark settlement paid: {e}"


# ---------------------------------------------------------------------------
# MCP Prompt
# ---------------------------------------------------------------------------


@mcp_app.prompt()
def ledger_workflow() -> str:
    """Instructions for recording expenses and settling up."""
    return WORKFLOW_INSTRUCTIONS


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_server():
    """Start the MCP server (stdio transport)."""
    mcp_app.run(transport="stdio")
