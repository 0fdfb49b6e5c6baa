"""Tests for the MCP tool functions."""

import pytest

from groupsettle import mcp_server
from groupsettle.db import Database
from groupsettle.ledger.service import LedgerService


@pytest.fixture
def service(tmp_path, monkeypatch):
    """Install a service backed by a temporary database."""
    db = Database(tmp_path / "mcp.db")
    service = LedgerService(db)
    monkeypatch.setattr(
        mcp_server, "_state", mcp_server.SessionState(service=service, db=db)
    )
    yield service
    db.close()


@pytest.fixture
def group(service):
    return service.create_group("Trip", "A", ["B", "C"])


class TestTools:
    """Tests for the ledger tools."""

    def test_add_expense_and_show_group(self, service, group):
        first = mcp_server.add_expense(group.id, "Dinner", "90", "A")
        second = mcp_server.add_expense(
            group.id, "Taxi", "30.00", "B", splits=["A", "B"], category="transport"
        )

        assert first.startswith("Recorded expense 1: 90.00")
        assert "A 15.00, B 15.00" in second

        shown = mcp_server.show_group(group.id, "B")
        assert "A: 45.00" in shown
        assert "C: (30.00)" in shown
        assert "B pays A 15.00 USD | OUTSTANDING" in shown
        assert "C pays A 30.00 USD | OUTSTANDING" in shown

    def test_shares_split(self, service, group):
        result = mcp_server.add_expense(
            group.id, "Cabin", "90", "C", split_type="shares", splits=["A=1", "B=2", "C=3"]
        )

        assert "A 15.00, B 30.00, C 45.00" in result

    def test_unknown_split_type(self, service, group):
        result = mcp_server.add_expense(group.id, "x", "1", "A", split_type="percent")

        assert result == "Error: unknown split type 'percent'"
        assert service.list_expenses(group.id, "A") == []

    def test_validation_errors_are_reported(self, service, group):
        result = mcp_server.add_expense(group.id, "x", "10", "mallory")

        assert result.startswith("Error: Payer 'mallory'")

    def test_mark_paid(self, service, group):
        mcp_server.add_expense(group.id, "Dinner", "30", "A")
        settlement = service.list_settlements(group.id, "A")[0]

        assert "PAID" in mcp_server.mark_paid(settlement.id, "A")
        assert mcp_server.mark_paid(settlement.id, "mallory").startswith("Error:")

    def test_list_groups(self, service, group):
        assert f"[{group.id}] Trip (USD)" in mcp_server.list_groups("B")
        assert mcp_server.list_groups("nobody") == "'nobody' is not in any group."

    def test_list_expenses_and_recompute(self, service, group):
        assert mcp_server.list_expenses(group.id, "A") == "No expenses recorded."
        assert mcp_server.recompute_settlements(group.id) == "Everyone is settled up."

        mcp_server.add_expense(group.id, "Dinner", "30", "A")

        assert "Dinner" in mcp_server.list_expenses(group.id, "A")
        assert "B pays A 10.00" in mcp_server.recompute_settlements(group.id)

    def test_non_member_cannot_read_group(self, service, group):
        assert mcp_server.show_group(group.id, "mallory").startswith("Error:")
        assert mcp_server.list_expenses(group.id, "mallory").startswith("Error:")
