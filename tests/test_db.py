"""Tests for the SQLite store."""

import sqlite3
from datetime import datetime
from decimal import Decimal

import pytest

from groupsettle.db import Database
from groupsettle.models import (
    Expense,
    ExpenseCategory,
    Group,
    Settlement,
    Split,
    SplitType,
)


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def group(db):
    return db.create_group(Group(name="Trip", created_by="A", members=["A", "B", "C"]))


def make_settlement(group_id: int, frm: str, to: str, amount: str) -> Settlement:
    return Settlement(
        group_id=group_id, from_member_id=frm, to_member_id=to, amount=Decimal(amount)
    )


class TestGroups:
    """Tests for group operations."""

    def test_create_and_get(self, db, group):
        assert group.id is not None

        loaded = db.get_group(group.id)

        assert loaded.name == "Trip"
        assert loaded.currency == "USD"
        assert loaded.members == ["A", "B", "C"]

    def test_missing_group(self, db):
        assert db.get_group(999) is None
        assert db.get_members(999) == []

    def test_add_member_keeps_order(self, db, group):
        db.add_group_member(group.id, "D")

        assert db.get_members(group.id) == ["A", "B", "C", "D"]

    def test_description_and_rename(self, db, group):
        assert db.get_group(group.id).description == ""

        db.update_group(
            group.model_copy(update={"name": "Ski trip", "description": "Alps"})
        )

        loaded = db.get_group(group.id)
        assert (loaded.name, loaded.description) == ("Ski trip", "Alps")

    def test_remove_member_replaces_settlements(self, db, group):
        db.replace_group_settlements(group.id, [make_settlement(group.id, "B", "A", "4.00")])

        db.remove_group_member(
            group.id, "C", [make_settlement(group.id, "B", "A", "2.00")]
        )

        assert db.get_members(group.id) == ["A", "B"]
        assert [s.amount for s in db.list_settlements_by_group(group.id)] == [
            Decimal("2.00")
        ]

    def test_member_has_expenses(self, db, group):
        db.save_expense(
            Expense(
                group_id=group.id,
                description="Taxi",
                amount=Decimal("8.00"),
                split_type=SplitType.EQUAL,
                payer_id="A",
                splits=[Split(member_id="B", amount=Decimal("8.00"))],
            ),
            [],
        )

        assert db.member_has_expenses(group.id, "A")
        assert db.member_has_expenses(group.id, "B")
        assert not db.member_has_expenses(group.id, "C")

    def test_groups_for_member(self, db, group):
        other = db.create_group(Group(name="Flat", created_by="C", members=["C"]))

        assert [g.id for g in db.list_groups_for_member("C")] == [group.id, other.id]
        assert [g.id for g in db.list_groups_for_member("A")] == [group.id]

    def test_delete_cascades(self, db, group):
        expense = Expense(
            group_id=group.id,
            description="Dinner",
            amount=Decimal("10.00"),
            split_type=SplitType.EQUAL,
            payer_id="A",
            splits=[Split(member_id="A", amount=Decimal("10.00"))],
        )
        saved, _ = db.save_expense(
            expense, [make_settlement(group.id, "B", "A", "1.00")]
        )

        db.delete_group(group.id)

        assert db.get_group(group.id) is None
        assert db.get_expense(saved.id) is None
        assert db.list_settlements_for_member("A") == []


class TestExpenses:
    """Tests for expense operations."""

    def test_round_trip_keeps_decimals_and_split_order(self, db, group):
        expense = Expense(
            group_id=group.id,
            description="Groceries",
            amount=Decimal("100.00"),
            category=ExpenseCategory.FOOD,
            split_type=SplitType.SHARES,
            payer_id="B",
            splits=[
                Split(member_id="C", amount=Decimal("50.00"), weight=3),
                Split(member_id="A", amount=Decimal("33.33"), weight=2),
                Split(member_id="B", amount=Decimal("16.67"), weight=1),
            ],
            notes="weekly shop",
        )

        saved, _ = db.save_expense(expense, [])
        loaded = db.get_expense(saved.id)

        assert loaded.amount == Decimal("100.00")
        assert loaded.category == ExpenseCategory.FOOD
        assert loaded.split_type == SplitType.SHARES
        assert [(s.member_id, s.amount, s.weight) for s in loaded.splits] == [
            ("C", Decimal("50.00"), 3),
            ("A", Decimal("33.33"), 2),
            ("B", Decimal("16.67"), 1),
        ]
        assert loaded.notes == "weekly shop"

    def test_update_replaces_splits(self, db, group):
        expense = Expense(
            group_id=group.id,
            description="Taxi",
            amount=Decimal("20.00"),
            split_type=SplitType.EQUAL,
            payer_id="A",
            splits=[
                Split(member_id="A", amount=Decimal("10.00")),
                Split(member_id="B", amount=Decimal("10.00")),
            ],
        )
        saved, _ = db.save_expense(expense, [])

        updated = saved.model_copy(
            update={
                "amount": Decimal("9.00"),
                "splits": [Split(member_id="C", amount=Decimal("9.00"))],
            }
        )
        db.save_expense(updated, [])

        loaded = db.get_expense(saved.id)
        assert loaded.amount == Decimal("9.00")
        assert [s.member_id for s in loaded.splits] == ["C"]
        assert len(db.list_expenses_by_group(group.id)) == 1

    def test_list_newest_first(self, db, group):
        for day in (1, 3, 2):
            db.save_expense(
                Expense(
                    group_id=group.id,
                    description=f"Day {day}",
                    amount=Decimal("1.00"),
                    split_type=SplitType.EQUAL,
                    payer_id="A",
                    splits=[Split(member_id="A", amount=Decimal("1.00"))],
                    date=datetime(2026, 1, day),
                ),
                [],
            )

        assert [e.description for e in db.list_expenses_by_group(group.id)] == [
            "Day 3",
            "Day 2",
            "Day 1",
        ]


class TestSettlements:
    """Tests for settlement operations."""

    def test_replace_swaps_whole_set(self, db, group):
        first = db.replace_group_settlements(
            group.id,
            [
                make_settlement(group.id, "B", "A", "15.00"),
                make_settlement(group.id, "C", "A", "30.00"),
            ],
        )
        assert all(s.id is not None for s in first)

        second = db.replace_group_settlements(
            group.id, [make_settlement(group.id, "C", "B", "5.00")]
        )

        stored = db.list_settlements_by_group(group.id)
        assert [(s.from_member_id, s.to_member_id, s.amount) for s in stored] == [
            ("C", "B", Decimal("5.00"))
        ]
        assert stored[0].id == second[0].id
        assert db.get_settlement(first[0].id) is None

    def test_replace_keeps_generation_order(self, db, group):
        db.replace_group_settlements(
            group.id,
            [
                make_settlement(group.id, "C", "A", "1.00"),
                make_settlement(group.id, "B", "A", "2.00"),
            ],
        )

        stored = db.list_settlements_by_group(group.id)
        assert [s.from_member_id for s in stored] == ["C", "B"]

    def test_replace_leaves_other_groups_alone(self, db, group):
        other = db.create_group(Group(name="Other", created_by="A", members=["A", "B"]))
        db.replace_group_settlements(other.id, [make_settlement(other.id, "B", "A", "3.00")])

        db.replace_group_settlements(group.id, [])

        assert len(db.list_settlements_by_group(other.id)) == 1

    def test_failed_write_rolls_back(self, db, group):
        """An expense write that fails midway leaves the old ledger."""
        db.replace_group_settlements(group.id, [make_settlement(group.id, "B", "A", "4.00")])
        expense = Expense(
            group_id=group.id,
            description="Lunch",
            amount=Decimal("1.00"),
            split_type=SplitType.EQUAL,
            payer_id="A",
            splits=[Split(member_id="A", amount=Decimal("1.00"))],
        )
        # NULL payer violates NOT NULL after the expense row is written
        broken = Settlement.model_construct(
            group_id=group.id,
            from_member_id=None,
            to_member_id="A",
            amount=Decimal("1.00"),
        )

        with pytest.raises(sqlite3.IntegrityError):
            db.save_expense(expense, [broken])

        assert db.list_expenses_by_group(group.id) == []
        assert [s.amount for s in db.list_settlements_by_group(group.id)] == [
            Decimal("4.00")
        ]

    def test_mark_paid_is_idempotent_and_keeps_first_time(self, db, group):
        [settlement] = db.replace_group_settlements(
            group.id, [make_settlement(group.id, "B", "A", "15.00")]
        )
        first_time = datetime(2026, 3, 1, 12, 0)
        later = datetime(2026, 3, 2, 12, 0)

        first = db.mark_settlement_paid(settlement.id, first_time)
        second = db.mark_settlement_paid(settlement.id, later)

        assert first.is_paid and second.is_paid
        assert first.paid_at == first_time
        assert second.paid_at == first_time

    def test_mark_paid_missing(self, db):
        assert db.mark_settlement_paid(12345, datetime.now()) is None

    def test_settlements_for_member(self, db, group):
        db.replace_group_settlements(
            group.id,
            [
                make_settlement(group.id, "B", "A", "15.00"),
                make_settlement(group.id, "C", "A", "30.00"),
            ],
        )

        assert len(db.list_settlements_for_member("A")) == 2
        assert [s.amount for s in db.list_settlements_for_member("B")] == [
            Decimal("15.00")
        ]
