"""SQLite database operations for groupsettle."""

import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from .models import (
    Expense,
    ExpenseCategory,
    Group,
    Settlement,
    Split,
    SplitType,
)


class Database:
    """SQLite database manager.

    One connection is shared by every thread; each method runs its
    statements under the instance lock, and multi-statement writes run in a
    single transaction.
    """

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # Groups and ordered membership
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS groups (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                currency TEXT NOT NULL,
                created_by TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS group_members (
                group_id INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
                member_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                PRIMARY KEY (group_id, member_id)
            )
        """
        )

        # Expenses and their computed splits
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
                description TEXT NOT NULL,
                amount TEXT NOT NULL,
                currency TEXT NOT NULL,
                category TEXT NOT NULL,
                split_type TEXT NOT NULL,
                payer_id TEXT NOT NULL,
                notes TEXT NOT NULL DEFAULT '',
                date TIMESTAMP NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_splits (
                expense_id INTEGER NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                member_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                weight INTEGER NOT NULL DEFAULT 1,
                PRIMARY KEY (expense_id, position)
            )
        """
        )

        # Outstanding settlements, regenerated as a whole per group
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS settlements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                from_member_id TEXT NOT NULL,
                to_member_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                currency TEXT NOT NULL,
                is_paid INTEGER NOT NULL DEFAULT 0,
                paid_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Group operations
    # ========================================================================

    def create_group(self, group: Group) -> Group:
        """Save a new group with its members and return it with its ID."""
        with self._lock, self.conn:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                INSERT INTO groups (name, description, currency, created_by, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    group.name,
                    group.description,
                    group.currency,
                    group.created_by,
                    group.created_at.isoformat(),
                ),
            )
            group_id = cursor.lastrowid
            if group_id is None:
                raise RuntimeError("Failed to insert group record")
            cursor.executemany(
                """
                INSERT INTO group_members (group_id, member_id, position)
                VALUES (?, ?, ?)
                """,
                [
                    (group_id, member_id, position)
                    for position, member_id in enumerate(group.members)
                ],
            )
        return group.model_copy(update={"id": group_id})

    def get_group(self, group_id: int) -> Group | None:
        """Get a group with its ordered members."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT id, name, description, currency, created_by, created_at
                FROM groups
                WHERE id = ?
                """,
                (group_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None

            return Group(
                id=row["id"],
                name=row["name"],
                description=row["description"],
                currency=row["currency"],
                created_by=row["created_by"],
                members=self.get_members(group_id),
                created_at=datetime.fromisoformat(row["created_at"]),
            )

    def get_members(self, group_id: int) -> list[str]:
        """Get a group's member ids in the order they joined."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT member_id FROM group_members
                WHERE group_id = ?
                ORDER BY position
                """,
                (group_id,),
            )
            return [row["member_id"] for row in cursor.fetchall()]

    def add_group_member(self, group_id: int, member_id: str):
        """Append a member to a group."""
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO group_members (group_id, member_id, position)
                SELECT ?, ?, COALESCE(MAX(position) + 1, 0)
                FROM group_members WHERE group_id = ?
                """,
                (group_id, member_id, group_id),
            )

    def update_group(self, group: Group):
        """Save a group's name and description."""
        with self._lock, self.conn:
            self.conn.execute(
                "UPDATE groups SET name = ?, description = ? WHERE id = ?",
                (group.name, group.description, group.id),
            )

    def remove_group_member(
        self, group_id: int, member_id: str, settlements: list[Settlement]
    ) -> list[Settlement]:
        """Remove a member and replace the group's settlements in one transaction."""
        with self._lock, self.conn:
            cursor = self.conn.cursor()
            cursor.execute(
                "DELETE FROM group_members WHERE group_id = ? AND member_id = ?",
                (group_id, member_id),
            )
            return self._replace_settlements(cursor, group_id, settlements)

    def member_has_expenses(self, group_id: int, member_id: str) -> bool:
        """Check whether a member paid for or shares in any of a group's expenses."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT 1 FROM expenses e
                WHERE e.group_id = ?
                  AND (
                    e.payer_id = ?
                    OR EXISTS (
                        SELECT 1 FROM expense_splits s
                        WHERE s.expense_id = e.id AND s.member_id = ?
                    )
                  )
                LIMIT 1
                """,
                (group_id, member_id, member_id),
            )
            return cursor.fetchone() is not None

    def delete_group(self, group_id: int):
        """Delete a group along with its expenses and settlements."""
        with self._lock, self.conn:
            self.conn.execute("DELETE FROM groups WHERE id = ?", (group_id,))

    def list_groups_for_member(self, member_id: str) -> list[Group]:
        """Get every group a member belongs to."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT group_id FROM group_members
                WHERE member_id = ?
                ORDER BY group_id
                """,
                (member_id,),
            )
            group_ids = [row["group_id"] for row in cursor.fetchall()]
            groups = [self.get_group(group_id) for group_id in group_ids]
            return [group for group in groups if group is not None]

    # ========================================================================
    # Expense operations
    # ========================================================================

    def get_expense(self, expense_id: int) -> Expense | None:
        """Get an expense with its splits."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT id, group_id, description, amount, currency, category,
                       split_type, payer_id, notes, date, created_at
                FROM expenses
                WHERE id = ?
                """,
                (expense_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return self._row_to_expense(row)

    def list_expenses_by_group(self, group_id: int) -> list[Expense]:
        """Get all expenses for a group, newest first."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT id, group_id, description, amount, currency, category,
                       split_type, payer_id, notes, date, created_at
                FROM expenses
                WHERE group_id = ?
                ORDER BY date DESC, id DESC
                """,
                (group_id,),
            )
            return [self._row_to_expense(row) for row in cursor.fetchall()]

    def save_expense(
        self, expense: Expense, settlements: list[Settlement]
    ) -> tuple[Expense, list[Settlement]]:
        """
        Insert or update an expense and replace its group's settlements.

        Both changes commit together or not at all.

        Returns:
            The saved expense and settlements, with IDs assigned
        """
        with self._lock, self.conn:
            cursor = self.conn.cursor()
            if expense.id is None:
                cursor.execute(
                    """
                    INSERT INTO expenses (
                        group_id, description, amount, currency, category,
                        split_type, payer_id, notes, date, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        expense.group_id,
                        expense.description,
                        str(expense.amount),
                        expense.currency,
                        expense.category.value,
                        expense.split_type.value,
                        expense.payer_id,
                        expense.notes,
                        expense.date.isoformat(),
                        expense.created_at.isoformat(),
                    ),
                )
                expense_id = cursor.lastrowid
                if expense_id is None:
                    raise RuntimeError("Failed to insert expense record")
                expense = expense.model_copy(update={"id": expense_id})
            else:
                cursor.execute(
                    """
                    UPDATE expenses SET
                        description = ?, amount = ?, currency = ?, category = ?,
                        split_type = ?, payer_id = ?, notes = ?, date = ?
                    WHERE id = ?
                    """,
                    (
                        expense.description,
                        str(expense.amount),
                        expense.currency,
                        expense.category.value,
                        expense.split_type.value,
                        expense.payer_id,
                        expense.notes,
                        expense.date.isoformat(),
                        expense.id,
                    ),
                )
                cursor.execute(
                    "DELETE FROM expense_splits WHERE expense_id = ?", (expense.id,)
                )

            cursor.executemany(
                """
                INSERT INTO expense_splits (
                    expense_id, position, member_id, amount, weight
                ) VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (expense.id, position, split.member_id, str(split.amount), split.weight)
                    for position, split in enumerate(expense.splits)
                ],
            )

            saved = self._replace_settlements(cursor, expense.group_id, settlements)
        return expense, saved

    def delete_expense(
        self, expense: Expense, settlements: list[Settlement]
    ) -> list[Settlement]:
        """Delete an expense and replace its group's settlements in one transaction."""
        with self._lock, self.conn:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM expenses WHERE id = ?", (expense.id,))
            return self._replace_settlements(cursor, expense.group_id, settlements)

    def _row_to_expense(self, row: sqlite3.Row) -> Expense:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT member_id, amount, weight FROM expense_splits
            WHERE expense_id = ?
            ORDER BY position
            """,
            (row["id"],),
        )
        splits = [
            Split(
                member_id=split_row["member_id"],
                amount=Decimal(split_row["amount"]),
                weight=split_row["weight"],
            )
            for split_row in cursor.fetchall()
        ]
        return Expense(
            id=row["id"],
            group_id=row["group_id"],
            description=row["description"],
            amount=Decimal(row["amount"]),
            currency=row["currency"],
            category=ExpenseCategory(row["category"]),
            split_type=SplitType(row["split_type"]),
            payer_id=row["payer_id"],
            splits=splits,
            notes=row["notes"],
            date=datetime.fromisoformat(row["date"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ========================================================================
    # Settlement operations
    # ========================================================================

    def replace_group_settlements(
        self, group_id: int, settlements: list[Settlement]
    ) -> list[Settlement]:
        """
        Replace a group's whole settlement set.

        The delete and the inserts share one transaction, so readers see
        either the old set or the new one, never an empty table.
        """
        with self._lock, self.conn:
            return self._replace_settlements(self.conn.cursor(), group_id, settlements)

    def _replace_settlements(
        self, cursor: sqlite3.Cursor, group_id: int, settlements: list[Settlement]
    ) -> list[Settlement]:
        cursor.execute("DELETE FROM settlements WHERE group_id = ?", (group_id,))
        saved = []
        for position, settlement in enumerate(settlements):
            cursor.execute(
                """
                INSERT INTO settlements (
                    group_id, position, from_member_id, to_member_id, amount,
                    currency, is_paid, paid_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    group_id,
                    position,
                    settlement.from_member_id,
                    settlement.to_member_id,
                    str(settlement.amount),
                    settlement.currency,
                    int(settlement.is_paid),
                    settlement.paid_at.isoformat() if settlement.paid_at else None,
                    settlement.created_at.isoformat(),
                ),
            )
            row_id = cursor.lastrowid
            if row_id is None:
                raise RuntimeError("Failed to insert settlement record")
            saved.append(settlement.model_copy(update={"id": row_id, "group_id": group_id}))
        return saved

    def get_settlement(self, settlement_id: int) -> Settlement | None:
        """Get a settlement by ID."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT id, group_id, from_member_id, to_member_id, amount,
                       currency, is_paid, paid_at, created_at
                FROM settlements
                WHERE id = ?
                """,
                (settlement_id,),
            )
            row = cursor.fetchone()
            return _row_to_settlement(row) if row else None

    def list_settlements_by_group(self, group_id: int) -> list[Settlement]:
        """Get a group's settlements in the order they were generated."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT id, group_id, from_member_id, to_member_id, amount,
                       currency, is_paid, paid_at, created_at
                FROM settlements
                WHERE group_id = ?
                ORDER BY position
                """,
                (group_id,),
            )
            return [_row_to_settlement(row) for row in cursor.fetchall()]

    def list_settlements_for_member(self, member_id: str) -> list[Settlement]:
        """Get every settlement a member pays or receives, newest first."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT id, group_id, from_member_id, to_member_id, amount,
                       currency, is_paid, paid_at, created_at
                FROM settlements
                WHERE from_member_id = ? OR to_member_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (member_id, member_id),
            )
            return [_row_to_settlement(row) for row in cursor.fetchall()]

    def mark_settlement_paid(
        self, settlement_id: int, paid_at: datetime
    ) -> Settlement | None:
        """
        Mark a settlement as paid.

        Repeat calls succeed and keep the original paid_at.
        """
        with self._lock:
            with self.conn:
                self.conn.execute(
                    """
                    UPDATE settlements
                    SET is_paid = 1, paid_at = COALESCE(paid_at, ?)
                    WHERE id = ?
                    """,
                    (paid_at.isoformat(), settlement_id),
                )
            return self.get_settlement(settlement_id)


def _row_to_settlement(row: sqlite3.Row) -> Settlement:
    return Settlement(
        id=row["id"],
        group_id=row["group_id"],
        from_member_id=row["from_member_id"],
        to_member_id=row["to_member_id"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        is_paid=bool(row["is_paid"]),
        paid_at=datetime.fromisoformat(row["paid_at"]) if row["paid_at"] else None,
        created_at=datetime.fromisoformat(row["created_at"]),
    )
