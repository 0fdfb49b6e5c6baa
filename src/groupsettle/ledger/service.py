"""Service layer that composes the ledger computations with persistence.

Expense mutations run under a per-group lock. Each one computes the new
expense set, its balances and its settlement plan in memory first, and only
then writes the expense change and the regenerated settlements in a single
transaction. A mutation that fails validation or the plan checks leaves the
stored ledger untouched.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from ..db import Database
from ..exceptions import AuthorizationError, NotFoundError, ValidationError
from ..models import (
    Expense,
    ExpenseCategory,
    Group,
    Settlement,
    SplitInput,
    SplitType,
)
from .balances import compute_balances
from .locks import KeyedLock
from .settlement import GreedySettlementStrategy, SettlementStrategy, verify_plan
from .splits import compute_splits, from_cents, to_cents

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for recording group expenses and keeping settlements current."""

    def __init__(
        self,
        database: Database,
        strategy: SettlementStrategy | None = None,
        default_currency: str = "USD",
    ):
        """Initialize the ledger service."""
        self.db = database
        self.strategy = strategy or GreedySettlementStrategy()
        self.default_currency = default_currency
        self.group_locks = KeyedLock()

    # ========================================================================
    # Groups
    # ========================================================================

    def create_group(
        self,
        name: str,
        created_by: str,
        members: Sequence[str] = (),
        currency: str | None = None,
        description: str = "",
    ) -> Group:
        """
        Create a group. The creator is always its first member.

        Args:
            name: Display name
            created_by: Member id of the creator (the group admin)
            members: Further member ids, in order
            currency: Group currency (defaults to the configured currency)
            description: Free-form description

        Returns:
            The saved group
        """
        if not name.strip():
            raise ValidationError("Group name is required")

        ordered = [created_by]
        for member_id in members:
            if member_id not in ordered:
                ordered.append(member_id)

        group = self.db.create_group(
            Group(
                name=name.strip(),
                description=description.strip(),
                currency=(currency or self.default_currency).upper(),
                created_by=created_by,
                members=ordered,
            )
        )
        logger.info(f"Created group {group.id} '{group.name}' with {len(ordered)} members")
        return group

    def get_group(self, group_id: int) -> Group:
        """Get a group, raising NotFoundError if it does not exist."""
        group = self.db.get_group(group_id)
        if group is None:
            raise NotFoundError("group", group_id)
        return group

    def list_member_groups(self, member_id: str) -> list[Group]:
        """Get every group a member belongs to."""
        return self.db.list_groups_for_member(member_id)

    def update_group(
        self,
        group_id: int,
        acting_member: str,
        name: str | None = None,
        description: str | None = None,
    ) -> Group:
        """Rename a group or change its description. Creator only."""
        with self.group_locks.hold(group_id):
            group = self.get_group(group_id)
            _check_admin(group, acting_member, "update the group")

            changes = {}
            if name is not None:
                if not name.strip():
                    raise ValidationError("Group name cannot be empty")
                changes["name"] = name.strip()
            if description is not None:
                changes["description"] = description.strip()
            if not changes:
                return group

            group = group.model_copy(update=changes)
            self.db.update_group(group)
            logger.info(f"Updated group {group_id}: {', '.join(changes)}")
            return group

    def add_member(self, group_id: int, member_id: str, acting_member: str) -> Group:
        """Add a member to a group. Creator only."""
        with self.group_locks.hold(group_id):
            group = self.get_group(group_id)
            _check_admin(group, acting_member, "add members")
            if group.has_member(member_id):
                logger.info(f"Member '{member_id}' already in group {group_id}")
                return group

            self.db.add_group_member(group_id, member_id)
            logger.info(f"Added member '{member_id}' to group {group_id}")
            return self.get_group(group_id)

    def remove_member(self, group_id: int, member_id: str, acting_member: str) -> Group:
        """
        Remove a member from a group and regenerate its settlements. Creator only.

        Raises:
            ValidationError: If the member is the creator, or has paid for or
                shares in any of the group's expenses
            NotFoundError: If the group does not exist or the member is not in it
        """
        with self.group_locks.hold(group_id):
            group = self.get_group(group_id)
            _check_admin(group, acting_member, "remove members")
            if not group.has_member(member_id):
                raise NotFoundError(
                    "member", member_id, f"Member '{member_id}' is not in group {group_id}"
                )
            if group.is_admin(member_id):
                raise ValidationError("The group creator cannot be removed")
            if self.db.member_has_expenses(group_id, member_id):
                raise ValidationError(
                    f"Member '{member_id}' has expenses in group {group_id}; "
                    f"delete or edit them first"
                )

            remaining = group.model_copy(
                update={"members": [m for m in group.members if m != member_id]}
            )
            settlements = self._plan(remaining, self.db.list_expenses_by_group(group_id))
            self.db.remove_group_member(group_id, member_id, settlements)

        logger.info(f"Removed member '{member_id}' from group {group_id}")
        return remaining

    def delete_group(self, group_id: int, acting_member: str):
        """Delete a group with its expenses and settlements. Creator only."""
        with self.group_locks.hold(group_id):
            group = self.get_group(group_id)
            _check_admin(group, acting_member, "delete the group")
            self.db.delete_group(group_id)
            logger.info(f"Deleted group {group_id} '{group.name}'")

    # ========================================================================
    # Expenses
    # ========================================================================

    def create_expense(
        self,
        group_id: int,
        description: str,
        amount: Decimal,
        currency: str | None,
        category: ExpenseCategory | str | None,
        split_type: SplitType | str,
        split_inputs: Sequence[SplitInput],
        payer: str,
        notes: str = "",
    ) -> Expense:
        """
        Record an expense and regenerate the group's settlements.

        Args:
            group_id: Group the expense belongs to
            description: What the expense was for
            amount: Total amount paid
            currency: Expense currency (must match the group; None means the group's)
            category: Expense category (None means 'other')
            split_type: equal, exact or shares
            split_inputs: Participants and their amounts or shares
            payer: Member id of whoever paid
            notes: Free-form notes

        Returns:
            The saved expense

        Raises:
            ValidationError: If the input is rejected (nothing is written)
            NotFoundError: If the group does not exist
        """
        with self.group_locks.hold(group_id):
            group = self.get_group(group_id)
            splits = compute_splits(amount, split_type, group.members, split_inputs)
            expense = Expense(
                group_id=group_id,
                description=_check_description(description),
                amount=_to_amount(amount),
                currency=_check_currency(group, currency),
                category=_to_category(category),
                split_type=_to_split_type(split_type),
                payer_id=_check_payer(group, payer),
                splits=splits,
                notes=notes,
            )

            expenses = self.db.list_expenses_by_group(group_id)
            settlements = self._plan(group, [*expenses, expense])
            expense, saved = self.db.save_expense(expense, settlements)

        logger.info(
            f"Recorded expense {expense.id} in group {group_id}: "
            f"{expense.amount} {expense.currency} paid by '{expense.payer_id}', "
            f"{len(saved)} settlements outstanding"
        )
        return expense

    def update_expense(
        self,
        expense_id: int,
        acting_member: str,
        description: str | None = None,
        amount: Decimal | None = None,
        category: ExpenseCategory | str | None = None,
        notes: str | None = None,
        split_inputs: Sequence[SplitInput] | None = None,
    ) -> Expense:
        """
        Edit an expense and regenerate the group's settlements.

        Only the payer or the group creator may edit. Splits are always
        recomputed with the expense's split type; when no new split inputs
        are given the stored participants (and shares) are reused.
        """
        existing = self.get_expense(expense_id)
        with self.group_locks.hold(existing.group_id):
            existing = self.get_expense(expense_id)
            group = self.get_group(existing.group_id)
            _check_can_edit(group, existing, acting_member)

            new_amount = existing.amount if amount is None else amount
            if split_inputs is None:
                split_inputs = _inputs_from_splits(existing)
            splits = compute_splits(
                new_amount, existing.split_type, group.members, split_inputs
            )

            updated = existing.model_copy(
                update={
                    "description": existing.description
                    if description is None
                    else _check_description(description),
                    "amount": _to_amount(new_amount),
                    "category": existing.category
                    if category is None
                    else _to_category(category),
                    "notes": existing.notes if notes is None else notes,
                    "splits": splits,
                }
            )

            expenses = [
                updated if e.id == expense_id else e
                for e in self.db.list_expenses_by_group(group.id)
            ]
            settlements = self._plan(group, expenses)
            updated, saved = self.db.save_expense(updated, settlements)

        logger.info(
            f"Updated expense {expense_id} in group {group.id}, "
            f"{len(saved)} settlements outstanding"
        )
        return updated

    def delete_expense(self, expense_id: int, acting_member: str):
        """Delete an expense and regenerate the group's settlements."""
        existing = self.get_expense(expense_id)
        with self.group_locks.hold(existing.group_id):
            existing = self.get_expense(expense_id)
            group = self.get_group(existing.group_id)
            _check_can_edit(group, existing, acting_member)

            expenses = [
                e for e in self.db.list_expenses_by_group(group.id) if e.id != expense_id
            ]
            settlements = self._plan(group, expenses)
            saved = self.db.delete_expense(existing, settlements)

        logger.info(
            f"Deleted expense {expense_id} from group {group.id}, "
            f"{len(saved)} settlements outstanding"
        )

    def list_expenses(self, group_id: int, acting_member: str) -> list[Expense]:
        """Get a group's expenses, newest first. Members only."""
        _check_member(self.get_group(group_id), acting_member)
        return self.db.list_expenses_by_group(group_id)

    def get_expense(self, expense_id: int) -> Expense:
        """Get an expense, raising NotFoundError if it does not exist."""
        expense = self.db.get_expense(expense_id)
        if expense is None:
            raise NotFoundError("expense", expense_id)
        return expense

    # ========================================================================
    # Balances and settlements
    # ========================================================================

    def get_balances(self, group_id: int, acting_member: str) -> dict[str, Decimal]:
        """Compute every member's net balance for a group. Members only."""
        group = self.get_group(group_id)
        _check_member(group, acting_member)
        return compute_balances(self.db.list_expenses_by_group(group_id), group.members)

    def recompute_settlements(self, group_id: int) -> list[Settlement]:
        """
        Regenerate a group's settlements from its current expenses.

        Raises:
            InternalInvariantError: If the balances do not cancel out; the
                stored settlements are left as they were
        """
        with self.group_locks.hold(group_id):
            group = self.get_group(group_id)
            settlements = self._plan(group, self.db.list_expenses_by_group(group_id))
            saved = self.db.replace_group_settlements(group_id, settlements)

        logger.info(f"Regenerated {len(saved)} settlements for group {group_id}")
        return saved

    def list_settlements(self, group_id: int, acting_member: str) -> list[Settlement]:
        """Get a group's outstanding settlements. Members only."""
        _check_member(self.get_group(group_id), acting_member)
        return self.db.list_settlements_by_group(group_id)

    def list_member_settlements(
        self, member_id: str, acting_member: str
    ) -> list[Settlement]:
        """Get a member's settlements across all groups, newest first.

        Members can only list their own settlements.
        """
        if acting_member != member_id:
            raise AuthorizationError(
                acting_member, "Members can only list their own settlements"
            )
        return self.db.list_settlements_for_member(member_id)

    def mark_settlement_paid(self, settlement_id: int, acting_member: str) -> Settlement:
        """
        Mark a settlement as paid.

        Idempotent: repeat calls succeed and keep the first paid_at.

        Raises:
            NotFoundError: If the settlement does not exist
            AuthorizationError: If the acting member is neither payer nor payee
        """
        settlement = self._get_settlement(settlement_id)
        with self.group_locks.hold(settlement.group_id):
            # Re-read under the lock: a regeneration may have replaced it
            settlement = self._get_settlement(settlement_id)
            if not settlement.involves(acting_member):
                raise AuthorizationError(
                    acting_member,
                    f"Member '{acting_member}' is not a party to settlement "
                    f"{settlement_id}",
                )
            paid = self.db.mark_settlement_paid(settlement_id, datetime.now())
            if paid is None:
                raise NotFoundError("settlement", settlement_id)

        if settlement.is_paid:
            logger.debug(f"Settlement {settlement_id} was already paid")
        else:
            logger.info(
                f"Settlement {settlement_id} paid: '{paid.from_member_id}' -> "
                f"'{paid.to_member_id}' {paid.amount} {paid.currency}"
            )
        return paid

    def _get_settlement(self, settlement_id: int) -> Settlement:
        settlement = self.db.get_settlement(settlement_id)
        if settlement is None:
            raise NotFoundError("settlement", settlement_id)
        return settlement

    def _plan(self, group: Group, expenses: list[Expense]) -> list[Settlement]:
        """
        Compute the full settlement set for an expense set without writing it.

        Must be called while holding the group's lock.
        """
        balances = compute_balances(expenses, group.members)
        plan = self.strategy.generate(balances)
        verify_plan(balances, plan)

        paid = sum(1 for s in self.db.list_settlements_by_group(group.id) if s.is_paid)
        if paid:
            logger.warning(
                f"Regenerating settlements for group {group.id} discards "
                f"{paid} paid settlement(s)"
            )

        now = datetime.now()
        return [
            Settlement(
                group_id=group.id,
                from_member_id=proposed.from_member_id,
                to_member_id=proposed.to_member_id,
                amount=proposed.amount,
                currency=group.currency,
                created_at=now,
            )
            for proposed in plan
        ]


# ============================================================================
# Input checks
# ============================================================================


def _check_description(description: str) -> str:
    if not description or not description.strip():
        raise ValidationError("Description is required")
    return description.strip()


def _to_amount(amount) -> Decimal:
    return from_cents(to_cents(amount))


def _check_currency(group: Group, currency: str | None) -> str:
    if currency is None:
        return group.currency
    if currency.upper() != group.currency:
        raise ValidationError(
            f"Expense currency {currency} does not match group currency {group.currency}"
        )
    return group.currency


def _to_category(category: ExpenseCategory | str | None) -> ExpenseCategory:
    if category is None:
        return ExpenseCategory.OTHER
    try:
        return ExpenseCategory(category)
    except ValueError as e:
        raise ValidationError(f"Unknown category: {category!r}") from e


def _to_split_type(split_type: SplitType | str) -> SplitType:
    try:
        return SplitType(split_type)
    except ValueError as e:
        raise ValidationError(f"Unknown split type: {split_type!r}") from e


def _check_payer(group: Group, payer: str) -> str:
    if not group.has_member(payer):
        raise ValidationError(f"Payer '{payer}' is not a member of group {group.id}")
    return payer


def _check_member(group: Group, acting_member: str):
    if not group.has_member(acting_member):
        raise AuthorizationError(
            acting_member, f"Member '{acting_member}' is not in group {group.id}"
        )


def _check_admin(group: Group, acting_member: str, action: str):
    if not group.is_admin(acting_member):
        raise AuthorizationError(
            acting_member, f"Only the group creator can {action}"
        )


def _check_can_edit(group: Group, expense: Expense, acting_member: str):
    if acting_member not in (expense.payer_id, group.created_by):
        raise AuthorizationError(
            acting_member, "Only the payer or the group creator can change an expense"
        )


def _inputs_from_splits(expense: Expense) -> list[SplitInput]:
    return [
        SplitInput(member_id=split.member_id, amount=split.amount, share=split.weight)
        for split in expense.splits
    ]
