"""Net balance aggregation across a group's expenses."""

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal

from ..models import Expense
from .splits import is_negligible

logger = logging.getLogger(__name__)


def compute_balances(
    expenses: Iterable[Expense], members: Sequence[str] = ()
) -> dict[str, Decimal]:
    """
    Compute each member's net balance.

    Positive means the member is owed money, negative means they owe. The
    payer of each expense is credited the full amount and every split member
    is debited their split amount. The result does not depend on expense
    order, and balances within epsilon of zero are clamped to exactly zero.

    Args:
        expenses: The group's expenses
        members: Ordered member ids to seed with a zero balance

    Returns:
        Mapping of member id to signed balance
    """
    balances: dict[str, Decimal] = {member_id: Decimal("0") for member_id in members}

    count = 0
    for expense in expenses:
        balances[expense.payer_id] = (
            balances.get(expense.payer_id, Decimal("0")) + expense.amount
        )
        for split in expense.splits:
            balances[split.member_id] = (
                balances.get(split.member_id, Decimal("0")) - split.amount
            )
        count += 1

    for member_id, balance in balances.items():
        if is_negligible(balance):
            balances[member_id] = Decimal("0.00")

    logger.debug(f"Aggregated {count} expenses into {len(balances)} balances")
    return balances
