"""Settlement generation: turning net balances into payments between members."""

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Protocol

from ..exceptions import InternalInvariantError
from ..models import ProposedSettlement
from .splits import EPSILON, is_negligible

logger = logging.getLogger(__name__)


class SettlementStrategy(Protocol):
    """Anything that can turn net balances into a settlement plan."""

    def generate(
        self, balances: Mapping[str, Decimal]
    ) -> list[ProposedSettlement]: ...


class GreedySettlementStrategy:
    """
    Match creditors against debtors with a two-pointer sweep.

    Both sides are ordered ascending by member id so the same balances always
    yield the same plan. The sweep emits at most creditors + debtors - 1
    payments but makes no attempt at the minimum number of payments.
    """

    def generate(self, balances: Mapping[str, Decimal]) -> list[ProposedSettlement]:
        """
        Generate the settlement plan for a set of balances.

        Args:
            balances: Mapping of member id to signed net balance

        Returns:
            Ordered list of proposed settlements (debtor pays creditor)

        Raises:
            InternalInvariantError: If credits and debits do not cancel out
        """
        # A balance counts once it reaches a full cent. A strict `> EPSILON`
        # cut would drop one-cent balances and the plan would no longer net
        # to the balances.
        creditors = sorted(
            (member_id, balance)
            for member_id, balance in balances.items()
            if balance > 0 and not is_negligible(balance)
        )
        debtors = sorted(
            (member_id, -balance)
            for member_id, balance in balances.items()
            if balance < 0 and not is_negligible(balance)
        )

        credit_total = sum((amount for _, amount in creditors), Decimal("0"))
        debit_total = sum((amount for _, amount in debtors), Decimal("0"))
        if abs(credit_total - debit_total) >= EPSILON:
            raise InternalInvariantError(
                f"Balances do not cancel out:\n"
                f"  Owed to creditors: {credit_total}\n"
                f"  Owed by debtors:   {debit_total}\n"
                f"This likely indicates a data integrity issue.",
                credit_total=credit_total,
                debit_total=debit_total,
            )

        plan: list[ProposedSettlement] = []
        c_idx, d_idx = 0, 0
        c_remaining = creditors[0][1] if creditors else Decimal("0")
        d_remaining = debtors[0][1] if debtors else Decimal("0")

        while c_idx < len(creditors) and d_idx < len(debtors):
            amount = min(c_remaining, d_remaining)
            plan.append(
                ProposedSettlement(
                    from_member_id=debtors[d_idx][0],
                    to_member_id=creditors[c_idx][0],
                    amount=amount,
                )
            )
            c_remaining -= amount
            d_remaining -= amount

            if is_negligible(c_remaining):
                c_idx += 1
                if c_idx < len(creditors):
                    c_remaining = creditors[c_idx][1]
            if is_negligible(d_remaining):
                d_idx += 1
                if d_idx < len(debtors):
                    d_remaining = debtors[d_idx][1]

        assert len(plan) <= max(len(creditors) + len(debtors) - 1, 0)

        logger.debug(
            f"Matched {len(creditors)} creditors with {len(debtors)} debtors "
            f"in {len(plan)} settlements"
        )
        return plan


def net_settlements(
    settlements: Iterable[ProposedSettlement],
) -> dict[str, Decimal]:
    """
    Net a settlement plan back into per-member balances.

    A member's netted balance is what they receive minus what they pay, so a
    correct plan nets to exactly the balances it was generated from.
    """
    netted: dict[str, Decimal] = {}
    for settlement in settlements:
        netted[settlement.to_member_id] = (
            netted.get(settlement.to_member_id, Decimal("0")) + settlement.amount
        )
        netted[settlement.from_member_id] = (
            netted.get(settlement.from_member_id, Decimal("0")) - settlement.amount
        )
    return netted


def verify_plan(
    balances: Mapping[str, Decimal], plan: Iterable[ProposedSettlement]
) -> None:
    """
    Check that a plan reproduces the balances it was generated from.

    Raises:
        InternalInvariantError: If any member's netted amount differs
    """
    netted = net_settlements(plan)
    for member_id in set(balances) | set(netted):
        expected = balances.get(member_id, Decimal("0"))
        actual = netted.get(member_id, Decimal("0"))
        if expected != actual:
            raise InternalInvariantError(
                f"Settlement plan nets {actual} for '{member_id}' "
                f"but the balance is {expected}"
            )
