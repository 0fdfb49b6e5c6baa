"""Tests for settlement generation."""

from decimal import Decimal

import pytest

from groupsettle.exceptions import InternalInvariantError
from groupsettle.ledger.settlement import (
    GreedySettlementStrategy,
    net_settlements,
    verify_plan,
)
from groupsettle.models import ProposedSettlement


def d(value: str) -> Decimal:
    return Decimal(value)


def triples(plan: list[ProposedSettlement]) -> list[tuple[str, str, Decimal]]:
    """(from, to, amount) for each settlement."""
    return [(s.from_member_id, s.to_member_id, s.amount) for s in plan]


@pytest.fixture
def strategy():
    return GreedySettlementStrategy()


class TestGreedySettlement:
    """Tests for GreedySettlementStrategy.generate."""

    def test_worked_example(self, strategy):
        balances = {"A": d("45.00"), "B": d("-15.00"), "C": d("-30.00")}

        plan = strategy.generate(balances)

        assert triples(plan) == [
            ("B", "A", d("15.00")),
            ("C", "A", d("30.00")),
        ]

    def test_single_creditor_drained_in_id_order(self, strategy):
        """One creditor is paid by every debtor, ascending by member id."""
        balances = {"zoe": d("60.00"), "carl": d("-10.00"), "anna": d("-50.00")}

        plan = strategy.generate(balances)

        assert triples(plan) == [
            ("anna", "zoe", d("50.00")),
            ("carl", "zoe", d("10.00")),
        ]

    def test_single_debtor_pays_every_creditor(self, strategy):
        balances = {"d": d("-100.00"), "a": d("20.00"), "b": d("30.00"), "c": d("50.00")}

        plan = strategy.generate(balances)

        assert triples(plan) == [
            ("d", "a", d("20.00")),
            ("d", "b", d("30.00")),
            ("d", "c", d("50.00")),
        ]

    def test_partial_matches_carry_over(self, strategy):
        balances = {
            "A": d("30.00"),
            "B": d("20.00"),
            "C": d("-25.00"),
            "D": d("-25.00"),
        }

        plan = strategy.generate(balances)

        assert triples(plan) == [
            ("C", "A", d("25.00")),
            ("D", "A", d("5.00")),
            ("D", "B", d("20.00")),
        ]
        assert len(plan) <= 2 + 2 - 1

    def test_zero_balances_produce_nothing(self, strategy):
        assert strategy.generate({"A": d("0"), "B": d("0.00")}) == []
        assert strategy.generate({}) == []

    def test_one_cent_balances_are_settled(self, strategy):
        """A single cent still counts as a debt."""
        balances = {"A": d("0.02"), "B": d("-0.01"), "C": d("-0.01")}

        plan = strategy.generate(balances)

        assert triples(plan) == [
            ("B", "A", d("0.01")),
            ("C", "A", d("0.01")),
        ]

    def test_single_cent_pair_nets_exactly(self, strategy):
        """A balance of exactly one cent is settled, not dropped."""
        balances = {"A": d("0.01"), "B": d("-0.01")}

        plan = strategy.generate(balances)

        assert triples(plan) == [("B", "A", d("0.01"))]
        verify_plan(balances, plan)

    def test_input_order_does_not_matter(self, strategy):
        balances = {"C": d("-30.00"), "A": d("45.00"), "B": d("-15.00")}
        reordered = dict(reversed(list(balances.items())))

        assert triples(strategy.generate(balances)) == triples(
            strategy.generate(reordered)
        )

    def test_unbalanced_input_raises(self, strategy):
        balances = {"A": d("50.00"), "B": d("-20.00")}

        with pytest.raises(InternalInvariantError) as exc_info:
            strategy.generate(balances)

        assert exc_info.value.credit_total == d("50.00")
        assert exc_info.value.debit_total == d("20.00")

    def test_netted_plan_reproduces_balances(self, strategy):
        balances = {
            "m1": d("12.34"),
            "m2": d("-7.89"),
            "m3": d("100.01"),
            "m4": d("-54.46"),
            "m5": d("-50.00"),
            "m6": d("0.00"),
        }

        plan = strategy.generate(balances)
        netted = net_settlements(plan)

        for member_id, balance in balances.items():
            assert netted.get(member_id, d("0")) == balance
        assert all(s.amount > 0 for s in plan)


class TestVerifyPlan:
    """Tests for verify_plan."""

    def test_accepts_matching_plan(self):
        plan = [ProposedSettlement(from_member_id="B", to_member_id="A", amount=d("5"))]

        verify_plan({"A": d("5"), "B": d("-5"), "C": d("0")}, plan)

    def test_rejects_plan_that_drops_a_member(self):
        plan = [ProposedSettlement(from_member_id="B", to_member_id="A", amount=d("5"))]

        with pytest.raises(InternalInvariantError, match="'C'"):
            verify_plan({"A": d("5"), "B": d("-5"), "C": d("-5")}, plan)
