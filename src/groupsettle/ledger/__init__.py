"""Expense splitting, balance aggregation and settlement generation."""

from .balances import compute_balances
from .locks import KeyedLock
from .service import LedgerService
from .settlement import (
    GreedySettlementStrategy,
    SettlementStrategy,
    net_settlements,
    verify_plan,
)
from .splits import compute_splits, from_cents, to_cents

__all__ = [
    "compute_balances",
    "KeyedLock",
    "LedgerService",
    "GreedySettlementStrategy",
    "SettlementStrategy",
    "net_settlements",
    "verify_plan",
    "compute_splits",
    "from_cents",
    "to_cents",
]
