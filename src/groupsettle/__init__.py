"""groupsettle - Split group expenses and settle up."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database
from .models import (
    Expense,
    Group,
    ProposedSettlement,
    Settlement,
    Split,
    SplitInput,
    SplitType,
)
from .ledger.balances import compute_balances
from .ledger.service import LedgerService
from .ledger.settlement import GreedySettlementStrategy
from .ledger.splits import compute_splits

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "Expense",
    "Group",
    "ProposedSettlement",
    "Settlement",
    "Split",
    "SplitInput",
    "SplitType",
    "compute_balances",
    "LedgerService",
    "GreedySettlementStrategy",
    "compute_splits",
]
