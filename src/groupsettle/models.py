"""Pydantic domain models for groupsettle."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

# ============================================================================
# Enums
# ============================================================================


class SplitType(str, Enum):
    """How an expense amount is divided among its participants."""

    EQUAL = "equal"
    EXACT = "exact"
    SHARES = "shares"


class ExpenseCategory(str, Enum):
    """Expense categories."""

    FOOD = "food"
    TRANSPORT = "transport"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    UTILITIES = "utilities"
    TRAVEL = "travel"
    OTHER = "other"


# ============================================================================
# Group Models
# ============================================================================


class Group(BaseModel):
    """A group of members sharing expenses in one currency."""

    id: int | None = None
    name: str
    description: str = ""
    currency: str = "USD"
    created_by: str
    members: list[str] = Field(default_factory=list)  # ordered member ids
    created_at: datetime = Field(default_factory=datetime.now)

    def has_member(self, member_id: str) -> bool:
        """Check whether a member belongs to this group."""
        return member_id in self.members

    def is_admin(self, member_id: str) -> bool:
        """Check whether a member administers this group (its creator)."""
        return member_id == self.created_by


# ============================================================================
# Expense Models
# ============================================================================


class SplitInput(BaseModel):
    """Caller-supplied split for one participant.

    `amount` is only read for exact splits and `share` only for share splits.
    """

    member_id: str
    amount: Decimal | None = None
    share: int = 1


class Split(BaseModel):
    """A computed split: what one member owes for one expense."""

    member_id: str
    amount: Decimal
    weight: int = 1


class Expense(BaseModel):
    """An expense paid by one member and split across several."""

    id: int | None = None
    group_id: int
    description: str
    amount: Decimal
    currency: str = "USD"
    category: ExpenseCategory = ExpenseCategory.OTHER
    split_type: SplitType
    payer_id: str
    splits: list[Split]
    notes: str = ""
    date: datetime = Field(default_factory=datetime.now)
    created_at: datetime = Field(default_factory=datetime.now)

    def split_total(self) -> Decimal:
        """Sum of all split amounts."""
        return sum((split.amount for split in self.splits), Decimal("0"))

    def participants(self) -> list[str]:
        """Member ids this expense is split across, in split order."""
        return [split.member_id for split in self.splits]


# ============================================================================
# Settlement Models
# ============================================================================


class ProposedSettlement(BaseModel):
    """A payment obligation produced by a settlement strategy."""

    from_member_id: str  # debtor
    to_member_id: str  # creditor
    amount: Decimal


class Settlement(BaseModel):
    """A persisted payment obligation between two group members."""

    id: int | None = None
    group_id: int
    from_member_id: str
    to_member_id: str
    amount: Decimal
    currency: str = "USD"
    is_paid: bool = False
    paid_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    def involves(self, member_id: str) -> bool:
        """Check whether a member is the payer or payee of this settlement."""
        return member_id in (self.from_member_id, self.to_member_id)
