"""Split calculation: dividing one expense amount among group members."""

import logging
from collections.abc import Callable, Sequence
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ..exceptions import ValidationError
from ..models import Split, SplitInput, SplitType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
EPSILON = Decimal("0.01")


def to_cents(amount: Decimal | int | str) -> int:
    """
    Convert a Decimal amount to integer cents.
    Uses ROUND_HALF_UP for consistency and logs anything finer than a cent.

    Args:
        amount: Amount in currency units

    Returns:
        Amount in cents (integer)
    """
    value = Decimal(str(amount))
    cents = value * 100
    rounded = cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    if rounded != cents:
        logger.warning(f"Amount {value} has sub-cent precision, rounded to cents")
    return int(rounded)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


def is_negligible(amount: Decimal) -> bool:
    """True when an amount is within epsilon of zero."""
    return abs(amount) < EPSILON


def _distribute(total_cents: int, weights: list[int]) -> list[int]:
    """
    Divide cents proportionally to weights, flooring each portion and handing
    the leftover cents out one at a time front to back.
    """
    total_weight = sum(weights)
    portions = [total_cents * weight // total_weight for weight in weights]
    remainder = total_cents - sum(portions)
    for i in range(remainder):
        portions[i % len(portions)] += 1
    return portions


def _check_members(inputs: Sequence[SplitInput], members: Sequence[str]) -> None:
    seen: set[str] = set()
    for split_input in inputs:
        if split_input.member_id not in members:
            raise ValidationError(
                f"Split references '{split_input.member_id}', who is not a group member"
            )
        if split_input.member_id in seen:
            raise ValidationError(
                f"Member '{split_input.member_id}' appears more than once in the splits"
            )
        seen.add(split_input.member_id)


def _equal_splits(
    total_cents: int, members: Sequence[str], inputs: Sequence[SplitInput]
) -> list[Split]:
    participants = [i.member_id for i in inputs] if inputs else list(members)
    if not participants:
        raise ValidationError("At least one split is required")

    portions = _distribute(total_cents, [1] * len(participants))
    return [
        Split(member_id=member_id, amount=from_cents(cents), weight=1)
        for member_id, cents in zip(participants, portions)
    ]


def _exact_splits(
    total_cents: int, members: Sequence[str], inputs: Sequence[SplitInput]
) -> list[Split]:
    if not inputs:
        raise ValidationError("At least one split is required")

    cents = []
    for split_input in inputs:
        if split_input.amount is None:
            raise ValidationError(
                f"Exact split for '{split_input.member_id}' has no amount"
            )
        if split_input.amount < 0:
            raise ValidationError(
                f"Exact split for '{split_input.member_id}' is negative: "
                f"{split_input.amount}"
            )
        cents.append(to_cents(split_input.amount))

    residual = total_cents - sum(cents)
    if abs(residual) > to_cents(EPSILON):
        raise ValidationError(
            f"Exact splits total {from_cents(sum(cents))} but the expense amount is "
            f"{from_cents(total_cents)}"
        )

    if residual != 0:
        # Largest split absorbs the cent so the total matches exactly
        largest = max(range(len(cents)), key=lambda i: cents[i])
        cents[largest] += residual
        logger.warning(
            f"Applied rounding adjustment: {residual} cents "
            f"to split for '{inputs[largest].member_id}'"
        )

    return [
        Split(member_id=split_input.member_id, amount=from_cents(c), weight=1)
        for split_input, c in zip(inputs, cents)
    ]


def _share_splits(
    total_cents: int, members: Sequence[str], inputs: Sequence[SplitInput]
) -> list[Split]:
    if not inputs:
        raise ValidationError("At least one split is required")

    for split_input in inputs:
        share = split_input.share
        if isinstance(share, bool) or not isinstance(share, int) or share <= 0:
            raise ValidationError(
                f"Share for '{split_input.member_id}' must be a positive integer, "
                f"got {share!r}"
            )

    weights = [split_input.share for split_input in inputs]
    portions = _distribute(total_cents, weights)
    return [
        Split(member_id=split_input.member_id, amount=from_cents(c), weight=weight)
        for split_input, c, weight in zip(inputs, portions, weights)
    ]


_CALCULATORS: dict[
    SplitType, Callable[[int, Sequence[str], Sequence[SplitInput]], list[Split]]
] = {
    SplitType.EQUAL: _equal_splits,
    SplitType.EXACT: _exact_splits,
    SplitType.SHARES: _share_splits,
}


def compute_splits(
    amount: Decimal,
    split_type: SplitType,
    members: Sequence[str],
    split_inputs: Sequence[SplitInput] = (),
) -> list[Split]:
    """
    Compute every participant's share of one expense.

    Equal splits use the members named in `split_inputs` in the given order,
    or every group member when no inputs are supplied. Leftover cents go to
    participants front to back, so the splits always sum to the amount.

    Args:
        amount: Expense amount (must be positive)
        split_type: The split policy
        members: Ordered ids of the group's members
        split_inputs: Caller-supplied participants, amounts or shares

    Returns:
        List of splits whose amounts sum exactly to `amount`

    Raises:
        ValidationError: On empty splits, non-positive amount, non-member
            references, bad shares or an exact-split total mismatch
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError(f"Expense amount is not a number: {amount!r}") from e

    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Expense amount must be positive, got {amount}")

    total_cents = to_cents(value)
    if total_cents <= 0:
        raise ValidationError(f"Expense amount {amount} rounds to zero")

    try:
        split_type = SplitType(split_type)
    except ValueError as e:
        raise ValidationError(f"Unknown split type: {split_type!r}") from e

    _check_members(split_inputs, members)

    splits = _CALCULATORS[split_type](total_cents, members, split_inputs)

    # Final verification
    assert sum(to_cents(s.amount) for s in splits) == total_cents, "Split failed"

    logger.debug(
        f"Computed {len(splits)} {split_type.value} splits for {from_cents(total_cents)}"
    )
    return splits


def parse_amount(value: str) -> Decimal:
    """Parse a money amount given as text."""
    try:
        amount = Decimal(value)
    except InvalidOperation as e:
        raise ValidationError(f"Not a valid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"Not a valid amount: {value!r}")
    return amount


def parse_split_arg(value: str, split_type: SplitType) -> SplitInput:
    """
    Parse one textual split such as "alice" or "bob=12.50".

    Accepts MEMBER, or MEMBER=VALUE where VALUE is an amount for exact splits
    and an integer share for share splits.
    """
    member_id, sep, raw = value.partition("=")
    member_id = member_id.strip()
    if not member_id:
        raise ValidationError(f"Split '{value}' has no member")
    if not sep:
        return SplitInput(member_id=member_id)

    if split_type == SplitType.EXACT:
        return SplitInput(member_id=member_id, amount=parse_amount(raw.strip()))
    if split_type == SplitType.SHARES:
        try:
            share = int(raw.strip())
        except ValueError as e:
            raise ValidationError(f"Share in '{value}' is not an integer") from e
        return SplitInput(member_id=member_id, share=share)
    raise ValidationError(f"Equal splits take member names only, got '{value}'")
