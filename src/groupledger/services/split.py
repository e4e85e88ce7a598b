from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Mapping, Sequence

from groupledger.errors import ValidationFailure


EPSILON = Decimal("0.01")
CENT = Decimal("0.01")
# Largest value a NUMERIC(10, 2) column holds.
MAX_AMOUNT = Decimal("99999999.99")


def to_amount(value: Decimal | int | str) -> Decimal:
    try:
        amount = Decimal(value)
        if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
            raise ValidationFailure(f"amount {value} is out of range")
        return amount.quantize(CENT)
    except InvalidOperation as exc:
        raise ValidationFailure(f"invalid amount {value!r}") from exc


def split_amount(amount: Decimal, participants: Sequence[str]) -> dict[str, Decimal]:
    """Split ``amount`` equally, handing leftover cents out in participant order."""
    amount = to_amount(amount)
    if amount <= 0:
        raise ValidationFailure("amount must be positive")
    if not participants:
        raise ValidationFailure("participants must not be empty")
    if len(set(participants)) != len(participants):
        raise ValidationFailure("participants must be unique")

    n = len(participants)
    base_share = (amount / n).quantize(CENT, rounding=ROUND_DOWN)

    shares = [base_share for _ in participants]
    remainder = amount - base_share * n

    idx = 0
    while remainder > 0:
        shares[idx] += CENT
        remainder -= CENT
        idx = (idx + 1) % n

    return {participant: share for participant, share in zip(participants, shares)}


def validate_splits(amount: Decimal, splits: Mapping[str, Decimal]) -> None:
    amount = to_amount(amount)
    if amount <= 0:
        raise ValidationFailure("amount must be positive")
    if not splits:
        raise ValidationFailure("splits must not be empty")

    splits = {user_id: to_amount(share) for user_id, share in splits.items()}
    for user_id, share in splits.items():
        if share <= 0:
            raise ValidationFailure(f"split for {user_id} must be positive")

    total = sum(splits.values(), Decimal(0))
    if abs(total - amount) > EPSILON:
        raise ValidationFailure(f"splits add up to {total}, expected {amount}")
