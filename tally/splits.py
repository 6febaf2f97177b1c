"""Split an expense total across participants, cent-exact."""

from decimal import Decimal, ROUND_HALF_UP

from tally.money import CENTS, ZERO, from_cents, to_cents, to_decimal
from tally.schemas import SplitRecord

SPLIT_METHODS = ("even", "amount", "percentage", "ratio")


def _round_share(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_split(
    total,
    method: str,
    participants: list[str],
    split_details: dict[str, float] | None = None,
) -> list[SplitRecord]:
    """Calculate how an expense is split among participants.

    Works in integer cents. Even splits hand leftover cents, one each, to the
    first participants; percentage and ratio splits let the last participant
    absorb the rounding so shares always add up to the total.
    """
    details = {k: to_decimal(v) for k, v in (split_details or {}).items()}
    total_cents = to_cents(total)
    shares: dict[str, int] = {}

    if method == "even":
        count = len(participants)
        if count == 0:
            return []
        base = total_cents // count
        remainder = total_cents - base * count
        for i, pid in enumerate(participants):
            shares[pid] = base + (1 if i < remainder else 0)

    elif method == "percentage":
        allocated = 0
        for i, pid in enumerate(participants):
            if i == len(participants) - 1:
                shares[pid] = total_cents - allocated
            else:
                share = _round_share(total_cents * details.get(pid, ZERO) / 100)
                shares[pid] = share
                allocated += share

    elif method == "amount":
        for pid in participants:
            shares[pid] = to_cents(details.get(pid, ZERO))

    elif method == "ratio":
        total_weight = sum((details.get(pid, ZERO) for pid in participants), ZERO)
        if total_weight == 0:
            for pid in participants:
                shares[pid] = 0
        else:
            allocated = 0
            for i, pid in enumerate(participants):
                if i == len(participants) - 1:
                    shares[pid] = total_cents - allocated
                else:
                    share = _round_share(total_cents * details.get(pid, ZERO) / total_weight)
                    shares[pid] = share
                    allocated += share

    else:
        raise ValueError(f"Unknown split method: {method}")

    return [SplitRecord(participant_id=pid, amount=from_cents(cents)) for pid, cents in shares.items()]


def validate_split(total, splits: list[SplitRecord], tolerance: Decimal = CENTS) -> list[str]:
    """Return human-readable problems with a split; empty when it is sound."""
    errors = []
    total = to_decimal(total)
    if total <= 0:
        errors.append("Total amount must be positive")
    if not splits:
        errors.append("At least one participant is required")

    seen = set()
    for split in splits:
        if split.participant_id in seen:
            errors.append(f"Participant {split.participant_id} appears more than once")
        seen.add(split.participant_id)
        if split.amount < 0:
            errors.append(f"Share for {split.participant_id} must not be negative")

    split_total = sum((s.amount for s in splits), ZERO)
    if splits and abs(split_total - total) > tolerance:
        errors.append(f"Split total ({split_total}) must equal expense amount ({total})")
    return errors
