"""
services/allocation_calculator.py — Turns a split total into per-participant shares.

This file is the SINGLE SOURCE OF TRUTH for how a total is divided. Split
creation and replacement both go through compute_shares(); nothing else in
the codebase divides a total amount.

Rounding rule:
  Every share is rounded to the cent independently (ROUND_HALF_UP). The signed
  residual `total - sum(rounded)` is then added to the FIRST participant in
  input order. After that, sum(shares) == total exactly, for every method and
  every participant count.

Layer rules:
  - No Flask, no session, no I/O. Deterministic: same input, same output.
  - Decimal only. Never float.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from backend.app.errors import AppError, ErrorCode
from backend.app.models.bill_split import SplitMethod

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Tolerance for "shares sum to total" and "percentages sum to 100" checks.
# Used only at those two comparison points.
EPSILON = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Converts a raw input to Decimal; None and junk become 0."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so a float 0.1 becomes Decimal("0.1"), not its binary expansion.
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _zero_shares(participants: list[dict]) -> list[dict]:
    return [{"user_id": p["user_id"], "share_amount": ZERO} for p in participants]


def compute_shares(
        total_amount,
        method: SplitMethod | str,
        participants: Iterable[dict],
) -> list[dict]:
    """
    Computes each participant's share of `total_amount`.

    Args:
        total_amount: The split total (Decimal, or anything Decimal(str(x)) accepts).
        method:       equal | exact | percentage.
        participants: Ordered [{"user_id": int, "split_value": number}, ...].
                      split_value is only read for the percentage method.

    Returns:
        [{"user_id": int, "share_amount": Decimal}, ...] in input order.

    equal / exact:
        share = total / n. The two methods differ only in client intent;
        exact mode may later be overridden with apply_exact_overrides().
    percentage:
        share = split_value / sum(split_values) * total.
        If sum(split_values) <= 0 every share is 0; the caller must reject
        that input before persisting.

    A non-positive total or an empty participant list yields all-zero shares.
    """
    participants = list(participants)
    total = to_decimal(total_amount)
    method = SplitMethod(method)

    if not participants or total <= 0:
        return _zero_shares(participants)

    if method == SplitMethod.PERCENTAGE:
        weights = [to_decimal(p.get("split_value")) for p in participants]
        weight_total = sum(weights, Decimal("0"))
        if weight_total <= 0:
            return _zero_shares(participants)
        shares = [round_cents(w / weight_total * total) for w in weights]
    else:
        per_head = round_cents(total / Decimal(len(participants)))
        shares = [per_head] * len(participants)

    residual = total - sum(shares, ZERO)
    shares[0] += residual

    return [
        {"user_id": p["user_id"], "share_amount": share}
        for p, share in zip(participants, shares)
    ]


def apply_exact_overrides(total_amount, requested: list[dict]) -> list[dict]:
    """
    Accepts client-supplied shares for the exact method.

    Client shares are advisory: they are used only when EVERY participant
    supplies one and their sum is within EPSILON of the total. The residual
    is then folded into the first participant so the stored sum is exact.

    Raises:
        AppError(SHARES_NOT_MATCHING_TOTAL, 422) — missing shares or sum off
                                                   by more than EPSILON.
    """
    total = to_decimal(total_amount)

    if not requested or any(r.get("share_amount") is None for r in requested):
        raise AppError(
            ErrorCode.SHARES_NOT_MATCHING_TOTAL,
            "Every participant needs a share_amount when overriding exact shares.",
            422,
            field="participants",
        )

    shares = [round_cents(to_decimal(r["share_amount"])) for r in requested]
    share_sum = sum(shares, ZERO)

    if abs(share_sum - total) > EPSILON:
        raise AppError(
            ErrorCode.SHARES_NOT_MATCHING_TOTAL,
            f"Participant shares ({share_sum}) do not add up to the total ({total}).",
            422,
            field="participants",
        )

    shares[0] += total - share_sum
    return [
        {"user_id": r["user_id"], "share_amount": share}
        for r, share in zip(requested, shares)
    ]


def validate_percentages(split_values: Iterable) -> None:
    """
    Raises PERCENTAGES_NOT_100 (422) unless the weights sum to 100 (±EPSILON).
    A zero or negative sum is rejected here, before compute_shares() would
    silently produce zero shares.
    """
    total = sum((to_decimal(v) for v in split_values), Decimal("0"))
    if total <= 0 or abs(total - Decimal("100")) > EPSILON:
        raise AppError(
            ErrorCode.PERCENTAGES_NOT_100,
            f"Percentages must add up to 100 (got {total}).",
            422,
            field="participants",
        )
