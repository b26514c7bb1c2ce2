"""
tests/unit/test_allocation_calculator.py — Share computation and residual placement.

Tests the pure functions in services/allocation_calculator.py directly.
No database, no Flask app, no HTTP requests.

Core rule under test:
  sum(share_amount) == total_amount exactly, for every method and every
  participant count. The signed rounding residual goes to the FIRST
  participant in input order.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from backend.app.errors import AppError, ErrorCode
from backend.app.models.bill_split import SplitMethod
from backend.app.services.allocation_calculator import (
    apply_exact_overrides,
    compute_shares,
    to_decimal,
    validate_percentages,
)


def _people(*split_values):
    return [{"user_id": i + 1, "split_value": v} for i, v in enumerate(split_values)]


def _amounts(shares):
    return [s["share_amount"] for s in shares]


# ═══════════════════════════════════════════════════════════════════════════
# Worked examples
# ═══════════════════════════════════════════════════════════════════════════

def test_equal_90_between_three():
    shares = compute_shares(Decimal("90.00"), SplitMethod.EQUAL, _people(1, 1, 1))

    assert _amounts(shares) == [Decimal("30.00")] * 3
    assert [s["user_id"] for s in shares] == [1, 2, 3]


def test_percentage_50_30_20():
    shares = compute_shares(Decimal("100.00"), SplitMethod.PERCENTAGE, _people(50, 30, 20))

    assert _amounts(shares) == [Decimal("50.00"), Decimal("30.00"), Decimal("20.00")]


def test_percentage_thirds_sum_exactly_to_total():
    shares = compute_shares(
        Decimal("100.00"),
        SplitMethod.PERCENTAGE,
        _people(Decimal("33.33"), Decimal("33.33"), Decimal("33.34")),
    )

    assert _amounts(shares) == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(_amounts(shares)) == Decimal("100.00")


# ═══════════════════════════════════════════════════════════════════════════
# Residual placement
# ═══════════════════════════════════════════════════════════════════════════

def test_equal_residual_goes_to_first_participant():
    """100 / 3 = 33.33 each, 0.01 left over for participant 1."""
    shares = compute_shares(Decimal("100.00"), SplitMethod.EQUAL, _people(1, 1, 1))

    assert _amounts(shares) == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]


def test_negative_residual_also_goes_to_first_participant():
    """2 / 3 rounds to 0.67 each (2.01), so the first participant gives back a cent."""
    shares = compute_shares(Decimal("2.00"), SplitMethod.EQUAL, _people(1, 1, 1))

    assert _amounts(shares) == [Decimal("0.66"), Decimal("0.67"), Decimal("0.67")]
    assert sum(_amounts(shares)) == Decimal("2.00")


def test_exact_is_computed_like_equal():
    equal = compute_shares(Decimal("10.00"), SplitMethod.EQUAL, _people(1, 1, 1))
    exact = compute_shares(Decimal("10.00"), SplitMethod.EXACT, _people(1, 1, 1))

    assert equal == exact


@pytest.mark.parametrize("total", ["0.01", "0.05", "1.00", "9.99", "100.00", "1234.57", "99999.99"])
@pytest.mark.parametrize("count", [1, 2, 3, 6, 7, 11])
def test_equal_shares_always_sum_to_total(total, count):
    shares = compute_shares(Decimal(total), SplitMethod.EQUAL, _people(*([1] * count)))

    assert sum(_amounts(shares)) == Decimal(total)
    # Every share except the first is the same rounded per-head amount.
    assert len(set(_amounts(shares)[1:])) <= 1


@pytest.mark.parametrize(
    "weights",
    [
        (Decimal("12.5"), Decimal("12.5"), Decimal("75")),
        (Decimal("33.3"), Decimal("33.3"), Decimal("33.4")),
        (Decimal("1"), Decimal("99")),
        (Decimal("14.29"), Decimal("14.29"), Decimal("14.29"), Decimal("14.29"),
         Decimal("14.28"), Decimal("14.28"), Decimal("14.28")),
    ],
)
def test_percentage_shares_sum_to_total_and_stay_proportional(weights):
    total = Decimal("77.77")
    shares = _amounts(compute_shares(total, SplitMethod.PERCENTAGE, _people(*weights)))

    assert sum(shares) == total
    weight_sum = sum(weights)
    for share, weight in zip(shares[1:], weights[1:]):
        assert abs(share - weight / weight_sum * total) <= Decimal("0.005")


def test_compute_shares_is_deterministic():
    args = (Decimal("123.45"), SplitMethod.PERCENTAGE, _people(10, 20, 70))

    assert compute_shares(*args) == compute_shares(*args)


def test_float_weights_do_not_leak_binary_noise():
    shares = compute_shares("0.30", "percentage", _people(0.1, 0.2))

    assert _amounts(shares) == [Decimal("0.10"), Decimal("0.20")]


# ═══════════════════════════════════════════════════════════════════════════
# Degenerate input
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("total", [Decimal("0"), Decimal("-5.00")])
def test_non_positive_total_gives_zero_shares(total):
    shares = compute_shares(total, SplitMethod.EQUAL, _people(1, 1))

    assert _amounts(shares) == [Decimal("0.00"), Decimal("0.00")]


def test_empty_participants_gives_empty_result():
    assert compute_shares(Decimal("10.00"), SplitMethod.EQUAL, []) == []


def test_percentage_weights_summing_to_zero_give_zero_shares():
    shares = compute_shares(Decimal("10.00"), SplitMethod.PERCENTAGE, _people(0, 0))

    assert _amounts(shares) == [Decimal("0.00"), Decimal("0.00")]


def test_to_decimal_treats_none_and_junk_as_zero():
    assert to_decimal(None) == Decimal("0")
    assert to_decimal("not-a-number") == Decimal("0")
    assert to_decimal(1.1) == Decimal("1.1")


# ═══════════════════════════════════════════════════════════════════════════
# Exact overrides and percentage validation
# ═══════════════════════════════════════════════════════════════════════════

def test_exact_overrides_used_when_they_match_total():
    shares = apply_exact_overrides(
        Decimal("50.00"),
        [
            {"user_id": 1, "share_amount": Decimal("10.00")},
            {"user_id": 2, "share_amount": Decimal("40.00")},
        ],
    )

    assert _amounts(shares) == [Decimal("10.00"), Decimal("40.00")]


def test_exact_overrides_within_epsilon_fold_residual_into_first():
    shares = apply_exact_overrides(
        Decimal("50.00"),
        [
            {"user_id": 1, "share_amount": Decimal("10.00")},
            {"user_id": 2, "share_amount": Decimal("39.99")},
        ],
    )

    assert _amounts(shares) == [Decimal("10.01"), Decimal("39.99")]


def test_exact_overrides_off_by_more_than_a_cent_are_rejected():
    with pytest.raises(AppError) as exc_info:
        apply_exact_overrides(
            Decimal("50.00"),
            [
                {"user_id": 1, "share_amount": Decimal("10.00")},
                {"user_id": 2, "share_amount": Decimal("30.00")},
            ],
        )

    assert exc_info.value.code == ErrorCode.SHARES_NOT_MATCHING_TOTAL
    assert exc_info.value.http_status == 422


def test_exact_overrides_need_every_share():
    with pytest.raises(AppError) as exc_info:
        apply_exact_overrides(
            Decimal("50.00"),
            [
                {"user_id": 1, "share_amount": Decimal("50.00")},
                {"user_id": 2, "share_amount": None},
            ],
        )

    assert exc_info.value.code == ErrorCode.SHARES_NOT_MATCHING_TOTAL


@pytest.mark.parametrize(
    "values",
    [
        [50, 30, 20],
        [Decimal("33.33"), Decimal("33.33"), Decimal("33.33")],   # 99.99, within a cent
        [Decimal("100.01")],
    ],
)
def test_validate_percentages_accepts_sums_near_100(values):
    validate_percentages(values)


@pytest.mark.parametrize("values", [[50, 30], [60, 60], [0, 0], [], [None, None]])
def test_validate_percentages_rejects_other_sums(values):
    with pytest.raises(AppError) as exc_info:
        validate_percentages(values)

    assert exc_info.value.code == ErrorCode.PERCENTAGES_NOT_100
    assert exc_info.value.http_status == 422
