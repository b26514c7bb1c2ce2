"""
services/ledger_aggregator.py — Per-user balance over a set of splits and settlements.

This is the only place a UserBalance is computed. Every endpoint that shows
a balance calls aggregate(); no caching, no second copy of the formula.

Algorithm for user U:
  1. Every split where U is a participant: positive (share - paid) adds to
     total_owed.
  2. Every split U created: each OTHER participant's positive (share - paid)
     adds to total_owing. The creator is the single collection point; other
     participants never accrue owing from a split.
  3. Direct settlements (split_id is None): U as payer lowers total_owed,
     U as payee lowers total_owing. A settlement against a split is already
     in that split's paid_amount (record_settlement increments it in the
     same transaction) and is not subtracted a second time.
  4. Both totals are clamped at zero.
  5. net_balance = total_owing - total_owed.

Total over its input: a participant with a missing or unreadable amount is
counted as zero and logged (MALFORMED_PARTICIPANT). This function never
raises for bad data; it runs on every read.

Works on ORM objects or anything with the same attributes (SimpleNamespace
in unit tests).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable

from backend.app.errors import WarningCode

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class UserBalance:
    total_owed: Decimal = ZERO
    total_owing: Decimal = ZERO
    net_balance: Decimal = ZERO

    def to_dict(self) -> dict:
        # Amounts go out as strings, never JSON numbers.
        return {
            "total_owed": str(self.total_owed),
            "total_owing": str(self.total_owing),
            "net_balance": str(self.net_balance),
        }


def _money(record, attr: str, split_id) -> Decimal:
    value = getattr(record, attr, None)
    if value is not None:
        try:
            return value if isinstance(value, Decimal) else Decimal(str(value))
        except (InvalidOperation, ValueError):
            pass
    logger.warning(
        "%s: split %s participant %s has no usable %s; counted as 0",
        WarningCode.MALFORMED_PARTICIPANT,
        split_id,
        getattr(record, "user_id", None),
        attr,
    )
    return ZERO


def _outstanding(participant, split_id) -> Decimal:
    """share - paid; positive means the participant still owes into the split."""
    return _money(participant, "share_amount", split_id) - _money(participant, "paid_amount", split_id)


def _is_live(split, active_group_ids: set[int] | None) -> bool:
    if getattr(split, "deleted_at", None) is not None:
        return False
    if active_group_ids is not None and getattr(split, "group_id", None) not in active_group_ids:
        return False
    return True


def aggregate(
        splits: Iterable,
        settlements: Iterable,
        user_id: int,
        active_group_ids: Iterable[int] | None = None,
) -> UserBalance:
    """
    Computes user_id's balance.

    Args:
        splits:           BillSplit-like objects (participants, creator_user_id,
                          group_id, deleted_at).
        settlements:      Settlement-like objects (split_id, payer_user_id,
                          payee_user_id, amount).
        user_id:          The user whose balance is computed.
        active_group_ids: When given, splits of any other group are orphans
                          and are skipped.
    """
    group_filter = set(active_group_ids) if active_group_ids is not None else None

    total_owed = ZERO
    total_owing = ZERO

    for split in splits:
        if not _is_live(split, group_filter):
            continue

        split_id = getattr(split, "id", None)
        participants = getattr(split, "participants", None) or []

        for participant in participants:
            if getattr(participant, "user_id", None) != user_id:
                continue
            owed_in_split = _outstanding(participant, split_id)
            if owed_in_split > 0:
                total_owed += owed_in_split

        if getattr(split, "creator_user_id", None) == user_id:
            for participant in participants:
                if getattr(participant, "user_id", None) == user_id:
                    continue
                still_due = _outstanding(participant, split_id)
                if still_due > 0:
                    total_owing += still_due

    for settlement in settlements:
        if getattr(settlement, "split_id", None) is not None:
            continue
        amount = getattr(settlement, "amount", None) or ZERO
        if settlement.payer_user_id == user_id:
            total_owed -= amount
        elif settlement.payee_user_id == user_id:
            total_owing -= amount

    total_owed = max(total_owed, ZERO)
    total_owing = max(total_owing, ZERO)

    return UserBalance(
        total_owed=total_owed,
        total_owing=total_owing,
        net_balance=total_owing - total_owed,
    )
