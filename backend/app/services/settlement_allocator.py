"""
services/settlement_allocator.py — Proportional distribution of a debt across creditors.

One allocator serves both directions:
  settle_up(debtor)    — what the debtor should pay, to whom, per split.
  collect_up(creditor) — what each debtor should pay this creditor, per split.
Both run the same per-split computation (_allocate_debtor_in_split); only
which party is fixed and which candidates are kept differ.

Per-split computation for debtor A in split S:
  owed            = share_A - paid_A                  (skip S when <= 0)
  owed_to[B]      = paid_B - share_B - settled(A→B, S) for every other B
  keep B where owed_to[B] > 0, total = sum(owed_to)   (skip S when <= 0)
  raw[B]          = min(owed, owed * owed_to[B] / total)

The raw amounts are turned into cents by flooring each one and handing the
leftover cents to the largest fractional remainders (input order breaks
ties). The candidates therefore add up to exactly `owed`, each is >= 0, and
repeated partial settlements shrink the debt monotonically without
overshooting.

Layer rules:
  - No Flask, no session, no I/O. Works on ORM objects or SimpleNamespace.
"""

from __future__ import annotations

import enum
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class Role(str, enum.Enum):
    DEBTOR   = "debtor"
    CREDITOR = "creditor"


@dataclass(frozen=True)
class SettlementCandidate:
    split_id: int
    split_name: str
    payer_id: int
    payee_id: int
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "split_id": self.split_id,
            "split_name": self.split_name,
            "payer_id": self.payer_id,
            "payee_id": self.payee_id,
            "amount": str(self.amount),
        }


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _settled_by_payee(settlements: Iterable, split_id, payer_id: int) -> dict[int, Decimal]:
    """Sum of settlements already paid by payer_id on split_id, keyed by payee."""
    settled: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for s in settlements:
        if s.split_id == split_id and s.payer_user_id == payer_id:
            settled[s.payee_user_id] += _money(s.amount)
    return settled


def _to_cents(raw: list[Decimal], target: Decimal) -> list[Decimal]:
    """
    Rounds `raw` to cents so the result sums to `target` (largest remainder).
    Every raw[i] >= 0 and sum(raw) == target (to within a cent) is assumed.
    """
    floors = [r.quantize(CENT, rounding=ROUND_DOWN) for r in raw]
    leftover = int((target - sum(floors, ZERO)) / CENT)
    if leftover <= 0:
        return floors

    by_remainder = sorted(
        range(len(raw)),
        key=lambda i: (-(raw[i] - floors[i]), i),
    )
    for i in by_remainder[:leftover]:
        floors[i] += CENT
    return floors


def _allocate_debtor_in_split(split, settlements: list, debtor_id: int) -> list[SettlementCandidate]:
    if getattr(split, "deleted_at", None) is not None:
        return []

    participants = list(getattr(split, "participants", None) or [])
    debtor = next((p for p in participants if p.user_id == debtor_id), None)
    if debtor is None:
        return []

    owed = _money(debtor.share_amount) - _money(debtor.paid_amount)
    if owed <= 0:
        return []

    settled = _settled_by_payee(settlements, split.id, debtor_id)

    creditors: list[tuple[int, Decimal]] = []
    for p in participants:
        if p.user_id == debtor_id:
            continue
        owed_to = _money(p.paid_amount) - _money(p.share_amount) - settled[p.user_id]
        if owed_to > 0:
            creditors.append((p.user_id, owed_to))

    total_owed_by_others = sum((stake for _, stake in creditors), ZERO)
    if total_owed_by_others <= 0:
        # Already settled, or the split's numbers are inconsistent. Skip it.
        return []

    raw = [min(owed, owed * stake / total_owed_by_others) for _, stake in creditors]
    # sum(raw) == owed up to Decimal precision.
    target = owed.quantize(CENT, rounding=ROUND_DOWN)
    amounts = _to_cents(raw, target)

    return [
        SettlementCandidate(
            split_id=split.id,
            split_name=getattr(split, "name", "") or "",
            payer_id=debtor_id,
            payee_id=payee_id,
            amount=amount,
        )
        for (payee_id, _), amount in zip(creditors, amounts)
        if amount > 0
    ]


def allocate(
        splits: Iterable,
        settlements: Iterable,
        party_id: int,
        role: Role | str,
) -> list[SettlementCandidate]:
    """
    Computes settlement candidates for party_id.

    role=DEBTOR:   party_id is the payer in every candidate.
    role=CREDITOR: party_id is the payee in every candidate; every other
                   participant of each split is evaluated as a debtor.
    """
    role = Role(role)
    settlements = list(settlements)
    candidates: list[SettlementCandidate] = []

    for split in splits:
        if role == Role.DEBTOR:
            candidates.extend(_allocate_debtor_in_split(split, settlements, party_id))
            continue

        for p in getattr(split, "participants", None) or []:
            if p.user_id == party_id:
                continue
            candidates.extend(
                c for c in _allocate_debtor_in_split(split, settlements, p.user_id)
                if c.payee_id == party_id
            )

    return candidates


def settle_up(splits: Iterable, settlements: Iterable, debtor_id: int) -> list[SettlementCandidate]:
    """Everything debtor_id should pay, split by split and creditor by creditor."""
    return allocate(splits, settlements, debtor_id, Role.DEBTOR)


def collect_up(splits: Iterable, settlements: Iterable, creditor_id: int) -> list[SettlementCandidate]:
    """Everything other participants should pay creditor_id."""
    return allocate(splits, settlements, creditor_id, Role.CREDITOR)


def candidate_amount(split, settlements: Iterable, payer_id: int, payee_id: int) -> Decimal:
    """
    The live amount payer_id may settle to payee_id on this split.
    ZERO when there is no outstanding debt between them.
    """
    for c in _allocate_debtor_in_split(split, list(settlements), payer_id):
        if c.payee_id == payee_id:
            return c.amount
    return ZERO
