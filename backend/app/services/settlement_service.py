"""
services/settlement_service.py — Settlement business logic.

Rules enforced here:
  SELF_SETTLEMENT (422)      — payer_id must not equal payee_id
  FORBIDDEN (403)            — caller must be the payer or the payee
  PAYER_NOT_PARTICIPANT (422)— split-attributed: payer must be on the split
  NO_OUTSTANDING_DEBT (422)  — the allocator has nothing for this pair
  SETTLEMENT_EXCEEDS_OUTSTANDING (422)
                             — amount above the live candidate; never clamped

Split-attributed settlements:
  The Settlement row is appended and the payer's paid_amount on the split is
  incremented in the same flush. Both happen inside run_with_revision_retry(),
  so two concurrent settlements on one split can never both build on the
  same stale paid_amount. The candidate amount is recomputed on every
  attempt from the freshly loaded split.

Direct settlements (no split_id):
  Nothing on any split changes. The ledger aggregator subtracts them.

Pair cap:
  On either path the amount may not exceed what the payer still owes the
  payee across all live splits, less earlier direct settlements between
  the same pair. A split-attributed settlement is further capped by the
  candidate on its own split.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.settlement import Settlement
from backend.app.models.user import User
from backend.app.services import balance_service
from backend.app.services.revision_retry import DEFAULT_MAX_ATTEMPTS, run_with_revision_retry
from backend.app.services.settlement_allocator import (
    SettlementCandidate,
    candidate_amount,
    collect_up,
    settle_up,
)
from backend.app.services.split_service import get_live_split_or_404


# ── Private helpers ────────────────────────────────────────────────────────

def _require_user(user_id: int, field: str, session: Session) -> None:
    if session.get(User, user_id) is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
            field=field,
        )


def _check_amount_against(amount: Decimal, outstanding: Decimal, payer_id: int, payee_id: int) -> None:
    if outstanding <= 0:
        raise AppError(
            ErrorCode.NO_OUTSTANDING_DEBT,
            f"User {payer_id} has nothing outstanding to user {payee_id}.",
            422,
            field="amount",
        )
    if amount > outstanding:
        raise AppError(
            ErrorCode.SETTLEMENT_EXCEEDS_OUTSTANDING,
            f"Settlement of {amount} exceeds the outstanding {outstanding} "
            f"from user {payer_id} to user {payee_id}.",
            422,
            field="amount",
        )


def _outstanding_between(payer_id: int, payee_id: int, session: Session) -> Decimal:
    """
    What payer_id still owes payee_id overall: the allocator's candidates
    for the pair across every live split, minus direct settlements already
    recorded between them.
    """
    splits = balance_service.get_live_splits_for_user(payer_id, session)
    settlements = balance_service.get_settlements_for_splits([s.id for s in splits], session)
    across_splits = sum(
        (c.amount for c in settle_up(splits, settlements, payer_id) if c.payee_id == payee_id),
        Decimal("0.00"),
    )

    already_direct = session.execute(
        select(func.coalesce(func.sum(Settlement.amount), 0))
        .where(
            Settlement.split_id.is_(None),
            Settlement.payer_user_id == payer_id,
            Settlement.payee_user_id == payee_id,
        )
    ).scalar_one()

    return across_splits - Decimal(str(already_direct))


def _record_on_split(data: dict, session: Session) -> Settlement:
    """One read-modify-write attempt. Reloads the split every time."""
    split = get_live_split_or_404(data["split_id"], session)
    payer_id, payee_id = data["payer_id"], data["payee_id"]
    amount: Decimal = data["amount"]

    participant = split.participant_for(payer_id)
    if participant is None:
        raise AppError(
            ErrorCode.PAYER_NOT_PARTICIPANT,
            f"User {payer_id} is not a participant of split {split.id}.",
            422,
            field="payer_id",
        )

    prior = balance_service.get_settlements_for_splits([split.id], session)
    on_split = candidate_amount(split, prior, payer_id, payee_id)
    # Direct settlements already made between the pair count against every split.
    allowed = min(on_split, _outstanding_between(payer_id, payee_id, session))
    _check_amount_against(amount, allowed, payer_id, payee_id)

    participant.paid_amount = participant.paid_amount + amount
    # Participants live in another table; touch the split so its revision moves.
    split.updated_at = datetime.now(timezone.utc)

    settlement = Settlement(
        split_id=split.id,
        split_name=split.name,
        amount=amount,
        payer_user_id=payer_id,
        payee_user_id=payee_id,
        method=data.get("method"),
        notes=data.get("notes"),
    )
    session.add(settlement)
    return settlement


# ── Public service functions ───────────────────────────────────────────────

def record_settlement(
        caller_id: int,
        data: dict,
        session: Session,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Settlement:
    """
    Records a payment from payer_id to payee_id.

    Args:
        caller_id: The authenticated user; must be the payer or the payee.
        data:      Validated dict from CreateSettlementSchema.
                   Keys: payer_id, payee_id, amount, split_id?, method?, notes?

    Raises:
        AppError(SELF_SETTLEMENT, 422)
        AppError(FORBIDDEN, 403)
        AppError(USER_NOT_FOUND, 404)
        AppError(SPLIT_NOT_FOUND, 404)
        AppError(PAYER_NOT_PARTICIPANT, 422)
        AppError(NO_OUTSTANDING_DEBT, 422)
        AppError(SETTLEMENT_EXCEEDS_OUTSTANDING, 422)
        AppError(CONCURRENCY_CONFLICT, 409) — after max_attempts stale writes
    """
    payer_id, payee_id = data["payer_id"], data["payee_id"]

    if payer_id == payee_id:
        raise AppError(
            ErrorCode.SELF_SETTLEMENT,
            "A settlement cannot be made to yourself.",
            422,
            field="payee_id",
        )

    if caller_id not in (payer_id, payee_id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You can only record settlements you pay or receive.",
            403,
        )

    _require_user(payer_id, "payer_id", session)
    _require_user(payee_id, "payee_id", session)

    if data.get("split_id") is not None:
        settlement = run_with_revision_retry(
            session,
            lambda: _record_on_split(data, session),
            max_attempts,
            label="record_settlement",
        )
        session.refresh(settlement)
        return settlement

    _check_amount_against(
        data["amount"],
        _outstanding_between(payer_id, payee_id, session),
        payer_id,
        payee_id,
    )
    settlement = Settlement(
        split_id=None,
        split_name=None,
        amount=data["amount"],
        payer_user_id=payer_id,
        payee_user_id=payee_id,
        method=data.get("method"),
        notes=data.get("notes"),
    )
    session.add(settlement)
    session.flush()
    session.refresh(settlement)
    return settlement


def list_settlements_for_user(user_id: int, session: Session) -> list[Settlement]:
    """Every settlement the user paid or received, newest first."""
    return balance_service.get_settlements_for_user(user_id, session)


def settle_up_candidates(debtor_id: int, session: Session) -> list[SettlementCandidate]:
    """What debtor_id should pay, per live split and creditor."""
    splits = balance_service.get_live_splits_for_user(debtor_id, session)
    settlements = balance_service.get_settlements_for_splits([s.id for s in splits], session)
    return settle_up(splits, settlements, debtor_id)


def collect_up_candidates(creditor_id: int, session: Session) -> list[SettlementCandidate]:
    """What every other participant should pay creditor_id, per live split."""
    splits = balance_service.get_live_splits_for_user(creditor_id, session)
    settlements = balance_service.get_settlements_for_splits([s.id for s in splits], session)
    return collect_up(splits, settlements, creditor_id)


def remind_debtor(
        split_id: int,
        creditor_id: int,
        debtor_id: int,
        session: Session,
) -> SettlementCandidate:
    """
    Builds the reminder a creditor sends a debtor on one split.

    The amount is the live candidate from the allocator; the caller emits
    the settlement_reminder notification after this returns.

    Raises:
        AppError(SPLIT_NOT_FOUND, 404)
        AppError(PAYER_NOT_PARTICIPANT, 422) — debtor is not on the split
        AppError(NO_OUTSTANDING_DEBT, 422)   — debtor owes the creditor nothing
    """
    split = get_live_split_or_404(split_id, session)

    if split.participant_for(creditor_id) is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a participant of split {split_id}.",
            403,
        )
    if split.participant_for(debtor_id) is None:
        raise AppError(
            ErrorCode.PAYER_NOT_PARTICIPANT,
            f"User {debtor_id} is not a participant of split {split_id}.",
            422,
            field="debtor_id",
        )

    settlements = balance_service.get_settlements_for_splits([split.id], session)
    amount = candidate_amount(split, settlements, debtor_id, creditor_id)
    if amount <= 0:
        raise AppError(
            ErrorCode.NO_OUTSTANDING_DEBT,
            f"User {debtor_id} owes you nothing on split {split_id}.",
            422,
            field="debtor_id",
        )

    return SettlementCandidate(
        split_id=split.id,
        split_name=split.name,
        payer_id=debtor_id,
        payee_id=creditor_id,
        amount=amount,
    )
