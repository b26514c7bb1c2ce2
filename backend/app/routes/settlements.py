"""
routes/settlements.py — Settlement route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - Usernames on candidates come from the UserDirectory cache; the amounts
    never do.

Endpoints (base url_prefix=/api/v1/settlements):
  POST   /settlements              → 201  record a payment (caller is payer or payee)
  GET    /settlements              → 200  caller's settlements, newest first
  GET    /settlements/settle-up    → 200  what the caller should pay, per split
  GET    /settlements/collect-up   → 200  what others should pay the caller, per split
  POST   /settlements/reminders    → 201  remind one debtor on one split
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.errors import WarningCode
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.settlement import Settlement
from backend.app.schemas.settlement_schema import CreateSettlementSchema, ReminderSchema
from backend.app.services import settlement_service
from backend.app.services.notification_service import (
    NotificationEvent,
    emit_safely,
    recipients,
)
from backend.app.services.settlement_allocator import SettlementCandidate

settlements_bp = Blueprint("settlements", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────

def _serialize_settlement(s: Settlement) -> dict:
    """Converts a Settlement ORM object to a plain dict for JSON output."""
    return {
        "id": s.id,
        "split_id": s.split_id,
        "split_name": s.split_name,
        "payer_id": s.payer_user_id,
        "payee_id": s.payee_user_id,
        "amount": str(s.amount),  # Decimal → string
        "method": s.method,
        "notes": s.notes,
        "created_at": s.created_at.isoformat(),
    }


def _serialize_candidates(candidates: list[SettlementCandidate]) -> list[dict]:
    """Adds payer/payee usernames from the user directory, when it has them."""
    directory = current_app.extensions.get("user_directory")
    users = {}
    if directory is not None and candidates:
        users = directory.get_many(
            [c.payer_id for c in candidates] + [c.payee_id for c in candidates]
        )

    result = []
    for c in candidates:
        row = c.to_dict()
        row["payer_username"] = users.get(c.payer_id, {}).get("username")
        row["payee_username"] = users.get(c.payee_id, {}).get("username")
        result.append(row)
    return result


# ── Route handlers ─────────────────────────────────────────────────────────

@settlements_bp.route("/", methods=["POST"])
@require_auth
def create_settlement():
    """
    POST /settlements — Record a payment from payer_id to payee_id.

    With split_id the payer's paid_amount on that split grows by amount in
    the same transaction. An amount above the live outstanding amount is
    rejected (422), never clamped.
    """
    data = CreateSettlementSchema().load(request.get_json(force=True) or {})
    settlement = settlement_service.record_settlement(
        caller_id=g.user_id,
        data=data,
        session=db.session,
        max_attempts=current_app.config.get("LEDGER_MAX_WRITE_RETRIES", 3),
    )
    db.session.commit()

    body = _serialize_settlement(settlement)
    emit_safely(
        current_app.extensions.get("notifier"),
        NotificationEvent.SETTLEMENT_RECORDED,
        recipients([settlement.payer_user_id, settlement.payee_user_id], g.user_id),
        body,
    )
    return jsonify({"data": body, "warnings": []}), 201


@settlements_bp.route("/", methods=["GET"])
@require_auth
def list_settlements():
    """GET /settlements — Every settlement the caller paid or received."""
    settlements = settlement_service.list_settlements_for_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_settlement(s) for s in settlements],
        "warnings": [],
    }), 200


@settlements_bp.route("/settle-up", methods=["GET"])
@require_auth
def settle_up():
    """GET /settlements/settle-up — Candidates where the caller is the payer."""
    candidates = settlement_service.settle_up_candidates(
        debtor_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_candidates(candidates), "warnings": []}), 200


@settlements_bp.route("/collect-up", methods=["GET"])
@require_auth
def collect_up():
    """GET /settlements/collect-up — Candidates where the caller is the payee."""
    candidates = settlement_service.collect_up_candidates(
        creditor_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_candidates(candidates), "warnings": []}), 200


@settlements_bp.route("/reminders", methods=["POST"])
@require_auth
def send_reminder():
    """
    POST /settlements/reminders — Remind a debtor of what they owe the caller
    on one split. Nothing is written; the response says whether delivery worked.
    """
    data = ReminderSchema().load(request.get_json(force=True) or {})
    candidate = settlement_service.remind_debtor(
        split_id=data["split_id"],
        creditor_id=g.user_id,
        debtor_id=data["debtor_id"],
        session=db.session,
    )

    body = candidate.to_dict()
    delivered = emit_safely(
        current_app.extensions.get("notifier"),
        NotificationEvent.SETTLEMENT_REMINDER,
        [candidate.payer_id],
        body,
    )

    warnings = []
    if not delivered:
        warnings.append({
            "code": WarningCode.NOTIFICATION_FAILED,
            "message": "The reminder could not be delivered.",
        })
    return jsonify({"data": body, "warnings": warnings}), 201
