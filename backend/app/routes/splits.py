"""
routes/splits.py — BillSplit route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - serialize_split() is a pure data-shape helper — not business logic.
  - Notifications are emitted only after the commit; a delivery failure
    never turns a committed write into an error response.

Endpoints (base url_prefix=/api/v1/splits):
  POST   /splits        → 201  create split
  GET    /splits        → 200  live splits the caller is on or created
  GET    /splits/:id    → 200  get split + participants
  PUT    /splits/:id    → 200  full replace (creator only)
  DELETE /splits/:id    → 200  soft-delete (creator only)
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.bill_split import BillSplit
from backend.app.schemas.split_schema import SplitSchema
from backend.app.services import split_service
from backend.app.services.notification_service import (
    NotificationEvent,
    emit_safely,
    recipients,
)

splits_bp = Blueprint("splits", __name__)


# ── Serialization helper ───────────────────────────────────────────────────
# Pure data-shaping — no DB access, no logic. Amounts as strings.

def serialize_split(split: BillSplit) -> dict:
    """Converts a BillSplit ORM object to a plain dict for JSON output."""
    return {
        "id": split.id,
        "name": split.name,
        "group_id": split.group_id,
        "total_amount": str(split.total_amount),     # Decimal → string
        "category": split.category.value if split.category else None,
        "notes": split.notes,
        "creator_user_id": split.creator_user_id,
        "revision": split.revision,
        "created_at": split.created_at.isoformat() if split.created_at else None,
        "updated_at": split.updated_at.isoformat() if split.updated_at else None,
        "participants": [
            {
                "user_id": p.user_id,
                "split_method": p.split_method.value,
                "split_value": str(p.split_value),
                "share_amount": str(p.share_amount),
                "paid_amount": str(p.paid_amount),
                "amount_owed": str(p.amount_owed),
            }
            for p in split.participants
        ],
    }


def _max_attempts() -> int:
    return current_app.config.get("LEDGER_MAX_WRITE_RETRIES", 3)


def _notify(event: NotificationEvent, user_ids, payload: dict) -> None:
    emit_safely(
        current_app.extensions.get("notifier"),
        event,
        recipients(user_ids, g.user_id),
        payload,
    )


# ── Route handlers ─────────────────────────────────────────────────────────

@splits_bp.route("/", methods=["POST"])
@require_auth
def create_split():
    """POST /splits — Record a new split. Shares are computed server-side."""
    data = SplitSchema().load(request.get_json(force=True) or {})
    split = split_service.create_split(
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()

    body = serialize_split(split)
    _notify(
        NotificationEvent.SPLIT_CREATED,
        [p["user_id"] for p in body["participants"]],
        {"split_id": split.id, "split_name": split.name, "group_id": split.group_id},
    )
    return jsonify({"data": body, "warnings": []}), 201


@splits_bp.route("/", methods=["GET"])
@require_auth
def list_my_splits():
    """GET /splits — Live splits the caller takes part in or created."""
    splits = split_service.list_splits_for_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_split(s) for s in splits],
        "warnings": [],
    }), 200


@splits_bp.route("/<int:split_id>", methods=["GET"])
@require_auth
def get_split(split_id: int):
    """GET /splits/:id — Split detail including participants. Group members only."""
    split = split_service.get_split(
        split_id=split_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": serialize_split(split), "warnings": []}), 200


@splits_bp.route("/<int:split_id>", methods=["PUT"])
@require_auth
def replace_split(split_id: int):
    """
    PUT /splits/:id — Full overwrite of name, amount, category, notes and
    participants. Creator only. Shares are recomputed.
    """
    data = SplitSchema().load(request.get_json(force=True) or {})
    split = split_service.replace_split(
        split_id=split_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        max_attempts=_max_attempts(),
    )
    db.session.commit()

    body = serialize_split(split)
    _notify(
        NotificationEvent.SPLIT_UPDATED,
        [p["user_id"] for p in body["participants"]],
        {"split_id": split.id, "split_name": split.name, "group_id": split.group_id},
    )
    return jsonify({"data": body, "warnings": []}), 200


@splits_bp.route("/<int:split_id>", methods=["DELETE"])
@require_auth
def delete_split(split_id: int):
    """
    DELETE /splits/:id — Soft-delete (sets deleted_at). Creator only.
    Row stays in DB so settlements keep their split_id; balances exclude it.
    """
    split = split_service.delete_split(
        split_id=split_id,
        caller_id=g.user_id,
        session=db.session,
        max_attempts=_max_attempts(),
    )
    participant_ids = [p.user_id for p in split.participants]
    split_name = split.name
    db.session.commit()

    _notify(
        NotificationEvent.SPLIT_DELETED,
        participant_ids,
        {"split_id": split_id, "split_name": split_name},
    )
    return jsonify({
        "data": {
            "deleted": True,
            "split_id": split_id,
        },
        "warnings": [],
    }), 200
