"""
routes/groups.py — Group route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - Notifications are emitted only after the commit.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                → 201  create group (caller is creator and first member)
  GET    /groups                → 200  list caller's live groups
  GET    /groups/:id            → 200  get group + members
  PATCH  /groups/:id            → 200  rename / retype / replace members (creator only)
  DELETE /groups/:id            → 200  soft-delete (creator only)
  GET    /groups/:id/splits     → 200  live splits of the group
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.routes.splits import serialize_split
from backend.app.schemas.group_schema import CreateGroupSchema, UpdateGroupSchema
from backend.app.services import group_service, split_service
from backend.app.services.notification_service import (
    NotificationEvent,
    emit_safely,
    recipients,
)

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/", methods=["POST"])
@require_auth
def create_group():
    """POST /groups — Create a new group. Caller becomes creator and first member."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.create_group(
        name=data["name"],
        group_type=data["type"],
        member_ids=data["member_ids"],
        creator_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups — List all live groups the authenticated user belongs to."""
    result = group_service.list_groups(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: int):
    """GET /groups/:id — Get group details with member list. Caller must be member."""
    result = group_service.get_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["PATCH"])
@require_auth
def update_group(group_id: int):
    """PATCH /groups/:id — Change name, type or members. Creator only."""
    data = UpdateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.update_group(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["DELETE"])
@require_auth
def delete_group(group_id: int):
    """
    DELETE /groups/:id — Soft-delete. Creator only.
    The group's splits drop out of every balance from now on.
    """
    member_ids = group_service.delete_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()

    emit_safely(
        current_app.extensions.get("notifier"),
        NotificationEvent.GROUP_DELETED,
        recipients(member_ids, g.user_id),
        {"group_id": group_id, "deleted_by": g.user_id},
    )
    return jsonify({
        "data": {
            "deleted": True,
            "group_id": group_id,
        },
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>/splits", methods=["GET"])
@require_auth
def list_group_splits(group_id: int):
    """GET /groups/:id/splits — Live splits of the group, newest first."""
    splits = split_service.list_splits_for_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_split(s) for s in splits],
        "warnings": [],
    }), 200
