"""
schemas/group_schema.py — Marshmallow schemas for group endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    group type enum, member id shape.
  - services/group_service.py:
      - caller must be a member to read, the creator to change or delete
      - USER_NOT_FOUND (user_id existence check requires DB lookup)
      - GROUP_NOT_FOUND (requires DB lookup)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from backend.app.errors import ErrorCode
from backend.app.models.group import GroupType


# ── Shared non-empty string validator ─────────────────────────────────────
#
# validate.Length(min=1) alone allows whitespace-only strings like "   "
# because len("   ") == 3 > 0. This validator strips first then checks.
# ──────────────────────────────────────────────────────────────────────────

def _validate_non_empty_after_trim(value: str) -> None:
    """Raises ValidationError if the string is blank or contains only whitespace."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _member_ids_field(**kwargs) -> fields.List:
    return fields.List(
        fields.Int(
            strict=True,  # reject floats like 1.0 — integers only
            validate=validate.Range(min=1, error="member ids must be positive integers."),
        ),
        **kwargs,
    )


class CreateGroupSchema(Schema):
    """
    POST /groups

    name       : non-empty after trim, max 100 chars.
    type       : Trip | Home | Event | Custom, default Custom.
    member_ids : optional list of user ids; the creator is always added.
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    type = fields.Enum(
        GroupType,
        load_default=GroupType.CUSTOM,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_GROUP_TYPE},
    )

    member_ids = _member_ids_field(load_default=list)


class UpdateGroupSchema(Schema):
    """
    PATCH /groups/:id — every field optional, at least one required.

    member_ids replaces the full member list when present.
    """

    name = fields.Str(
        required=False,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    type = fields.Enum(
        GroupType,
        required=False,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_GROUP_TYPE},
    )

    member_ids = _member_ids_field(required=False)

    @validates_schema
    def validate_not_empty(self, data: dict, **kwargs) -> None:
        if not data:
            raise ValidationError(
                {"_schema": ["Provide at least one of name, type, member_ids."]}
            )
