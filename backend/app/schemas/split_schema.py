"""
schemas/split_schema.py — Marshmallow schemas for split endpoints.

Validation responsibility:
  - This file (request shape, 400):
      - Field types, lengths, enum values, decimal precision
      - EMPTY_PARTICIPANTS    — participants list must not be empty
      - DUPLICATE_PARTICIPANT — same user_id twice in participants
      - MIXED_SPLIT_METHODS   — every participant must use the same method
      - split_value required for percentage participants
      - Non-empty-after-trim enforcement for name
  - services/split_service.py (business rules, 422):
      - PERCENTAGES_NOT_100, SHARES_NOT_MATCHING_TOTAL — Decimal arithmetic
      - PAID_EXCEEDS_TOTAL, NEGATIVE_SHARE
      - PARTICIPANT_NOT_MEMBER — requires DB membership lookup
      - Edit permission (FORBIDDEN, 403) — requires DB record lookup

The same SplitSchema serves POST /splits and PUT /splits/:id; a replace is
a full overwrite, so every required field is required on both.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from backend.app.errors import ErrorCode
from backend.app.models.bill_split import Category, SplitMethod


# ── Shared monetary validators ────────────────────────────────────────────
#
# Input with more than 2 decimal places is REJECTED with
# INVALID_AMOUNT_PRECISION — never rounded or truncated.
# ──────────────────────────────────────────────────────────────────────────

def _validate_precision(value: Decimal) -> None:
    # Decimal("10.123").as_tuple().exponent == -3 → 3 dp → REJECT
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_positive_amount(value: Decimal) -> None:
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    _validate_precision(value)


def _validate_non_negative_amount(value: Decimal) -> None:
    if value < Decimal("0"):
        raise ValidationError("Amount must not be negative.")
    _validate_precision(value)


def _validate_non_empty_after_trim(value: str) -> None:
    """Raises ValidationError if the string is blank or contains only whitespace."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


# ── Sub-schema: one entry in the `participants` array ─────────────────────

class ParticipantInputSchema(Schema):
    """
    One participant of a split.

    split_value  : percentage weight; required for percentage, ignored otherwise.
    share_amount : exact mode only; used when EVERY participant sends one.
    paid_amount  : what this participant fronted at creation, default 0.
    """

    user_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    split_method = fields.Enum(
        SplitMethod,
        load_default=SplitMethod.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_METHOD},
    )

    split_value = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_non_negative_amount,
    )

    share_amount = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_non_negative_amount,
    )

    paid_amount = fields.Decimal(
        load_default=Decimal("0.00"),
        validate=_validate_non_negative_amount,
    )

    @validates_schema
    def validate_split_value(self, data: dict, **kwargs) -> None:
        if data.get("split_method") == SplitMethod.PERCENTAGE and data.get("split_value") is None:
            raise ValidationError(
                {"split_value": ["split_value is required for percentage splits."]}
            )


# ── Create / replace split ────────────────────────────────────────────────

class SplitSchema(Schema):
    """
    POST /splits and PUT /splits/:id

    Checks in this schema:
      - EMPTY_PARTICIPANTS, DUPLICATE_PARTICIPANT, MIXED_SPLIT_METHODS
      - name non-empty after trim

    Checks NOT in this schema (belong in service):
      - percentages sum to 100, exact shares sum to total → split_service.py
      - participants are members of the group             → split_service.py
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Name must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    total_amount = fields.Decimal(
        required=True,
        validate=_validate_positive_amount,
    )

    group_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="group_id must be a positive integer."),
    )

    category = fields.Enum(
        Category,
        load_default=None,
        allow_none=True,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    notes = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=2000, error="Notes must be at most 2000 characters."),
    )

    participants = fields.List(
        fields.Nested(ParticipantInputSchema),
        required=True,
        validate=validate.Length(min=1, error=ErrorCode.EMPTY_PARTICIPANTS),
    )

    @validates_schema
    def validate_participants_coherence(self, data: dict, **kwargs) -> None:
        """
        1. DUPLICATE_PARTICIPANT (400): same user_id more than once.
        2. MIXED_SPLIT_METHODS (400): participants disagree on split_method.
        """
        participants = data.get("participants") or []

        user_ids = [p["user_id"] for p in participants]
        if len(user_ids) != len(set(user_ids)):
            raise ValidationError({"participants": [ErrorCode.DUPLICATE_PARTICIPANT]})

        methods = {p.get("split_method", SplitMethod.EQUAL) for p in participants}
        if len(methods) > 1:
            raise ValidationError({"participants": [ErrorCode.MIXED_SPLIT_METHODS]})
