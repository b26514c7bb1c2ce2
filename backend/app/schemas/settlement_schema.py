"""
schemas/settlement_schema.py — Marshmallow schemas for settlement endpoints.

Validation responsibility:
  - This file: field types, decimal precision, positive amount.
  - services/settlement_service.py:
      - SELF_SETTLEMENT (422)                — payer_id == payee_id
      - FORBIDDEN (403)                      — caller is neither payer nor payee
      - PAYER_NOT_PARTICIPANT (422)          — requires the split
      - NO_OUTSTANDING_DEBT / SETTLEMENT_EXCEEDS_OUTSTANDING (422)
                                             — requires the live candidate
      - SPLIT_NOT_FOUND / USER_NOT_FOUND (404)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from backend.app.errors import ErrorCode


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Defined here rather than imported from split_schema to keep each schema
# file self-contained.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Strictly positive, at most 2 decimal places. More than 2 dp is REJECTED
    (INVALID_AMOUNT_PRECISION), never rounded.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _id_field(name: str, **kwargs) -> fields.Int:
    return fields.Int(
        strict=True,   # reject floats like 1.0 — integers only
        validate=validate.Range(min=1, error=f"{name} must be a positive integer."),
        **kwargs,
    )


class CreateSettlementSchema(Schema):
    """
    POST /settlements

    split_id : optional; absent or null records a direct settlement.
    amount   : must not exceed the live outstanding amount (service check).
    """

    split_id = _id_field("split_id", load_default=None, allow_none=True)
    payer_id = _id_field("payer_id", required=True)
    payee_id = _id_field("payee_id", required=True)

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    method = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=50, error="method must be at most 50 characters."),
    )

    notes = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=2000, error="Notes must be at most 2000 characters."),
    )


class ReminderSchema(Schema):
    """POST /settlements/reminders — the caller is the creditor."""

    split_id = _id_field("split_id", required=True)
    debtor_id = _id_field("debtor_id", required=True)
