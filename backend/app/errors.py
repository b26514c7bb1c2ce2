"""
errors.py — AppError base class and error code registry.

Every error returned by the ledger API uses a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - 401 (unauthenticated) and 403 (not allowed) are never interchangeable.

Failure families:
  400/422  validation      — rejected before any write, never partially applied
  403      permission      — non-creator replace/delete, non-member access
  404      not found       — caller should drop its cached reference, not retry
  409      concurrency     — per-split revision conflict after bounded retries
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# These are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_CATEGORY           = "INVALID_CATEGORY"
    INVALID_SPLIT_METHOD       = "INVALID_SPLIT_METHOD"
    INVALID_GROUP_TYPE         = "INVALID_GROUP_TYPE"
    EMPTY_PARTICIPANTS         = "EMPTY_PARTICIPANTS"
    DUPLICATE_PARTICIPANT      = "DUPLICATE_PARTICIPANT"
    MIXED_SPLIT_METHODS        = "MIXED_SPLIT_METHODS"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    SPLIT_NOT_FOUND            = "SPLIT_NOT_FOUND"

    # ── Concurrency (409) ──────────────────────────────────────────────────
    CONCURRENCY_CONFLICT       = "CONCURRENCY_CONFLICT"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PARTICIPANT_NOT_MEMBER     = "PARTICIPANT_NOT_MEMBER"
    PERCENTAGES_NOT_100        = "PERCENTAGES_NOT_100"
    SHARES_NOT_MATCHING_TOTAL  = "SHARES_NOT_MATCHING_TOTAL"
    PAID_EXCEEDS_TOTAL         = "PAID_EXCEEDS_TOTAL"
    NEGATIVE_SHARE             = "NEGATIVE_SHARE"
    SELF_SETTLEMENT            = "SELF_SETTLEMENT"
    PAYER_NOT_PARTICIPANT      = "PAYER_NOT_PARTICIPANT"
    NO_OUTSTANDING_DEBT        = "NO_OUTSTANDING_DEBT"
    SETTLEMENT_EXCEEDS_OUTSTANDING = "SETTLEMENT_EXCEEDS_OUTSTANDING"
    SETTLED_PARTICIPANT_CONFLICT   = "SETTLED_PARTICIPANT_CONFLICT"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array,
# or only logged when no response is involved. They never block a request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # A participant record was missing share_amount or paid_amount; it was
    # counted as zero.
    MALFORMED_PARTICIPANT = "MALFORMED_PARTICIPANT"

    # The ledger write committed but the notification could not be delivered.
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"
