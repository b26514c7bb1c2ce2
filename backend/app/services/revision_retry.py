"""
services/revision_retry.py — Bounded retry for read-modify-write on a split.

BillSplit.revision is SQLAlchemy's version_id_col. When two writers load the
same split and both try to change it, the second UPDATE matches zero rows and
the flush raises StaleDataError. The write is then re-run from a fresh read:
the operation callable must (re)load everything it needs from the session.

After `max_attempts` stale flushes the caller gets CONCURRENCY_CONFLICT (409).
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from backend.app.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


def run_with_revision_retry(
        session: Session,
        operation: Callable[[], T],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        label: str = "split write",
) -> T:
    """
    Runs operation() and flushes; on StaleDataError rolls back and runs it again.

    Any AppError raised by the operation propagates immediately; only revision
    conflicts are retried.
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            session.flush()
            return result
        except StaleDataError:
            session.rollback()
            logger.info(
                "%s hit a stale split revision (attempt %d/%d)",
                label,
                attempt,
                attempts,
            )

    raise AppError(
        ErrorCode.CONCURRENCY_CONFLICT,
        "The split was changed by someone else at the same time. Reload it and try again.",
        409,
    )
