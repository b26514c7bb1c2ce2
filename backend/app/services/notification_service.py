"""
services/notification_service.py — Fire-and-forget ledger notifications.

Routes call emit_safely() only AFTER db.session.commit(). Delivery is a side
effect: whatever the notifier raises is logged with NOTIFICATION_FAILED and
dropped, so a committed split or settlement is never reported as failed.

The notifier lives in app.extensions["notifier"]. The default LoggingNotifier
writes one info line per event; a real push/email backend implements the same
emit() signature and is passed to create_app(notifier=...).

Layer rules:
  - No Flask imports. The route hands in the notifier instance.
"""

from __future__ import annotations

import enum
import logging
from typing import Iterable, Protocol

from backend.app.errors import WarningCode

logger = logging.getLogger(__name__)


class NotificationEvent(str, enum.Enum):
    SPLIT_CREATED       = "split_created"
    SPLIT_UPDATED       = "split_updated"
    SPLIT_DELETED       = "split_deleted"
    SETTLEMENT_RECORDED = "settlement_recorded"
    SETTLEMENT_REMINDER = "settlement_reminder"
    GROUP_DELETED       = "group_deleted"


class Notifier(Protocol):
    def emit(self, event: NotificationEvent, recipient_ids: list[int], payload: dict) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records the event in the application log."""

    def emit(self, event: NotificationEvent, recipient_ids: list[int], payload: dict) -> None:
        logger.info(
            "notification %s -> users %s: %s",
            NotificationEvent(event).value,
            recipient_ids,
            payload,
        )


def recipients(user_ids: Iterable[int], actor_id: int) -> list[int]:
    """Distinct user ids in first-seen order, without the user who acted."""
    seen: list[int] = []
    for uid in user_ids:
        if uid != actor_id and uid not in seen:
            seen.append(uid)
    return seen


def emit_safely(
        notifier: Notifier | None,
        event: NotificationEvent,
        recipient_ids: list[int],
        payload: dict,
) -> bool:
    """
    Delivers one event. Returns False when nothing was delivered.

    Never raises.
    """
    if notifier is None or not recipient_ids:
        return False

    try:
        notifier.emit(event, recipient_ids, payload)
    except Exception:
        logger.warning(
            "%s: could not deliver %s to users %s",
            WarningCode.NOTIFICATION_FAILED,
            NotificationEvent(event).value,
            recipient_ids,
            exc_info=True,
        )
        return False
    return True
