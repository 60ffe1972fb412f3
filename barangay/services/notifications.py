"""
Notification boundary.

Delivery and storage belong to an external collaborator. The workflow core
only promises one delivery attempt per committed transition, made after the
commit, and never lets a failed attempt reach the workflow caller.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionEvent:
    kind: str
    record_id: int
    transition: str  # e.g. "approved", "released", "progress:Resolved"
    actor: Optional[str]
    timestamp: datetime
    details: dict = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    def notify(self, event: TransitionEvent) -> None:
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher: writes each event to the application log."""

    def notify(self, event: TransitionEvent) -> None:
        logger.info(
            "Notification %s/%s %s by %s",
            event.kind,
            event.record_id,
            event.transition,
            event.actor,
        )


def dispatch(dispatcher: NotificationDispatcher, event: TransitionEvent) -> None:
    """
    Fire-and-forget delivery attempt.

    Never raises - logs failures and continues.
    """
    try:
        dispatcher.notify(event)
    except Exception:
        logger.exception(
            "Failed to deliver notification %s for %s/%s",
            event.transition,
            event.kind,
            event.record_id,
        )
