"""
Notification and email sinks.

Both are best-effort collaborators: the caller's primary state change is already
decided when they run. `HttpEmailSink` posts to a mail relay webhook with
`requests`; failures are logged and swallowed, never raised to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import requests
from sqlalchemy.orm import Session

from scopeguard.models.workflow import Notification
from scopeguard.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityRef:
    """What a notification is about, e.g. ("project", 12)."""

    type: str
    id: int


class NotificationSink(Protocol):
    def send(
        self,
        user_id: int,
        title: str,
        message: str,
        entity_ref: EntityRef | None = None,
        type: str = "info",
    ) -> None: ...


class EmailSink(Protocol):
    def send(self, to: str, subject: str, body: str) -> bool: ...


class SqlNotificationSink:
    """Writes in-app notifications into the caller's session (flushed, not committed)."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def send(
        self,
        user_id: int,
        title: str,
        message: str,
        entity_ref: EntityRef | None = None,
        type: str = "info",
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            entity_type=entity_ref.type if entity_ref else None,
            entity_id=entity_ref.id if entity_ref else None,
            type=type,
        )
        self._db.add(notification)
        self._db.flush()
        logger.debug("Notification queued user=%s title=%r", user_id, title)
        return notification


class HttpEmailSink:
    """
    Sends email through an HTTP mail relay.

    POSTs `{"from", "to", "subject", "text"}` as JSON. Returns True on a 2xx
    response; on any network error or non-2xx status logs a warning and returns
    False.
    """

    def __init__(self, webhook_url: str, sender: str, timeout_seconds: int = 10) -> None:
        self._url = webhook_url
        self._sender = sender
        self._timeout = timeout_seconds

    def send(self, to: str, subject: str, body: str) -> bool:
        if not to:
            logger.warning("Email skipped: no recipient subject=%r", subject)
            return False

        payload = {"from": self._sender, "to": to, "subject": subject, "text": body}
        try:
            resp = requests.post(self._url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            logger.warning("Email delivery failed: %s", type(e).__name__, exc_info=False)
            return False

        if not 200 <= resp.status_code < 300:
            logger.warning("Email relay returned status=%s subject=%r", resp.status_code, subject)
            return False

        logger.info("Email sent subject=%r", subject)
        return True


class LoggingEmailSink:
    """Used when no relay is configured: the email is only logged."""

    def send(self, to: str, subject: str, body: str) -> bool:
        logger.info("Email (not delivered, no relay configured) to=%s subject=%r", to, subject)
        return True


def build_email_sink(settings: Settings) -> EmailSink:
    if settings.email_webhook_url:
        return HttpEmailSink(settings.email_webhook_url, settings.email_sender, settings.email_timeout_seconds)
    return LoggingEmailSink()
