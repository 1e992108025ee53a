"""
notifications.py

Outbound messages to members. Email/SMS transports are plugged in from outside;
anything with a notify(member, subject, body) method will do.
"""

from __future__ import annotations
import logging
from typing import List, Protocol, Tuple

from .exceptions import ValidationError
from .models import Member

logger = logging.getLogger("LibraryLending.notifications")


class Notifier(Protocol):
    def notify(self, member: Member, subject: str, body: str) -> None:
        ...


def availability_message(title: str) -> Tuple[str, str]:
    """Subject and body sent to the next waiting member when `title` comes back."""
    subject = f'The item "{title}" is now available!'
    body = f'Good news! The item "{title}" you requested is now available for borrowing.'
    return subject, body


def _check_message(member: Member, subject: str, body: str) -> None:
    if member is None:
        raise ValidationError("Member cannot be missing.")
    if not subject or not subject.strip():
        raise ValidationError("Subject cannot be empty.")
    if not body or not body.strip():
        raise ValidationError("Message cannot be empty.")


class LoggingNotifier:
    """Writes notifications to the log instead of sending them."""

    def notify(self, member: Member, subject: str, body: str) -> None:
        _check_message(member, subject, body)
        logger.info("Notify %s <%s>: %s | %s", member.name, member.email, subject, body)


class RecordingNotifier:
    """Keeps every message in `sent` as (email, subject, body)."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, str]] = []

    def notify(self, member: Member, subject: str, body: str) -> None:
        _check_message(member, subject, body)
        self.sent.append((member.email, subject, body))
