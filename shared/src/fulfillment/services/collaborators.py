"""Outbound collaborators used by side effects: email and calendar.

The pipeline only depends on the protocols; production wires SES for email
and leaves calendar creation to whatever client the deployment provides.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Protocol

import boto3

from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)


class EmailSender(Protocol):
    """Sends one HTML email."""

    def send(self, to: str, subject: str, html: str) -> str | None:
        """Send an email and return the provider message id."""
        ...


@dataclass(frozen=True)
class CalendarEventDetails:
    """Calendar entry for a confirmed booking."""

    summary: str
    description: str
    start: str
    end: str
    location: str
    timezone: str
    attendees: list[str] = field(default_factory=list)


class CalendarClient(Protocol):
    """Creates calendar entries."""

    def create_event(self, details: CalendarEventDetails) -> str | None:
        """Create the event and return its id, or None if not created."""
        ...


class SESEmailSender:
    """Email delivery through Amazon SES."""

    def __init__(self, sender: str, region: str | None = None) -> None:
        """Initialize SES sender.

        Args:
            sender: From address (must be verified in SES)
            region: SES region. Defaults to SES_REGION env var.
        """
        self.sender = sender
        self._client = boto3.client("ses", region_name=region or os.environ.get("SES_REGION"))

    def send(self, to: str, subject: str, html: str) -> str | None:
        response = self._client.send_email(
            Source=self.sender,
            Destination={"ToAddresses": [to]},
            Message={
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {"Html": {"Data": html, "Charset": "UTF-8"}},
            },
        )
        message_id: str | None = response.get("MessageId")
        logger.info("Email sent to %s: %s (%s)", to, subject, message_id)
        return message_id


class NullCalendarClient:
    """Calendar client used when no calendar provider is configured."""

    def create_event(self, details: CalendarEventDetails) -> str | None:
        logger.info("No calendar provider configured; skipping event %r", details.summary)
        return None


class RecordingEmailSender:
    """Keeps sent emails in memory. Used with DOCUMENT_STORE=memory."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    def send(self, to: str, subject: str, html: str) -> str | None:
        self.sent.append({"to": to, "subject": subject, "html": html})
        return f"local-{len(self.sent)}"
