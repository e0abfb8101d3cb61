"""Email exchange data types.

An exchange is one email thread between Cruso and the people on it. Every
inbound and outbound message of the thread carries the same ``exchange_id``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from cruso.calendar.intervals import ensure_utc
from cruso.core.errors import InvalidInput


class Direction(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


def normalize_address(address: str) -> str:
    """Lowercase and strip an email address for comparisons and lookups."""
    return address.strip().lower()


@dataclass
class InboundMessage:
    """One email message, as parsed from the mail webhook.

    Attributes:
        message_id: Provider message id (opaque)
        exchange_id: Thread id shared by all messages of the exchange
        sender: Sender address
        recipients: To/CC/BCC addresses, in order
        previous_message_id: Message this one replies to; None for a thread start
        received_at: Timezone-aware receive time
        direction: Inbound (to Cruso) or outbound (sent by Cruso)
        owner_id: User who owns the exchange, once known
    """

    message_id: str
    exchange_id: str
    sender: str
    recipients: list[str] = field(default_factory=list)
    subject: str = ""
    body: str = ""
    received_at: datetime | None = None
    previous_message_id: str | None = None
    direction: Direction = Direction.INBOUND
    owner_id: int | None = None

    def __post_init__(self) -> None:
        for name in ("message_id", "exchange_id", "sender"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise InvalidInput(f"Message is missing '{name}'", field=name)
        if "@" not in self.sender:
            raise InvalidInput(f"Sender '{self.sender}' is not an email address", field="sender")
        if self.received_at is None:
            raise InvalidInput("Message is missing 'received_at'", field="received_at")
        self.received_at = ensure_utc(self.received_at, "received_at")
        try:
            self.direction = Direction(self.direction)
        except ValueError as e:
            raise InvalidInput(
                f"Direction must be 'inbound' or 'outbound', got {self.direction!r}",
                field="direction",
            ) from e
        self.recipients = [r for r in self.recipients if r and r.strip()]

    @property
    def sender_address(self) -> str:
        return normalize_address(self.sender)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "exchange_id": self.exchange_id,
            "sender": self.sender,
            "recipients": list(self.recipients),
            "subject": self.subject,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "previous_message_id": self.previous_message_id,
            "direction": str(self.direction),
            "owner_id": self.owner_id,
        }


@dataclass
class User:
    """A Cruso user, identified by email address."""

    id: int
    email: str
    created_at: datetime | None = None


@dataclass
class OutboundEmail:
    """An email Cruso wants delivered.

    ``in_reply_to`` threads it under an existing message; None starts a new thread.
    """

    to: list[str]
    subject: str
    body: str
    in_reply_to: str | None = None
    exchange_id: str | None = None
    cc: list[str] = field(default_factory=list)
