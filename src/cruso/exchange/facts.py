"""Thread-position facts about an inbound message.

Both facts are derived from the stored history of the message's exchange
(oldest message first):

- thread opener: the message starts a thread, the exchange has no stored
  messages yet, or its first stored message is this very message
- valid engagement: the exchange is known, holds at most ``max_messages``
  messages and its first message is no older than ``max_age``
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cruso.core.logging import get_logger
from cruso.db.store import DatabaseStore, StoredMessage
from cruso.exchange.models import InboundMessage

logger = get_logger(__name__)

MAX_MESSAGES_IN_EXCHANGE = 25
MAX_EXCHANGE_AGE = timedelta(days=30)


def is_thread_opener(message: InboundMessage, history: Sequence[StoredMessage]) -> bool:
    if message.previous_message_id is None:
        return True
    if not history:
        return True
    return history[0].message_id == message.message_id


def is_valid_engagement(
    message: InboundMessage,
    history: Sequence[StoredMessage],
    now: datetime,
    max_messages: int = MAX_MESSAGES_IN_EXCHANGE,
    max_age: timedelta = MAX_EXCHANGE_AGE,
) -> bool:
    if not history:
        return False
    if len(history) > max_messages:
        return False
    return history[0].received_at >= now - max_age


@dataclass
class MessageFacts:
    """Everything the classifier needs, gathered for one message."""

    known_user: bool
    is_thread_opener: bool
    is_valid_engagement: bool
    history_length: int = 0


class ExchangeFacts:
    """Computes message facts from the exchange history in the store."""

    def __init__(
        self,
        store: DatabaseStore,
        max_messages: int = MAX_MESSAGES_IN_EXCHANGE,
        max_age: timedelta = MAX_EXCHANGE_AGE,
    ):
        self.store = store
        self.max_messages = max_messages
        self.max_age = max_age

    async def gather(
        self,
        message: InboundMessage,
        known_user: bool,
        now: datetime | None = None,
    ) -> MessageFacts:
        history = await self.store.get_exchange_messages(message.exchange_id)
        facts = MessageFacts(
            known_user=known_user,
            is_thread_opener=is_thread_opener(message, history),
            is_valid_engagement=is_valid_engagement(
                message,
                history,
                now or datetime.now(UTC),
                self.max_messages,
                self.max_age,
            ),
            history_length=len(history),
        )
        logger.debug(
            "message_facts_gathered",
            message_id=message.message_id,
            known_user=facts.known_user,
            is_thread_opener=facts.is_thread_opener,
            is_valid_engagement=facts.is_valid_engagement,
            history_length=facts.history_length,
        )
        return facts
