"""Side effects for each engagement action.

Handlers never deliver mail themselves: they hand OutboundEmail values to an
injected EmailSender. ``OutboxEmailSender`` records them in the exchange
history, where the delivery service picks them up.
"""

import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol

from cruso.config_schema import ExchangeConfig
from cruso.core.errors import ExchangeOwnerNotFound
from cruso.core.logging import get_logger
from cruso.db.store import DatabaseStore
from cruso.exchange.models import Direction, InboundMessage, OutboundEmail, User

logger = get_logger(__name__)

SchedulingProcessor = Callable[[InboundMessage, User], Awaitable[None]]


class EmailSender(Protocol):
    async def send(self, email: OutboundEmail) -> str:
        """Queue ``email`` for delivery and return its message id."""
        ...


class OutboxEmailSender:
    """EmailSender that records outbound mail in the exchange history."""

    def __init__(self, store: DatabaseStore, from_address: str):
        self.store = store
        self.from_address = from_address

    async def send(self, email: OutboundEmail) -> str:
        message_id = f"<{uuid.uuid4()}@cruso.outbox>"
        record = InboundMessage(
            message_id=message_id,
            exchange_id=email.exchange_id or message_id,
            sender=self.from_address,
            recipients=[*email.to, *email.cc],
            subject=email.subject,
            body=email.body,
            received_at=datetime.now(UTC),
            previous_message_id=email.in_reply_to,
            direction=Direction.OUTBOUND,
        )
        await self.store.save_message(record)
        logger.info(
            "outbound_email_queued",
            message_id=message_id,
            exchange_id=record.exchange_id,
            recipients=len(record.recipients),
        )
        return message_id


def _reply_subject(subject: str) -> str:
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}" if subject else "Re:"


async def _log_unprocessed(message: InboundMessage, owner: User) -> None:
    logger.warning(
        "scheduling_processor_not_configured",
        message_id=message.message_id,
        user_id=owner.id,
    )


class ExchangeHandlers:
    """Onboarding, engagement and offboarding effects.

    Args:
        store: Database store
        sender: Outbound email channel
        settings: Exchange settings (names, addresses, links)
        process_request: Async callable that handles a scheduling request
    """

    def __init__(
        self,
        store: DatabaseStore,
        sender: EmailSender,
        settings: ExchangeConfig,
        process_request: SchedulingProcessor | None = None,
    ):
        self.store = store
        self.sender = sender
        self.settings = settings
        self.process_request = process_request or _log_unprocessed

    def _signature(self) -> str:
        return f"Best,\n\nThe {self.settings.assistant_name} Team"

    def _reply_to_sender(self, message: InboundMessage, body: str) -> OutboundEmail:
        return OutboundEmail(
            to=[message.sender],
            subject=_reply_subject(message.subject),
            body=body,
            in_reply_to=message.message_id,
            exchange_id=message.exchange_id,
        )

    async def handle_new_user(self, message: InboundMessage) -> None:
        """Send the welcome email in a new thread.

        No account is created here: the sender becomes a user by signing up
        through the login link, so until then every new thread is onboarded.
        """
        name = self.settings.assistant_name
        await self.sender.send(
            OutboundEmail(
                to=[message.sender_address],
                cc=list(self.settings.onboarding_cc),
                subject=f"Welcome to {name}",
                body=(
                    "Hi,\n\n"
                    f"Looks like you're new here! Welcome to {name}!\n\n"
                    "We're excited to have you on board.\n\n"
                    f"You can find your account at {self.settings.login_url}\n\n"
                    f"If you have any questions, please contact us at "
                    f"{self.settings.support_address}\n\n"
                    f"{self._signature()}\n"
                ),
            )
        )
        logger.info("onboarding_email_sent", message_id=message.message_id)

    async def _exchange_owner(self, message: InboundMessage) -> User:
        """User on whose behalf Cruso runs the exchange ``message`` belongs to.

        Taken from the replied-to message, or else from the first stored
        message of the exchange that has an owner.

        Raises:
            ExchangeOwnerNotFound: If the exchange has no known owner
        """
        owner_id = None
        if message.previous_message_id:
            previous = await self.store.get_message(message.previous_message_id)
            if previous is not None:
                owner_id = previous.owner_id
        if owner_id is None:
            history = await self.store.get_exchange_messages(message.exchange_id)
            owner_id = next((m.owner_id for m in history if m.owner_id is not None), None)

        owner = await self.store.get_user_by_id(owner_id) if owner_id is not None else None
        if owner is None:
            raise ExchangeOwnerNotFound(
                f"No owner found for exchange {message.exchange_id} "
                f"(message {message.message_id} replies to {message.previous_message_id})"
            )
        return owner

    async def handle_engagement(self, message: InboundMessage, user: User | None) -> None:
        """Record the message in its exchange and hand it to the scheduling processor.

        ``user`` is None when Cruso acts on someone's behalf with a recipient
        who isn't a user (coordination and rescheduling threads). The message
        is then filed under the exchange owner, who is also the user the
        request is processed for.

        Raises:
            ExchangeOwnerNotFound: If a non-user replies in an exchange with no owner
        """
        owner = user if user is not None else await self._exchange_owner(message)
        message.owner_id = owner.id
        await self.store.save_message(message)
        await self.process_request(message, owner)
        logger.info(
            "engagement_handled",
            message_id=message.message_id,
            existing_user=user is not None,
            owner_id=owner.id,
        )

    async def handle_invalid_engagement(
        self, message: InboundMessage, user: User | None
    ) -> None:
        """Tell the sender, and only the sender, to reply to the latest email instead."""
        if user is not None:
            text = (
                "Seems you're trying to reply to an older email in the thread. "
                "Instead, consider replying to the latest email in the thread, "
                "or creating a new thread altogether."
            )
        else:
            text = (
                "Hmm, it looks like you're trying to reply to an older email in the thread. "
                "Instead consider replying to the latest email in the thread."
            )
        await self.sender.send(
            self._reply_to_sender(message, f"Hi,\n\n{text}\n\n{self._signature()}\n")
        )
        logger.info(
            "invalid_engagement_notified",
            message_id=message.message_id,
            existing_user=user is not None,
        )

    async def notify_failure(self, message: InboundMessage) -> None:
        """Best-effort apology when handling the message failed."""
        await self.sender.send(
            self._reply_to_sender(
                message,
                "Hi,\n\n"
                "Sorry, something went wrong while handling your email and we couldn't "
                "complete your request. Please try again in a few minutes, or contact "
                f"{self.settings.support_address} if the problem persists.\n\n"
                f"{self._signature()}\n",
            )
        )
