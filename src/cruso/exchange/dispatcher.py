"""Inbound message dispatch: gather facts, classify, run the handler.

Usage:
    dispatcher = EngagementDispatcher(store, handlers, ExchangeFacts(store))
    outcome = await dispatcher.dispatch(message)
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from cruso.core.errors import CrusoError, DatabaseError, InvalidInput
from cruso.core.logging import get_logger, reset_correlation_id, set_correlation_id
from cruso.db.store import DatabaseStore
from cruso.exchange.classifier import EngagementAction, classify_engagement
from cruso.exchange.facts import ExchangeFacts
from cruso.exchange.handlers import ExchangeHandlers
from cruso.exchange.models import InboundMessage, User

logger = get_logger(__name__)


class DispatchStatus(StrEnum):
    HANDLED = "handled"
    SKIPPED = "skipped"  # sender not on the allow-list
    DEGRADED = "degraded"  # handler failed, failure notice attempted


@dataclass
class DispatchOutcome:
    """What happened to one inbound message."""

    action: EngagementAction
    status: DispatchStatus
    detail: str = ""
    user_id: int | None = None
    owner_id: int | None = None  # user the exchange is run for

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": str(self.action),
            "status": str(self.status),
            "detail": self.detail,
            "user_id": self.user_id,
            "owner_id": self.owner_id,
        }


class EngagementDispatcher:
    """Routes inbound messages to onboarding, engagement or offboarding."""

    def __init__(self, store: DatabaseStore, handlers: ExchangeHandlers, facts: ExchangeFacts):
        self.store = store
        self.handlers = handlers
        self.facts = facts

    async def _is_allowed_sender(self, message: InboundMessage) -> bool:
        """Check the sender against the allow-list; allowed senders vouch for their recipients."""
        if not await self.store.is_allowed(message.sender):
            return False
        try:
            await self.store.set_allowed_entries(message.recipients, allowed=True)
        except DatabaseError as e:
            logger.warning(
                "allow_list_recipients_not_added",
                message_id=message.message_id,
                error=str(e),
            )
        return True

    async def _run_handler(
        self, action: EngagementAction, message: InboundMessage, user: User | None
    ) -> None:
        match action:
            case EngagementAction.ONBOARD:
                await self.handlers.handle_new_user(message)
            case EngagementAction.ENGAGE:
                await self.handlers.handle_engagement(message, user)
            case EngagementAction.OFFBOARD:
                await self.handlers.handle_invalid_engagement(message, user)

    async def _notify_failure(self, message: InboundMessage) -> bool:
        try:
            await self.handlers.notify_failure(message)
        except CrusoError as e:
            logger.error(
                "failure_notification_failed",
                message_id=message.message_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        return True

    async def dispatch(
        self, message: InboundMessage, now: datetime | None = None
    ) -> DispatchOutcome:
        """Classify ``message`` and perform the matching action.

        Raises:
            InvalidInput: If the message facts are malformed
            DatabaseError: If the user or exchange history cannot be read
        """
        token = set_correlation_id(message.exchange_id)
        try:
            user = await self.store.get_user_by_email(message.sender)
            facts = await self.facts.gather(message, known_user=user is not None, now=now)
            action = classify_engagement(
                facts.known_user, facts.is_thread_opener, facts.is_valid_engagement
            )
            logger.info(
                "engagement_classified",
                message_id=message.message_id,
                action=str(action),
                known_user=facts.known_user,
                is_thread_opener=facts.is_thread_opener,
                is_valid_engagement=facts.is_valid_engagement,
            )

            needs_allow_list = action is not EngagementAction.ONBOARD
            if needs_allow_list and not await self._is_allowed_sender(message):
                logger.info("engagement_skipped_sender_not_allowed", message_id=message.message_id)
                return DispatchOutcome(
                    action,
                    DispatchStatus.SKIPPED,
                    "sender is not on the allow-list",
                    user.id if user else None,
                )

            try:
                await self._run_handler(action, message, user)
            except InvalidInput:
                raise
            except CrusoError as e:
                logger.error(
                    "engagement_handler_failed",
                    message_id=message.message_id,
                    action=str(action),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                notified = await self._notify_failure(message)
                detail = f"{type(e).__name__}: {e}"
                if notified:
                    detail += " (sender notified)"
                return DispatchOutcome(
                    action, DispatchStatus.DEGRADED, detail, user.id if user else None
                )

            return DispatchOutcome(
                action,
                DispatchStatus.HANDLED,
                "",
                user.id if user else None,
                owner_id=message.owner_id,
            )
        finally:
            reset_correlation_id(token)
