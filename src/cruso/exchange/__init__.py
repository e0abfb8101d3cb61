"""Engagement decision engine for inbound email.

This package provides:
- The engagement classifier (onboard / engage / offboard decision table)
- Thread-position facts computed from the exchange history
- Handlers for each action and the dispatcher that ties them together
"""

from cruso.exchange.classifier import EngagementAction, classify_engagement
from cruso.exchange.models import Direction, InboundMessage, OutboundEmail, User

__all__ = [
    "Direction",
    "EngagementAction",
    "InboundMessage",
    "OutboundEmail",
    "User",
    "classify_engagement",
]
