"""Engagement classifier: which action an inbound message calls for.

The decision is a pure lookup over three facts about the message:

    known_user  thread_opener  valid_engagement  ->  action
    no          yes            (any)                 onboard
    no          no             yes                   engage
    no          no             no                    offboard
    yes         yes            (any)                 engage
    yes         no             yes                   engage
    yes         no             no                    offboard

A thread opener is decided by who sent it; a reply is engaged with only when
it continues a tracked exchange.
"""

from enum import StrEnum

from cruso.core.errors import InvalidInput


class EngagementAction(StrEnum):
    ONBOARD = "onboard"
    ENGAGE = "engage"
    OFFBOARD = "offboard"


# (known_user, is_thread_opener, is_valid_engagement) -> action
DECISION_TABLE: dict[tuple[bool, bool, bool], EngagementAction] = {
    (False, True, True): EngagementAction.ONBOARD,
    (False, True, False): EngagementAction.ONBOARD,
    (False, False, True): EngagementAction.ENGAGE,
    (False, False, False): EngagementAction.OFFBOARD,
    (True, True, True): EngagementAction.ENGAGE,
    (True, True, False): EngagementAction.ENGAGE,
    (True, False, True): EngagementAction.ENGAGE,
    (True, False, False): EngagementAction.OFFBOARD,
}


def _require_bool(value: object, name: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidInput(
            f"{name} must be True or False, got {value!r}. "
            "The classifier never guesses a missing fact.",
            field=name,
        )
    return value


def classify_engagement(
    known_user: bool,
    is_thread_opener: bool,
    is_valid_engagement: bool,
) -> EngagementAction:
    """Map the three message facts to exactly one action.

    Raises:
        InvalidInput: If any fact is missing (None) or not a bool
    """
    key = (
        _require_bool(known_user, "known_user"),
        _require_bool(is_thread_opener, "is_thread_opener"),
        _require_bool(is_valid_engagement, "is_valid_engagement"),
    )
    return DECISION_TABLE[key]
