"""Conversion of internal types to API-level node conditions and events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from nodestats.types import Condition, ConditionStatus, Severity

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


@dataclass(frozen=True)
class NodeCondition:
    """A node condition as the API represents it."""

    type: str
    status: str
    last_transition_time: datetime
    reason: str = ""
    message: str = ""


def convert_to_api_condition(condition: Condition) -> NodeCondition:
    """Convert an internal condition to an API node condition."""
    return NodeCondition(
        type=condition.type,
        status=convert_to_api_condition_status(condition.status),
        last_transition_time=convert_to_api_timestamp(condition.transition),
        reason=condition.reason,
        message=condition.message,
    )


def convert_to_api_condition_status(status: Union[ConditionStatus, str]) -> str:
    """Map an internal condition status to the API's status string."""
    try:
        return ConditionStatus(status).value
    except ValueError:
        raise ValueError("unknown condition status") from None


def convert_to_api_event_type(severity: Union[Severity, str]) -> str:
    """Map a severity to an event type; anything unknown counts as normal."""
    try:
        severity = Severity(severity)
    except ValueError:
        return EVENT_TYPE_NORMAL
    return EVENT_TYPE_WARNING if severity is Severity.WARN else EVENT_TYPE_NORMAL


def convert_to_api_timestamp(timestamp: datetime) -> datetime:
    """Convert a timestamp to the API time representation."""
    if not isinstance(timestamp, datetime):
        raise TypeError(f"expected datetime, got {type(timestamp).__name__}")
    return timestamp