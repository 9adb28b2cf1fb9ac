"""
Delay helpers for delay nodes.
Converts relative (value + unit) and absolute (target date) delays to milliseconds.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

# Exceptions
from exceptions.flow_exception import NodeExecutionException, UnknownUnitException, PastTargetException

# Models
from models.flow_data import DelayNodeData

UNIT_MILLISECONDS = {
    "minutes": 60 * 1000,
    "hours": 60 * 60 * 1000,
    "days": 24 * 60 * 60 * 1000,
}


def to_milliseconds(value: int, unit: str) -> int:
    """
    Linear conversion, no calendar arithmetic: 1 day is always 24 hours.
    """
    if unit not in UNIT_MILLISECONDS:
        raise UnknownUnitException(unit)
    return value * UNIT_MILLISECONDS[unit]


def _as_utc(moment: datetime) -> datetime:
    # Naive datetimes are treated as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def calculate_delay_until(target: datetime, now: Optional[datetime] = None) -> int:
    """
    Milliseconds from now until target. Zero is allowed, a negative result is not.
    """
    current = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    remaining = _as_utc(target) - current
    # Sign is checked before truncating to whole milliseconds
    if remaining < timedelta(0):
        raise PastTargetException()
    return int(remaining.total_seconds() * 1000)


def calculate_delay_ms(delay_data: DelayNodeData, now: Optional[datetime] = None) -> int:
    if delay_data.delayType == "relative":
        if not delay_data.relativeValue or not delay_data.relativeUnit:
            raise NodeExecutionException(message="Relative delay value or unit not provided")
        return to_milliseconds(delay_data.relativeValue, delay_data.relativeUnit)

    if delay_data.delayType == "absolute":
        if delay_data.absoluteDate is None:
            raise NodeExecutionException(message="Absolute date not provided")
        return calculate_delay_until(delay_data.absoluteDate, now=now)

    raise NodeExecutionException(message=f"Unknown delay type: {delay_data.delayType}")


def describe_delay(delay_data: DelayNodeData) -> str:
    if delay_data.delayType == "relative":
        return f"{delay_data.relativeValue} {delay_data.relativeUnit}"
    if delay_data.absoluteDate is not None:
        return f"until {_as_utc(delay_data.absoluteDate).isoformat()}"
    return "until an unspecified date"
