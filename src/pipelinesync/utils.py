"""Utility functions for parsing and formatting durations."""

import re
from datetime import timedelta

# [d.]hh:mm[:ss[.fffffff]]
_TIMESPAN_PATTERN = re.compile(
    r"^(?:(?P<days>\d+)\.)?"
    r"(?P<hours>\d{1,2}):(?P<minutes>\d{1,2})"
    r"(?::(?P<seconds>\d{1,2})(?:\.(?P<fraction>\d{1,7}))?)?$"
)
_DAYS_ONLY_PATTERN = re.compile(r"^\d+$")


def _to_timedelta(text: str, **components: int) -> timedelta:
    try:
        return timedelta(**components)
    except OverflowError as e:
        raise ValueError(f"Duration too large: {text!r}") from e


def parse_duration(text: str) -> timedelta:
    """
    Parse a textual duration into a timedelta.

    Accepted forms are a whole number of days ("2"), or
    "[d.]hh:mm[:ss[.fffffff]]" with hours 0-23 and minutes/seconds 0-59.
    The fraction holds up to seven digits (ten-millionths of a second).
    Leading and trailing whitespace is ignored. Negative durations are
    not accepted.

    Args:
        text: Duration string, e.g. "00:01:00".

    Returns:
        The parsed, non-negative duration.

    Raises:
        ValueError: If the text does not match the grammar or a component
            is out of range.

    Examples:
        >>> parse_duration("00:01:00")
        datetime.timedelta(seconds=60)
        >>> parse_duration("1.02:00:00")
        datetime.timedelta(days=1, seconds=7200)
    """
    value = text.strip()
    if not value:
        raise ValueError("Duration is empty")

    if _DAYS_ONLY_PATTERN.match(value):
        return _to_timedelta(text, days=int(value))

    match = _TIMESPAN_PATTERN.match(value)
    if match is None:
        raise ValueError(f"Unrecognized duration: {text!r}")

    days = int(match.group("days") or 0)
    hours = int(match.group("hours"))
    minutes = int(match.group("minutes"))
    seconds = int(match.group("seconds") or 0)
    fraction = match.group("fraction") or ""

    if hours > 23:
        raise ValueError(f"Hours out of range in duration: {text!r}")
    if minutes > 59:
        raise ValueError(f"Minutes out of range in duration: {text!r}")
    if seconds > 59:
        raise ValueError(f"Seconds out of range in duration: {text!r}")

    # Pad to ten-millionths, then scale down to microseconds
    microseconds = int(fraction.ljust(7, "0")) // 10 if fraction else 0

    return _to_timedelta(
        text,
        days=days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        microseconds=microseconds,
    )


def format_timespan(value: timedelta) -> str:
    """
    Render a timedelta as "[d.]hh:mm:ss[.ffffff]".

    Examples:
        >>> format_timespan(timedelta(seconds=60))
        '00:01:00'
        >>> format_timespan(timedelta(days=1, hours=2))
        '1.02:00:00'
    """
    total_seconds = int(value.total_seconds())
    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    text = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    if value.microseconds:
        text += f".{value.microseconds:06d}"
    if days:
        text = f"{days}.{text}"
    return text


def format_duration(ms: int) -> str:
    """
    Format milliseconds to human-readable duration.

    Args:
        ms: Duration in milliseconds.

    Returns:
        Formatted string: "150ms", "2.5s", "1m 5s", etc.
    """
    if ms < 0:
        return "0ms"

    if ms < 1000:
        return f"{ms}ms"

    seconds = ms / 1000

    if seconds < 60:
        if seconds == int(seconds):
            return f"{int(seconds)}s"
        formatted = f"{seconds:.1f}".rstrip("0").rstrip(".")
        return f"{formatted}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if remaining_seconds == 0:
        return f"{minutes}m"

    return f"{minutes}m {remaining_seconds}s"
