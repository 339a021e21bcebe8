"""Parser for the UTC timestamp text carried by chat server events.

The server sends ``YYYY-MM-DDTHH:MM:SS[.fff]Z``. Only UTC with a trailing
``Z`` is accepted; offsets, two-digit years and negative years are rejected.
"""

from datetime import datetime, timezone


class TimestampError(ValueError):
    """Raised when timestamp text does not match the expected shape."""


def _to_int(part: str, width: int, text: str) -> int:
    if len(part) != width or not (part.isascii() and part.isdigit()):
        raise TimestampError(f"Malformed timestamp: {text!r}")
    return int(part)


def parse_timestamp(text: str) -> datetime:
    """Parse a UTC timestamp into an aware datetime.

    Args:
        text: Timestamp such as ``2024-03-05T13:07:09.250Z``.

    Returns:
        A timezone-aware datetime in UTC. Fractional seconds are truncated
        to whole milliseconds; without a fraction, milliseconds are zero.

    Raises:
        TimestampError: If the text deviates from the expected shape or
            names an impossible date or time.
    """
    if not isinstance(text, str):
        raise TimestampError(f"Timestamp must be a string, got {type(text).__name__}")

    date_part, sep, time_part = text.partition("T")
    if not sep or not time_part.endswith("Z"):
        raise TimestampError(f"Malformed timestamp: {text!r}")

    date_fields = date_part.split("-")
    time_fields = time_part[:-1].split(":")
    if len(date_fields) != 3 or len(time_fields) != 3:
        raise TimestampError(f"Malformed timestamp: {text!r}")

    year = _to_int(date_fields[0], 4, text)
    month = _to_int(date_fields[1], 2, text)
    day = _to_int(date_fields[2], 2, text)
    hour = _to_int(time_fields[0], 2, text)
    minute = _to_int(time_fields[1], 2, text)

    seconds, dot, fraction = time_fields[2].partition(".")
    second = _to_int(seconds, 2, text)
    millisecond = 0
    if dot:
        if not (fraction.isascii() and fraction.isdigit()):
            raise TimestampError(f"Malformed fractional seconds: {text!r}")
        millisecond = int(fraction[:3].ljust(3, "0"))

    try:
        return datetime(
            year, month, day, hour, minute, second,
            millisecond * 1000,
            tzinfo=timezone.utc,
        )
    except ValueError as e:
        raise TimestampError(f"Invalid timestamp {text!r}: {e}") from e
