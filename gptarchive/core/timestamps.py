"""Timestamp normalization for update-time comparisons.

The conversations listing reports ``update_time`` as an ISO 8601 string while
conversation details report it as epoch seconds. Both are normalized to
epoch seconds (float, UTC) before they are compared.
"""

from __future__ import annotations

from datetime import datetime, timezone


def parse_timestamp(value: str | int | float | None) -> datetime | None:
    """Parse an epoch number, epoch string or ISO 8601 string to an aware datetime."""
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(float(value), tz=timezone.utc)

        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            if text.replace(".", "", 1).isdigit():
                return datetime.fromtimestamp(float(text), tz=timezone.utc)
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
    except (ValueError, OSError, OverflowError):
        # OSError/OverflowError for out-of-range epochs
        pass

    return None


def normalize_timestamp(value: str | int | float | None) -> float | None:
    """Return epoch seconds for any supported timestamp shape, else None."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.timestamp()


def is_up_to_date(local: str | int | float | None, remote: str | int | float | None) -> bool:
    """True when the local copy is at least as new as the remote record.

    Unknown timestamps on either side never count as up to date.
    """
    local_ts = normalize_timestamp(local)
    remote_ts = normalize_timestamp(remote)
    if local_ts is None or remote_ts is None:
        return False
    return local_ts >= remote_ts


def format_date(value: str | int | float | None) -> str | None:
    """Return ``YYYY-MM-DD`` for a timestamp, or None when it cannot be parsed."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(timezone.utc).date().isoformat()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = [
    "format_date",
    "is_up_to_date",
    "normalize_timestamp",
    "parse_timestamp",
    "utc_now_iso",
]
