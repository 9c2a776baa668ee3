"""Core utilities: retry policy, timestamps and JSON helpers."""

from gptarchive.core.retry import BackoffPolicy
from gptarchive.core.timestamps import is_up_to_date, normalize_timestamp

__all__ = ["BackoffPolicy", "is_up_to_date", "normalize_timestamp"]
