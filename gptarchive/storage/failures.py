"""Persisted memory of files that could not be downloaded.

A file that fails once is usually gone for good (expired upload, deleted
asset), so failed identifiers are remembered and excluded from later runs.
The set only ever grows; clearing it is an explicit operator action.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import structlog

from gptarchive.core import json as jsonutil
from gptarchive.core.timestamps import utc_now_iso

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PermanentFailureSet:
    file_ids: frozenset[str] = frozenset()

    def __contains__(self, file_id: object) -> bool:
        return file_id in self.file_ids

    def __len__(self) -> int:
        return len(self.file_ids)

    def union(self, file_ids: Iterable[str]) -> PermanentFailureSet:
        return PermanentFailureSet(self.file_ids | frozenset(file_ids))

    @classmethod
    def load(cls, path: Path) -> PermanentFailureSet:
        """Read the persisted set; a missing or malformed document is empty."""
        try:
            data = jsonutil.loads(path.read_bytes())
        except FileNotFoundError:
            return cls()
        except (OSError, ValueError) as exc:
            logger.warning("failure_memory_unreadable", path=str(path), error=str(exc))
            return cls()
        # A bare list of identifiers is accepted too.
        raw = data.get("failed_file_ids") if isinstance(data, dict) else data
        if not isinstance(raw, list):
            return cls()
        return cls(frozenset(item for item in raw if isinstance(item, str) and item))

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"failed_file_ids": sorted(self.file_ids), "updated_at": utc_now_iso()}
        path.write_bytes(jsonutil.dumps_pretty(payload))

    @staticmethod
    def clear(path: Path) -> bool:
        """Delete the persisted set. Returns True if a document was removed."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True


__all__ = ["PermanentFailureSet"]
