"""On-disk layout of a backup.

StorageService is the only writer of the output directory. One instance is
scoped to a single collection: the default conversation list or one
project, whose name is sanitized into a directory name.

Layout::

    <output>/conversations/<id>.json        detail records
    <output>/conversations/index.json       summary index
    <output>/projects/<name>/conversations/ same, per project
    <output>/projects/<name>/metadata.json  run metadata, per project
    <output>/metadata.json                  run metadata, default collection
    <output>/backup.log                     human-readable run log
    <output>/files/<file_id>/<file_name>    materialized attachments
    <output>/file-failures.json             permanent failure memory
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

import aiofiles
import structlog
from pydantic import BaseModel

from gptarchive.core import json as jsonutil
from gptarchive.core.timestamps import utc_now_iso
from gptarchive.paths import safe_collection_name

logger = structlog.get_logger(__name__)

CONVERSATIONS_DIR = "conversations"
PROJECTS_DIR = "projects"
FILES_DIR = "files"
INDEX_FILE = "index.json"
METADATA_FILE = "metadata.json"
LOG_FILE = "backup.log"
FAILURES_FILE = "file-failures.json"


class StorageService:
    def __init__(self, output_dir: Path, project_name: str | None = None) -> None:
        self.output_dir = Path(output_dir)
        self.project_name = project_name
        if project_name:
            self.collection_dir = self.output_dir / PROJECTS_DIR / safe_collection_name(project_name)
        else:
            self.collection_dir = self.output_dir
        self.conversations_dir = self.collection_dir / CONVERSATIONS_DIR

    @property
    def collection_label(self) -> str:
        return self.project_name or "conversations"

    @property
    def files_dir(self) -> Path:
        return self.output_dir / FILES_DIR

    @property
    def failures_path(self) -> Path:
        return self.output_dir / FAILURES_FILE

    @property
    def log_path(self) -> Path:
        return self.output_dir / LOG_FILE

    @property
    def metadata_path(self) -> Path:
        return self.collection_dir / METADATA_FILE

    def for_project(self, project_name: str) -> StorageService:
        return StorageService(self.output_dir, project_name)

    async def initialize(self) -> None:
        self.conversations_dir.mkdir(parents=True, exist_ok=True)

    def detail_path(self, conversation_id: str) -> Path:
        return self.conversations_dir / f"{conversation_id}.json"

    async def _write_json(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "wb") as handle:
            await handle.write(jsonutil.dumps_pretty(payload))

    async def write_detail(self, conversation_id: str, detail: BaseModel | Mapping[str, Any]) -> Path:
        path = self.detail_path(conversation_id)
        await self._write_json(path, detail)
        return path

    async def write_summary_index(self, summaries: Iterable[BaseModel | Mapping[str, Any]]) -> None:
        await self._write_json(self.conversations_dir / INDEX_FILE, list(summaries))

    async def write_run_metadata(self, metadata: Mapping[str, Any]) -> None:
        await self._write_json(self.metadata_path, dict(metadata))

    async def append_log_line(self, text: str) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.log_path, "a", encoding="utf-8") as handle:
            await handle.write(f"[{utc_now_iso()}] {text}\n")

    async def read_existing_update_time(self, conversation_id: str) -> str | float | None:
        """Return the stored ``update_time`` for a conversation, or None.

        A missing or unreadable local copy yields None so the conversation
        is downloaded again.
        """
        path = self.detail_path(conversation_id)
        try:
            async with aiofiles.open(path, "rb") as handle:
                raw = await handle.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("detail_unreadable", path=str(path), error=str(exc))
            return None
        try:
            data = jsonutil.loads(raw)
        except ValueError:
            logger.warning("detail_corrupt", path=str(path))
            return None
        if not isinstance(data, dict):
            return None
        value = data.get("update_time")
        if isinstance(value, (int, float, str)) and not isinstance(value, bool):
            return value
        return None

    def iter_collection_dirs(self) -> Iterator[Path]:
        """Yield the conversations directory of every collection in the output."""
        yield self.output_dir / CONVERSATIONS_DIR
        projects_root = self.output_dir / PROJECTS_DIR
        if projects_root.is_dir():
            for entry in sorted(projects_root.iterdir()):
                if entry.is_dir():
                    yield entry / CONVERSATIONS_DIR

    def iter_detail_paths(self) -> Iterator[Path]:
        """Yield every stored detail record across all collections."""
        for directory in self.iter_collection_dirs():
            if not directory.is_dir():
                continue
            for path in sorted(directory.glob("*.json")):
                if path.name != INDEX_FILE and path.is_file():
                    yield path


__all__ = [
    "FAILURES_FILE",
    "INDEX_FILE",
    "METADATA_FILE",
    "StorageService",
]
