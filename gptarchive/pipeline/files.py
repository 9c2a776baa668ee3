"""Download the files referenced by stored conversations.

Each file is fetched in two steps: resolve the file id to short-lived
download metadata, then fetch the bytes from the signed URL. Both steps use
a single retry; an expired or deleted file does not come back by asking
again. Identifiers that fail are added to the persisted permanent failure
memory and left out of every later run.
"""

from __future__ import annotations

import asyncio
import os
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import structlog

from gptarchive.api import endpoints
from gptarchive.api.client import ChatGPTClient
from gptarchive.api.schemas import FileDownloadInfo
from gptarchive.core.retry import BackoffPolicy
from gptarchive.errors import FileUnavailableError
from gptarchive.paths import is_within_root, safe_path_component
from gptarchive.pipeline.orchestrator import (
    BatchStats,
    DownloadOrchestrator,
    ItemFailure,
    ItemStatus,
)
from gptarchive.pipeline.references import FileReference, scan_collection
from gptarchive.storage.failures import PermanentFailureSet
from gptarchive.storage.store import StorageService

logger = structlog.get_logger(__name__)

FILE_RETRIES = 1

FileProgressCallback = Callable[[int, int, BatchStats], None]
ExcludedCallback = Callable[[int], None]


@dataclass(frozen=True)
class FileDownloadResult:
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    failed_file_ids: tuple[str, ...] = ()
    excluded: int = 0
    errors: tuple[ItemFailure, ...] = ()

    def grouped_errors(self) -> dict[str, list[str]]:
        return group_errors(self.errors)


def group_errors(failures: Iterable[ItemFailure]) -> dict[str, list[str]]:
    """Group failed identifiers by error message, in first-seen order."""
    grouped: dict[str, list[str]] = defaultdict(list)
    for failure in failures:
        grouped[failure.error].append(failure.item_id)
    return dict(grouped)


def dir_has_files(directory: Path) -> bool:
    """True if the directory (or any subdirectory) holds a regular file."""
    if not directory.is_dir():
        return False
    return any(path.is_file() for path in directory.rglob("*"))


def resolve_target(file_dir: Path, ref: FileReference, info: FileDownloadInfo) -> Path:
    """Pick the destination path for a downloaded file.

    Server-provided names win over the name recorded in the conversation,
    which wins over the bare id. Server names may contain subdirectories
    (``dalle-generations/<uuid>.webp``); a name that would leave the file's
    directory is flattened into a single safe component instead.
    """
    filename = info.file_name or ref.filename or ref.file_id
    target = file_dir / filename
    if not is_within_root(target, file_dir) or target.resolve() == file_dir.resolve():
        target = file_dir / safe_path_component(filename, fallback=ref.file_id)
    return target


def find_first_file(directory: Path) -> Path | None:
    """First stored file below a directory, relative to it (depth first)."""
    try:
        entries = sorted(directory.iterdir())
    except OSError:
        return None
    for entry in entries:
        if entry.is_file():
            return Path(entry.name)
    for entry in entries:
        if entry.is_dir():
            nested = find_first_file(entry)
            if nested is not None:
                return Path(entry.name) / nested
    return None


def build_file_map(files_dir: Path) -> dict[str, Path]:
    """Map each downloaded file id to its stored file, relative to the output root."""
    file_map: dict[str, Path] = {}
    if not files_dir.is_dir():
        return file_map
    for entry in sorted(files_dir.iterdir()):
        if not entry.is_dir():
            continue
        rel = find_first_file(entry)
        if rel is not None:
            file_map[entry.name] = Path(files_dir.name) / entry.name / rel
    return file_map


class FileService:
    """Materialize referenced files into ``<output>/files/<file_id>/``.

    Args:
        client: Authenticated API client
        storage: Storage scoped to the output directory
        concurrency: Maximum downloads in flight
        delay: Seconds between starting downloads
        policy: Retry policy for both steps (defaults to the client's policy
            reduced to a single retry)
    """

    def __init__(
        self,
        client: ChatGPTClient,
        storage: StorageService,
        *,
        concurrency: int = 3,
        delay: float = 0.0,
        policy: BackoffPolicy | None = None,
    ) -> None:
        self.client = client
        self.storage = storage
        self.concurrency = concurrency
        self.delay = delay
        self.policy = policy or client.policy.with_retries(FILE_RETRIES)

    def scan_references(self) -> list[FileReference]:
        """References across the default collection and every project."""
        return scan_collection(self.storage.output_dir)

    async def resolve(self, file_id: str) -> tuple[str, FileDownloadInfo]:
        """Return the signed download URL and the metadata it came with."""
        info = await self.client.fetch_json(
            endpoints.file_download(file_id),
            model=FileDownloadInfo,
            policy=self.policy,
        )
        url = info.download_url
        if not url:
            raise FileUnavailableError("File not available")
        return url, info

    async def download_one(self, ref: FileReference) -> ItemStatus:
        file_dir = self.storage.files_dir / safe_path_component(ref.file_id)
        if await asyncio.to_thread(dir_has_files, file_dir):
            return ItemStatus.SKIPPED

        url, info = await self.resolve(ref.file_id)
        payload = await self.client.fetch_bytes(url, policy=self.policy)

        # Nothing touches the disk until both steps succeeded.
        target = resolve_target(file_dir, ref, info)
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "wb") as handle:
            await handle.write(payload)
        logger.debug("file_downloaded", file_id=ref.file_id, path=os.fspath(target), size=len(payload))
        return ItemStatus.DOWNLOADED

    async def download_files(
        self,
        refs: Sequence[FileReference],
        *,
        denylist: PermanentFailureSet = PermanentFailureSet(),
        on_progress: FileProgressCallback | None = None,
        on_error: Callable[[str, BaseException], None] | None = None,
        on_excluded: ExcludedCallback | None = None,
    ) -> FileDownloadResult:
        """Download a batch of references, leaving out denylisted ids.

        ``on_excluded(count)`` is called once, before the first download, when
        any reference was left out.
        """
        batch = [ref for ref in refs if ref.file_id not in denylist]
        excluded = len(refs) - len(batch)
        if excluded:
            logger.info("files_excluded", count=excluded, reason="previously_failed")
            if on_excluded is not None:
                on_excluded(excluded)

        def progress(completed: int, total: int) -> None:
            if on_progress is not None:
                on_progress(completed, total, orchestrator.stats)

        orchestrator: DownloadOrchestrator[FileReference] = DownloadOrchestrator(
            concurrency=self.concurrency,
            delay=self.delay,
            key=lambda ref: ref.file_id,
            on_progress=progress,
            on_error=on_error,
        )
        stats = await orchestrator.run(batch, self.download_one)
        return FileDownloadResult(
            downloaded=stats.downloaded,
            skipped=stats.skipped,
            failed=stats.failed,
            total=stats.total,
            failed_file_ids=tuple(failure.item_id for failure in stats.failures),
            excluded=excluded,
            errors=tuple(stats.failures),
        )

    async def materialize(
        self,
        *,
        refs: Sequence[FileReference] | None = None,
        on_progress: FileProgressCallback | None = None,
        on_error: Callable[[str, BaseException], None] | None = None,
        on_excluded: ExcludedCallback | None = None,
    ) -> FileDownloadResult:
        """Scan, download, and persist newly failed ids into the failure memory."""
        failures_path = self.storage.failures_path
        denylist = await asyncio.to_thread(PermanentFailureSet.load, failures_path)
        if refs is None:
            refs = await asyncio.to_thread(self.scan_references)
        logger.info("files_scanned", references=len(refs), previously_failed=len(denylist))

        result = await self.download_files(
            refs,
            denylist=denylist,
            on_progress=on_progress,
            on_error=on_error,
            on_excluded=on_excluded,
        )

        if result.failed_file_ids:
            await asyncio.to_thread(denylist.union(result.failed_file_ids).save, failures_path)
        for message, file_ids in result.grouped_errors().items():
            await self.storage.append_log_line(f"File download failed ({len(file_ids)}): {message}: {', '.join(file_ids)}")
        await self.storage.append_log_line(
            f"Files completed: {result.downloaded} downloaded, {result.skipped} skipped, "
            f"{result.failed} failed, {result.excluded} previously failed"
        )
        return result


__all__ = [
    "FileDownloadResult",
    "FileService",
    "build_file_map",
    "dir_has_files",
    "group_errors",
    "resolve_target",
]
