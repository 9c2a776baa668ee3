"""Backup engine: list a collection, diff it against disk, download the rest.

A collection is either the default conversation list or a single project.
``BackupService.backup`` handles one collection in the storage scope it was
given; ``backup_everything`` walks the default collection and then every
project, each in its own scope.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import structlog

from gptarchive.api import endpoints
from gptarchive.api.client import ChatGPTClient
from gptarchive.api.pagination import (
    DEFAULT_DELAY,
    count_conversations,
    iter_conversations,
    iter_project_conversations,
    iter_projects,
)
from gptarchive.api.schemas import ConversationDetail, ConversationSummary
from gptarchive.core.timestamps import is_up_to_date, utc_now_iso
from gptarchive.errors import ProjectNotFoundError
from gptarchive.lib.log import collection_context
from gptarchive.pipeline.orchestrator import (
    DownloadOrchestrator,
    ErrorCallback,
    ItemFailure,
    ItemStatus,
    ProgressCallback,
)
from gptarchive.storage.store import StorageService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Project:
    gizmo_id: str
    name: str


@dataclass(frozen=True)
class BackupOptions:
    """Knobs for a single collection run.

    ``delay`` is used both between listing pages and between starting
    downloads. ``project_gizmo_id`` selects a project collection; None means
    the default conversation list.
    """

    concurrency: int = 3
    delay: float = DEFAULT_DELAY
    incremental: bool = False
    project_gizmo_id: str | None = None
    on_list_progress: ProgressCallback | None = None
    on_download_progress: ProgressCallback | None = None
    on_error: ErrorCallback | None = None


@dataclass(frozen=True)
class BackupRunResult:
    total_items: int = 0
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: tuple[ItemFailure, ...] = field(default_factory=tuple)

    def as_metadata(self) -> dict[str, Any]:
        return {
            "timestamp": utc_now_iso(),
            "total_conversations": self.total_items,
            "successful_downloads": self.downloaded,
            "skipped": self.skipped,
            "failed_downloads": self.failed,
            "errors": [failure.as_dict() for failure in self.errors],
        }


@dataclass(frozen=True)
class CollectionResult:
    """Outcome of one collection in a full run.

    Project names are not unique, so results are kept in run order rather
    than keyed by label.
    """

    label: str
    result: BackupRunResult
    gizmo_id: str | None = None


def sum_results(results: Iterable[BackupRunResult]) -> BackupRunResult:
    results = list(results)
    return BackupRunResult(
        total_items=sum(r.total_items for r in results),
        downloaded=sum(r.downloaded for r in results),
        skipped=sum(r.skipped for r in results),
        failed=sum(r.failed for r in results),
        errors=tuple(error for r in results for error in r.errors),
    )


class BackupService:
    """Back up one collection through a shared client into one storage scope."""

    def __init__(self, client: ChatGPTClient, storage: StorageService) -> None:
        self.client = client
        self.storage = storage

    async def list_conversations(
        self,
        *,
        delay: float = DEFAULT_DELAY,
        on_progress: ProgressCallback | None = None,
    ) -> list[ConversationSummary]:
        return [item async for item in iter_conversations(self.client, delay=delay, on_progress=on_progress)]

    async def list_project_conversations(
        self,
        gizmo_id: str,
        *,
        delay: float = DEFAULT_DELAY,
        on_progress: ProgressCallback | None = None,
    ) -> list[ConversationSummary]:
        walker = iter_project_conversations(self.client, gizmo_id, delay=delay, on_progress=on_progress)
        return [item async for item in walker]

    async def list_projects(self, *, delay: float = DEFAULT_DELAY) -> list[Project]:
        return [
            Project(gizmo_id=item.gizmo.id, name=item.name)
            async for item in iter_projects(self.client, delay=delay)
        ]

    async def count_conversations(self) -> int:
        return await count_conversations(self.client)

    async def resolve_project(self, name_or_id: str) -> Project:
        """Find a project by exact id or case-insensitive name."""
        projects = await self.list_projects()
        wanted = name_or_id.casefold()
        for project in projects:
            if project.gizmo_id == name_or_id or project.name.casefold() == wanted:
                return project
        raise ProjectNotFoundError(name_or_id, [project.name for project in projects])

    async def download_conversation(self, conversation_id: str) -> ConversationDetail:
        return await self.client.fetch_json(endpoints.conversation(conversation_id), model=ConversationDetail)

    async def _partition(
        self,
        summaries: list[ConversationSummary],
        on_skip: ProgressCallback | None = None,
    ) -> tuple[list[ConversationSummary], int]:
        """Split summaries into (to download, skipped count) by update time.

        ``on_skip(skipped_so_far, total)`` fires once per skipped summary.
        """
        pending: list[ConversationSummary] = []
        skipped = 0
        total = len(summaries)
        for summary in summaries:
            local = await self.storage.read_existing_update_time(summary.id)
            if is_up_to_date(local, summary.update_time):
                skipped += 1
                if on_skip is not None:
                    on_skip(skipped, total)
            else:
                pending.append(summary)
        return pending, skipped

    async def backup(self, options: BackupOptions | None = None) -> BackupRunResult:
        """Back up this service's collection.

        Listing failures propagate; per-conversation failures are recorded in
        the result and in the run metadata.
        """
        options = options or BackupOptions()
        storage = self.storage
        with collection_context(storage.collection_label):
            await storage.initialize()
            await storage.append_log_line(f"Starting backup of {storage.collection_label}...")

            if options.project_gizmo_id:
                summaries = await self.list_project_conversations(
                    options.project_gizmo_id, delay=options.delay, on_progress=options.on_list_progress
                )
            else:
                summaries = await self.list_conversations(delay=options.delay, on_progress=options.on_list_progress)
            total = len(summaries)
            logger.info("conversations_listed", total=total)
            await storage.append_log_line(f"Found {total} conversations")
            await storage.write_summary_index(summaries)

            download_progress = options.on_download_progress
            if options.incremental:
                pending, skipped = await self._partition(summaries, on_skip=download_progress)
                if skipped:
                    await storage.append_log_line(f"Skipping {skipped} up-to-date conversations")
            else:
                pending, skipped = summaries, 0

            def progress(completed: int, _batch_total: int) -> None:
                if download_progress is not None:
                    download_progress(skipped + completed, total)

            async def worker(summary: ConversationSummary) -> ItemStatus:
                detail = await self.download_conversation(summary.id)
                await storage.write_detail(summary.id, detail)
                return ItemStatus.DOWNLOADED

            orchestrator: DownloadOrchestrator[ConversationSummary] = DownloadOrchestrator(
                concurrency=options.concurrency,
                delay=options.delay,
                key=lambda summary: summary.id,
                on_progress=progress,
                on_error=options.on_error,
            )
            stats = await orchestrator.run(pending, worker)

            result = BackupRunResult(
                total_items=total,
                downloaded=stats.downloaded,
                skipped=skipped + stats.skipped,
                failed=stats.failed,
                errors=tuple(stats.failures),
            )
            for failure in result.errors:
                await storage.append_log_line(f"Failed to download {failure.item_id}: {failure.error}")
            await storage.write_run_metadata(result.as_metadata())
            await storage.append_log_line(
                f"Backup completed: {result.downloaded} downloaded, {result.skipped} skipped, {result.failed} failed"
            )
            logger.info(
                "backup_finished",
                downloaded=result.downloaded,
                skipped=result.skipped,
                failed=result.failed,
            )
            return result


async def backup_everything(
    client: ChatGPTClient,
    output_dir: Path,
    options: BackupOptions | None = None,
    *,
    on_collection: Callable[[str], None] | None = None,
) -> list[CollectionResult]:
    """Back up the default collection, then every project.

    Returns one entry per collection in run order; the default list is
    labelled ``"conversations"`` and projects by name. ``on_collection`` is
    called with the label before each collection starts.
    """
    options = options or BackupOptions()
    storage = StorageService(output_dir)
    results: list[CollectionResult] = []

    if on_collection is not None:
        on_collection(storage.collection_label)
    default_result = await BackupService(client, storage).backup(replace(options, project_gizmo_id=None))
    results.append(CollectionResult(storage.collection_label, default_result))

    projects = await BackupService(client, storage).list_projects(delay=options.delay)
    logger.info("projects_listed", count=len(projects))
    for project in projects:
        project_storage = storage.for_project(project.name)
        if on_collection is not None:
            on_collection(project_storage.collection_label)
        project_result = await BackupService(client, project_storage).backup(
            replace(options, project_gizmo_id=project.gizmo_id)
        )
        results.append(CollectionResult(project_storage.collection_label, project_result, project.gizmo_id))
        if options.delay > 0:
            await asyncio.sleep(options.delay)
    return results


__all__ = [
    "BackupOptions",
    "BackupRunResult",
    "BackupService",
    "CollectionResult",
    "Project",
    "backup_everything",
    "sum_results",
]
