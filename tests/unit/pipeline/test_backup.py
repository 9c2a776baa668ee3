"""Backup engine: listing, incremental skip, failure accounting, projects."""

from __future__ import annotations

import httpx
import pytest

from gptarchive.api import endpoints
from gptarchive.core import json as jsonutil
from gptarchive.errors import AuthenticationError, ProjectNotFoundError
from gptarchive.pipeline.backup import (
    BackupOptions,
    BackupRunResult,
    BackupService,
    Project,
    backup_everything,
    sum_results,
)
from gptarchive.pipeline.orchestrator import ItemFailure
from gptarchive.storage.store import StorageService

# 1_700_000_100 as an ISO string, the shape the listing endpoint reports
REMOTE_ISO = "2023-11-14T22:15:00.000000+00:00"

FAST = BackupOptions(concurrency=3, delay=0)


def serve_conversations(backend, detail_factory, message_factory, ids, *, update_time=REMOTE_ISO):
    backend.route(
        endpoints.CONVERSATIONS,
        {"items": [{"id": cid, "title": cid, "update_time": update_time} for cid in ids], "total": len(ids)},
    )
    for cid in ids:
        backend.route(
            endpoints.conversation(cid),
            detail_factory([message_factory(f"{cid}-m1", "user", "hi")], conversation_id=cid),
        )


def serve_projects(backend, projects: dict[str, str]):
    backend.route(
        endpoints.PROJECTS_SIDEBAR,
        {"items": [{"gizmo": {"id": gid, "display": {"name": name}}} for gid, name in projects.items()]},
    )


class TestBackup:
    @pytest.mark.asyncio
    async def test_full_backup_writes_everything(self, backend, make_client, output_dir, detail_factory, message_factory):
        serve_conversations(backend, detail_factory, message_factory, ["a", "b", "c"])
        storage = StorageService(output_dir)

        async with make_client() as client:
            result = await BackupService(client, storage).backup(FAST)

        assert result == BackupRunResult(total_items=3, downloaded=3, skipped=0, failed=0)
        conversations = output_dir / "conversations"
        assert sorted(p.name for p in conversations.glob("*.json")) == ["a.json", "b.json", "c.json", "index.json"]
        index = jsonutil.loads((conversations / "index.json").read_bytes())
        assert [entry["id"] for entry in index] == ["a", "b", "c"]

        detail = jsonutil.loads((conversations / "a.json").read_bytes())
        assert detail["mapping"]["a-m1"]["message"]["content"]["parts"] == ["hi"]

        metadata = jsonutil.loads((output_dir / "metadata.json").read_bytes())
        assert metadata["total_conversations"] == 3
        assert metadata["successful_downloads"] == 3
        assert metadata["failed_downloads"] == 0
        assert metadata["errors"] == []
        assert "Backup completed: 3 downloaded" in (output_dir / "backup.log").read_text()

    @pytest.mark.asyncio
    async def test_failed_items_are_recorded(self, backend, make_client, output_dir, detail_factory, message_factory):
        serve_conversations(backend, detail_factory, message_factory, ["a", "b", "c"])
        backend.route(endpoints.conversation("b"), httpx.Response(500, json={}))
        errors: list[str] = []

        async with make_client() as client:
            result = await BackupService(client, StorageService(output_dir)).backup(
                BackupOptions(delay=0, on_error=lambda item_id, exc: errors.append(item_id))
            )

        assert (result.downloaded, result.skipped, result.failed) == (2, 0, 1)
        assert result.total_items == result.downloaded + result.skipped + result.failed
        assert result.errors == (ItemFailure("b", "Request failed: 500 Internal Server Error"),)
        assert errors == ["b"]
        assert not (output_dir / "conversations" / "b.json").exists()
        metadata = jsonutil.loads((output_dir / "metadata.json").read_bytes())
        assert metadata["errors"] == [{"id": "b", "error": "Request failed: 500 Internal Server Error"}]
        assert "Failed to download b" in (output_dir / "backup.log").read_text()

    @pytest.mark.asyncio
    async def test_listing_auth_failure_propagates(self, backend, make_client, output_dir):
        backend.route(endpoints.CONVERSATIONS, httpx.Response(401, json={}))
        async with make_client() as client:
            with pytest.raises(AuthenticationError):
                await BackupService(client, StorageService(output_dir)).backup(FAST)

    @pytest.mark.asyncio
    async def test_progress_covers_every_item(self, backend, make_client, output_dir, detail_factory, message_factory):
        serve_conversations(backend, detail_factory, message_factory, ["a", "b"])
        listed: list[tuple[int, int]] = []
        downloaded: list[tuple[int, int]] = []
        options = BackupOptions(
            delay=0,
            on_list_progress=lambda f, t: listed.append((f, t)),
            on_download_progress=lambda c, t: downloaded.append((c, t)),
        )
        async with make_client() as client:
            await BackupService(client, StorageService(output_dir)).backup(options)
        assert listed == [(2, 2)]
        assert downloaded[-1] == (2, 2)


class TestIncremental:
    @pytest.mark.asyncio
    async def test_second_run_skips_everything(self, backend, make_client, output_dir, detail_factory, message_factory):
        serve_conversations(backend, detail_factory, message_factory, ["a", "b"])
        options = BackupOptions(delay=0, incremental=True)

        async with make_client() as client:
            service = BackupService(client, StorageService(output_dir))
            first = await service.backup(options)
            second = await service.backup(options)

        assert first.downloaded == 2
        assert second == BackupRunResult(total_items=2, downloaded=0, skipped=2, failed=0)
        assert len(backend.calls(endpoints.conversation("a"))) == 1

    @pytest.mark.asyncio
    async def test_each_skip_reports_progress(self, backend, make_client, output_dir, detail_factory, message_factory):
        serve_conversations(backend, detail_factory, message_factory, ["a", "b", "c"])
        seen: list[tuple[int, int]] = []
        async with make_client() as client:
            service = BackupService(client, StorageService(output_dir))
            await service.backup(BackupOptions(delay=0, incremental=True))
            await service.backup(
                BackupOptions(delay=0, incremental=True, on_download_progress=lambda c, t: seen.append((c, t)))
            )
        assert seen == [(1, 3), (2, 3), (3, 3)]

    @pytest.mark.asyncio
    async def test_mixed_skip_and_download_progress(
        self, backend, make_client, output_dir, detail_factory, message_factory
    ):
        serve_conversations(backend, detail_factory, message_factory, ["a", "b"])
        seen: list[tuple[int, int]] = []
        async with make_client() as client:
            service = BackupService(client, StorageService(output_dir))
            await service.backup(BackupOptions(delay=0, incremental=True))
            backend.route(
                endpoints.CONVERSATIONS,
                {"items": [{"id": "a", "update_time": REMOTE_ISO}, {"id": "b", "update_time": 1_700_000_150.0}], "total": 2},
            )
            await service.backup(
                BackupOptions(delay=0, incremental=True, on_download_progress=lambda c, t: seen.append((c, t)))
            )
        assert seen == [(1, 2), (2, 2)]

    @pytest.mark.asyncio
    async def test_remote_change_is_downloaded_again(self, backend, make_client, output_dir, detail_factory, message_factory):
        serve_conversations(backend, detail_factory, message_factory, ["a", "b"])
        options = BackupOptions(delay=0, incremental=True)
        async with make_client() as client:
            service = BackupService(client, StorageService(output_dir))
            await service.backup(options)
            backend.route(
                endpoints.CONVERSATIONS,
                {
                    "items": [
                        {"id": "a", "update_time": REMOTE_ISO},
                        {"id": "b", "update_time": 1_700_000_150.0},
                    ],
                    "total": 2,
                },
            )
            result = await service.backup(options)

        assert (result.downloaded, result.skipped) == (1, 1)
        assert len(backend.calls(endpoints.conversation("b"))) == 2

    @pytest.mark.asyncio
    async def test_non_incremental_downloads_again(self, backend, make_client, output_dir, detail_factory, message_factory):
        serve_conversations(backend, detail_factory, message_factory, ["a"])
        async with make_client() as client:
            service = BackupService(client, StorageService(output_dir))
            await service.backup(FAST)
            result = await service.backup(FAST)
        assert (result.downloaded, result.skipped) == (1, 0)

    @pytest.mark.asyncio
    async def test_unknown_remote_time_is_never_skipped(self, backend, make_client, output_dir, detail_factory, message_factory):
        serve_conversations(backend, detail_factory, message_factory, ["a"], update_time=None)
        options = BackupOptions(delay=0, incremental=True)
        async with make_client() as client:
            service = BackupService(client, StorageService(output_dir))
            await service.backup(options)
            result = await service.backup(options)
        assert result.downloaded == 1


class TestProjects:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["g-p-2", "research notes", "RESEARCH NOTES"])
    async def test_resolve_project(self, backend, make_client, output_dir, query):
        serve_projects(backend, {"g-p-1": "Cooking", "g-p-2": "Research Notes"})
        async with make_client() as client:
            project = await BackupService(client, StorageService(output_dir)).resolve_project(query)
        assert project == Project(gizmo_id="g-p-2", name="Research Notes")

    @pytest.mark.asyncio
    async def test_unknown_project_lists_available(self, backend, make_client, output_dir):
        serve_projects(backend, {"g-p-1": "Cooking", "g-p-2": "Research Notes"})
        async with make_client() as client:
            with pytest.raises(ProjectNotFoundError) as excinfo:
                await BackupService(client, StorageService(output_dir)).resolve_project("Gardening")
        assert "Cooking, Research Notes" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_backup_everything(self, backend, make_client, output_dir, detail_factory, message_factory):
        serve_conversations(backend, detail_factory, message_factory, ["a"])
        serve_projects(backend, {"g-p-1": "Research Notes"})
        backend.route(
            endpoints.project_conversations("g-p-1"),
            {"items": [{"id": "p1", "update_time": REMOTE_ISO}], "cursor": None},
        )
        backend.route(
            endpoints.conversation("p1"),
            detail_factory([message_factory("p1-m1", "user", "hello")], conversation_id="p1"),
        )
        labels: list[str] = []

        async with make_client() as client:
            results = await backup_everything(client, output_dir, FAST, on_collection=labels.append)

        assert labels == ["conversations", "Research Notes"]
        assert [(entry.label, entry.gizmo_id, entry.result.downloaded) for entry in results] == [
            ("conversations", None, 1),
            ("Research Notes", "g-p-1", 1),
        ]
        project_dir = output_dir / "projects" / "Research_Notes"
        assert (project_dir / "conversations" / "p1.json").is_file()
        assert (project_dir / "metadata.json").is_file()
        assert not (output_dir / "conversations" / "p1.json").exists()

    @pytest.mark.asyncio
    async def test_colliding_project_names_are_all_counted(
        self, backend, make_client, output_dir, detail_factory, message_factory
    ):
        serve_conversations(backend, detail_factory, message_factory, ["a"])
        serve_projects(backend, {"g-p-1": "conversations", "g-p-2": "Work", "g-p-3": "Work"})
        for gizmo_id in ("g-p-1", "g-p-2", "g-p-3"):
            cid = f"{gizmo_id}-c"
            backend.route(
                endpoints.project_conversations(gizmo_id),
                {"items": [{"id": cid, "update_time": REMOTE_ISO}], "cursor": None},
            )
            backend.route(
                endpoints.conversation(cid),
                detail_factory([message_factory(f"{cid}-m1", "user", "hi")], conversation_id=cid),
            )
        backend.route(endpoints.conversation("g-p-3-c"), httpx.Response(500, json={}))

        async with make_client() as client:
            results = await backup_everything(client, output_dir, FAST)

        assert [entry.label for entry in results] == ["conversations", "conversations", "Work", "Work"]
        assert [entry.gizmo_id for entry in results] == [None, "g-p-1", "g-p-2", "g-p-3"]
        total = sum_results(entry.result for entry in results)
        assert (total.total_items, total.downloaded, total.failed) == (4, 3, 1)
        assert [failure.item_id for failure in total.errors] == ["g-p-3-c"]


class TestSumResults:
    def test_adds_every_run(self):
        runs = [
            BackupRunResult(total_items=2, downloaded=1, skipped=1),
            BackupRunResult(total_items=3, downloaded=1, failed=2, errors=(ItemFailure("x", "boom"), ItemFailure("y", "boom"))),
        ]
        assert sum_results(runs) == BackupRunResult(
            total_items=5,
            downloaded=2,
            skipped=1,
            failed=2,
            errors=(ItemFailure("x", "boom"), ItemFailure("y", "boom")),
        )

    def test_empty(self):
        assert sum_results([]) == BackupRunResult()
