"""File materialization: resolve-then-fetch, skips, failure memory, naming."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from gptarchive.api import endpoints
from gptarchive.api.schemas import FileDownloadInfo
from gptarchive.core import json as jsonutil
from gptarchive.pipeline.files import (
    FileService,
    build_file_map,
    dir_has_files,
    group_errors,
    resolve_target,
)
from gptarchive.pipeline.orchestrator import ItemFailure
from gptarchive.pipeline.references import FileReference, Provenance
from gptarchive.storage.failures import PermanentFailureSet
from gptarchive.storage.store import StorageService


def serve_file(backend, file_id: str, payload: bytes = b"data", *, file_name: str | None = None) -> str:
    url = f"https://files.example.com/{file_id}?sig=abc"
    backend.route(
        endpoints.file_download(file_id),
        {"status": "success", "download_url": url, "file_name": file_name},
    )
    backend.route(url, httpx.Response(200, content=payload))
    return url


def ref(file_id: str, filename: str | None = None) -> FileReference:
    return FileReference(file_id=file_id, provenance=Provenance.ATTACHMENT, filename=filename)


@pytest.fixture
def storage(output_dir: Path) -> StorageService:
    return StorageService(output_dir)


class TestDownload:
    @pytest.mark.asyncio
    async def test_two_step_download(self, backend, make_client, storage):
        serve_file(backend, "file-a", b"png bytes", file_name="photo.png")
        async with make_client() as client:
            result = await FileService(client, storage).download_files([ref("file-a")])

        assert (result.downloaded, result.skipped, result.failed, result.total) == (1, 0, 0, 1)
        assert (storage.files_dir / "file-a" / "photo.png").read_bytes() == b"png bytes"

    @pytest.mark.asyncio
    async def test_existing_file_is_skipped(self, backend, make_client, storage):
        existing = storage.files_dir / "file-a" / "nested" / "old.bin"
        existing.parent.mkdir(parents=True)
        existing.write_bytes(b"old")
        async with make_client() as client:
            result = await FileService(client, storage).download_files([ref("file-a")])
        assert (result.downloaded, result.skipped) == (0, 1)
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_missing_download_url_fails_without_writing(self, backend, make_client, storage):
        backend.route(endpoints.file_download("file-gone"), {"status": "error", "download_url": None})
        async with make_client() as client:
            result = await FileService(client, storage).download_files([ref("file-gone")])
        assert result.failed == 1
        assert result.failed_file_ids == ("file-gone",)
        assert result.errors == (ItemFailure("file-gone", "File not available"),)
        assert not (storage.files_dir / "file-gone").exists()

    @pytest.mark.asyncio
    async def test_resolve_returns_signed_url(self, backend, make_client, storage):
        url = serve_file(backend, "file-a", file_name="a.txt")
        async with make_client() as client:
            signed, info = await FileService(client, storage).resolve("file-a")
        assert signed == url
        assert info.file_name == "a.txt"

    @pytest.mark.asyncio
    async def test_no_exclusion_callback_without_denylisted_refs(self, backend, make_client, storage):
        serve_file(backend, "file-a")
        calls: list[int] = []
        async with make_client() as client:
            await FileService(client, storage).download_files([ref("file-a")], on_excluded=calls.append)
        assert calls == []

    @pytest.mark.asyncio
    async def test_each_step_retries_once(self, backend, make_client, storage):
        backend.route(endpoints.file_download("file-a"), httpx.Response(500, json={}))
        async with make_client() as client:
            result = await FileService(client, storage).download_files([ref("file-a")])
        assert result.failed == 1
        assert len(backend.calls(endpoints.file_download("file-a"))) == 2

    @pytest.mark.asyncio
    async def test_fetch_failure_leaves_no_directory(self, backend, make_client, storage):
        url = serve_file(backend, "file-a")
        backend.route(url, httpx.Response(403, json={}))
        async with make_client() as client:
            result = await FileService(client, storage).download_files([ref("file-a")])
        assert result.failed == 1
        assert not (storage.files_dir / "file-a").exists()

    @pytest.mark.asyncio
    async def test_denylisted_ids_are_excluded(self, backend, make_client, storage):
        serve_file(backend, "file-ok")
        denylist = PermanentFailureSet(frozenset({"file-bad"}))
        events: list[tuple[str, int]] = []
        async with make_client() as client:
            result = await FileService(client, storage).download_files(
                [ref("file-bad"), ref("file-ok")],
                denylist=denylist,
                on_excluded=lambda count: events.append(("excluded", count)),
                on_progress=lambda done, total, stats: events.append(("progress", done)),
            )
        assert result.excluded == 1
        assert events == [("excluded", 1), ("progress", 1)]
        assert (result.total, result.downloaded, result.failed) == (1, 1, 0)
        assert backend.calls(endpoints.file_download("file-bad")) == []


class TestMaterialize:
    @pytest.mark.asyncio
    async def test_failures_are_remembered_across_runs(self, backend, make_client, storage, detail_factory, message_factory):
        conversations = storage.conversations_dir
        conversations.mkdir(parents=True)
        metadata = {"attachments": [{"id": "file-ok", "name": "ok.txt"}, {"id": "file-gone", "name": "gone.txt"}]}
        (conversations / "c1.json").write_bytes(
            jsonutil.dumps_pretty(detail_factory([message_factory("m1", "user", "hi", metadata=metadata)]))
        )
        serve_file(backend, "file-ok", b"hello")
        backend.route(endpoints.file_download("file-gone"), httpx.Response(404, json={}))

        async with make_client() as client:
            service = FileService(client, storage)
            first = await service.materialize()
            second = await service.materialize()

        assert (first.downloaded, first.failed, first.excluded) == (1, 1, 0)
        assert (storage.files_dir / "file-ok" / "ok.txt").read_bytes() == b"hello"
        assert "file-gone" in PermanentFailureSet.load(storage.failures_path)

        assert (second.total, second.skipped, second.failed, second.excluded) == (1, 1, 0, 1)
        assert len(backend.calls(endpoints.file_download("file-gone"))) == 1

        log = storage.log_path.read_text()
        assert "File download failed (1)" in log
        assert "Files completed: 1 downloaded" in log

    @pytest.mark.asyncio
    async def test_progress_receives_running_stats(self, backend, make_client, storage):
        serve_file(backend, "file-a")
        serve_file(backend, "file-b")
        seen: list[tuple[int, int, int]] = []
        async with make_client() as client:
            await FileService(client, storage).materialize(
                refs=[ref("file-a"), ref("file-b")],
                on_progress=lambda done, total, stats: seen.append((done, total, stats.downloaded)),
            )
        assert seen[-1] == (2, 2, 2)


# =============================================================================
# Naming and lookup helpers
# =============================================================================

TARGET_CASES = [
    ("server.png", "local.png", "server.png"),
    (None, "local.png", "local.png"),
    (None, None, "file-x"),
    ("dalle-generations/abc.webp", None, "dalle-generations/abc.webp"),
]


class TestHelpers:
    @pytest.mark.parametrize("server_name,ref_name,expected", TARGET_CASES)
    def test_filename_precedence(self, tmp_path, server_name, ref_name, expected):
        target = resolve_target(tmp_path / "file-x", ref("file-x", ref_name), FileDownloadInfo(file_name=server_name))
        assert target == tmp_path / "file-x" / expected

    def test_escaping_name_stays_inside(self, tmp_path):
        file_dir = tmp_path / "file-x"
        target = resolve_target(file_dir, ref("file-x"), FileDownloadInfo(file_name="../../etc/passwd"))
        assert target.parent == file_dir
        assert ".." not in target.name

    def test_dir_has_files(self, tmp_path):
        assert not dir_has_files(tmp_path / "missing")
        (tmp_path / "empty" / "sub").mkdir(parents=True)
        assert not dir_has_files(tmp_path / "empty")
        (tmp_path / "empty" / "sub" / "f").write_bytes(b"")
        assert dir_has_files(tmp_path / "empty")

    def test_build_file_map(self, tmp_path):
        files_dir = tmp_path / "files"
        (files_dir / "file-a").mkdir(parents=True)
        (files_dir / "file-a" / "a.png").write_bytes(b"")
        (files_dir / "file-b" / "dalle-generations").mkdir(parents=True)
        (files_dir / "file-b" / "dalle-generations" / "b.webp").write_bytes(b"")
        (files_dir / "file-empty").mkdir()
        assert build_file_map(files_dir) == {
            "file-a": Path("files/file-a/a.png"),
            "file-b": Path("files/file-b/dalle-generations/b.webp"),
        }

    def test_group_errors(self):
        failures = [ItemFailure("a", "gone"), ItemFailure("b", "timeout"), ItemFailure("c", "gone")]
        assert group_errors(failures) == {"gone": ["a", "c"], "timeout": ["b"]}
