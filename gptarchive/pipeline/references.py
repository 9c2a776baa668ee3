"""Discover the files a conversation refers to.

Files surface in three places inside a message:

- ``image_asset_pointer`` content parts (uploaded or generated images)
- ``metadata.attachments`` (files attached to a prompt)
- ``metadata.citations`` (files quoted by retrieval answers)

Each scan keeps the first reference seen for a file id.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from gptarchive.api.endpoints import FILE_SERVICE_PREFIX
from gptarchive.api.schemas import ConversationDetail, Message
from gptarchive.core import json as jsonutil
from gptarchive.storage.store import StorageService

logger = structlog.get_logger(__name__)

IMAGE_POINTER_CONTENT_TYPE = "image_asset_pointer"


class Provenance(str, Enum):
    IMAGE_ASSET_POINTER = "image_asset_pointer"
    ATTACHMENT = "attachment"
    CITATION = "citation"


@dataclass(frozen=True)
class FileReference:
    file_id: str
    provenance: Provenance
    filename: str | None = None


def file_id_from_pointer(pointer: str) -> str | None:
    """``file-service://file-abc`` → ``file-abc``; other schemes → None."""
    if not pointer.startswith(FILE_SERVICE_PREFIX):
        return None
    return pointer[len(FILE_SERVICE_PREFIX):] or None


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _dicts(value: Any) -> Iterator[Mapping[str, Any]]:
    if isinstance(value, list):
        for entry in value:
            if isinstance(entry, Mapping):
                yield entry


def _pointer_refs(message: Message) -> Iterator[FileReference]:
    if message.content is None or not message.content.parts:
        return
    for part in _dicts(message.content.parts):
        if part.get("content_type") != IMAGE_POINTER_CONTENT_TYPE:
            continue
        pointer = _text(part.get("asset_pointer"))
        file_id = file_id_from_pointer(pointer) if pointer else None
        if file_id:
            yield FileReference(file_id=file_id, provenance=Provenance.IMAGE_ASSET_POINTER)


def _attachment_refs(message: Message) -> Iterator[FileReference]:
    for attachment in _dicts(message.metadata.get("attachments")):
        file_id = _text(attachment.get("id"))
        if file_id:
            yield FileReference(
                file_id=file_id,
                provenance=Provenance.ATTACHMENT,
                filename=_text(attachment.get("name")),
            )


def _citation_refs(message: Message) -> Iterator[FileReference]:
    for citation in _dicts(message.metadata.get("citations")):
        nested = citation.get("metadata")
        source = nested if isinstance(nested, Mapping) else {}
        file_id = _text(source.get("file_id")) or _text(citation.get("file_id"))
        if file_id:
            yield FileReference(
                file_id=file_id,
                provenance=Provenance.CITATION,
                filename=_text(source.get("title")) or _text(citation.get("title")),
            )


def iter_message_references(message: Message) -> Iterator[FileReference]:
    yield from _pointer_refs(message)
    yield from _attachment_refs(message)
    yield from _citation_refs(message)


def dedupe_references(refs: Iterable[FileReference]) -> list[FileReference]:
    """Keep the first reference per file id, preserving order."""
    unique: dict[str, FileReference] = {}
    for ref in refs:
        unique.setdefault(ref.file_id, ref)
    return list(unique.values())


def extract_file_references(detail: ConversationDetail) -> list[FileReference]:
    """Return the distinct files referenced anywhere in the message graph."""
    return dedupe_references(
        ref
        for node in detail.mapping.values()
        if node.message is not None
        for ref in iter_message_references(node.message)
    )


def load_detail(path: Path) -> ConversationDetail:
    return ConversationDetail.model_validate(jsonutil.loads(path.read_bytes()))


def scan_details(paths: Iterable[Path]) -> list[FileReference]:
    """Extract and dedupe references across many stored detail records.

    Records that cannot be read or parsed are logged and skipped.
    """

    def refs() -> Iterator[FileReference]:
        for path in paths:
            try:
                detail = load_detail(path)
            except (OSError, ValueError, ValidationError) as exc:
                logger.warning("detail_skipped", path=str(path), error=str(exc))
                continue
            yield from extract_file_references(detail)

    return dedupe_references(refs())


def scan_collection(output_dir: Path) -> list[FileReference]:
    """References across the default collection and every project of a backup."""
    return scan_details(StorageService(output_dir).iter_detail_paths())


__all__ = [
    "FileReference",
    "Provenance",
    "dedupe_references",
    "extract_file_references",
    "file_id_from_pointer",
    "iter_message_references",
    "load_detail",
    "scan_collection",
    "scan_details",
]
