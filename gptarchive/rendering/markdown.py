"""Markdown transcripts of stored conversation details.

Only the active branch is rendered. System and tool turns, hidden scaffolding
and messages without text are left out. Image pointers become markdown
images; when the referenced file has been materialized the image links to
the local copy instead of the ``file-service://`` pointer.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from gptarchive.api.schemas import ConversationDetail, Message
from gptarchive.branching import GraphError, active_thread, validate_graph
from gptarchive.core.timestamps import format_date
from gptarchive.pipeline.files import build_file_map
from gptarchive.pipeline.references import IMAGE_POINTER_CONTENT_TYPE, file_id_from_pointer, load_detail
from gptarchive.storage.store import StorageService

logger = structlog.get_logger(__name__)

HIDDEN_ROLES = frozenset({"system", "tool"})
ROLE_LABELS = {"user": "User", "assistant": "Assistant"}

ImageLinker = Callable[[str], str]


@dataclass(frozen=True)
class ConversionReport:
    converted: int = 0
    errors: int = 0
    invalid_graphs: int = 0


def format_role(role: str) -> str:
    return ROLE_LABELS.get(role, role[:1].upper() + role[1:])


def _pointer_link(pointer: str) -> str:
    return pointer


def extract_text_from_parts(parts: Sequence[Any], image_link: ImageLinker = _pointer_link) -> str:
    pieces: list[str] = []
    for part in parts:
        if isinstance(part, str):
            pieces.append(part)
        elif isinstance(part, dict) and part.get("content_type") == IMAGE_POINTER_CONTENT_TYPE:
            pointer = part.get("asset_pointer")
            target = image_link(pointer) if isinstance(pointer, str) and pointer else "unknown"
            pieces.append(f"![image]({target})")
    return "\n".join(pieces)


def message_text(message: Message, image_link: ImageLinker = _pointer_link) -> str:
    content = message.content
    if content is None:
        return ""
    if content.parts:
        return extract_text_from_parts(content.parts, image_link)
    return content.text or ""


def is_rendered(message: Message) -> bool:
    if message.author.role in HIDDEN_ROLES:
        return False
    if message.metadata.get("is_visually_hidden_from_conversation"):
        return False
    return message.weight != 0


def convert_conversation(detail: ConversationDetail, image_link: ImageLinker = _pointer_link) -> str:
    """Render the active branch of a conversation as a markdown document."""
    lines = [f"# {detail.title or 'Untitled'}"]
    if detail.create_time:
        date = format_date(detail.create_time)
        if date:
            lines.append(f"*{date}*")

    first = True
    for node in active_thread(detail):
        message = node.message
        if message is None or not is_rendered(message):
            continue
        text = message_text(message, image_link)
        if not text.strip():
            continue
        if first:
            lines.append("")
            first = False
        else:
            lines.extend(["", "---", ""])
        lines.extend([f"**{format_role(message.author.role)}:**", "", text])

    lines.append("")
    return "\n".join(lines)


def local_image_linker(file_map: dict[str, Path], output_dir: Path, markdown_path: Path) -> ImageLinker:
    """Link images to materialized files, relative to the markdown file."""

    def link(pointer: str) -> str:
        file_id = file_id_from_pointer(pointer)
        stored = file_map.get(file_id) if file_id else None
        if stored is None:
            return pointer
        return Path(os.path.relpath(output_dir / stored, markdown_path.parent)).as_posix()

    return link


def convert_directory(output_dir: Path) -> ConversionReport:
    """Write ``<id>.md`` next to every stored detail record in a backup."""
    output_dir = Path(output_dir)
    storage = StorageService(output_dir)
    file_map = build_file_map(storage.files_dir)
    converted = 0
    errors = 0
    invalid_graphs = 0
    for json_path in storage.iter_detail_paths():
        markdown_path = json_path.with_suffix(".md")
        try:
            detail = load_detail(json_path)
            try:
                validate_graph(detail)
            except GraphError as exc:
                # Still rendered: the active branch walk tolerates a broken graph.
                invalid_graphs += 1
                logger.warning("graph_invalid", path=str(json_path), problems=exc.problems)
            markdown = convert_conversation(detail, local_image_linker(file_map, output_dir, markdown_path))
            markdown_path.write_text(markdown, encoding="utf-8")
        except (OSError, ValueError, ValidationError) as exc:
            errors += 1
            logger.warning("markdown_failed", path=str(json_path), error=str(exc))
            continue
        converted += 1
    logger.info("markdown_converted", converted=converted, errors=errors, invalid_graphs=invalid_graphs)
    return ConversionReport(converted=converted, errors=errors, invalid_graphs=invalid_graphs)


__all__ = [
    "ConversionReport",
    "convert_conversation",
    "convert_directory",
    "extract_text_from_parts",
    "format_role",
    "local_image_linker",
]
