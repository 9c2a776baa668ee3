"""Pydantic schemas for ChatGPT backend responses.

Every model allows extra fields: the backend adds fields without notice and
whatever it sends is written to disk untouched. Dumping with
``exclude_unset=True`` reproduces the received document.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

Timestamp = str | float | None


class ConversationSummary(BaseModel):
    """A conversation as returned by the listing endpoints."""

    id: str
    title: str | None = None
    create_time: Timestamp = None
    update_time: Timestamp = None
    mapping: dict[str, Any] | None = None
    current_node: str | None = None
    conversation_template_id: str | None = None
    gizmo_id: str | None = None
    is_archived: bool | None = None
    workspace_id: str | None = None

    model_config = ConfigDict(extra="allow")


class ConversationsPage(BaseModel):
    items: list[ConversationSummary]
    total: int
    limit: int | None = None
    offset: int | None = None
    has_missing_conversations: bool | None = None

    model_config = ConfigDict(extra="allow")


class MessageAuthor(BaseModel):
    role: str
    name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class MessageContent(BaseModel):
    content_type: str
    parts: list[Any] | None = None
    text: str | None = None

    model_config = ConfigDict(extra="allow")


class Message(BaseModel):
    id: str
    author: MessageAuthor
    create_time: float | None = None
    update_time: float | None = None
    content: MessageContent | None = None
    status: str | None = None
    end_turn: bool | None = None
    weight: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    recipient: str | None = None

    model_config = ConfigDict(extra="allow")


class MappingNode(BaseModel):
    """One node of the message graph."""

    id: str
    message: Message | None = None
    parent: str | None = None
    children: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


class ConversationDetail(BaseModel):
    """A full conversation including its message graph."""

    id: str | None = None
    conversation_id: str | None = None
    title: str | None = None
    create_time: Timestamp = None
    update_time: Timestamp = None
    mapping: dict[str, MappingNode]
    moderation_results: list[Any] | None = None
    current_node: str | None = None
    is_archived: bool | None = None

    model_config = ConfigDict(extra="allow")

    @property
    def conversation_id_normalized(self) -> str:
        return self.id or self.conversation_id or "unknown"


class ProjectDisplay(BaseModel):
    name: str
    theme: Any = None

    model_config = ConfigDict(extra="allow")


class ProjectGizmo(BaseModel):
    id: str
    display: ProjectDisplay
    created_at: str | None = None
    updated_at: str | None = None
    last_interacted_at: str | None = None
    num_interactions: int | None = None
    is_archived: bool | None = None
    gizmo_type: str | None = None

    model_config = ConfigDict(extra="allow")


class SidebarItem(BaseModel):
    gizmo: ProjectGizmo

    model_config = ConfigDict(extra="allow")

    @property
    def name(self) -> str:
        return self.gizmo.display.name


class ProjectsSidebarPage(BaseModel):
    items: list[SidebarItem]
    cursor: str | None = None

    model_config = ConfigDict(extra="allow")


class ProjectConversationsPage(BaseModel):
    items: list[ConversationSummary]
    cursor: str | None = None

    model_config = ConfigDict(extra="allow")


class FileDownloadInfo(BaseModel):
    """Short-lived download metadata for a stored file."""

    status: str | None = None
    download_url: str | None = None
    file_name: str | None = None

    model_config = ConfigDict(extra="allow")


__all__ = [
    "ConversationDetail",
    "ConversationSummary",
    "ConversationsPage",
    "FileDownloadInfo",
    "MappingNode",
    "Message",
    "MessageAuthor",
    "MessageContent",
    "ProjectConversationsPage",
    "ProjectDisplay",
    "ProjectGizmo",
    "ProjectsSidebarPage",
    "SidebarItem",
]
