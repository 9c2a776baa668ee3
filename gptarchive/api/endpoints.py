"""ChatGPT backend endpoints."""

from __future__ import annotations

from urllib.parse import quote

BASE_URL = "https://chatgpt.com"

CONVERSATIONS = "/backend-api/conversations"
PROJECTS_SIDEBAR = "/backend-api/gizmos/snorlax/sidebar"

FILE_SERVICE_PREFIX = "file-service://"


def conversation(conversation_id: str) -> str:
    return f"/backend-api/conversation/{quote(conversation_id, safe='')}"


def project_conversations(gizmo_id: str) -> str:
    return f"/backend-api/gizmos/{quote(gizmo_id, safe='')}/conversations"


def file_download(file_id: str) -> str:
    return f"/backend-api/files/download/{quote(file_id, safe='')}"
