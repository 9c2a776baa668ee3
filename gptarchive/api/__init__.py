"""ChatGPT backend API: client, response schemas and listing walkers."""

from gptarchive.api.client import ChatGPTClient
from gptarchive.api.pagination import (
    count_conversations,
    iter_conversations,
    iter_project_conversations,
    iter_projects,
)
from gptarchive.api.schemas import (
    ConversationDetail,
    ConversationSummary,
    FileDownloadInfo,
    SidebarItem,
)

__all__ = [
    "ChatGPTClient",
    "ConversationDetail",
    "ConversationSummary",
    "FileDownloadInfo",
    "SidebarItem",
    "count_conversations",
    "iter_conversations",
    "iter_project_conversations",
    "iter_projects",
]
