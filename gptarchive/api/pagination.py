"""Lazy walkers over the paginated listing endpoints.

Two pagination styles exist on the backend:

- offset/limit with a reported ``total`` (the main conversation list)
- an opaque cursor handed back by each page (projects, project conversations)

Both are exposed as async generators: pages are requested strictly one after
another and only as the consumer pulls items, so breaking out of an
``async for`` early issues no further requests.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar
from urllib.parse import urlencode

import structlog

from gptarchive.api import endpoints
from gptarchive.api.client import ChatGPTClient
from gptarchive.api.schemas import (
    ConversationsPage,
    ConversationSummary,
    ProjectConversationsPage,
    ProjectsSidebarPage,
    SidebarItem,
)

T = TypeVar("T")

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_DELAY = 0.5
PROJECT_CONVERSATIONS_START_CURSOR = "0"

ProgressCallback = Callable[[int, int], None]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class OffsetPage(Generic[T]):
    items: Sequence[T]
    total: int


@dataclass
class CursorPage(Generic[T]):
    items: Sequence[T]
    cursor: str | None


async def paginate_offset(
    fetch_page: Callable[[int, int], Awaitable[OffsetPage[T]]],
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    delay: float = DEFAULT_DELAY,
    on_progress: ProgressCallback | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> AsyncIterator[T]:
    """Yield items from an offset-paginated endpoint until ``offset >= total``."""
    if limit <= 0:
        raise ValueError("limit must be positive")
    offset = 0
    total: float = math.inf
    fetched = 0
    while offset < total:
        page = await fetch_page(offset, limit)
        total = page.total
        for item in page.items:
            yield item
            fetched += 1
        if on_progress is not None:
            on_progress(fetched, int(total))
        offset += limit
        if offset < total and delay > 0:
            await sleep(delay)


async def paginate_cursor(
    fetch_page: Callable[[str | None], Awaitable[CursorPage[T]]],
    *,
    start_cursor: str | None = None,
    delay: float = DEFAULT_DELAY,
    on_progress: ProgressCallback | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> AsyncIterator[T]:
    """Yield items from a cursor-paginated endpoint until the cursor runs out.

    The total is unknown up front, so progress reports ``(fetched, fetched)``.
    """
    cursor = start_cursor
    fetched = 0
    while True:
        page = await fetch_page(cursor)
        for item in page.items:
            yield item
            fetched += 1
        if on_progress is not None:
            on_progress(fetched, fetched)
        cursor = page.cursor
        if not cursor:
            break
        if delay > 0:
            await sleep(delay)


def _with_query(path: str, **params: object) -> str:
    return f"{path}?{urlencode(params)}"


def iter_conversations(
    client: ChatGPTClient,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    delay: float = DEFAULT_DELAY,
    on_progress: ProgressCallback | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> AsyncIterator[ConversationSummary]:
    """Walk the default conversation collection, most recently updated first."""

    async def fetch_page(offset: int, page_size: int) -> OffsetPage[ConversationSummary]:
        page = await client.fetch_json(
            _with_query(endpoints.CONVERSATIONS, offset=offset, limit=page_size, order="updated"),
            model=ConversationsPage,
        )
        logger.debug("conversations_page", offset=offset, items=len(page.items), total=page.total)
        return OffsetPage(items=page.items, total=page.total)

    return paginate_offset(fetch_page, limit=limit, delay=delay, on_progress=on_progress, sleep=sleep)


def iter_projects(
    client: ChatGPTClient,
    *,
    delay: float = DEFAULT_DELAY,
    sleep: SleepFn = asyncio.sleep,
) -> AsyncIterator[SidebarItem]:
    """Walk the projects sidebar."""

    async def fetch_page(cursor: str | None) -> CursorPage[SidebarItem]:
        path = _with_query(endpoints.PROJECTS_SIDEBAR, cursor=cursor) if cursor else endpoints.PROJECTS_SIDEBAR
        page = await client.fetch_json(path, model=ProjectsSidebarPage)
        logger.debug("projects_page", items=len(page.items), has_more=bool(page.cursor))
        return CursorPage(items=page.items, cursor=page.cursor)

    return paginate_cursor(fetch_page, delay=delay, sleep=sleep)


def iter_project_conversations(
    client: ChatGPTClient,
    gizmo_id: str,
    *,
    delay: float = DEFAULT_DELAY,
    on_progress: ProgressCallback | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> AsyncIterator[ConversationSummary]:
    """Walk the conversations of one project."""

    async def fetch_page(cursor: str | None) -> CursorPage[ConversationSummary]:
        page = await client.fetch_json(
            _with_query(endpoints.project_conversations(gizmo_id), cursor=cursor),
            model=ProjectConversationsPage,
        )
        logger.debug("project_conversations_page", gizmo_id=gizmo_id, items=len(page.items))
        return CursorPage(items=page.items, cursor=page.cursor)

    return paginate_cursor(
        fetch_page,
        start_cursor=PROJECT_CONVERSATIONS_START_CURSOR,
        delay=delay,
        on_progress=on_progress,
        sleep=sleep,
    )


async def count_conversations(client: ChatGPTClient) -> int:
    page = await client.fetch_json(
        _with_query(endpoints.CONVERSATIONS, offset=0, limit=1),
        model=ConversationsPage,
    )
    return page.total


__all__ = [
    "CursorPage",
    "DEFAULT_DELAY",
    "DEFAULT_PAGE_SIZE",
    "OffsetPage",
    "count_conversations",
    "iter_conversations",
    "iter_project_conversations",
    "iter_projects",
    "paginate_cursor",
    "paginate_offset",
]
