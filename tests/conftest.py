"""Shared fixtures: fake backend, detail builders, output directories."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest
import structlog

from gptarchive.api.client import ChatGPTClient
from gptarchive.core.retry import BackoffPolicy


@pytest.fixture(autouse=True)
def _quiet_logging():
    structlog.reset_defaults()
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(40))
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    for var in (
        "GPTARCHIVE_CONFIG",
        "GPTARCHIVE_OUTPUT",
        "GPTARCHIVE_CONCURRENCY",
        "GPTARCHIVE_DELAY_MS",
        "GPTARCHIVE_MAX_RETRIES",
        "GPTARCHIVE_RETRY_BASE",
        "GPTARCHIVE_RETRY_MAX",
        "CHATGPT_TOKEN",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("GPTARCHIVE_CONFIG", str(tmp_path / "no-such-config.json"))


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "export"


# =============================================================================
# Fake backend
# =============================================================================


@dataclass
class FakeBackend:
    """Routes requests by path to canned responses and records every call.

    A route value may be a response, a payload (served as JSON), a callable
    taking the request, or a list consumed one entry per request.
    """

    routes: dict[str, Any] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def route(self, path: str, response: Any) -> None:
        self.routes[path] = response

    def calls(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = request.url.path
        if request.url.host != "chatgpt.com":
            key = str(request.url)
        if key not in self.routes:
            return httpx.Response(404, json={"detail": "not found"})
        value = self.routes[key]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if callable(value) and not isinstance(value, httpx.Response):
            value = value(request)
        if isinstance(value, httpx.Response):
            # Fresh copy: a response instance must not be sent twice.
            return httpx.Response(value.status_code, headers=value.headers, content=value.content)
        return httpx.Response(200, json=value)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


async def _no_sleep(_delay: float) -> None:
    return None


FAST_POLICY = BackoffPolicy(max_retries=2, base_delay=0.001, max_delay=0.002)


@pytest.fixture
def make_client(backend: FakeBackend) -> Callable[..., ChatGPTClient]:
    def factory(*, policy: BackoffPolicy = FAST_POLICY, token: str = "test-token") -> ChatGPTClient:
        return ChatGPTClient(token, policy=policy, transport=httpx.MockTransport(backend))

    return factory


# =============================================================================
# Conversation builders
# =============================================================================


def make_message(
    message_id: str,
    role: str,
    text: str | None = None,
    *,
    parts: list[Any] | None = None,
    metadata: dict[str, Any] | None = None,
    weight: float | None = 1.0,
) -> dict[str, Any]:
    content: dict[str, Any] = {"content_type": "text", "parts": parts if parts is not None else [text or ""]}
    if parts is not None and any(isinstance(part, dict) for part in parts):
        content["content_type"] = "multimodal_text"
    return {
        "id": message_id,
        "author": {"role": role, "metadata": {}},
        "content": content,
        "metadata": metadata or {},
        "weight": weight,
    }


def make_detail(
    messages: list[dict[str, Any]],
    *,
    conversation_id: str = "conv-1",
    title: str | None = "Test conversation",
    create_time: float | None = 1_700_000_000.0,
    update_time: Any = 1_700_000_100.0,
    current_node: str | None = "last",
) -> dict[str, Any]:
    """Build a linear detail record: root node, then one node per message."""
    mapping: dict[str, Any] = {"root": {"id": "root", "message": None, "parent": None, "children": []}}
    parent = "root"
    for message in messages:
        node_id = message["id"]
        mapping[node_id] = {"id": node_id, "message": message, "parent": parent, "children": []}
        mapping[parent]["children"].append(node_id)
        parent = node_id
    return {
        "id": conversation_id,
        "title": title,
        "create_time": create_time,
        "update_time": update_time,
        "mapping": mapping,
        "current_node": parent if current_node == "last" else current_node,
    }


def make_summary(conversation_id: str, update_time: Any = "2024-01-01T00:00:00.000000+00:00", **extra: Any) -> dict:
    return {"id": conversation_id, "title": f"Title {conversation_id}", "update_time": update_time, **extra}


@pytest.fixture
def message_factory() -> Callable[..., dict[str, Any]]:
    return make_message


@pytest.fixture
def detail_factory() -> Callable[..., dict[str, Any]]:
    return make_detail


@pytest.fixture
def summary_factory() -> Callable[..., dict[str, Any]]:
    return make_summary


@pytest.fixture
def no_sleep() -> Callable[[float], Any]:
    return _no_sleep
