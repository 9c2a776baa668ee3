"""Async ChatGPT backend client using httpx.

Every call goes through a BackoffPolicy. HTTP failures are mapped onto the
tagged error taxonomy in ``gptarchive.errors`` so the policy can tell
retryable failures from fatal ones.
"""

from __future__ import annotations

import uuid
from typing import Any, TypeVar, overload

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from gptarchive.api import endpoints
from gptarchive.core.retry import BackoffPolicy, RetryObserver
from gptarchive.errors import (
    AuthenticationError,
    NetworkError,
    RateLimitError,
    ResponseValidationError,
)

M = TypeVar("M", bound=BaseModel)

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 60.0
DOWNLOAD_TIMEOUT = 120.0

BROWSER_HEADERS: dict[str, str] = {
    "Content-Type": "application/json",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://chatgpt.com/",
    "Origin": "https://chatgpt.com",
    "Sec-Ch-Ua": '"Google Chrome";v="131", "Chromium";v="131", "Not_A Brand";v="24"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"macOS"',
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
}


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _raise_for_status(resp: httpx.Response) -> None:
    """Raise the taxonomy error matching a non-2xx response."""
    if resp.status_code < 400:
        return
    if resp.status_code in (401, 403):
        raise AuthenticationError("Access token expired or invalid.", status=resp.status_code)
    if resp.status_code == 429:
        raise RateLimitError(
            "Rate limited by API",
            status=429,
            retry_after=_parse_retry_after(resp.headers.get("retry-after")),
        )
    raise NetworkError(
        f"Request failed: {resp.status_code} {resp.reason_phrase}".rstrip(),
        status=resp.status_code,
    )


class ChatGPTClient:
    """Authenticated client for the chatgpt.com backend API.

    Use as an async context manager; the underlying ``httpx.AsyncClient`` is
    shared by every call made inside the block.

    Example:
        async with ChatGPTClient(token) as client:
            await client.initialize()
            page = await client.fetch_json("/backend-api/conversations", model=ConversationsPage)
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = endpoints.BASE_URL,
        policy: BackoffPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        on_retry: RetryObserver | None = None,
    ) -> None:
        self._access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.policy = policy or BackoffPolicy()
        self._transport = transport
        self._timeout = timeout
        self._on_retry = on_retry
        self._device_id = str(uuid.uuid4())
        self._http: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ChatGPTClient:
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=self._timeout,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _headers(self, *, authorized: bool = True, accept: str | None = None) -> dict[str, str]:
        headers = dict(BROWSER_HEADERS)
        if accept:
            headers["Accept"] = accept
        if authorized:
            headers["Authorization"] = f"Bearer {self._access_token}"
            headers["Oai-Device-Id"] = self._device_id
            headers["Oai-Language"] = "en-US"
        return headers

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("ChatGPTClient must be used inside 'async with'.")
        return self._http

    async def initialize(self) -> None:
        """Verify the access token with a one-item listing request."""
        if not self._access_token:
            raise AuthenticationError("No access token provided.")
        try:
            resp = await self._client().get(
                endpoints.CONVERSATIONS,
                params={"offset": 0, "limit": 1},
                headers=self._headers(),
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Failed to verify token: {exc}") from exc
        if resp.status_code in (401, 403):
            logger.debug("auth_check_failed", status=resp.status_code, body=resp.text[:500])
            raise AuthenticationError(
                f"Access token rejected (HTTP {resp.status_code}).",
                status=resp.status_code,
            )
        if resp.status_code >= 400:
            raise NetworkError(f"Failed to verify token: {resp.status_code}", status=resp.status_code)
        logger.debug("authenticated")

    @overload
    async def fetch_json(
        self,
        endpoint: str,
        *,
        method: str = ...,
        body: Any = ...,
        model: type[M],
        policy: BackoffPolicy | None = ...,
    ) -> M: ...

    @overload
    async def fetch_json(
        self,
        endpoint: str,
        *,
        method: str = ...,
        body: Any = ...,
        model: None = ...,
        policy: BackoffPolicy | None = ...,
    ) -> Any: ...

    async def fetch_json(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        body: Any = None,
        model: type[BaseModel] | None = None,
        policy: BackoffPolicy | None = None,
    ) -> Any:
        """Call an API endpoint and return the parsed (optionally validated) JSON."""
        if not self._access_token:
            raise AuthenticationError("Client has no access token.")

        async def call() -> Any:
            try:
                resp = await self._client().request(
                    method,
                    endpoint,
                    json=body,
                    headers=self._headers(),
                )
            except httpx.TransportError as exc:
                raise NetworkError(f"Request failed: {exc.__class__.__name__}: {exc}") from exc
            _raise_for_status(resp)
            try:
                data = resp.json()
            except ValueError as exc:
                raise ResponseValidationError(f"Invalid JSON from {endpoint}", status=resp.status_code) from exc
            if model is None:
                return data
            try:
                return model.model_validate(data)
            except ValidationError as exc:
                raise ResponseValidationError(
                    f"Unexpected response shape from {endpoint}: {exc.error_count()} error(s)",
                    status=resp.status_code,
                ) from exc

        return await (policy or self.policy).execute(call, on_retry=self._on_retry)

    async def fetch_bytes(self, url: str, *, policy: BackoffPolicy | None = None) -> bytes:
        """Download raw bytes from a backend path or an absolute (signed) URL."""
        target = httpx.URL(url)
        authorized = not target.is_absolute_url or str(target).startswith(self.base_url)

        async def fetch() -> bytes:
            try:
                resp = await self._client().get(
                    url,
                    headers=self._headers(authorized=authorized, accept="*/*"),
                    timeout=DOWNLOAD_TIMEOUT,
                )
            except httpx.TransportError as exc:
                raise NetworkError(f"Download failed: {exc.__class__.__name__}: {exc}") from exc
            _raise_for_status(resp)
            return resp.content

        return await (policy or self.policy).execute(fetch, on_retry=self._on_retry)


__all__ = ["BROWSER_HEADERS", "ChatGPTClient"]
