"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog
from structlog.types import Processor


class _StderrProxy:
    """Writes to whatever sys.stderr is at call time.

    PrintLoggerFactory keeps the file object it was built with; click's
    CliRunner swaps sys.stderr per invocation, so a captured handle goes stale.
    """

    def write(self, s: str) -> int:
        return sys.stderr.write(s)

    def flush(self) -> None:
        sys.stderr.flush()

    def isatty(self) -> bool:
        return sys.stderr.isatty()


_stderr_proxy: TextIO = _StderrProxy()  # type: ignore[assignment]


def _renderer(json_logs: bool) -> Processor:
    if json_logs:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """Route structlog output to stderr.

    Without ``verbose`` only warnings and errors are shown so log lines do not
    tear the progress bars drawn on the same terminal.
    """
    level = logging.DEBUG if verbose else logging.WARNING

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _renderer(json_logs),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=_stderr_proxy),
        cache_logger_on_first_use=True,
    )


@contextmanager
def collection_context(collection: str) -> Iterator[None]:
    """Tag every log event emitted inside the block with the collection name."""
    with structlog.contextvars.bound_contextvars(collection=collection):
        yield


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)
