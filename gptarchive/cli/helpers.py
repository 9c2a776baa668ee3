"""Shared CLI plumbing: options, config, client construction, error reporting."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click

from gptarchive.api.client import ChatGPTClient
from gptarchive.cli.types import AppEnv
from gptarchive.config import Config, load_config
from gptarchive.errors import AuthenticationError, ConfigError, GptArchiveError

T = TypeVar("T")

TOKEN_ENV_VAR = "CHATGPT_TOKEN"

TOKEN_HELP = (
    "  1. Open chatgpt.com in your browser and log in",
    "  2. Open DevTools (F12) → Network tab",
    "  3. Refresh the page or send a message",
    "  4. Find any request to /backend-api/*",
    '  5. Look in Request Headers for "Authorization: Bearer <token>"',
    '  6. Copy the token (starts with "eyJhbG...")',
)

token_option = click.option(
    "-t",
    "--token",
    envvar=TOKEN_ENV_VAR,
    show_envvar=True,
    help="ChatGPT access token",
)
output_option = click.option(
    "-o",
    "--output",
    type=click.Path(file_okay=False, path_type=Path),
    help="Output directory [default: ./chatgpt-export]",
)
delay_option = click.option("--delay", type=click.IntRange(min=0), help="Delay between requests in ms [default: 500]")
concurrency_option = click.option("--concurrency", type=click.IntRange(min=1), help="Parallel downloads [default: 3]")


def fail(command: str, message: str) -> NoReturn:
    raise SystemExit(f"{command}: {message}")


def print_token_help(heading: str) -> None:
    click.echo(heading, err=True)
    for line in TOKEN_HELP:
        click.echo(line, err=True)


def require_token(token: str | None) -> str:
    if not token:
        click.echo(f"Error: Access token required. Use --token or set {TOKEN_ENV_VAR}.", err=True)
        print_token_help("\nTo get your access token:")
        raise SystemExit(1)
    return token


def load_effective_config(env: AppEnv, command: str, **overrides: Any) -> Config:
    """Config file and environment, then the command line options given."""
    try:
        return load_config(env.config_path).with_overrides(**overrides)
    except ConfigError as exc:
        fail(command, str(exc))


def create_client(token: str, config: Config) -> ChatGPTClient:
    return ChatGPTClient(token, policy=config.policy())


INTERRUPTED_EXIT_CODE = 130


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        raise SystemExit(INTERRUPTED_EXIT_CODE) from None


@contextmanager
def reported_errors(command: str) -> Iterator[None]:
    """Turn archive errors into a message and exit status 1."""
    try:
        yield
    except AuthenticationError as exc:
        click.echo(f"\nAuthentication failed: {exc}", err=True)
        print_token_help("\nTo get a new access token:")
        raise SystemExit(1) from exc
    except GptArchiveError as exc:
        fail(command, str(exc))


__all__ = [
    "concurrency_option",
    "create_client",
    "delay_option",
    "fail",
    "load_effective_config",
    "output_option",
    "reported_errors",
    "require_token",
    "run_async",
    "token_option",
]
