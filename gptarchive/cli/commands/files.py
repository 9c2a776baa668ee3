"""Download files referenced by an existing backup."""

from __future__ import annotations

from pathlib import Path

import click

from gptarchive.cli.commands.backup import file_result_lines, materialize_files
from gptarchive.cli.helpers import (
    concurrency_option,
    create_client,
    delay_option,
    load_effective_config,
    output_option,
    reported_errors,
    require_token,
    run_async,
    token_option,
)
from gptarchive.cli.types import AppEnv
from gptarchive.config import Config
from gptarchive.pipeline.files import FileDownloadResult
from gptarchive.storage.failures import PermanentFailureSet
from gptarchive.storage.store import StorageService


async def _run(env: AppEnv, token: str, config: Config) -> FileDownloadResult:
    async with create_client(token, config) as client:
        await client.initialize()
        return await materialize_files(env, client, config)


@click.command("files")
@token_option
@output_option
@concurrency_option
@delay_option
@click.option("--retry-failed", is_flag=True, help="Forget previously failed files and try them again")
@click.pass_obj
def files_command(
    env: AppEnv,
    token: str | None,
    output: Path | None,
    concurrency: int | None,
    delay: int | None,
    retry_failed: bool,
) -> None:
    """Download files referenced by stored conversations."""
    token = require_token(token)
    config = load_effective_config(env, "files", output_dir=output, concurrency=concurrency, delay_ms=delay)
    if retry_failed:
        failures_path = StorageService(config.output_dir).failures_path
        if PermanentFailureSet.clear(failures_path):
            env.ui.print(f"Cleared failure memory at {failures_path}")
    with reported_errors("files"):
        result = run_async(_run(env, token, config))
    env.ui.summary("Files", file_result_lines(result))
