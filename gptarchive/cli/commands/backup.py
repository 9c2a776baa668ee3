"""Backup command."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import click

from gptarchive.api.client import ChatGPTClient
from gptarchive.cli.commands.markdown import print_conversion
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
from gptarchive.cli.ui import UI, ProgressReporter
from gptarchive.config import Config
from gptarchive.pipeline.backup import (
    BackupOptions,
    BackupRunResult,
    BackupService,
    CollectionResult,
    backup_everything,
    sum_results,
)
from gptarchive.pipeline.files import FileDownloadResult, FileService
from gptarchive.rendering.markdown import convert_directory
from gptarchive.storage.store import StorageService


def _options(config: Config, incremental: bool, reporter: ProgressReporter, ui: UI, verbose: bool) -> BackupOptions:
    def on_error(item_id: str, error: BaseException) -> None:
        if verbose:
            ui.print(f"Failed to download {item_id}: {error}", style="red")

    return BackupOptions(
        concurrency=config.concurrency,
        delay=config.delay,
        incremental=incremental,
        on_list_progress=reporter.bar("Listing"),
        on_download_progress=reporter.bar("Downloading"),
        on_error=on_error,
    )


def result_lines(result: BackupRunResult) -> list[str]:
    lines = [f"Total conversations: {result.total_items}", f"Downloaded: {result.downloaded}"]
    if result.skipped:
        lines.append(f"Skipped (unchanged): {result.skipped}")
    if result.failed:
        lines.append(f"Failed: {result.failed}")
    return lines


def file_result_lines(result: FileDownloadResult) -> list[str]:
    lines = [
        f"Referenced files: {result.total + result.excluded}",
        f"Downloaded: {result.downloaded}",
        f"Already present: {result.skipped}",
    ]
    if result.excluded:
        lines.append(f"Previously failed (excluded): {result.excluded}")
    if result.failed:
        lines.append(f"Failed: {result.failed}")
        for message, file_ids in result.grouped_errors().items():
            lines.append(f"  {message} ({len(file_ids)})")
    return lines


async def materialize_files(env: AppEnv, client: ChatGPTClient, config: Config) -> FileDownloadResult:
    storage = StorageService(config.output_dir)
    service = FileService(client, storage, concurrency=config.concurrency, delay=config.delay)
    def on_excluded(count: int) -> None:
        env.ui.print(f"Skipping {count} previously failed files (use `gptarchive files --retry-failed` to try again)")

    with env.ui.progress() as reporter:
        bar = reporter.bar("Files")
        return await service.materialize(
            on_progress=lambda done, total, _stats: bar(done, total),
            on_excluded=on_excluded,
        )


async def _run_backup(
    env: AppEnv,
    token: str,
    config: Config,
    *,
    incremental: bool,
    project: str | None,
    files: bool,
) -> tuple[list[CollectionResult], FileDownloadResult | None]:
    ui = env.ui
    async with create_client(token, config) as client:
        await client.initialize()
        ui.print("Authenticated", style="green")
        settings = [
            f"Output: {config.output_dir}",
            f"Concurrency: {config.concurrency}",
            f"Delay: {config.delay_ms}ms",
            f"Incremental: {str(incremental).lower()}",
        ]
        if project:
            settings.append(f"Project: {project}")
        ui.summary("Backup settings", settings)

        results: list[CollectionResult]
        if project:
            base = BackupService(client, StorageService(config.output_dir))
            resolved = await base.resolve_project(project)
            ui.print(f"Project: {resolved.name}", style="bold")
            storage = StorageService(config.output_dir, resolved.name)
            with ui.progress() as reporter:
                options = replace(
                    _options(config, incremental, reporter, ui, env.verbose),
                    project_gizmo_id=resolved.gizmo_id,
                )
                result = await BackupService(client, storage).backup(options)
            results = [CollectionResult(storage.collection_label, result, resolved.gizmo_id)]
        else:
            with ui.progress() as reporter:
                options = _options(config, incremental, reporter, ui, env.verbose)
                results = await backup_everything(
                    client,
                    config.output_dir,
                    options,
                    on_collection=lambda label: ui.print(f"Collection: {label}", style="bold"),
                )

        file_result = await materialize_files(env, client, config) if files else None
    return results, file_result


@click.command("backup")
@token_option
@output_option
@concurrency_option
@delay_option
@click.option("--incremental", is_flag=True, help="Only download new or updated conversations")
@click.option("--project", metavar="NAME_OR_ID", help="Only back up one project")
@click.option("--files", "with_files", is_flag=True, help="Also download referenced files")
@click.pass_obj
def backup_command(
    env: AppEnv,
    token: str | None,
    output: Path | None,
    concurrency: int | None,
    delay: int | None,
    incremental: bool,
    project: str | None,
    with_files: bool,
) -> None:
    """Download all conversations (and every project)."""
    token = require_token(token)
    config = load_effective_config(env, "backup", output_dir=output, concurrency=concurrency, delay_ms=delay)
    with reported_errors("backup"):
        results, file_result = run_async(
            _run_backup(env, token, config, incremental=incremental, project=project, files=with_files)
        )

    if len(results) > 1:
        for entry in results:
            run = entry.result
            env.ui.print(f"  {entry.label}: downloaded {run.downloaded}, skipped {run.skipped}, failed {run.failed}")
    total = sum_results(entry.result for entry in results)
    lines = result_lines(total)
    if total.failed:
        lines.append(f"See {config.output_dir / 'backup.log'} for details")
    lines.append(f"Output directory: {config.output_dir}")
    env.ui.summary("Backup completed", lines)

    if file_result is not None:
        env.ui.summary("Files", file_result_lines(file_result))

    print_conversion(env, convert_directory(config.output_dir))
