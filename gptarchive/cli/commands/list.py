"""List conversations without downloading them."""

from __future__ import annotations

import click

from gptarchive.api.schemas import ConversationSummary
from gptarchive.cli.helpers import (
    create_client,
    delay_option,
    fail,
    load_effective_config,
    reported_errors,
    require_token,
    run_async,
    token_option,
)
from gptarchive.cli.types import AppEnv
from gptarchive.config import Config
from gptarchive.core import json as jsonutil
from gptarchive.core.timestamps import format_date
from gptarchive.pipeline.backup import BackupService
from gptarchive.storage.store import StorageService


async def _fetch(
    env: AppEnv,
    token: str,
    config: Config,
    project: str | None,
    *,
    show_progress: bool,
) -> list[ConversationSummary]:
    async with create_client(token, config) as client:
        await client.initialize()
        service = BackupService(client, StorageService(config.output_dir))
        with env.ui.progress(enabled=show_progress) as reporter:
            if project:
                resolved = await service.resolve_project(project)
                return await service.list_project_conversations(
                    resolved.gizmo_id,
                    delay=config.delay,
                    on_progress=reporter.bar(f'Fetching "{resolved.name}"'),
                )
            return await service.list_conversations(delay=config.delay, on_progress=reporter.bar("Fetching"))


async def _count(token: str, config: Config) -> int:
    async with create_client(token, config) as client:
        await client.initialize()
        return await BackupService(client, StorageService(config.output_dir)).count_conversations()


@click.command("list")
@token_option
@delay_option
@click.option("--project", metavar="NAME_OR_ID", help="List conversations of one project")
@click.option("--count", "count_only", is_flag=True, help="Only print how many conversations exist")
@click.option("--json", "json_output", is_flag=True, help="Output JSON")
@click.pass_obj
def list_command(
    env: AppEnv,
    token: str | None,
    delay: int | None,
    project: str | None,
    count_only: bool,
    json_output: bool,
) -> None:
    """List conversations without downloading."""
    token = require_token(token)
    config = load_effective_config(env, "list", delay_ms=delay)
    if count_only:
        if project:
            fail("list", "--count cannot be combined with --project")
        with reported_errors("list"):
            total = run_async(_count(token, config))
        if json_output:
            click.echo(jsonutil.dumps_pretty({"total": total}).decode("utf-8"), nl=False)
        else:
            env.ui.print(f"Total: {total} conversations", style="green")
        return

    with reported_errors("list"):
        conversations = run_async(_fetch(env, token, config, project, show_progress=not json_output))

    if json_output:
        click.echo(jsonutil.dumps_pretty(conversations).decode("utf-8"), nl=False)
        return
    for conversation in conversations:
        title = conversation.title or "(untitled)"
        date = format_date(conversation.update_time) or "unknown date"
        env.ui.print(f"{conversation.id} {title} [{date}]")
    env.ui.print()
    env.ui.print(f"Total: {len(conversations)} conversations", style="green")
