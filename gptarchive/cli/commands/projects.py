"""List projects."""

from __future__ import annotations

from typing import Any

import click

from gptarchive.api.pagination import iter_projects
from gptarchive.api.schemas import SidebarItem
from gptarchive.cli.helpers import (
    create_client,
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


async def _fetch(token: str, config: Config) -> list[SidebarItem]:
    async with create_client(token, config) as client:
        await client.initialize()
        return [item async for item in iter_projects(client, delay=config.delay)]


def project_record(item: SidebarItem) -> dict[str, Any]:
    gizmo = item.gizmo
    return {
        "id": gizmo.id,
        "name": item.name,
        "num_interactions": gizmo.num_interactions,
        "last_interacted_at": gizmo.last_interacted_at,
        "is_archived": gizmo.is_archived,
    }


@click.command("projects")
@token_option
@click.option("--json", "json_output", is_flag=True, help="Output JSON")
@click.pass_obj
def projects_command(env: AppEnv, token: str | None, json_output: bool) -> None:
    """List all projects."""
    token = require_token(token)
    config = load_effective_config(env, "projects")
    with reported_errors("projects"):
        projects = run_async(_fetch(token, config))

    if json_output:
        payload = [project_record(item) for item in projects]
        click.echo(jsonutil.dumps_pretty(payload).decode("utf-8"), nl=False)
        return
    for item in projects:
        last = format_date(item.gizmo.last_interacted_at) or "never"
        env.ui.print(f"{item.gizmo.id} {item.name} [last: {last}]")
    env.ui.print()
    env.ui.print(f"Total: {len(projects)} projects", style="green")
