"""CLI entrypoint."""

from __future__ import annotations

from pathlib import Path

import click

from gptarchive import __version__
from gptarchive.cli.commands.backup import backup_command
from gptarchive.cli.commands.files import files_command
from gptarchive.cli.commands.list import list_command
from gptarchive.cli.commands.markdown import markdown_command
from gptarchive.cli.commands.projects import projects_command
from gptarchive.cli.types import AppEnv
from gptarchive.cli.ui import UI, should_use_plain
from gptarchive.lib.log import configure_logging


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, prog_name="gptarchive")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines on stderr")
@click.option("--plain", is_flag=True, help="Force plain output (no progress bars or colors)")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Path to config.json")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, json_logs: bool, plain: bool, config_path: Path | None) -> None:
    """Export your ChatGPT conversations."""
    configure_logging(verbose=verbose, json_logs=json_logs)
    ctx.obj = AppEnv(ui=UI(should_use_plain(plain=plain)), config_path=config_path, verbose=verbose)


cli.add_command(backup_command)
cli.add_command(list_command)
cli.add_command(projects_command)
cli.add_command(files_command)
cli.add_command(markdown_command)


def main() -> None:
    cli()


__all__ = ["cli", "main"]
