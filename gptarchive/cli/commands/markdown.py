"""Re-render markdown transcripts from stored conversations."""

from __future__ import annotations

from pathlib import Path

import click

from gptarchive.cli.helpers import load_effective_config, output_option
from gptarchive.cli.types import AppEnv
from gptarchive.rendering.markdown import ConversionReport, convert_directory


def print_conversion(env: AppEnv, report: ConversionReport) -> None:
    env.ui.print(f"Converted {report.converted} conversations to markdown.")
    if report.invalid_graphs:
        env.ui.print(f"Conversations with a broken message graph: {report.invalid_graphs}", style="yellow")
    if report.errors:
        env.ui.print(f"Markdown conversion errors: {report.errors}", style="red")


@click.command("markdown")
@output_option
@click.pass_obj
def markdown_command(env: AppEnv, output: Path | None) -> None:
    """Convert stored conversations to markdown."""
    config = load_effective_config(env, "markdown", output_dir=output)
    print_conversion(env, convert_directory(config.output_dir))
