"""Console output for the CLI: rich panels and progress, or plain lines."""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Callable, Iterable
from types import TracebackType

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

ProgressCallback = Callable[[int, int], None]

PLAIN_PROGRESS_INTERVAL = 5.0


def should_use_plain(*, plain: bool) -> bool:
    if plain:
        return True
    env_force = os.environ.get("GPTARCHIVE_FORCE_PLAIN")
    if env_force and env_force.lower() not in {"0", "false", "no"}:
        return True
    return not sys.stdout.isatty()


class UI:
    def __init__(self, plain: bool) -> None:
        self.plain = plain
        if plain:
            self.console = Console(no_color=True, highlight=False, soft_wrap=True)
        else:
            self.console = Console()

    def print(self, message: str = "", *, style: str | None = None) -> None:
        if self.plain or style is None:
            self.console.print(message, markup=False, highlight=False)
        else:
            self.console.print(Text(message, style=style))

    def summary(self, title: str, lines: Iterable[str]) -> None:
        lines = list(lines)
        if self.plain:
            self.console.print(f"-- {title} --", markup=False)
            for line in lines:
                self.console.print(line, markup=False, highlight=False)
            return
        body = Text()
        for index, line in enumerate(lines):
            if index:
                body.append("\n")
            body.append("• ", style="cyan")
            body.append(line)
        self.console.print(Panel(body, title=f"  {title}  ", title_align="left", padding=(1, 2)))

    def progress(self, *, enabled: bool = True) -> ProgressReporter:
        return ProgressReporter(self, enabled=enabled)


def _ignore_progress(completed: int, total: int) -> None:
    return None


class ProgressReporter:
    """Hands out ``(completed, total)`` callbacks, one progress bar each.

    In plain mode a bar becomes a line printed at most every few seconds plus
    one when the bar completes.
    """

    def __init__(self, ui: UI, *, enabled: bool = True) -> None:
        self._ui = ui
        self._enabled = enabled
        self._progress: Progress | None = None
        if enabled and not ui.plain:
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=ui.console,
            )

    def __enter__(self) -> ProgressReporter:
        if self._progress is not None:
            self._progress.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._progress is not None:
            self._progress.stop()

    def bar(self, description: str) -> ProgressCallback:
        if not self._enabled:
            return _ignore_progress
        if self._progress is None:
            return self._plain_bar(description)
        progress = self._progress
        task_id = progress.add_task(description, total=None)

        def update(completed: int, total: int) -> None:
            progress.update(task_id, completed=completed, total=max(total, completed))

        return update

    def _plain_bar(self, description: str) -> ProgressCallback:
        last_print = [0.0]
        last_completed = [-1]

        def update(completed: int, total: int) -> None:
            if completed == last_completed[0]:
                return
            now = time.monotonic()
            finished = total > 0 and completed >= total
            if finished or now - last_print[0] >= PLAIN_PROGRESS_INTERVAL:
                self._ui.print(f"  {description}: {completed}/{total}")
                last_print[0] = now
                last_completed[0] = completed

        return update


__all__ = ["ProgressReporter", "UI", "should_use_plain"]
