"""
Manages a Rich progress display for a channel download.
"""

import asyncio
import logging

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

log = logging.getLogger("focus_bgm")


class ProgressManager:
    """Shows one progress bar per download, fed by percentage callbacks."""

    def __init__(self, console: Console):
        self.console = console
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=30),
            "[progress.percentage]{task.percentage:>5.1f}%",
            "•",
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self._tasks: dict[int, TaskID] = {}

    def add_download(self, channel_id: int, title: str) -> TaskID:
        description = title if len(title) <= 45 else title[:42] + "..."
        task_id = self.progress.add_task(
            f"[cyan]Ch{channel_id + 1}[/cyan] {description}", total=100.0
        )
        self._tasks[channel_id] = task_id
        return task_id

    def update(self, channel_id: int, percent: float) -> None:
        task_id = self._tasks.get(channel_id)
        if task_id is not None:
            self.progress.update(task_id, completed=percent)

    def finish(self, channel_id: int, success: bool = True) -> None:
        task_id = self._tasks.pop(channel_id, None)
        if task_id is None:
            return
        if success:
            self.progress.update(task_id, completed=100.0)
        else:
            self.progress.stop_task(task_id)

    async def __aenter__(self):
        self.progress.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await asyncio.sleep(0.1)
        self.progress.stop()
