"""Console rendering and progress helpers for gallery-sync CLI."""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence
import time

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)
from rich.table import Table

from .models import BatchResult, GallerySnapshot, UploadStatus, UploadTask


console = Console()


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]gallery-sync[/bold green]",
        subtitle="[dim]gallery CLI[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_gallery(items: Sequence[str], deleting: Sequence[str] = ()) -> None:
    """Print the ordered gallery as a numbered table."""
    if not items:
        console.print("[dim]Gallery is empty.[/dim]")
        return

    table = Table(title=f"Gallery ({len(items)} photos)", show_lines=False)
    table.add_column("#", style="bold cyan", justify="right")
    table.add_column("URL", style="white", overflow="fold")
    for index, url in enumerate(items):
        marker = " [yellow](deleting)[/yellow]" if url in deleting else ""
        table.add_row(str(index), f"{url}{marker}")
    console.print(table)


class GalleryProgressDisplay:
    """
    Snapshot-driven console display for batch uploads.

    Subscribe `on_snapshot` to GalleryEngine.subscribe; each task gets a
    bar while in flight and a timeline line once it settles.
    """

    def __init__(self):
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold green]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[dim]{task.fields[detail]}", justify="left"),
            expand=False,
            console=console,
        )
        self._live: Optional[Live] = None
        self._active_tasks: Dict[str, TaskID] = {}
        self._reported: Dict[str, UploadStatus] = {}

    def _start_live(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            self._progress,
            console=console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()

    def _stop_live(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def _emit_timeline(
        self,
        status: str,
        kind: str,
        name: str,
        size_bytes: int = 0,
        error: Optional[str] = None,
    ) -> None:
        stamp = time.strftime("%H:%M:%S")
        size_label = f" {_human_size(size_bytes)}" if size_bytes > 0 else ""
        error_label = f" cause={error}" if error else ""
        palette = {
            "DONE": "green",
            "FAIL": "red",
            "SYNC": "cyan",
        }
        color = palette.get(status, "white")
        console.print(
            f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] "
            f"{kind}: {name}{size_label}{error_label}"
        )

    def _settle(self, task: UploadTask) -> None:
        task_id = self._active_tasks.pop(task.id, None)
        if task_id is not None:
            self._progress.remove_task(task_id)

        if self._reported.get(task.id) == task.status:
            return
        self._reported[task.id] = task.status
        if task.status == UploadStatus.SUCCESS:
            self._emit_timeline("DONE", "file", task.filename, task.file.size)
        else:
            self._emit_timeline("FAIL", "file", task.filename, task.file.size, error=task.error)

    def on_snapshot(self, snapshot: GallerySnapshot) -> None:
        for task in snapshot.tasks:
            if task.is_terminal:
                self._settle(task)
                continue

            self._reported.pop(task.id, None)
            detail = task.status.value
            if task.id not in self._active_tasks:
                self._start_live()
                self._active_tasks[task.id] = self._progress.add_task(
                    "upload",
                    label=task.filename[:60],
                    total=100,
                    completed=task.progress,
                    detail=detail,
                )
            else:
                self._progress.update(
                    self._active_tasks[task.id],
                    completed=task.progress,
                    detail=detail,
                )

        if not self._active_tasks:
            self._stop_live()

    def on_batch_complete(self, result: BatchResult) -> None:
        if result.committed:
            self._emit_timeline("SYNC", "gallery", f"{len(result.appended)} photo(s) saved to gallery")

    def on_finish(self, snapshot: GallerySnapshot) -> None:
        self._stop_live()
        console.print(
            f"[bold]Finished[/bold] gallery={len(snapshot.items)} "
            f"failed={snapshot.failed} pending={snapshot.uploading}"
        )
