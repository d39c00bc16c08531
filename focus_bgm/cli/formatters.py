"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from focus_bgm.audio.types import ChannelState, HistoryEntry, LibraryEntry
from focus_bgm.utils.formatting import (
    format_size,
    format_timestamp,
    format_volume,
    truncate_text,
)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "EngineError": [
            "• Make sure mpv is installed and on your PATH.",
            "• Run `focus-bgm diagnose` to check your setup.",
        ],
        "InvalidSourceError": [
            "• Paste a full YouTube link (youtube.com/watch?v=... or youtu.be/...).",
        ],
        "AlreadyInLibraryError": [
            "• The track is already downloaded on this channel.",
            "• Remove it with `focus-bgm remove <INDEX>` to download it again.",
        ],
        "AlreadyDownloadingError": [
            "• Wait for the running download on this channel to finish.",
        ],
        "SourceBlockedError": [
            "• The source refused the download. Try again in a moment.",
            "• Updating yt-dlp often fixes this.",
        ],
        "DownloadFilesystemError": [
            "• Check free disk space and permissions of the config directory.",
        ],
        "ConfigurationError": [
            "• Check the values in your config file (`focus-bgm --show-config`).",
            "• Run `focus-bgm init --force` to start from defaults.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if isinstance(value, list):
            value = ", ".join(value)
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def _transport_label(state: ChannelState) -> str:
    if state.loading:
        return "[yellow]⏳ Loading[/yellow]"
    if state.playing:
        return "[green]▶ Playing[/green]"
    if state.url:
        return "[cyan]⏸ Paused[/cyan]"
    return "[dim]■ Empty[/dim]"


def render_channel_panel(
    state: ChannelState, active: bool, loop_indicator: bool = False
) -> Panel:
    """Builds a status panel for one channel."""
    table = Table.grid(padding=(0, 1))
    table.add_column(style="bold cyan", justify="right")
    table.add_column()

    table.add_row("Title:", truncate_text(state.title, 48) or "[dim](empty)[/dim]")
    table.add_row("URL:", f"[dim]{truncate_text(state.url, 48) or '(empty)'}[/dim]")
    table.add_row("State:", _transport_label(state))
    table.add_row("Volume:", f"{format_volume(state.volume)} {state.volume}%")

    loop = "[magenta]on[/magenta]" if state.loop_enabled else "off"
    if loop_indicator:
        loop = "[bold magenta]🔁 LOOP ON[/bold magenta]"
    table.add_row("Loop:", loop)

    if state.downloading:
        table.add_row("Download:", f"[blue]{state.download_progress:.1f}%[/blue]")
    if state.error:
        table.add_row("Error:", f"[red]{truncate_text(state.error, 60)}[/red]")

    title = f"[bold]Channel {state.id + 1}[/bold]"
    if active:
        title += " [green](active)[/green]"
    return Panel(table, title=title, border_style="green" if active else "blue")


def render_channels(
    states: tuple[ChannelState, ...], active_index: int, loop_flags: tuple[bool, ...]
) -> Group:
    return Group(
        *(
            render_channel_panel(state, state.id == active_index, flag)
            for state, flag in zip(states, loop_flags)
        )
    )


def print_history_table(channel_id: int, history: list[HistoryEntry]):
    """Displays the play history of a channel."""
    console = Console()
    if not history:
        console.print(f"[dim]No history on channel {channel_id + 1}.[/dim]")
        return

    table = Table(title=f"History, channel {channel_id + 1}", box=box.SIMPLE)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("URL", style="dim")
    for i, entry in enumerate(history, 1):
        table.add_row(str(i), truncate_text(entry.title, 50), entry.url)
    console.print(table)


def print_library_table(channel_id: int, library: list[LibraryEntry]):
    """Displays the downloaded library of a channel."""
    console = Console()
    if not library:
        console.print(f"[dim]Library of channel {channel_id + 1} is empty.[/dim]")
        return

    table = Table(title=f"Library, channel {channel_id + 1}", box=box.SIMPLE)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Downloaded", style="dim")
    table.add_column("File", style="dim")
    for i, entry in enumerate(library):
        table.add_row(
            str(i),
            truncate_text(entry.title, 40),
            format_size(entry.file_size),
            format_timestamp(entry.downloaded_at),
            Path(entry.file_path).name,
        )
    console.print(table)
