"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import shutil
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler

from focus_bgm import __version__
from focus_bgm.api.metadata import OEmbedResolver
from focus_bgm.audio.engine import MpvSessionFactory
from focus_bgm.audio.manager import ChannelManager
from focus_bgm.core.download_manager import DownloadManager
from focus_bgm.exceptions import ConfigurationError, FocusBgmError
from focus_bgm.models.config import PlayerConfig
from focus_bgm.storage.config_manager import ConfigManager
from focus_bgm.storage.history_db import HistoryDB
from focus_bgm.utils.path import get_config_dir
from focus_bgm.utils.structured_logger import SessionLogger, create_structured_logger

from .formatters import (
    print_config,
    print_history_table,
    print_library_table,
    render_channels,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("focus_bgm")

app = typer.Typer(
    name="focus-bgm",
    help=(
        "Two-channel background music from the terminal. Use 'focus-bgm"
        " <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"

_session_options: dict[str, bool] = {"log_json": False}


def _load_config(cli_options: dict | None = None) -> PlayerConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


def _build_manager(
    config: PlayerConfig,
) -> tuple[ChannelManager, OEmbedResolver, SessionLogger]:
    """Wires a channel manager with the real mpv, yt-dlp and SQLite collaborators."""
    _, playback_logger, download_logger, session_logger = create_structured_logger(
        log_dir=CONFIG_DIR / "logs", enable_json=_session_options["log_json"]
    )
    resolver = OEmbedResolver(timeout=config.metadata_timeout)
    manager = ChannelManager(
        store=HistoryDB(CONFIG_DIR),
        resolver=resolver,
        engine_factory=MpvSessionFactory(
            mpv_path=config.mpv_path, initial_volume=config.default_volume
        ),
        downloader_factory=lambda channel_id: DownloadManager(
            channel_id,
            CONFIG_DIR,
            command=[config.ytdlp_path],
            extra_args=config.ytdlp_extra_args,
            progress_interval=config.progress_interval,
            max_title_length=config.max_title_length,
        ),
        config=config,
        playback_logger=playback_logger,
        download_logger=download_logger,
    )
    return manager, resolver, session_logger


def _check_channel(channel: int) -> int:
    if channel not in (1, 2):
        console.print("[red]✗ Channel must be 1 or 2.[/red]")
        raise typer.Exit(code=1)
    return channel - 1


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
    log_json: bool = typer.Option(
        False, "--log-json", help="Also write structured JSON logs to the config dir."
    ),
):
    """Focus BGM"""
    if version:
        console.print(f"[bold]focus-bgm[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("focus_bgm").setLevel(log_level)
    _session_options["log_json"] = log_json

    if show_config:
        config_data = ConfigManager(CONFIG_FILE).get_config_as_dict()
        print_config(CONFIG_FILE, config_data)
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing config without asking."
    ),
):
    """Write a configuration file with default settings."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()
    try:
        ConfigManager(CONFIG_FILE).save_new_config()
    except ConfigurationError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e
    console.print(f"[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")


@app.command()
def play(
    url: str = typer.Argument(..., help="Media URL to play."),
    channel: int = typer.Option(1, "--channel", "-c", help="Channel (1 or 2)."),
    volume: int | None = typer.Option(None, "--volume", help="Start volume 0-100."),
    loop: bool = typer.Option(False, "--loop", help="Loop the track."),
):
    """Play a URL on a channel and show live status until Ctrl-C."""
    index = _check_channel(channel)

    async def _play_async():
        config = _load_config()
        manager, resolver, session_logger = _build_manager(config)
        start_time = time.monotonic()
        try:
            await manager.initialize()
            manager.set_active_channel(index)
            session_logger.session_started("play", index)
            await manager.play_on_channel(index, url)
            if volume is not None:
                await manager.set_volume(volume, index)
            if loop:
                await manager.toggle_loop(index)

            with Live(console=console, refresh_per_second=4, transient=False) as live:
                while True:
                    states = manager.get_all_states()
                    loop_flags = tuple(
                        ch.loop_indicator_active() for ch in manager.channels
                    )
                    live.update(
                        render_channels(
                            states, manager.get_active_channel_index(), loop_flags
                        )
                    )
                    await asyncio.sleep(0.5)
        finally:
            await manager.cleanup()
            await resolver.close()
            session_logger.session_ended(time.monotonic() - start_time)
            session_logger.logger.close()

    try:
        asyncio.run(_play_async())
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")


@app.command()
def download(
    url: str = typer.Argument(..., help="Media URL to download."),
    channel: int = typer.Option(1, "--channel", "-c", help="Channel (1 or 2)."),
    title: str | None = typer.Option(
        None, "--title", "-t", help="Title to use instead of looking it up."
    ),
):
    """Download a URL into a channel's library."""
    index = _check_channel(channel)

    async def _download_async():
        config = _load_config()
        manager, resolver, session_logger = _build_manager(config)
        try:
            await manager.initialize()
            session_logger.session_started("download", index)
            resolved_title = title or await resolver.resolve_title(url)
            target = manager.get_channel(index)

            async with ProgressManager(console) as progress:
                progress.add_download(index, resolved_title)
                task = asyncio.create_task(
                    manager.start_download(url, resolved_title, index)
                )
                while not task.done():
                    progress.update(index, target.state.download_progress)
                    await asyncio.wait({task}, timeout=config.progress_interval)
                try:
                    entry = task.result()
                except FocusBgmError:
                    progress.finish(index, success=False)
                    raise
                progress.finish(index)

            console.print(
                f"[green]✓ Saved to library:[/] {entry.title} [dim]({entry.file_path})[/dim]"
            )
        finally:
            await manager.cleanup()
            await resolver.close()
            session_logger.logger.close()

    asyncio.run(_download_async())


@app.command()
def history(
    channel: int = typer.Option(1, "--channel", "-c", help="Channel (1 or 2)."),
    clear: bool = typer.Option(False, "--clear", help="Clear the channel's history."),
):
    """Show (or clear) a channel's play history."""
    index = _check_channel(channel)

    async def _history_async():
        store = HistoryDB(CONFIG_DIR)
        try:
            if clear:
                await store.clear_history(index)
                console.print(f"[green]✓ History of channel {channel} cleared.[/green]")
            else:
                print_history_table(index, await store.get_history(index))
        finally:
            store.close()

    asyncio.run(_history_async())


@app.command()
def library(
    channel: int = typer.Option(1, "--channel", "-c", help="Channel (1 or 2)."),
):
    """List a channel's downloaded library."""
    index = _check_channel(channel)

    async def _library_async():
        store = HistoryDB(CONFIG_DIR)
        try:
            print_library_table(index, await store.get_library(index))
        finally:
            store.close()

    asyncio.run(_library_async())


@app.command()
def remove(
    library_index: int = typer.Argument(..., help="Index shown by 'library'."),
    channel: int = typer.Option(1, "--channel", "-c", help="Channel (1 or 2)."),
):
    """Remove an item (and its file) from a channel's library."""
    index = _check_channel(channel)

    async def _remove_async():
        config = _load_config()
        manager, resolver, session_logger = _build_manager(config)
        try:
            await manager.initialize()
            session_logger.session_started("remove", index)
            entry = await manager.remove_from_library(library_index, index)
            if entry:
                console.print(f"[green]✓ Removed:[/] {entry.title}")
            else:
                console.print(f"[yellow]No library entry at index {library_index}.[/]")
        finally:
            await manager.cleanup()
            await resolver.close()
            session_logger.logger.close()

    asyncio.run(_remove_async())


@app.command()
def diagnose():
    """Check configuration and the external players this app depends on."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False

    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print("[yellow]○[/] No config file, defaults are used.")

    config = PlayerConfig()
    try:
        config = _load_config()
        console.print("[green]✓[/] Configuration is valid.")
    except FocusBgmError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        issues_found = True

    for label, executable in (("mpv", config.mpv_path), ("yt-dlp", config.ytdlp_path)):
        if found := shutil.which(executable):
            console.print(f"[green]✓[/] {label} found: [dim]{found}[/dim]")
        else:
            console.print(f"[red]✗ {label} not found ('{executable}').[/red]")
            issues_found = True

    if os.name == "nt":
        console.print("[yellow]○[/] mpv IPC over unix sockets is not available on Windows.")
        issues_found = True

    writable = os.access(CONFIG_DIR if CONFIG_DIR.exists() else Path.home(), os.W_OK)
    if writable:
        console.print(f"[green]✓[/] Data directory is writable: [dim]{CONFIG_DIR}[/dim]")
    else:
        console.print(f"[red]✗ Cannot write to {CONFIG_DIR}.[/red]")
        issues_found = True

    console.print()
    if not issues_found:
        console.print("[bold green]✓ All checks passed![/bold green]\n")
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
        raise typer.Exit(code=1)
