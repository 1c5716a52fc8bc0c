"CLI layer: Typer commands for record, status, stop, discard, config."

import json
import logging
import os
import signal
import threading
import time
from pathlib import Path
from typing import List, Optional

import psutil
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import config as cfg
from .capture import ProcessHandle
from .errors import HeadrecError
from .session import CaptureSession

app = typer.Typer(help="headrec: record X11 virtual displays with ffmpeg")
console = Console()
err_console = Console(stderr=True)

POLL_INTERVAL = 0.5

# `stop`/`discard` send this to a running `record` after writing a request file.
STOP_REQUEST_SIGNAL = signal.SIGUSR1


def _display(value):
    return value.lstrip(":")


def _options(**overrides):
    try:
        return cfg.RecorderOptions.from_env(**overrides)
    except ValueError as e:
        console.print(f"[red]❌ Invalid configuration: {e}[/red]")
        raise typer.Exit(1)


def _read_stop_request(request_file):
    """Read {"action": "save"|"discard", "output": path} left by stop/discard."""
    try:
        with open(request_file, "r") as f:
            request = json.load(f)
    except (OSError, ValueError):
        return None
    return request if isinstance(request, dict) else None


def _request_stop(display, options, action, output=None):
    """Hand the stop over to the `headrec record` that owns `display`.

    Only that process may reconcile the file its encoder writes, so the
    request (and the destination) is passed to it and we wait for it to exit.
    Returns False when no live record process supervises the display.
    """
    pid_file, request_file = cfg.supervisor_paths(display, options.tmp_dir)
    supervisor = ProcessHandle([], pid_file, name="headrec record")
    pid = supervisor.read_pid()
    if pid is None or pid == os.getpid() or not supervisor.is_running():
        return False

    with open(request_file, "w") as f:
        json.dump({"action": action, "output": str(output) if output else None}, f)

    console.print(f"[yellow]Asking headrec record (pid {pid}) to finish...[/yellow]")
    try:
        psutil.Process(pid).send_signal(STOP_REQUEST_SIGNAL)
    except psutil.NoSuchProcess:
        return True

    # Not our child, so it may linger as a zombie; it clears its PID file when done.
    while supervisor.is_running():
        time.sleep(POLL_INTERVAL / 5)
    return True


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")):
    """Record X11 virtual displays with ffmpeg."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


@app.command()
def record(
    display: str = typer.Argument(..., help="X display to record, e.g. 99 or :99"),
    dimensions: str = typer.Argument(..., help="Screen dimensions, e.g. 1024x768x24"),
    output: Path = typer.Option(None, "--output", "-o", help="Where to save the recording"),
    duration: int = typer.Option(None, "--duration", help="Stop after N seconds (default: until Ctrl+C)"),
    codec: str = typer.Option(None, "--codec", help="Video codec (default: from config or qtrle)"),
    frame_rate: int = typer.Option(None, "--frame-rate", help="Frames per second (default: from config or 30)"),
    provider: str = typer.Option(None, "--provider", help="Encoder family: libav or ffmpeg"),
    hide_cursor: Optional[bool] = typer.Option(None, "--hide-cursor/--no-hide-cursor", help="Hide the mouse pointer with unclutter"),
    extra: List[str] = typer.Option(None, "--extra", help="Extra encoder arguments (repeatable)"),
    discard: bool = typer.Option(False, "--discard", help="Throw the recording away instead of saving it"),
):
    """Record a display until the duration elapses, Ctrl+C, `headrec stop`, or the encoder exits."""
    if output is None and not discard:
        console.print("[red]❌ Error: pass --output PATH or --discard[/red]")
        raise typer.Exit(1)

    options = _options(
        codec=codec,
        frame_rate=frame_rate,
        provider=provider,
        hide_cursor=hide_cursor,
        extra=extra or None,
    )

    pid_file, request_file = cfg.supervisor_paths(_display(display), options.tmp_dir)
    supervisor = ProcessHandle([], pid_file, name="headrec record")
    stop_requested = threading.Event()

    def handle_stop_request(signum, frame):
        stop_requested.set()

    previous_handler = signal.signal(STOP_REQUEST_SIGNAL, handle_stop_request)
    try:
        session = CaptureSession(_display(display), dimensions, options=options)
        session.start()
        supervisor.write_pid(os.getpid())
        console.print(f"[green]✅ Recording display :{session.display}[/green]")
        console.print(f"[dim]Temporary file: {session.tmp_file_path}[/dim]")
        if duration:
            console.print(f"[dim]Stopping after {duration}s[/dim]")
        else:
            console.print("[yellow]Press Ctrl+C or run 'headrec stop' to stop.[/yellow]")

        started = time.monotonic()
        try:
            while not stop_requested.is_set():
                if not session.is_capturing():
                    console.print("[yellow]⚠ Encoder exited on its own[/yellow]")
                    break
                if duration and time.monotonic() - started >= duration:
                    break
                time.sleep(POLL_INTERVAL)
        except KeyboardInterrupt:
            console.print()

        request = _read_stop_request(request_file) if stop_requested.is_set() else None
        if request is not None:
            if request.get("action") == "discard":
                discard = True
            elif request.get("output"):
                discard = False
                output = Path(request["output"])

        if discard:
            session.discard()
            console.print("[green]Recording discarded.[/green]")
        elif session.save_to(output):
            console.print(f"[green]✅ Saved to: {output}[/green]")
        else:
            console.print("[yellow]⚠ Nothing was saved[/yellow]")

    except (HeadrecError, ValueError) as e:
        console.print(f"[red]❌ Error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        if supervisor.read_pid() == os.getpid():
            supervisor.clear()
            try:
                os.unlink(request_file)
            except FileNotFoundError:
                pass
        signal.signal(STOP_REQUEST_SIGNAL, previous_handler)


@app.command()
def status(display: str = typer.Argument(..., help="X display, e.g. 99")):
    """Show the processes tracked for a display."""
    options = _options().resolve_paths(_display(display))
    supervisor_pid_file, _ = cfg.supervisor_paths(_display(display), options.tmp_dir)

    table = Table(title=f"headrec :{_display(display)}")
    table.add_column("Process", style="cyan")
    table.add_column("PID file", style="dim")
    table.add_column("PID", style="magenta")
    table.add_column("Status", style="yellow")

    for name, pid_file in (
        ("record", supervisor_pid_file),
        ("ffmpeg", options.pid_file_path),
        ("unclutter", options.unclutter_pid_file_path),
    ):
        handle = ProcessHandle([], pid_file, name=name)
        pid = handle.read_pid()
        if pid is None:
            state = "stopped"
        elif handle.is_running():
            state = "✅ running"
        else:
            state = "⚠ stale pid file"
        table.add_row(name, str(pid_file), str(pid) if pid else "-", state)

    console.print(table)
    tmp = Path(options.tmp_file_path)
    if tmp.exists():
        console.print(f"[dim]Pending recording: {tmp} ({tmp.stat().st_size} bytes)[/dim]")


def _session_for(display):
    # Stopping needs no dimensions; the PID files say what is running.
    return CaptureSession(_display(display), options=_options())


@app.command()
def stop(
    display: str = typer.Argument(..., help="X display, e.g. 99"),
    output: Path = typer.Option(..., "--output", "-o", help="Where to save the recording"),
):
    """Stop a recording started elsewhere and save it."""
    output = output.resolve()
    try:
        if _request_stop(_display(display), _options(), "save", output):
            if output.exists():
                console.print(f"[green]✅ Saved to: {output}[/green]")
            else:
                console.print("[yellow]⚠ Nothing to save[/yellow]")
            return

        session = _session_for(display)
        if not session.is_capturing():
            console.print(f"[yellow]No capture running on :{session.display}[/yellow]")

        console.print(f"[yellow]Stopping capture of :{session.display}...[/yellow]")
        if session.save_to(output):
            console.print(f"[green]✅ Saved to: {output}[/green]")
        else:
            console.print("[yellow]⚠ Nothing to save[/yellow]")

    except HeadrecError as e:
        console.print(f"[red]❌ Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def discard(display: str = typer.Argument(..., help="X display, e.g. 99")):
    """Stop a recording started elsewhere and delete it."""
    try:
        if not _request_stop(_display(display), _options(), "discard"):
            _session_for(display).discard()
        console.print(f"[green]✅ Discarded recording of :{_display(display)}[/green]")

    except HeadrecError as e:
        console.print(f"[red]❌ Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def config(
    key: str = typer.Argument(..., help="Config key: codec, frame_rate, provider or tmp_dir"),
    value: str = typer.Argument(None, help="Value to set (omit to get current value)"),
):
    """Get or set configuration values."""
    if key not in cfg.CONFIG_KEYS:
        console.print(f"[red]❌ Invalid key: {key}. Use one of: {', '.join(cfg.CONFIG_KEYS)}[/red]")
        raise typer.Exit(1)

    user_config = cfg.load_user_config()

    if value is None:
        if key in user_config:
            console.print(f"{key}: {user_config[key]}")
        else:
            console.print(f"{key}: not set")
        return

    if key == "frame_rate":
        try:
            value = int(value)
        except ValueError:
            console.print("[red]❌ Invalid value for frame_rate: must be an integer[/red]")
            raise typer.Exit(1)
        if value <= 0:
            console.print("[red]❌ Invalid value for frame_rate: must be positive[/red]")
            raise typer.Exit(1)
    elif key == "provider":
        try:
            value = cfg.Provider.parse(value).value
        except ValueError as e:
            console.print(f"[red]❌ {e}[/red]")
            raise typer.Exit(1)

    user_config[key] = value
    cfg.save_user_config(user_config)
    console.print(f"[green]✅ Set {key} to {value}[/green]")


if __name__ == "__main__":
    app()
