"""Command-line interface for the TTS module.

Provides ``tts-module start``, ``stop`` and ``status`` commands.  The entry
point is registered via ``pyproject.toml`` as
``tts-module = "tts_module.cli:cli"``.
"""

import logging
import os
import signal
import time

import click
import httpx

from tts_module.config import (
    LOG_FILE,
    PID_FILE,
    TTS_MODULE_DIR,
    get_host,
    get_port,
)

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

_MIN_PORT = 1024
_MAX_PORT = 65535


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _validate_port(port: int) -> None:
    """Raise ``click.BadParameter`` if *port* is out of range."""
    if not (_MIN_PORT <= port <= _MAX_PORT):
        raise click.BadParameter(
            f"Port must be between {_MIN_PORT} and {_MAX_PORT}, got {port}."
        )


def _read_pid() -> int | None:
    """Read the PID from the PID file, or return ``None``."""
    try:
        return int(PID_FILE.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None


def _is_process_running(pid: int) -> bool:
    """Return ``True`` if a process with *pid* is alive."""
    try:
        os.kill(pid, 0)
        return True
    except OSError:
        return False


def _fetch_health(host: str, port: int) -> dict | None:
    """Return the ``/health`` payload, or ``None`` if the server does not answer."""
    try:
        resp = httpx.get(f"http://{host}:{port}/health", timeout=2.0)
    except (httpx.ConnectError, httpx.TimeoutException, OSError):
        return None
    if resp.status_code != 200:
        return None
    return resp.json()


def _setup_logging(log_file: str | None, log_level: str) -> None:
    """Configure the root logger: console always, plus *log_file* if given."""
    root = logging.getLogger()
    root.setLevel(log_level)
    formatter = logging.Formatter(_LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(formatter)
        root.addHandler(handler)


def _run_server(host: str, port: int, log_level: str) -> None:
    """Start uvicorn with the TTS module FastAPI app.

    This blocks until the server shuts down.
    """
    import uvicorn

    from tts_module.server.app import create_app

    app = create_app()
    uvicorn.run(app, host=host, port=port, log_level=log_level.lower())


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
def cli() -> None:
    """TTS module -- local text-to-speech server over WebSocket."""


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default: 127.0.0.1)")
@click.option("--port", default=None, type=int, help="Server port (default: 7563)")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False), help="Also write logs to this file (default: ~/.tts-module/server.log)")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    help="Minimum log level",
)
def start(host: str | None, port: int | None, log_file: str | None, log_level: str) -> None:
    """Start the TTS module server in the foreground."""
    host = host or get_host()
    port = port if port is not None else get_port()
    _validate_port(port)
    log_level = log_level.upper()

    existing_pid = _read_pid()
    if existing_pid is not None and _is_process_running(existing_pid):
        click.echo(
            click.style(
                f"Server is already running (PID {existing_pid}). "
                "Use 'tts-module stop' first.",
                fg="yellow",
            )
        )
        raise SystemExit(1)

    TTS_MODULE_DIR.mkdir(parents=True, exist_ok=True)
    log_file = log_file or str(LOG_FILE)
    _setup_logging(log_file, log_level)
    click.echo(f"Starting TTS module on ws://{host}:{port}/ ...")
    click.echo(f"  Logs: {log_file}")

    PID_FILE.write_text(str(os.getpid()))
    try:
        _run_server(host, port, log_level)
    except OSError as exc:
        if "address already in use" in str(exc).lower():
            click.echo(
                click.style(
                    f"Port {port} is already in use. "
                    "Choose a different port with --port.",
                    fg="red",
                )
            )
            raise SystemExit(1)
        raise
    finally:
        PID_FILE.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# stop
# ---------------------------------------------------------------------------


@cli.command()
def stop() -> None:
    """Stop a running TTS module server."""
    pid = _read_pid()

    if pid is None:
        click.echo(click.style("No PID file found, server may not be running.", fg="yellow"))
        raise SystemExit(1)

    if not _is_process_running(pid):
        click.echo(
            click.style(
                f"Process {pid} is not running. Cleaning up stale PID file.", fg="yellow"
            )
        )
        PID_FILE.unlink(missing_ok=True)
        return

    click.echo(f"Stopping TTS module (PID {pid})...")
    os.kill(pid, signal.SIGTERM)

    # Wait up to 5 seconds for the process to exit.
    for _ in range(50):
        if not _is_process_running(pid):
            break
        time.sleep(0.1)
    else:
        click.echo(
            click.style(
                f"Process {pid} did not exit in time, sending SIGKILL.", fg="red"
            )
        )
        try:
            os.kill(pid, signal.SIGKILL)
        except OSError:
            logger.debug("Process %d exited before SIGKILL", pid)

    PID_FILE.unlink(missing_ok=True)
    click.echo(click.style("Server stopped.", fg="green"))


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Server address to check")
@click.option("--port", default=None, type=int, help="Server port to check")
def status(host: str | None, port: int | None) -> None:
    """Show TTS module server status."""
    host = host or get_host()
    port = port if port is not None else get_port()
    pid = _read_pid()

    if pid is None:
        click.echo(click.style("Server is not running (no PID file).", fg="yellow"))
        raise SystemExit(1)

    if not _is_process_running(pid):
        click.echo(
            click.style(
                f"PID file exists ({pid}) but process is not running.", fg="yellow"
            )
        )
        PID_FILE.unlink(missing_ok=True)
        raise SystemExit(1)

    click.echo(f"Server process is running (PID {pid}).")

    data = _fetch_health(host, port)
    if data is None:
        click.echo(
            click.style(
                f"Server process is running but not responding on port {port}.",
                fg="yellow",
            )
        )
        return

    click.echo(click.style("Server is healthy.", fg="green"))
    click.echo(f"  Version:     {data.get('version', '?')}")
    click.echo(f"  Port:        {port}")
    click.echo(f"  Provider:    {data.get('provider') or 'none'}")
    click.echo(f"  In flight:   {data.get('in_flight', '?')}")
    click.echo(f"  Connections: {data.get('connections', '?')}")
