"""Command line interface for the panel backend."""

from __future__ import annotations

import logging
import re
import sys
from functools import wraps
from typing import Any, NoReturn

import asyncclick as click

from .bridge import DEFAULT_APP_NAME
from .bridge import pair as pair_bridge
from .config import PanelConfig
from .encryption import generate_key
from .exceptions import HuePanelException
from .httpclient import DEFAULT_TIMEOUT

try:
    from rich import print as _echo
except ImportError:
    # Strip out rich formatting if rich is not installed
    rich_formatting = re.compile(r"\[/?[a-z ]+]")

    def _strip_rich_formatting(echo_func):
        """Strip rich formatting from messages."""

        @wraps(echo_func)
        def wrapper(message=None, *args, **kwargs) -> None:
            if message is not None:
                message = rich_formatting.sub("", message)
            echo_func(message, *args, **kwargs)

        return wrapper

    _echo = _strip_rich_formatting(click.echo)


def echo(*args, **kwargs) -> None:
    """Print a message."""
    _echo(*args, **kwargs)


def error(msg: str) -> NoReturn:
    """Print an error and exit."""
    echo(f"[bold red]{msg}[/bold red]")
    sys.exit(1)


def _configure_logging(debug: bool) -> None:
    logging_config: dict[str, Any] = {
        "level": logging.DEBUG if debug else logging.INFO
    }
    try:
        from rich.logging import RichHandler

        rich_config = {
            "show_time": False,
        }
        logging_config["handlers"] = [RichHandler(**rich_config)]
        logging_config["format"] = "%(message)s"
    except ImportError:
        pass

    logging.basicConfig(**logging_config)  # type: ignore
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)


@click.group()
@click.option(
    "-d",
    "--debug",
    envvar="HUEPANEL_DEBUG",
    default=False,
    is_flag=True,
    help="Print debug output",
)
@click.option(
    "--data-dir",
    envvar="HUEPANEL_DATA_DIR",
    default="data",
    show_default=True,
    help="Directory holding the encryption key and stored credentials.",
)
@click.version_option(package_name="huepanel")
@click.pass_context
async def cli(ctx: click.Context, debug: bool, data_dir: str) -> None:
    """Backend for a Hue and Hive control panel."""
    _configure_logging(debug)
    ctx.obj = PanelConfig(data_dir=data_dir)


@cli.command()
@click.option(
    "--host",
    envvar="HUEPANEL_HOST",
    default="0.0.0.0",  # noqa: S104
    show_default=True,
    help="Address to listen on.",
)
@click.option(
    "--port",
    envvar="HUEPANEL_PORT",
    default=PanelConfig.DEFAULT_PORT,
    type=int,
    show_default=True,
    help="Port to listen on.",
)
@click.option(
    "--demo/--no-demo",
    envvar="HUEPANEL_DEMO",
    default=False,
    is_flag=True,
    help="Accept the demo Hive account instead of contacting Hive.",
)
@click.pass_obj
async def serve(config: PanelConfig, host: str, port: int, demo: bool) -> None:
    """Start the http api."""
    from .server import run_server

    try:
        config = PanelConfig(
            data_dir=config.data_dir, host=host, port=port, demo_mode=demo
        )
    except HuePanelException as ex:
        error(str(ex))

    echo(f"Starting the api on http://{host}:{port}")
    if demo:
        echo("[yellow]Demo mode enabled[/yellow]")
    try:
        await run_server(config)
    except HuePanelException as ex:
        error(f"Unable to start the api: {ex}")
    except OSError as ex:
        error(f"Unable to listen on {host}:{port}: {ex}")


@cli.command()
@click.argument("bridge_ip")
@click.option(
    "--app-name",
    default=DEFAULT_APP_NAME,
    show_default=True,
    help="Application name registered with the bridge.",
)
@click.option(
    "--timeout",
    default=DEFAULT_TIMEOUT,
    type=float,
    show_default=True,
    help="Timeout for bridge communications.",
)
async def pair(bridge_ip: str, app_name: str, timeout: float) -> str:
    """Pair with the bridge at BRIDGE_IP and print the new username.

    Press the link button on the bridge before running this command.
    """
    try:
        username = await pair_bridge(bridge_ip, app_name, timeout=timeout)
    except HuePanelException as ex:
        suggestion = f"\n{ex.suggestion}" if ex.suggestion else ""
        error(f"Pairing failed: {ex}{suggestion}")

    echo(f"Paired with {bridge_ip}, username: [bold]{username}[/bold]")
    return username


@cli.command()
async def genkey() -> None:
    """Print a new encryption key.

    Export it as HIVE_ENCRYPTION_KEY to use it instead of the key file.
    """
    click.echo(generate_key())


if __name__ == "__main__":
    cli()
