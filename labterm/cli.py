"""
labterm/cli.py

Command-line interface for the terminal bridge.

Usage:
    labterm serve --port 3001
    labterm config --json
    labterm check-handshake '{"targetKind": "container", "targetName": "r1"}'
"""

import sys
import json
import signal
import logging
import threading
from pathlib import Path

import click
import yaml

from .config import load_settings, BridgeSettings
from .errors import HandshakeError
from .server.listener import ConnectionListener
from .session.handshake import parse_handshake

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    """Root logging setup; keeps paramiko's transport chatter down."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


@click.group()
@click.option(
    "-c", "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Settings file (default: ~/.labterm/config.yaml)",
)
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
@click.pass_context
def cli(ctx, config_path, log_level):
    """labterm - browser terminal bridge for lab containers, VMs and devices."""
    ctx.ensure_object(dict)
    settings = load_settings(config_path)
    settings.update(log_level=log_level)
    configure_logging(settings.log_level)
    ctx.obj["settings"] = settings


@cli.command("serve")
@click.option("--host", default=None, help="Bind address")
@click.option("--port", type=int, default=None, help="Listen port")
@click.option("--path", default=None, help="WebSocket path")
@click.pass_context
def serve(ctx, host, port, path):
    """Run the terminal bridge until interrupted."""
    settings: BridgeSettings = ctx.obj["settings"]
    settings.update(host=host, port=port, path=path)
    try:
        settings.validate()
    except (ValueError, TypeError) as e:
        click.echo(f"Invalid settings: {e}", err=True)
        sys.exit(2)

    listener = ConnectionListener(settings)
    stopper: list[threading.Thread] = []

    def on_signal(signum, _frame):
        if stopper:
            return
        logger.info(f"Received signal {signum}, shutting down")
        # serve_forever() runs on this thread; shut down from another one
        thread = threading.Thread(target=listener.shutdown, name="shutdown")
        stopper.append(thread)
        thread.start()

    signal.signal(signal.SIGTERM, on_signal)
    signal.signal(signal.SIGINT, on_signal)

    try:
        listener.serve_forever()
    except OSError as e:
        click.echo(f"Cannot listen on {settings.host}:{settings.port}: {e}", err=True)
        sys.exit(1)

    for thread in stopper:
        thread.join()
    logger.info("Bridge stopped")


@cli.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show_config(ctx, output_json):
    """Show effective settings (secrets masked)."""
    settings: BridgeSettings = ctx.obj["settings"]
    data = settings.to_public_dict()
    if output_json:
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip())


@cli.command("check-handshake")
@click.argument("payload")
def check_handshake(payload):
    """Parse a handshake payload and print the result."""
    try:
        handshake = parse_handshake(payload)
    except HandshakeError as e:
        click.echo(f"Invalid handshake: {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(handshake.to_dict(), indent=2))


def main():
    """Entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
