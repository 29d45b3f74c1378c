"""
rtunnel CLI entry point.

Usage:
    rtunnel [OPTIONS] COMMAND [ARGS]...

Commands:
    run       Open the reverse tunnel and relay connections
    config    Show the effective configuration
    version   Show version information

Settings default to the environment (REMOTE_SERVER, REMOTE_SERVER_USER,
REMOTE_SERVER_KEY, LOCAL_ENDPOINT, REMOTE_ENDPOINT, ...); options given on
the command line override them.
"""

import dataclasses
from typing import Annotated

import typer
from rich.table import Table

from rtunnel.cli.output import console, print_error
from rtunnel.config import DEFAULT_SSH_PORT, TunnelConfig, parse_endpoint
from rtunnel.exceptions import ConfigError
from rtunnel.models.enums import LogLevel, RelayMode
from rtunnel.utils.logger import configure_logging

app = typer.Typer(
    name="rtunnel",
    help="Reverse SSH tunnel relay",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _build_config(
    remote_server: str | None = None,
    user: str | None = None,
    key: str | None = None,
    known_hosts: str | None = None,
    local_endpoint: str | None = None,
    remote_endpoint: str | None = None,
    serial: bool = False,
    log_level: LogLevel | None = None,
) -> TunnelConfig:
    """Environment config with command line overrides applied."""
    config = TunnelConfig.from_env()
    overrides: dict = {}

    if remote_server:
        overrides["REMOTE_SERVER"] = parse_endpoint(
            remote_server, "--server", DEFAULT_SSH_PORT
        )
    if user:
        overrides["REMOTE_SERVER_USER"] = user
    if key:
        overrides["REMOTE_SERVER_KEY"] = key
    if known_hosts:
        overrides["REMOTE_SERVER_KNOWN_HOSTS"] = known_hosts
    if local_endpoint:
        overrides["LOCAL_ENDPOINT"] = parse_endpoint(local_endpoint, "--local")
    if remote_endpoint:
        overrides["REMOTE_ENDPOINT"] = parse_endpoint(remote_endpoint, "--remote")
    if serial:
        overrides["RELAY_MODE"] = RelayMode.SERIAL
    if log_level is not None:
        overrides["LOG_LEVEL"] = log_level

    return dataclasses.replace(config, **overrides)


@app.command("run")
def run(
    remote_server: Annotated[
        str | None,
        typer.Option("--server", "-s", help="Relay host address (host[:port])"),
    ] = None,
    user: Annotated[
        str | None,
        typer.Option("--user", "-u", help="Username on the relay host"),
    ] = None,
    key: Annotated[
        str | None,
        typer.Option("--key", "-i", help="Private key file"),
    ] = None,
    known_hosts: Annotated[
        str | None,
        typer.Option("--known-hosts", help="known_hosts file pinning the relay host key"),
    ] = None,
    local_endpoint: Annotated[
        str | None,
        typer.Option("--local", "-l", help="Local service address (host:port)"),
    ] = None,
    remote_endpoint: Annotated[
        str | None,
        typer.Option("--remote", "-r", help="Listener address on the relay host"),
    ] = None,
    serial: Annotated[
        bool,
        typer.Option(
            "--serial",
            help="Relay one connection at a time instead of concurrently",
        ),
    ] = False,
    log_level: Annotated[
        LogLevel | None,
        typer.Option("--log-level", help="Logging verbosity"),
    ] = None,
):
    """
    Open the reverse tunnel.

    Connects to the relay host, clears any stale listener on the remote port,
    opens the remote listener and relays every accepted connection to the
    local endpoint. Runs until interrupted or a fatal error occurs.
    """
    from rtunnel.app import main

    try:
        config = _build_config(
            remote_server,
            user,
            key,
            known_hosts,
            local_endpoint,
            remote_endpoint,
            serial,
            log_level,
        )
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(1)

    configure_logging(config.LOG_LEVEL)
    status = main(config)
    if status != 0:
        print_error("rtunnel stopped after a fatal error, see log above.")
        raise typer.Exit(status)


@app.command("config")
def show_config():
    """Show the effective configuration from the environment."""
    try:
        config = TunnelConfig.from_env()
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(1)

    table = Table(title="rtunnel configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in config.describe():
        table.add_row(name, value)
    table.add_row("reapCommand", config.get_reap_command())
    table.add_row("logLevel", config.LOG_LEVEL.value)
    console.print(table)


@app.command("version")
def version():
    """Show version information."""
    from rtunnel import __version__

    console.print(f"rtunnel v{__version__}")


def run_cli():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run_cli()
