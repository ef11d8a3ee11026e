"""Main CLI entry point for the Steam Server Manager.

This module provides the command-line interface for installing, updating and
running Steam dedicated servers kept in a local server library.
"""

import asyncio
import json
import sys
import time
import traceback
from typing import List, Optional

import click
import structlog
import yaml

from . import __version__
from .config import ConfigurationError, Settings, configure_logging
from .management import (
    LibraryStore,
    ManagerListener,
    ServerError,
    ServerGame,
    ServerStatus,
    SteamServerManager,
)

logger = structlog.get_logger()

STATUS_EMOJI = {
    ServerStatus.NEW: "⚪",
    ServerStatus.WAITING: "🟡",
    ServerStatus.UPDATING: "🔵",
    ServerStatus.STOPPED: "⚫",
    ServerStatus.RUNNING: "🟢",
    ServerStatus.ERROR: "🔴",
}


class CLIError(Exception):
    """Base CLI error with user-friendly messages."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class CLIContext:
    """Global CLI context management."""

    def __init__(
        self,
        verbose: bool = False,
        quiet: bool = False,
        config_file: Optional[str] = None,
        library: Optional[str] = None,
    ):
        self.verbose = verbose
        self.quiet = quiet
        self.config_file = config_file
        self.library = library
        self.settings = self.load_settings()

    def load_settings(self) -> Settings:
        """Load settings from file and environment."""
        overrides = {}
        if self.library:
            overrides["library_root"] = self.library

        try:
            if self.config_file:
                return Settings.from_yaml(self.config_file, **overrides)
            return Settings(**overrides)
        except ConfigurationError as e:
            raise CLIError(
                f"Invalid configuration: {e.message}",
                "Check YAML syntax and setting names",
            )


class ConsoleListener(ManagerListener):
    """Echoes manager events to the terminal."""

    def __init__(self, verbose: bool = False, quiet: bool = False):
        self.verbose = verbose
        self.quiet = quiet

    def on_ready(self) -> None:
        if not self.quiet:
            click.echo("🟢 Server manager ready")

    def on_update_server(self, server_game: ServerGame) -> None:
        if not self.quiet:
            click.echo(f"⬇️  Updating {server_game.name} (app {server_game.app_id})")

    def on_steamcmd_stdout(self, line: str) -> None:
        if self.verbose:
            click.echo(f"   steamcmd: {line}")

    def on_status_steamcmd(self, phase: str, percent: float) -> None:
        if not self.quiet:
            click.echo(f"   {phase}: {percent:.2f}%")

    def on_server_start(self, server_game: ServerGame) -> None:
        if not self.quiet:
            click.echo(f"✅ Server started: {server_game.name}")

    def on_server_stopped(self, server_game: ServerGame) -> None:
        if not self.quiet:
            click.echo(f"🛑 Server stopped: {server_game.name}")

    def on_server_exception(self, server_game: ServerGame) -> None:
        click.echo(f"❌ Server failed: {server_game.name}", err=True)


def prompt_auth_code() -> str:
    """Ask the user for a Steam Guard code; empty input aborts the login."""
    return click.prompt(
        "Steam Guard code (leave empty to abort)", default="", show_default=False
    )


def handle_cli_error(error: Exception, ctx: Optional[click.Context] = None):
    """Global CLI error handler."""
    try:
        if isinstance(error, CLIError):
            click.echo(f"Error: {error.message}", err=True)
            if error.suggestion:
                click.echo(f"Suggestion: {error.suggestion}", err=True)
        elif isinstance(error, click.ClickException):
            error.show()
        else:
            verbose = False
            if ctx and ctx.obj:
                verbose = ctx.obj.get("verbose", False)

            click.echo(f"Unexpected error: {str(error)}", err=True)
            if verbose:
                click.echo(traceback.format_exc(), err=True)
            else:
                click.echo(
                    "Run with --verbose for detailed error information", err=True
                )

        sys.exit(1)
    except SystemExit:
        raise
    except Exception as handler_error:
        # Fallback if error handler itself fails
        click.echo(f"Critical error in error handler: {handler_error}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="steam-server-manager")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output with SteamCMD output and debug logging",
)
@click.option(
    "--quiet", "-q", is_flag=True, help="Enable quiet mode with minimal output"
)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path (YAML format)",
)
@click.option(
    "--library",
    "-l",
    type=click.Path(file_okay=False),
    help="Server library directory (overrides SSM_LIBRARY_ROOT)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    config: Optional[str],
    library: Optional[str],
):
    """Steam Server Manager

    Install, update and run Steam dedicated game servers from a local
    library. Installs and updates go through SteamCMD, one at a time.

    \b
    Examples:
      steam-server-manager create 740 csgo-1 "./srcds_run -game csgo"
      steam-server-manager list
      steam-server-manager update csgo-1
      steam-server-manager start csgo-1
      steam-server-manager run

    For detailed help on any command, use:
      steam-server-manager COMMAND --help
    """
    if verbose and quiet:
        raise click.BadParameter("Cannot use both --verbose and --quiet options")

    ctx.ensure_object(dict)
    try:
        cli_context = CLIContext(
            verbose=verbose, quiet=quiet, config_file=config, library=library
        )
    except CLIError as error:
        handle_cli_error(error, ctx)

    ctx.obj["cli_context"] = cli_context
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    settings = cli_context.settings
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "ERROR"
    else:
        level = settings.logging.level
    configure_logging(level, settings.logging.file_path, settings.logging.json_format)


@cli.command(name="list")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "yaml"]),
    default="table",
    help="Output format for the library",
)
@click.pass_context
def list_servers(ctx: click.Context, output_format: str):
    """Show the servers in the library.

    Reads the library manifest only; no server is started and SteamCMD is
    not invoked.

    \b
    Examples:
      steam-server-manager list
      steam-server-manager list --format json
    """
    try:
        cli_context = ctx.obj["cli_context"]
        store = LibraryStore(cli_context.settings.get_library_root())
        servers = asyncio.run(store.load())
        _display_library(servers, output_format)
    except Exception as error:
        _handle_server_error(error, ctx)


@cli.command()
@click.argument("app_id", type=int)
@click.argument("name")
@click.argument("start_script")
@click.option(
    "--no-wait",
    is_flag=True,
    help="Return once the install is queued instead of waiting for it",
)
@click.pass_context
def create(ctx: click.Context, app_id: int, name: str, start_script: str, no_wait: bool):
    """Add a server to the library and install it.

    \b
    APP_ID: Steam app id of the dedicated server
    NAME: Unique server name, also its install directory
    START_SCRIPT: Launch command, relative to the install directory

    \b
    Examples:
      steam-server-manager create 740 csgo-1 "./srcds_run -game csgo"
      steam-server-manager create 896660 valheim "./start_server.sh" --no-wait
    """
    try:
        cli_context = ctx.obj["cli_context"]
        asyncio.run(
            _create_command(app_id, name, start_script, not no_wait, cli_context)
        )
    except KeyboardInterrupt:
        click.echo("\n🛑 Install interrupted; it resumes on the next run")
    except Exception as error:
        _handle_server_error(error, ctx)


@cli.command()
@click.argument("name")
@click.option(
    "--no-wait",
    is_flag=True,
    help="Return once the update is queued instead of waiting for it",
)
@click.pass_context
def update(ctx: click.Context, name: str, no_wait: bool):
    """Update an installed server, stopping it first if needed.

    \b
    Examples:
      steam-server-manager update csgo-1
    """
    try:
        cli_context = ctx.obj["cli_context"]
        asyncio.run(_update_command(name, not no_wait, cli_context))
    except KeyboardInterrupt:
        click.echo("\n🛑 Update interrupted; it resumes on the next run")
    except Exception as error:
        _handle_server_error(error, ctx)


@cli.command()
@click.argument("name")
@click.pass_context
def start(ctx: click.Context, name: str):
    """Start a server and stay attached until Ctrl+C.

    The server is stopped when the command exits.

    \b
    Examples:
      steam-server-manager start csgo-1
    """
    try:
        cli_context = ctx.obj["cli_context"]
        asyncio.run(_start_command(name, cli_context))
    except KeyboardInterrupt:
        click.echo("\n🛑 Server stopped")
    except Exception as error:
        _handle_server_error(error, ctx)


@cli.command()
@click.pass_context
def run(ctx: click.Context):
    """Process pending installs and updates, echoing events until Ctrl+C.

    \b
    Examples:
      steam-server-manager --verbose run
    """
    try:
        cli_context = ctx.obj["cli_context"]
        asyncio.run(_run_command(cli_context))
    except KeyboardInterrupt:
        click.echo("\n🛑 Server manager stopped")
    except Exception as error:
        _handle_server_error(error, ctx)


def _create_manager(cli_context: CLIContext) -> SteamServerManager:
    return SteamServerManager(
        cli_context.settings,
        listener=ConsoleListener(cli_context.verbose, cli_context.quiet),
        auth_code_provider=prompt_auth_code,
    )


async def _create_command(
    app_id: int, name: str, start_script: str, wait: bool, cli_context: CLIContext
):
    """Execute create command asynchronously."""
    async with _create_manager(cli_context) as manager:
        await manager.wait_ready()
        server_game = await manager.new_server_game(app_id, name, start_script)
        click.echo(f"📦 Server created: {server_game.name} (ID: {server_game.id})")

        if not wait:
            click.echo("ℹ️  Install queued; run 'steam-server-manager run' to process it")
            return

        await manager.wait_until_idle()
        _display_update_result(manager.get_server(server_game.id))


async def _update_command(name: str, wait: bool, cli_context: CLIContext):
    """Execute update command asynchronously."""
    async with _create_manager(cli_context) as manager:
        await manager.wait_ready()
        server_game = _find_by_name(manager, name)
        await manager.update_server_game(server_game.id)
        click.echo(f"📦 Update queued: {server_game.name}")

        if not wait:
            return

        await manager.wait_until_idle()
        _display_update_result(manager.get_server(server_game.id))


async def _start_command(name: str, cli_context: CLIContext):
    """Execute start command asynchronously."""
    async with _create_manager(cli_context) as manager:
        await manager.wait_ready()
        server_game = _find_by_name(manager, name)
        properties = await manager.start_server(server_game.id)

        click.echo(f"🖥️  Server: {server_game.name} (ID: {server_game.id})")
        click.echo(f"   PID: {properties.pid}")
        click.echo("   Press Ctrl+C to stop")

        reported_address = False
        while manager.get_server(server_game.id).status == ServerStatus.RUNNING:
            if not reported_address:
                address = manager.get_server_properties(server_game.id).address
                if address:
                    click.echo(f"   Address: {address}")
                    reported_address = True
            await asyncio.sleep(1)

        final = manager.get_server(server_game.id)
        click.echo(f"   Status: {STATUS_EMOJI.get(final.status, '⚪')} {final.status.value}")


async def _run_command(cli_context: CLIContext):
    """Execute run command asynchronously."""
    async with _create_manager(cli_context) as manager:
        await manager.wait_ready()
        _display_library(manager.get_library(), "table")
        logger.info("Processing updates", library_root=str(manager.library_root))
        click.echo("🔄 Processing updates (Press Ctrl+C to stop)")
        while True:
            await asyncio.sleep(3600)


def _find_by_name(manager: SteamServerManager, name: str) -> ServerGame:
    for server_game in manager.get_library():
        if server_game.name == name:
            return server_game
    raise CLIError(
        f"No server named '{name}' in the library",
        "Run 'steam-server-manager list' to see available servers",
    )


def _display_update_result(server_game: ServerGame):
    if server_game.status == ServerStatus.ERROR:
        click.echo(f"❌ Update failed: {server_game.name}", err=True)
        click.echo("💡 Run with --verbose to see the SteamCMD output", err=True)
    else:
        click.echo(f"✅ Server up to date: {server_game.name}")


def _display_library(servers: List[ServerGame], output_format: str):
    """Display the library in the requested format."""
    if output_format == "json":
        click.echo(json.dumps({
            "timestamp": time.time(),
            "servers": [s.to_dict() for s in servers],
        }, indent=2))
    elif output_format == "yaml":
        click.echo(yaml.dump({
            "timestamp": time.time(),
            "servers": [s.to_dict() for s in servers],
        }, default_flow_style=False))
    else:
        _display_library_table(servers)


def _display_library_table(servers: List[ServerGame]):
    """Display the library in table format."""
    if not servers:
        click.echo("ℹ️  No servers in the library")
        return

    click.echo(f"🎮 Server Library - {len(servers)} server(s)")
    click.echo("=" * 80)

    for server_game in servers:
        status_emoji = STATUS_EMOJI.get(server_game.status, "⚪")
        click.echo(f"🖥️  Server: {server_game.name} (ID: {server_game.id})")
        click.echo(f"   Status: {status_emoji} {server_game.status.value}")
        click.echo(f"   App ID: {server_game.app_id} | Start: {server_game.start_script}")
        click.echo(f"   Last updated: {_format_last_updated(server_game.last_updated_at)}")
        click.echo("-" * 40)


def _format_last_updated(timestamp: Optional[float]) -> str:
    if timestamp is None:
        return "never"
    return f"{time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(timestamp))} ({_format_age(time.time() - timestamp)} ago)"


def _format_age(age_seconds: float) -> str:
    """Format an age in human-readable format."""
    if age_seconds < 60:
        return f"{age_seconds:.0f}s"
    elif age_seconds < 3600:
        return f"{age_seconds/60:.0f}m"
    elif age_seconds < 86400:
        hours = int(age_seconds // 3600)
        minutes = int((age_seconds % 3600) // 60)
        return f"{hours}h {minutes}m"
    else:
        days = int(age_seconds // 86400)
        hours = int((age_seconds % 86400) // 3600)
        return f"{days}d {hours}h"


def _handle_server_error(error: Exception, ctx: Optional[click.Context]):
    """Handle server management errors."""
    if isinstance(error, ServerError):
        click.echo(f"❌ {error.message}", err=True)
        if error.suggestion:
            click.echo(f"💡 {error.suggestion}", err=True)
        if error.details and ctx and ctx.obj.get("verbose"):
            click.echo("\n📋 Error details:", err=True)
            for key, value in error.details.items():
                click.echo(f"   {key}: {value}", err=True)
        sys.exit(1)
    else:
        handle_cli_error(error, ctx)


if __name__ == "__main__":
    cli()
