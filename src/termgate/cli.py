"""CLI entry point for termgate."""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.prompt import Confirm

from termgate import __version__
from termgate.config import TermgateConfig

app = typer.Typer(
    name="termgate",
    help="Websocket gateway to interactive shells bound to project workspaces.",
    no_args_is_help=True,
)

console = Console(stderr=True)


def setup_logging(verbose: bool = False, default_level: int = logging.INFO) -> None:
    level = logging.DEBUG if verbose else default_level
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Address to bind."),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind."),
    projects_root: str | None = typer.Option(
        None, "--projects-root", help="Directory whose subdirectories are projects."
    ),
    shell: str | None = typer.Option(None, "--shell", help="Shell binary to spawn."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Path to a JSON config file."
    ),
) -> None:
    """Run the terminal gateway server."""
    import uvicorn

    from termgate.server import create_app

    setup_logging(verbose)
    config = TermgateConfig.load(config_file)
    if host:
        config.server.host = host
    if port:
        config.server.port = port
    if projects_root:
        config.server.projects_root = projects_root
    if shell:
        config.server.shell = shell

    if not config.server.tokens and config.server.anonymous_user is None:
        typer.echo(
            "Warning: no tokens configured and anonymous access is off; "
            "every terminal connection will be rejected.",
            err=True,
        )

    typer.echo(f"termgate v{__version__}")
    typer.echo(f"Projects: {config.server.projects_root}")
    typer.echo(f"Listening on {config.server.host}:{config.server.port}")

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if verbose else "info",
    )


@app.command()
def connect(
    project: str = typer.Argument(help="Project to open a terminal in."),
    server_url: str | None = typer.Option(
        None, "--server", "-s", help="Gateway HTTP URL, e.g. http://host:3001."
    ),
    token: str | None = typer.Option(None, "--token", "-t", help="Auth token."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Path to a JSON config file."
    ),
) -> None:
    """Open an interactive terminal on a project."""
    # Log lines would tear through the raw-mode terminal; keep them quiet
    setup_logging(verbose, default_level=logging.WARNING)
    config = TermgateConfig.load(config_file)
    server_url = server_url or config.client.server_url
    token = token or config.client.token

    asyncio.run(_run_terminal(server_url, project, token))


async def _run_terminal(server_url: str, project: str, token: str | None) -> None:
    from termgate.client import (
        DisconnectReason,
        RawTerminalSurface,
        TerminalClient,
        terminal_url,
    )

    url = await terminal_url(server_url, project, token)
    console.print(f"[dim]Connecting to {project} at {server_url} ...[/dim]")

    client: TerminalClient | None = None
    while True:
        with RawTerminalSurface() as surface:
            if client is None:
                client = TerminalClient(url, surface)
                reason = await client.run()
            else:
                client.surface = surface
                reason = await client.reconnect()

        if reason is DisconnectReason.LOCAL:
            break
        if not Confirm.ask("Reconnect?", console=console):
            break


@app.command()
def version() -> None:
    """Print the termgate version."""
    typer.echo(f"termgate v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
