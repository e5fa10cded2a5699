"""ado-mcp CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import typer

from ado_mcp.shared.settings import AdoSettings, ConfigError, load_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

app = typer.Typer(add_completion=False, help="ado-mcp: Azure DevOps MCP server")


def configure_logging(level: str) -> None:
    # stdout carries the MCP protocol; every log line goes to stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )


def _load_or_exit(env_file: Path | None) -> AdoSettings:
    try:
        return load_settings(env_file)
    except ConfigError as exc:
        for error in exc.errors:
            typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def serve(
    env_file: Path = typer.Option(Path(".env"), "--env-file", help="dotenv file to load"),
) -> None:
    """Run the MCP server over stdio."""
    from ado_mcp.server.app import create_server

    settings = _load_or_exit(env_file)
    configure_logging(settings.log_level)
    mcp = create_server(settings)
    logging.getLogger(__name__).info("Azure DevOps MCP server started")
    mcp.run(transport="stdio", show_banner=False)


@app.command("check-config")
def check_config(
    env_file: Path = typer.Option(Path(".env"), "--env-file", help="dotenv file to load"),
) -> None:
    """Print the resolved configuration with the PAT redacted."""
    settings = _load_or_exit(env_file)
    typer.echo(settings.to_json())


if __name__ == "__main__":
    app()
