"""Catalog Replay CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.logging import RichHandler

from catalog_replay.cli.collect import collect_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

__version__ = "0.1.0"

app = typer.Typer(
    name="catalog-replay",
    help="Catalog Replay - replays an append-only package catalog to downstream consumers",
    add_completion=False,
)
app.add_typer(collect_app, name="collect")


def _setup_logging(verbose: bool) -> None:
    """Setup logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Catalog Replay command line."""
    _setup_logging(verbose)


@app.command()
def version() -> None:
    """Show the Catalog Replay version."""
    typer.echo(f"Catalog Replay v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from catalog_replay.collector.jobs import build_storage
    from catalog_replay.collector.registry import get_default_registry
    from catalog_replay.core.errors import CatalogReplayError

    typer.echo("Catalog Replay Configuration")
    typer.echo("=" * 40)

    # Check .env file
    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    try:
        registry = get_default_registry()
    except (CatalogReplayError, OSError) as e:
        typer.echo(f"  Collectors config: invalid ({e})")
        raise typer.Exit(1)

    if registry.config_path is None:
        typer.echo(f"  Collectors config: Not found ({os.environ.get('CATALOG_CONFIG_PATH', 'config/collectors.yaml')})")
    else:
        typer.echo(f"  Collectors config: {registry.config_path}")
    typer.echo(
        f"  Collectors: {len(registry.list_collectors())} configured, "
        f"{len(registry.list_enabled_collectors())} enabled"
    )

    storage = build_storage(registry.global_config)
    typer.echo(f"  Cursor storage: {storage.base_path}")
    typer.echo(f"  Redis: {os.environ.get('REDIS_HOST', 'localhost')}:{os.environ.get('REDIS_PORT', '6379')}")


if __name__ == "__main__":
    app()
