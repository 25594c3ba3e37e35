"""Command line tools for inspecting a file-backed durable cache tier."""

import os
from typing import Optional

import typer
from dotenv import load_dotenv

from shopcache.config import CacheConfig, load_config, load_config_from_env
from shopcache.core.cache import CacheStore
from shopcache.infrastructure.storage import FileStorage
from shopcache.logger import get_logger, setup_logger

logger = get_logger("cli")

cli = typer.Typer(
    name="shopcache",
    help="Inspect and maintain the persistent shopcache tier",
    epilog="""
    Examples:
    $ shopcache stats --dir ~/.shopcache
    $ SHOPCACHE_STORAGE_DIR=~/.shopcache shopcache purge
    """,
    add_completion=False,
)


def _open_store(storage_dir: Optional[str], config_path: Optional[str]) -> CacheStore:
    load_dotenv()
    config: CacheConfig = load_config(config_path) if config_path else load_config_from_env(os.environ)
    directory = storage_dir or config.storage_dir
    if not directory:
        typer.echo("No storage directory: pass --dir or set SHOPCACHE_STORAGE_DIR", err=True)
        raise typer.Exit(code=2)
    return CacheStore(
        capacity=config.capacity,
        default_ttl=config.default_ttl,
        storage=FileStorage(directory),
        namespace=config.namespace,
    )


@cli.callback()
def main(
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    setup_logger(log_level="DEBUG" if debug else "WARNING", console_output=True)


@cli.command()
def stats(
    storage_dir: Optional[str] = typer.Option(None, "--dir", help="Durable storage directory"),
    config_path: Optional[str] = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Show how many records the durable tier holds."""
    store = _open_store(storage_dir, config_path)
    cache_stats = store.stats()
    typer.echo(f"durable entries: {cache_stats.durable_size}")
    typer.echo(f"capacity:        {cache_stats.capacity}")


@cli.command()
def purge(
    storage_dir: Optional[str] = typer.Option(None, "--dir", help="Durable storage directory"),
    config_path: Optional[str] = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Delete expired records."""
    store = _open_store(storage_dir, config_path)
    removed = store.purge_expired()
    logger.info(f"Purged {removed} expired records")
    typer.echo(f"purged {removed} expired entries")


@cli.command()
def clear(
    storage_dir: Optional[str] = typer.Option(None, "--dir", help="Durable storage directory"),
    config_path: Optional[str] = typer.Option(None, "--config", help="JSON configuration file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every cache record."""
    store = _open_store(storage_dir, config_path)
    if not yes:
        typer.confirm("Delete all cached entries?", abort=True)
    count = store.stats().durable_size
    store.clear()
    typer.echo(f"cleared {count} entries")


if __name__ == "__main__":
    cli()
