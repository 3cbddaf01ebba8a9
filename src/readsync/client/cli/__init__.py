"""Command-line interface for readsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- config rest|postgrest|show: Configure sync backends
- engine: Show or select the active sync engine
- sync: Synchronize the library with the active engine
- push: Upload the whole local library
- status: Show engine, library size and cursors
"""

from __future__ import annotations

import logging

import click

from readsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_database_path,
    load_config,
    save_config,
)
from readsync.client.cli.engine import config_group, engine
from readsync.client.cli.sync import push, status
from readsync.client.cli.sync import sync as sync_command


@click.group()
@click.version_option(package_name="readsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """readsync - Library and reading progress synchronization."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger = logging.getLogger("readsync")
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


# Backend commands
cli.add_command(config_group)
cli.add_command(engine)

# Sync commands
cli.add_command(sync_command)
cli.add_command(push)
cli.add_command(status)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "get_database_path",
    "load_config",
    "save_config",
]
