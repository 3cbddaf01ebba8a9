"""Backend configuration commands for the readsync CLI.

Commands:
- config rest: Store REST server credentials
- config postgrest: Store managed-database credentials
- config show: Print the stored configuration (secrets masked)
- engine: Show or select the active sync engine
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any

import click

from readsync.client.cli.config import build_selector, load_config, open_store, save_config

SECRET_FIELDS = {"password", "api_key", "refresh_token", "access_token"}


def _mask(section: dict[str, Any]) -> dict[str, Any]:
    return {k: ("****" if k in SECRET_FIELDS and v else v) for k, v in section.items()}


@click.group("config")
def config_group() -> None:
    """Configure sync backends."""


@config_group.command("rest")
@click.option("--url", "server_url", required=True, help="Server base URL.")
@click.option("--email", required=True, help="Account email.")
@click.password_option("--password", confirmation_prompt=False, help="Account password.")
@click.option("--insecure", is_flag=True, help="Skip SSL certificate verification.")
def config_rest(server_url: str, email: str, password: str, insecure: bool) -> None:
    """Store credentials for the REST server."""
    config = load_config()
    config["rest"] = {
        "server_url": server_url.rstrip("/"),
        "email": email,
        "password": password,
        "verify_ssl": not insecure,
    }
    save_config(config)
    click.echo(f"REST backend configured for {server_url}")


@config_group.command("postgrest")
@click.option("--url", required=True, help="Project URL.")
@click.option("--api-key", required=True, help="Public API key.")
@click.option("--refresh-token", required=True, help="Session refresh token.")
@click.option("--user-id", required=True, help="Owning user id.")
def config_postgrest(url: str, api_key: str, refresh_token: str, user_id: str) -> None:
    """Store credentials for the managed database."""
    config = load_config()
    config["postgrest"] = {
        "url": url.rstrip("/"),
        "api_key": api_key,
        "refresh_token": refresh_token,
        "user_id": user_id,
    }
    save_config(config)
    click.echo(f"Managed database backend configured for {url}")


@config_group.command("show")
def config_show() -> None:
    """Print the stored configuration."""
    config = load_config()
    if not config:
        click.echo("No configuration.")
        return
    for name, section in config.items():
        click.echo(f"[{name}]")
        if isinstance(section, dict):
            for key, value in _mask(section).items():
                click.echo(f"  {key} = {value}")
        else:
            click.echo(f"  {section}")


@click.command()
@click.argument("name", required=False)
def engine(name: str | None) -> None:
    """Show the active sync engine, or select NAME ("none" disables sync).

    Selecting an engine forces a full reconciliation on the next sync.
    """
    store = open_store()
    selector = build_selector(store)
    try:
        if name is None:
            click.echo(f"Active engine: {selector.active_id or 'none'}")
            available = ", ".join(sorted(selector.backends)) or "none configured"
            click.echo(f"Available: {available}")
            return

        target = None if name.lower() == "none" else name
        try:
            selector.select(target)
        except KeyError:
            click.echo(
                f"Error: Unknown engine '{name}'. Configure it with 'readsync config'.", err=True
            )
            sys.exit(1)
        click.echo(f"Active engine: {target or 'none'}")
    finally:
        asyncio.run(selector.aclose())
        store.close()
