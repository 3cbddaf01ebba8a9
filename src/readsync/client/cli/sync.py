"""Sync commands for the readsync CLI.

Commands:
- sync: Reconcile the local library with the active engine, once or on an
  interval with --watch
- push: Upload the whole local library to the active engine
- status: Show the active engine, library size and sync cursors
"""

from __future__ import annotations

import asyncio
import sys

import click

from readsync.client.cli.config import build_selector, open_store
from readsync.client.notifications import Notification, NotificationCenter
from readsync.client.sync import (
    EngineSelector,
    PeriodicSync,
    SyncCoordinator,
    SyncEvent,
    SyncEventType,
    SyncReport,
)
from readsync.core.errors import ReadSyncError
from readsync.core.types import EntityKind

KIND_CHOICE = click.Choice([kind.value for kind in EntityKind])


def _kinds(kind: str | None) -> list[EntityKind]:
    return [EntityKind(kind)] if kind else list(EntityKind)


def _echo_notification(notification: Notification) -> None:
    click.echo(f"{notification.title}: {notification.message}", err=True)


def _echo_report(report: SyncReport) -> None:
    for result in report.results.values():
        line = (
            f"{result.kind.value}: {result.mode.value} "
            f"(pushed {result.pushed}, applied {result.applied}, deleted {result.deleted})"
        )
        if result.error:
            line += f" - error: {result.error}"
        click.echo(line)


def _echo_event(event: SyncEvent) -> None:
    if event.report is not None and event.event_type is not SyncEventType.STARTED:
        _echo_report(event.report)


async def _watch(selector: EngineSelector) -> None:
    """Sync every kind on the configured interval until interrupted."""
    interval = selector.settings.interval
    selector.on_sync_event(_echo_event)
    periodic = PeriodicSync(selector, interval)
    click.echo(f"\nSyncing every {interval:.0f} s... (Ctrl+C to stop)\n")
    try:
        periodic.start()
        await asyncio.Event().wait()
    finally:
        periodic.stop()


@click.command()
@click.option("--full", is_flag=True, help="Force a full reconciliation.")
@click.option("--kind", type=KIND_CHOICE, help="Only sync this entity kind.")
@click.option(
    "--watch", "-w", is_flag=True, help="Keep syncing on the configured interval."
)
def sync(full: bool, kind: str | None, watch: bool) -> None:
    """Synchronize the library with the active engine.

    Use --watch to keep syncing every kind in the background after the
    first pass.
    """
    notifier = NotificationCenter()
    notifier.subscribe(_echo_notification)
    store = open_store()
    selector = build_selector(store, notifier)

    async def run() -> SyncReport | None:
        try:
            report = await selector.sync(_kinds(kind), full=full)
            if watch and report is not None:
                _echo_report(report)
                await _watch(selector)
            return report
        finally:
            await selector.aclose()

    try:
        if selector.active is None:
            click.echo("Error: No sync engine selected. Run 'readsync engine NAME' first.", err=True)
            sys.exit(1)
        try:
            report = asyncio.run(run())
        except KeyboardInterrupt:
            click.echo("\nStopping...")
            return
    finally:
        store.close()

    if report is None:
        click.echo("Error: The active engine is not configured.", err=True)
        sys.exit(1)
    _echo_report(report)
    if not report.ok:
        sys.exit(1)


@click.command()
@click.option("--kind", type=KIND_CHOICE, help="Only push this entity kind.")
def push(kind: str | None) -> None:
    """Upload the whole local library to the active engine."""
    store = open_store()
    selector = build_selector(store)
    coordinator = selector.coordinator()

    async def run(coordinator: SyncCoordinator) -> dict[EntityKind, int]:
        try:
            return {k: await coordinator.push_all(k) for k in _kinds(kind)}
        finally:
            await selector.aclose()

    try:
        if coordinator is None:
            click.echo("Error: No sync engine selected. Run 'readsync engine NAME' first.", err=True)
            sys.exit(1)
        try:
            counts = asyncio.run(run(coordinator))
        except ReadSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    finally:
        store.close()

    for k, count in counts.items():
        click.echo(f"{k.value}: pushed {count}")


@click.command()
def status() -> None:
    """Show the active engine, library size and sync cursors."""
    store = open_store()
    selector = build_selector(store)
    try:
        active = selector.active_id
        click.echo(f"Engine: {active or 'none'}")
        click.echo(f"Saved entries: {len(store.list_saved())}")
        click.echo(f"Progress records: {len(store.list_progress())}")
        last_sync = store.get_last_sync_at()
        click.echo(f"Last sync: {last_sync.isoformat() if last_sync else 'never'}")
        if active is not None:
            for kind in EntityKind:
                cursor = store.get_cursor(active, kind)
                shown = cursor.isoformat() if cursor else "none (next sync is full)"
                click.echo(f"Cursor {kind.value}: {shown}")
    finally:
        asyncio.run(selector.aclose())
        store.close()
