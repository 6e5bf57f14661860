"""Command-line front end for the Google Calendar driver.

Stands in for the host application's action handlers: every command builds
a driver for one host user, runs a single operation and prints JSON.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

import click

from gcal_driver import __version__
from gcal_driver.config import ConfigError, DriverConfig, load_config
from gcal_driver.core.logging import configure_logging
from gcal_driver.db import Database
from gcal_driver.driver import GoogleDriver
from gcal_driver.models import SELECTED_CALENDARS_PREF, UserContext

T = TypeVar("T")


def _load(config_path: Path | None) -> DriverConfig:
    try:
        return load_config(config_path) if config_path is not None else DriverConfig.from_env()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _parse_instant(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise click.BadParameter(f"expected an ISO 8601 date or datetime, got {value!r}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


async def _with_driver(
    ctx_obj: dict[str, Any],
    action: Callable[[GoogleDriver], Awaitable[T]],
) -> T:
    config: DriverConfig = ctx_obj["config"]
    database = Database.from_config(config.db)
    pool = await database.connect()
    try:
        async with GoogleDriver(user=ctx_obj["user"], config=config, pool=pool) as driver:
            return await action(driver)
    finally:
        await database.close()


def _run(ctx: click.Context, action: Callable[[GoogleDriver], Awaitable[T]]) -> T:
    return asyncio.run(_with_driver(ctx.obj, action))


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to gcal.toml (or its directory). Defaults to environment variables.",
)
@click.option("--user", "user_id", type=int, required=True, help="Host user id")
@click.option(
    "--selected",
    multiple=True,
    help="Selected calendar id (google:<id>); repeat for several",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    user_id: int,
    selected: tuple[str, ...],
) -> None:
    """Overlay a user's Google calendars read-only."""
    config = _load(config_path)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_file=Path(config.logging.file) if config.logging.file else None,
    )
    prefs: dict[str, Any] = {SELECTED_CALENDARS_PREF: list(selected)} if selected else {}
    ctx.obj = {"config": config, "user": UserContext(user_id=user_id, prefs=prefs)}


@cli.command("auth-url")
@click.pass_context
def auth_url(ctx: click.Context) -> None:
    """Print the Google consent URL."""

    async def action(driver: GoogleDriver) -> str | None:
        return driver.begin_authorization()

    url = _run(ctx, action)
    if url is None:
        raise click.ClickException("Google OAuth client is not configured")
    click.echo(url)


@cli.command()
@click.argument("code")
@click.pass_context
def callback(ctx: click.Context, code: str) -> None:
    """Exchange an authorization CODE and store the token."""

    async def action(driver: GoogleDriver) -> dict[str, Any]:
        result = await driver.handle_callback(code)
        return result.model_dump()

    result = _run(ctx, action)
    _echo_json(result)
    if not result["ok"]:
        sys.exit(1)


@cli.command()
@click.pass_context
def calendars(ctx: click.Context) -> None:
    """List the connected account's calendars."""

    async def action(driver: GoogleDriver) -> dict[str, Any]:
        listed = await driver.list_calendars()
        return {key: descriptor.model_dump() for key, descriptor in listed.items()}

    _echo_json(_run(ctx, action))


@cli.command()
@click.option("--start", "start_raw", required=True, help="Range start (ISO 8601)")
@click.option("--end", "end_raw", required=True, help="Range end (ISO 8601)")
@click.option("--query", default=None, help="Free-text filter")
@click.option("--calendar", "calendar_ids", multiple=True, help="Calendar id; repeatable")
@click.pass_context
def events(
    ctx: click.Context,
    start_raw: str,
    end_raw: str,
    query: str | None,
    calendar_ids: tuple[str, ...],
) -> None:
    """List events between --start and --end."""
    start = _parse_instant(start_raw)
    end = _parse_instant(end_raw)

    async def action(driver: GoogleDriver) -> list[dict[str, Any]]:
        loaded = await driver.load_events(start, end, query, list(calendar_ids) or None)
        return [event.to_host_dict() for event in loaded]

    _echo_json(_run(ctx, action))


@cli.command()
@click.option("--start", "start_raw", required=True, help="Range start (ISO 8601)")
@click.option("--end", "end_raw", default=None, help="Range end (default: start + 1 day)")
@click.option("--calendar", "calendar_ids", multiple=True, help="Calendar id; repeatable")
@click.pass_context
def count(
    ctx: click.Context,
    start_raw: str,
    end_raw: str | None,
    calendar_ids: tuple[str, ...],
) -> None:
    """Count events from --start (to --end, or one day later)."""
    start = _parse_instant(start_raw)
    end = _parse_instant(end_raw) if end_raw is not None else None

    async def action(driver: GoogleDriver) -> int:
        return await driver.count_events(list(calendar_ids) or None, start, end)

    _echo_json({"count": _run(ctx, action)})


@cli.command()
@click.argument("event_id")
@click.pass_context
def event(ctx: click.Context, event_id: str) -> None:
    """Show one event by its google:<calendar>:<event> id."""

    async def action(driver: GoogleDriver) -> dict[str, Any] | None:
        found = await driver.get_event(event_id)
        return found.to_host_dict() if found is not None else None

    found = _run(ctx, action)
    if found is None:
        raise click.ClickException(f"Event not found: {event_id}")
    _echo_json(found)


@cli.command()
@click.pass_context
def disconnect(ctx: click.Context) -> None:
    """Forget the stored Google token."""

    async def action(driver: GoogleDriver) -> None:
        await driver.disconnect()

    _run(ctx, action)
    click.echo("Disconnected.")


if __name__ == "__main__":
    cli()
