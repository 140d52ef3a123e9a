"""Command-line interface for tonga."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-not-found,import-untyped]
import click  # type: ignore[import-not-found]

from tonga.client import Client
from tonga.config import get_settings
from tonga.consumer import Collector
from tonga.db import create_pool
from tonga.errors import TongaError
from tonga.logging import setup_logging
from tonga.models import ChannelOptions, SendOptions
from tonga.schema import install_schema

T = TypeVar("T")


def _run(dsn: str | None, action: Callable[[Client], Awaitable[T]]) -> T:
    """Open a pool, run *action* with a client, close the pool."""

    async def _main() -> T:
        pool = await create_pool(dsn)
        try:
            return await action(Client(pool))
        finally:
            await pool.close()

    try:
        return asyncio.run(_main())
    except (TongaError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    except (asyncpg.PostgresError, OSError) as exc:
        raise click.ClickException(f"Database error: {exc}") from exc


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}") from exc


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()  # type: ignore[misc]
@click.option("--dsn", envvar="TONGA_POSTGRES_DSN", default=None, help="PostgreSQL DSN")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def main(ctx: click.Context, dsn: str | None) -> None:
    """tonga: message queues inside PostgreSQL."""
    setup_logging()
    ctx.obj = {"dsn": dsn}


@main.command()  # type: ignore[misc]
@click.pass_obj  # type: ignore[misc]
def install(obj: dict[str, Any]) -> None:
    """Install or upgrade the tonga tables and stored functions."""
    _run(obj["dsn"], lambda client: install_schema(client.conn))
    click.echo("Schema installed.")


@main.command("create-channel")  # type: ignore[misc]
@click.argument("name")  # type: ignore[misc]
@click.argument("topic")  # type: ignore[misc]
@click.option("--delete-at", default=None, help="ISO-8601 time after which GC drops the channel")  # type: ignore[misc]
@click.option("--unlogged", is_flag=True, help="Store messages in an UNLOGGED table")  # type: ignore[misc]
@click.pass_obj  # type: ignore[misc]
def create_channel(
    obj: dict[str, Any], name: str, topic: str, delete_at: str | None, unlogged: bool
) -> None:
    """Create channel NAME subscribed to TOPIC."""
    opts = ChannelOptions(delete_at=_parse_time(delete_at), unlogged=unlogged)
    created = _run(obj["dsn"], lambda client: client.create_channel(name, topic, opts))
    click.echo(f"Channel {name} created." if created else f"Channel {name} already exists.")


@main.command("delete-channel")  # type: ignore[misc]
@click.argument("name")  # type: ignore[misc]
@click.pass_obj  # type: ignore[misc]
def delete_channel(obj: dict[str, Any], name: str) -> None:
    """Delete channel NAME and its messages."""
    existed = _run(obj["dsn"], lambda client: client.delete_channel(name))
    click.echo(f"Channel {name} deleted." if existed else f"Channel {name} not found.")


@main.command()  # type: ignore[misc]
@click.pass_obj  # type: ignore[misc]
def channels(obj: dict[str, Any]) -> None:
    """List channels."""
    result = _run(obj["dsn"], lambda client: client.list_channels())
    _echo_json([channel.to_dict() for channel in result])


@main.command()  # type: ignore[misc]
@click.argument("topic")  # type: ignore[misc]
@click.argument("body")  # type: ignore[misc]
@click.option("--deliver-at", default=None, help="ISO-8601 time the message becomes visible")  # type: ignore[misc]
@click.pass_obj  # type: ignore[misc]
def send(obj: dict[str, Any], topic: str, body: str, deliver_at: str | None) -> None:
    """Send BODY (a JSON document) to TOPIC."""
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"BODY is not valid JSON: {exc}") from exc
    opts = SendOptions(deliver_at=_parse_time(deliver_at))
    delivered = _run(obj["dsn"], lambda client: client.send(topic, payload, opts))
    click.echo(f"Delivered to {delivered} channel(s).")


@main.command()  # type: ignore[misc]
@click.argument("queue")  # type: ignore[misc]
@click.option("--quantity", "-n", type=int, default=None, help="Maximum messages to read")  # type: ignore[misc]
@click.option("--hide-for", type=float, default=None, help="Visibility timeout in seconds")  # type: ignore[misc]
@click.pass_obj  # type: ignore[misc]
def read(obj: dict[str, Any], queue: str, quantity: int | None, hide_for: float | None) -> None:
    """Read messages from QUEUE and hide them for the visibility timeout."""
    settings = get_settings()
    n = quantity if quantity is not None else settings.default_read_quantity
    hide = hide_for if hide_for is not None else settings.default_hide_for_seconds
    messages = _run(obj["dsn"], lambda client: client.read(queue, n, hide))
    _echo_json([message.to_dict() for message in messages])


@main.command()  # type: ignore[misc]
@click.argument("queue")  # type: ignore[misc]
@click.argument("message_id", type=int)  # type: ignore[misc]
@click.pass_obj  # type: ignore[misc]
def delete(obj: dict[str, Any], queue: str, message_id: int) -> None:
    """Delete message MESSAGE_ID from QUEUE."""
    existed = _run(obj["dsn"], lambda client: client.delete(queue, message_id))
    click.echo(f"Message {message_id} deleted." if existed else f"Message {message_id} not found.")


@main.command()  # type: ignore[misc]
@click.pass_obj  # type: ignore[misc]
def gc(obj: dict[str, Any]) -> None:
    """Reclaim channels past their delete-at time."""
    reclaimed = _run(obj["dsn"], lambda client: client.gc())
    click.echo(f"Reclaimed {reclaimed} channel(s).")


@main.command()  # type: ignore[misc]
@click.option("--interval", type=float, default=None, help="Seconds between runs")  # type: ignore[misc]
@click.pass_obj  # type: ignore[misc]
def collect(obj: dict[str, Any], interval: float | None) -> None:
    """Run garbage collection in a loop until interrupted."""
    click.echo("Collecting (Ctrl+C to stop)")

    async def _forever(client: Client) -> None:
        collector = Collector(client, interval=interval)
        await collector.start()
        try:
            await asyncio.Event().wait()
        finally:
            await collector.stop()

    try:
        _run(obj["dsn"], _forever)
    except KeyboardInterrupt:
        click.echo("Stopped.")
