"""Async client for the tonga stored functions.

The client only marshals arguments, calls the ``tonga_*`` functions and
decodes their rows. Queueing, visibility and garbage collection happen in
the database (see :mod:`tonga.schema`).
"""

from __future__ import annotations

import json
import math
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from tonga.errors import MessageEncodingError
from tonga.logging import get_logger
from tonga.models import Channel, ChannelOptions, Message, SendOptions, validate_channel_name

log = get_logger("tonga.client")

# ---------------------------------------------------------------------------
# SQL templates
# ---------------------------------------------------------------------------
_CREATE_CHANNEL_SQL = (
    "select * from tonga_create_channel(queue_name => $1, topic => $2, unlogged => $3);"
)
_CREATE_CHANNEL_DELETE_AT_SQL = (
    "select * from tonga_create_channel("
    "queue_name => $1, topic => $2, delete_at => $3, unlogged => $4);"
)
_DELETE_CHANNEL_SQL = "select * from tonga_delete_channel(queue_name => $1);"
_LIST_CHANNELS_SQL = "select * from tonga_list_channels();"
_SEND_SQL = "select * from tonga_send(topic => $1, body => $2::jsonb);"
_SEND_DELIVER_AT_SQL = (
    "select * from tonga_send(topic => $1, body => $2::jsonb, deliver_at => $3);"
)
_READ_SQL = "select * from tonga_read(queue_name => $1, quantity => $2, hide_for => $3);"
_DELETE_SQL = "select * from tonga_delete(queue_name => $1, id => $2);"
_GC_SQL = "select * from tonga_gc();"


class Connection(Protocol):
    """The subset of the asyncpg API the client needs.

    Satisfied by ``asyncpg.Pool``, ``asyncpg.Connection`` and a connection
    inside ``conn.transaction()``.
    """

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str: ...

    async def fetch(self, query: str, *args: Any, timeout: float | None = None) -> list[Any]: ...

    async def fetchrow(self, query: str, *args: Any, timeout: float | None = None) -> Any: ...

    async def fetchval(
        self, query: str, *args: Any, column: int = 0, timeout: float | None = None
    ) -> Any: ...


def _aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so ``timestamptz`` parameters are unambiguous."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _seconds(hide_for: timedelta | float) -> float:
    if isinstance(hide_for, timedelta):
        return hide_for.total_seconds()
    return float(hide_for)


def encode_body(body: Any) -> str:
    """Serialise a message body to JSON text."""
    try:
        return json.dumps(body)
    except (TypeError, ValueError) as exc:
        raise MessageEncodingError(f"Message body is not JSON serialisable: {exc}") from exc


class Client:
    """Thin binding over the tonga stored functions.

    Holds no state besides the connection, so one client can be shared by
    any number of tasks when it wraps a pool. Wrap a transaction's
    connection instead to make sends and deletes part of that transaction.
    Database errors are not caught.
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    @property
    def conn(self) -> Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def create_channel(
        self,
        name: str,
        topic: str,
        opts: ChannelOptions | None = None,
    ) -> bool:
        """Create channel *name* subscribed to *topic*.

        Args:
            name: Channel (queue) name.
            topic: Routing key; messages sent to this topic land here.
            opts: Optional deletion deadline and storage mode.

        Returns:
            ``True`` if the channel was created, ``False`` if a channel of
            that name already existed (it is left untouched).

        Raises:
            InvalidChannelNameError: *name* is not a valid channel name.
        """
        validate_channel_name(name)
        opts = opts or ChannelOptions()
        if opts.delete_at is None:
            created = await self._conn.fetchval(_CREATE_CHANNEL_SQL, name, topic, opts.unlogged)
        else:
            created = await self._conn.fetchval(
                _CREATE_CHANNEL_DELETE_AT_SQL,
                name,
                topic,
                _aware(opts.delete_at),
                opts.unlogged,
            )
        log.debug(
            "channel_created" if created else "channel_exists",
            channel=name,
            topic=topic,
            unlogged=opts.unlogged,
            delete_at=opts.delete_at.isoformat() if opts.delete_at else None,
        )
        return bool(created)

    async def delete_channel(self, name: str) -> bool:
        """Drop channel *name* and its messages.

        Returns:
            Whether the channel existed.
        """
        existed = await self._conn.fetchval(_DELETE_CHANNEL_SQL, name)
        log.debug("channel_deleted", channel=name, existed=bool(existed))
        return bool(existed)

    async def list_channels(self) -> list[Channel]:
        """Return every registered channel, ordered by name."""
        rows = await self._conn.fetch(_LIST_CHANNELS_SQL)
        return [Channel.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send(self, topic: str, body: Any, opts: SendOptions | None = None) -> int:
        """Publish *body* to every channel subscribed to *topic*.

        Args:
            topic: Routing key.
            body: Any JSON-serialisable value.
            opts: ``deliver_at`` defers visibility until that time.

        Returns:
            Number of channels the message was copied into.

        Raises:
            MessageEncodingError: *body* cannot be serialised.
        """
        payload = encode_body(body)
        opts = opts or SendOptions()
        if opts.deliver_at is None:
            delivered = await self._conn.fetchval(_SEND_SQL, topic, payload)
        else:
            delivered = await self._conn.fetchval(
                _SEND_DELIVER_AT_SQL, topic, payload, _aware(opts.deliver_at)
            )
        delivered = int(delivered or 0)
        log.debug("message_sent", topic=topic, channels=delivered)
        return delivered

    async def read(
        self,
        queue: str,
        quantity: int,
        hide_for: timedelta | float,
    ) -> list[Message]:
        """Claim up to *quantity* visible messages from *queue*.

        Each returned message stays hidden for *hide_for*; if it is not
        deleted by then it becomes visible again and will be redelivered.

        Args:
            queue: Channel name.
            quantity: Maximum number of messages (at least 1).
            hide_for: Visibility timeout, as a ``timedelta`` or seconds.

        Returns:
            Messages ordered by id (oldest first). Empty if none are due.
        """
        if quantity < 1:
            raise ValueError(f"quantity must be at least 1, got {quantity}")
        seconds = _seconds(hide_for)
        if not (math.isfinite(seconds) and seconds >= 0):
            raise ValueError(f"hide_for must be a finite, non-negative duration, got {seconds}")

        rows = await self._conn.fetch(_READ_SQL, queue, quantity, seconds)
        messages = [Message.from_row(row) for row in rows]
        if messages:
            log.debug(
                "messages_read",
                channel=queue,
                count=len(messages),
                hide_for_seconds=seconds,
            )
        return messages

    async def delete(self, queue: str, message_id: int) -> bool:
        """Acknowledge message *message_id* in *queue*.

        Returns:
            Whether the message existed.
        """
        existed = await self._conn.fetchval(_DELETE_SQL, queue, message_id)
        log.debug("message_deleted", channel=queue, message_id=message_id, existed=bool(existed))
        return bool(existed)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def gc(self) -> int:
        """Drop channels whose ``delete_at`` has passed.

        Returns:
            Number of channels reclaimed.
        """
        reclaimed = int(await self._conn.fetchval(_GC_SQL) or 0)
        if reclaimed > 0:
            log.info("gc_completed", channels_reclaimed=reclaimed)
        return reclaimed
