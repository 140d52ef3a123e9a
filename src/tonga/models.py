"""Channel and message models.

A channel is a named queue subscribed to one topic. Messages sent to a
topic are copied into every subscribed channel, become visible once
``deliver_at`` has passed, and are hidden for ``hide_for`` each time they
are read until a consumer deletes them.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from tonga.errors import InvalidChannelNameError

# Queue tables are named ``tonga_q_<name>``; keep the result a plain identifier
# well under Postgres' 63-byte limit.
CHANNEL_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]{0,47}$")


def validate_channel_name(name: str) -> str:
    """Return *name* unchanged, or raise :class:`InvalidChannelNameError`."""
    if not isinstance(name, str) or not CHANNEL_NAME_RE.match(name):
        raise InvalidChannelNameError(str(name))
    return name


@dataclass(frozen=True)
class ChannelOptions:
    """Options for :meth:`tonga.client.Client.create_channel`.

    Attributes:
        delete_at: When set, the garbage collector drops the channel (and
            its messages) once this time has passed.
        unlogged: Store the channel's messages in an ``UNLOGGED`` table.
            Faster writes, but the contents are lost on a database crash.
    """

    delete_at: datetime | None = None
    unlogged: bool = False


@dataclass(frozen=True)
class SendOptions:
    """Options for :meth:`tonga.client.Client.send`.

    Attributes:
        deliver_at: Earliest time the message may be read. ``None`` makes it
            eligible immediately.
    """

    deliver_at: datetime | None = None


@dataclass
class Message:
    """A message returned by :meth:`tonga.client.Client.read`."""

    id: int
    topic: str
    body: Any
    created_at: datetime
    deliver_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> Message:
        """Build a message from a ``tonga_read`` row.

        Columns are taken by position (id, topic, body, created_at,
        deliver_at) so renamed result columns don't break decoding.
        """
        body = row[2]
        if isinstance(body, (str, bytes, bytearray)):
            body = json.loads(body)
        return cls(
            id=row[0],
            topic=row[1],
            body=body,
            created_at=row[3],
            deliver_at=row[4],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "id": self.id,
            "topic": self.topic,
            "body": self.body,
            "created_at": self.created_at.isoformat(),
            "deliver_at": self.deliver_at.isoformat(),
        }


@dataclass
class Channel:
    """A row of the channel registry."""

    name: str
    topic: str
    delete_at: datetime | None
    unlogged: bool
    created_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> Channel:
        return cls(
            name=row["name"],
            topic=row["topic"],
            delete_at=row["delete_at"],
            unlogged=row["unlogged"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "topic": self.topic,
            "delete_at": self.delete_at.isoformat() if self.delete_at else None,
            "unlogged": self.unlogged,
            "created_at": self.created_at.isoformat(),
        }
