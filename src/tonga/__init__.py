"""tonga: message queues implemented as PostgreSQL stored functions.

Channels subscribe to a topic; messages sent to the topic are copied into
each subscribed channel, hidden for a visibility timeout when read, and
removed when deleted or when their channel is garbage collected.
"""

from tonga.client import Client
from tonga.consumer import Collector, Consumer
from tonga.db import create_pool
from tonga.errors import InvalidChannelNameError, MessageEncodingError, TongaError
from tonga.models import Channel, ChannelOptions, Message, SendOptions
from tonga.schema import install_schema

__all__ = [
    "Channel",
    "ChannelOptions",
    "Client",
    "Collector",
    "Consumer",
    "InvalidChannelNameError",
    "Message",
    "MessageEncodingError",
    "SendOptions",
    "TongaError",
    "create_pool",
    "install_schema",
]
