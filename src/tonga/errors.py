"""Exceptions raised by the tonga client.

Database failures are not wrapped: ``asyncpg`` exceptions propagate to the
caller unchanged.
"""


class TongaError(Exception):
    """Base exception for client-side tonga errors."""


class InvalidChannelNameError(TongaError, ValueError):
    """Channel name cannot be used as a queue table suffix."""

    def __init__(self, name: str):
        super().__init__(
            f"Invalid channel name {name!r}: use lowercase letters, digits and "
            "underscores, starting with a letter or underscore, at most 48 characters"
        )
        self.name = name


class MessageEncodingError(TongaError):
    """Message body could not be serialised to JSON."""
