"""Tests for tonga models and channel-name validation."""

from __future__ import annotations

from datetime import datetime

import pytest

from tonga.errors import InvalidChannelNameError, TongaError
from tonga.models import Channel, ChannelOptions, Message, SendOptions, validate_channel_name


class TestValidateChannelName:
    @pytest.mark.parametrize("name", ["billing", "_private", "q1", "a_b_c", "a" * 48])
    def test_valid(self, name: str) -> None:
        assert validate_channel_name(name) == name

    @pytest.mark.parametrize(
        "name", ["", "Upper", "9lives", "dash-ed", "dotted.name", "a" * 49, "sp ace"]
    )
    def test_invalid(self, name: str) -> None:
        with pytest.raises(InvalidChannelNameError) as exc_info:
            validate_channel_name(name)
        assert exc_info.value.name == name

    def test_error_is_value_error_and_tonga_error(self) -> None:
        with pytest.raises(ValueError):
            validate_channel_name("Bad")
        with pytest.raises(TongaError):
            validate_channel_name("Bad")

    def test_non_string_rejected(self) -> None:
        with pytest.raises(InvalidChannelNameError):
            validate_channel_name(123)  # type: ignore[arg-type]


class TestOptions:
    def test_defaults(self) -> None:
        assert ChannelOptions() == ChannelOptions(delete_at=None, unlogged=False)
        assert SendOptions().deliver_at is None

    def test_frozen(self) -> None:
        opts = ChannelOptions()
        with pytest.raises(AttributeError):
            opts.unlogged = True  # type: ignore[misc]


class TestMessage:
    def test_from_row_decodes_json_text(self, message_row) -> None:
        msg = Message.from_row(message_row(9, "orders", '{"n": 1}'))
        assert msg.id == 9
        assert msg.topic == "orders"
        assert msg.body == {"n": 1}

    def test_from_row_keeps_decoded_body(self, message_row) -> None:
        msg = Message.from_row(message_row(body={"already": "decoded"}))
        assert msg.body == {"already": "decoded"}

    def test_from_row_decodes_bytes(self, message_row) -> None:
        msg = Message.from_row(message_row(body=b"[1, 2]"))
        assert msg.body == [1, 2]

    def test_to_dict(self, message_row, now: datetime) -> None:
        d = Message.from_row(message_row(3, "t", '"hi"', now, now)).to_dict()
        assert d == {
            "id": 3,
            "topic": "t",
            "body": "hi",
            "created_at": now.isoformat(),
            "deliver_at": now.isoformat(),
        }


class TestChannel:
    def test_from_row_and_to_dict(self, now: datetime) -> None:
        channel = Channel.from_row(
            {
                "name": "billing",
                "topic": "invoice.created",
                "delete_at": None,
                "unlogged": True,
                "created_at": now,
            }
        )
        assert channel.to_dict() == {
            "name": "billing",
            "topic": "invoice.created",
            "delete_at": None,
            "unlogged": True,
            "created_at": now.isoformat(),
        }
