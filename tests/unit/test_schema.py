"""Tests for the schema script and installer.

These check the shape of the SQL; behaviour is covered by the integration
tests against a real server.
"""

from __future__ import annotations

import re
from unittest.mock import AsyncMock

import pytest

from tonga.models import CHANNEL_NAME_RE
from tonga.schema import install_schema, queue_table, schema_sql


class TestSchemaSQL:
    @pytest.mark.parametrize(
        "function",
        [
            "tonga_create_channel",
            "tonga_delete_channel",
            "tonga_list_channels",
            "tonga_send",
            "tonga_read",
            "tonga_delete",
            "tonga_gc",
        ],
    )
    def test_defines_function(self, function: str) -> None:
        assert f"CREATE OR REPLACE FUNCTION {function}(" in schema_sql()

    def test_read_skips_locked_rows(self) -> None:
        sql = schema_sql()
        assert "FOR UPDATE SKIP LOCKED" in sql
        assert "hidden_until IS NULL OR r.hidden_until <= now()" in sql
        assert "r.deliver_at <= now()" in sql

    def test_install_takes_advisory_lock_first(self) -> None:
        first = schema_sql().lstrip().splitlines()[0]
        assert first.startswith("SELECT pg_advisory_xact_lock(")

    def test_server_name_rule_matches_client(self) -> None:
        server_rule = re.search(r"!~ '([^']+)'", schema_sql())
        assert server_rule is not None
        assert server_rule.group(1) == CHANNEL_NAME_RE.pattern

    def test_named_parameters_match_client_calls(self) -> None:
        sql = schema_sql()
        assert re.search(r"tonga_create_channel\(\s*queue_name TEXT,\s*topic\s+TEXT,", sql)
        assert re.search(r"tonga_read\(\s*queue_name TEXT,\s*quantity\s+INTEGER,", sql)
        assert "tonga_delete(queue_name TEXT, id BIGINT)" in sql


def test_queue_table() -> None:
    assert queue_table("billing") == "tonga_q_billing"
    assert len(queue_table("a" * 48)) <= 63


@pytest.mark.asyncio
async def test_install_schema_executes_script() -> None:
    conn = AsyncMock()

    await install_schema(conn)

    conn.execute.assert_awaited_once_with(schema_sql())
