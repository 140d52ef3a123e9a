"""Database side of tonga: channel registry and stored functions.

Every channel owns a message table ``tonga_q_<name>`` (``UNLOGGED`` when
requested). The stored functions below are the whole queue engine; the
Python client only calls them.

Visibility rule enforced by ``tonga_read``: a message can be read when
``deliver_at <= now()`` and ``hidden_until`` is null or in the past. The
selected rows are locked with ``FOR UPDATE SKIP LOCKED`` and hidden in the
same statement, so concurrent readers never receive the same message
inside one hide window.
"""

from __future__ import annotations

from typing import Any

from tonga.logging import get_logger

log = get_logger("tonga.schema")

QUEUE_TABLE_PREFIX = "tonga_q_"

# Serialises concurrent installs; value is arbitrary but fixed.
_INSTALL_LOCK_KEY = 7_146_862_231

_SCHEMA_SQL = f"""\
SELECT pg_advisory_xact_lock({_INSTALL_LOCK_KEY});

CREATE TABLE IF NOT EXISTS tonga_channel (
    name        TEXT         PRIMARY KEY,
    topic       TEXT         NOT NULL,
    delete_at   TIMESTAMPTZ,
    unlogged    BOOLEAN      NOT NULL DEFAULT FALSE,
    created_at  TIMESTAMPTZ  NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_tonga_channel_topic
    ON tonga_channel (topic);
CREATE INDEX IF NOT EXISTS idx_tonga_channel_delete_at
    ON tonga_channel (delete_at) WHERE delete_at IS NOT NULL;

CREATE OR REPLACE FUNCTION tonga_queue_table(queue_name TEXT)
RETURNS TEXT
LANGUAGE plpgsql IMMUTABLE AS $$
BEGIN
    IF queue_name IS NULL OR queue_name !~ '^[a-z_][a-z0-9_]{{0,47}}$' THEN
        RAISE EXCEPTION 'invalid channel name: %', queue_name
            USING ERRCODE = 'invalid_name';
    END IF;
    RETURN '{QUEUE_TABLE_PREFIX}' || queue_name;
END;
$$;

CREATE OR REPLACE FUNCTION tonga_create_channel(
    queue_name TEXT,
    topic      TEXT,
    delete_at  TIMESTAMPTZ DEFAULT NULL,
    unlogged   BOOLEAN     DEFAULT FALSE
)
RETURNS BOOLEAN
LANGUAGE plpgsql AS $$
DECLARE
    tbl TEXT := tonga_queue_table(queue_name);
BEGIN
    INSERT INTO tonga_channel (name, topic, delete_at, unlogged)
    VALUES (
        queue_name,
        tonga_create_channel.topic,
        tonga_create_channel.delete_at,
        COALESCE(tonga_create_channel.unlogged, FALSE)
    )
    ON CONFLICT (name) DO NOTHING;

    IF NOT FOUND THEN
        RETURN FALSE;
    END IF;

    EXECUTE format(
        'CREATE %s TABLE %I (
            id            BIGSERIAL    PRIMARY KEY,
            topic         TEXT         NOT NULL,
            body          JSONB        NOT NULL,
            created_at    TIMESTAMPTZ  NOT NULL DEFAULT now(),
            deliver_at    TIMESTAMPTZ  NOT NULL DEFAULT now(),
            hidden_until  TIMESTAMPTZ
        )',
        CASE WHEN tonga_create_channel.unlogged THEN 'UNLOGGED' ELSE '' END,
        tbl
    );
    EXECUTE format('CREATE INDEX %I ON %I (deliver_at, id)', tbl || '_ready', tbl);
    RETURN TRUE;
END;
$$;

CREATE OR REPLACE FUNCTION tonga_delete_channel(queue_name TEXT)
RETURNS BOOLEAN
LANGUAGE plpgsql AS $$
BEGIN
    DELETE FROM tonga_channel c WHERE c.name = queue_name;
    IF NOT FOUND THEN
        RETURN FALSE;
    END IF;
    EXECUTE format('DROP TABLE IF EXISTS %I', tonga_queue_table(queue_name));
    RETURN TRUE;
END;
$$;

CREATE OR REPLACE FUNCTION tonga_list_channels()
RETURNS TABLE (
    name        TEXT,
    topic       TEXT,
    delete_at   TIMESTAMPTZ,
    unlogged    BOOLEAN,
    created_at  TIMESTAMPTZ
)
LANGUAGE sql STABLE AS $$
    SELECT c.name, c.topic, c.delete_at, c.unlogged, c.created_at
    FROM tonga_channel c
    ORDER BY c.name;
$$;

CREATE OR REPLACE FUNCTION tonga_send(
    topic      TEXT,
    body       JSONB,
    deliver_at TIMESTAMPTZ DEFAULT NULL
)
RETURNS INTEGER
LANGUAGE plpgsql AS $$
DECLARE
    ch        RECORD;
    delivered INTEGER := 0;
BEGIN
    -- FOR SHARE keeps a concurrent delete/gc from dropping the table mid-send
    FOR ch IN
        SELECT c.name
        FROM tonga_channel c
        WHERE c.topic = tonga_send.topic
          AND (c.delete_at IS NULL OR c.delete_at > now())
        ORDER BY c.name
        FOR SHARE OF c
    LOOP
        EXECUTE format(
            'INSERT INTO %I (topic, body, deliver_at) VALUES ($1, $2, $3)',
            tonga_queue_table(ch.name)
        )
        USING tonga_send.topic, tonga_send.body, COALESCE(tonga_send.deliver_at, now());
        delivered := delivered + 1;
    END LOOP;
    RETURN delivered;
END;
$$;

CREATE OR REPLACE FUNCTION tonga_read(
    queue_name TEXT,
    quantity   INTEGER,
    hide_for   DOUBLE PRECISION
)
RETURNS TABLE (
    id          BIGINT,
    topic       TEXT,
    body        JSONB,
    created_at  TIMESTAMPTZ,
    deliver_at  TIMESTAMPTZ
)
LANGUAGE plpgsql AS $$
BEGIN
    PERFORM 1 FROM tonga_channel c WHERE c.name = queue_name;
    IF NOT FOUND THEN
        RAISE EXCEPTION 'channel % does not exist', queue_name
            USING ERRCODE = 'undefined_table';
    END IF;

    RETURN QUERY EXECUTE format(
        'WITH picked AS (
            UPDATE %1$I q
               SET hidden_until = now() + make_interval(secs => $2)
             WHERE q.id IN (
                   SELECT r.id
                   FROM %1$I r
                   WHERE r.deliver_at <= now()
                     AND (r.hidden_until IS NULL OR r.hidden_until <= now())
                   ORDER BY r.id
                   LIMIT $1
                   FOR UPDATE SKIP LOCKED
             )
         RETURNING q.id, q.topic, q.body, q.created_at, q.deliver_at
         )
         SELECT * FROM picked ORDER BY id',
        tonga_queue_table(queue_name)
    )
    USING quantity, hide_for;
END;
$$;

CREATE OR REPLACE FUNCTION tonga_delete(queue_name TEXT, id BIGINT)
RETURNS BOOLEAN
LANGUAGE plpgsql AS $$
DECLARE
    deleted INTEGER;
BEGIN
    PERFORM 1 FROM tonga_channel c WHERE c.name = queue_name;
    IF NOT FOUND THEN
        RETURN FALSE;
    END IF;

    EXECUTE format('DELETE FROM %I WHERE id = $1', tonga_queue_table(queue_name))
    USING tonga_delete.id;
    GET DIAGNOSTICS deleted = ROW_COUNT;
    RETURN deleted > 0;
END;
$$;

CREATE OR REPLACE FUNCTION tonga_gc()
RETURNS INTEGER
LANGUAGE plpgsql AS $$
DECLARE
    ch        RECORD;
    reclaimed INTEGER := 0;
BEGIN
    FOR ch IN
        DELETE FROM tonga_channel c
        WHERE c.delete_at IS NOT NULL
          AND c.delete_at <= now()
        RETURNING c.name
    LOOP
        EXECUTE format('DROP TABLE IF EXISTS %I', tonga_queue_table(ch.name));
        reclaimed := reclaimed + 1;
    END LOOP;
    RETURN reclaimed;
END;
$$;
"""


def schema_sql() -> str:
    """Return the DDL script installed by :func:`install_schema`."""
    return _SCHEMA_SQL


def queue_table(name: str) -> str:
    """Name of the message table backing channel *name*."""
    return f"{QUEUE_TABLE_PREFIX}{name}"


async def install_schema(conn: Any) -> None:
    """Create the channel registry and (re)define the stored functions.

    Idempotent. *conn* may be an ``asyncpg.Pool`` or ``Connection``; the
    script runs as one implicit transaction.
    """
    await conn.execute(_SCHEMA_SQL)
    log.info("tonga_schema_installed")
