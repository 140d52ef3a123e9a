"""Connection pool helpers."""

from __future__ import annotations

import asyncpg  # type: ignore[import-not-found,import-untyped]

from tonga.config import get_settings
from tonga.logging import get_logger
from tonga.schema import install_schema

log = get_logger("tonga.db")


async def create_pool(
    dsn: str | None = None,
    *,
    install: bool = False,
) -> asyncpg.Pool:  # type: ignore[type-arg]
    """Create an asyncpg pool from settings.

    Args:
        dsn: Connection string; defaults to ``TONGA_POSTGRES_DSN``.
        install: Install or refresh the tonga schema once connected.

    Returns:
        An open ``asyncpg.Pool``. The caller closes it.
    """
    settings = get_settings()
    dsn = dsn or settings.postgres_dsn
    try:
        pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
        )
        log.info("postgres_pool_created", dsn=dsn.split("@")[-1])
    except (asyncpg.PostgresError, OSError) as exc:
        log.error("postgres_pool_creation_failed", error=str(exc))
        raise

    if install:
        try:
            await install_schema(pool)
        except BaseException:
            await pool.close()
            raise
    return pool
