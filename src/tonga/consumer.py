"""Consumer worker pool and garbage-collection loop.

:class:`Consumer` spawns ``asyncio.Task`` workers that read a channel,
hand each message to a handler and delete it once the handler returns.
A handler that raises leaves the message hidden, so it is delivered again
after the hide window (at-least-once).

:class:`Collector` calls :meth:`Client.gc` on a fixed interval.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from tonga.client import Client
from tonga.config import get_settings
from tonga.logging import get_logger
from tonga.models import Message, validate_channel_name

log = get_logger("tonga.consumer")

# Graceful shutdown: max seconds to wait for in-flight handlers before force-stop.
_DRAIN_TIMEOUT_SECONDS = 30

Handler = Callable[[Message], Awaitable[Any]]


def _at_least_one(name: str, value: int | None) -> int | None:
    if value is not None and value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


class Consumer:
    """Polls one channel with a pool of worker tasks.

    Settings not passed explicitly are read from :func:`get_settings` when
    :meth:`start` is called.
    """

    def __init__(
        self,
        client: Client,
        queue: str,
        handler: Handler,
        *,
        workers: int | None = None,
        batch_size: int | None = None,
        hide_for: timedelta | float | None = None,
        poll_interval_ms: int | None = None,
    ) -> None:
        self._client = client
        self._queue = validate_channel_name(queue)
        self._handler = handler
        self._workers_count = _at_least_one("workers", workers)
        self._batch_size = _at_least_one("batch_size", batch_size)
        self._hide_for = hide_for
        self._poll_interval_ms = _at_least_one("poll_interval_ms", poll_interval_ms)
        self._workers: list[asyncio.Task[None]] = []
        self._running = False
        self._draining = False
        self.processed = 0
        self.failed = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the worker tasks."""
        if self._running:
            log.warning("consumer_already_running", channel=self._queue)
            return

        settings = get_settings()
        workers = (
            self._workers_count if self._workers_count is not None else settings.consumer_workers
        )
        batch_size = (
            self._batch_size if self._batch_size is not None else settings.default_read_quantity
        )
        hide_for = (
            self._hide_for if self._hide_for is not None else settings.default_hide_for_seconds
        )
        poll_ms = (
            self._poll_interval_ms
            if self._poll_interval_ms is not None
            else settings.consumer_poll_interval_ms
        )

        self._running = True
        for i in range(workers):
            task = asyncio.create_task(
                self._worker_loop(
                    name=f"{self._queue}-{i}",
                    batch_size=batch_size,
                    hide_for=hide_for,
                    poll_ms=poll_ms,
                ),
            )
            self._workers.append(task)

        log.info("consumer_started", channel=self._queue, workers=workers)

    async def stop(self) -> None:
        """Stop polling, let in-flight handlers finish, then cancel stragglers.

        Messages whose handlers were cancelled are not deleted; they become
        visible again once their hide window ends.
        """
        if not self._running:
            return

        log.info("consumer_stopping", channel=self._queue)
        self._draining = True
        self._running = False

        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=_DRAIN_TIMEOUT_SECONDS)
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        self._workers.clear()
        self._draining = False
        log.info(
            "consumer_stopped",
            channel=self._queue,
            processed=self.processed,
            failed=self.failed,
        )

    @property
    def is_running(self) -> bool:
        """Whether the consumer is running."""
        return self._running

    def get_status(self) -> dict[str, Any]:
        """Return worker and counter info."""
        return {
            "channel": self._queue,
            "running": self._running,
            "draining": self._draining,
            "workers": len(self._workers),
            "processed": self.processed,
            "failed": self.failed,
        }

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    async def _worker_loop(
        self,
        name: str,
        batch_size: int,
        hide_for: timedelta | float,
        poll_ms: int,
    ) -> None:
        """Read batches and process them until stopped."""
        log.debug("worker_started", worker=name)
        poll_seconds = poll_ms / 1000.0

        while self._running:
            try:
                messages = await self._client.read(self._queue, batch_size, hide_for)

                if not messages:
                    await asyncio.sleep(poll_seconds)
                    continue

                for message in messages:
                    await self._process_message(message, worker_name=name)

            except asyncio.CancelledError:
                break
            except Exception:
                log.exception("worker_error", worker=name, channel=self._queue)
                await asyncio.sleep(poll_seconds)

        log.debug("worker_stopped", worker=name)

    async def _process_message(self, message: Message, worker_name: str) -> None:
        """Run the handler and acknowledge on success."""
        try:
            await self._handler(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failed += 1
            log.exception(
                "message_handler_failed",
                channel=self._queue,
                message_id=message.id,
                worker=worker_name,
            )
            return

        await self._client.delete(self._queue, message.id)
        self.processed += 1
        log.debug("message_processed", message_id=message.id, worker=worker_name)


class Collector:
    """Runs :meth:`Client.gc` every ``interval`` seconds."""

    def __init__(self, client: Client, interval: float | None = None) -> None:
        self._client = client
        if interval is not None and not interval > 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.reclaimed = 0

    async def run_once(self) -> int:
        """Run one collection and return the number of channels reclaimed."""
        reclaimed = await self._client.gc()
        self.reclaimed += reclaimed
        return reclaimed

    async def start(self) -> None:
        if self._running:
            log.warning("collector_already_running")
            return
        self._running = True
        interval = (
            self._interval if self._interval is not None else get_settings().gc_interval_seconds
        )
        self._task = asyncio.create_task(self._loop(interval))
        log.info("collector_started", interval_seconds=interval)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        log.info("collector_stopped", reclaimed=self.reclaimed)

    @property
    def is_running(self) -> bool:
        return self._running

    async def _loop(self, interval: float) -> None:
        while self._running:
            try:
                await self.run_once()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception:
                log.exception("gc_error")
                await asyncio.sleep(interval)
