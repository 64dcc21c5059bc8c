"""Graceful shutdown helper: track in-flight relays and drain on stop.

A relayed segment outlives its request handler: the handler returns as
soon as upstream headers arrive and the body keeps streaming afterwards.
Both phases are counted so a drain waits for open segment streams too.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import structlog

log = structlog.get_logger(__name__)


class GracefulShutdown:
    """Track active requests and streams, wait for them before shutdown.

    Usage::

        gs = GracefulShutdown()

        # In middleware:
        gs.request_started()
        try:
            ...
        finally:
            gs.request_finished()

        # Around a streamed body:
        StreamingResponse(gs.track_stream(chunks))

        # In lifespan finally:
        await gs.wait_for_drain(timeout=10.0)
    """

    def __init__(self) -> None:
        self._active = 0
        self._streams = 0
        self._shutting_down = False
        self._drained = asyncio.Event()
        self._drained.set()  # starts drained (0 active)
        self._ready = False

    @property
    def active_requests(self) -> int:
        return self._active

    @property
    def active_streams(self) -> int:
        return self._streams

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def is_ready(self) -> bool:
        """True once startup finished and no shutdown has begun."""
        return self._ready and not self._shutting_down

    def mark_ready(self) -> None:
        self._ready = True

    def request_started(self) -> None:
        self._active += 1
        self._drained.clear()

    def request_finished(self) -> None:
        self._active = max(0, self._active - 1)
        self._update_drained()

    async def track_stream(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Yield from *chunks* while counting it as in-flight work."""
        self._streams += 1
        self._drained.clear()
        try:
            async for chunk in chunks:
                yield chunk
        finally:
            self._streams = max(0, self._streams - 1)
            self._update_drained()

    def _update_drained(self) -> None:
        if self._active == 0 and self._streams == 0:
            self._drained.set()

    async def wait_for_drain(self, *, timeout: float = 10.0) -> None:
        """Wait for requests and streams to finish, up to *timeout* seconds."""
        self._shutting_down = True
        if self._active == 0 and self._streams == 0:
            return
        log.info(
            "graceful_shutdown_draining",
            active_requests=self._active,
            active_streams=self._streams,
        )
        try:
            await asyncio.wait_for(self._drained.wait(), timeout=timeout)
            log.info("graceful_shutdown_drained")
        except TimeoutError:
            log.warning(
                "graceful_shutdown_timeout",
                remaining_requests=self._active,
                remaining_streams=self._streams,
                timeout=timeout,
            )
