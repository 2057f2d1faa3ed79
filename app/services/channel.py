# =============================================================================
# Session Channel — Long-Lived Event Stream to One Client
# =============================================================================
#
# The channel sits between the orchestrator (producer) and the HTTP
# response body (consumer):
#
#   Orchestrator ──send()──▶ [ buffered events ] ──frames()──▶ EventSourceResponse
#                   ▲                                             │
#                   └──── waits for drain when buffer is full ◀───┘
#
# GUARANTEES:
# - At most one terminal event (complete | error); nothing is written after it.
# - close() takes effect exactly once: the end-of-stream sentinel is queued a
#   single time. Later calls are no-ops.
# - When the client goes away the CancellationToken is cancelled and any
#   writer blocked on backpressure is released.
#
# KEEP-ALIVE AND DISCONNECT:
# EventSourceResponse owns both. It sends ping comments while frames() is
# being consumed and stops them when frames() ends, and it cancels the body
# iterator when the ASGI server reports http.disconnect. That teardown runs
# the finally block in frames(), which calls client_gone().
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from pydantic import BaseModel
from sse_starlette.sse import ServerSentEvent

from app.models.events import OPEN_COMMENT, TERMINAL_EVENTS, to_sse

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-way flag: once cancelled, stays cancelled."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "client disconnected") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        logger.info("Cancellation requested: %s", reason)

    async def wait(self) -> None:
        await self._event.wait()


class SessionChannel:
    """
    Buffered, ordered, close-once event stream for a single request.

    Args:
        token: Cancellation token shared with the orchestrator.
        buffer_size: Events held before send() waits for the consumer.
    """

    def __init__(self, token: CancellationToken, buffer_size: int = 64) -> None:
        self.token = token
        self._buffer_size = max(1, buffer_size)
        # Unbounded queue; the bound is enforced in _put() so the close
        # sentinel always fits.
        self._queue: asyncio.Queue[ServerSentEvent | None] = asyncio.Queue()
        self._drained = asyncio.Event()
        self._drained.set()
        self._closed = False
        self._terminal_sent = False
        self._consumer_done = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminal_sent(self) -> bool:
        return self._terminal_sent

    @property
    def consumer_done(self) -> bool:
        """True once frames() has ended, normally or by teardown."""
        return self._consumer_done

    @property
    def writable(self) -> bool:
        return not (self._closed or self._terminal_sent or self.token.cancelled)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def send(self, event: BaseModel) -> bool:
        """
        Queue one event, waiting for a drain if the buffer is full.

        Returns:
            False if the event was dropped (channel closed, terminal event
            already sent, or client gone).
        """
        if not self.writable:
            logger.debug("Dropped %s event on unwritable channel", type(event).__name__)
            return False
        if isinstance(event, TERMINAL_EVENTS):
            self._terminal_sent = True
        return await self._put(to_sse(event))

    async def _put(self, message: ServerSentEvent) -> bool:
        while self._queue.qsize() >= self._buffer_size:
            if self._closed or self.token.cancelled:
                return False
            self._drained.clear()
            await self._drained.wait()
        if self._closed or self.token.cancelled:
            return False
        self._queue.put_nowait(message)
        return True

    def close(self) -> bool:
        """
        End the stream.

        Returns:
            True the first time, False on every later call.
        """
        if self._closed:
            logger.debug("Channel already closed")
            return False
        self._closed = True
        self._queue.put_nowait(None)
        self._drained.set()
        return True

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def client_gone(self) -> None:
        """The client disconnected: cancel the token and release writers."""
        self.token.cancel()
        self._drained.set()

    async def frames(self) -> AsyncIterator[ServerSentEvent]:
        """
        Response body iterator for EventSourceResponse.

        Yields the opening comment, then every queued event until the close
        sentinel. If the iterator is torn down early (client disconnect),
        the token is cancelled.
        """
        finished = False
        try:
            yield ServerSentEvent(comment=OPEN_COMMENT)
            while True:
                message = await self._queue.get()
                self._drained.set()
                if message is None:
                    finished = True
                    return
                yield message
        finally:
            self._consumer_done = True
            if not finished:
                self.client_gone()
