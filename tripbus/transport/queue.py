"""
Channel Outbound Queue

Per-channel async outgoing queue with a single writer task.
Keeps one slow client from stalling delivery to everybody else.

Design:
- Each channel gets a dedicated bounded asyncio.Queue
- Single writer coroutine drains the queue and sends to the WebSocket
- Backpressure: if the queue is full, the caller is told and decides
- A failed send closes the queue; later puts fail fast
"""

import asyncio
import logging
from typing import Callable, Awaitable

logger = logging.getLogger(__name__)


class QueueFullError(Exception):
    """Raised when the outbound queue is full (backpressure)."""
    def __init__(self, channel_id: str, queue_size: int):
        self.channel_id = channel_id
        self.queue_size = queue_size
        super().__init__(f"Queue full for {channel_id} (size={queue_size})")


class QueueClosedError(Exception):
    """Raised when putting on a queue whose writer has stopped."""
    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        super().__init__(f"Queue closed for {channel_id}")


class ChannelQueue:
    """
    Outbound message queue for a single channel.

    Features:
    - Async queue with configurable max size
    - Single writer task to serialize WebSocket sends (keeps per-topic order)
    - Non-blocking put with backpressure signaling
    """

    def __init__(
        self,
        channel_id: str,
        send_fn: Callable[[str], Awaitable[None]],
        max_size: int = 200,
        on_send_failure: Callable[[str], None] | None = None,
    ):
        """
        Initialize channel queue.

        Args:
            channel_id: Channel identifier
            send_fn: Async function to send data to the WebSocket
            max_size: Max queue depth before backpressure
            on_send_failure: Called with the channel id when a send fails
        """
        self.channel_id = channel_id
        self._send_fn = send_fn
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max_size)
        self._writer_task: asyncio.Task | None = None
        self._closed = False
        self._max_size = max_size
        self._on_send_failure = on_send_failure
        self._sent = 0

    async def start(self) -> None:
        """Start the writer task."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(
                self._writer_loop(),
                name=f"channel_writer_{self.channel_id}"
            )

    async def stop(self, drain_timeout: float = 0.0) -> None:
        """
        Stop the writer task.

        Args:
            drain_timeout: Seconds to let the writer flush what is already
                queued; 0 discards queued messages immediately
        """
        self._closed = True
        # Signal writer to exit after what is already queued
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

        if self._writer_task:
            if self._writer_task is not asyncio.current_task():
                if drain_timeout > 0:
                    try:
                        await asyncio.wait_for(asyncio.shield(self._writer_task), drain_timeout)
                    except asyncio.TimeoutError:
                        logger.debug(f"Drain timed out for {self.channel_id}")
                self._writer_task.cancel()
                try:
                    await self._writer_task
                except asyncio.CancelledError:
                    pass
            self._writer_task = None

    def put_nowait(self, message: str) -> None:
        """
        Put a message on the queue without blocking.

        Raises:
            QueueClosedError: If the queue was stopped or its writer failed
            QueueFullError: If queue is full (backpressure condition)
        """
        if self._closed:
            raise QueueClosedError(self.channel_id)

        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            raise QueueFullError(self.channel_id, self._max_size)

    @property
    def qsize(self) -> int:
        """Current queue depth."""
        return self._queue.qsize()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def sent_count(self) -> int:
        """Messages successfully written to the socket."""
        return self._sent

    async def _writer_loop(self) -> None:
        """
        Single writer loop that drains the queue.

        This serializes all sends to the WebSocket connection,
        preventing concurrent write issues.
        """
        # Runs until the shutdown signal, a failed send, or cancellation
        while True:
            try:
                message = await self._queue.get()

                # None is the shutdown signal
                if message is None:
                    break

                try:
                    await self._send_fn(message)
                    self._sent += 1
                except Exception as e:
                    logger.warning(f"Send failed for {self.channel_id}: {e}")
                    self._closed = True
                    if self._on_send_failure:
                        self._on_send_failure(self.channel_id)
                    break
                finally:
                    self._queue.task_done()

            except asyncio.CancelledError:
                break
