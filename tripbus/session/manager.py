"""
Connection Manager

Owns one channel per connected client: registers it, tracks liveness,
writes to it through its outbound queue and tears it down.

Closing a channel is effective immediately: the channel is marked closed
before anything else, so sends from an in-flight publish fail with
ChannelClosed, and every close listener (the topic router) is awaited
before close() returns.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from fastapi import WebSocket

from tripbus.session.channel import Channel, ChannelState
from tripbus.transport.queue import ChannelQueue, QueueClosedError

logger = logging.getLogger(__name__)

CloseListener = Callable[[str, set[str]], Awaitable[None]]


class ChannelClosed(Exception):
    """Raised when sending to or subscribing a channel that is no longer live."""
    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        super().__init__(f"Channel {channel_id} is closed")


class ConnectionManager:
    """
    Manages channel registration, liveness and outbound delivery.

    Thread-safe for async operations using an asyncio lock around the
    channel tables. Methods the router calls while holding its own locks
    (is_open, send, record_subscription) never await.
    """

    def __init__(
        self,
        max_queue_size: int = 200,
        heartbeat_timeout_seconds: float = 60.0,
    ):
        """
        Initialize the manager.

        Args:
            max_queue_size: Outbound queue depth per channel before backpressure
            heartbeat_timeout_seconds: Silence after which a channel is closed
                (0 disables the reaper)
        """
        self._max_queue_size = max_queue_size
        self._heartbeat_timeout = heartbeat_timeout_seconds

        # Primary index: channel_id -> Channel
        self._channels: dict[str, Channel] = {}

        # Connection store: channel_id -> WebSocket
        self._sockets: dict[str, WebSocket] = {}

        # Outbound queues: channel_id -> ChannelQueue
        self._queues: dict[str, ChannelQueue] = {}

        self._close_listeners: list[CloseListener] = []
        self._lock = asyncio.Lock()

        self._reaper_task: asyncio.Task | None = None
        self._pending_closes: set[asyncio.Task] = set()

        # Messages written by queues of channels already closed
        self._closed_sent = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the heartbeat reaper."""
        if self._reaper_task is None and self._heartbeat_timeout > 0:
            self._reaper_task = asyncio.create_task(self._reaper_loop())
            logger.info("Connection reaper started")

    async def stop(self) -> None:
        """Stop the reaper and close every channel."""
        if self._reaper_task:
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None
            logger.info("Connection reaper stopped")

        for channel_id in list(self._channels):
            await self.close(channel_id, code=1001, reason="Server shutting down")

        if self._pending_closes:
            await asyncio.gather(*self._pending_closes, return_exceptions=True)

    def add_close_listener(self, listener: CloseListener) -> None:
        """
        Register a coroutine called as ``listener(channel_id, topics)``
        whenever a channel closes.
        """
        self._close_listeners.append(listener)

    async def _reaper_loop(self) -> None:
        """
        Periodically close channels that stopped sending frames.

        Runs every half the heartbeat timeout.
        """
        interval = self._heartbeat_timeout / 2
        while True:
            try:
                await asyncio.sleep(interval)
                await self._close_silent_channels()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in reaper loop: {e}")

    async def _close_silent_channels(self) -> None:
        async with self._lock:
            silent = [
                channel_id
                for channel_id, channel in self._channels.items()
                if channel.is_open and not channel.is_alive(self._heartbeat_timeout)
            ]

        for channel_id in silent:
            logger.info(f"Channel {channel_id} timed out (no heartbeat)")
            await self.close(channel_id, code=1000, reason="Heartbeat timeout")

    # =========================================================================
    # Channel lifecycle
    # =========================================================================

    async def open(self, websocket: WebSocket) -> str:
        """
        Register an accepted WebSocket as a new channel.

        Returns:
            The new channel id
        """
        channel_id = f"ch-{uuid4().hex[:12]}"
        channel = Channel(channel_id=channel_id)

        async def send_fn(message: str) -> None:
            await websocket.send_text(message)

        queue = ChannelQueue(
            channel_id,
            send_fn,
            max_size=self._max_queue_size,
            on_send_failure=self.evict,
        )

        async with self._lock:
            self._channels[channel_id] = channel
            self._sockets[channel_id] = websocket
            self._queues[channel_id] = queue

        await queue.start()
        channel.state = ChannelState.OPEN
        logger.info(f"Channel opened: {channel_id}")
        return channel_id

    async def close(
        self,
        channel_id: str,
        code: int = 1000,
        reason: str = "",
        drain_timeout: float = 0.0,
    ) -> bool:
        """
        Close a channel and unsubscribe it from every topic.

        Idempotent. With drain_timeout > 0, messages already queued (an
        error frame explaining the close, say) are flushed first.

        Returns:
            True if the channel was open, False if unknown or already closed
        """
        channel = self._channels.get(channel_id)
        if channel is None or channel.state == ChannelState.CLOSED:
            return False

        # Mark closed first: no send succeeds from here on
        channel.state = ChannelState.CLOSED
        topics = set(channel.topics)

        for listener in self._close_listeners:
            try:
                await listener(channel_id, topics)
            except Exception as e:
                logger.error(f"Close listener failed for {channel_id}: {e}")
        channel.topics.clear()

        async with self._lock:
            self._channels.pop(channel_id, None)
            websocket = self._sockets.pop(channel_id, None)
            queue = self._queues.pop(channel_id, None)

        if queue:
            await queue.stop(drain_timeout=drain_timeout)
            self._closed_sent += queue.sent_count

        if websocket is not None:
            try:
                await websocket.close(code=code, reason=reason)
            except Exception as e:
                # Socket may already be gone
                logger.debug(f"Socket close for {channel_id} failed: {e}")

        logger.info(f"Channel closed: {channel_id} ({len(topics)} topics released)")
        return True

    def evict(self, channel_id: str, reason: str = "Slow consumer") -> None:
        """
        Schedule a close without waiting for it.

        Used for slow consumers and failed writers, from code paths that
        must not block on a single channel.
        """
        channel = self._channels.get(channel_id)
        if channel is None or channel.state == ChannelState.CLOSED:
            return

        logger.warning(f"Evicting channel {channel_id}: {reason}")
        task = asyncio.create_task(
            self.close(channel_id, code=1013, reason=reason),
            name=f"evict_{channel_id}",
        )
        self._pending_closes.add(task)
        task.add_done_callback(self._pending_closes.discard)

    # =========================================================================
    # Delivery
    # =========================================================================

    def send(self, channel_id: str, message: str) -> None:
        """
        Queue a serialized message for a channel. Never blocks.

        Raises:
            ChannelClosed: If the channel is unknown, closed, or its writer died
            QueueFullError: If the channel's outbound queue is full
        """
        channel = self._channels.get(channel_id)
        queue = self._queues.get(channel_id)
        if channel is None or queue is None or not channel.is_open:
            raise ChannelClosed(channel_id)

        try:
            queue.put_nowait(message)
        except QueueClosedError:
            raise ChannelClosed(channel_id)

    # =========================================================================
    # Channel state (router-facing, non-blocking)
    # =========================================================================

    def is_open(self, channel_id: str) -> bool:
        channel = self._channels.get(channel_id)
        return channel is not None and channel.is_open

    def touch(self, channel_id: str) -> bool:
        """
        Record client activity.

        Returns:
            True if channel found and updated, False otherwise
        """
        channel = self._channels.get(channel_id)
        if channel is None or not channel.is_open:
            return False
        channel.touch()
        return True

    def record_subscription(self, channel_id: str, topic: str) -> None:
        channel = self._channels.get(channel_id)
        if channel is None or not channel.is_open:
            raise ChannelClosed(channel_id)
        channel.topics.add(topic)

    def record_unsubscription(self, channel_id: str, topic: str) -> None:
        channel = self._channels.get(channel_id)
        if channel is not None:
            channel.topics.discard(topic)

    def get_channel(self, channel_id: str) -> Channel | None:
        return self._channels.get(channel_id)

    def queue_size(self, channel_id: str) -> int:
        """Get queue depth for a channel."""
        queue = self._queues.get(channel_id)
        return queue.qsize if queue else 0

    @property
    def channel_count(self) -> int:
        """Number of registered channels."""
        return len(self._channels)

    @property
    def open_count(self) -> int:
        """Number of open channels."""
        return sum(1 for c in self._channels.values() if c.is_open)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "channels": self.channel_count,
            "open": self.open_count,
            "pending_evictions": len(self._pending_closes),
            "messages_sent": self._closed_sent + sum(q.sent_count for q in self._queues.values()),
        }
