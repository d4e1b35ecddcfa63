"""
Topic Router

Maps topics to subscribed channels and fans published messages out.

Publish flow:
1. Snapshot the topic's subscribers under its lock
2. Serialize the envelope once
3. Queue it on each subscriber's channel (never blocks)
4. A closed recipient is dropped, an overflowing one is evicted;
   either way the rest still get the message
"""

from __future__ import annotations

import logging
from typing import Any

from tripbus.protocol.envelope import MessageEnvelope
from tripbus.routing.registry import TopicRegistry
from tripbus.session import ConnectionManager, ChannelClosed
from tripbus.transport.queue import QueueFullError

logger = logging.getLogger(__name__)


class TopicRouter:
    """
    Publish/subscribe over named topics.

    Registers itself with the connection manager so that closing a channel
    unsubscribes it from everything before close() returns.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        registry: TopicRegistry | None = None,
    ):
        """
        Initialize the router.

        Args:
            connections: Connection manager used for delivery and liveness
            registry: Topic registry (a fresh one if omitted)
        """
        self._connections = connections
        self._registry = registry or TopicRegistry()
        self._connections.add_close_listener(self.detach)

        # Statistics
        self._messages_published = 0
        self._messages_delivered = 0
        self._messages_dropped = 0

    async def subscribe(self, channel_id: str, topic: str) -> bool:
        """
        Subscribe a channel to a topic, creating the topic if needed.

        Returns:
            True if newly subscribed, False if already subscribed

        Raises:
            ChannelClosed: If the channel is not live
        """
        added = await self._registry.add(
            topic,
            channel_id,
            admit=lambda cid: self._connections.record_subscription(cid, topic),
        )
        if added:
            logger.debug(f"{channel_id} subscribed to {topic}")
        return added

    async def unsubscribe(self, channel_id: str, topic: str) -> bool:
        """
        Unsubscribe a channel from a topic.

        Returns:
            True if removed, False if it was not subscribed
        """
        removed = await self._registry.remove(topic, channel_id)
        self._connections.record_unsubscription(channel_id, topic)
        if removed:
            logger.debug(f"{channel_id} unsubscribed from {topic}")
        return removed

    async def detach(self, channel_id: str, topics: set[str]) -> int:
        """
        Remove a closing channel from every topic it was on.

        Returns:
            Number of subscriptions removed
        """
        removed = 0
        for topic in topics:
            if await self._registry.remove(topic, channel_id):
                removed += 1

        if removed:
            logger.debug(f"Detached {channel_id} from {removed} topics")
        return removed

    async def publish(self, topic: str, message: MessageEnvelope) -> int:
        """
        Deliver a message to every channel currently subscribed to a topic.

        Publishing to a topic nobody watches is a no-op.

        Returns:
            Number of channels the message was queued for
        """
        self._messages_published += 1

        recipients = await self._registry.snapshot(topic)
        if not recipients:
            logger.debug(f"No subscribers for {topic}, message discarded")
            return 0

        data = message.to_json()
        delivered = 0

        for channel_id in recipients:
            try:
                self._connections.send(channel_id, data)
                delivered += 1
            except ChannelClosed:
                self._messages_dropped += 1
                logger.debug(f"Dropped {message.type.value} on {topic} for closed {channel_id}")
            except QueueFullError as e:
                self._messages_dropped += 1
                logger.warning(f"Dropped {message.type.value} on {topic}: {e}")
                self._connections.evict(channel_id)

        self._messages_delivered += delivered
        return delivered

    def subscriber_count(self, topic: str) -> int:
        return self._registry.subscriber_count(topic)

    def topics(self) -> dict[str, int]:
        """Subscriber count per active topic."""
        return self._registry.counts()

    @property
    def topic_count(self) -> int:
        return len(self._registry)

    @property
    def stats(self) -> dict[str, Any]:
        """Get router statistics."""
        return {
            "topics": self.topic_count,
            "messages_published": self._messages_published,
            "messages_delivered": self._messages_delivered,
            "messages_dropped": self._messages_dropped,
        }

    async def close(self) -> None:
        """Clear the topic registry."""
        dropped = await self._registry.clear()
        logger.info(f"Topic router closed ({dropped} topics dropped)")
