"""
Topic Registry

Process-wide mapping of topic name -> subscriber channel ids, with an
explicit lifecycle (cleared at shutdown) instead of module globals.

Topics are reference-counted by their subscriber sets: created on the
first subscription, dropped as soon as the last subscriber leaves. A later
subscription to the same name starts from an empty set.

Locking:
- The registry lock guards the name -> Topic mapping and serializes
  subscribe/unsubscribe
- Each Topic has its own lock guarding its subscriber set, so a publish
  snapshot never sees a half-applied mutation
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from tripbus.protocol.envelope import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Topic:
    """A named broadcast group."""
    name: str
    subscribers: set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=utcnow)
    published: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class TopicRegistry:
    """
    Owns every Topic. Accessed only through the TopicRouter.
    """

    def __init__(self):
        self._topics: dict[str, Topic] = {}
        self._lock = asyncio.Lock()

    async def add(
        self,
        name: str,
        channel_id: str,
        admit: Callable[[str], None],
    ) -> bool:
        """
        Add a subscriber, creating the topic if needed.

        Args:
            name: Topic name
            channel_id: Subscribing channel
            admit: Called with the channel id under the topic lock; raising
                aborts the subscription (used for the liveness check)

        Returns:
            True if newly subscribed, False if it already was
        """
        async with self._lock:
            topic = self._topics.get(name)
            created = topic is None
            if topic is None:
                topic = Topic(name=name)
                self._topics[name] = topic

            async with topic.lock:
                try:
                    admit(channel_id)
                except Exception:
                    if created:
                        del self._topics[name]
                    raise

                if channel_id in topic.subscribers:
                    return False
                topic.subscribers.add(channel_id)

            if created:
                logger.debug(f"Topic created: {name}")
            return True

    async def remove(self, name: str, channel_id: str) -> bool:
        """
        Remove a subscriber, reclaiming the topic when it empties.

        Returns:
            True if removed, False if the topic or subscription was unknown
        """
        async with self._lock:
            topic = self._topics.get(name)
            if topic is None:
                return False

            async with topic.lock:
                if channel_id not in topic.subscribers:
                    return False
                topic.subscribers.discard(channel_id)
                empty = not topic.subscribers

            if empty:
                del self._topics[name]
                logger.debug(f"Topic reclaimed: {name}")
            return True

    async def snapshot(self, name: str) -> list[str]:
        """
        Current subscribers of a topic, taken under the topic lock.

        Returns:
            Channel ids (empty if the topic does not exist)
        """
        topic = self._topics.get(name)
        if topic is None:
            return []

        async with topic.lock:
            topic.published += 1
            return list(topic.subscribers)

    def subscriber_count(self, name: str) -> int:
        topic = self._topics.get(name)
        return len(topic.subscribers) if topic else 0

    def counts(self) -> dict[str, int]:
        """Subscriber count per topic."""
        return {name: len(topic.subscribers) for name, topic in self._topics.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._topics

    def __len__(self) -> int:
        return len(self._topics)

    async def clear(self) -> int:
        """
        Drop every topic.

        Returns:
            Number of topics dropped
        """
        async with self._lock:
            count = len(self._topics)
            self._topics.clear()
            return count
