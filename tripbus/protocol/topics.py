"""
Topic naming.

Topics are plain dotted strings derived from an execution or itinerary id:

- progress.<executionId>  agent execution updates
- chat.<itineraryId>      chat replies for an itinerary
- itinerary.<itineraryId> itinerary change notifications

Clients send chat to ``chat.send.<itineraryId>``; that target is inbound
only and can never be subscribed to. An itinerary id may therefore not
start with ``send.``, or its chat topic would collide with a send target.
"""

PROGRESS_PREFIX = "progress."
CHAT_PREFIX = "chat."
ITINERARY_PREFIX = "itinerary."
CHAT_SEND_PREFIX = "chat.send."

RESERVED_ITINERARY_PREFIX = CHAT_SEND_PREFIX[len(CHAT_PREFIX):]

SUBSCRIBABLE_PREFIXES = (PROGRESS_PREFIX, CHAT_PREFIX, ITINERARY_PREFIX)


class InvalidTopicError(ValueError):
    """Raised when a topic name or send target is malformed."""
    def __init__(self, topic: str | None, reason: str):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Invalid topic {topic!r}: {reason}")


def _require_id(kind: str, value: str) -> str:
    if not value or not value.strip():
        raise InvalidTopicError(value, f"{kind} id must not be empty")
    return value


def _require_itinerary_id(value: str) -> str:
    _require_id("itinerary", value)
    if value.startswith(RESERVED_ITINERARY_PREFIX):
        raise InvalidTopicError(
            value, f"itinerary id must not start with {RESERVED_ITINERARY_PREFIX!r}"
        )
    return value


def progress_topic(execution_id: str) -> str:
    return PROGRESS_PREFIX + _require_id("execution", execution_id)


def chat_topic(itinerary_id: str) -> str:
    return CHAT_PREFIX + _require_itinerary_id(itinerary_id)


def itinerary_topic(itinerary_id: str) -> str:
    return ITINERARY_PREFIX + _require_itinerary_id(itinerary_id)


def chat_send_target(itinerary_id: str) -> str:
    return CHAT_SEND_PREFIX + _require_itinerary_id(itinerary_id)


def validate_subscribable(topic: str | None) -> str:
    """
    Check that a client may subscribe to ``topic``.

    Returns:
        The topic name, unchanged

    Raises:
        InvalidTopicError: If the name is empty, uses an unknown prefix,
            has an empty id, or is the inbound chat target
    """
    if not topic:
        raise InvalidTopicError(topic, "topic is required")
    if topic.startswith(CHAT_SEND_PREFIX):
        raise InvalidTopicError(topic, "chat.send.* is a send target, not a topic")
    if topic.startswith(PROGRESS_PREFIX):
        _require_id("execution", topic[len(PROGRESS_PREFIX):])
        return topic
    for prefix in (CHAT_PREFIX, ITINERARY_PREFIX):
        if topic.startswith(prefix):
            _require_itinerary_id(topic[len(prefix):])
            return topic
    raise InvalidTopicError(
        topic,
        f"topic must start with one of {', '.join(SUBSCRIBABLE_PREFIXES)}"
    )


def parse_chat_send_target(target: str | None) -> str:
    """
    Extract the itinerary id from a ``chat.send.<itineraryId>`` target.

    Raises:
        InvalidTopicError: If the target is not a chat send target or
            names an id reserved for send targets
    """
    if not target or not target.startswith(CHAT_SEND_PREFIX):
        raise InvalidTopicError(target, f"send target must start with {CHAT_SEND_PREFIX}")
    return _require_itinerary_id(target[len(CHAT_SEND_PREFIX):])
