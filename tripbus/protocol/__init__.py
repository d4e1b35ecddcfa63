# Wire Protocol
# Outbound envelope, inbound client frames and topic naming

from tripbus.protocol.envelope import (
    MessageType,
    ClientAction,
    MessageEnvelope,
    ClientFrame,
    create_error,
    create_subscribed,
    create_unsubscribed,
    create_pong,
    utcnow,
)
from tripbus.protocol.topics import (
    InvalidTopicError,
    progress_topic,
    chat_topic,
    itinerary_topic,
    chat_send_target,
    validate_subscribable,
    parse_chat_send_target,
)

__all__ = [
    # Envelope
    "MessageType",
    "ClientAction",
    "MessageEnvelope",
    "ClientFrame",
    "create_error",
    "create_subscribed",
    "create_unsubscribed",
    "create_pong",
    "utcnow",
    # Topics
    "InvalidTopicError",
    "progress_topic",
    "chat_topic",
    "itinerary_topic",
    "chat_send_target",
    "validate_subscribable",
    "parse_chat_send_target",
]
