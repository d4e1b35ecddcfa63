"""
Trip Bus Message Envelope Model

Every message delivered to a client uses a fixed envelope structure:
``{type, topic, payload, timestamp}``. Clients talk back with a small
frame structure: ``{action, topic, payload}``.

Why a fixed envelope?
- Clients can switch on ``type`` without inspecting the payload
- The topic travels with the message so one socket can watch many topics
- Timestamps are always ISO-8601, set by the bus
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware UTC now, used for every bus timestamp."""
    return datetime.now(timezone.utc)


class MessageType(str, Enum):
    """
    Outbound message types.

    Published messages:
    - progress -> agent execution progress on progress.<executionId>
    - chat -> agent chat reply on chat.<itineraryId>
    - update -> itinerary changed on itinerary.<itineraryId>
    - error -> collaborator failure, failed execution or protocol error

    Control replies (sent only to the requesting channel):
    - subscribed / unsubscribed -> subscription acknowledgements
    - pong -> heartbeat reply
    """
    PROGRESS = "progress"
    CHAT = "chat"
    UPDATE = "update"
    ERROR = "error"

    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    PONG = "pong"


class ClientAction(str, Enum):
    """Inbound frame actions."""
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    SEND = "send"
    PING = "ping"


class MessageEnvelope(BaseModel):
    """
    The envelope wrapping every message the bus sends to a client.

    Envelopes are immutable once built; the router serializes each one
    exactly once per publish, however many subscribers receive it.
    """
    type: MessageType = Field(
        ...,
        description="Message type, determines how the client interprets the payload"
    )
    topic: str | None = Field(
        default=None,
        description="Topic the message was published on (None for channel-level errors)"
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Message content. Structure depends on type."
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the bus created the message"
    )

    class Config:
        frozen = True

    def to_json(self) -> str:
        return self.model_dump_json()


class ClientFrame(BaseModel):
    """
    A frame received from a client.

    - subscribe / unsubscribe: ``topic`` names the topic
    - send: ``topic`` is the inbound target (``chat.send.<itineraryId>``),
      ``payload`` carries ``text`` and optional ``context``
    - ping: no topic
    """
    action: ClientAction = Field(
        ...,
        description="What the client wants the bus to do"
    )
    topic: str | None = Field(
        default=None,
        description="Topic or send target"
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Action-specific content"
    )


# === Convenience constructors ===

def create_error(
    topic: str | None,
    error_code: str,
    error_message: str,
    details: dict[str, Any] | None = None,
) -> MessageEnvelope:
    """
    Create a protocol-level error message.

    Used for invalid frames, unknown topics and unsupported actions.
    """
    return MessageEnvelope(
        type=MessageType.ERROR,
        topic=topic,
        payload={
            "error_code": error_code,
            "error_message": error_message,
            "details": details or {},
        },
    )


def create_subscribed(topic: str) -> MessageEnvelope:
    """Acknowledge a subscription."""
    return MessageEnvelope(
        type=MessageType.SUBSCRIBED,
        topic=topic,
        payload={"status": "subscribed"},
    )


def create_unsubscribed(topic: str, removed: bool) -> MessageEnvelope:
    """Acknowledge an unsubscription."""
    return MessageEnvelope(
        type=MessageType.UNSUBSCRIBED,
        topic=topic,
        payload={"removed": removed},
    )


def create_pong(channel_id: str) -> MessageEnvelope:
    """Heartbeat reply."""
    return MessageEnvelope(
        type=MessageType.PONG,
        payload={"channel_id": channel_id},
    )
