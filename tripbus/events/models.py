"""
Event Models

Immutable records published onto topics:
- ProgressEvent: a phase reached by an itinerary-generation execution
- ChatMessage: a chat line tied to an itinerary
- ErrorEvent: a terminal failure that clients must see instead of hanging

Design Principles:
- Events are immutable once published
- Events are ephemeral: delivered to current subscribers, never stored
- Each event knows its topic and how to wrap itself in an envelope
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from tripbus.protocol.envelope import MessageEnvelope, MessageType, utcnow
from tripbus.protocol.topics import progress_topic, chat_topic, itinerary_topic


class ProgressPhase(str, Enum):
    """
    Well-known execution phases.

    Publishers may use any label; these are the ones the bus itself emits
    through the lifecycle helpers.
    """
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


class SenderRole(str, Enum):
    """Who wrote a chat message."""
    USER = "user"
    AGENT = "agent"


class ErrorSeverity(str, Enum):
    """Severity of an error event."""
    WARNING = "warning"    # Degraded, processing can continue
    ERROR = "error"        # Failed but can be retried
    CRITICAL = "critical"  # Failed, manual intervention required


class ProgressEvent(BaseModel):
    """
    Progress of a single agent execution.

    Published on ``progress.<execution_id>``.
    """
    execution_id: str = Field(
        ...,
        min_length=1,
        description="Execution this event belongs to"
    )
    phase: str = Field(
        ...,
        min_length=1,
        description="Status/phase label (e.g., 'searching-flights', 'done')"
    )
    message: str | None = Field(
        default=None,
        description="Human-readable status message"
    )
    progress_percent: float | None = Field(
        default=None,
        ge=0.0,
        le=100.0,
        description="Optional progress percentage (0-100)"
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form data, typically an itinerary fragment"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred"
    )

    class Config:
        frozen = True

    @property
    def topic(self) -> str:
        return progress_topic(self.execution_id)

    def to_payload(self) -> dict[str, Any]:
        """Convert to envelope payload format."""
        return {
            "execution_id": self.execution_id,
            "phase": self.phase,
            "message": self.message,
            "progress_percent": self.progress_percent,
            "data": self.payload,
        }

    def to_envelope(self) -> MessageEnvelope:
        return MessageEnvelope(
            type=MessageType.PROGRESS,
            topic=self.topic,
            payload=self.to_payload(),
            timestamp=self.timestamp,
        )


class ChatMessage(BaseModel):
    """
    A chat line for an itinerary.

    Published on ``chat.<itinerary_id>``.
    """
    itinerary_id: str = Field(
        ...,
        min_length=1,
        description="Itinerary the conversation is about"
    )
    sender: SenderRole = Field(
        ...,
        description="Who wrote the message"
    )
    text: str = Field(
        ...,
        description="Message text"
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured extras (change set, warnings, intent)"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the message was created"
    )

    class Config:
        frozen = True

    @property
    def topic(self) -> str:
        return chat_topic(self.itinerary_id)

    def to_payload(self) -> dict[str, Any]:
        return {
            "itinerary_id": self.itinerary_id,
            "sender": self.sender.value,
            "text": self.text,
            "data": self.data,
        }

    def to_envelope(self) -> MessageEnvelope:
        return MessageEnvelope(
            type=MessageType.CHAT,
            topic=self.topic,
            payload=self.to_payload(),
            timestamp=self.timestamp,
        )


class ErrorEvent(BaseModel):
    """
    A failure reported to subscribers of a topic.

    Clients treat an error on a topic as a terminal state for whatever
    they were waiting on there.
    """
    topic: str = Field(
        ...,
        description="Topic the error is published on"
    )
    error_code: str = Field(
        ...,
        description="Machine-readable error code (e.g., 'COLLABORATOR_TIMEOUT')"
    )
    message: str = Field(
        ...,
        description="Human-readable description"
    )
    severity: ErrorSeverity = Field(
        default=ErrorSeverity.ERROR,
        description="How bad it is"
    )
    can_retry: bool = Field(
        default=True,
        description="Whether repeating the request may succeed"
    )
    recovery_action: str | None = Field(
        default=None,
        description="Suggested next step for the user"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra context (execution id, itinerary id, exception type)"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the error occurred"
    )

    class Config:
        frozen = True

    @property
    def is_recoverable(self) -> bool:
        return self.can_retry and self.severity != ErrorSeverity.CRITICAL

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error_code": self.error_code,
            "error_message": self.message,
            "severity": self.severity.value,
            "can_retry": self.can_retry,
            "details": self.details,
        }
        if self.recovery_action:
            payload["recovery_action"] = self.recovery_action
        return payload

    def to_envelope(self) -> MessageEnvelope:
        return MessageEnvelope(
            type=MessageType.ERROR,
            topic=self.topic,
            payload=self.to_payload(),
            timestamp=self.timestamp,
        )


def create_itinerary_update(
    itinerary_id: str,
    update_type: str,
    data: dict[str, Any],
) -> MessageEnvelope:
    """
    Create an itinerary change notification for ``itinerary.<itinerary_id>``.

    Args:
        itinerary_id: Itinerary that changed
        update_type: What happened (e.g., 'chat_update')
        data: Change details
    """
    return MessageEnvelope(
        type=MessageType.UPDATE,
        topic=itinerary_topic(itinerary_id),
        payload={
            "itinerary_id": itinerary_id,
            "update_type": update_type,
            "data": data,
        },
    )
