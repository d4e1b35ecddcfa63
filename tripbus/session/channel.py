"""
Channel Model

Represents one connected client: its identity, liveness state and the
topics it is subscribed to. The connection manager is the only writer.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from tripbus.protocol.envelope import utcnow


class ChannelState(str, Enum):
    """Channel liveness state."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Channel(BaseModel):
    """
    The bus's view of a connected client.
    """

    channel_id: str = Field(
        ...,
        description="Unique channel identifier"
    )
    state: ChannelState = Field(
        default=ChannelState.CONNECTING,
        description="Current liveness state"
    )
    topics: set[str] = Field(
        default_factory=set,
        description="Topics this channel is subscribed to"
    )
    opened_at: datetime = Field(
        default_factory=utcnow,
        description="When the channel was registered"
    )
    last_seen: datetime = Field(
        default_factory=utcnow,
        description="Last inbound frame from the client"
    )

    @property
    def is_open(self) -> bool:
        return self.state == ChannelState.OPEN

    def is_alive(self, timeout_seconds: float) -> bool:
        """Check if the client has been heard from within the timeout."""
        elapsed = (utcnow() - self.last_seen).total_seconds()
        return elapsed <= timeout_seconds

    def touch(self) -> None:
        """Update last_seen to current time."""
        self.last_seen = utcnow()

    def to_public_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "state": self.state.value,
            "topics": sorted(self.topics),
            "opened_at": self.opened_at.isoformat(),
            "last_seen": self.last_seen.isoformat(),
        }
