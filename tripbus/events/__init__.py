# Event Models
# Immutable progress, chat and error records published onto topics

from tripbus.events.models import (
    ProgressPhase,
    SenderRole,
    ErrorSeverity,
    ProgressEvent,
    ChatMessage,
    ErrorEvent,
    create_itinerary_update,
)

__all__ = [
    "ProgressPhase",
    "SenderRole",
    "ErrorSeverity",
    "ProgressEvent",
    "ChatMessage",
    "ErrorEvent",
    "create_itinerary_update",
]
