# Trip Bus - Real-time messaging for itinerary planning
# Publish/subscribe over WebSocket for execution progress and itinerary chat

__version__ = "0.1.0"

# Re-export commonly used components for convenience
from tripbus.config import BusSettings, settings_from_env
from tripbus.events import ProgressEvent, ChatMessage, ErrorEvent
from tripbus.progress import ProgressPublisher
from tripbus.protocol import MessageEnvelope, MessageType
from tripbus.relay import ChatCollaborator, ChatRelay, LLMChatCollaborator
from tripbus.routing import TopicRouter
from tripbus.session import ConnectionManager, ChannelClosed

__all__ = [
    "__version__",
    # Configuration
    "BusSettings",
    "settings_from_env",
    # Events
    "ProgressEvent",
    "ChatMessage",
    "ErrorEvent",
    "MessageEnvelope",
    "MessageType",
    # Components
    "ConnectionManager",
    "ChannelClosed",
    "TopicRouter",
    "ProgressPublisher",
    "ChatRelay",
    "ChatCollaborator",
    "LLMChatCollaborator",
]
