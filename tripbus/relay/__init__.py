# Chat Relay
# Forwards itinerary chat to the conversational backend and republishes replies

from tripbus.relay.collaborator import (
    ChatCollaborator,
    ChatContext,
    ChatRequest,
    ChatReply,
    LLMChatCollaborator,
)
from tripbus.relay.chat import ChatRelay, CollaboratorFailure

__all__ = [
    "ChatCollaborator",
    "ChatContext",
    "ChatRequest",
    "ChatReply",
    "LLMChatCollaborator",
    "ChatRelay",
    "CollaboratorFailure",
]
