"""
Chat Collaborator Port

The conversational backend the chat relay forwards to. The relay depends
only on ChatCollaborator; LLMChatCollaborator is the default adapter,
backed by a LangChain chat model.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from tripbus.llm import LLMConfig, create_llm

logger = logging.getLogger(__name__)


class ChatContext(BaseModel):
    """Where in the itinerary the user is looking when they write."""
    scope: str | None = Field(
        default=None,
        description="'trip' or 'day'"
    )
    day: int | None = Field(
        default=None,
        ge=1,
        description="Selected day number"
    )
    selected_node_id: str | None = Field(
        default=None,
        description="Selected activity/place node"
    )
    auto_apply: bool = Field(
        default=False,
        description="Apply proposed changes without confirmation"
    )


class ChatRequest(BaseModel):
    """A user chat message addressed to an itinerary."""
    itinerary_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    user_id: str | None = None
    context: ChatContext = Field(default_factory=ChatContext)


class ChatReply(BaseModel):
    """What the collaborator answered."""
    text: str = Field(
        ...,
        description="Reply shown to the user"
    )
    intent: str | None = Field(
        default=None,
        description="Classified intent of the user message"
    )
    applied: bool = Field(
        default=False,
        description="Whether the change set was applied to the itinerary"
    )
    change_set: dict[str, Any] | None = Field(
        default=None,
        description="Proposed or applied itinerary changes"
    )
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def to_data(self) -> dict[str, Any]:
        """Structured extras carried on the chat message."""
        data: dict[str, Any] = {"applied": self.applied}
        if self.intent:
            data["intent"] = self.intent
        if self.change_set is not None:
            data["change_set"] = self.change_set
        if self.warnings:
            data["warnings"] = self.warnings
        if self.errors:
            data["errors"] = self.errors
        return data


class ChatCollaborator(ABC):
    """
    Conversational backend interface.

    Implementations may raise any exception or take arbitrarily long;
    the relay bounds and reports both.
    """

    @abstractmethod
    async def reply(self, request: ChatRequest) -> ChatReply:
        """Answer a chat request."""
        ...


SYSTEM_PROMPT = (
    "You are the assistant of a trip planning app. The user is looking at an "
    "existing itinerary and asks for changes or information about it. Answer "
    "briefly and concretely. If the request changes the plan, describe the "
    "change you would make."
)


class LLMChatCollaborator(ChatCollaborator):
    """
    Answers chat with a LangChain chat model.

    The model is built on first use, so a missing API key surfaces as a
    chat error on the itinerary's topic instead of a startup failure.
    """

    def __init__(self, config: LLMConfig | None = None, llm: Any = None):
        """
        Args:
            config: Model settings used to build the LLM
            llm: Prebuilt chat model (skips the factory)
        """
        self._config = config or LLMConfig()
        self._llm = llm

    def _get_llm(self) -> Any:
        if self._llm is None:
            self._llm = create_llm(self._config)
        return self._llm

    @staticmethod
    def _render(request: ChatRequest) -> str:
        lines = [f"Itinerary: {request.itinerary_id}"]
        ctx = request.context
        if ctx.scope:
            lines.append(f"Scope: {ctx.scope}")
        if ctx.day is not None:
            lines.append(f"Selected day: {ctx.day}")
        if ctx.selected_node_id:
            lines.append(f"Selected item: {ctx.selected_node_id}")
        lines.append("")
        lines.append(request.text)
        return "\n".join(lines)

    @staticmethod
    def _content_text(content: Any) -> str:
        # Some providers return a list of content blocks
        if isinstance(content, str):
            return content
        parts = []
        for block in content or []:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)

    async def reply(self, request: ChatRequest) -> ChatReply:
        llm = self._get_llm()
        response = await llm.ainvoke([
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=self._render(request)),
        ])
        text = self._content_text(response.content).strip()
        logger.debug(f"LLM replied for {request.itinerary_id} ({len(text)} chars)")
        return ChatReply(text=text)
