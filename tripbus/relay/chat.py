"""
Chat Relay

Accepts chat addressed to an itinerary, asks the conversational
collaborator, and publishes the outcome on ``chat.<itinerary_id>``.

Outcomes:
- reply -> chat message from the agent
- reply with an applied change set -> also an update on itinerary.<id>
- timeout -> error COLLABORATOR_TIMEOUT
- exception -> error COLLABORATOR_ERROR
- context that does not validate -> error INVALID_PAYLOAD

Subscribers always see one of these, never silence.
"""

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from tripbus.events.models import (
    ChatMessage,
    ErrorEvent,
    ErrorSeverity,
    SenderRole,
    create_itinerary_update,
)
from tripbus.protocol.topics import chat_topic
from tripbus.relay.collaborator import ChatCollaborator, ChatContext, ChatReply, ChatRequest
from tripbus.routing import TopicRouter

logger = logging.getLogger(__name__)


class CollaboratorFailure(Exception):
    """The conversational backend failed or timed out."""
    def __init__(self, itinerary_id: str, reason: str, timed_out: bool = False):
        self.itinerary_id = itinerary_id
        self.reason = reason
        self.timed_out = timed_out
        super().__init__(f"Collaborator failed for {itinerary_id}: {reason}")

    def to_error_event(self) -> ErrorEvent:
        if self.timed_out:
            return ErrorEvent(
                topic=chat_topic(self.itinerary_id),
                error_code="COLLABORATOR_TIMEOUT",
                message="The assistant took too long to answer. Please try again.",
                severity=ErrorSeverity.ERROR,
                can_retry=True,
                recovery_action="resend",
                details={"itinerary_id": self.itinerary_id, "reason": self.reason},
            )
        return ErrorEvent(
            topic=chat_topic(self.itinerary_id),
            error_code="COLLABORATOR_ERROR",
            message="I'm sorry, I encountered an error processing your request. Please try again.",
            severity=ErrorSeverity.ERROR,
            can_retry=True,
            details={"itinerary_id": self.itinerary_id, "reason": self.reason},
        )


class ChatRelay:
    """
    Forwards itinerary chat to a collaborator and republishes the result.
    """

    def __init__(
        self,
        router: TopicRouter,
        collaborator: ChatCollaborator,
        timeout_seconds: float = 30.0,
        echo_user_messages: bool = False,
    ):
        """
        Initialize the relay.

        Args:
            router: Router replies are published through
            collaborator: Conversational backend
            timeout_seconds: Max time to wait for the collaborator
            echo_user_messages: Also publish the user's own line on the chat
                topic, so other watchers of the itinerary see both sides
        """
        self._router = router
        self._collaborator = collaborator
        self._timeout = timeout_seconds
        self._echo_user_messages = echo_user_messages

        # In-flight relays started with submit()
        self._tasks: set[asyncio.Task] = set()

    async def _ask(self, request: ChatRequest) -> ChatReply:
        """
        Call the collaborator under the relay timeout.

        Raises:
            CollaboratorFailure: On timeout or any collaborator exception
        """
        try:
            return await asyncio.wait_for(
                self._collaborator.reply(request),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            raise CollaboratorFailure(
                request.itinerary_id,
                f"no reply within {self._timeout}s",
                timed_out=True,
            )
        except Exception as e:
            raise CollaboratorFailure(
                request.itinerary_id,
                f"{type(e).__name__}: {e}",
            ) from e

    async def _publish_error(self, error: ErrorEvent) -> ErrorEvent:
        log = logger.warning if error.is_recoverable else logger.error
        log(f"Chat error {error.error_code} on {error.topic}: {error.details.get('reason')}")
        await self._router.publish(error.topic, error.to_envelope())
        return error

    async def handle_incoming(
        self,
        itinerary_id: str,
        text: str,
        context: ChatContext | dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> ChatMessage | ErrorEvent:
        """
        Relay one chat message and publish the outcome.

        A context that does not validate is reported as INVALID_PAYLOAD on
        the chat topic; the collaborator is not called.

        Returns:
            The published chat message, or the published error
        """
        topic = chat_topic(itinerary_id)
        try:
            if isinstance(context, dict):
                context = ChatContext.model_validate(context)
            request = ChatRequest(
                itinerary_id=itinerary_id,
                text=text,
                user_id=user_id,
                context=context or ChatContext(),
            )
        except ValidationError as e:
            return await self._publish_error(ErrorEvent(
                topic=topic,
                error_code="INVALID_PAYLOAD",
                message="The chat message could not be understood.",
                severity=ErrorSeverity.WARNING,
                can_retry=False,
                details={"itinerary_id": itinerary_id, "reason": str(e)},
            ))

        logger.info(f"Relaying chat for itinerary {itinerary_id}")

        if self._echo_user_messages:
            line = ChatMessage(
                itinerary_id=itinerary_id,
                sender=SenderRole.USER,
                text=text,
                data={"user_id": user_id} if user_id else {},
            )
            await self._router.publish(topic, line.to_envelope())

        try:
            reply = await self._ask(request)
        except CollaboratorFailure as e:
            return await self._publish_error(e.to_error_event())

        message = ChatMessage(
            itinerary_id=itinerary_id,
            sender=SenderRole.AGENT,
            text=reply.text,
            data=reply.to_data(),
        )
        delivered = await self._router.publish(message.topic, message.to_envelope())
        logger.debug(f"Chat reply for {itinerary_id} delivered to {delivered} subscribers")

        if reply.applied and reply.change_set is not None:
            update = create_itinerary_update(
                itinerary_id,
                "chat_update",
                {"changes": reply.change_set, "text": reply.text},
            )
            await self._router.publish(update.topic, update)

        return message

    def submit(
        self,
        itinerary_id: str,
        text: str,
        context: ChatContext | dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> asyncio.Task:
        """
        Run handle_incoming in the background.

        The caller (a channel's receive loop) keeps reading frames while
        the collaborator works. An invalid itinerary id raises
        InvalidTopicError here rather than inside the task.
        """
        chat_topic(itinerary_id)
        task = asyncio.create_task(
            self.handle_incoming(itinerary_id, text, context=context, user_id=user_id),
            name=f"chat_relay_{itinerary_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Chat relay task {task.get_name()} failed: {task.exception()}")

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def close(self) -> None:
        """Cancel relays still waiting on the collaborator."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} pending chat relays")
