"""
Execution Progress Publisher

The boundary the agent-execution subsystem calls as an itinerary
generation advances. Events go to ``progress.<execution_id>`` and reach
whoever is subscribed at that moment; nothing is kept for late joiners.
"""

import logging
from typing import Any

from tripbus.events.models import ErrorEvent, ErrorSeverity, ProgressEvent, ProgressPhase
from tripbus.protocol.topics import progress_topic
from tripbus.routing import TopicRouter

logger = logging.getLogger(__name__)


class ProgressPublisher:
    """
    Publishes execution progress events.

    ``publish`` takes any phase label; the lifecycle helpers cover the
    phases the bus itself knows about.
    """

    def __init__(self, router: TopicRouter):
        self._router = router

    async def publish(self, event: ProgressEvent) -> int:
        """
        Publish a progress event on its execution's topic.

        Returns:
            Number of subscribers that received the event
        """
        delivered = await self._router.publish(event.topic, event.to_envelope())
        logger.debug(
            f"Progress {event.phase} for {event.execution_id} "
            f"delivered to {delivered} subscribers"
        )
        return delivered

    async def started(
        self,
        execution_id: str,
        message: str = "Itinerary generation started",
        payload: dict[str, Any] | None = None,
    ) -> int:
        """Publish a started event."""
        return await self.publish(ProgressEvent(
            execution_id=execution_id,
            phase=ProgressPhase.STARTED.value,
            message=message,
            progress_percent=0.0,
            payload=payload or {},
        ))

    async def progress(
        self,
        execution_id: str,
        phase: str,
        message: str | None = None,
        progress_percent: float | None = None,
        payload: dict[str, Any] | None = None,
    ) -> int:
        """Publish an intermediate phase, e.g. 'searching-flights'."""
        return await self.publish(ProgressEvent(
            execution_id=execution_id,
            phase=phase,
            message=message,
            progress_percent=progress_percent,
            payload=payload or {},
        ))

    async def completed(
        self,
        execution_id: str,
        message: str = "Itinerary generation completed",
        payload: dict[str, Any] | None = None,
    ) -> int:
        """Publish a completed event."""
        return await self.publish(ProgressEvent(
            execution_id=execution_id,
            phase=ProgressPhase.COMPLETED.value,
            message=message,
            progress_percent=100.0,
            payload=payload or {},
        ))

    async def failed(
        self,
        execution_id: str,
        error_message: str,
        error_code: str = "EXECUTION_FAILED",
        can_retry: bool = True,
    ) -> int:
        """
        Publish an execution failure.

        Sent as an error-typed message so clients stop waiting.
        """
        error = ErrorEvent(
            topic=progress_topic(execution_id),
            error_code=error_code,
            message=error_message,
            severity=ErrorSeverity.ERROR,
            can_retry=can_retry,
            details={"execution_id": execution_id, "phase": ProgressPhase.FAILED.value},
        )
        logger.info(f"Execution {execution_id} failed: {error_message}")
        return await self._router.publish(error.topic, error.to_envelope())
