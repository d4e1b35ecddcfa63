"""
Trip Bus Application

FastAPI application with the WebSocket endpoint browsers connect to and
a small HTTP surface for the agent-execution subsystem.
This is the main entry point for running the bus.

Endpoints:
- WS   /ws (TRIPBUS_WS_PATH): subscribe/unsubscribe/send/ping frames
- GET  /health: liveness plus channel and topic counts
- GET  /topics: subscriber count per active topic
- POST /executions/{execution_id}/progress: publish a progress event

Configuration is read from TRIPBUS_* environment variables (see
tripbus.config). The chat model is selected with TRIPBUS_LLM_MODEL:
  - OpenAI: "gpt-4o-mini", "gpt-4o"
  - Azure OpenAI: "azure/gpt-4o-mini"
  - Anthropic: "claude-sonnet-4-5-20250929"
  - Google Gemini: "gemini/gemini-2.0-flash"
  - Ollama: "ollama/llama3.2"

Provider-specific API keys:
- OPENAI_API_KEY, AZURE_OPENAI_API_KEY + AZURE_OPENAI_ENDPOINT,
  ANTHROPIC_API_KEY, GOOGLE_API_KEY (Ollama runs locally, no key)

Environment variables can be loaded from a .env file in the project root.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, WebSocket
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

from tripbus.config import BusSettings, settings_from_env
from tripbus.events import ProgressPhase
from tripbus.progress import ProgressPublisher
from tripbus.protocol import InvalidTopicError, progress_topic
from tripbus.relay import ChatCollaborator, ChatRelay, LLMChatCollaborator
from tripbus.routing import TopicRouter
from tripbus.session import ConnectionManager
from tripbus.transport.handler import WebSocketHandler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@dataclass
class BusComponents:
    """Everything the bus runs, created at startup and kept on app.state."""
    connections: ConnectionManager
    router: TopicRouter
    publisher: ProgressPublisher
    relay: ChatRelay
    handler: WebSocketHandler


class ProgressUpdate(BaseModel):
    """Body of POST /executions/{execution_id}/progress."""
    phase: str = Field(
        ...,
        min_length=1,
        description="Phase label; 'started', 'completed' and 'failed' get lifecycle handling"
    )
    message: str | None = Field(
        default=None,
        description="Human-readable status message (error message for 'failed')"
    )
    progress_percent: float | None = Field(
        default=None,
        ge=0.0,
        le=100.0,
        description="Optional progress percentage (0-100)"
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form event data"
    )
    error_code: str | None = Field(
        default=None,
        description="Error code for a 'failed' phase"
    )
    can_retry: bool = Field(
        default=True,
        description="Whether a failed execution may be retried"
    )


async def publish_update(
    publisher: ProgressPublisher,
    execution_id: str,
    update: ProgressUpdate,
) -> int:
    """Publish an HTTP progress update through the matching publisher helper."""
    if update.phase == ProgressPhase.FAILED.value:
        return await publisher.failed(
            execution_id,
            update.message or "Itinerary generation failed",
            error_code=update.error_code or "EXECUTION_FAILED",
            can_retry=update.can_retry,
        )
    if update.phase == ProgressPhase.STARTED.value:
        return await publisher.started(
            execution_id,
            message=update.message or "Itinerary generation started",
            payload=update.data,
        )
    if update.phase == ProgressPhase.COMPLETED.value:
        return await publisher.completed(
            execution_id,
            message=update.message or "Itinerary generation completed",
            payload=update.data,
        )
    return await publisher.progress(
        execution_id,
        update.phase,
        message=update.message,
        progress_percent=update.progress_percent,
        payload=update.data,
    )


def create_app(
    settings: BusSettings | None = None,
    collaborator: ChatCollaborator | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Bus settings (read from the environment if omitted)
        collaborator: Chat backend (an LLM-backed one if omitted)
    """
    settings = settings or settings_from_env()
    logging.getLogger().setLevel(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Initializes and tears down all bus components.
        """
        # Startup
        logger.info("Starting Trip Bus...")

        connections = ConnectionManager(
            max_queue_size=settings.max_queue_size,
            heartbeat_timeout_seconds=settings.heartbeat_timeout_seconds,
        )
        await connections.start()

        router = TopicRouter(connections)
        publisher = ProgressPublisher(router)
        relay = ChatRelay(
            router,
            collaborator or LLMChatCollaborator(settings.llm),
            timeout_seconds=settings.chat_timeout_seconds,
            echo_user_messages=settings.echo_chat,
        )
        handler = WebSocketHandler(connections, router, relay)

        app.state.bus = BusComponents(
            connections=connections,
            router=router,
            publisher=publisher,
            relay=relay,
            handler=handler,
        )
        logger.info(f"Trip Bus started on {settings.ws_path} (chat model: {settings.llm.model})")

        yield

        # Shutdown
        logger.info("Shutting down Trip Bus...")
        await relay.close()
        await connections.stop()
        await router.close()
        app.state.bus = None
        logger.info("Trip Bus stopped")

    app = FastAPI(
        title="Trip Bus",
        description="Real-time progress and chat messaging for itinerary planning",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.bus = None

    @app.websocket(settings.ws_path)
    async def websocket_endpoint(websocket: WebSocket):
        """
        WebSocket endpoint for browser clients.

        All subscriptions and chat sends flow through this endpoint.
        """
        bus: BusComponents | None = websocket.app.state.bus
        if bus is None:
            await websocket.close(code=1011, reason="Bus not initialized")
            return

        await bus.handler.handle_connection(websocket)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        bus: BusComponents | None = request.app.state.bus
        if bus is None:
            return {"status": "starting"}
        return {
            "status": "healthy",
            **bus.connections.stats,
            **bus.router.stats,
            "pending_chats": bus.relay.pending_count,
        }

    @app.get("/topics")
    async def list_topics(request: Request):
        """Active topics with their subscriber counts."""
        bus: BusComponents | None = request.app.state.bus
        if bus is None:
            raise HTTPException(status_code=503, detail="Bus not initialized")
        return {"topics": bus.router.topics()}

    @app.post("/executions/{execution_id}/progress")
    async def post_progress(execution_id: str, update: ProgressUpdate, request: Request):
        """
        Publish a progress event for an execution.

        Returns how many subscribers it reached; 0 when nobody is watching.
        """
        bus: BusComponents | None = request.app.state.bus
        if bus is None:
            raise HTTPException(status_code=503, detail="Bus not initialized")

        try:
            topic = progress_topic(execution_id)
        except InvalidTopicError as e:
            raise HTTPException(status_code=422, detail=e.reason)

        delivered = await publish_update(bus.publisher, execution_id, update)
        return {"execution_id": execution_id, "topic": topic, "delivered": delivered}

    return app


app = create_app()


def main() -> None:
    """Run the bus with uvicorn."""
    settings = settings_from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
