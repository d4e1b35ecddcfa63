"""
WebSocket Handler

The client-facing side of the bus. Every browser tab holds one WebSocket,
which becomes one channel in the connection manager.

Supported frame actions:
- subscribe -> subscribed (or error INVALID_TOPIC)
- unsubscribe -> unsubscribed
- send -> hands chat.send.<itineraryId> to the chat relay; the reply
  arrives later on chat.<itineraryId>
- ping -> pong

A binary frame, or a text frame that is not valid JSON or does not
validate, is a protocol error:
the client gets an INVALID_FRAME error and the channel is closed.
"""

from __future__ import annotations

import logging

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from tripbus.protocol import (
    ClientAction,
    ClientFrame,
    InvalidTopicError,
    MessageEnvelope,
    create_error,
    create_pong,
    create_subscribed,
    create_unsubscribed,
    parse_chat_send_target,
    validate_subscribable,
)
from tripbus.relay import ChatContext, ChatRelay
from tripbus.routing import TopicRouter
from tripbus.session import ChannelClosed, ConnectionManager
from tripbus.transport.queue import QueueFullError

logger = logging.getLogger(__name__)

# Close code for protocol errors (RFC 6455)
PROTOCOL_ERROR_CODE = 1002

# How long the error frame explaining a protocol close may take to flush
ERROR_FLUSH_SECONDS = 1.0


class WebSocketHandler:
    """
    Handles WebSocket connections and frame dispatch.

    One handler serves every connection; per-connection state lives in the
    connection manager.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        router: TopicRouter,
        relay: ChatRelay,
    ):
        """
        Initialize the handler.

        Args:
            connections: Connection manager owning the channels
            router: Topic router for subscriptions
            relay: Chat relay for chat.send.* frames
        """
        self._connections = connections
        self._router = router
        self._relay = relay

    async def handle_connection(self, websocket: WebSocket) -> None:
        """
        Handle a WebSocket connection lifecycle.

        Args:
            websocket: The WebSocket connection
        """
        await websocket.accept()
        channel_id = await self._connections.open(websocket)

        try:
            # Evictions and the reaper close channels from outside this loop
            while self._connections.is_open(channel_id):
                frame = await self._receive_frame(websocket, channel_id)
                if frame is None:
                    break

                self._connections.touch(channel_id)
                await self._handle_frame(channel_id, frame)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected: {channel_id}")

        except Exception as e:
            logger.error(f"WebSocket error on {channel_id}: {e}")

        finally:
            await self._connections.close(channel_id)

    async def _receive_frame(self, websocket: WebSocket, channel_id: str) -> ClientFrame | None:
        """
        Receive and parse one client frame.

        Returns:
            Parsed frame, or None if the connection closed or the frame was
            invalid (the channel is then already closed)
        """
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return None

        data = message.get("text")
        if data is None:
            await self._reject_frame(channel_id, "binary frames are not supported")
            return None

        try:
            return ClientFrame.model_validate_json(data)
        except ValidationError as e:
            await self._reject_frame(channel_id, str(e))
            return None

    async def _reject_frame(self, channel_id: str, reason: str) -> None:
        """Report a protocol error and close the channel once the report is flushed."""
        logger.warning(f"Invalid frame from {channel_id}: {reason}")
        self._send(channel_id, create_error(
            None,
            "INVALID_FRAME",
            "Frame must be a JSON text message with an 'action' of subscribe, unsubscribe, send or ping",
            {"reason": reason},
        ))
        await self._connections.close(
            channel_id,
            code=PROTOCOL_ERROR_CODE,
            reason="Invalid frame",
            drain_timeout=ERROR_FLUSH_SECONDS,
        )

    def _send(self, channel_id: str, envelope: MessageEnvelope) -> bool:
        """Queue a control reply for one channel."""
        try:
            self._connections.send(channel_id, envelope.to_json())
            return True
        except ChannelClosed:
            logger.debug(f"Reply {envelope.type.value} not sent, {channel_id} closed")
            return False
        except QueueFullError as e:
            logger.warning(f"Reply {envelope.type.value} not sent: {e}")
            self._connections.evict(channel_id)
            return False

    def _send_error(
        self,
        channel_id: str,
        topic: str | None,
        error_code: str,
        error_message: str,
    ) -> None:
        """Send an error message."""
        self._send(channel_id, create_error(topic, error_code, error_message))

    async def _handle_frame(self, channel_id: str, frame: ClientFrame) -> None:
        """
        Route a frame to the appropriate handler.

        Args:
            channel_id: Channel identifier
            frame: The client frame
        """
        handlers = {
            ClientAction.SUBSCRIBE: self._handle_subscribe,
            ClientAction.UNSUBSCRIBE: self._handle_unsubscribe,
            ClientAction.SEND: self._handle_send,
            ClientAction.PING: self._handle_ping,
        }

        handler = handlers.get(frame.action)
        if handler:
            await handler(channel_id, frame)
        else:
            logger.warning(f"Unsupported action: {frame.action}")
            self._send_error(
                channel_id,
                frame.topic,
                "UNSUPPORTED_ACTION",
                f"Action {frame.action} not supported"
            )

    async def _handle_subscribe(self, channel_id: str, frame: ClientFrame) -> None:
        """Handle a subscribe frame."""
        try:
            topic = validate_subscribable(frame.topic)
        except InvalidTopicError as e:
            self._send_error(channel_id, frame.topic, "INVALID_TOPIC", e.reason)
            return

        try:
            await self._router.subscribe(channel_id, topic)
        except ChannelClosed:
            return

        self._send(channel_id, create_subscribed(topic))

    async def _handle_unsubscribe(self, channel_id: str, frame: ClientFrame) -> None:
        """Handle an unsubscribe frame."""
        try:
            topic = validate_subscribable(frame.topic)
        except InvalidTopicError as e:
            self._send_error(channel_id, frame.topic, "INVALID_TOPIC", e.reason)
            return

        removed = await self._router.unsubscribe(channel_id, topic)
        self._send(channel_id, create_unsubscribed(topic, removed))

    async def _handle_send(self, channel_id: str, frame: ClientFrame) -> None:
        """
        Handle a send frame addressed to chat.send.<itineraryId>.

        Payload expected:
        - text: the user's message ("message" is accepted too)
        - context: optional {scope, day, selected_node_id, auto_apply}
        - user_id: optional
        """
        try:
            itinerary_id = parse_chat_send_target(frame.topic)
        except InvalidTopicError as e:
            self._send_error(channel_id, frame.topic, "INVALID_TOPIC", e.reason)
            return

        text = frame.payload.get("text", frame.payload.get("message"))
        if not isinstance(text, str) or not text.strip():
            self._send_error(
                channel_id,
                frame.topic,
                "INVALID_PAYLOAD",
                "send requires a non-empty 'text'"
            )
            return

        try:
            context = ChatContext.model_validate(frame.payload.get("context") or {})
        except ValidationError as e:
            self._send_error(channel_id, frame.topic, "INVALID_PAYLOAD", f"Invalid context: {e}")
            return

        user_id = frame.payload.get("user_id")
        self._relay.submit(
            itinerary_id,
            text,
            context=context,
            user_id=user_id if isinstance(user_id, str) else None,
        )
        logger.debug(f"{channel_id} sent chat for itinerary {itinerary_id}")

    async def _handle_ping(self, channel_id: str, frame: ClientFrame) -> None:
        """Handle a ping frame."""
        self._send(channel_id, create_pong(channel_id))
