# Transport Layer
# WebSocket endpoint, frame handling and per-channel outbound queues
# The FastAPI app lives in tripbus.transport.app and is imported by path

from tripbus.transport.queue import ChannelQueue, QueueFullError, QueueClosedError

__all__ = ["ChannelQueue", "QueueFullError", "QueueClosedError"]
