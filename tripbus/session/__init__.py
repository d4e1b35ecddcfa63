# Connection Manager
# Channel lifecycle, liveness tracking and per-channel outbound delivery

from tripbus.session.channel import Channel, ChannelState
from tripbus.session.manager import ConnectionManager, ChannelClosed

__all__ = [
    "Channel",
    "ChannelState",
    "ConnectionManager",
    "ChannelClosed",
]
