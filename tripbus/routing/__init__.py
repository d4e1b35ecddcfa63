# Topic Routing
# Named topics, subscriber bookkeeping and publish fan-out

from tripbus.routing.registry import Topic, TopicRegistry
from tripbus.routing.router import TopicRouter

__all__ = [
    "Topic",
    "TopicRegistry",
    "TopicRouter",
]
