from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import pytest

from tripbus.relay import ChatCollaborator, ChatReply, ChatRequest
from tripbus.routing import TopicRouter
from tripbus.session import ConnectionManager


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeWebSocket:
    """Stands in for a FastAPI WebSocket on the outbound side."""

    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.sent: list[str] = []
        self.closed_with: tuple[int, str] | None = None
        self.delay = delay
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)

    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(s) for s in self.sent]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true, failing the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def settle() -> None:
    """Let writer tasks drain whatever is already queued."""
    await asyncio.sleep(0.05)


class EchoCollaborator(ChatCollaborator):
    def __init__(self):
        self.requests: list[ChatRequest] = []

    async def reply(self, request: ChatRequest) -> ChatReply:
        self.requests.append(request)
        return ChatReply(text=f"ok: {request.text}", intent="modify")


class SlowCollaborator(ChatCollaborator):
    async def reply(self, request: ChatRequest) -> ChatReply:
        await asyncio.sleep(10)
        return ChatReply(text="too late")


class BrokenCollaborator(ChatCollaborator):
    async def reply(self, request: ChatRequest) -> ChatReply:
        raise RuntimeError("backend exploded")


class ApplyingCollaborator(ChatCollaborator):
    async def reply(self, request: ChatRequest) -> ChatReply:
        return ChatReply(
            text="Moved day 2 to Paris.",
            intent="move_day",
            applied=True,
            change_set={"day": 2, "city": "Paris"},
        )


@pytest.fixture
async def connections():
    manager = ConnectionManager(max_queue_size=50, heartbeat_timeout_seconds=0)
    yield manager
    await manager.stop()


@pytest.fixture
async def router(connections):
    router = TopicRouter(connections)
    yield router
    await router.close()
