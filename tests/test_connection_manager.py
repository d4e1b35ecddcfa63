from __future__ import annotations

import pytest

from tripbus.session import ChannelClosed, ChannelState, ConnectionManager
from tripbus.transport.queue import QueueFullError

from conftest import FakeWebSocket, wait_until


@pytest.mark.anyio
async def test_open_registers_live_channel(connections):
    cid = await connections.open(FakeWebSocket())

    assert cid.startswith("ch-")
    assert connections.is_open(cid)
    assert connections.get_channel(cid).state == ChannelState.OPEN
    assert connections.stats == {
        "channels": 1,
        "open": 1,
        "pending_evictions": 0,
        "messages_sent": 0,
    }


@pytest.mark.anyio
async def test_send_to_unknown_channel_raises(connections):
    with pytest.raises(ChannelClosed):
        connections.send("ch-missing", "{}")


@pytest.mark.anyio
async def test_close_is_idempotent(connections):
    ws = FakeWebSocket()
    cid = await connections.open(ws)

    assert await connections.close(cid, code=1001, reason="bye") is True
    assert await connections.close(cid) is False

    assert ws.closed_with == (1001, "bye")
    assert connections.channel_count == 0
    with pytest.raises(ChannelClosed):
        connections.send(cid, "{}")


@pytest.mark.anyio
async def test_close_notifies_listeners_with_topics(connections):
    seen = []

    async def listener(channel_id, topics):
        seen.append((channel_id, topics))

    connections.add_close_listener(listener)
    cid = await connections.open(FakeWebSocket())
    connections.record_subscription(cid, "chat.trip-1")

    await connections.close(cid)

    assert seen == [(cid, {"chat.trip-1"})]


@pytest.mark.anyio
async def test_failing_listener_does_not_stop_close(connections):
    async def broken(channel_id, topics):
        raise RuntimeError("listener failed")

    connections.add_close_listener(broken)
    ws = FakeWebSocket()
    cid = await connections.open(ws)

    assert await connections.close(cid) is True
    assert ws.closed_with is not None


@pytest.mark.anyio
async def test_send_is_delivered_in_order(connections):
    ws = FakeWebSocket()
    cid = await connections.open(ws)

    for i in range(10):
        connections.send(cid, str(i))

    await wait_until(lambda: len(ws.sent) == 10)
    assert ws.sent == [str(i) for i in range(10)]
    assert connections.stats["messages_sent"] == 10


@pytest.mark.anyio
async def test_full_queue_raises_queue_full():
    connections = ConnectionManager(max_queue_size=1, heartbeat_timeout_seconds=0)
    cid = await connections.open(FakeWebSocket(delay=10))

    with pytest.raises(QueueFullError):
        for _ in range(5):
            connections.send(cid, "x")

    await connections.stop()


@pytest.mark.anyio
async def test_close_with_drain_flushes_queued_messages(connections):
    ws = FakeWebSocket()
    cid = await connections.open(ws)

    connections.send(cid, "last words")
    await connections.close(cid, code=1002, drain_timeout=1.0)

    assert ws.sent == ["last words"]
    assert ws.closed_with == (1002, "")
    assert connections.stats["messages_sent"] == 1


@pytest.mark.anyio
async def test_evict_closes_in_background(connections):
    ws = FakeWebSocket()
    cid = await connections.open(ws)

    connections.evict(cid)

    await wait_until(lambda: ws.closed_with is not None)
    assert ws.closed_with[0] == 1013
    assert not connections.is_open(cid)


@pytest.mark.anyio
async def test_touch_and_record_on_closed_channel(connections):
    cid = await connections.open(FakeWebSocket())
    assert connections.touch(cid) is True

    await connections.close(cid)

    assert connections.touch(cid) is False
    with pytest.raises(ChannelClosed):
        connections.record_subscription(cid, "chat.trip-1")


@pytest.mark.anyio
async def test_reaper_closes_silent_channels():
    connections = ConnectionManager(heartbeat_timeout_seconds=0.1)
    await connections.start()

    ws = FakeWebSocket()
    cid = await connections.open(ws)

    await wait_until(lambda: not connections.is_open(cid))
    assert ws.closed_with == (1000, "Heartbeat timeout")

    await connections.stop()


@pytest.mark.anyio
async def test_stop_closes_every_channel():
    connections = ConnectionManager(heartbeat_timeout_seconds=0)
    sockets = [FakeWebSocket() for _ in range(3)]
    for ws in sockets:
        await connections.open(ws)

    await connections.stop()

    assert connections.channel_count == 0
    assert all(ws.closed_with == (1001, "Server shutting down") for ws in sockets)


@pytest.mark.anyio
async def test_channel_public_view(connections):
    cid = await connections.open(FakeWebSocket(delay=10))
    connections.record_subscription(cid, "progress.exec-1")
    connections.send(cid, "a")
    connections.send(cid, "b")

    view = connections.get_channel(cid).to_public_dict()
    assert view["channel_id"] == cid
    assert view["state"] == "open"
    assert view["topics"] == ["progress.exec-1"]
    assert connections.queue_size(cid) >= 1
    assert connections.queue_size("ch-missing") == 0
