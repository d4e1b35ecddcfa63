from __future__ import annotations

import asyncio

import pytest

from tripbus.events import ProgressEvent
from tripbus.progress import ProgressPublisher
from tripbus.protocol import MessageEnvelope, MessageType
from tripbus.session import ChannelClosed, ConnectionManager
from tripbus.routing import TopicRouter

from conftest import FakeWebSocket, settle, wait_until


def _progress(execution_id: str, phase: str) -> MessageEnvelope:
    return ProgressEvent(execution_id=execution_id, phase=phase).to_envelope()


@pytest.mark.anyio
async def test_subscriber_receives_published_message_once(connections, router):
    ws = FakeWebSocket()
    cid = await connections.open(ws)

    assert await router.subscribe(cid, "progress.exec-1") is True
    # Subscribing again does not duplicate delivery
    assert await router.subscribe(cid, "progress.exec-1") is False

    delivered = await router.publish("progress.exec-1", _progress("exec-1", "searching-flights"))
    assert delivered == 1

    await wait_until(lambda: len(ws.sent) == 1)
    await settle()
    assert len(ws.sent) == 1

    msg = ws.messages()[0]
    assert msg["type"] == "progress"
    assert msg["topic"] == "progress.exec-1"
    assert msg["payload"]["phase"] == "searching-flights"


@pytest.mark.anyio
async def test_unsubscribed_channel_receives_nothing_further(connections, router):
    ws = FakeWebSocket()
    cid = await connections.open(ws)
    await router.subscribe(cid, "chat.trip-1")

    await router.publish("chat.trip-1", _progress("x", "first"))
    await wait_until(lambda: len(ws.sent) == 1)

    assert await router.unsubscribe(cid, "chat.trip-1") is True
    assert await router.unsubscribe(cid, "chat.trip-1") is False

    assert await router.publish("chat.trip-1", _progress("x", "second")) == 0
    await settle()
    assert len(ws.sent) == 1
    assert connections.get_channel(cid).topics == set()


@pytest.mark.anyio
async def test_close_unsubscribes_from_every_topic(connections, router):
    ws = FakeWebSocket()
    cid = await connections.open(ws)
    await router.subscribe(cid, "progress.exec-1")
    await router.subscribe(cid, "chat.trip-1")

    assert await connections.close(cid) is True

    assert router.subscriber_count("progress.exec-1") == 0
    assert router.subscriber_count("chat.trip-1") == 0
    assert router.topics() == {}
    assert await router.publish("progress.exec-1", _progress("exec-1", "late")) == 0
    assert router.stats["messages_dropped"] == 0
    assert ws.closed_with == (1000, "")


@pytest.mark.anyio
async def test_publish_without_subscribers_is_noop(router):
    assert await router.publish("progress.nobody", _progress("nobody", "started")) == 0
    assert router.topic_count == 0
    assert router.stats["messages_published"] == 1
    assert router.stats["messages_delivered"] == 0


@pytest.mark.anyio
async def test_last_unsubscribe_reclaims_topic(connections, router):
    a = await connections.open(FakeWebSocket())
    b = await connections.open(FakeWebSocket())
    await router.subscribe(a, "chat.trip-2")
    await router.subscribe(b, "chat.trip-2")
    assert router.topics() == {"chat.trip-2": 2}

    await router.unsubscribe(a, "chat.trip-2")
    assert router.topics() == {"chat.trip-2": 1}

    await router.unsubscribe(b, "chat.trip-2")
    assert router.topics() == {}

    # A new subscription starts from an empty set
    await router.subscribe(a, "chat.trip-2")
    assert router.subscriber_count("chat.trip-2") == 1


@pytest.mark.anyio
async def test_subscribe_closed_channel_raises(connections, router):
    cid = await connections.open(FakeWebSocket())
    await connections.close(cid)

    with pytest.raises(ChannelClosed):
        await router.subscribe(cid, "progress.exec-1")

    # The topic created for the failed subscription is not left behind
    assert router.topic_count == 0


@pytest.mark.anyio
async def test_slow_subscriber_does_not_block_others():
    connections = ConnectionManager(max_queue_size=2, heartbeat_timeout_seconds=0)
    router = TopicRouter(connections)

    slow_ws = FakeWebSocket(delay=10)
    fast_ws = FakeWebSocket()
    slow = await connections.open(slow_ws)
    fast = await connections.open(fast_ws)
    await router.subscribe(slow, "progress.exec-9")
    await router.subscribe(fast, "progress.exec-9")

    for i in range(5):
        await router.publish("progress.exec-9", _progress("exec-9", f"step-{i}"))

    await wait_until(lambda: len(fast_ws.sent) == 5)
    await wait_until(lambda: not connections.is_open(slow))

    assert [m["payload"]["phase"] for m in fast_ws.messages()] == [f"step-{i}" for i in range(5)]
    assert slow_ws.closed_with is not None
    assert slow_ws.closed_with[0] == 1013
    assert router.subscriber_count("progress.exec-9") == 1
    assert router.stats["messages_dropped"] >= 1

    await connections.stop()


@pytest.mark.anyio
async def test_dead_subscriber_does_not_block_others(connections, router):
    dead_ws = FakeWebSocket(fail=True)
    live_ws = FakeWebSocket()
    dead = await connections.open(dead_ws)
    live = await connections.open(live_ws)
    await router.subscribe(dead, "chat.trip-3")
    await router.subscribe(live, "chat.trip-3")

    await router.publish("chat.trip-3", _progress("x", "one"))
    await wait_until(lambda: not connections.is_open(dead))

    await router.publish("chat.trip-3", _progress("x", "two"))
    await wait_until(lambda: len(live_ws.sent) == 2)

    assert router.subscriber_count("chat.trip-3") == 1
    assert connections.is_open(live)


@pytest.mark.anyio
async def test_progress_order_and_no_replay_for_late_subscriber(connections, router):
    publisher = ProgressPublisher(router)
    a_ws = FakeWebSocket()
    b_ws = FakeWebSocket()
    a = await connections.open(a_ws)
    b = await connections.open(b_ws)

    await router.subscribe(a, "progress.exec-42")
    await publisher.progress("exec-42", "searching-flights")
    await publisher.progress("exec-42", "done")

    await router.subscribe(b, "progress.exec-42")

    await wait_until(lambda: len(a_ws.sent) == 2)
    await settle()

    assert [m["payload"]["phase"] for m in a_ws.messages()] == ["searching-flights", "done"]
    assert all(m["type"] == MessageType.PROGRESS.value for m in a_ws.messages())
    assert b_ws.sent == []


@pytest.mark.anyio
async def test_detach_counts_removed_subscriptions(connections, router):
    cid = await connections.open(FakeWebSocket())
    await router.subscribe(cid, "progress.exec-1")

    removed = await router.detach(cid, {"progress.exec-1", "chat.unknown"})
    assert removed == 1
    assert router.topic_count == 0


@pytest.mark.anyio
async def test_subscribe_racing_close_leaves_no_subscription(connections, router):
    topic = "chat.trip-race"

    for _ in range(100):
        ws = FakeWebSocket()
        cid = await connections.open(ws)

        subscribed, closed = await asyncio.gather(
            router.subscribe(cid, topic),
            connections.close(cid),
            return_exceptions=True,
        )

        assert closed is True
        assert subscribed is True or isinstance(subscribed, ChannelClosed)
        assert router.subscriber_count(topic) == 0
        assert topic not in router.topics()

    assert await router.publish(topic, _progress("x", "after")) == 0
    assert connections.channel_count == 0


@pytest.mark.anyio
async def test_publish_racing_unsubscribe_delivers_at_most_once(connections, router):
    topic = "progress.exec-race"

    for i in range(50):
        ws = FakeWebSocket()
        cid = await connections.open(ws)
        await router.subscribe(cid, topic)

        delivered, removed = await asyncio.gather(
            router.publish(topic, _progress("exec-race", f"step-{i}")),
            router.unsubscribe(cid, topic),
        )

        assert removed is True
        assert delivered in (0, 1)
        assert await router.publish(topic, _progress("exec-race", "late")) == 0

        await wait_until(lambda: len(ws.sent) == delivered)
        await asyncio.sleep(0)
        assert [m["payload"]["phase"] for m in ws.messages()] == [f"step-{i}"] * delivered
        assert router.topic_count == 0

        await connections.close(cid)
