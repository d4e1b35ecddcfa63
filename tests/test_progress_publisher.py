from __future__ import annotations

import pytest

from tripbus.events import ProgressEvent
from tripbus.progress import ProgressPublisher

from conftest import FakeWebSocket, wait_until


@pytest.mark.anyio
async def test_lifecycle_helpers(connections, router):
    publisher = ProgressPublisher(router)
    ws = FakeWebSocket()
    cid = await connections.open(ws)
    await router.subscribe(cid, "progress.exec-1")

    assert await publisher.started("exec-1") == 1
    assert await publisher.progress("exec-1", "searching-hotels", progress_percent=40) == 1
    assert await publisher.completed("exec-1", payload={"itinerary_id": "trip-1"}) == 1

    await wait_until(lambda: len(ws.sent) == 3)
    started, middle, done = [m["payload"] for m in ws.messages()]
    assert (started["phase"], started["progress_percent"]) == ("started", 0.0)
    assert (middle["phase"], middle["progress_percent"]) == ("searching-hotels", 40.0)
    assert (done["phase"], done["progress_percent"]) == ("completed", 100.0)
    assert done["data"] == {"itinerary_id": "trip-1"}


@pytest.mark.anyio
async def test_failed_publishes_error_message(connections, router):
    publisher = ProgressPublisher(router)
    ws = FakeWebSocket()
    cid = await connections.open(ws)
    await router.subscribe(cid, "progress.exec-2")

    await publisher.failed("exec-2", "No flights found", can_retry=False)

    await wait_until(lambda: len(ws.sent) == 1)
    msg = ws.messages()[0]
    assert msg["type"] == "error"
    assert msg["topic"] == "progress.exec-2"
    assert msg["payload"]["error_code"] == "EXECUTION_FAILED"
    assert msg["payload"]["error_message"] == "No flights found"
    assert msg["payload"]["can_retry"] is False
    assert msg["payload"]["details"] == {"execution_id": "exec-2", "phase": "failed"}


@pytest.mark.anyio
async def test_publish_without_subscribers_returns_zero(router):
    publisher = ProgressPublisher(router)
    event = ProgressEvent(execution_id="exec-3", phase="started")

    assert await publisher.publish(event) == 0
