from __future__ import annotations

import pytest

from tripbus.routing import TopicRegistry


def _admit(channel_id):
    pass


def _refuse(channel_id):
    raise RuntimeError("not live")


@pytest.mark.anyio
async def test_add_remove_reclaims():
    registry = TopicRegistry()

    assert await registry.add("chat.trip-1", "ch-a", _admit) is True
    assert "chat.trip-1" in registry
    assert len(registry) == 1

    assert await registry.remove("chat.trip-1", "ch-a") is True
    assert "chat.trip-1" not in registry
    assert await registry.remove("chat.trip-1", "ch-a") is False


@pytest.mark.anyio
async def test_refused_admission_leaves_no_topic():
    registry = TopicRegistry()

    with pytest.raises(RuntimeError):
        await registry.add("chat.trip-1", "ch-a", _refuse)

    assert len(registry) == 0


@pytest.mark.anyio
async def test_snapshot_and_clear():
    registry = TopicRegistry()
    await registry.add("progress.exec-1", "ch-a", _admit)
    await registry.add("progress.exec-1", "ch-b", _admit)

    assert sorted(await registry.snapshot("progress.exec-1")) == ["ch-a", "ch-b"]
    assert await registry.snapshot("progress.none") == []
    assert registry.counts() == {"progress.exec-1": 2}

    assert await registry.clear() == 1
    assert len(registry) == 0
