import json

import pytest

from resume_engine.services.progress_broadcaster import (
    COMPLETE,
    PROGRESS,
    ProgressBroadcaster,
    ProgressEvent,
)


class TestProgressEvent:
    def test_sse_frame(self):
        frame = ProgressEvent(type=PROGRESS, stage="parsing", percentage=30, message="Extracting").to_sse()
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        payload = json.loads(frame[len("data: "):])
        assert payload["type"] == PROGRESS
        assert payload["stage"] == "parsing"
        assert payload["percentage"] == 30
        assert payload["timestamp"]


class TestProgressBroadcaster:
    @pytest.mark.asyncio
    async def test_publish_reaches_document_observers_only(self):
        broadcaster = ProgressBroadcaster()
        mine = await broadcaster.subscribe("u1", "doc-1")
        other_doc = await broadcaster.subscribe("u1", "doc-2")

        delivered = await broadcaster.publish("doc-1", ProgressEvent(type=PROGRESS, percentage=10))

        assert delivered == 1
        assert (await mine.queue.get()).percentage == 10
        assert other_doc.queue.empty()

    @pytest.mark.asyncio
    async def test_user_scoped_publish(self):
        broadcaster = ProgressBroadcaster()
        owner = await broadcaster.subscribe("u1", "doc-1")
        stranger = await broadcaster.subscribe("u2", "doc-1")

        await broadcaster.publish("doc-1", ProgressEvent(type=COMPLETE, percentage=100), user_id="u1")

        assert owner.queue.qsize() == 1
        assert stranger.queue.empty()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        broadcaster = ProgressBroadcaster()
        subscription = await broadcaster.subscribe("u1", "doc-1")
        await broadcaster.unsubscribe(subscription)

        assert await broadcaster.publish("doc-1", ProgressEvent(type=PROGRESS)) == 0
        assert await broadcaster.observer_count() == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_the_observer(self):
        broadcaster = ProgressBroadcaster(max_queue_size=1)
        slow = await broadcaster.subscribe("u1", "doc-1")
        fast = await broadcaster.subscribe("u1", "doc-1")

        await broadcaster.publish("doc-1", ProgressEvent(type=PROGRESS, percentage=10))
        await fast.queue.get()
        delivered = await broadcaster.publish("doc-1", ProgressEvent(type=PROGRESS, percentage=20))

        assert delivered == 1
        assert slow.queue.qsize() == 1
        assert await broadcaster.observer_count("doc-1") == 1
