"""
Tests for the in-process broadcast channel.

Run with: pytest services/quizstore/tests/test_events.py -v
"""
import asyncio

from quizstore.core.events import RECORD_DELETED, BroadcastChannel, ChannelEvent, get_channel, reset_channels


class TestBroadcastChannel:
    def test_sender_is_not_echoed(self):
        channel = BroadcastChannel("t")
        seen_a, seen_b = [], []
        channel.subscribe(seen_a.append, token="a")
        channel.subscribe(seen_b.append, token="b")

        event = ChannelEvent(RECORD_DELETED, "q1", sender="a")
        assert channel.publish(event) == 1
        assert seen_a == []
        assert seen_b == [event]
        assert event.to_message() == {"type": "RECORD_DELETED", "id": "q1"}

    def test_unsubscribe(self):
        channel = BroadcastChannel("t")
        seen = []
        unsubscribe = channel.subscribe(seen.append)
        assert len(channel) == 1
        unsubscribe()
        unsubscribe()
        assert len(channel) == 0
        assert channel.publish(ChannelEvent(RECORD_DELETED, "q1")) == 0
        assert seen == []

    def test_failing_subscriber_does_not_stop_delivery(self):
        channel = BroadcastChannel("t")
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        channel.subscribe(broken)
        channel.subscribe(seen.append)
        assert channel.publish(ChannelEvent(RECORD_DELETED, "q1")) == 1
        assert [e.id for e in seen] == ["q1"]

    async def test_coroutine_subscribers_are_scheduled(self):
        channel = BroadcastChannel("t")
        done = asyncio.Event()

        async def handler(event):
            done.set()

        channel.subscribe(handler)
        channel.publish(ChannelEvent(RECORD_DELETED, "q1"))
        await asyncio.wait_for(done.wait(), timeout=1)

    async def test_scheduled_deliveries_are_tracked(self):
        channel = BroadcastChannel("t")
        gate = asyncio.Event()
        seen = []

        async def slow(event):
            await gate.wait()
            seen.append(event.id)

        async def broken(event):
            raise RuntimeError("listener bug")

        channel.subscribe(slow)
        channel.subscribe(broken)
        channel.publish(ChannelEvent(RECORD_DELETED, "q1"))
        assert channel.pending == 2

        gate.set()
        await asyncio.wait_for(channel.wait_delivered(), timeout=1)
        assert seen == ["q1"]
        assert channel.pending == 0


class TestRegistry:
    def test_same_name_same_channel(self):
        reset_channels()
        first = get_channel("quiz-events")
        assert get_channel("quiz-events") is first
        assert get_channel("other") is not first

        reset_channels()
        assert get_channel("quiz-events") is not first
