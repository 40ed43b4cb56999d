import asyncio

import pytest

from chatsync.utils.live_query import LiveQuery
from chatsync.utils.realtime_bus import LocalBus


class TestLocalBus:

    @pytest.mark.asyncio
    async def test_fan_out_and_cancel(self, wait_until):
        bus = LocalBus()
        received = []

        async def on_message(message):
            received.append(message)

        sub = await bus.subscribe("room", on_message)
        task = asyncio.create_task(sub.run())

        await bus.publish("room", "one")
        await bus.publish("elsewhere", "ignored")
        await wait_until(lambda: received == ["one"])

        await sub.cancel()
        await bus.publish("room", "two")
        await asyncio.wait_for(task, timeout=1.0)

        assert received == ["one"]
        assert bus.subscriber_count("room") == 0

    @pytest.mark.asyncio
    async def test_failing_handler_keeps_subscription(self, wait_until):
        bus = LocalBus()
        received = []

        async def on_message(message):
            if message == "bad":
                raise RuntimeError("boom")
            received.append(message)

        sub = await bus.subscribe("room", on_message)
        task = asyncio.create_task(sub.run())
        await bus.publish("room", "bad")
        await bus.publish("room", "good")

        await wait_until(lambda: received == ["good"])
        await sub.cancel()
        await asyncio.wait_for(task, timeout=1.0)


class TestLiveQuery:

    @pytest.mark.asyncio
    async def test_initial_and_change_snapshots(self, wait_until):
        bus = LocalBus()
        rows = [{"_id": "1"}]
        snapshots = []

        async def fetch():
            return list(rows)

        async def on_snapshot(docs):
            snapshots.append(docs)

        query = LiveQuery(bus, "messages:c1", fetch, on_snapshot)
        await query.start()
        assert snapshots == [[{"_id": "1"}]]

        rows.append({"_id": "2"})
        await bus.publish("messages:c1", "{}")
        await wait_until(lambda: len(snapshots) == 2)

        assert snapshots[-1] == [{"_id": "1"}, {"_id": "2"}]
        await query.stop()

    @pytest.mark.asyncio
    async def test_fetch_error_reports_and_stays_subscribed(self, wait_until):
        bus = LocalBus()
        calls = {"n": 0}
        snapshots, errors = [], []

        async def fetch():
            calls["n"] += 1
            if calls["n"] == 2:
                raise ConnectionError("offline")
            return [{"n": calls["n"]}]

        async def on_snapshot(docs):
            snapshots.append(docs)

        async def on_error(exc):
            errors.append(exc)

        query = LiveQuery(bus, "conversations:alice", fetch, on_snapshot, on_error)
        await query.start()
        await bus.publish("conversations:alice", "{}")
        await wait_until(lambda: len(errors) == 1)
        await bus.publish("conversations:alice", "{}")
        await wait_until(lambda: len(snapshots) == 2)

        assert snapshots == [[{"n": 1}], [{"n": 3}]]
        assert query.active
        await query.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        bus = LocalBus()

        async def fetch():
            return []

        async def on_snapshot(docs):
            pass

        query = LiveQuery(bus, "messages:c1", fetch, on_snapshot)
        await query.start()
        await query.stop()
        await query.stop()

        assert not query.active
        assert bus.subscriber_count("messages:c1") == 0
