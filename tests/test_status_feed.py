"""Tests for SOS status tracking over realtime events and polling."""

import asyncio

from app.services.status_feed import SosStatusTracker


class StatusSource:
    def __init__(self, status=None):
        self.status = status
        self.error: Exception | None = None

    async def fetch(self):
        if self.error:
            raise self.error
        return self.status


def make_tracker(source: StatusSource):
    applied = []

    async def on_change(status):
        applied.append(status)

    return SosStatusTracker(source.fetch, on_change), applied


class TestSosStatusTracker:
    async def test_prime_does_not_notify(self):
        tracker, applied = make_tracker(StatusSource("waiting"))

        assert await tracker.prime() == "waiting"
        assert tracker.last_applied == "waiting"
        assert applied == []

    async def test_realtime_and_poll_deliver_once(self):
        source = StatusSource("waiting")
        tracker, applied = make_tracker(source)
        await tracker.prime()

        source.status = "dispatched"
        assert await tracker.on_realtime_event({"new": {"status": "dispatched"}}) is True
        assert await tracker.poll_once() is False

        assert applied == ["dispatched"]

    async def test_concurrent_duplicates_apply_once(self):
        tracker, applied = make_tracker(StatusSource())

        results = await asyncio.gather(
            tracker.apply("arrived", source="realtime"),
            tracker.apply("arrived", source="poll"),
        )

        assert sorted(results) == [False, True]
        assert applied == ["arrived"]

    async def test_empty_events_are_ignored(self):
        tracker, applied = make_tracker(StatusSource())

        assert await tracker.on_realtime_event({}) is False
        assert await tracker.apply(None) is False
        assert applied == []

    async def test_poll_failure_is_contained(self):
        source = StatusSource()
        source.error = ConnectionError("realtime down")
        tracker, applied = make_tracker(source)

        assert await tracker.poll_once() is False
        assert applied == []

    async def test_run_polling_until_stopped(self):
        source = StatusSource("waiting")
        tracker, applied = make_tracker(source)
        stop = asyncio.Event()

        task = asyncio.ensure_future(tracker.run_polling(stop, interval=0.01))
        await asyncio.sleep(0.05)
        source.status = "arrived"
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert applied == ["waiting", "arrived"]
