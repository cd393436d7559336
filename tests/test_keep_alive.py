"""Tests for the keep-alive monitor."""

from app.agent.keep_alive import PERIODIC_SYNC_MIN_INTERVAL_MS, KeepAliveMonitor
from app.agent.receiver import BackgroundReceiver
from tests.fakes import FakeAgentHost, FakePageHost, FakeRegistration, FakeWorker


def live_registration(**kwargs) -> FakeRegistration:
    return FakeRegistration(worker=FakeWorker(BackgroundReceiver(FakeAgentHost())), **kwargs)


class TestKeepAliveMonitor:
    async def test_start_registers_sync(self):
        registration = live_registration()
        monitor = KeepAliveMonitor(FakePageHost(registration=registration))

        await monitor.start()

        assert registration.sync_tags == ["keep-alive"]
        assert registration.periodic_tags == [("check-updates", PERIODIC_SYNC_MIN_INTERVAL_MS)]

    async def test_periodic_sync_needs_permission(self):
        registration = live_registration()
        page = FakePageHost(registration=registration)
        page.periodic_permission = "prompt"

        await KeepAliveMonitor(page).start()

        assert registration.periodic_tags == []

    async def test_unsupported_sync_is_skipped(self):
        registration = live_registration(supports_sync=False, supports_periodic_sync=False)

        await KeepAliveMonitor(FakePageHost(registration=registration)).start()

        assert registration.sync_tags == []
        assert registration.periodic_tags == []

    async def test_live_agent_answers(self):
        page = FakePageHost(registration=live_registration())
        monitor = KeepAliveMonitor(page, ack_timeout=1.0)
        await monitor.start()

        assert await monitor.check() is True
        assert page.registered_scripts == []

    async def test_dead_agent_is_registered_again(self):
        page = FakePageHost(registration=FakeRegistration(worker=FakeWorker(receiver=None)))
        page.replacement_registration = live_registration()
        monitor = KeepAliveMonitor(page, ack_timeout=0.05)
        await monitor.start()

        assert await monitor.check() is False
        assert page.registered_scripts == ["/service-worker.js"]
        assert monitor.registration is page.replacement_registration
        assert await monitor.check() is True

    async def test_no_active_worker(self):
        page = FakePageHost(registration=FakeRegistration(worker=None))
        monitor = KeepAliveMonitor(page, ack_timeout=0.05)
        await monitor.start()

        assert await monitor.ping() is False
