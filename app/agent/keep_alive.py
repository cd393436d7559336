"""
Keep-alive monitor: pings the background receiver while a page is open.

A missing ALIVE reply means the agent was terminated and unregistered, so
the monitor registers it again.
"""

import asyncio
import logging

from app.agent.platform import AgentRegistration, MessageChannel, PageHost
from app.agent.receiver import ALIVE, KEEP_ALIVE, PERIODIC_CHECK_UPDATES, SYNC_KEEP_ALIVE

logger = logging.getLogger(__name__)

PERIODIC_SYNC_MIN_INTERVAL_MS = 24 * 60 * 60 * 1000


class KeepAliveMonitor:
    def __init__(
        self,
        page: PageHost,
        interval: float = 300.0,
        ack_timeout: float = 5.0,
        worker_script: str = "/service-worker.js",
    ):
        self.page = page
        self.interval = interval
        self.ack_timeout = ack_timeout
        self.worker_script = worker_script
        self.registration: AgentRegistration | None = None

    async def start(self) -> AgentRegistration:
        """Register background sync and periodic sync where the platform has them."""
        registration = await self.page.agent_ready()
        self.registration = registration

        if registration.supports_sync:
            try:
                await registration.register_sync(SYNC_KEEP_ALIVE)
                logger.info("Background sync registered")
            except Exception as e:
                logger.warning("Background sync not available: %s", e)

        if registration.supports_periodic_sync:
            try:
                if await self.page.periodic_sync_permission() == "granted":
                    await registration.register_periodic_sync(
                        PERIODIC_CHECK_UPDATES, PERIODIC_SYNC_MIN_INTERVAL_MS
                    )
                    logger.info("Periodic sync registered")
            except Exception as e:
                logger.warning("Periodic sync not available: %s", e)

        return registration

    async def ping(self) -> bool:
        if self.registration is None:
            return False
        worker = self.registration.active_worker
        if worker is None:
            return False

        channel = MessageChannel()
        try:
            worker.post_message({"type": KEEP_ALIVE}, [channel.port2])
            reply = await channel.receive(timeout=self.ack_timeout)
        except asyncio.TimeoutError:
            return False
        except Exception as e:
            logger.warning("Keep-alive ping failed: %s", e)
            return False
        return isinstance(reply, dict) and reply.get("type") == ALIVE

    async def check(self) -> bool:
        """Ping once; register the agent again when it does not answer."""
        if await self.ping():
            logger.debug("Background receiver heartbeat")
            return True

        logger.warning("Background receiver did not answer, registering %s again", self.worker_script)
        try:
            self.registration = await self.page.register_agent(self.worker_script)
        except Exception as e:
            logger.error("Re-registering background receiver failed: %s", e)
        return False

    async def run(self, stop_event: asyncio.Event) -> None:
        try:
            await self.start()
        except Exception as e:
            logger.error("Failed to initialize keep-alive: %s", e)
            return

        logger.info("Keep-alive monitoring started")
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self.check()
