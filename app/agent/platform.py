"""
Browser platform model for the background receiver and the foreground bridge.

The receiver and the bridge are written against these interfaces; a
browser shim (or a test double) supplies the concrete host. Events follow
the service worker contract: handlers register pending work with
wait_until() and the host must not suspend the agent until settled().
"""

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Sequence

from app.services.subscription_store import SubscriptionRecord

logger = logging.getLogger(__name__)


def url_base64_to_bytes(value: str) -> bytes:
    """Decode a base64url string (VAPID public key) with or without padding."""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


# -------------------------------------------------------------------------
# Events
# -------------------------------------------------------------------------

class ExtendableEvent:
    """Event whose lifetime is extended by the work passed to wait_until()."""

    def __init__(self):
        self._pending: list[asyncio.Future] = []

    def wait_until(self, work: Awaitable[Any]) -> asyncio.Future:
        future = asyncio.ensure_future(work)
        self._pending.append(future)
        return future

    @property
    def pending(self) -> int:
        return sum(1 for future in self._pending if not future.done())

    async def settled(self) -> list[BaseException]:
        """Wait for all pending work, including work registered meanwhile.

        Failures are logged and returned; they never propagate to the host.
        """
        failures: list[BaseException] = []
        seen = 0
        while seen < len(self._pending):
            batch = self._pending[seen:]
            seen = len(self._pending)
            results = await asyncio.gather(*batch, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.error("Pending work for %s failed: %r", type(self).__name__, result)
                    failures.append(result)
        return failures


class InstallEvent(ExtendableEvent):
    pass


class ActivateEvent(ExtendableEvent):
    pass


class PushEvent(ExtendableEvent):
    """Incoming push message; data is the decrypted body, if any."""

    def __init__(self, data: bytes | None = None):
        super().__init__()
        self.data = data

    def text(self) -> str:
        if self.data is None:
            return ""
        return self.data.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text())


@dataclass
class Notification:
    """A notification the host is displaying."""

    title: str
    options: dict[str, Any] = field(default_factory=dict)
    closed: bool = False

    @property
    def tag(self) -> str | None:
        return self.options.get("tag")

    @property
    def data(self) -> dict[str, Any]:
        return self.options.get("data") or {}

    def close(self) -> None:
        self.closed = True


class NotificationClickEvent(ExtendableEvent):
    def __init__(self, notification: Notification, action: str = ""):
        super().__init__()
        self.notification = notification
        self.action = action


class NotificationCloseEvent(ExtendableEvent):
    def __init__(self, notification: Notification):
        super().__init__()
        self.notification = notification


class PushSubscriptionChangeEvent(ExtendableEvent):
    def __init__(
        self,
        old_subscription: SubscriptionRecord | None = None,
        new_subscription: SubscriptionRecord | None = None,
    ):
        super().__init__()
        self.old_subscription = old_subscription
        self.new_subscription = new_subscription


class MessagePort:
    """One end of a message channel."""

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def post_message(self, message: Any) -> None:
        self._queue.put_nowait(message)


class MessageChannel:
    """Reply channel: port2 is handed to the other side, replies are received here."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.port2 = MessagePort(self._queue)

    async def receive(self, timeout: float | None = None) -> Any:
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)


class MessageEvent(ExtendableEvent):
    def __init__(self, data: Any, ports: Sequence[MessagePort] = ()):
        super().__init__()
        self.data = data
        self.ports = list(ports)


class SyncEvent(ExtendableEvent):
    def __init__(self, tag: str):
        super().__init__()
        self.tag = tag


class PeriodicSyncEvent(ExtendableEvent):
    def __init__(self, tag: str):
        super().__init__()
        self.tag = tag


# -------------------------------------------------------------------------
# Agent-side host services
# -------------------------------------------------------------------------

class WindowClient(ABC):
    """An open application window."""

    url: str

    @abstractmethod
    async def focus(self) -> None: ...

    @abstractmethod
    async def navigate(self, url: str) -> None: ...

    @abstractmethod
    def post_message(self, message: Any) -> None: ...


class Cache(ABC):
    @abstractmethod
    async def add(self, url: str) -> None: ...


class CacheStorage(ABC):
    @abstractmethod
    async def open(self, name: str) -> Cache: ...

    @abstractmethod
    async def keys(self) -> list[str]: ...

    @abstractmethod
    async def delete(self, name: str) -> bool: ...


class AgentHost(ABC):
    """What the platform offers the background receiver."""

    origin: str
    caches: CacheStorage

    @abstractmethod
    async def show_notification(self, title: str, options: dict[str, Any]) -> None: ...

    @abstractmethod
    async def match_clients(
        self,
        include_uncontrolled: bool = False,
        type: str = "window",
    ) -> list[WindowClient]: ...

    @abstractmethod
    async def open_window(self, url: str) -> WindowClient | None: ...

    @abstractmethod
    async def push_subscribe(self, application_server_key: bytes) -> SubscriptionRecord: ...

    @abstractmethod
    async def skip_waiting(self) -> None: ...

    @abstractmethod
    async def claim_clients(self) -> None: ...

    @abstractmethod
    async def fetch(self, url: str, cache: str = "default") -> int:
        """Fetch a URL and return the HTTP status."""


# -------------------------------------------------------------------------
# Page-side services
# -------------------------------------------------------------------------

class AgentWorker(ABC):
    """Handle on the running background receiver, as seen from a page."""

    @abstractmethod
    def post_message(self, message: Any, ports: Sequence[MessagePort] = ()) -> None: ...


class AgentRegistration(ABC):
    """The page's view of the background receiver registration."""

    supports_sync: bool = False
    supports_periodic_sync: bool = False

    @property
    @abstractmethod
    def active_worker(self) -> AgentWorker | None: ...

    @abstractmethod
    async def get_subscription(self) -> SubscriptionRecord | None: ...

    @abstractmethod
    async def subscribe(self, application_server_key: bytes) -> SubscriptionRecord: ...

    @abstractmethod
    async def register_sync(self, tag: str) -> None: ...

    @abstractmethod
    async def register_periodic_sync(self, tag: str, min_interval_ms: int) -> None: ...


class PageHost(ABC):
    """What an open application window offers the foreground bridge."""

    supports_push: bool = True

    @abstractmethod
    async def get_principal(self) -> str | None:
        """Id of the signed-in user, or None while the session is not ready."""

    @abstractmethod
    def notification_permission(self) -> str:
        """Current permission: default, granted or denied."""

    @abstractmethod
    async def request_permission(self) -> str: ...

    @abstractmethod
    async def periodic_sync_permission(self) -> str: ...

    @abstractmethod
    async def agent_ready(self) -> AgentRegistration: ...

    @abstractmethod
    async def register_agent(self, script_url: str) -> AgentRegistration: ...
