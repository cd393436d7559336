"""
Foreground bridge: keeps this device registered in the subscription store.

Runs inside an open application window. It waits for the signed-in
session, walks the notification permission states, subscribes when no
subscription exists and upserts it for the principal. Persisting is best
effort: push is an enhancement, so sink failures end up as warnings.
"""

import asyncio
import enum
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

import httpx

from app.agent.platform import PageHost, url_base64_to_bytes
from app.agent.receiver import NOTIFICATION_CLICKED, PUSH_RECEIVED, SUBSCRIPTION_CHANGED
from app.errors import StoreError, ValidationError
from app.services.subscription_store import SubscriptionRecord
from app.settings import settings

logger = logging.getLogger(__name__)

PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"
PERMISSION_DEFAULT = "default"

DEFAULT_RECHECK_INTERVAL = 300.0
DEFAULT_SESSION_TIMEOUT = 10.0
SESSION_POLL_INTERVAL = 0.1

Listener = Callable[[dict[str, Any]], Awaitable[None] | None]


class BridgeResult(str, enum.Enum):
    SUBSCRIBED = "subscribed"
    PERMISSION_PENDING = "permission_pending"
    NO_SESSION = "no_session"
    UNSUPPORTED = "unsupported"
    SUBSCRIBE_FAILED = "subscribe_failed"
    STORE_FAILED = "store_failed"


class SubscriptionSink(ABC):
    """Where the bridge persists subscriptions."""

    @abstractmethod
    async def save(self, principal_id: str, record: SubscriptionRecord) -> None: ...


class HttpSubscriptionSink(SubscriptionSink):
    """Persist through the service's POST /push/subscribe endpoint."""

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout

    async def save(self, principal_id: str, record: SubscriptionRecord) -> None:
        if self.client is not None:
            await self._post(self.client, principal_id, record)
            return
        async with httpx.AsyncClient() as client:
            await self._post(client, principal_id, record)

    async def _post(self, client: httpx.AsyncClient, principal_id: str, record: SubscriptionRecord) -> None:
        try:
            response = await client.post(
                f"{self.base_url}/push/subscribe",
                json={"user_id": principal_id, "subscription": record.to_dict()},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreError(
                f"Subscription upsert failed {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.RequestError as e:
            raise StoreError(f"Subscription upsert request failed: {e}") from e


class ForegroundBridge:
    """Subscribe-if-missing loop and relay for messages from the background receiver."""

    def __init__(
        self,
        page: PageHost,
        sink: SubscriptionSink,
        vapid_public_key: str | None = None,
        *,
        recheck_interval: float = DEFAULT_RECHECK_INTERVAL,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        persist_attempts: int = 3,
        persist_backoff: float = 1.0,
    ):
        self.page = page
        self.sink = sink
        self.vapid_public_key = vapid_public_key or settings.vapid_public_key
        self.recheck_interval = recheck_interval
        self.session_timeout = session_timeout
        self.persist_attempts = max(1, persist_attempts)
        self.persist_backoff = persist_backoff
        self._listeners: dict[str, list[Listener]] = {}

    async def wait_for_session(self, timeout: float | None = None) -> str | None:
        """Poll the page's auth layer until a principal shows up.

        The auth layer may initialize after the page loads; None after the
        timeout means no session.
        """
        timeout = self.session_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            principal_id = await self.page.get_principal()
            if principal_id:
                return principal_id
            if loop.time() >= deadline:
                logger.warning("No signed-in user after %.1fs, push not initialized", timeout)
                return None
            await asyncio.sleep(SESSION_POLL_INTERVAL)

    async def ensure_registration(self) -> BridgeResult:
        """Make sure this device has a subscription stored for the signed-in user."""
        if not self.page.supports_push:
            logger.warning("Push not supported on this browser")
            return BridgeResult.UNSUPPORTED

        principal_id = await self.wait_for_session()
        if principal_id is None:
            return BridgeResult.NO_SESSION

        permission = self.page.notification_permission()
        if permission != PERMISSION_GRANTED:
            # Denied is asked again as well; the platform decides whether to prompt
            logger.info("Notification permission is %s, requesting", permission)
            permission = await self.page.request_permission()
        if permission != PERMISSION_GRANTED:
            logger.info(
                "Notification permission %s, checking again in %.0fs",
                permission, self.recheck_interval,
            )
            return BridgeResult.PERMISSION_PENDING

        try:
            registration = await self.page.agent_ready()
            record = await registration.get_subscription()
            if record is None:
                if not self.vapid_public_key:
                    logger.error("Cannot subscribe: VAPID public key not configured")
                    return BridgeResult.SUBSCRIBE_FAILED
                logger.info("Subscribing user %s", principal_id)
                record = await registration.subscribe(url_base64_to_bytes(self.vapid_public_key))
        except Exception as e:
            logger.error("Push subscription failed: %s", e)
            return BridgeResult.SUBSCRIBE_FAILED

        if await self._persist(principal_id, record):
            return BridgeResult.SUBSCRIBED
        return BridgeResult.STORE_FAILED

    async def run(self, stop_event: asyncio.Event) -> BridgeResult | None:
        """Retry registration until the subscription is stored or stop is set."""
        while not stop_event.is_set():
            result = await self.ensure_registration()
            if result in (BridgeResult.SUBSCRIBED, BridgeResult.UNSUPPORTED):
                return result
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.recheck_interval)
            except asyncio.TimeoutError:
                continue
        return None

    def add_listener(self, message_type: str, listener: Listener) -> None:
        self._listeners.setdefault(message_type, []).append(listener)

    async def handle_agent_message(self, message: Any) -> None:
        """Handle a message posted by the background receiver."""
        if not isinstance(message, dict):
            logger.debug("Ignoring agent message: %r", message)
            return

        message_type = message.get("type")
        if message_type in (PUSH_RECEIVED, NOTIFICATION_CLICKED):
            await self._notify(message_type, message)
        elif message_type == SUBSCRIPTION_CHANGED:
            await self._on_subscription_changed(message)

    async def _notify(self, message_type: str, message: dict[str, Any]) -> None:
        for listener in self._listeners.get(message_type, []):
            try:
                result = listener(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("%s listener failed: %s", message_type, e)

    async def _on_subscription_changed(self, message: dict[str, Any]) -> None:
        try:
            record = SubscriptionRecord.from_dict(message.get("subscription") or {})
        except ValidationError as e:
            logger.warning("Renewed subscription is malformed: %s", e.message)
            return

        principal_id = await self.page.get_principal()
        if not principal_id:
            logger.warning("Subscription renewed but no user is signed in, not saved")
            return
        await self._persist(principal_id, record)

    async def _persist(self, principal_id: str, record: SubscriptionRecord) -> bool:
        for attempt in range(1, self.persist_attempts + 1):
            try:
                await self.sink.save(principal_id, record)
            except Exception as e:
                logger.warning(
                    "Saving push subscription failed (attempt %d/%d): %s",
                    attempt, self.persist_attempts, e,
                )
                if attempt < self.persist_attempts:
                    await asyncio.sleep(self.persist_backoff * attempt)
                continue
            logger.info("Push subscription saved for user %s", principal_id)
            return True
        return False
