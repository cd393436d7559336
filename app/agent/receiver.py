"""
Background receiver: the service worker that shows pushes and routes clicks.

Mobile platforms expect a visible notification for every push event and
may throttle or drop the subscription otherwise, so every push handler
ends in exactly one show_notification() call, falling back to a generic
notification when the primary one cannot be rendered.

The host may terminate the agent whenever it is idle. Nothing here is kept
between events except configuration and the lifecycle state the host
reports; anything durable goes to the page (and from there to the store).
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urljoin, urlparse

from app.agent.platform import (
    ActivateEvent,
    AgentHost,
    ExtendableEvent,
    InstallEvent,
    MessageEvent,
    NotificationClickEvent,
    NotificationCloseEvent,
    PeriodicSyncEvent,
    PushEvent,
    PushSubscriptionChangeEvent,
    SyncEvent,
    WindowClient,
    url_base64_to_bytes,
)
from app.errors import AgentDisplayError
from app.settings import settings

logger = logging.getLogger(__name__)

APP_SHELL = (
    "/public/html/index.html",
    "/public/html/incident-report.html",
    "/public/html/profile.html",
    "/public/html/map.html",
    "/public/html/login.html",
    "/public/html/signup.html",
    "/manifest.json",
    "/public/img/icon-192.png",
    "/public/img/icon-512.png",
    "/public/css/style.css",
)

VIBRATION_PATTERN = [200, 100, 200, 100, 200]
FALLBACK_TAG = "fallback-notification"

# Messages exchanged with pages
PUSH_RECEIVED = "PUSH_RECEIVED"
NOTIFICATION_CLICKED = "NOTIFICATION_CLICKED"
SUBSCRIPTION_CHANGED = "SUBSCRIPTION_CHANGED"
KEEP_ALIVE = "KEEP_ALIVE"
ALIVE = "ALIVE"
GET_VERSION = "GET_VERSION"
VERSION = "VERSION"
SKIP_WAITING = "SKIP_WAITING"
CLAIM_CLIENTS = "CLAIM_CLIENTS"

# Notification actions
ACTION_VIEW = "open"
ACTION_DISMISS = "close"

# Sync tags
SYNC_KEEP_ALIVE = "keep-alive"
PERIODIC_CHECK_UPDATES = "check-updates"


class AgentState(str, enum.Enum):
    INSTALLING = "installing"
    ACTIVATED = "activated"
    IDLE = "idle"
    HANDLING_PUSH = "handling-push"
    HANDLING_CLICK = "handling-click"


@dataclass
class PushContent:
    """Notification content parsed from a push message."""

    title: str
    body: str
    icon: str
    badge: str
    image: str | None = None
    url: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "image": self.image,
            "url": self.url,
            "data": self.data,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


class BackgroundReceiver:
    """Event handlers of the background agent."""

    def __init__(
        self,
        host: AgentHost,
        *,
        vapid_public_key: str | None = None,
        cache_name: str | None = None,
        app_name: str | None = None,
        home_url: str | None = None,
        icon: str | None = None,
        badge: str | None = None,
        precache_urls: tuple[str, ...] = APP_SHELL,
        clock: Callable[[], int] = _now_ms,
    ):
        self.host = host
        self.vapid_public_key = vapid_public_key or settings.vapid_public_key
        self.cache_name = cache_name or settings.agent_cache_name
        self.app_name = app_name or settings.app_name
        self.home_url = home_url or settings.default_url
        self.icon = icon or settings.default_icon
        self.badge = badge or settings.default_badge
        self.precache_urls = precache_urls
        self.clock = clock
        self.state = AgentState.INSTALLING

    # ------------------------------------------------------------------
    # Event loop entry
    # ------------------------------------------------------------------

    async def handle(self, event: ExtendableEvent) -> list[BaseException]:
        """Dispatch an event and wait for all work it registered."""
        handler = self._handlers().get(type(event))
        if handler is None:
            logger.debug("No handler for %s", type(event).__name__)
            return []
        handler(event)
        failures = await event.settled()
        if self.state is not AgentState.INSTALLING:
            self.state = AgentState.IDLE
        return failures

    def _handlers(self) -> dict[type, Callable[[Any], None]]:
        return {
            InstallEvent: self.on_install,
            ActivateEvent: self.on_activate,
            PushEvent: self.on_push,
            NotificationClickEvent: self.on_notification_click,
            NotificationCloseEvent: self.on_notification_close,
            PushSubscriptionChangeEvent: self.on_push_subscription_change,
            MessageEvent: self.on_message,
            SyncEvent: self.on_sync,
            PeriodicSyncEvent: self.on_periodic_sync,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def on_install(self, event: InstallEvent) -> None:
        logger.info("[agent] Installing %s", self.cache_name)
        self.state = AgentState.INSTALLING
        event.wait_until(self._precache())

    async def _precache(self) -> None:
        try:
            cache = await self.host.caches.open(self.cache_name)
            results = await asyncio.gather(
                *(cache.add(url) for url in self.precache_urls),
                return_exceptions=True,
            )
            for url, result in zip(self.precache_urls, results):
                if isinstance(result, Exception):
                    logger.warning("[agent] Failed to cache %s: %s", url, result)
        except Exception as e:
            # Install even when some assets could not be cached
            logger.error("[agent] Precache failed: %s", e)
        await self.host.skip_waiting()

    def on_activate(self, event: ActivateEvent) -> None:
        logger.info("[agent] Activating")
        self.state = AgentState.ACTIVATED
        event.wait_until(self._activate())

    async def _activate(self) -> None:
        names = await self.host.caches.keys()
        stale = [name for name in names if name != self.cache_name]
        for name in stale:
            logger.info("[agent] Deleting old cache: %s", name)
        await asyncio.gather(*(self.host.caches.delete(name) for name in stale))
        await self.host.claim_clients()

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def default_content(self) -> PushContent:
        return PushContent(
            title=self.app_name,
            body="You have a new alert",
            icon=self.icon,
            badge=self.badge,
            url=self.home_url,
        )

    def parse_push(self, event: PushEvent) -> PushContent:
        """Parse the payload; unparseable data still yields displayable content."""
        content = self.default_content()
        if event.data is None:
            return content

        try:
            payload = event.json()
        except ValueError:
            logger.warning("[agent] Push payload is not JSON, showing it as text")
            content.body = event.text().strip() or content.body
            return content

        if not isinstance(payload, dict):
            logger.warning("[agent] Push payload is not an object: %r", payload)
            return content

        data = payload.get("data")
        content.title = payload.get("title") or content.title
        content.body = payload.get("body") or content.body
        content.icon = payload.get("icon") or content.icon
        content.badge = payload.get("badge") or content.badge
        content.image = payload.get("image")
        content.url = payload.get("url") or self.home_url
        content.data = data if isinstance(data, dict) else {}
        return content

    def notification_options(self, content: PushContent) -> dict[str, Any]:
        now = self.clock()
        return {
            "body": content.body,
            "icon": content.icon,
            "badge": content.badge,
            "image": content.image,
            "vibrate": list(VIBRATION_PATTERN),
            "requireInteraction": True,
            "silent": False,
            "renotify": True,
            "data": {"url": content.url or self.home_url, "timestamp": now, **content.data},
            "tag": f"spc-alert-{now}",
            "actions": [
                {"action": ACTION_VIEW, "title": "View", "icon": self.icon},
                {"action": ACTION_DISMISS, "title": "Dismiss"},
            ],
        }

    def on_push(self, event: PushEvent) -> None:
        logger.info("[agent] Push received")
        self.state = AgentState.HANDLING_PUSH
        # Display work is registered before the handler returns
        event.wait_until(self._show_push(event))

    async def _show_push(self, event: PushEvent) -> None:
        try:
            try:
                content = self.parse_push(event)
                options = self.notification_options(content)
                await self.host.show_notification(content.title, options)
            except Exception as e:
                raise AgentDisplayError(str(e)) from e
        except AgentDisplayError as e:
            logger.error("[agent] Failed to show notification: %s", e)
            await self._show_fallback()
            return

        logger.info("[agent] Notification displayed: %s", content.title)
        await self._broadcast_to_windows(
            {"type": PUSH_RECEIVED, "data": content.to_dict(), "timestamp": self.clock()}
        )

    async def _show_fallback(self) -> None:
        try:
            await self.host.show_notification(
                self.app_name,
                {
                    "body": "New alert received",
                    "icon": self.icon,
                    "badge": self.badge,
                    "tag": FALLBACK_TAG,
                },
            )
        except Exception as e:
            logger.error("[agent] Fallback notification failed too: %s", e)

    async def _broadcast_to_windows(self, message: dict[str, Any]) -> int:
        """Best effort: the notification is already visible."""
        try:
            clients = await self.host.match_clients(include_uncontrolled=True, type="window")
        except Exception as e:
            logger.warning("[agent] Could not list open windows: %s", e)
            return 0

        notified = 0
        for client in clients:
            try:
                client.post_message(message)
                notified += 1
            except Exception as e:
                logger.warning("[agent] postMessage to %s failed: %s", client.url, e)
        logger.debug("[agent] Notified %d open window(s)", notified)
        return notified

    # ------------------------------------------------------------------
    # Notification interaction
    # ------------------------------------------------------------------

    def on_notification_click(self, event: NotificationClickEvent) -> None:
        logger.info("[agent] Notification clicked (action=%r, tag=%s)",
                    event.action, event.notification.tag)
        self.state = AgentState.HANDLING_CLICK
        event.notification.close()

        if event.action == ACTION_DISMISS:
            logger.info("[agent] User dismissed notification")
            return

        url = event.notification.data.get("url") or self.home_url
        event.wait_until(self.route_click(url, event.notification.data))

    async def route_click(self, url: str, data: dict[str, Any] | None = None) -> WindowClient | None:
        """Reuse a window on the target path, else redirect one, else open one."""
        target_path = urlparse(urljoin(self.host.origin + "/", url)).path
        try:
            clients = await self.host.match_clients(include_uncontrolled=True, type="window")
            logger.debug("[agent] Found %d open window(s)", len(clients))

            for client in clients:
                if urlparse(client.url).path == target_path:
                    await client.focus()
                    self._post_clicked(client, url, data)
                    return client

            if clients and clients[0].url != "about:blank":
                first = clients[0]
                try:
                    await first.focus()
                    await first.navigate(url)
                except Exception as e:
                    logger.warning("[agent] Navigate failed, opening new window: %s", e)
                    return await self.host.open_window(url)
                self._post_clicked(first, url, data)
                return first
        except Exception as e:
            logger.error("[agent] Failed to route notification click: %s", e)

        return await self.host.open_window(url)

    def _post_clicked(self, client: WindowClient, url: str, data: dict[str, Any] | None) -> None:
        try:
            client.post_message({"type": NOTIFICATION_CLICKED, "url": url, "data": data or {}})
        except Exception as e:
            logger.warning("[agent] postMessage to %s failed: %s", client.url, e)

    def on_notification_close(self, event: NotificationCloseEvent) -> None:
        logger.info("[agent] Notification closed without click: %s", event.notification.tag)

    # ------------------------------------------------------------------
    # Subscription renewal
    # ------------------------------------------------------------------

    def on_push_subscription_change(self, event: PushSubscriptionChangeEvent) -> None:
        logger.info("[agent] Push subscription changed or expired")
        event.wait_until(self._renew_subscription())

    async def _renew_subscription(self) -> None:
        if not self.vapid_public_key:
            logger.error("[agent] Cannot renew subscription: no VAPID public key")
            return
        try:
            record = await self.host.push_subscribe(url_base64_to_bytes(self.vapid_public_key))
        except Exception as e:
            logger.error("[agent] Failed to renew push subscription: %s", e)
            return

        logger.info("[agent] Push subscription renewed")
        # Open pages persist the renewed subscription
        await self._broadcast_to_windows(
            {"type": SUBSCRIPTION_CHANGED, "subscription": record.to_dict()}
        )

    # ------------------------------------------------------------------
    # Messages and background sync
    # ------------------------------------------------------------------

    def on_message(self, event: MessageEvent) -> None:
        message_type = event.data.get("type") if isinstance(event.data, dict) else None
        reply_port = event.ports[0] if event.ports else None

        if message_type == KEEP_ALIVE:
            logger.debug("[agent] Keep-alive ping received")
            if reply_port:
                reply_port.post_message({"type": ALIVE, "timestamp": self.clock()})
        elif message_type == GET_VERSION:
            if reply_port:
                reply_port.post_message({"type": VERSION, "version": self.cache_name})
        elif message_type == SKIP_WAITING:
            event.wait_until(self.host.skip_waiting())
        elif message_type == CLAIM_CLIENTS:
            event.wait_until(self.host.claim_clients())
        else:
            logger.debug("[agent] Ignoring message: %r", event.data)

    def on_sync(self, event: SyncEvent) -> None:
        if event.tag == SYNC_KEEP_ALIVE:
            event.wait_until(self._ping("Keep-alive"))

    def on_periodic_sync(self, event: PeriodicSyncEvent) -> None:
        if event.tag == PERIODIC_CHECK_UPDATES:
            event.wait_until(self._ping("Periodic sync"))

    async def _ping(self, label: str) -> bool:
        try:
            status = await self.host.fetch(self.icon, cache="reload")
        except Exception as e:
            logger.warning("[agent] %s ping failed: %s", label, e)
            return False
        logger.info("[agent] %s ping returned %s", label, status)
        return True
