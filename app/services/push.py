"""
Push notification fan-out using web-push.

Every subscription in a delivery plan is attempted concurrently; outcomes
are collected at a single join point and folded into a DeliveryReport.
Endpoints the push service reports as gone are pruned from the store.
"""

import asyncio
import enum
import functools
import json
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from pywebpush import WebPushException, webpush

from app.errors import (
    ConfigurationError,
    DeliveryError,
    GoneDeliveryError,
    TransientDeliveryError,
)
from app.models.push_subscription import PushSubscription
from app.services.composer import (
    ComposedNotification,
    NotificationRequest,
    NotificationType,
    compose,
)
from app.services.subscription_store import SubscriptionStore
from app.settings import Settings, settings

logger = logging.getLogger(__name__)

# Push service responses meaning the registration no longer exists
GONE_STATUS_CODES = frozenset({404, 410})


class DeliveryResult(str, enum.Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one delivery attempt."""

    subscription_id: int
    principal_id: str
    result: DeliveryResult
    error_detail: str | None = None
    status_code: int | None = None
    removed: bool = False

    @property
    def delivered(self) -> bool:
        return self.result is DeliveryResult.DELIVERED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.subscription_id,
            "user_id": self.principal_id,
            "error": self.error_detail,
            "status_code": self.status_code,
            "removed": self.removed,
        }


@dataclass
class DeliveryReport:
    """Aggregate result of one dispatch call.

    delivered_count + failed_count == total_attempted always holds.
    """

    notification_type: NotificationType
    total_attempted: int = 0
    delivered_count: int = 0
    failed_count: int = 0
    targeted_users: list[str] | None = None
    errors: list[DeliveryOutcome] = field(default_factory=list)
    message: str | None = None
    tag: str | None = None

    @classmethod
    def from_outcomes(
        cls,
        composed: ComposedNotification,
        outcomes: Sequence[DeliveryOutcome],
    ) -> "DeliveryReport":
        delivered = sum(1 for outcome in outcomes if outcome.delivered)
        errors = [outcome for outcome in outcomes if not outcome.delivered]
        return cls(
            notification_type=composed.notification_type,
            total_attempted=len(outcomes),
            delivered_count=delivered,
            failed_count=len(errors),
            targeted_users=composed.target_principals,
            errors=errors,
            tag=composed.tag,
        )

    @property
    def removed_count(self) -> int:
        return sum(1 for outcome in self.errors if outcome.removed)

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": True,
            "delivered_to": self.delivered_count,
            "failed": self.failed_count,
            "total_subscriptions": self.total_attempted,
            "notification_type": self.notification_type.value,
            "targeted_users": self.targeted_users,
        }
        if self.message:
            body["message"] = self.message
        if self.errors:
            body["errors"] = [outcome.to_dict() for outcome in self.errors]
        return body


class WebPushTransport:
    """Encrypts and submits one message with VAPID credentials.

    pywebpush is blocking, so each send runs in a worker thread. The
    dispatcher passes an executor with one thread per subscription so a
    broadcast is not throttled by the loop's default pool.
    """

    def __init__(
        self,
        vapid_private_key: str,
        vapid_claims: Mapping[str, str],
        timeout: float | None = None,
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_claims = dict(vapid_claims)
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config: Settings) -> "WebPushTransport":
        if not config.push_enabled:
            raise ConfigurationError("VAPID keys not configured")
        return cls(
            vapid_private_key=config.vapid_private_key,
            vapid_claims=config.vapid_claims,
            timeout=config.push_timeout_seconds,
        )

    def _send_blocking(
        self,
        subscription_info: dict,
        data: str,
        ttl: int,
        urgency: str,
    ) -> None:
        try:
            webpush(
                subscription_info=subscription_info,
                data=data,
                vapid_private_key=self.vapid_private_key,
                # pywebpush adds aud/exp to the claims dict it is given
                vapid_claims=dict(self.vapid_claims),
                ttl=ttl,
                headers={"Urgency": urgency},
                content_encoding="aes128gcm",
                timeout=self.timeout,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in GONE_STATUS_CODES:
                raise GoneDeliveryError(str(e), status_code=status_code) from e
            raise TransientDeliveryError(str(e), status_code=status_code) from e
        except Exception as e:
            # Malformed keys surface as crypto/value errors, not WebPushException
            raise TransientDeliveryError(f"{type(e).__name__}: {e}") from e

    async def send(
        self,
        subscription_info: dict,
        data: str,
        *,
        ttl: int,
        urgency: str,
        executor: Executor | None = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            executor,
            functools.partial(self._send_blocking, subscription_info, data, ttl, urgency),
        )


class PushDispatcher:
    """Fan-out dispatcher for one request scope."""

    def __init__(
        self,
        store: SubscriptionStore,
        transport: WebPushTransport | None = None,
        config: Settings | None = None,
    ):
        self.store = store
        self.config = config or settings
        self._transport = transport

    @property
    def transport(self) -> WebPushTransport:
        if self._transport is None:
            self._transport = WebPushTransport.from_settings(self.config)
        return self._transport

    async def send(self, request: NotificationRequest | Mapping[str, Any]) -> DeliveryReport:
        """Compose, plan, fetch and deliver a notification request."""
        composed = compose(request, ttl=self.config.push_ttl_seconds)
        transport = self.transport  # ConfigurationError before any store access

        logger.info(
            "Push request (%s): %r - %r",
            composed.notification_type.value,
            composed.payload["title"],
            composed.payload["body"][:100],
        )
        if composed.plan.is_targeted:
            logger.info("Targeting %d user(s)", len(composed.plan.principal_ids))

        subscriptions = await self.store.fetch(composed.plan)
        logger.info("Found %d subscription(s)", len(subscriptions))

        if not subscriptions:
            report = DeliveryReport(
                notification_type=composed.notification_type,
                targeted_users=composed.target_principals,
                tag=composed.tag,
            )
            if composed.plan.is_targeted:
                report.message = (
                    "No subscribers found for specified users: "
                    + ", ".join(composed.target_principals)
                )
            else:
                report.message = "No subscribers found in the system"
            logger.warning(report.message)
            return report

        return await self.dispatch(composed, subscriptions, transport=transport)

    async def dispatch(
        self,
        composed: ComposedNotification,
        subscriptions: Sequence[PushSubscription],
        transport: WebPushTransport | None = None,
    ) -> DeliveryReport:
        """Deliver to every subscription concurrently and reconcile failures."""
        transport = transport or self.transport
        data = json.dumps(composed.payload)

        executor = ThreadPoolExecutor(
            max_workers=max(1, len(subscriptions)), thread_name_prefix="webpush"
        )
        try:
            outcomes = await asyncio.gather(
                *(self._attempt(transport, sub, data, composed, executor) for sub in subscriptions)
            )
        finally:
            executor.shutdown(wait=False)

        gone_ids = [outcome.subscription_id for outcome in outcomes if outcome.removed]
        if gone_ids:
            logger.info("Removing %d expired subscription(s): %s", len(gone_ids), gone_ids)
            await self.store.delete_many(gone_ids)

        report = DeliveryReport.from_outcomes(composed, outcomes)
        logger.info(
            "Push results (%s): delivered=%d failed=%d removed=%d total=%d",
            report.notification_type.value,
            report.delivered_count,
            report.failed_count,
            report.removed_count,
            report.total_attempted,
        )
        return report

    async def _attempt(
        self,
        transport: WebPushTransport,
        sub: PushSubscription,
        data: str,
        composed: ComposedNotification,
        executor: Executor | None = None,
    ) -> DeliveryOutcome:
        try:
            await transport.send(
                sub.subscription_info,
                data,
                ttl=composed.ttl,
                urgency=composed.urgency.value,
                executor=executor,
            )
        except GoneDeliveryError as e:
            logger.info(
                "Subscription %s for user %s is gone (status %s)",
                sub.id, sub.user_id, e.status_code,
            )
            return DeliveryOutcome(
                subscription_id=sub.id,
                principal_id=sub.user_id,
                result=DeliveryResult.FAILED,
                error_detail=e.message,
                status_code=e.status_code,
                removed=True,
            )
        except DeliveryError as e:
            logger.error(
                "Push failed for subscription %s (user %s): %s (status: %s)",
                sub.id, sub.user_id, e.message, e.status_code,
            )
            return DeliveryOutcome(
                subscription_id=sub.id,
                principal_id=sub.user_id,
                result=DeliveryResult.FAILED,
                error_detail=e.message,
                status_code=e.status_code,
            )
        except Exception as e:
            logger.error(
                "Push error for subscription %s (user %s): %s",
                sub.id, sub.user_id, e,
            )
            return DeliveryOutcome(
                subscription_id=sub.id,
                principal_id=sub.user_id,
                result=DeliveryResult.FAILED,
                error_detail=f"{type(e).__name__}: {e}",
            )

        logger.debug("Delivered to subscription %s", sub.id)
        return DeliveryOutcome(
            subscription_id=sub.id,
            principal_id=sub.user_id,
            result=DeliveryResult.DELIVERED,
        )
