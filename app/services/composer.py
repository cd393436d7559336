"""
Notification composer.

Validates a raw notification request and turns it into the canonical wire
payload plus a delivery plan. Pure: no store or network access happens
here, so a rejected request never has side effects.
"""

import enum
import secrets
import time
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from app.errors import ValidationError
from app.settings import settings


class Urgency(str, enum.Enum):
    NORMAL = "normal"
    HIGH = "high"


class NotificationType(str, enum.Enum):
    TARGETED = "targeted"
    BROADCAST = "broadcast"


class NotificationRequest(BaseModel):
    """Notification request as received at the system boundary.

    Every field is optional here; required-ness of title/body is checked
    by compose() so the caller gets a 400 instead of a schema error.
    """

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    body: str | None = None
    icon: str | None = None
    badge: str | None = None
    image: str | None = None
    url: str | None = None
    data: dict[str, Any] | None = None
    urgency: str | None = None
    user_ids: list[str | int] | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "NotificationRequest":
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object")
        try:
            return cls.model_validate(dict(payload))
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(f"Invalid field '{field}': {first.get('msg')}") from e


@dataclass(frozen=True)
class DeliveryPlan:
    """Which subscriptions a dispatch reaches. None means every row."""

    principal_ids: frozenset[str] | None = None

    @property
    def is_targeted(self) -> bool:
        return self.principal_ids is not None

    def matches(self, principal_id: str) -> bool:
        return self.principal_ids is None or principal_id in self.principal_ids


@dataclass(frozen=True)
class ComposedNotification:
    payload: dict[str, Any]
    plan: DeliveryPlan
    urgency: Urgency
    ttl: int
    target_principals: list[str] | None = None

    @property
    def notification_type(self) -> NotificationType:
        if self.plan.is_targeted:
            return NotificationType.TARGETED
        return NotificationType.BROADCAST

    @property
    def tag(self) -> str:
        return self.payload["tag"]


def _required_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _make_tag(timestamp_ms: int) -> str:
    # Random suffix keeps tags unique within one millisecond
    return f"spc-alert-{timestamp_ms}-{secrets.token_hex(4)}"


def compose(
    request: NotificationRequest | Mapping[str, Any],
    *,
    now_ms: int | None = None,
    ttl: int | None = None,
) -> ComposedNotification:
    """Validate a request and build its canonical payload and delivery plan.

    Raises:
        ValidationError: title or body missing/empty, or urgency unknown.
    """
    if not isinstance(request, NotificationRequest):
        request = NotificationRequest.from_payload(request)

    title = _required_text(request.title)
    body = _required_text(request.body)
    if not title or not body:
        raise ValidationError("title and body are required")

    try:
        urgency = Urgency(request.urgency or Urgency.NORMAL.value)
    except ValueError:
        raise ValidationError(
            f"urgency must be one of: {', '.join(u.value for u in Urgency)}"
        ) from None

    target_principals = None
    plan = DeliveryPlan()
    if request.user_ids is not None:
        # An empty list is echoed back but still broadcasts
        target_principals = [str(user_id) for user_id in request.user_ids]
        if target_principals:
            plan = DeliveryPlan(principal_ids=frozenset(target_principals))

    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    payload = {
        "title": title,
        "body": body,
        "icon": request.icon or settings.default_icon,
        "badge": request.badge or settings.default_badge,
        "image": request.image,
        "url": request.url or settings.default_url,
        "data": dict(request.data or {}),
        "timestamp": timestamp,
        "tag": _make_tag(timestamp),
        "requireInteraction": urgency is Urgency.HIGH,
    }

    return ComposedNotification(
        payload=payload,
        plan=plan,
        urgency=urgency,
        ttl=ttl if ttl is not None else settings.push_ttl_seconds,
        target_principals=target_principals,
    )
