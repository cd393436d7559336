"""
Alert producers: the page actions that fan out push notifications.
"""

import logging
import time

from app.services.composer import NotificationRequest
from app.services.push import DeliveryReport, PushDispatcher
from app.settings import settings

logger = logging.getLogger(__name__)

SOS_STATUS_MESSAGES = {
    "waiting": "Your emergency request is being processed",
    "dispatched": "Emergency responders are on the way!",
    "arrived": "Help has arrived at your location!",
}

DEFAULT_INCIDENT_LOCATION = "San Pablo City"
INCIDENT_MAP_URL = "/public/html/map.html"
DESCRIPTION_PREVIEW_LENGTH = 80


async def notify_sos_status(
    dispatcher: PushDispatcher,
    principal_id: str,
    status: str,
) -> DeliveryReport:
    """Tell the SOS requester that their request changed state."""
    if status not in SOS_STATUS_MESSAGES:
        raise ValueError(f"Unknown SOS status: {status}")

    return await dispatcher.send(
        NotificationRequest(
            title="SOS Status Update",
            body=SOS_STATUS_MESSAGES[status],
            url=settings.default_url,
            urgency="high",
            data={"sosStatus": status},
            user_ids=[principal_id],
        )
    )


def _incident_location(
    location: str | None,
    latitude: float | None,
    longitude: float | None,
) -> str:
    if latitude is not None and longitude is not None:
        return f"{latitude:.4f}, {longitude:.4f}"
    if location and location.strip():
        return location.strip()[:30]
    return DEFAULT_INCIDENT_LOCATION


async def notify_incident_reported(
    dispatcher: PushDispatcher,
    *,
    incident_id: int | str,
    incident_type: str,
    description: str,
    location: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    photo_url: str | None = None,
) -> DeliveryReport:
    """Broadcast a newly submitted incident to every subscriber."""
    preview = description[:DESCRIPTION_PREVIEW_LENGTH]
    if len(description) > DESCRIPTION_PREVIEW_LENGTH:
        preview += "..."
    where = _incident_location(location, latitude, longitude)

    return await dispatcher.send(
        NotificationRequest(
            title="\U0001F6A8 New Incident Reported",
            body=f"{incident_type} reported in {where}. {preview}",
            image=photo_url,
            url=INCIDENT_MAP_URL,
            data={
                "incidentId": incident_id,
                "incidentType": incident_type,
                "timestamp": int(time.time() * 1000),
            },
        )
    )


async def broadcast_admin_alert(
    dispatcher: PushDispatcher,
    *,
    title: str,
    body: str,
    urgent: bool = False,
) -> DeliveryReport:
    """Admin broadcast to all subscribers."""
    report = await dispatcher.send(
        NotificationRequest(
            # Leave an empty title empty so the composer rejects it
            title=f"\U0001F6A8 {title}" if title.strip() else title,
            body=body,
            badge=settings.urgent_badge if urgent else settings.default_badge,
            url=settings.default_url,
            urgency="high" if urgent else "normal",
            data={
                "alertType": "admin_broadcast",
                "isUrgent": urgent,
                "timestamp": int(time.time() * 1000),
            },
        )
    )
    if report.delivered_count == 0:
        logger.warning("Admin broadcast %r reached no devices", title)
    return report
