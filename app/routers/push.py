"""
Push notifications router: fan-out entry point and subscription registration.
"""

import logging
from typing import Any
from urllib.parse import urlparse

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.deps import Dispatcher, Store
from app.errors import ValidationError
from app.services.subscription_store import SubscriptionRecord
from app.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["push"])


class SubscribeRequest(BaseModel):
    """Subscription upsert as sent by the foreground bridge."""
    user_id: str
    subscription: dict[str, Any]


class UnsubscribeRequest(BaseModel):
    user_id: str
    endpoint: str | None = None


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON") from None


@router.post("/send-push")
@router.post("/functions/v1/send-push", include_in_schema=False)
async def send_push(request: Request, dispatcher: Dispatcher):
    """Deliver a notification to targeted users or broadcast to everyone.

    Individual delivery failures are reported in the body; only validation,
    configuration and store errors turn into non-200 responses.
    """
    payload = await _read_json(request)
    report = await dispatcher.send(payload)
    return JSONResponse(report.to_response())


@router.options("/send-push", include_in_schema=False)
@router.options("/functions/v1/send-push", include_in_schema=False)
async def send_push_preflight():
    """Preflight without CORS headers (CORSMiddleware answers real preflights)."""
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/push/vapid-public-key")
async def get_vapid_public_key():
    """Get the VAPID public key for push subscription."""
    if not settings.vapid_public_key:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Push notifications not configured"
        )
    return JSONResponse({"publicKey": settings.vapid_public_key})


@router.post("/push/subscribe")
async def subscribe(request: Request, body: SubscribeRequest, store: Store):
    """Persist a device subscription, replacing the principal's previous one."""
    logger.info("Push subscription request from user %s", body.user_id)
    record = SubscriptionRecord.from_dict(body.subscription)
    row = await store.upsert(
        body.user_id,
        record,
        user_agent=request.headers.get("User-Agent"),
    )
    return JSONResponse({"status": "subscribed", "id": row.id})


@router.post("/push/unsubscribe")
async def unsubscribe(body: UnsubscribeRequest, store: Store):
    """Unsubscribe from push notifications."""
    removed = await store.delete_for_principal(body.user_id, endpoint=body.endpoint)
    return JSONResponse({"status": "unsubscribed" if removed else "not_found"})


@router.get("/push/status")
async def get_push_status(store: Store, user_id: str | None = None):
    """Get push notification status for debugging."""
    info: dict[str, Any] = {
        "vapid_configured": settings.push_enabled,
        "subscription_count": await store.count(),
    }
    if user_id:
        sub = await store.get_for_principal(user_id)
        info["subscription"] = None
        if sub:
            info["subscription"] = {
                "id": sub.id,
                "endpoint_domain": urlparse(sub.endpoint).netloc or "unknown",
                "user_agent": sub.user_agent[:50] if sub.user_agent else None,
                "expiration_time": sub.expiration_time,
                "updated_at": sub.updated_at.isoformat() if sub.updated_at else None,
            }
    return JSONResponse(info)
