"""
Subscription store: access contract for the push_subscriptions table.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import StoreError, ValidationError
from app.models.push_subscription import PushSubscription
from app.services.composer import DeliveryPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionRecord:
    """Subscription as the browser serializes it.

    Wire shape: {endpoint, expirationTime, keys: {p256dh, auth}}
    """

    endpoint: str
    p256dh: str
    auth: str
    expiration_time: int | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "SubscriptionRecord":
        if not isinstance(raw, Mapping):
            raise ValidationError("Subscription must be an object")
        endpoint = str(raw.get("endpoint") or "").strip()
        keys = raw.get("keys")
        if not isinstance(keys, Mapping):
            raise ValidationError("Subscription keys are missing")
        p256dh = str(keys.get("p256dh") or "").strip()
        auth = str(keys.get("auth") or "").strip()
        if not endpoint or not p256dh or not auth:
            raise ValidationError("Subscription payload is incomplete")

        expiration = raw.get("expirationTime")
        if expiration is not None:
            try:
                expiration = int(expiration)
            except (TypeError, ValueError):
                raise ValidationError("expirationTime must be a number or null") from None
        return cls(endpoint=endpoint, p256dh=p256dh, auth=auth, expiration_time=expiration)

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "expirationTime": self.expiration_time,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class SubscriptionStore:
    """Row-level operations on push subscriptions.

    Every database failure surfaces as StoreError so callers never mistake
    an outage for an empty result.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def fetch(self, plan: DeliveryPlan) -> list[PushSubscription]:
        """Subscriptions reached by a delivery plan."""
        stmt = select(PushSubscription).order_by(PushSubscription.id)
        if plan.is_targeted:
            stmt = stmt.where(PushSubscription.user_id.in_(sorted(plan.principal_ids)))
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Subscription fetch failed: %s", e)
            raise StoreError(f"Database error: {e}") from e
        return list(result.scalars().all())

    async def get_for_principal(self, principal_id: str) -> PushSubscription | None:
        try:
            result = await self.db.execute(
                select(PushSubscription).where(PushSubscription.user_id == principal_id)
            )
        except SQLAlchemyError as e:
            raise StoreError(f"Database error: {e}") from e
        return result.scalar_one_or_none()

    async def upsert(
        self,
        principal_id: str,
        record: SubscriptionRecord,
        user_agent: str | None = None,
    ) -> PushSubscription:
        """Insert or replace the principal's subscription (last device wins)."""
        existing = await self.get_for_principal(principal_id)
        try:
            if existing:
                existing.endpoint = record.endpoint
                existing.p256dh_key = record.p256dh
                existing.auth_key = record.auth
                existing.expiration_time = record.expiration_time
                existing.user_agent = user_agent
                row = existing
                logger.info("Updated push subscription for user %s", principal_id)
            else:
                row = PushSubscription(
                    user_id=principal_id,
                    endpoint=record.endpoint,
                    p256dh_key=record.p256dh,
                    auth_key=record.auth,
                    expiration_time=record.expiration_time,
                    user_agent=user_agent,
                )
                self.db.add(row)
                logger.info("Created push subscription for user %s", principal_id)
            await self.db.commit()
            await self.db.refresh(row)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Subscription upsert failed for user %s: %s", principal_id, e)
            raise StoreError(f"Database error: {e}") from e
        return row

    async def delete_many(self, subscription_ids: Iterable[int]) -> int:
        """Delete rows by id. Returns the number of rows removed."""
        ids = sorted(set(subscription_ids))
        if not ids:
            return 0
        try:
            result = await self.db.execute(
                delete(PushSubscription).where(PushSubscription.id.in_(ids))
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Subscription delete failed for ids %s: %s", ids, e)
            raise StoreError(f"Database error: {e}") from e
        return result.rowcount or 0

    async def delete_for_principal(self, principal_id: str, endpoint: str | None = None) -> bool:
        """Remove the principal's subscription, optionally only for one endpoint."""
        stmt = delete(PushSubscription).where(PushSubscription.user_id == principal_id)
        if endpoint:
            stmt = stmt.where(PushSubscription.endpoint == endpoint)
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreError(f"Database error: {e}") from e
        return bool(result.rowcount)

    async def count(self) -> int:
        try:
            result = await self.db.execute(select(func.count()).select_from(PushSubscription))
        except SQLAlchemyError as e:
            raise StoreError(f"Database error: {e}") from e
        return result.scalar_one()
