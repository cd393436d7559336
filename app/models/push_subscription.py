"""
Push subscription model for web push notifications.
"""

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base
from app.models.base import TimestampMixin


class PushSubscription(Base, TimestampMixin):
    """Web push subscription for one principal.

    A principal keeps at most one row: registering a new device replaces
    the endpoint and keys of the previous one.
    """

    __tablename__ = "push_subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    # Principal ids come from the auth provider (UUID strings)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Push subscription data
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    p256dh_key: Mapped[str] = mapped_column(String(255), nullable=False)  # Public key
    auth_key: Mapped[str] = mapped_column(String(255), nullable=False)  # Auth secret
    expiration_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)  # ms since epoch

    # User agent for device identification
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    @property
    def subscription_info(self) -> dict:
        """Shape expected by the web push encryption layer."""
        return {
            "endpoint": self.endpoint,
            "keys": {
                "p256dh": self.p256dh_key,
                "auth": self.auth_key,
            },
        }

    def __repr__(self) -> str:
        return f"<PushSubscription user={self.user_id}>"
