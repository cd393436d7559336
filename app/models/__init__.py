# Models package
from app.db import Base
from app.models.push_subscription import PushSubscription

__all__ = [
    "Base",
    "PushSubscription",
]
