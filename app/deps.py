"""
FastAPI dependencies for the database, the subscription store and the dispatcher.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.services.push import PushDispatcher
from app.services.subscription_store import SubscriptionStore

# Type alias for database dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]


def get_subscription_store(db: DBSession) -> SubscriptionStore:
    """Subscription store bound to the request's session."""
    return SubscriptionStore(db)


Store = Annotated[SubscriptionStore, Depends(get_subscription_store)]


def get_dispatcher(store: Store) -> PushDispatcher:
    """Dispatcher using the VAPID credentials from settings."""
    return PushDispatcher(store)


Dispatcher = Annotated[PushDispatcher, Depends(get_dispatcher)]
