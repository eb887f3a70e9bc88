"""
Subscription Jobs

Active or paused subscriptions whose last delivery day has passed are
moved to expired once a day.
"""

import logging

from milkcart.core.timeutils import utc_now
from milkcart.database import get_db_session
from milkcart.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


async def expire_finished_subscriptions() -> int:
    async with get_db_session() as session:
        return await SubscriptionService(session).expire_finished(utc_now())
