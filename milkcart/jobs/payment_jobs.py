"""
Payment Session Jobs

Pending UPI sessions that pass their expiry are cancelled so the orders
they cover can be put into a new session.
"""

import logging

from milkcart.core.timeutils import utc_now
from milkcart.database import get_db_session
from milkcart.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


async def expire_payment_sessions() -> int:
    """Cancel every pending session past its expiry. Returns the number cancelled."""
    async with get_db_session() as session:
        return await PaymentService(session).expire_stale_sessions(utc_now())
