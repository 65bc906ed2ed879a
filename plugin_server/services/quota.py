"""
Quota Service

Answers whether an organization may create more of a resource.  Only the
dashboard target is limited; other targets are always allowed.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from plugin_server.models.dashboard import Dashboard

logger = logging.getLogger(__name__)

DASHBOARD_TARGET = "dashboard"


class QuotaService:
    def __init__(self, db: AsyncSession, org_dashboard_limit: int = -1):
        self.db = db
        self.org_dashboard_limit = org_dashboard_limit

    async def quota_reached(self, org_id: int, target: str) -> bool:
        """Return True when org_id has used up its quota for target.  A negative limit is unlimited."""
        if target != DASHBOARD_TARGET or self.org_dashboard_limit < 0:
            return False

        used = await self.db.scalar(select(func.count(Dashboard.id)).where(Dashboard.org_id == org_id))
        reached = (used or 0) >= self.org_dashboard_limit
        if reached:
            logger.info("Dashboard quota reached for org %s (%s/%s)", org_id, used, self.org_dashboard_limit)
        return reached
