"""
Contractor and homeowner dashboards

Collections come from the query cache; the summary figures are recomputed
from them on every render.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from ..shared.metrics import contractor_summary, homeowner_summary
from .api import HomeBaseClient
from .cache import USER_KEY, USER_TTL, QueryCache, proposals_key


class _Dashboard:
    def __init__(
        self,
        api: HomeBaseClient,
        cache: Optional[QueryCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.api = api
        self.cache = cache or QueryCache()
        self.clock = clock or (lambda: datetime.now(timezone.utc))


class ContractorDashboard(_Dashboard):
    async def render(self, contractor_id: str) -> dict:
        """Pending/accepted counts, earnings and upcoming appointments"""
        proposals = await self.cache.get_or_fetch(
            proposals_key(contractor_id),
            lambda: self.api.list_proposals(contractor_id=contractor_id),
        )
        appointments = await self.cache.get_or_fetch(
            f"appointments:contractor:{contractor_id}",
            lambda: self.api.list_appointments(contractor_id=contractor_id),
        )
        return contractor_summary(proposals, appointments, self.clock())


class HomeownerDashboard(_Dashboard):
    async def render(self) -> dict:
        """Upcoming appointments and referral progress toward a free plan"""
        user = await self.cache.get_or_fetch(USER_KEY, self.api.get_current_user, ttl=USER_TTL)
        appointments = await self.cache.get_or_fetch(
            f"appointments:homeowner:{user['id']}",
            lambda: self.api.list_appointments(homeowner_id=user["id"]),
        )
        return homeowner_summary(
            appointments,
            referral_count=user.get("referralCount") or 0,
            max_houses_allowed=user.get("maxHousesAllowed", 2),
            now=self.clock(),
        )
