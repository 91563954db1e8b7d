"""Prize catalog access for the engine."""
from typing import Optional, List
from datetime import datetime

from navconfig.logging import logging

from ..exceptions import NotFoundError, LimitExceededError
from .models import Prize
from .storage import RewardStore


class PrizeCatalog:
    """
    Read access to prize definitions plus the awarded/redeemed counters.

    Prize definitions are maintained by staff tooling; the only writes done
    here are counter increments.
    """

    def __init__(self, store: RewardStore, logger=None):
        self.store = store
        self.logger = logger or logging.getLogger('Rewards.Catalog')

    async def get_prize(self, prize_id: int) -> Prize:
        prize = await self.store.get_prize(prize_id)
        if prize is None:
            raise NotFoundError(f"Prize {prize_id} not found")
        return prize

    async def prizes_by_category(self, category: str) -> List[Prize]:
        """Active prizes of a category, ordered by name."""
        prizes = await self.store.list_prizes(category=category)
        return sorted(
            (p for p in prizes if p.is_active),
            key=lambda p: p.name
        )

    async def available_prizes(
        self,
        now: Optional[datetime] = None,
        category: Optional[str] = None
    ) -> List[Prize]:
        """Active prizes inside their validity window, by category then name."""
        now = now or datetime.now()
        prizes = await self.store.list_prizes(category=category)
        available = [
            p for p in prizes
            if p.is_active
            and p.valid_from <= now
            and (p.valid_until is None or p.valid_until >= now)
        ]
        return sorted(available, key=lambda p: (p.category, p.name))

    async def increment_awarded(self, prize: Prize) -> Prize:
        if prize.is_out_of_stock():
            raise LimitExceededError(
                f"Prize '{prize.name}' is out of stock",
                code='limit'
            )
        prize.awarded_count += 1
        return await self.store.update_prize(prize)

    async def increment_redeemed(self, prize: Prize) -> Prize:
        prize.redeemed_count += 1
        return await self.store.update_prize(prize)
