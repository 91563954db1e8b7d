"""
Roulette limit guard.

Caps and cooldowns are computed from the won-prize records at the time
of the request; there is no separate counter table. Callers hold the
matching ``KeyedLock`` entry between the check and the write.
"""
from typing import Optional, Dict
from datetime import datetime, time, timedelta
from contextlib import asynccontextmanager
import asyncio
import math

from navconfig.logging import logging

from .models import Roulette
from .results import CheckResult
from .storage import RewardStore
from .eligibility import start_of_day, start_of_week


def in_time_window(current: time, start: time, end: time) -> bool:
    """Inclusive window check; ``start > end`` means it crosses midnight."""
    if start > end:
        return current >= start or current <= end
    return start <= current <= end


def js_weekday(now: datetime) -> int:
    """Day of week with 0=Sunday ... 6=Saturday."""
    return (now.weekday() + 1) % 7


class KeyedLock:
    """Per-key asyncio locks (``prize:1``, ``roulette:3`` ...)."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, key: Optional[str]):
        if key is None:
            yield
            return
        async with self.get(key):
            yield


class LimitGuard:
    """Availability windows, spin caps and cooldowns of a roulette."""

    def __init__(self, store: RewardStore, logger=None):
        self.store = store
        self.logger = logger or logging.getLogger('Rewards.LimitGuard')

    def availability(self, roulette: Roulette, now: datetime) -> CheckResult:
        if not roulette.is_active:
            return CheckResult.deny("Roulette is not active", 'unavailable')
        if roulette.valid_from and roulette.valid_from > now:
            return CheckResult.deny("Roulette is not valid yet", 'unavailable')
        if roulette.valid_until and roulette.valid_until < now:
            return CheckResult.deny("Roulette has expired", 'unavailable')
        if roulette.available_days and js_weekday(now) not in roulette.available_days:
            return CheckResult.deny("Roulette is not available today", 'unavailable')
        if roulette.available_hours_start and roulette.available_hours_end:
            if not in_time_window(
                now.time(),
                roulette.available_hours_start,
                roulette.available_hours_end
            ):
                return CheckResult.deny(
                    "Roulette is not available at this time",
                    'unavailable'
                )
        return CheckResult.ok()

    async def check_spin(
        self,
        roulette: Roulette,
        client_id: int,
        now: datetime
    ) -> CheckResult:
        """Everything that must hold before a client may spin ``roulette``."""
        result = self.availability(roulette, now)
        if not result:
            return result

        rid = roulette.roulette_id
        if roulette.max_spins_per_day:
            spins = await self.store.count_winnings(
                client_id=client_id,
                roulette_id=rid,
                since=start_of_day(now)
            )
            if spins >= roulette.max_spins_per_day:
                return CheckResult.deny("Daily spin limit reached", 'limit')

        if roulette.max_spins_per_week:
            spins = await self.store.count_winnings(
                client_id=client_id,
                roulette_id=rid,
                since=start_of_week(now)
            )
            if spins >= roulette.max_spins_per_week:
                return CheckResult.deny("Weekly spin limit reached", 'limit')

        if roulette.max_total_spins_per_day:
            spins = await self.store.count_winnings(
                roulette_id=rid,
                since=start_of_day(now)
            )
            if spins >= roulette.max_total_spins_per_day:
                return CheckResult.deny("Roulette daily limit reached", 'limit')

        if roulette.cooldown_minutes > 0:
            last = await self.store.last_winning_at(client_id, rid)
            if last is not None:
                ready_at = last + timedelta(minutes=roulette.cooldown_minutes)
                if now < ready_at:
                    remaining = math.ceil((ready_at - now).total_seconds() / 60)
                    return CheckResult.deny(
                        f"You must wait {remaining} minutes",
                        'limit'
                    )

        return CheckResult.ok()
