"""
Tests for the roulette limit guard and keyed locks.

Run with: pytest tests/test_limits.py -v
"""
import asyncio
import pytest
from datetime import time, timedelta

from gym_rewards.prizes import LimitGuard, KeyedLock
from gym_rewards.prizes.limits import in_time_window, js_weekday
from gym_rewards.prizes.eligibility import start_of_week
from conftest import NOW, add_prize, add_roulette, add_winning


class TestTimeHelpers:
    """Tests for day and hour window helpers."""

    def test_window_within_day(self):
        assert in_time_window(time(10, 0), time(6, 0), time(22, 0))
        assert not in_time_window(time(23, 0), time(6, 0), time(22, 0))

    def test_window_crossing_midnight(self):
        start, end = time(22, 0), time(2, 0)
        assert in_time_window(time(23, 30), start, end)
        assert in_time_window(time(1, 0), start, end)
        assert not in_time_window(time(12, 0), start, end)

    def test_weekday_starts_on_sunday(self):
        assert js_weekday(NOW) == 3  # Wednesday
        assert js_weekday(start_of_week(NOW)) == 0
        assert start_of_week(NOW).day == 8


class TestAvailability:
    """Tests for roulette availability windows."""

    def test_available(self, store):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)])
        assert LimitGuard(store).availability(roulette, NOW)

    def test_inactive(self, store):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)], is_active=False)
        result = LimitGuard(store).availability(roulette, NOW)
        assert not result
        assert result.code == 'unavailable'

    def test_outside_validity(self, store):
        prize = add_prize(store)
        roulette = add_roulette(
            store,
            [(prize.prize_id, 100)],
            valid_until=NOW - timedelta(days=1)
        )
        assert not LimitGuard(store).availability(roulette, NOW)

    def test_day_not_allowed(self, store):
        prize = add_prize(store)
        roulette = add_roulette(
            store,
            [(prize.prize_id, 100)],
            available_days=[0, 6]
        )
        result = LimitGuard(store).availability(roulette, NOW)
        assert not result
        assert 'today' in result.reason

    def test_hours_crossing_midnight(self, store):
        prize = add_prize(store)
        roulette = add_roulette(
            store,
            [(prize.prize_id, 100)],
            available_hours_start=time(22, 0),
            available_hours_end=time(2, 0)
        )
        guard = LimitGuard(store)
        assert not guard.availability(roulette, NOW)
        assert guard.availability(roulette, NOW.replace(hour=23))
        assert guard.availability(roulette, NOW.replace(hour=1))


class TestCheckSpin:
    """Tests for per-client caps, global caps and cooldowns."""

    @pytest.mark.asyncio
    async def test_daily_cap_per_client(self, store):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)], max_spins_per_day=1)
        guard = LimitGuard(store)

        assert await guard.check_spin(roulette, 1, NOW)
        add_winning(store, prize, client_id=1, roulette_id=roulette.roulette_id)

        result = await guard.check_spin(roulette, 1, NOW)
        assert not result
        assert result.code == 'limit'
        # another client is unaffected
        assert await guard.check_spin(roulette, 2, NOW)

    @pytest.mark.asyncio
    async def test_cancelled_winnings_still_count(self, store):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)], max_spins_per_day=1)
        add_winning(
            store, prize,
            roulette_id=roulette.roulette_id,
            status='cancelled'
        )
        assert not await LimitGuard(store).check_spin(roulette, 1, NOW)

    @pytest.mark.asyncio
    async def test_weekly_cap_counts_since_sunday(self, store):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)], max_spins_per_week=2)
        rid = roulette.roulette_id
        # Saturday before the current week: not counted
        add_winning(store, prize, roulette_id=rid, won_at=NOW - timedelta(days=4))
        add_winning(store, prize, roulette_id=rid, won_at=NOW - timedelta(days=2))
        guard = LimitGuard(store)
        assert await guard.check_spin(roulette, 1, NOW)

        add_winning(store, prize, roulette_id=rid, won_at=NOW - timedelta(days=1))
        result = await guard.check_spin(roulette, 1, NOW)
        assert not result
        assert 'Weekly' in result.reason

    @pytest.mark.asyncio
    async def test_global_daily_cap(self, store):
        prize = add_prize(store)
        roulette = add_roulette(
            store,
            [(prize.prize_id, 100)],
            max_total_spins_per_day=2
        )
        add_winning(store, prize, client_id=1, roulette_id=roulette.roulette_id)
        add_winning(store, prize, client_id=2, roulette_id=roulette.roulette_id)
        result = await LimitGuard(store).check_spin(roulette, 3, NOW)
        assert not result
        assert result.code == 'limit'

    @pytest.mark.asyncio
    async def test_cooldown_reports_remaining_minutes(self, store):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)], cooldown_minutes=30)
        add_winning(
            store, prize,
            roulette_id=roulette.roulette_id,
            won_at=NOW - timedelta(minutes=10)
        )
        guard = LimitGuard(store)
        result = await guard.check_spin(roulette, 1, NOW)
        assert not result
        assert '20 minutes' in result.reason

        later = NOW + timedelta(minutes=21)
        assert await guard.check_spin(roulette, 1, later)

    @pytest.mark.asyncio
    async def test_availability_checked_first(self, store):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)], is_active=False)
        result = await LimitGuard(store).check_spin(roulette, 1, NOW)
        assert result.code == 'unavailable'


class TestKeyedLock:
    """Tests for the per-key lock registry."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.hold('prize:1'):
                events.append(f'{name}-in')
                await asyncio.sleep(0.01)
                events.append(f'{name}-out')

        await asyncio.gather(worker('a'), worker('b'))
        assert events in (
            ['a-in', 'a-out', 'b-in', 'b-out'],
            ['b-in', 'b-out', 'a-in', 'a-out'],
        )

    @pytest.mark.asyncio
    async def test_none_key_does_not_lock(self):
        locks = KeyedLock()
        async with locks.hold(None):
            async with locks.hold(None):
                pass
        assert locks._locks == {}

    def test_same_lock_for_same_key(self):
        locks = KeyedLock()
        assert locks.get('roulette:1') is locks.get('roulette:1')
        assert locks.get('roulette:1') is not locks.get('roulette:2')
