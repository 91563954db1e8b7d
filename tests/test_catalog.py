"""
Tests for prize catalog lookups and counters.

Run with: pytest tests/test_catalog.py -v
"""
import pytest
from datetime import timedelta

from gym_rewards.exceptions import NotFoundError, LimitExceededError
from gym_rewards.prizes import PrizeCatalog, Prize, WinningHistory
from conftest import NOW, add_prize


@pytest.fixture
def catalog(store):
    return PrizeCatalog(store)


class TestLookups:
    """Tests for reading prize definitions."""

    @pytest.mark.asyncio
    async def test_get_prize(self, store, catalog):
        prize = add_prize(store, name='Protein Bar')
        assert (await catalog.get_prize(prize.prize_id)).name == 'Protein Bar'
        with pytest.raises(NotFoundError):
            await catalog.get_prize(404)

    @pytest.mark.asyncio
    async def test_prizes_by_category(self, store, catalog):
        add_prize(store, name='Water Bottle', category='premium')
        add_prize(store, name='Backpack', category='premium')
        add_prize(store, name='Old Shirt', category='premium', is_active=False)
        add_prize(store, name='Sticker', category='basic')

        prizes = await catalog.prizes_by_category('premium')
        assert [p.name for p in prizes] == ['Backpack', 'Water Bottle']
        assert await catalog.prizes_by_category('exclusive') == []

    @pytest.mark.asyncio
    async def test_available_prizes(self, store, catalog):
        add_prize(store, name='Towel', category='basic')
        add_prize(store, name='Cap', category='premium')
        add_prize(store, name='Future', valid_from=NOW + timedelta(days=1))
        add_prize(store, name='Past', valid_until=NOW - timedelta(days=1))

        prizes = await catalog.available_prizes(NOW)
        assert [p.name for p in prizes] == ['Towel', 'Cap']
        premium = await catalog.available_prizes(NOW, category='premium')
        assert [p.name for p in premium] == ['Cap']


class TestCounters:
    """Tests for the awarded and redeemed counters."""

    @pytest.mark.asyncio
    async def test_increment_counters(self, store, catalog):
        prize = add_prize(store)
        await catalog.increment_awarded(prize)
        await catalog.increment_redeemed(prize)
        assert store.prizes[prize.prize_id].awarded_count == 1
        assert store.prizes[prize.prize_id].redeemed_count == 1

    @pytest.mark.asyncio
    async def test_out_of_stock(self, store, catalog):
        prize = add_prize(store, stock_quantity=1, awarded_count=1)
        with pytest.raises(LimitExceededError):
            await catalog.increment_awarded(prize)
        assert prize.awarded_count == 1


class TestNewRecords:
    """Records built before storage assigns their ids."""

    def test_prize_without_id(self):
        prize = Prize(name='Shaker', prize_type='other', valid_from=NOW)
        assert prize.prize_id is None

    def test_history_without_id(self):
        entry = WinningHistory(winning_id=1, status='pending', changed_at=NOW)
        assert entry.history_id is None
        assert entry.winning_id == 1
