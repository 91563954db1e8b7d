"""
Tests for the Prize Engine orchestration.

Run with: pytest tests/test_service.py -v
"""
import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from gym_rewards.exceptions import (
    LimitExceededError,
    IneligibleError,
    ExpiredError,
    NotFoundError,
    ValidationError,
    CodeGenerationExhausted,
)
from gym_rewards.prizes import WinningStatus, DrawResult
from conftest import NOW, add_prize, add_roulette, add_qrcode


class TestAward:
    """Tests for direct prize awards."""

    @pytest.mark.asyncio
    async def test_daily_cap_across_clients(self, store, engine):
        """Prize A: one per day, five in stock."""
        prize = add_prize(store, name='Prize A', max_per_day=1, stock_quantity=5)

        result = await engine.award(prize.prize_id, 1, now=NOW)
        assert isinstance(result, DrawResult)
        assert result.success

        with pytest.raises(LimitExceededError) as exc:
            await engine.award(prize.prize_id, 2, now=NOW)
        assert exc.value.reason
        assert prize.awarded_count == 1
        assert await store.count_winnings(prize_id=prize.prize_id) == 1

        # the next day the cap resets
        assert (await engine.award(prize.prize_id, 2, now=NOW + timedelta(days=1))).success

    @pytest.mark.asyncio
    async def test_out_of_stock(self, store, engine):
        prize = add_prize(store, stock_quantity=1)
        await engine.award(prize.prize_id, 1, now=NOW)
        with pytest.raises(IneligibleError) as exc:
            await engine.award(prize.prize_id, 2, now=NOW)
        assert exc.value.code == 'unavailable'
        assert prize.awarded_count == 1

    @pytest.mark.asyncio
    async def test_auto_applied(self, store, engine, points):
        prize = add_prize(store, prize_type='points', value=25.0)
        result = await engine.award(prize.prize_id, 1, now=NOW)
        assert result.winning.status == WinningStatus.APPLIED.value
        points.credit_points.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_manual_prize_returns_code(self, store, engine):
        prize = add_prize(store, auto_apply=False)
        result = await engine.award(prize.prize_id, 1, now=NOW)
        assert result.winning.status == WinningStatus.PENDING.value
        assert result.redemption_code == result.winning.redemption_code
        assert result.redemption_code in result.message

    @pytest.mark.asyncio
    async def test_failed_auto_apply_stays_pending(self, store, engine, membership):
        membership.extend_membership.return_value = None
        prize = add_prize(store, prize_type='membership_days', value=7.0)
        result = await engine.award(prize.prize_id, 1, now=NOW)
        assert result.success
        assert result.winning.status == WinningStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_verification_required_stays_pending(self, store, engine, points):
        prize = add_prize(
            store,
            prize_type='points',
            value=10.0,
            requires_manual_approval=True
        )
        result = await engine.award(prize.prize_id, 1, now=NOW)
        assert result.winning.status == WinningStatus.PENDING.value
        points.credit_points.assert_not_awaited()

        winning = await engine.verify(result.winning.winning_id, verified_by=5, now=NOW)
        assert winning.status == WinningStatus.APPLIED.value

    @pytest.mark.asyncio
    async def test_ineligible_client(self, store, engine):
        prize = add_prize(store, minimum_age=18)
        with pytest.raises(IneligibleError):
            await engine.award(prize.prize_id, 3, now=NOW)
        assert store.winnings == {}

    @pytest.mark.asyncio
    async def test_unknown_client(self, store, engine):
        prize = add_prize(store)
        with pytest.raises(NotFoundError):
            await engine.award(prize.prize_id, 999, now=NOW)

    @pytest.mark.asyncio
    async def test_concurrent_awards_respect_daily_cap(self, store, engine):
        prize = add_prize(store, max_per_day=1)
        results = await asyncio.gather(
            *(engine.award(prize.prize_id, client_id, now=NOW) for client_id in (1, 2, 1, 2)),
            return_exceptions=True
        )
        won = [r for r in results if isinstance(r, DrawResult)]
        rejected = [r for r in results if isinstance(r, LimitExceededError)]
        assert len(won) == 1
        assert len(rejected) == 3
        assert prize.awarded_count == 1


class TestSpin:
    """Tests for roulette spins."""

    @pytest.mark.asyncio
    async def test_spin(self, store, engine):
        prize = add_prize(store, name='Smoothie')
        roulette = add_roulette(store, [(prize.prize_id, 100)])
        result = await engine.spin(roulette.roulette_id, 1, now=NOW)

        assert result.prize.prize_id == prize.prize_id
        assert result.roulette_id == roulette.roulette_id
        assert result.sector_index == 0
        assert result.winning.roulette_id == roulette.roulette_id
        assert roulette.total_spins == 1

    @pytest.mark.asyncio
    async def test_spin_daily_cap(self, store, engine):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)], max_spins_per_day=1)
        await engine.spin(roulette.roulette_id, 1, now=NOW)
        with pytest.raises(LimitExceededError):
            await engine.spin(roulette.roulette_id, 1, now=NOW + timedelta(minutes=5))
        assert roulette.total_spins == 1

    @pytest.mark.asyncio
    async def test_spin_unavailable_roulette(self, store, engine):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)], is_active=False)
        with pytest.raises(IneligibleError) as exc:
            await engine.spin(roulette.roulette_id, 1, now=NOW)
        assert not isinstance(exc.value, LimitExceededError)

    @pytest.mark.asyncio
    async def test_spin_unknown_roulette(self, engine):
        with pytest.raises(NotFoundError):
            await engine.spin(77, 1, now=NOW)

    @pytest.mark.asyncio
    async def test_spin_with_qr_code(self, store, engine):
        prize = add_prize(store)
        roulette = add_roulette(store, [(prize.prize_id, 100)])
        qr = add_qrcode(store, max_uses=1)
        result = await engine.spin(
            roulette.roulette_id, 1, now=NOW, qr_code_id=qr.qr_code_id
        )
        assert result.uses_remaining == 0
        assert result.winning.qr_code_id == qr.qr_code_id
        assert qr.is_used is True


class TestScan:
    """Tests for QR code scans."""

    @pytest.mark.asyncio
    async def test_three_uses(self, store, engine):
        prize = add_prize(store)
        qr = add_qrcode(store, max_uses=3, fixed_prize_id=prize.prize_id)

        remaining = []
        for client_id in (1, 2, 1):
            result = await engine.scan(qr.code, client_id, now=NOW)
            remaining.append(result.uses_remaining)
        assert remaining == [2, 1, 0]

        with pytest.raises(LimitExceededError):
            await engine.scan(qr.code, 2, now=NOW)
        assert qr.current_uses == 3
        assert qr.scan_count == 4
        assert await store.count_winnings(prize_id=prize.prize_id) == 3

    @pytest.mark.asyncio
    async def test_scan_spins_default_roulette(self, store, engine):
        basic = add_prize(store, name='Basic')
        premium = add_prize(store, name='Premium', category='premium')
        add_roulette(store, [(basic.prize_id, 100)], is_default=True)
        wheel = add_roulette(
            store,
            [(premium.prize_id, 100)],
            category='premium',
            is_default=True
        )
        qr = add_qrcode(store, prize_category='premium')
        result = await engine.scan(qr.code, 1, now=NOW)
        assert result.prize.prize_id == premium.prize_id
        assert result.roulette_id == wheel.roulette_id

    @pytest.mark.asyncio
    async def test_rejected_draw_does_not_consume_code(self, store, engine):
        prize = add_prize(store, minimum_age=99)
        qr = add_qrcode(store, fixed_prize_id=prize.prize_id)
        with pytest.raises(IneligibleError):
            await engine.scan(qr.code, 1, now=NOW)
        assert qr.current_uses == 0
        assert qr.is_used is False
        assert qr.scan_count == 1
        assert store.winnings == {}

    @pytest.mark.asyncio
    async def test_failed_recording_keeps_gate_use(self, store, engine):
        prize = add_prize(store, auto_apply=False)
        qr = add_qrcode(store, max_uses=1, fixed_prize_id=prize.prize_id)
        store.redemption_code_exists = AsyncMock(return_value=True)

        with pytest.raises(CodeGenerationExhausted):
            await engine.scan(qr.code, 1, now=NOW)
        assert qr.current_uses == 0
        assert qr.is_used is False
        assert qr.used_by_client_id is None
        assert qr.scan_count == 1
        assert store.winnings == {}

        # the code still works once codes can be issued again
        store.redemption_code_exists = AsyncMock(return_value=False)
        result = await engine.scan(qr.code, 1, now=NOW)
        assert result.uses_remaining == 0
        assert qr.is_used is True

    @pytest.mark.asyncio
    async def test_expired_code(self, store, engine):
        prize = add_prize(store)
        qr = add_qrcode(
            store,
            fixed_prize_id=prize.prize_id,
            valid_until=NOW - timedelta(days=1)
        )
        with pytest.raises(ExpiredError):
            await engine.scan(qr.code, 1, now=NOW)
        assert qr.scan_count == 1

    @pytest.mark.asyncio
    async def test_unknown_code(self, engine):
        with pytest.raises(NotFoundError):
            await engine.scan('QR-NOPE', 1, now=NOW)

    @pytest.mark.asyncio
    async def test_no_default_roulette(self, store, engine):
        qr = add_qrcode(store, prize_category='exclusive')
        with pytest.raises(NotFoundError):
            await engine.scan(qr.code, 1, now=NOW)


class TestOperations:
    """Tests for configuration and won-prize operations through the engine."""

    @pytest.mark.asyncio
    async def test_save_roulette_from_dict(self, store, engine):
        prize = add_prize(store)
        roulette = await engine.save_roulette({
            'name': 'Spring Wheel',
            'category': 'seasonal',
            'valid_from': NOW,
            'is_default': True,
            'sectors': [
                {'prize_id': prize.prize_id, 'probability': 100.0, 'index': 0}
            ]
        })
        assert roulette.roulette_id is not None
        assert roulette.sectors[0].prize_id == prize.prize_id

    @pytest.mark.asyncio
    async def test_save_roulette_invalid(self, store, engine):
        prize = add_prize(store)
        with pytest.raises(ValidationError):
            await engine.save_roulette({
                'name': 'Lopsided',
                'valid_from': NOW,
                'sectors': [
                    {'prize_id': prize.prize_id, 'probability': 70.0, 'index': 0}
                ]
            })

    @pytest.mark.asyncio
    async def test_redeem_and_cancel(self, store, engine):
        prize = add_prize(store, auto_apply=False, max_per_client=5)
        first = (await engine.award(prize.prize_id, 1, now=NOW)).winning
        second = (await engine.award(prize.prize_id, 1, now=NOW)).winning

        redeemed = await engine.redeem_by_code(first.redemption_code, now=NOW, processed_by=4)
        assert redeemed.status == WinningStatus.REDEEMED.value

        cancelled = await engine.cancel(second.winning_id, cancelled_by=4, reason='Test', now=NOW)
        assert cancelled.status == WinningStatus.CANCELLED.value

        pending = await engine.pending_for_client(1, NOW)
        assert pending == []

    @pytest.mark.asyncio
    async def test_expire_pending(self, store, engine):
        prize = add_prize(store, auto_apply=False, expiration_days=2)
        result = await engine.award(prize.prize_id, 1, now=NOW)
        assert await engine.expire_pending(NOW + timedelta(days=1)) == 0
        assert await engine.expire_pending(NOW + timedelta(days=3)) == 1
        assert result.winning.status == WinningStatus.EXPIRED.value

    @pytest.mark.asyncio
    async def test_qrcode_management(self, store, engine):
        gates = await engine.generate_qrcode_batch(2, now=NOW, code_type='reminder')
        assert len(gates) == 2
        gate = await engine.deactivate_qrcode(gates[0].qr_code_id, reason='Lost', now=NOW)
        assert gate.is_active is False
        with pytest.raises(NotFoundError):
            await engine.deactivate_qrcode(999)
