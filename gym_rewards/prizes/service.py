"""
Prize Engine service.

Entry point used by the API layer: spins, QR code scans, direct awards
and the won-prize operations.
"""
from typing import Optional, Tuple, Union, Dict, Any, List
from datetime import datetime
import random

from navconfig.logging import logging

from ..exceptions import RewardsError, IneligibleError, NotFoundError
from .models import Prize, Roulette, QRCode, PrizeWinning
from .results import DrawResult
from .storage import RewardStore
from .catalog import PrizeCatalog
from .eligibility import EligibilityEvaluator
from .limits import KeyedLock, LimitGuard
from .roulette import WeightedSelector, RouletteRegistry
from .codes import RedemptionCodeIssuer
from .qrcode import ScanGate
from .lifecycle import WinningLifecycle
from .collaborators import (
    ClientDirectory,
    MembershipService,
    PointsLedger,
    OrderService,
    Notifier,
)


class PrizeEngine:
    """
    Prize selection and redemption engine.

    Every check that can reject a draw runs before anything is written.
    Check-then-write sequences hold per-key locks, always taken in the
    order roulette, prize, qrcode.
    """

    def __init__(
        self,
        store: RewardStore,
        clients: ClientDirectory,
        membership: Optional[MembershipService] = None,
        points: Optional[PointsLedger] = None,
        orders: Optional[OrderService] = None,
        notifier: Optional[Notifier] = None,
        rng: Optional[random.Random] = None,
        code_rng=None,
        logger=None
    ):
        self.store = store
        self.logger = logger or logging.getLogger('Rewards.Engine')
        self.locks = KeyedLock()
        self.catalog = PrizeCatalog(store)
        self.eligibility = EligibilityEvaluator(store, clients)
        self.guard = LimitGuard(store)
        self.selector = WeightedSelector(rng)
        self.roulettes = RouletteRegistry(store, self.locks, self.guard)
        self.issuer = RedemptionCodeIssuer(store, rng=code_rng)
        self.gate = ScanGate(store, self.issuer)
        self.lifecycle = WinningLifecycle(
            store,
            self.catalog,
            self.issuer,
            membership=membership,
            points=points,
            orders=orders,
            notifier=notifier,
            locks=self.locks
        )

    # =========================================================================
    # DRAWS
    # =========================================================================

    async def spin(
        self,
        roulette_id: int,
        client_id: int,
        now: Optional[datetime] = None,
        qr_code_id: Optional[int] = None,
        location: Optional[Tuple[float, float]] = None
    ) -> DrawResult:
        """
        Spin a roulette for a client, optionally consuming a QR code.

        Raises:
            NotFoundError: unknown roulette, prize, client or QR code.
            LimitExceededError: a cap or the QR code uses were exhausted.
            ExpiredError: the QR code has expired.
            IneligibleError: any other rejection.
        """
        now = now or datetime.now()
        roulette = await self.roulettes.get(roulette_id)
        gate = None
        if qr_code_id is not None:
            gate = await self.store.get_qrcode(qr_code_id)
            if gate is None:
                raise NotFoundError(f"QR code {qr_code_id} not found")
            (await self.gate.check(gate, client_id, now, location)).raise_for_status()
        return await self._draw(client_id, now, roulette=roulette, gate=gate, location=location)

    async def scan(
        self,
        code: str,
        client_id: int,
        now: Optional[datetime] = None,
        location: Optional[Tuple[float, float]] = None
    ) -> DrawResult:
        """
        Scan a QR code: awards its fixed prize, or spins the default
        roulette of its prize category.
        """
        now = now or datetime.now()
        gate = await self.gate.get_by_code(code)

        precheck = await self.gate.check(gate, client_id, now, location)
        precheck.raise_for_status()

        if gate.fixed_prize_id:
            prize = await self.catalog.get_prize(gate.fixed_prize_id)
            return await self._draw(
                client_id, now, prize=prize, gate=gate, location=location
            )
        roulette = await self.roulettes.default_for(gate.prize_category)
        return await self._draw(
            client_id, now, roulette=roulette, gate=gate, location=location
        )

    async def award(
        self,
        prize_id: int,
        client_id: int,
        now: Optional[datetime] = None
    ) -> DrawResult:
        """Direct draw of a fixed prize, no roulette involved."""
        now = now or datetime.now()
        prize = await self.catalog.get_prize(prize_id)
        return await self._draw(client_id, now, prize=prize)

    async def _draw(
        self,
        client_id: int,
        now: datetime,
        roulette: Optional[Roulette] = None,
        prize: Optional[Prize] = None,
        gate: Optional[QRCode] = None,
        location: Optional[Tuple[float, float]] = None
    ) -> DrawResult:
        roulette_key = f"roulette:{roulette.roulette_id}" if roulette else None
        gate_reached = False
        try:
            async with self.locks.hold(roulette_key):
                sector_index = None
                if roulette is not None:
                    roulette = await self.roulettes.get(roulette.roulette_id)
                    (await self.guard.check_spin(roulette, client_id, now)).raise_for_status()
                    choice = self.selector.select(roulette)
                    sector_index = choice.sector_index
                    prize = await self.catalog.get_prize(choice.prize_id)
                    self.logger.debug(
                        f"Roulette {roulette.roulette_id} drew {choice.draw:.4f}, "
                        f"sector {choice.sector_index} (prize {choice.prize_id})"
                    )

                async with self.locks.hold(f"prize:{prize.prize_id}"):
                    prize = await self.catalog.get_prize(prize.prize_id)
                    await self._check_prize(prize, client_id, now)

                    gate_key = f"qrcode:{gate.qr_code_id}" if gate else None
                    async with self.locks.hold(gate_key):
                        uses_remaining = None
                        if gate is not None:
                            gate_reached = True
                            gate = await self.store.get_qrcode(gate.qr_code_id)
                            scan = await self.gate.consume(
                                gate, client_id, now, location
                            )
                            uses_remaining = scan.uses_remaining
                        try:
                            winning = await self.lifecycle.create(
                                prize,
                                client_id,
                                now=now,
                                roulette=roulette,
                                qr_code_id=gate.qr_code_id if gate else None,
                                sector_index=sector_index
                            )
                        except Exception:
                            # no winning was recorded, so the gate keeps its use
                            if gate is not None:
                                await self.gate.release(gate)
                            raise
        except IneligibleError as err:
            if gate is not None and not gate_reached:
                # the gate accepted the scan but the draw was refused
                async with self.locks.hold(f"qrcode:{gate.qr_code_id}"):
                    latest = await self.store.get_qrcode(gate.qr_code_id)
                    await self.gate.record_scan(latest, now)
            self.logger.info(f"Draw rejected for client {client_id}: {err.reason}")
            raise

        winning = await self._auto_apply(winning, prize, now)
        message = f"Congratulations! You have won: {prize.name}"
        if winning.redemption_code:
            message += f". Redemption code: {winning.redemption_code}"
        return DrawResult(
            success=True,
            winning=winning,
            prize=prize,
            roulette_id=roulette.roulette_id if roulette else None,
            sector_index=sector_index,
            redemption_code=winning.redemption_code,
            uses_remaining=uses_remaining,
            message=message
        )

    async def _check_prize(self, prize: Prize, client_id: int, now: datetime) -> None:
        self.eligibility.is_available(prize, now).raise_for_status()
        (await self.eligibility.check_limits(prize, now)).raise_for_status()
        (
            await self.eligibility.check_client_eligibility(client_id, prize, now)
        ).raise_for_status()

    async def _auto_apply(
        self,
        winning: PrizeWinning,
        prize: Prize,
        now: datetime
    ) -> PrizeWinning:
        if not prize.auto_apply or winning.requires_verification:
            return winning
        try:
            return await self.lifecycle.apply(winning.winning_id, now=now)
        except RewardsError as err:
            # the prize stays pending; staff can apply it later
            self.logger.warning(
                f"Auto-apply failed for prize winning {winning.winning_id}: {err}"
            )
            return winning

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    async def save_roulette(self, data: Union[Roulette, Dict[str, Any]]) -> Roulette:
        return await self.roulettes.save(data)

    async def create_qrcode(self, now: Optional[datetime] = None, **config) -> QRCode:
        return await self.gate.create(now=now, **config)

    async def generate_qrcode_batch(
        self,
        count: int,
        now: Optional[datetime] = None,
        **config
    ) -> List[QRCode]:
        return await self.gate.generate_batch(count, now=now, **config)

    async def deactivate_qrcode(
        self,
        qr_code_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> QRCode:
        async with self.locks.hold(f"qrcode:{qr_code_id}"):
            gate = await self.store.get_qrcode(qr_code_id)
            if gate is None:
                raise NotFoundError(f"QR code {qr_code_id} not found")
            return await self.gate.deactivate(gate, reason, now)

    # =========================================================================
    # WON PRIZES
    # =========================================================================

    async def verify(
        self,
        winning_id: int,
        verified_by: int,
        now: Optional[datetime] = None
    ) -> PrizeWinning:
        return await self.lifecycle.verify(winning_id, verified_by, now=now)

    async def apply(
        self,
        winning_id: int,
        now: Optional[datetime] = None,
        processed_by: Optional[int] = None
    ) -> PrizeWinning:
        return await self.lifecycle.apply(winning_id, now=now, processed_by=processed_by)

    async def redeem(
        self,
        winning_id: int,
        code: str,
        now: Optional[datetime] = None,
        processed_by: Optional[int] = None,
        notes: Optional[str] = None
    ) -> PrizeWinning:
        return await self.lifecycle.redeem(
            winning_id, code, now=now, processed_by=processed_by, notes=notes
        )

    async def redeem_by_code(
        self,
        code: str,
        now: Optional[datetime] = None,
        processed_by: Optional[int] = None,
        notes: Optional[str] = None
    ) -> PrizeWinning:
        return await self.lifecycle.redeem_by_code(
            code, now=now, processed_by=processed_by, notes=notes
        )

    async def cancel(
        self,
        winning_id: int,
        cancelled_by: Optional[int] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PrizeWinning:
        return await self.lifecycle.cancel(
            winning_id, cancelled_by=cancelled_by, reason=reason, now=now
        )

    async def expire_pending(self, now: Optional[datetime] = None) -> int:
        return await self.lifecycle.expire_pending(now)

    async def pending_for_client(
        self,
        client_id: int,
        now: Optional[datetime] = None
    ) -> List[PrizeWinning]:
        return await self.lifecycle.pending_for_client(client_id, now)
