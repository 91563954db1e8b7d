"""
Won-prize lifecycle.

A winning starts ``pending`` and moves exactly once to ``applied``,
``redeemed``, ``cancelled`` or ``expired``. Every transition appends a
history entry and notifies the client.
"""
from typing import Optional, List
from datetime import datetime, timedelta

from navconfig.logging import logging

from ..conf import EXPIRING_SOON_DAYS
from ..exceptions import (
    RewardsError,
    NotFoundError,
    StateConflictError,
    ExpiredError,
    ValidationError,
    DuplicateCodeError,
    CodeGenerationExhausted,
)
from .models import (
    Prize,
    Roulette,
    PrizeWinning,
    WinningHistory,
    WinningStatus,
    PrizeType,
    NotificationType,
    FINAL_STATUSES,
)
from .storage import RewardStore
from .catalog import PrizeCatalog
from .codes import RedemptionCodeIssuer
from .limits import KeyedLock
from .collaborators import (
    MembershipService,
    PointsLedger,
    OrderService,
    Notifier,
)


NOTIFICATION_TITLE = "Prize Won"
NOTIFICATION_MESSAGES = {
    NotificationType.WON.value: "Congratulations! You have won: {name}",
    NotificationType.APPLIED.value: 'Your prize "{name}" has been applied automatically',
    NotificationType.REDEEMED.value: 'Your prize "{name}" has been redeemed',
    NotificationType.CANCELLED.value: 'Your prize "{name}" has been cancelled',
    NotificationType.EXPIRED.value: 'Your prize "{name}" has expired',
}


class WinningLifecycle:
    """
    Creates won prizes and drives their status transitions.

    Side effects of ``apply`` go through the membership, points and order
    collaborators; only the ones a prize type needs must be configured.
    """

    def __init__(
        self,
        store: RewardStore,
        catalog: PrizeCatalog,
        issuer: RedemptionCodeIssuer,
        membership: Optional[MembershipService] = None,
        points: Optional[PointsLedger] = None,
        orders: Optional[OrderService] = None,
        notifier: Optional[Notifier] = None,
        locks: Optional[KeyedLock] = None,
        logger=None
    ):
        self.store = store
        self.catalog = catalog
        self.issuer = issuer
        self.membership = membership
        self.points = points
        self.orders = orders
        self.notifier = notifier
        self.locks = locks or KeyedLock()
        self.logger = logger or logging.getLogger('Rewards.Lifecycle')

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create(
        self,
        prize: Prize,
        client_id: int,
        now: Optional[datetime] = None,
        roulette: Optional[Roulette] = None,
        qr_code_id: Optional[int] = None,
        sector_index: Optional[int] = None,
        metadata: Optional[dict] = None
    ) -> PrizeWinning:
        """
        Record a won prize as ``pending``.

        Manual prizes get a redemption code; prizes with ``expiration_days``
        get ``expires_at``. The prize ``awarded_count`` and the roulette
        statistics are incremented.

        Returns:
            The stored PrizeWinning.
        """
        now = now or datetime.now()
        manual = not prize.auto_apply
        winning = PrizeWinning(
            client_id=client_id,
            prize_id=prize.prize_id,
            roulette_id=roulette.roulette_id if roulette else None,
            qr_code_id=qr_code_id,
            sector_index=sector_index,
            prize_name=prize.name,
            prize_type=prize.prize_type,
            prize_value=float(prize.value or 0),
            prize_currency=prize.currency,
            status=WinningStatus.PENDING.value,
            won_at=now,
            requires_verification=prize.requires_manual_approval,
            manual_redemption_required=manual,
            metadata=metadata or {}
        )
        if prize.expiration_days:
            winning.expires_at = now + timedelta(days=prize.expiration_days)

        winning = await self._insert(winning, manual)

        await self.catalog.increment_awarded(prize)
        if roulette is not None:
            roulette.total_spins += 1
            roulette.total_prizes_awarded += 1
            await self.store.save_roulette(roulette)

        await self._record(winning, None, now, reason="Prize won")
        self.logger.info(
            f"Client {client_id} won prize {prize.prize_id} "
            f"(winning_id: {winning.winning_id})"
        )
        if prize.send_notification:
            await self._notify(winning, NotificationType.WON.value, now)
        return winning

    async def _insert(self, winning: PrizeWinning, manual: bool) -> PrizeWinning:
        if not manual:
            return await self.store.insert_winning(winning)
        for _ in range(self.issuer.max_attempts):
            winning.redemption_code = await self.issuer.issue()
            try:
                return await self.store.insert_winning(winning)
            except DuplicateCodeError:
                self.logger.warning(
                    f"Redemption code {winning.redemption_code} taken, reissuing"
                )
        raise CodeGenerationExhausted(
            "Could not store a winning with a unique redemption code"
        )

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def get(self, winning_id: int) -> PrizeWinning:
        winning = await self.store.get_winning(winning_id)
        if winning is None:
            raise NotFoundError(f"Prize winning {winning_id} not found")
        return winning

    def _ensure_pending(self, winning: PrizeWinning, action: str) -> None:
        if winning.status in FINAL_STATUSES:
            raise StateConflictError(
                f"Cannot {action} a prize already {winning.status}"
            )

    async def verify(
        self,
        winning_id: int,
        verified_by: int,
        now: Optional[datetime] = None
    ) -> PrizeWinning:
        """Staff verification; auto-apply prizes are applied right away."""
        now = now or datetime.now()
        async with self.locks.hold(f"winning:{winning_id}"):
            winning = await self.get(winning_id)
            self._ensure_pending(winning, 'verify')
            winning.verified = True
            winning.verified_by = verified_by
            winning.verified_at = now
            await self.store.update_winning(winning)
            await self.store.append_history(
                WinningHistory(
                    winning_id=winning.winning_id,
                    previous_status=winning.status,
                    status=winning.status,
                    changed_at=now,
                    changed_by=verified_by,
                    reason="Verified"
                )
            )
            prize = await self.catalog.get_prize(winning.prize_id)
            if prize.auto_apply:
                winning = await self._apply(winning, prize, now, verified_by)
            return winning

    async def apply(
        self,
        winning_id: int,
        now: Optional[datetime] = None,
        processed_by: Optional[int] = None
    ) -> PrizeWinning:
        now = now or datetime.now()
        async with self.locks.hold(f"winning:{winning_id}"):
            winning = await self.get(winning_id)
            prize = await self.catalog.get_prize(winning.prize_id)
            return await self._apply(winning, prize, now, processed_by)

    async def _apply(
        self,
        winning: PrizeWinning,
        prize: Prize,
        now: datetime,
        processed_by: Optional[int] = None
    ) -> PrizeWinning:
        self._ensure_pending(winning, 'apply')
        if winning.is_expired(now):
            raise ExpiredError("Prize has expired")
        if winning.requires_verification and not winning.verified:
            raise StateConflictError("Prize requires verification")
        if winning.manual_redemption_required:
            raise StateConflictError(
                "Prize requires manual redemption with its code"
            )

        if prize.prize_type == PrizeType.MEMBERSHIP_DAYS.value:
            if self.membership is None:
                raise RewardsError("Membership service is not configured")
            membership_id = await self.membership.extend_membership(
                winning.client_id,
                int(prize.value)
            )
            if membership_id is None:
                raise StateConflictError("Client has no active membership")
            winning.applied_to_membership_id = membership_id
        elif prize.prize_type == PrizeType.POINTS.value:
            if self.points is None:
                raise RewardsError("Points ledger is not configured")
            await self.points.credit_points(
                winning.client_id,
                int(prize.value),
                f"Prize won: {prize.name}"
            )
        elif prize.prize_type == PrizeType.FREE_PRODUCT.value:
            if self.orders is None:
                raise RewardsError("Order service is not configured")
            winning.applied_to_order_id = await self.orders.create_free_order(
                winning.client_id,
                prize.free_product_id,
                prize.product_quantity
            )
        # discounts, cash, service and other have no side effect here

        previous = winning.status
        winning.status = WinningStatus.APPLIED.value
        winning.applied_at = now
        winning.auto_applied = True
        winning.processed_by = processed_by
        await self.store.update_winning(winning)
        await self.catalog.increment_redeemed(prize)
        await self._record(winning, previous, now, processed_by, "Applied")
        self.logger.info(
            f"Prize winning {winning.winning_id} applied to client {winning.client_id}"
        )
        await self._notify(winning, NotificationType.APPLIED.value, now)
        return winning

    async def redeem(
        self,
        winning_id: int,
        code: str,
        now: Optional[datetime] = None,
        processed_by: Optional[int] = None,
        notes: Optional[str] = None
    ) -> PrizeWinning:
        """
        Manual redemption at the desk.

        Raises:
            StateConflictError: not pending, or verification missing.
            ValidationError: the code does not match.
            ExpiredError: past ``expires_at``.
        """
        now = now or datetime.now()
        async with self.locks.hold(f"winning:{winning_id}"):
            winning = await self.get(winning_id)
            self._ensure_pending(winning, 'redeem')
            if not code or winning.redemption_code != code.strip().upper():
                raise ValidationError(
                    "Invalid redemption code",
                    payload={'redemption_code': code}
                )
            if winning.requires_verification and not winning.verified:
                raise StateConflictError("Prize requires verification")
            if winning.is_expired(now):
                raise ExpiredError("Prize has expired")

            previous = winning.status
            winning.status = WinningStatus.REDEEMED.value
            winning.redeemed_at = now
            winning.processed_by = processed_by
            winning.processing_notes = notes
            await self.store.update_winning(winning)
            prize = await self.catalog.get_prize(winning.prize_id)
            await self.catalog.increment_redeemed(prize)
            await self._record(winning, previous, now, processed_by, notes or "Redeemed")
            self.logger.info(
                f"Prize winning {winning.winning_id} redeemed by staff {processed_by}"
            )
            await self._notify(winning, NotificationType.REDEEMED.value, now)
            return winning

    async def redeem_by_code(
        self,
        code: str,
        now: Optional[datetime] = None,
        processed_by: Optional[int] = None,
        notes: Optional[str] = None
    ) -> PrizeWinning:
        code = (code or '').strip().upper()
        winning = await self.store.get_pending_by_code(code)
        if winning is None:
            raise NotFoundError("No pending prize found for this code")
        return await self.redeem(
            winning.winning_id,
            code,
            now=now,
            processed_by=processed_by,
            notes=notes
        )

    async def cancel(
        self,
        winning_id: int,
        cancelled_by: Optional[int] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PrizeWinning:
        """Cancel a pending prize. Applied side effects are never reversed."""
        now = now or datetime.now()
        async with self.locks.hold(f"winning:{winning_id}"):
            winning = await self.get(winning_id)
            self._ensure_pending(winning, 'cancel')
            previous = winning.status
            winning.status = WinningStatus.CANCELLED.value
            winning.cancelled_at = now
            winning.cancelled_by = cancelled_by
            winning.cancelled_reason = reason
            await self.store.update_winning(winning)
            await self._record(winning, previous, now, cancelled_by, reason)
            self.logger.info(f"Prize winning {winning.winning_id} cancelled")
            await self._notify(winning, NotificationType.CANCELLED.value, now)
            return winning

    async def expire_pending(self, now: Optional[datetime] = None) -> int:
        """
        Expire every pending winning past its ``expires_at``.

        A failing record is logged and skipped.

        Returns:
            Number of winnings expired.
        """
        now = now or datetime.now()
        expired = 0
        for candidate in await self.store.find_pending(expires_before=now):
            try:
                async with self.locks.hold(f"winning:{candidate.winning_id}"):
                    winning = await self.get(candidate.winning_id)
                    if winning.status != WinningStatus.PENDING.value:
                        continue
                    winning.status = WinningStatus.EXPIRED.value
                    winning.expired_at = now
                    await self.store.update_winning(winning)
                    await self._record(
                        winning,
                        WinningStatus.PENDING.value,
                        now,
                        reason="Expired"
                    )
                    await self._notify(winning, NotificationType.EXPIRED.value, now)
                    expired += 1
            except Exception as err:
                self.logger.error(
                    f"Error expiring prize winning {candidate.winning_id}: {err}"
                )
        if expired:
            self.logger.info(f"Expired {expired} prize winnings")
        return expired

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def pending_for_client(
        self,
        client_id: int,
        now: Optional[datetime] = None
    ) -> List[PrizeWinning]:
        """Pending, unexpired winnings of a client, newest first."""
        now = now or datetime.now()
        return [
            w for w in await self.store.find_pending(client_id=client_id)
            if not w.is_expired(now)
        ]

    async def expiring_soon(
        self,
        now: Optional[datetime] = None,
        days_ahead: int = EXPIRING_SOON_DAYS
    ) -> List[PrizeWinning]:
        now = now or datetime.now()
        return await self.store.find_pending(
            expires_after=now,
            expires_before=now + timedelta(days=days_ahead)
        )

    async def history(self, winning_id: int) -> List[WinningHistory]:
        return await self.store.list_history(winning_id)

    def days_until_expiration(
        self,
        winning: PrizeWinning,
        now: Optional[datetime] = None
    ) -> Optional[int]:
        return winning.days_until_expiration(now)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _record(
        self,
        winning: PrizeWinning,
        previous: Optional[str],
        now: datetime,
        changed_by: Optional[int] = None,
        reason: Optional[str] = None
    ) -> WinningHistory:
        return await self.store.append_history(
            WinningHistory(
                winning_id=winning.winning_id,
                previous_status=previous,
                status=winning.status,
                changed_at=now,
                changed_by=changed_by,
                reason=reason
            )
        )

    async def _notify(
        self,
        winning: PrizeWinning,
        kind: str,
        now: datetime
    ) -> None:
        """Best effort: a failed notification never undoes a transition."""
        if self.notifier is None:
            return
        message = NOTIFICATION_MESSAGES.get(
            kind,
            NOTIFICATION_MESSAGES[NotificationType.WON.value]
        ).format(name=winning.prize_name)
        try:
            await self.notifier.notify(
                winning.client_id,
                'prize',
                NOTIFICATION_TITLE,
                message,
                priority='high',
                related_id=winning.winning_id
            )
            winning.notification_sent = True
            winning.notification_sent_at = now
            await self.store.update_winning(winning)
        except Exception as err:
            self.logger.warning(
                f"Failed to send '{kind}' notification for "
                f"prize winning {winning.winning_id}: {err}"
            )
