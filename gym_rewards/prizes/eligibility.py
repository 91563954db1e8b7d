"""
Prize availability and client eligibility rules.

Every rule failure is returned as a ``CheckResult``; only a missing client
raises.
"""
from datetime import datetime, timedelta

from navconfig.logging import logging

from ..exceptions import NotFoundError
from .models import Prize
from .results import CheckResult
from .storage import RewardStore
from .collaborators import ClientDirectory


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(now: datetime) -> datetime:
    """Weeks start on Sunday at midnight."""
    days_since_sunday = (now.weekday() + 1) % 7
    return start_of_day(now) - timedelta(days=days_since_sunday)


class EligibilityEvaluator:
    """Checks a prize against the clock, its caps and a client."""

    def __init__(
        self,
        store: RewardStore,
        clients: ClientDirectory,
        logger=None
    ):
        self.store = store
        self.clients = clients
        self.logger = logger or logging.getLogger('Rewards.Eligibility')

    def is_available(self, prize: Prize, now: datetime) -> CheckResult:
        if not prize.is_active:
            return CheckResult.deny("Prize is not active", 'unavailable')
        if prize.valid_from and prize.valid_from > now:
            return CheckResult.deny("Prize is not valid yet", 'unavailable')
        if prize.valid_until and prize.valid_until < now:
            return CheckResult.deny("Prize has expired", 'unavailable')
        if prize.is_out_of_stock():
            return CheckResult.deny("Prize is out of stock", 'unavailable')
        return CheckResult.ok()

    async def check_limits(self, prize: Prize, now: datetime) -> CheckResult:
        """Daily and weekly caps across all clients."""
        if prize.max_per_day:
            today = await self.store.count_winnings(
                prize_id=prize.prize_id,
                since=start_of_day(now)
            )
            if today >= prize.max_per_day:
                return CheckResult.deny("Daily limit reached for this prize", 'limit')
        if prize.max_per_week:
            week = await self.store.count_winnings(
                prize_id=prize.prize_id,
                since=start_of_week(now)
            )
            if week >= prize.max_per_week:
                return CheckResult.deny("Weekly limit reached for this prize", 'limit')
        return CheckResult.ok()

    async def check_client_eligibility(
        self,
        client_id: int,
        prize: Prize,
        now: datetime
    ) -> CheckResult:
        """
        Evaluate the client rules of a prize, stopping at the first failure.

        Order: minimum age, membership tenure, excluded membership type,
        per-client cap.

        Raises:
            NotFoundError: the client does not exist.
        """
        client = await self.clients.get_client(client_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")

        if prize.minimum_age:
            age = client.age(now.date())
            if age is None or age < prize.minimum_age:
                return CheckResult.deny(
                    f"Minimum age required: {prize.minimum_age} years"
                )

        if prize.minimum_membership_days > 0:
            if client.membership_days(now) < prize.minimum_membership_days:
                return CheckResult.deny(
                    f"Requires {prize.minimum_membership_days} days of membership"
                )

        if (
            prize.excluded_membership_types
            and client.membership_type_id is not None
            and client.membership_type_id in prize.excluded_membership_types
        ):
            return CheckResult.deny(
                "Membership type is not eligible for this prize"
            )

        if prize.max_per_client:
            won = await self.store.count_winnings(
                prize_id=prize.prize_id,
                client_id=client_id
            )
            if won >= prize.max_per_client:
                return CheckResult.deny("Per-client limit reached", 'limit')

        return CheckResult.ok()
