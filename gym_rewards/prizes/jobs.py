"""
Scheduler integration for the Prize Engine.
"""
from navconfig.logging import logging

from ..conf import EXPIRATION_SWEEP_HOUR


async def expire_old_prizes(engine):
    """
    Scheduled job to expire pending prize winnings.

    Should be run daily.
    """
    logger = logging.getLogger('Rewards.PrizeExpiration')

    try:
        expired_count = await engine.expire_pending()

        if expired_count > 0:
            logger.info(f"Expired {expired_count} prize winnings")

    except Exception as err:
        logger.error(f"Error expiring prizes: {err}")


def register_expiration_job(scheduler, engine, timezone=None):
    """
    Register the daily expiration sweep.

    Call this from the application setup:
        from gym_rewards.prizes.jobs import register_expiration_job
        register_expiration_job(self.scheduler, self.engine, self._timezone)

    Args:
        scheduler: APScheduler instance
        engine: PrizeEngine
        timezone: Timezone for job scheduling
    """
    scheduler.add_job(
        expire_old_prizes,
        'cron',
        hour=EXPIRATION_SWEEP_HOUR,
        args=[engine],
        id='prize_expiration_check',
        name='Daily Prize Expiration',
        replace_existing=True,
        timezone=timezone
    )
