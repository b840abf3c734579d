import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from rate_limit import RateLimiter
from services import AuthService

logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, rate_limiter: RateLimiter) -> None:
        settings = get_settings()
        self.rate_limiter = rate_limiter
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def prune_rate_limits(self) -> None:
        removed = self.rate_limiter.prune()
        if removed:
            logger.debug(f"rate_limit_prune: removed={removed}")

    def purge_refresh_tokens(self, source: str = "manual") -> None:
        with session_scope() as session:
            count = AuthService(session).purge_stale_tokens()
        logger.info(f"token_purge: source={source} removed={count}")

    def start(self) -> None:
        self.scheduler.add_job(
            self.prune_rate_limits,
            IntervalTrigger(minutes=1),
            id="rate_limit_prune",
            replace_existing=True,
            misfire_grace_time=60,
        )
        self.scheduler.add_job(
            self.purge_refresh_tokens,
            CronTrigger(hour=3, minute=15),
            args=["daily_03:15"],
            id="refresh_token_purge",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info("Scheduler started with rate-limit pruning and daily token purge")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
