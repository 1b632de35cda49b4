import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import RecurringRuleService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, user_id: Optional[str] = None) -> None:
        settings = get_settings()
        self.user_id = user_id or settings.user_id
        self.interval_minutes = settings.scheduler_interval_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_once(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source} user_id={self.user_id}")
        with session_scope() as session:
            service = RecurringRuleService(session, self.user_id)
            count = service.catch_up_all()
        logger.info(f"scheduler_run: source={source} occurrences_posted={count}")
        return count

    def _run_job(self, source: str) -> None:
        try:
            self.run_once(source)
        except Exception:
            logger.exception(f"scheduler_run_failed: source={source}")

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=0, minute=5)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_00:05"],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(minutes=self.interval_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval_safety_net"],
            id="recurring_interval_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily 00:05 and {self.interval_minutes}-minute safety net"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
