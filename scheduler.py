import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = settings.scheduler_enabled
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_job(self, source: str = "manual") -> int:
        with session_scope() as session:
            count = RecurringEngine(session).post_due_templates()
        logger.info(f"scheduler_run: source={source} occurrences_posted={count}")
        return count

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduler disabled by configuration")
            return
        self.run_job("startup")

        self.scheduler.add_job(
            self.run_job,
            CronTrigger(hour=0, minute=5),
            args=["daily_00:05"],
            id="recurring_templates_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info("Scheduler started with daily recurring template posting")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
