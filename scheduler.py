import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import SessionLocal, session_scope
from services import ObligationService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Runs the AUTOMATIC obligation sweep in the background."""

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.settings = get_settings()
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def run_job(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source}")
        with session_scope(self.session_factory) as session:
            outcomes = ObligationService(session).materialize_due()
        posted = sum(len(outcome.transaction_ids) for outcome in outcomes)
        failed = [outcome for outcome in outcomes if not outcome.success]
        logger.info(
            f"scheduler_run: source={source} occurrences_posted={posted} "
            f"failed={len(failed)}"
        )
        for outcome in failed:
            logger.error(
                f"scheduler_run: obligation={outcome.obligation_id} error={outcome.error}"
            )
        return posted

    def start(self) -> None:
        self.run_job("startup")

        trigger = IntervalTrigger(minutes=self.settings.scheduler_interval_minutes)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["interval"],
            id="obligations_interval",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["daily_03:15"],
            id="obligations_daily",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with daily 03:15 and "
            f"{self.settings.scheduler_interval_minutes}-minute interval"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
