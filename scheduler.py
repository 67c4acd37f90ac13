import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from models import Agency, RecurringInvestment
from periods import local_today
from services import RecurringInvestmentService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def post_recurring_investments(
    session: Session, today: Optional[date] = None
) -> dict[int, int]:
    """Catch up every agency that has active recurring investments.

    Returns the number of investments posted per agency id.
    """
    today = today or local_today()
    agency_ids = session.scalars(
        select(Agency.id)
        .join(RecurringInvestment, RecurringInvestment.agency_id == Agency.id)
        .where(RecurringInvestment.active.is_(True))
        .distinct()
        .order_by(Agency.id)
    ).all()
    posted: dict[int, int] = {}
    for agency_id in agency_ids:
        count = RecurringInvestmentService(session, agency_id).catch_up_all(
            today=today
        )
        posted[agency_id] = count
        if count:
            logger.info(
                f"recurring_investments_posted: agency={agency_id} count={count}"
            )
    return posted


class SchedulerManager:
    DAILY_JOB_ID = "recurring_investments_daily"
    HOURLY_JOB_ID = "recurring_investments_hourly"

    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_recurring_investments(self, trigger_name: str = "manual") -> None:
        with session_scope() as session:
            posted = post_recurring_investments(session)
        logger.info(
            f"recurring_investments_run: trigger={trigger_name} "
            f"agencies={len(posted)} posted={sum(posted.values())}"
        )

    def start(self) -> None:
        self.run_recurring_investments("startup")

        self.scheduler.add_job(
            self.run_recurring_investments,
            CronTrigger(hour=3, minute=15),
            args=["daily"],
            id=self.DAILY_JOB_ID,
            replace_existing=True,
            misfire_grace_time=3600,
        )
        # picks up rules created during the day
        self.scheduler.add_job(
            self.run_recurring_investments,
            IntervalTrigger(hours=1),
            args=["hourly"],
            id=self.HOURLY_JOB_ID,
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"scheduler_started: jobs={self.DAILY_JOB_ID},{self.HOURLY_JOB_ID} "
            f"timezone={self.scheduler.timezone}"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")
