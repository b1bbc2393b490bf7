import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import sessionmaker

from alerts import BudgetAlertEvaluator
from config import Settings, get_settings
from database import get_session_factory
from insights import InsightGenerator
from jobs import (
    BUDGET_ALERTS_CRON,
    MONTHLY_REPORTS_CRON,
    RECURRING_SCAN_CRON,
    Job,
    RateLimit,
    RetryPolicy,
    SlidingWindowRateLimiter,
)
from notifications import EmailSender, NotificationSender
from periods import local_now
from recurrence import (
    DueTransactionScanner,
    ProcessResult,
    RecurringTransactionProcessor,
    WorkItem,
)
from reports import InsightSource, MonthlyReportGenerator
from store import LedgerStore


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BUDGET_ALERTS = "check_budget_alerts"
RECURRING_SCAN = "trigger_recurring_transactions"
RECURRING_PROCESS = "process_recurring_transaction"
MONTHLY_REPORTS = "generate_monthly_reports"


class SchedulerManager:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        settings: Optional[Settings] = None,
        sender: Optional[NotificationSender] = None,
        insights: Optional[InsightSource] = None,
        scheduler=None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = LedgerStore(session_factory or get_session_factory())
        self.scheduler = scheduler or BackgroundScheduler(
            timezone=self.settings.timezone
        )
        sender = sender or EmailSender(self.settings)
        insights = insights or InsightGenerator(self.settings)

        retry = RetryPolicy(
            max_attempts=self.settings.job_max_attempts,
            base_delay_secs=self.settings.job_retry_base_delay_secs,
        )
        throttle = RateLimit(
            limit=self.settings.recurring_rate_limit,
            period_secs=self.settings.recurring_rate_period_secs,
        )
        self.processor = RecurringTransactionProcessor(self.store)
        self.limiter = SlidingWindowRateLimiter(throttle.limit, throttle.period_secs)

        jobs = [
            Job(
                BUDGET_ALERTS,
                BudgetAlertEvaluator(self.store, sender, self.settings).run,
                cron=BUDGET_ALERTS_CRON,
                retry=retry,
            ),
            Job(
                RECURRING_SCAN,
                DueTransactionScanner(
                    self.store, self.publish, timezone=self.settings.timezone
                ).run,
                cron=RECURRING_SCAN_CRON,
                retry=retry,
            ),
            Job(
                RECURRING_PROCESS,
                self.processor.process,
                rate_limit=throttle,
                retry=retry,
            ),
            Job(
                MONTHLY_REPORTS,
                MonthlyReportGenerator(
                    self.store, sender, insights, self.settings
                ).run,
                cron=MONTHLY_REPORTS_CRON,
                retry=retry,
            ),
        ]
        self.jobs = {job.name: job for job in jobs}

    def _run_at(self, delay_secs: float) -> datetime:
        now = datetime.now(ZoneInfo(self.settings.timezone))
        return now + timedelta(seconds=max(0.0, delay_secs))

    def _run_job(self, name: str, source: str = "manual", attempt: int = 1) -> object:
        job = self.jobs[name]
        logger.info(f"scheduler_run: job={name} source={source} attempt={attempt}")
        try:
            result = job.handler()
        except Exception:
            logger.exception(f"scheduler_run_failed: job={name} attempt={attempt}")
            if job.retry.should_retry(attempt):
                self.scheduler.add_job(
                    self._run_job,
                    "date",
                    run_date=self._run_at(job.retry.delay_for(attempt)),
                    args=[name, "retry", attempt + 1],
                )
            return None
        logger.info(f"scheduler_run: job={name} source={source} result={result}")
        return result

    def run_now(self, name: str) -> object:
        job = self.jobs.get(name)
        if not job or not job.is_periodic:
            raise ValueError(f"Unknown periodic job: {name}")
        return job.handler()

    def publish(self, items: Sequence[WorkItem]) -> None:
        for item in items:
            self._enqueue(item, attempt=1, delay_secs=0)

    def _enqueue(self, item: WorkItem, attempt: int, delay_secs: float) -> None:
        self.scheduler.add_job(
            self.dispatch,
            "date",
            run_date=self._run_at(delay_secs),
            args=[item, attempt],
            misfire_grace_time=None,
        )

    def dispatch(self, item: WorkItem, attempt: int = 1) -> Optional[ProcessResult]:
        job = self.jobs[RECURRING_PROCESS]
        wait = self.limiter.reserve(item.user_id)
        if wait > 0:
            logger.info(
                f"recurring_throttled: user={item.user_id} "
                f"transaction={item.transaction_id} retry_in={wait:.1f}s"
            )
            self._enqueue(item, attempt, wait)
            return None

        result = job.handler(item, now=local_now(self.settings.timezone))
        if result.failed:
            if job.retry.should_retry(attempt):
                self._enqueue(item, attempt + 1, job.retry.delay_for(attempt))
            else:
                logger.error(
                    f"recurring_gave_up: job={result.job_id} "
                    f"transaction={item.transaction_id} attempts={attempt} "
                    f"error={result.error}"
                )
        return result

    def start(self) -> None:
        self._run_job(RECURRING_SCAN, "startup")

        for job in self.jobs.values():
            if not job.is_periodic:
                continue
            self.scheduler.add_job(
                self._run_job,
                CronTrigger.from_crontab(job.cron, timezone=self.settings.timezone),
                args=[job.name, "cron"],
                id=job.name,
                replace_existing=True,
                misfire_grace_time=3600,
            )

        self.scheduler.start()
        logger.info(
            "Scheduler started: "
            + ", ".join(
                f"{job.name}={job.cron}" for job in self.jobs.values() if job.is_periodic
            )
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
