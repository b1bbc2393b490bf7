import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Optional, Protocol

from config import Settings
from insights import FALLBACK_INSIGHTS
from notifications import NotificationSender, render_monthly_report
from periods import Period, last_month, local_now
from store import LedgerStore, MonthlyStats, UserSummary


logger = logging.getLogger(__name__)


class InsightSource(Protocol):
    def generate(self, stats: MonthlyStats, month_label: str) -> list[str]: ...


class MonthlyReportGenerator:
    def __init__(
        self,
        store: LedgerStore,
        sender: NotificationSender,
        insights: InsightSource,
        settings: Settings,
    ) -> None:
        self.store = store
        self.sender = sender
        self.insights = insights
        self.timezone = settings.timezone
        self.workers = max(1, settings.report_workers)

    def run(self, today: Optional[date] = None) -> int:
        today = today or local_now(self.timezone).date()
        period = last_month(today)
        users = self.store.find_users()
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            outcomes = list(pool.map(lambda u: self._safe_report(u, period), users))
        sent = sum(1 for ok in outcomes if ok)
        logger.info(
            f"monthly_reports: month={period.label} users={len(users)} sent={sent}"
        )
        return sent

    def _safe_report(self, user: UserSummary, period: Period) -> bool:
        try:
            return self.report_for_user(user, period)
        except Exception:
            logger.exception(f"monthly_report_failed: user={user.id}")
            return False

    def report_for_user(self, user: UserSummary, period: Period) -> bool:
        stats = self.store.monthly_stats(user.id, period)
        if stats.transaction_count == 0:
            return False

        insights = self._insights(stats, period.label)
        subject, body = render_monthly_report(
            user_name=user.name, month=period.label, stats=stats, insights=insights
        )
        result = self.sender.send(user.email, subject, body)
        if not result.success:
            logger.warning(
                f"monthly_report_undelivered: user={user.id} error={result.error}"
            )
        return result.success

    def _insights(self, stats: MonthlyStats, month_label: str) -> list[str]:
        try:
            return self.insights.generate(stats, month_label)
        except Exception as exc:
            logger.warning(f"insights_fallback: month={month_label} error={exc}")
            return list(FALLBACK_INSIGHTS)
