import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from config import Settings
from notifications import NotificationSender, render_budget_alert
from periods import local_now, month_to_date, same_month
from store import BudgetWithAccount, LedgerStore


logger = logging.getLogger(__name__)


def percentage_used(total_expenses: Decimal, budget_amount: Decimal) -> Decimal:
    if budget_amount <= 0:
        raise ValueError("Budget amount must be positive")
    return total_expenses / budget_amount * 100


def should_alert(
    used: Decimal,
    last_alert_sent: Optional[datetime],
    now: datetime,
    threshold: Decimal = Decimal("80"),
) -> bool:
    if used < threshold:
        return False
    return last_alert_sent is None or not same_month(last_alert_sent, now)


class BudgetAlertEvaluator:
    def __init__(
        self, store: LedgerStore, sender: NotificationSender, settings: Settings
    ) -> None:
        self.store = store
        self.sender = sender
        self.timezone = settings.timezone
        self.threshold = Decimal(settings.budget_alert_threshold)

    def run(self, now: Optional[datetime] = None) -> int:
        now = now or local_now(self.timezone)
        sent = 0
        for entry in self.store.find_budgets_with_default_accounts():
            try:
                if self._check(entry, now):
                    sent += 1
            except Exception:
                logger.exception(f"budget_alert_failed: budget={entry.budget_id}")
        logger.info(f"budget_alerts: now={now.isoformat()} sent={sent}")
        return sent

    def _check(self, entry: BudgetWithAccount, now: datetime) -> bool:
        total = self.store.sum_expenses(
            entry.user_id, entry.account_id, month_to_date(now.date())
        )
        used = percentage_used(total, entry.budget_amount)
        if not should_alert(used, entry.last_alert_sent, now, self.threshold):
            return False

        subject, body = render_budget_alert(
            user_name=entry.user_name,
            account_name=entry.account_name,
            percentage_used=used,
            budget_amount=entry.budget_amount,
            total_expenses=total,
        )
        try:
            result = self.sender.send(entry.user_email, subject, body)
        except Exception:
            logger.exception(f"budget_alert_undelivered: budget={entry.budget_id}")
        else:
            if not result.success:
                logger.warning(
                    f"budget_alert_undelivered: budget={entry.budget_id} "
                    f"error={result.error}"
                )
        # Marked as sent even when delivery failed: at most one alert per month.
        self.store.update_budget_alert_sent(entry.budget_id, now)
        logger.info(
            f"budget_alert: budget={entry.budget_id} user={entry.user_id} "
            f"used={used:.1f}%"
        )
        return True
