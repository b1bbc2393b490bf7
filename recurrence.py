import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional, Sequence, Union

from dateutil.relativedelta import relativedelta

from models import RecurringInterval, TransactionType
from periods import local_now
from store import (
    LedgerStore,
    NewTransaction,
    NotFoundError,
    StaleWorkItem,
    is_due,
)


logger = logging.getLogger(__name__)

RECURRING_SUFFIX = " (Recurring)"


INTERVAL_OFFSETS = {
    RecurringInterval.daily: relativedelta(days=1),
    RecurringInterval.weekly: relativedelta(days=7),
    RecurringInterval.monthly: relativedelta(months=1),
    RecurringInterval.yearly: relativedelta(years=1),
}


def next_recurring_date(
    reference: Union[date, datetime, None],
    interval: Union[RecurringInterval, str, None],
) -> Optional[date]:
    """Return the first due date after ``reference`` for ``interval``.

    Returns ``None`` for an unknown interval or a missing/invalid reference;
    callers treat that as "not recurring".

    Month and year steps clamp to the last day of a shorter month, so
    2024-01-31 + MONTHLY is 2024-02-29 and 2024-02-29 + YEARLY is
    2025-02-28. Stepping back from such a clamped date does not return the
    original day.
    """
    if isinstance(reference, datetime):
        reference = reference.date()
    if not isinstance(reference, date):
        return None
    try:
        interval = RecurringInterval(interval)
    except ValueError:
        return None
    try:
        return reference + INTERVAL_OFFSETS[interval]
    except (OverflowError, ValueError):
        return None


def balance_delta(txn_type: TransactionType, amount: Decimal) -> Decimal:
    if txn_type == TransactionType.expense:
        return -amount
    return amount


@dataclass(frozen=True)
class WorkItem:
    transaction_id: int
    user_id: int


@dataclass(frozen=True)
class ProcessResult:
    job_id: str
    transaction_id: int
    status: str  # processed | skipped | failed
    error: Optional[str] = None
    created_transaction_id: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"


Publisher = Callable[[Sequence[WorkItem]], None]


class DueTransactionScanner:
    def __init__(
        self, store: LedgerStore, publish: Publisher, timezone: Optional[str] = None
    ) -> None:
        self.store = store
        self.publish = publish
        self.timezone = timezone

    def run(self, today: Optional[date] = None) -> int:
        if today is None:
            today = local_now(self.timezone).date() if self.timezone else date.today()
        due = self.store.find_due_recurring_transactions(today)
        items = [WorkItem(transaction_id=t.id, user_id=t.user_id) for t in due]
        if items:
            self.publish(items)
        logger.info(f"recurring_scan: today={today} triggered={len(items)}")
        return len(items)


class RecurringTransactionProcessor:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def process(
        self,
        item: WorkItem,
        now: Optional[datetime] = None,
        job_id: Optional[str] = None,
    ) -> ProcessResult:
        now = now or datetime.now()
        job_id = job_id or f"recurring-{item.transaction_id}-{uuid.uuid4().hex[:8]}"
        try:
            return self._process(item, now, job_id)
        except StaleWorkItem:
            logger.info(
                f"recurring_skip: job={job_id} transaction={item.transaction_id} "
                "reason=already_processed"
            )
            return ProcessResult(job_id, item.transaction_id, "skipped")
        except Exception as exc:
            logger.exception(
                f"recurring_failed: job={job_id} transaction={item.transaction_id}"
            )
            return ProcessResult(job_id, item.transaction_id, "failed", error=str(exc))

    def _process(self, item: WorkItem, now: datetime, job_id: str) -> ProcessResult:
        template = self.store.get_transaction(item.transaction_id, item.user_id)
        if not template or not is_due(template, now.date()):
            reason = "missing" if not template else "not_due"
            logger.info(
                f"recurring_skip: job={job_id} transaction={item.transaction_id} "
                f"reason={reason}"
            )
            return ProcessResult(job_id, item.transaction_id, "skipped")

        if not self.store.get_account(template.account_id, item.user_id):
            raise NotFoundError("Account not found")

        upcoming = template.next_recurring_date
        if upcoming is not None and upcoming > now.date():
            # First run of a fresh template: its next date is still ahead.
            next_due = upcoming
        else:
            next_due = next_recurring_date(
                upcoming or template.date, template.recurring_interval
            )
        if next_due is None:
            raise ValueError(
                f"Invalid recurring interval {template.recurring_interval!r}"
            )

        occurrence = NewTransaction(
            user_id=template.user_id,
            account_id=template.account_id,
            type=template.type,
            amount=template.amount,
            category=template.category,
            date=now.date(),
            description=f"{template.description or ''}{RECURRING_SUFFIX}".strip(),
            recurrence_source_id=template.id,
        )
        created_id = self.store.atomic_apply_recurrence(
            template.id,
            occurrence,
            balance_delta(template.type, template.amount),
            next_due,
            now,
        )
        logger.info(
            f"recurring_processed: job={job_id} transaction={template.id} "
            f"occurrence={created_id} next_due={next_due}"
        )
        return ProcessResult(
            job_id, template.id, "processed", created_transaction_id=created_id
        )
