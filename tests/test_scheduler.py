from datetime import date, datetime
from decimal import Decimal

import pytest

from jobs import RetryPolicy, SlidingWindowRateLimiter
from models import Account, RecurringInterval, Transaction
from recurrence import ProcessResult, WorkItem
from scheduler import (
    BUDGET_ALERTS,
    MONTHLY_REPORTS,
    RECURRING_PROCESS,
    RECURRING_SCAN,
    SchedulerManager,
)


class FakeScheduler:
    running = False

    def __init__(self) -> None:
        self.added = []

    def add_job(self, func, trigger=None, **kwargs):
        self.added.append((func, trigger, kwargs))


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class NoInsights:
    def generate(self, stats, month_label):
        return ["ok"]


@pytest.fixture
def manager(session_factory, settings, sender):
    return SchedulerManager(
        session_factory=session_factory,
        settings=settings,
        sender=sender,
        insights=NoInsights(),
        scheduler=FakeScheduler(),
    )


def test_retry_policy_backs_off_exponentially():
    policy = RetryPolicy(max_attempts=3, base_delay_secs=1.0)
    assert [policy.delay_for(a) for a in (1, 2, 3)] == [2.0, 4.0, 8.0]
    assert policy.should_retry(2)
    assert not policy.should_retry(3)


def test_rate_limiter_allows_limit_per_window_per_key():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(10, 60.0, clock=clock)

    assert all(limiter.reserve("user-1") == 0 for _ in range(10))
    assert limiter.reserve("user-1") == pytest.approx(60.0)
    assert limiter.reserve("user-2") == 0

    clock.now += 45
    assert limiter.reserve("user-1") == pytest.approx(15.0)
    clock.now += 15
    assert limiter.reserve("user-1") == 0


def test_rate_limiter_forgets_idle_users():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(10, 60.0, clock=clock)

    for user_id in range(50):
        limiter.reserve(user_id)
    assert len(limiter) == 50

    clock.now += 61
    assert limiter.reserve("active") == 0
    assert len(limiter) == 1


def test_rate_limiter_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(0, 60.0)


def test_jobs_registry(manager):
    assert manager.jobs[BUDGET_ALERTS].cron == "0 */6 * * *"
    assert manager.jobs[RECURRING_SCAN].cron == "0 0 * * *"
    assert manager.jobs[MONTHLY_REPORTS].cron == "0 0 1 * *"
    processor = manager.jobs[RECURRING_PROCESS]
    assert not processor.is_periodic
    assert processor.rate_limit.limit == 10
    assert processor.rate_limit.period_secs == 60.0
    assert processor.retry.max_attempts == 2


def test_scan_publishes_work_items_to_scheduler(manager, seed):
    user_id = seed.user()
    account_id = seed.account(user_id)
    txn_id = seed.transaction(
        user_id,
        account_id,
        interval=RecurringInterval.monthly,
        next_recurring_date=date(2000, 1, 1),
        last_processed_date=datetime(1999, 12, 1),
    )

    assert manager.run_now(RECURRING_SCAN) == 1

    func, trigger, kwargs = manager.scheduler.added[0]
    assert func == manager.dispatch
    assert trigger == "date"
    assert kwargs["args"] == [WorkItem(txn_id, user_id), 1]


def test_dispatch_processes_work_item(manager, seed):
    user_id = seed.user()
    account_id = seed.account(user_id, balance="1000.00")
    txn_id = seed.transaction(
        user_id,
        account_id,
        amount="50.00",
        interval=RecurringInterval.monthly,
        next_recurring_date=date(2000, 1, 1),
        last_processed_date=datetime(1999, 12, 1),
    )

    result = manager.dispatch(WorkItem(txn_id, user_id))

    assert result.status == "processed"
    assert seed.get(Account, account_id).balance == Decimal("950.00")
    assert seed.count(Transaction) == 2
    assert manager.scheduler.added == []


def test_dispatch_throttles_per_user(manager):
    manager.limiter = SlidingWindowRateLimiter(10, 60.0, clock=FakeClock())
    handled = []
    manager.jobs[RECURRING_PROCESS].handler = lambda item, now: handled.append(
        item
    ) or ProcessResult("job", item.transaction_id, "processed")

    for n in range(11):
        manager.dispatch(WorkItem(n, user_id=1))
    manager.dispatch(WorkItem(99, user_id=2))

    assert len(handled) == 11
    assert [item.user_id for item in handled].count(1) == 10
    assert len(manager.scheduler.added) == 1
    _, trigger, kwargs = manager.scheduler.added[0]
    assert kwargs["args"] == [WorkItem(10, 1), 1]


def test_dispatch_retries_failed_item_then_gives_up(manager):
    manager.jobs[RECURRING_PROCESS].handler = lambda item, now: ProcessResult(
        "job", item.transaction_id, "failed", error="boom"
    )
    item = WorkItem(5, user_id=1)

    manager.dispatch(item, attempt=1)
    assert len(manager.scheduler.added) == 1
    assert manager.scheduler.added[0][2]["args"] == [item, 2]

    manager.dispatch(item, attempt=2)
    assert len(manager.scheduler.added) == 1


def test_failed_periodic_job_is_retried(manager):
    def boom():
        raise RuntimeError("store unavailable")

    manager.jobs[BUDGET_ALERTS].handler = boom

    assert manager._run_job(BUDGET_ALERTS, "cron") is None
    func, trigger, kwargs = manager.scheduler.added[0]
    assert func == manager._run_job
    assert kwargs["args"] == [BUDGET_ALERTS, "retry", 2]

    manager._run_job(BUDGET_ALERTS, "retry", attempt=2)
    assert len(manager.scheduler.added) == 1


def test_run_now_rejects_unknown_or_event_jobs(manager):
    with pytest.raises(ValueError):
        manager.run_now("nope")
    with pytest.raises(ValueError):
        manager.run_now(RECURRING_PROCESS)
