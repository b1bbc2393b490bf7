from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from config import Settings
from database import Base, build_session_factory, session_scope
from models import (
    Account,
    Budget,
    RecurringInterval,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from notifications import SendResult
from store import LedgerStore


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite://",
        timezone="UTC",
        resend_api_key="re_test",
        email_from="Finelytics <reports@example.com>",
        email_timeout_secs=1.0,
        gemini_api_key="",
        gemini_model="gemini-1.5-flash",
        budget_alert_threshold=80,
        recurring_rate_limit=10,
        recurring_rate_period_secs=60.0,
        job_max_attempts=2,
        job_retry_base_delay_secs=1.0,
        report_workers=1,
    )
    values.update(overrides)
    return Settings(**values)


class FakeSender:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> SendResult:
        self.sent.append((to, subject, body))
        if self.fail:
            return SendResult(False, "delivery failed")
        return SendResult(True, message_id=f"msg-{len(self.sent)}")


class LedgerSeeder:
    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def user(self, email: str = "asha@example.com", name: str = "Asha") -> int:
        with session_scope(self.session_factory) as session:
            user = User(email=email, name=name)
            session.add(user)
            session.flush()
            return user.id

    def account(
        self,
        user_id: int,
        balance: str = "1000.00",
        is_default: bool = True,
        name: str = "Main",
    ) -> int:
        with session_scope(self.session_factory) as session:
            account = Account(
                user_id=user_id,
                name=name,
                balance=Decimal(balance),
                is_default=is_default,
            )
            session.add(account)
            session.flush()
            return account.id

    def transaction(
        self,
        user_id: int,
        account_id: int,
        amount: str = "50.00",
        type: TransactionType = TransactionType.expense,
        on: date = date(2024, 1, 1),
        category: str = "utilities",
        description: Optional[str] = "Internet",
        interval: Optional[RecurringInterval] = None,
        next_recurring_date: Optional[date] = None,
        last_processed_date: Optional[datetime] = None,
        status: TransactionStatus = TransactionStatus.completed,
    ) -> int:
        with session_scope(self.session_factory) as session:
            txn = Transaction(
                user_id=user_id,
                account_id=account_id,
                type=type,
                amount=Decimal(amount),
                category=category,
                description=description,
                date=on,
                is_recurring=interval is not None,
                recurring_interval=interval,
                next_recurring_date=next_recurring_date,
                last_processed_date=last_processed_date,
                status=status,
            )
            session.add(txn)
            session.flush()
            return txn.id

    def budget(
        self,
        user_id: int,
        amount: str = "1000.00",
        last_alert_sent: Optional[datetime] = None,
    ) -> int:
        with session_scope(self.session_factory) as session:
            budget = Budget(
                user_id=user_id,
                amount=Decimal(amount),
                last_alert_sent=last_alert_sent,
            )
            session.add(budget)
            session.flush()
            return budget.id

    def get(self, model, pk):
        with session_scope(self.session_factory) as session:
            return session.get(model, pk)

    def count(self, model) -> int:
        with session_scope(self.session_factory) as session:
            return session.query(model).count()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory) -> LedgerStore:
    return LedgerStore(session_factory)


@pytest.fixture
def seed(session_factory) -> LedgerSeeder:
    return LedgerSeeder(session_factory)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()
