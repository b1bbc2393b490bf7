from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from models import (
    Account,
    Budget,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from periods import Period


CENT = Decimal("0.01")


class NotFoundError(ValueError):
    pass


class StaleWorkItem(Exception):
    """The recurring transaction was already advanced past the requested run."""


def to_money(value: object) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def is_due(transaction: Transaction, today: date) -> bool:
    if transaction.last_processed_date is None:
        return True
    if transaction.next_recurring_date is None:
        return False
    return transaction.next_recurring_date <= today


@dataclass(frozen=True)
class UserSummary:
    id: int
    email: str
    name: Optional[str]


@dataclass(frozen=True)
class BudgetWithAccount:
    budget_id: int
    budget_amount: Decimal
    last_alert_sent: Optional[datetime]
    user_id: int
    user_email: str
    user_name: Optional[str]
    account_id: int
    account_name: str


@dataclass(frozen=True)
class NewTransaction:
    user_id: int
    account_id: int
    type: TransactionType
    amount: Decimal
    category: str
    date: date
    description: Optional[str] = None
    recurrence_source_id: Optional[int] = None


@dataclass
class MonthlyStats:
    total_income: Decimal = Decimal("0.00")
    total_expenses: Decimal = Decimal("0.00")
    by_category: dict[str, Decimal] = field(default_factory=dict)
    transaction_count: int = 0

    @property
    def net(self) -> Decimal:
        return self.total_income - self.total_expenses


class LedgerStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    @contextmanager
    def _scope(self) -> Iterator[Session]:
        with session_scope(self.session_factory) as session:
            yield session

    def find_due_recurring_transactions(self, today: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_recurring.is_(True),
                Transaction.status == TransactionStatus.completed,
                or_(
                    Transaction.last_processed_date.is_(None),
                    Transaction.next_recurring_date <= today,
                ),
            )
            .order_by(Transaction.next_recurring_date, Transaction.id)
        )
        with self._scope() as session:
            return list(session.scalars(stmt).all())

    def get_transaction(
        self, transaction_id: int, user_id: int
    ) -> Optional[Transaction]:
        with self._scope() as session:
            return session.scalar(
                select(Transaction).where(
                    Transaction.id == transaction_id, Transaction.user_id == user_id
                )
            )

    def get_account(self, account_id: int, user_id: int) -> Optional[Account]:
        with self._scope() as session:
            return session.scalar(
                select(Account).where(
                    Account.id == account_id, Account.user_id == user_id
                )
            )

    def atomic_apply_recurrence(
        self,
        transaction_id: int,
        new_transaction: NewTransaction,
        balance_delta: Decimal,
        next_due_date: Optional[date],
        processed_at: datetime,
    ) -> int:
        """Insert the occurrence, move the balance and advance the schedule.

        All three writes share one unit of work; any exception rolls the
        whole unit back. The template row is locked and re-checked so that a
        work item delivered twice cannot produce two occurrences.
        """
        with self._scope() as session:
            template = session.scalar(
                select(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.user_id == new_transaction.user_id,
                )
                .with_for_update()
            )
            if not template:
                raise NotFoundError("Transaction not found")
            if not is_due(template, processed_at.date()):
                raise StaleWorkItem(f"Transaction {transaction_id} is not due")

            txn = Transaction(
                user_id=new_transaction.user_id,
                account_id=new_transaction.account_id,
                type=new_transaction.type,
                amount=to_money(new_transaction.amount),
                category=new_transaction.category,
                description=new_transaction.description,
                date=new_transaction.date,
                is_recurring=False,
                status=TransactionStatus.completed,
                recurrence_source_id=new_transaction.recurrence_source_id,
            )
            session.add(txn)
            session.flush()

            self._apply_balance_delta(
                session,
                new_transaction.account_id,
                new_transaction.user_id,
                balance_delta,
            )

            template.last_processed_date = processed_at
            template.next_recurring_date = next_due_date
            session.flush()
            return txn.id

    def _apply_balance_delta(
        self, session: Session, account_id: int, user_id: int, delta: Decimal
    ) -> None:
        result = session.execute(
            update(Account)
            .where(Account.id == account_id, Account.user_id == user_id)
            .values(balance=Account.balance + to_money(delta))
        )
        if result.rowcount != 1:
            raise NotFoundError("Account not found")

    def find_budgets_with_default_accounts(self) -> list[BudgetWithAccount]:
        stmt = (
            select(Budget, Account, User)
            .join(User, Budget.user_id == User.id)
            .join(
                Account,
                and_(Account.user_id == Budget.user_id, Account.is_default.is_(True)),
            )
            .order_by(Budget.id)
        )
        with self._scope() as session:
            return [
                BudgetWithAccount(
                    budget_id=budget.id,
                    budget_amount=to_money(budget.amount),
                    last_alert_sent=budget.last_alert_sent,
                    user_id=user.id,
                    user_email=user.email,
                    user_name=user.name,
                    account_id=account.id,
                    account_name=account.name,
                )
                for budget, account, user in session.execute(stmt)
            ]

    def update_budget_alert_sent(self, budget_id: int, timestamp: datetime) -> None:
        with self._scope() as session:
            result = session.execute(
                update(Budget)
                .where(Budget.id == budget_id)
                .values(last_alert_sent=timestamp)
            )
            if result.rowcount != 1:
                raise NotFoundError("Budget not found")

    def sum_expenses(self, user_id: int, account_id: int, period: Period) -> Decimal:
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_id == user_id,
            Transaction.account_id == account_id,
            Transaction.type == TransactionType.expense,
            Transaction.date.between(period.start, period.end),
        )
        with self._scope() as session:
            return to_money(session.execute(stmt).scalar_one())

    def find_users(self) -> list[UserSummary]:
        with self._scope() as session:
            rows = session.execute(
                select(User.id, User.email, User.name).order_by(User.id)
            )
            return [UserSummary(id=row.id, email=row.email, name=row.name) for row in rows]

    def monthly_stats(self, user_id: int, period: Period) -> MonthlyStats:
        stmt = (
            select(
                Transaction.type,
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount), 0).label("total"),
                func.count(Transaction.id).label("count"),
            )
            .where(
                Transaction.user_id == user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.type, Transaction.category)
        )
        stats = MonthlyStats()
        with self._scope() as session:
            for row in session.execute(stmt):
                total = to_money(row.total)
                stats.transaction_count += int(row.count or 0)
                if row.type == TransactionType.income:
                    stats.total_income += total
                else:
                    stats.total_expenses += total
                    stats.by_category[row.category] = (
                        stats.by_category.get(row.category, Decimal("0.00")) + total
                    )
        return stats
