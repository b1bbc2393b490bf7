from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Account, Budget, Transaction, TransactionStatus, TransactionType, User
from periods import this_month
from recurrence import balance_delta, next_recurring_date
from schemas import AccountIn, BudgetIn, TransactionIn, UserIn
from store import NotFoundError, to_money


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_or_create(self, data: UserIn) -> User:
        email = data.email.strip().lower()
        user = self.session.scalar(select(User).where(User.email == email))
        if user:
            return user
        user = User(email=email, name=data.name)
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            user = self.session.scalar(select(User).where(User.email == email))
            if not user:
                raise
        self.session.refresh(user)
        return user


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at, Account.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def default(self) -> Optional[Account]:
        return self.session.scalar(
            select(Account).where(
                Account.user_id == self.user_id, Account.is_default.is_(True)
            )
        )

    def _clear_default(self) -> None:
        self.session.execute(
            update(Account)
            .where(Account.user_id == self.user_id, Account.is_default.is_(True))
            .values(is_default=False)
        )

    def create(self, data: AccountIn) -> Account:
        UserService(self.session).get(self.user_id)
        has_accounts = (
            self.session.scalar(
                select(func.count(Account.id)).where(Account.user_id == self.user_id)
            )
            or 0
        ) > 0
        is_default = data.is_default or not has_accounts
        if is_default:
            self._clear_default()
        account = Account(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            balance=to_money(data.balance),
            is_default=is_default,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def set_default(self, account_id: int) -> Account:
        account = self.get(account_id)
        self._clear_default()
        account.is_default = True
        self.session.commit()
        self.session.refresh(account)
        return account


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn) -> Transaction:
        account = self.session.scalar(
            select(Account)
            .where(Account.id == data.account_id, Account.user_id == self.user_id)
            .with_for_update()
        )
        if not account:
            raise NotFoundError("Account not found")

        next_date = None
        if data.is_recurring:
            next_date = next_recurring_date(data.date, data.recurring_interval)
            if next_date is None:
                raise ValueError("Invalid recurring interval")

        amount = to_money(data.amount)
        txn = Transaction(
            user_id=self.user_id,
            account_id=account.id,
            type=data.type,
            amount=amount,
            category=data.category,
            date=data.date,
            description=data.description,
            receipt_url=data.receipt_url,
            is_recurring=data.is_recurring,
            recurring_interval=data.recurring_interval if data.is_recurring else None,
            next_recurring_date=next_date,
            status=TransactionStatus.completed,
        )
        try:
            self.session.add(txn)
            self.session.flush()
            self.session.execute(
                update(Account)
                .where(Account.id == account.id)
                .values(balance=Account.balance + balance_delta(data.type, amount))
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(txn)
        self.session.refresh(account)
        return txn

    def list_for_account(self, account_id: int) -> list[Transaction]:
        AccountService(self.session, self.user_id).get(account_id)
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Optional[Budget]:
        return self.session.scalar(select(Budget).where(Budget.user_id == self.user_id))

    def upsert(self, data: BudgetIn) -> Budget:
        UserService(self.session).get(self.user_id)
        budget = self.get()
        if budget:
            budget.amount = to_money(data.amount)
        else:
            budget = Budget(user_id=self.user_id, amount=to_money(data.amount))
            self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def current(
        self, account_id: int, today: Optional[date] = None
    ) -> tuple[Optional[Budget], Decimal]:
        AccountService(self.session, self.user_id).get(account_id)
        period = this_month(today or date.today())
        spent = self.session.scalar(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
        )
        return self.get(), to_money(spent)
