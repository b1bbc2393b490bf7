import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from sqlalchemy.orm import Session

from database import get_session_factory
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    BudgetIn,
    BudgetOut,
    CurrentBudgetOut,
    TransactionIn,
    TransactionOut,
    UserIn,
)
from services import (
    AccountService,
    BudgetService,
    TransactionService,
    UserService,
)
from store import NotFoundError


logger = logging.getLogger(__name__)

app = FastAPI(title="Finelytics")


def get_db():
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def _raise_http(exc: ValueError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


scheduler_manager: Optional[SchedulerManager] = None


def get_scheduler() -> SchedulerManager:
    global scheduler_manager
    if scheduler_manager is None:
        scheduler_manager = SchedulerManager()
    return scheduler_manager


@app.on_event("startup")
def startup_event():
    get_scheduler().start()


@app.on_event("shutdown")
def shutdown_event():
    if scheduler_manager is not None:
        scheduler_manager.stop()


@app.post("/api/users", status_code=201)
def register_user(data: UserIn, db: Session = Depends(get_db)):
    user = UserService(db).get_or_create(data)
    return {"id": user.id, "email": user.email, "name": user.name}


@app.get("/api/accounts", response_model=list[AccountOut])
def list_accounts(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return AccountService(db, user_id).list_all()


@app.post("/api/accounts", response_model=AccountOut, status_code=201)
def create_account(
    data: AccountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return AccountService(db, user_id).create(data)
    except ValueError as exc:
        _raise_http(exc)


@app.post("/api/accounts/{account_id}/default", response_model=AccountOut)
def set_default_account(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return AccountService(db, user_id).set_default(account_id)
    except ValueError as exc:
        _raise_http(exc)


@app.get(
    "/api/accounts/{account_id}/transactions", response_model=list[TransactionOut]
)
def account_transactions(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return TransactionService(db, user_id).list_for_account(account_id)
    except ValueError as exc:
        _raise_http(exc)


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return TransactionService(db, user_id).create(data)
    except ValueError as exc:
        _raise_http(exc)


@app.put("/api/budget", response_model=BudgetOut)
def update_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        return BudgetService(db, user_id).upsert(data)
    except ValueError as exc:
        _raise_http(exc)


@app.get("/api/budget", response_model=CurrentBudgetOut)
def current_budget(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        budget, spent = BudgetService(db, user_id).current(account_id)
    except ValueError as exc:
        _raise_http(exc)
    return CurrentBudgetOut(
        budget=BudgetOut.model_validate(budget) if budget else None,
        current_expenses=spent,
    )


@app.post("/admin/jobs/{name}/run")
def run_job(name: str, manager: SchedulerManager = Depends(get_scheduler)):
    try:
        result = manager.run_now(name)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    logger.info(f"admin_job_run: job={name} result={result}")
    return {"job": name, "result": result}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
