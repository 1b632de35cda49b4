import logging
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from assets import AssetHistoryService
from database import SessionLocal
from errors import CommitError, LedgerError, ReferenceNotFoundError
from models import Category, TransactionType
from periods import Period, month_period, resolve_period
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    CategoryIn,
    CategoryOut,
    RecurringRuleIn,
    RecurringRuleOut,
    SubCategoryIn,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountService,
    AnalysisService,
    CategoryService,
    RecurringRuleService,
    TransactionFilters,
    TransactionService,
    display_category_name,
    get_current_user_id,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Household Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(request: Request) -> str:
    return request.headers.get("X-User-Id") or get_current_user_id()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: LedgerError) -> HTTPException:
    if isinstance(exc, ReferenceNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, CommitError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def period_from_request(request: Request) -> Period:
    params = request.query_params
    try:
        return resolve_period(
            params.get("period"), params.get("start"), params.get("end"),
            today=local_today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    txn_type = None
    if params.get("type"):
        try:
            txn_type = TransactionType(params["type"])
        except ValueError:
            txn_type = None

    def int_param(name: str) -> Optional[int]:
        try:
            return int(params[name]) if params.get(name) else None
        except ValueError:
            return None

    return TransactionFilters(
        type=txn_type,
        category_id=int_param("category"),
        account_id=int_param("account"),
        query=params.get("q"),
    )


def transaction_out(txn, known_category_ids) -> dict:
    out = TransactionOut.model_validate(txn).model_dump(mode="json")
    out["category_label"] = display_category_name(txn, known_category_ids)
    return out


# Accounts


@app.get("/api/accounts")
def list_accounts(
    include_archived: bool = False,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    accounts = AccountService(db, user_id).list_all(include_archived=include_archived)
    return [AccountOut.model_validate(account) for account in accounts]


@app.post("/api/accounts", status_code=201)
def create_account(
    data: AccountIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        account = AccountService(db, user_id).create(data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return AccountOut.model_validate(account)


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    data: AccountIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        account = AccountService(db, user_id).update(account_id, data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return AccountOut.model_validate(account)


@app.post("/api/accounts/{account_id}/archive")
def archive_account(
    account_id: int,
    archived: bool = True,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        AccountService(db, user_id).set_archived(account_id, archived)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.delete("/api/accounts/{account_id}")
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        AccountService(db, user_id).delete(account_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Categories


@app.get("/api/categories")
def list_categories(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    categories = CategoryService(db, user_id).list_all()
    return [CategoryOut.model_validate(category) for category in categories]


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        category = CategoryService(db, user_id).create(data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        category = CategoryService(db, user_id).update(category_id, data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.post("/api/categories/{category_id}/sub-categories")
def add_sub_category(
    category_id: int,
    data: SubCategoryIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        category = CategoryService(db, user_id).add_sub_category(category_id, data.name)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.delete("/api/categories/{category_id}/sub-categories/{name}")
def remove_sub_category(
    category_id: int,
    name: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        category = CategoryService(db, user_id).remove_sub_category(category_id, name)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Transactions


def _known_category_ids(db: Session, user_id: str) -> set[int]:
    return set(db.scalars(select(Category.id).where(Category.user_id == user_id)).all())


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    period = period_from_request(request)
    filters = filters_from_request(request)
    txns = TransactionService(db, user_id).list(period, filters, limit, offset)
    known = _known_category_ids(db, user_id)
    return [transaction_out(txn, known) for txn in txns]


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn, _known_category_ids(db, user_id))


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        transaction_id = TransactionService(db, user_id).save(data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {"id": transaction_id}


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).save(data, existing_id=transaction_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {"id": transaction_id}


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Recurring rules


@app.get("/api/recurring")
def list_recurring(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    rules = RecurringRuleService(db, user_id).list()
    return [RecurringRuleOut.model_validate(rule) for rule in rules]


@app.post("/api/recurring", status_code=201)
def create_recurring(
    data: RecurringRuleIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        rule = RecurringRuleService(db, user_id).create(data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return RecurringRuleOut.model_validate(rule)


@app.post("/api/recurring/run")
def run_recurring(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    count = RecurringRuleService(db, user_id).catch_up_all()
    logger.info(f"recurring_run: source=api user_id={user_id} created={count}")
    return {"created": count}


@app.put("/api/recurring/{rule_id}")
def update_recurring(
    rule_id: int,
    data: RecurringRuleIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        rule = RecurringRuleService(db, user_id).update(rule_id, data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return RecurringRuleOut.model_validate(rule)


@app.post("/api/recurring/{rule_id}/toggle")
def toggle_recurring(
    rule_id: int,
    auto_post: bool,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        RecurringRuleService(db, user_id).toggle_auto_post(rule_id, auto_post)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.delete("/api/recurring/{rule_id}")
def delete_recurring(
    rule_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        RecurringRuleService(db, user_id).delete(rule_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Reports


@app.get("/api/assets/history")
def asset_history(
    start: Optional[date] = None,
    end: Optional[date] = None,
    year: Optional[int] = Query(None, ge=1, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
    account: Optional[List[int]] = Query(None),
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    service = AssetHistoryService(db, user_id)
    if year is not None and month is not None:
        series = service.month_history(year, month, account)
    elif start is not None and end is not None:
        series = service.history(start, end, account)
    else:
        raise HTTPException(
            status_code=400, detail="Provide start and end, or year and month"
        )
    return {
        str(key): [
            {"date": point.date.isoformat(), "balance": point.balance}
            for point in points
        ]
        for key, points in series.items()
    }


@app.get("/api/analysis/categories")
def analysis_categories(
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return AnalysisService(db, user_id).category_breakdown(month_period(year, month))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
