import argparse
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import NotAuthenticatedError, issue_token, resolve_owner
from config import get_settings
from database import get_db
from models import Account, FixedExpense, Transaction, TransactionType
from periods import MonthPeriod, is_current_month, is_month_past, resolve_month
from recurrence import local_today
from schemas import (
    AccountIn,
    CategoryIn,
    CategoryRenameIn,
    CopyMonthIn,
    FixedExpenseIn,
    MonthlyEditIn,
    MonthlyOverrideIn,
    PaidStatusIn,
    TransactionIn,
)
from services import (
    AccountService,
    CategoryService,
    ExpenseLedgerService,
    FixedExpenseService,
    MetricsService,
    NotFoundError,
    TransactionService,
    ValidationError,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Fixed Expense Ledger")


@app.exception_handler(NotAuthenticatedError)
def not_authenticated_handler(request: Request, exc: NotAuthenticatedError):
    return JSONResponse(
        status_code=401,
        content={"detail": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(SQLAlchemyError)
def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"database_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Database error"})


def current_owner(authorization: Optional[str] = Header(default=None)) -> int:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[len("bearer ") :].strip()
    return resolve_owner(token)


def month_from_query(
    year: Optional[int] = Query(default=None, ge=1, le=9999),
    month: Optional[int] = Query(default=None, ge=1, le=12),
) -> MonthPeriod:
    return resolve_month(year, month, today=local_today())


def account_out(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type,
        "balance_cents": account.balance_cents,
    }


def transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "name": txn.name,
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "date": txn.date.isoformat(),
        "account_id": txn.account_id,
        "account_name": txn.account.name if txn.account else None,
        "category": txn.category,
    }


def fixed_expense_out(tmpl: FixedExpense) -> dict[str, object]:
    return {
        "id": tmpl.id,
        "name": tmpl.name,
        "default_amount_cents": tmpl.default_amount_cents,
        "category": tmpl.category,
        "day_of_month": tmpl.day_of_month,
    }


@app.get("/health")
def health():
    return {"status": "ok"}


# accounts


@app.get("/api/accounts")
def list_accounts(db: Session = Depends(get_db), owner: int = Depends(current_owner)):
    service = AccountService(db, owner)
    return {
        "items": [account_out(a) for a in service.list_all()],
        "total_balance_cents": service.total_balance(),
    }


@app.post("/api/accounts", status_code=201)
def create_account(
    data: AccountIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    return account_out(AccountService(db, owner).create(data))


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    data: AccountIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    return account_out(AccountService(db, owner).update(account_id, data))


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    AccountService(db, owner).delete(account_id)


# transactions


@app.get("/api/transactions")
def list_transactions(
    period: MonthPeriod = Depends(month_from_query),
    type: Optional[TransactionType] = None,
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    items = TransactionService(db, owner).list_for_month(
        period, type=type, category=category
    )
    return {
        "year": period.year,
        "month": period.month,
        "items": [transaction_out(t) for t in items],
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    return transaction_out(TransactionService(db, owner).create(data))


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    return transaction_out(TransactionService(db, owner).update(transaction_id, data))


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    TransactionService(db, owner).delete(transaction_id)


# categories


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db), owner: int = Depends(current_owner)):
    return [{"id": c.id, "name": c.name} for c in CategoryService(db, owner).list_all()]


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    category = CategoryService(db, owner).create(data)
    return {"id": category.id, "name": category.name}


@app.post("/api/categories/resolve")
def resolve_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    category = CategoryService(db, owner).resolve(data.name, fuzzy=True)
    return {"id": category.id, "name": category.name}


@app.post("/api/categories/rename")
def rename_category(
    data: CategoryRenameIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    category = CategoryService(db, owner).rename(data.old_name, data.new_name)
    return {"id": category.id, "name": category.name}


@app.delete("/api/categories/{name:path}", status_code=204)
def delete_category(
    name: str,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    CategoryService(db, owner).delete(name)


# fixed expenses


@app.get("/api/fixed-expenses")
def list_fixed_expenses(
    db: Session = Depends(get_db), owner: int = Depends(current_owner)
):
    service = FixedExpenseService(db, owner)
    return [fixed_expense_out(f) for f in service.list_templates()]


@app.post("/api/fixed-expenses", status_code=201)
def create_fixed_expense(
    data: FixedExpenseIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    return fixed_expense_out(FixedExpenseService(db, owner).create(data))


@app.put("/api/fixed-expenses/{fixed_expense_id}")
def update_fixed_expense(
    fixed_expense_id: int,
    data: FixedExpenseIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    tmpl = FixedExpenseService(db, owner).update_template(fixed_expense_id, data)
    return fixed_expense_out(tmpl)


@app.delete("/api/fixed-expenses/{fixed_expense_id}", status_code=204)
def delete_fixed_expense(
    fixed_expense_id: int,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    FixedExpenseService(db, owner).delete(fixed_expense_id)


@app.get("/api/fixed-expenses/monthly")
def monthly_fixed_expenses(
    period: MonthPeriod = Depends(month_from_query),
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    rows = FixedExpenseService(db, owner).monthly(period)
    return [row.as_dict() for row in rows]


@app.get("/api/fixed-expenses/yearly")
def yearly_fixed_expenses(
    year: Optional[int] = Query(default=None, ge=1, le=9999),
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    target_year = year if year is not None else local_today().year
    return FixedExpenseService(db, owner).yearly(target_year)


@app.get("/api/fixed-expenses/buckets")
def fixed_expense_buckets(
    period: MonthPeriod = Depends(month_from_query),
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    today = local_today()
    buckets = FixedExpenseService(db, owner).buckets(period, today=today)
    return {
        "year": period.year,
        "month": period.month,
        "is_past_month": is_month_past(period, today=today),
        "is_current_month": is_current_month(period, today=today),
        "paid": [row.as_dict() for row in buckets.paid],
        "overdue": [row.as_dict() for row in buckets.overdue],
        "upcoming": [row.as_dict() for row in buckets.upcoming],
        "paid_cents": buckets.paid_cents,
        "overdue_cents": buckets.overdue_cents,
        "upcoming_cents": buckets.upcoming_cents,
    }


def _path_period(year: int, month: int) -> MonthPeriod:
    try:
        return MonthPeriod(year, month)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


@app.put("/api/fixed-expenses/{fixed_expense_id}/months/{year}/{month}")
def edit_fixed_expense_month(
    fixed_expense_id: int,
    year: int,
    month: int,
    data: MonthlyEditIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    row = FixedExpenseService(db, owner).edit_month(
        fixed_expense_id,
        _path_period(year, month),
        amount_cents=data.amount_cents,
        is_paid=data.is_paid,
    )
    return row.as_dict()


@app.put("/api/fixed-expenses/{fixed_expense_id}/months/{year}/{month}/override")
def set_fixed_expense_override(
    fixed_expense_id: int,
    year: int,
    month: int,
    data: MonthlyOverrideIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    override = FixedExpenseService(db, owner).set_override(
        fixed_expense_id, _path_period(year, month), data.amount_cents
    )
    return {
        "id": override.id,
        "fixed_expense_id": override.fixed_expense_id,
        "year": override.year,
        "month": override.month,
        "amount_cents": override.amount_cents,
    }


@app.delete(
    "/api/fixed-expenses/{fixed_expense_id}/months/{year}/{month}/override",
    status_code=204,
)
def clear_fixed_expense_override(
    fixed_expense_id: int,
    year: int,
    month: int,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    FixedExpenseService(db, owner).clear_override(
        fixed_expense_id, _path_period(year, month)
    )


@app.put("/api/fixed-expenses/{fixed_expense_id}/months/{year}/{month}/status")
def set_fixed_expense_status(
    fixed_expense_id: int,
    year: int,
    month: int,
    data: PaidStatusIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    status = FixedExpenseService(db, owner).set_paid_status(
        fixed_expense_id, _path_period(year, month), data.is_paid
    )
    return {
        "id": status.id,
        "fixed_expense_id": status.fixed_expense_id,
        "year": status.year,
        "month": status.month,
        "is_paid": status.is_paid,
    }


@app.post("/api/fixed-expenses/copy")
def copy_fixed_expenses(
    data: CopyMonthIn,
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    source = MonthPeriod(data.source_year, data.source_month)
    if data.dest_year is None and data.dest_month is None:
        try:
            dest = source.next()
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    elif data.dest_year is None or data.dest_month is None:
        raise ValidationError("dest_year and dest_month must be given together")
    else:
        dest = MonthPeriod(data.dest_year, data.dest_month)
    written = FixedExpenseService(db, owner).copy_month(source, dest)
    return {"source": source.slug, "dest": dest.slug, "written": written}


# dashboard


@app.get("/api/expenses")
def month_expenses(
    period: MonthPeriod = Depends(month_from_query),
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    entries = ExpenseLedgerService(db, owner).expenses_for_month(period)
    return {
        "year": period.year,
        "month": period.month,
        "items": [entry.as_dict() for entry in entries],
    }


@app.get("/api/summary")
def month_summary(
    period: MonthPeriod = Depends(month_from_query),
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    return MetricsService(db, owner).summary(period, today=local_today())


@app.get("/api/category-breakdown")
def category_breakdown(
    period: MonthPeriod = Depends(month_from_query),
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    return MetricsService(db, owner).category_breakdown(period)


@app.get("/api/daily-spending")
def daily_spending(
    period: MonthPeriod = Depends(month_from_query),
    db: Session = Depends(get_db),
    owner: int = Depends(current_owner),
):
    return MetricsService(db, owner).daily_spending(period)


def main():
    parser = argparse.ArgumentParser(description="Fixed expense ledger API")
    sub = parser.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="run the HTTP server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    token = sub.add_parser("token", help="print a bearer token for a user id")
    token.add_argument("user_id", type=int)
    args = parser.parse_args()

    if args.command == "token":
        print(issue_token(args.user_id))
        return

    import uvicorn

    host = getattr(args, "host", "0.0.0.0")
    port = getattr(args, "port", 8000)
    uvicorn.run("main:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
