import logging
from dataclasses import asdict
from datetime import date
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from amortization import (
    InsufficientPaymentError,
    format_payoff_date,
    format_time_remaining,
)
from auto_assign import AutoAssignService
from config import get_settings
from database import get_db, init_db, session_scope
from months import Month
from schemas import (
    AccountIn,
    AccountUpdate,
    AssignmentIn,
    BudgetIn,
    BudgetTemplateIn,
    BudgetTemplateUpdate,
    BudgetUpdate,
    CategoryGroupIn,
    CategoryIn,
    CategoryUpdate,
    MoveMoneyIn,
    PayoffSimulationIn,
    SaveTemplateIn,
    TrackingAccountIn,
    TransactionIn,
)
from services import (
    AccountService,
    BudgetTemplateService,
    BudgetWorkspaceService,
    CategoryService,
    LedgerError,
    LedgerService,
    LoanService,
    ReportService,
    TrackingAccountService,
    TransactionService,
)
from snapshot import (
    AccountRecord,
    BudgetRecord,
    CategoryGroupRecord,
    CategoryRecord,
    SnapshotService,
    TemplateRecord,
    TrackingAccountRecord,
    TransactionRecord,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Zero-Based Ledger")


@app.on_event("startup")
def startup_event():
    init_db()
    with session_scope() as session:
        budget = BudgetWorkspaceService(session).ensure_default()
        logger.info(f"startup: active_budget_id={budget.id}")


@app.exception_handler(LedgerError)
def ledger_error_handler(_request: Request, exc: LedgerError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(InsufficientPaymentError)
def payment_error_handler(_request: Request, exc: InsufficientPaymentError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def month_from_path(month: str) -> Month:
    try:
        return Month.parse(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def found(value: Any, what: str) -> Any:
    if value is None:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return value


def template_out(tmpl) -> dict:
    return TemplateRecord(
        id=tmpl.id, name=tmpl.name, is_default=tmpl.is_default, goals=tmpl.goal_map()
    ).model_dump()


# Budgets


@app.get("/api/budgets")
def list_budgets(db: Session = Depends(get_db)):
    service = BudgetWorkspaceService(db)
    active = service.active()
    return {
        "active_budget_id": active.id if active else None,
        "current_month": str(service.current_month()),
        "items": [BudgetRecord.model_validate(b) for b in service.list_all()],
    }


@app.post("/api/budgets", status_code=201)
def create_budget(data: BudgetIn, db: Session = Depends(get_db)):
    return BudgetRecord.model_validate(BudgetWorkspaceService(db).create(data))


@app.put("/api/budgets/{budget_id}")
def update_budget(budget_id: int, data: BudgetUpdate, db: Session = Depends(get_db)):
    budget = found(BudgetWorkspaceService(db).update(budget_id, data), "Budget")
    return BudgetRecord.model_validate(budget)


@app.post("/api/budgets/{budget_id}/switch")
def switch_budget(budget_id: int, db: Session = Depends(get_db)):
    budget = found(BudgetWorkspaceService(db).switch(budget_id), "Budget")
    return BudgetRecord.model_validate(budget)


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    found(BudgetWorkspaceService(db).delete(budget_id), "Budget")
    return Response(status_code=204)


@app.post("/api/month/{direction}")
def navigate_month(direction: str, db: Session = Depends(get_db)):
    service = BudgetWorkspaceService(db)
    if direction == "next":
        month = service.next_month()
    elif direction == "previous":
        month = service.previous_month()
    else:
        month = service.set_month(month_from_path(direction))
    return {"current_month": str(month)}


# Accounts


@app.get("/api/accounts")
def list_accounts(db: Session = Depends(get_db)):
    return [AccountRecord.model_validate(a) for a in AccountService(db).list_all()]


@app.post("/api/accounts", status_code=201)
def create_account(data: AccountIn, db: Session = Depends(get_db)):
    return AccountRecord.model_validate(AccountService(db).create(data))


@app.put("/api/accounts/{account_id}")
def update_account(account_id: int, data: AccountUpdate, db: Session = Depends(get_db)):
    account = found(AccountService(db).update(account_id, data), "Account")
    return AccountRecord.model_validate(account)


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(account_id: int, db: Session = Depends(get_db)):
    found(AccountService(db).delete(account_id), "Account")
    return Response(status_code=204)


@app.get("/api/accounts/{account_id}/balance")
def account_balance(account_id: int, db: Session = Depends(get_db)):
    return {"balance_cents": LedgerService(db).account_balance(account_id)}


@app.get("/api/accounts/{account_id}/transactions")
def account_transactions(account_id: int, db: Session = Depends(get_db)):
    txns = TransactionService(db).list_for_account(account_id)
    return [TransactionRecord.model_validate(t) for t in txns]


@app.get("/api/accounts/{account_id}/projection")
def loan_projection(
    account_id: int, start: Optional[date] = None, db: Session = Depends(get_db)
):
    loans = LoanService(db)
    projection = loans.projection(account_id, start)
    if projection is None:
        return {"projection": None, "original_schedule": [], "progress_percent": 0.0}
    return {
        "projection": asdict(projection),
        "payoff": format_payoff_date(projection.payoff_date),
        "time_remaining": format_time_remaining(projection.months_remaining),
        "original_schedule": [
            asdict(row) for row in loans.original_schedule(account_id)
        ],
        "progress_percent": loans.progress(account_id),
    }


@app.post("/api/accounts/{account_id}/simulate")
def simulate_loan(
    account_id: int, data: PayoffSimulationIn, db: Session = Depends(get_db)
):
    comparison = found(LoanService(db).simulate(account_id, data), "Loan terms")
    return {
        "baseline": asdict(comparison.baseline),
        "accelerated": asdict(comparison.accelerated),
        "months_saved": comparison.months_saved,
        "interest_saved": comparison.interest_saved,
    }


# Tracking accounts


@app.get("/api/tracking-accounts")
def list_tracking(db: Session = Depends(get_db)):
    items = TrackingAccountService(db).list_all()
    return [TrackingAccountRecord.model_validate(t) for t in items]


@app.post("/api/tracking-accounts", status_code=201)
def create_tracking(data: TrackingAccountIn, db: Session = Depends(get_db)):
    return TrackingAccountRecord.model_validate(TrackingAccountService(db).create(data))


@app.put("/api/tracking-accounts/{tracking_id}")
def update_tracking(
    tracking_id: int, data: TrackingAccountIn, db: Session = Depends(get_db)
):
    item = TrackingAccountService(db).update(tracking_id, data)
    found(item, "Tracking account")
    return TrackingAccountRecord.model_validate(item)


@app.delete("/api/tracking-accounts/{tracking_id}", status_code=204)
def delete_tracking(tracking_id: int, db: Session = Depends(get_db)):
    found(TrackingAccountService(db).delete(tracking_id), "Tracking account")
    return Response(status_code=204)


# Categories


@app.get("/api/category-groups")
def list_groups(db: Session = Depends(get_db)):
    return [
        {
            **CategoryGroupRecord.model_validate(group).model_dump(),
            "categories": [CategoryRecord.model_validate(c) for c in group.categories],
        }
        for group in CategoryService(db).list_groups()
    ]


@app.post("/api/category-groups", status_code=201)
def create_group(data: CategoryGroupIn, db: Session = Depends(get_db)):
    return CategoryGroupRecord.model_validate(CategoryService(db).create_group(data))


@app.put("/api/category-groups/{group_id}")
def update_group(group_id: int, data: CategoryGroupIn, db: Session = Depends(get_db)):
    group = found(CategoryService(db).update_group(group_id, data), "Category group")
    return CategoryGroupRecord.model_validate(group)


@app.delete("/api/category-groups/{group_id}", status_code=204)
def delete_group(group_id: int, db: Session = Depends(get_db)):
    found(CategoryService(db).delete_group(group_id), "Category group")
    return Response(status_code=204)


@app.post("/api/categories", status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    return CategoryRecord.model_validate(CategoryService(db).create(data))


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int, data: CategoryUpdate, db: Session = Depends(get_db)
):
    category = found(CategoryService(db).update(category_id, data), "Category")
    return CategoryRecord.model_validate(category)


@app.put("/api/categories/{category_id}/goal")
def set_category_goal(
    category_id: int,
    goal_cents: Optional[int] = Body(default=None, embed=True),
    db: Session = Depends(get_db),
):
    category = found(CategoryService(db).set_goal(category_id, goal_cents), "Category")
    return CategoryRecord.model_validate(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    found(CategoryService(db).delete(category_id), "Category")
    return Response(status_code=204)


# Transactions


@app.get("/api/months/{month}/transactions")
def month_transactions(month: str, db: Session = Depends(get_db)):
    txns = TransactionService(db).list_for_month(month_from_path(month))
    return [TransactionRecord.model_validate(t) for t in txns]


@app.post("/api/transactions", status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    return TransactionRecord.model_validate(TransactionService(db).create(data))


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    txn = found(TransactionService(db).update(transaction_id, data), "Transaction")
    return TransactionRecord.model_validate(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    found(TransactionService(db).delete(transaction_id), "Transaction")
    return Response(status_code=204)


# Month budget


@app.get("/api/months/{month}")
def month_summary(month: str, db: Session = Depends(get_db)):
    target = month_from_path(month)
    ledger = LedgerService(db)
    return {
        "month": str(target),
        "ready_to_assign_cents": ledger.ready_to_assign(target),
        "categories": [
            {**asdict(row), "available_cents": row.available_cents}
            for row in ledger.month_summary(target)
        ],
        "groups": [
            asdict(ledger.group_totals(target, group.id))
            for group in CategoryService(db).list_groups()
        ],
    }


@app.get("/api/months/{month}/ready-to-assign")
def ready_to_assign(month: str, db: Session = Depends(get_db)):
    pool = LedgerService(db).ready_to_assign(month_from_path(month))
    return {"ready_to_assign_cents": pool}


@app.get("/api/months/{month}/categories/{category_id}")
def category_month(month: str, category_id: int, db: Session = Depends(get_db)):
    target = month_from_path(month)
    ledger = LedgerService(db)
    return {
        "assigned_cents": ledger.assigned(target, category_id),
        "activity_cents": ledger.category_activity(target, category_id),
        "available_cents": ledger.category_available(target, category_id),
    }


@app.put("/api/months/{month}/assignments")
def set_assignment(month: str, data: AssignmentIn, db: Session = Depends(get_db)):
    target = month_from_path(month)
    row = LedgerService(db).set_category_assignment(
        target, data.category_id, data.amount_cents
    )
    found(row, "Category")
    return {"category_id": data.category_id, "amount_cents": row.amount_cents}


@app.post("/api/months/{month}/move-money")
def move_money(month: str, data: MoveMoneyIn, db: Session = Depends(get_db)):
    target = month_from_path(month)
    moved = LedgerService(db).move_money(
        data.from_category_id, data.to_category_id, data.amount_cents, target
    )
    found(moved, "Category")
    return {"moved_cents": data.amount_cents}


@app.post("/api/months/{month}/auto-assign")
def auto_assign(month: str, db: Session = Depends(get_db)):
    result = AutoAssignService(db).run(month_from_path(month))
    return asdict(result)


@app.get("/api/net-worth")
def net_worth(db: Session = Depends(get_db)):
    return {"net_worth_cents": LedgerService(db).net_worth()}


# Reports


@app.get("/api/reports/trends")
def report_trends(
    end: Optional[str] = None,
    months: int = Query(6, ge=1, le=24),
    db: Session = Depends(get_db),
):
    last = month_from_path(end) if end else BudgetWorkspaceService(db).current_month()
    return [
        {
            "month": str(row.month),
            "income_cents": row.income_cents,
            "expense_cents": row.expense_cents,
            "net_cents": row.net_cents,
            "savings_rate": round(row.savings_rate, 1),
        }
        for row in ReportService(db).monthly_trends(last, months)
    ]


@app.get("/api/reports/{month}/spending")
def report_spending(month: str, db: Session = Depends(get_db)):
    rows = ReportService(db).spending_by_category(month_from_path(month))
    return [asdict(row) for row in rows]


@app.get("/api/reports/{month}/groups")
def report_groups(month: str, db: Session = Depends(get_db)):
    rows = ReportService(db).group_budget_vs_actual(month_from_path(month))
    return [{**asdict(row), "percent": round(row.percent, 1)} for row in rows]


# Templates


@app.get("/api/templates")
def list_templates(db: Session = Depends(get_db)):
    return [template_out(t) for t in BudgetTemplateService(db).list_all()]


@app.post("/api/templates", status_code=201)
def create_template(data: BudgetTemplateIn, db: Session = Depends(get_db)):
    return template_out(BudgetTemplateService(db).create(data))


@app.post("/api/templates/from-current", status_code=201)
def save_current_as_template(data: SaveTemplateIn, db: Session = Depends(get_db)):
    templates = BudgetTemplateService(db)
    tmpl = templates.save_current_as_template(data.name, data.is_default)
    return template_out(tmpl)


@app.put("/api/templates/{template_id}")
def update_template(
    template_id: int, data: BudgetTemplateUpdate, db: Session = Depends(get_db)
):
    tmpl = found(BudgetTemplateService(db).update(template_id, data), "Template")
    return template_out(tmpl)


@app.delete("/api/templates/{template_id}", status_code=204)
def delete_template(template_id: int, db: Session = Depends(get_db)):
    found(BudgetTemplateService(db).delete(template_id), "Template")
    return Response(status_code=204)


@app.post("/api/templates/{template_id}/apply/{month}")
def apply_template(template_id: int, month: str, db: Session = Depends(get_db)):
    applied = BudgetTemplateService(db).apply(template_id, month_from_path(month))
    found(applied, "Template")
    return {"month": month, "assignments": applied}


# Snapshot


@app.get("/api/snapshot")
def export_snapshot(db: Session = Depends(get_db)):
    return SnapshotService(db).export()


@app.post("/api/snapshot")
def import_snapshot(payload: dict = Body(...), db: Session = Depends(get_db)):
    loaded = SnapshotService(db).load(payload)
    if not loaded:
        raise HTTPException(status_code=409, detail="Snapshot discarded")
    return {"loaded": True}
