import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from errors import (
    Conflict,
    FormatError,
    InvalidRange,
    LedgerError,
    NotFound,
    ValidationError,
)
from models import CategoryKind, FixedFlag, MovementType
from periods import Period, resolve_period
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    CategoryIn,
    DayNoteIn,
    ImportResult,
    MovementIn,
    MovementWithNames,
    RecurringTemplateIn,
    SnapshotBalanceIn,
    SnapshotIn,
)
from services import (
    AccountService,
    AggregationService,
    BalanceService,
    CategoryService,
    CSVService,
    DayNoteService,
    MovementFilters,
    MovementService,
    RecurringTemplateService,
    SeedService,
    SnapshotService,
    percentage,
    percentage_change,
    to_with_names,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Ledger")
scheduler_manager = SchedulerManager()

ERROR_STATUS = {
    NotFound: 404,
    Conflict: 409,
    InvalidRange: 400,
    FormatError: 400,
    ValidationError: 422,
}


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status = ERROR_STATUS.get(type(exc), 400)
    if status >= 422:
        logger.info(f"request_rejected: path={request.url.path} reason={exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def get_owner_id(x_owner_id: Optional[int] = Header(default=None)) -> int:
    """The owner every query and write of this request is scoped to."""
    if x_owner_id is None:
        return get_settings().default_owner_id
    if x_owner_id <= 0:
        raise HTTPException(status_code=400, detail="Invalid owner id")
    return x_owner_id


def period_from_request(request: Request) -> Period:
    params = request.query_params
    months = params.get("months")
    try:
        return resolve_period(
            params.get("period"),
            params.get("start"),
            params.get("end"),
            months=int(months) if months else None,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# accounts


@app.get("/api/accounts")
def list_accounts(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    accounts = AccountService(db, owner_id).list_all(include_inactive=include_inactive)
    return [
        {
            "id": a.id,
            "name": a.name,
            "type": a.type.value,
            "opening_balance_cents": a.opening_balance_cents,
            "is_active": a.is_active,
        }
        for a in accounts
    ]


@app.post("/api/accounts", status_code=201)
def create_account(
    payload: AccountIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    account = AccountService(db, owner_id).create(payload)
    return {"id": account.id, "name": account.name}


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    payload: AccountIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    account = AccountService(db, owner_id).update(account_id, payload)
    return {"id": account.id, "name": account.name, "is_active": account.is_active}


@app.post("/api/accounts/{account_id}/archive", status_code=204)
def archive_account(
    account_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    AccountService(db, owner_id).archive(account_id)
    return Response(status_code=204)


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    AccountService(db, owner_id).delete(account_id)
    return Response(status_code=204)


@app.get("/api/accounts/{account_id}/balance")
def account_balance(
    account_id: int,
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    balance = BalanceService(db, owner_id).balance_of(account_id, as_of)
    return {"account_id": account_id, "as_of": as_of, "balance_cents": balance}


@app.get("/api/accounts/{account_id}/reconcile")
def account_reconcile(
    account_id: int,
    as_of: date,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    result = BalanceService(db, owner_id).reconcile(account_id, as_of)
    return {
        "account_id": result.account_id,
        "as_of": result.as_of,
        "computed_cents": result.computed_cents,
        "snapshot_date": result.snapshot_date,
        "snapshot_cents": result.snapshot_cents,
        "difference_cents": result.difference_cents,
    }


# categories


@app.get("/api/categories")
def list_categories(
    kind: Optional[CategoryKind] = None,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    return [
        {"id": c.id, "name": c.name, "kind": c.kind.value, "is_fixed": c.is_fixed}
        for c in CategoryService(db, owner_id).list_all(kind=kind)
    ]


@app.post("/api/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    category = CategoryService(db, owner_id).create(payload)
    return {"id": category.id, "name": category.name, "kind": category.kind.value}


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    category = CategoryService(db, owner_id).update(category_id, payload)
    return {
        "id": category.id,
        "name": category.name,
        "kind": category.kind.value,
        "is_fixed": category.is_fixed,
        "is_active": category.is_active,
    }


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    migrate_to: Optional[int] = None,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    CategoryService(db, owner_id).delete(category_id, migrate_to_id=migrate_to)
    return Response(status_code=204)


# movements


@app.get("/api/movements", response_model=list[MovementWithNames])
def list_movements(
    start: Optional[date] = None,
    end: Optional[date] = None,
    type: Optional[MovementType] = None,
    account_id: Optional[int] = None,
    category_id: Optional[int] = None,
    fixed_var: Optional[FixedFlag] = None,
    include_transfers: bool = True,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    filters = MovementFilters(
        start=start,
        end=end,
        type=type,
        account_id=account_id,
        category_id=category_id,
        fixed_var=fixed_var,
        include_transfers=include_transfers,
    )
    return MovementService(db, owner_id).list(filters)


@app.get("/api/movements/by-date/{day}", response_model=list[MovementWithNames])
def movements_by_date(
    day: date,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    return MovementService(db, owner_id).list_by_date(day)


@app.post("/api/movements", response_model=MovementWithNames, status_code=201)
def create_movement(
    payload: MovementIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    return to_with_names(MovementService(db, owner_id).create(payload))


@app.put("/api/movements/{movement_id}", response_model=MovementWithNames)
def update_movement(
    movement_id: int,
    payload: MovementIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    return to_with_names(MovementService(db, owner_id).update(movement_id, payload))


@app.delete("/api/movements/{movement_id}", status_code=204)
def delete_movement(
    movement_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    MovementService(db, owner_id).delete(movement_id)
    return Response(status_code=204)


# reports


@app.get("/api/reports/monthly/{year}")
def monthly_totals(
    year: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    totals = AggregationService(db, owner_id).monthly_totals(year)
    return {
        str(index): {"income": t.income, "expense": t.expense}
        for index, t in totals.items()
    }


@app.get("/api/reports/category-breakdown")
def category_breakdown(
    request: Request,
    fixed_var: Optional[FixedFlag] = None,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    period = period_from_request(request)
    breakdown = AggregationService(db, owner_id).category_breakdown(
        period.start, period.end, fixed_var
    )
    grand_total = sum(item.total for item in breakdown)
    return [
        {
            "category_id": item.category_id,
            "name": item.name,
            "total": item.total,
            "percent": percentage(item.total, grand_total),
        }
        for item in breakdown
    ]


@app.get("/api/reports/daily")
def daily_rollup(
    start: date,
    end: date,
    include_transfers: bool = False,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    days = AggregationService(db, owner_id).daily_rollup(
        start, end, include_transfers=include_transfers
    )
    notes = {n.date: n.note for n in DayNoteService(db, owner_id).list(start, end)}
    return {
        day.isoformat(): {
            "income": rollup.income,
            "expense": rollup.expense,
            "count": rollup.count,
            "movements": [m.model_dump(mode="json") for m in rollup.movements],
            "note": notes.get(day),
        }
        for day, rollup in days.items()
    }


@app.get("/api/reports/summary")
def period_summary(
    request: Request,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    period = period_from_request(request)
    aggregation = AggregationService(db, owner_id)
    current = aggregation.summary(period.start, period.end)
    # same-length window right before the requested one
    previous_end = period.start - date.resolution
    previous = aggregation.summary(
        previous_end - (period.end - period.start), previous_end
    )
    return {
        "period": period.slug,
        "start": current.start,
        "end": current.end,
        "income": current.income,
        "expense": current.expense,
        "balance": current.balance,
        "fixed_expense": current.fixed_expense,
        "variable_expense": current.variable_expense,
        "fixed_percent": current.fixed_percent,
        "variable_percent": current.variable_percent,
        "expense_change_percent": percentage_change(current.expense, previous.expense),
        "net_worth": SnapshotService(db, owner_id).total_net_worth(period.end),
    }


# snapshots / net worth


@app.get("/api/snapshots")
def list_snapshots(
    account_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    return [
        {
            "id": s.id,
            "account_id": s.account_id,
            "date": s.date,
            "balance_cents": s.balance_cents,
        }
        for s in SnapshotService(db, owner_id).list_snapshots(account_id, start, end)
    ]


@app.post("/api/snapshots", status_code=201)
def create_snapshot(
    payload: SnapshotIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    snapshot = SnapshotService(db, owner_id).create_snapshot(payload)
    return {"id": snapshot.id, "balance_cents": snapshot.balance_cents}


@app.put("/api/snapshots/{snapshot_id}")
def update_snapshot(
    snapshot_id: int,
    payload: SnapshotBalanceIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    snapshot = SnapshotService(db, owner_id).update_snapshot(
        snapshot_id, payload.balance_cents
    )
    return {"id": snapshot.id, "balance_cents": snapshot.balance_cents}


@app.delete("/api/snapshots/{snapshot_id}", status_code=204)
def delete_snapshot(
    snapshot_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    SnapshotService(db, owner_id).delete_snapshot(snapshot_id)
    return Response(status_code=204)


@app.get("/api/net-worth")
def net_worth(
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    as_of = as_of or date.today()
    return {
        "as_of": as_of,
        "total_cents": SnapshotService(db, owner_id).total_net_worth(as_of),
    }


@app.get("/api/net-worth/series")
def net_worth_series(
    start: date,
    end: date,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    return [
        {
            "date": point.date,
            "total_cents": point.total,
            "per_account": {str(k): v for k, v in point.per_account.items()},
        }
        for point in SnapshotService(db, owner_id).net_worth_series(start, end)
    ]


# diary


@app.get("/api/day-notes/{day}")
def get_day_note(
    day: date,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    note = DayNoteService(db, owner_id).get(day)
    return {"date": day, "note": note.note if note else None}


@app.put("/api/day-notes/{day}")
def put_day_note(
    day: date,
    payload: DayNoteIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    note = DayNoteService(db, owner_id).upsert(day, payload.note)
    return {"date": day, "note": note.note if note else None}


# starter data


@app.get("/api/seed")
def seed_status(
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    return {"needs_seeding": SeedService(db, owner_id).needs_seeding()}


@app.post("/api/seed", status_code=201)
def seed_owner(
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    result = SeedService(db, owner_id).seed()
    return {"accounts": result.accounts, "categories": result.categories}


# recurring templates


@app.get("/api/recurring")
def list_recurring(
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    return [
        {
            "id": t.id,
            "name": t.name,
            "type": t.type.value,
            "amount_cents": t.amount_cents,
            "day_of_month": t.day_of_month,
            "active": t.active,
            "next_occurrence": t.next_occurrence,
        }
        for t in RecurringTemplateService(db, owner_id).list_all()
    ]


@app.post("/api/recurring", status_code=201)
def create_recurring(
    payload: RecurringTemplateIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    template = RecurringTemplateService(db, owner_id).create(payload)
    return {"id": template.id, "next_occurrence": template.next_occurrence}


@app.put("/api/recurring/{template_id}")
def update_recurring(
    template_id: int,
    payload: RecurringTemplateIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    template = RecurringTemplateService(db, owner_id).update(template_id, payload)
    return {"id": template.id, "next_occurrence": template.next_occurrence}


@app.post("/api/recurring/{template_id}/toggle")
def toggle_recurring(
    template_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    template = RecurringTemplateService(db, owner_id).toggle(template_id)
    return {"id": template.id, "active": template.active}


@app.delete("/api/recurring/{template_id}", status_code=204)
def delete_recurring(
    template_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    RecurringTemplateService(db, owner_id).delete(template_id)
    return Response(status_code=204)


# csv


@app.get("/api/export.csv")
def export_csv(
    guard_formulas: bool = False,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    content = CSVService(db, owner_id).export(guard_formulas=guard_formulas)
    filename = f"movimientos_{date.today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _read_upload(file: UploadFile) -> str:
    raw = await file.read()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8") from exc


@app.post("/api/import/preview")
async def import_preview(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    content = await _read_upload(file)
    rows, errors = CSVService(db, owner_id).preview(content)
    return {"rows": [r.model_dump(mode="json") for r in rows], "errors": errors}


@app.post("/api/import", response_model=ImportResult)
async def import_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    content = await _read_upload(file)
    return CSVService(db, owner_id).import_csv(content)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
