import logging
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from config import get_settings
from csrf import HEADER_NAME, generate_csrf_token, validate_csrf_token
from database import get_db, session_scope
from deletion import DeletionScope
from errors import (
    ConstraintViolation,
    NotDeletable,
    NotFound,
    PartialSeriesFailure,
)
from models import Account, Goal, Tag, Transaction, TransactionType
from occurrences import OccurrenceRef, Persisted, to_dict
from periods import Period, resolve_period
from recurrence import ListingFilters
from schemas import (
    AccountIn,
    BankNotificationIn,
    GoalConfigIn,
    PaidIn,
    TagIn,
    TransactionForm,
    TransactionUpdate,
)
from services import (
    AccountService,
    GoalService,
    ReportService,
    ReportSession,
    ReportSessionRegistry,
    SuggestionService,
    TagService,
    TransactionService,
)


settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Ledger")
app.state.report_sessions = ReportSessionRegistry(settings.report_session_limit)


def report_session_for(request: Request) -> ReportSession:
    client = request.headers.get("X-Client-Id", "default")
    return request.app.state.report_sessions.get(client)


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        GoalService(session).seed_defaults()


def require_csrf(request: Request) -> None:
    if not validate_csrf_token(request.headers.get(HEADER_NAME)):
        logger.warning(f"csrf_rejected: path={request.url.path}")
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (NotDeletable, ConstraintViolation)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def period_from_request(request: Request) -> Period:
    params = request.query_params
    try:
        return resolve_period(
            params.get("period"),
            params.get("start"),
            params.get("end"),
            month=params.get("month"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> ListingFilters:
    params = request.query_params
    txn_type = None
    if params.get("type"):
        try:
            txn_type = TransactionType(params["type"])
        except ValueError:
            txn_type = None
    paid = params.get("paid")
    return ListingFilters(
        type=txn_type,
        tag_id=params.get("tag") or None,
        account_id=params.get("account") or None,
        goal_id=params.get("goal") or None,
        query=params.get("q") or None,
        is_paid=None if paid in (None, "") else paid.lower() in {"1", "true", "yes"},
    )


def occurrence_ref(transaction_id: str, month: Optional[str]) -> OccurrenceRef:
    return OccurrenceRef(transaction_id=transaction_id, month=month or None)


def transaction_json(txn: Transaction) -> dict[str, object]:
    return to_dict(Persisted(txn))


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"header": HEADER_NAME, "token": generate_csrf_token()}


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    filters = filters_from_request(request)
    items = TransactionService(db).effective(period, filters)
    return {
        "period": {"start": period.start.isoformat(), "end": period.end.isoformat()},
        "items": [to_dict(occ) for occ in items],
    }


@app.post(
    "/api/transactions", status_code=201, dependencies=[Depends(require_csrf)]
)
def api_create_transaction(form: TransactionForm, db: Session = Depends(get_db)):
    try:
        rows = TransactionService(db).create_from_form(form)
    except PartialSeriesFailure as exc:
        raise HTTPException(
            status_code=500,
            detail={"message": str(exc), "template_id": exc.template_id},
        ) from exc
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"items": [transaction_json(row) for row in rows]}


@app.patch("/api/transactions/{transaction_id}", dependencies=[Depends(require_csrf)])
def api_update_transaction(
    transaction_id: str,
    data: TransactionUpdate,
    month: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db).update(occurrence_ref(transaction_id, month), data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_json(txn)


@app.delete("/api/transactions/{transaction_id}", dependencies=[Depends(require_csrf)])
def api_delete_transaction(
    transaction_id: str,
    month: Optional[str] = None,
    scope: Optional[DeletionScope] = None,
    db: Session = Depends(get_db),
):
    try:
        result = TransactionService(db).delete(
            occurrence_ref(transaction_id, month), scope
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "scope": result.scope.value,
        "deleted": result.deleted,
    }


@app.post(
    "/api/transactions/{transaction_id}/paid", dependencies=[Depends(require_csrf)]
)
def api_set_paid(transaction_id: str, data: PaidIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).set_paid(
            occurrence_ref(transaction_id, data.month), data.is_paid
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_json(txn)


@app.get("/api/transactions/due-today")
def api_due_today(db: Session = Depends(get_db)):
    return {"items": [to_dict(occ) for occ in TransactionService(db).due_on()]}


@app.get("/api/transactions/export.csv")
def api_export_transactions(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    filters = filters_from_request(request)
    csv_text = TransactionService(db).export_csv(period, filters)
    filename = f"transactions_{period.start}_{period.end}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/aggregates")
def api_aggregates(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    session = report_session_for(request)
    token = session.begin()
    aggregates = ReportService(db).get_aggregates(period)
    result = session.accept(token, aggregates)
    if result is None:
        raise HTTPException(status_code=409, detail="Superseded by a newer request")
    totals = result.totals
    return {
        "period": {"start": period.start.isoformat(), "end": period.end.isoformat()},
        "totals": {**asdict(totals), "balance_cents": totals.balance_cents},
        "by_tag": [
            {"name": name, "amount_cents": cents}
            for name, cents in result.by_tag.items()
        ],
        "history": [asdict(point) for point in result.history],
        "commitments": [asdict(point) for point in result.commitments],
    }


@app.post("/api/alerts", dependencies=[Depends(require_csrf)])
def api_alerts(month: str, request: Request, db: Session = Depends(get_db)):
    try:
        alerts = ReportService(db).alerts(month, report_session_for(request))
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"items": [asdict(alert) for alert in alerts]}


def goal_json(goal: Goal) -> dict[str, object]:
    return {"id": goal.id, "name": goal.name, "display_order": goal.display_order}


@app.get("/api/goals")
def api_goals(db: Session = Depends(get_db)):
    service = GoalService(db)
    percentages = service.percentages()
    return {
        "items": [
            {**goal_json(goal), "percentage": str(percentages.get(goal.id, 0))}
            for goal in service.list_all()
        ]
    }


@app.get("/api/goals/progress")
def api_goals_progress(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    progress = ReportService(db).get_goals_progress(period)
    return {
        "items": [
            {
                "goal_id": item.goal_id,
                "name": item.name,
                "percentage": str(item.percentage),
                "ceiling_cents": item.ceiling_cents,
                "spent_cents": item.spent_cents,
                "remaining_cents": item.remaining_cents,
                "progress_percent": round(item.progress_percent, 2),
            }
            for item in progress
        ]
    }


@app.put("/api/goals/config", dependencies=[Depends(require_csrf)])
def api_save_goal_config(data: GoalConfigIn, db: Session = Depends(get_db)):
    try:
        saved = GoalService(db).save_config(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"items": [{"goal_id": k, "percentage": str(v)} for k, v in saved.items()]}


def account_json(account: Account) -> dict[str, object]:
    return {"id": account.id, "name": account.name}


def tag_json(tag: Tag) -> dict[str, object]:
    return {"id": tag.id, "name": tag.name}


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return {"items": [account_json(a) for a in AccountService(db).list_all()]}


@app.post("/api/accounts", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    try:
        account = AccountService(db).create(data.name)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_json(account)


@app.delete("/api/accounts/{account_id}", dependencies=[Depends(require_csrf)])
def api_delete_account(account_id: str, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/tags")
def api_tags(db: Session = Depends(get_db)):
    return {"items": [tag_json(t) for t in TagService(db).list_all()]}


@app.post("/api/tags", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_tag(data: TagIn, db: Session = Depends(get_db)):
    try:
        tag = TagService(db).create(data.name)
    except ValueError as exc:
        raise http_error(exc) from exc
    return tag_json(tag)


@app.patch("/api/tags/{tag_id}", dependencies=[Depends(require_csrf)])
def api_rename_tag(tag_id: str, data: TagIn, db: Session = Depends(get_db)):
    try:
        tag = TagService(db).rename(tag_id, data.name)
    except ValueError as exc:
        raise http_error(exc) from exc
    return tag_json(tag)


@app.delete("/api/tags/{tag_id}", dependencies=[Depends(require_csrf)])
def api_delete_tag(tag_id: str, db: Session = Depends(get_db)):
    try:
        TagService(db).delete(tag_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/suggestions/bank-notification")
def api_bank_notification(
    data: BankNotificationIn, db: Session = Depends(get_db)
):
    suggestion = SuggestionService(db).from_notification(data)
    payload = asdict(suggestion)
    payload["date"] = suggestion.date.isoformat()
    payload["type"] = suggestion.type.value
    return payload


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
