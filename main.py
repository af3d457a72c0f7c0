import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from sqlalchemy.orm import Session

from aggregation import category_breakdown, period_totals, top_categories
from alerts import AlertService
from database import SessionLocal
from errors import (
    ExportError,
    LedgerValidationError,
    PartialReconciliationError,
    StoreError,
    notice_for,
)
from exports import ReportService, export_filename, has_content, render_report
from ledger_session import LedgerSession
from models import (
    Client,
    LedgerEvent,
    Project,
    ScheduledTransaction,
    Transaction,
)
from periods import Period, resolve_period
from reconciliation import ReconciliationService
from schemas import (
    ClientIn,
    ExportOptions,
    ProjectIn,
    ScheduledStatusIn,
    ScheduledTransactionIn,
    TransactionIn,
)
from services import (
    ClientService,
    DashboardService,
    Notifier,
    ProjectService,
    ScheduledTransactionService,
    TransactionService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Project Ledger")

EXPORT_MEDIA_TYPES = {
    "pdf": "application/pdf",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


ledger_session = LedgerSession(SessionLocal)


def get_notifier() -> Notifier:
    return ledger_session.notify_changed


@app.on_event("startup")
def startup_event():
    ledger_session.start()


@app.on_event("shutdown")
def shutdown_event():
    ledger_session.stop()


def _notice_response(status_code: int, exc: BaseException, **extra: object) -> JSONResponse:
    content: dict[str, object] = {"notice": notice_for(exc).as_dict()}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(LedgerValidationError)
async def validation_error_handler(request: Request, exc: LedgerValidationError):
    return _notice_response(400, exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    message = str(first.get("msg", "Invalid input"))
    return _notice_response(400, LedgerValidationError(message))


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return _notice_response(503, exc)


@app.exception_handler(ExportError)
async def export_error_handler(request: Request, exc: ExportError):
    logger.error(f"report_export_failed: path={request.url.path} error={exc}")
    return _notice_response(500, exc)


def period_from_request(request: Request) -> Period:
    return resolve_period(
        request.query_params.get("period"),
        request.query_params.get("start"),
        request.query_params.get("end"),
    )


def _iso(value: Optional[object]) -> Optional[str]:
    return value.isoformat() if value is not None else None  # type: ignore[attr-defined]


def client_dict(client: Client) -> dict[str, object]:
    return {
        "id": client.id,
        "name": client.name,
        "email": client.email,
        "phone": client.phone,
        "notes": client.notes,
        "created_at": _iso(client.created_at),
    }


def project_dict(project: Project) -> dict[str, object]:
    return {
        "id": project.id,
        "title": project.title,
        "description": project.description,
        "value_cents": project.value_cents,
        "status": project.status.value,
        "deadline": _iso(project.deadline),
        "client_id": project.client_id,
        "client_name": project.client_name,
        "created_at": _iso(project.created_at),
    }


def transaction_dict(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "description": txn.description,
        "amount_cents": txn.amount_cents,
        "type": txn.type.value,
        "category": txn.category,
        "date": txn.date.isoformat(),
        "origin_project_id": txn.origin_project_id,
        "origin_scheduled_id": txn.origin_scheduled_id,
        "created_at": _iso(txn.created_at),
    }


def scheduled_dict(item: ScheduledTransaction) -> dict[str, object]:
    return {
        "id": item.id,
        "description": item.description,
        "amount_cents": item.amount_cents,
        "type": item.type.value,
        "category": item.category,
        "scheduled_date": item.scheduled_date.isoformat(),
        "status": item.status.value,
    }


def event_dict(event: LedgerEvent) -> dict[str, object]:
    return {
        "id": event.id,
        "event_type": event.event_type.value,
        "source_id": event.source_id,
        "idempotency_key": event.idempotency_key,
        "status": event.status.value,
        "attempts": event.attempts,
        "last_error": event.last_error,
        "effective_date": event.effective_date.isoformat(),
    }


def _serialize(entity: object) -> Optional[dict[str, object]]:
    if isinstance(entity, Project):
        return project_dict(entity)
    if isinstance(entity, ScheduledTransaction):
        return scheduled_dict(entity)
    return None


def partial_response(exc: PartialReconciliationError) -> JSONResponse:
    # the entity was saved; callers build this while the session is still open
    return _notice_response(207, exc, event_id=exc.event_id, entity=_serialize(exc.entity))


# -- clients --------------------------------------------------------------


@app.get("/api/clients")
def list_clients(q: Optional[str] = None, db: Session = Depends(get_db)):
    return [client_dict(c) for c in ClientService(db).list_all(q)]


@app.post("/api/clients", status_code=201)
def create_client(data: ClientIn, db: Session = Depends(get_db)):
    return client_dict(ClientService(db).create(data))


@app.put("/api/clients/{client_id}")
def update_client(client_id: int, data: ClientIn, db: Session = Depends(get_db)):
    return client_dict(ClientService(db).update(client_id, data))


@app.delete("/api/clients/{client_id}", status_code=204)
def delete_client(client_id: int, db: Session = Depends(get_db)):
    ClientService(db).delete(client_id)
    return Response(status_code=204)


# -- projects -------------------------------------------------------------


@app.get("/api/projects")
def list_projects(db: Session = Depends(get_db)):
    return [project_dict(p) for p in ProjectService(db).list_all()]


@app.post("/api/projects", status_code=201)
def create_project(
    data: ProjectIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    try:
        project = ReconciliationService(db, notifier=notifier).save_project(data)
    except PartialReconciliationError as exc:
        return partial_response(exc)
    return project_dict(project)


@app.put("/api/projects/{project_id}")
def update_project(
    project_id: int,
    data: ProjectIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    try:
        project = ReconciliationService(db, notifier=notifier).save_project(
            data, project_id
        )
    except PartialReconciliationError as exc:
        return partial_response(exc)
    return project_dict(project)


@app.delete("/api/projects/{project_id}", status_code=204)
def delete_project(
    project_id: int,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    ReconciliationService(db, notifier=notifier).delete_project(project_id)
    return Response(status_code=204)


# -- transactions ---------------------------------------------------------


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    type: Literal["all", "income", "expense"] = "all",
    q: Optional[str] = None,
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    items = TransactionService(db).list(period, type, q)
    return {
        "period": {"slug": period.slug, "label": period.describe()},
        "totals": period_totals(items).as_dict(),
        "items": [transaction_dict(t) for t in items],
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return transaction_dict(TransactionService(db, notifier=notifier).create(data))


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    txn = TransactionService(db, notifier=notifier).update(transaction_id, data)
    return transaction_dict(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    ReconciliationService(db, notifier=notifier).delete_transaction(transaction_id)
    return Response(status_code=204)


# -- scheduled transactions -----------------------------------------------


@app.get("/api/scheduled")
def list_scheduled(db: Session = Depends(get_db)):
    return [scheduled_dict(s) for s in ScheduledTransactionService(db).list_all()]


@app.post("/api/scheduled", status_code=201)
def create_scheduled(
    data: ScheduledTransactionIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return scheduled_dict(ScheduledTransactionService(db, notifier=notifier).create(data))


@app.put("/api/scheduled/{item_id}")
def update_scheduled(
    item_id: int,
    data: ScheduledTransactionIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    item = ScheduledTransactionService(db, notifier=notifier).update(item_id, data)
    return scheduled_dict(item)


@app.post("/api/scheduled/{item_id}/status")
def change_scheduled_status(
    item_id: int,
    data: ScheduledStatusIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    try:
        item = ReconciliationService(db, notifier=notifier).change_scheduled_status(
            item_id, data.status
        )
    except PartialReconciliationError as exc:
        return partial_response(exc)
    return scheduled_dict(item)


@app.delete("/api/scheduled/{item_id}", status_code=204)
def delete_scheduled(
    item_id: int,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    ReconciliationService(db, notifier=notifier).delete_scheduled_transaction(item_id)
    return Response(status_code=204)


# -- dashboard ------------------------------------------------------------


@app.get("/api/dashboard")
def dashboard(db: Session = Depends(get_db)):
    summary = DashboardService(db).summary()
    return {
        "totals": summary["totals"].as_dict(),  # type: ignore[attr-defined]
        "scheduled_count": summary["scheduled_count"],
        "monthly": summary["monthly"],
        "daily": summary["daily"],
        "recent_transactions": [
            transaction_dict(t) for t in summary["recent_transactions"]  # type: ignore[attr-defined]
        ],
        "upcoming_schedule": [
            scheduled_dict(s) for s in summary["upcoming_schedule"]  # type: ignore[attr-defined]
        ],
    }


@app.get("/api/categories")
def categories(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    breakdown = category_breakdown(TransactionService(db).list(period))
    return {
        "categories": [
            {**row, "average_cents": str(row["average_cents"])} for row in breakdown
        ],
        "top": [row["category"] for row in top_categories(breakdown)],
    }


@app.get("/api/alerts")
def alerts(db: Session = Depends(get_db)):
    result = AlertService(db).alerts()
    return {
        "overdue": [scheduled_dict(s) for s in result.overdue],
        "upcoming": [scheduled_dict(s) for s in result.upcoming],
    }


@app.get("/api/stats")
def quick_stats():
    return ledger_session.stats().as_dict()


@app.post("/api/stats/refresh")
def refresh_stats():
    return ledger_session.refresh_now().as_dict()


# -- ledger events --------------------------------------------------------


@app.get("/api/ledger-events")
def pending_ledger_events(db: Session = Depends(get_db)):
    return [event_dict(e) for e in ReconciliationService(db).pending_events()]


@app.post("/api/ledger-events/replay")
def replay_ledger_events(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    applied = ReconciliationService(db, notifier=notifier).replay_pending()
    remaining = len(ReconciliationService(db).pending_events())
    return {"applied": applied, "remaining": remaining}


# -- reports --------------------------------------------------------------


@app.post("/reports/{fmt}")
def download_report(
    fmt: Literal["pdf", "xlsx"],
    options: ExportOptions,
    db: Session = Depends(get_db),
):
    start_time = datetime.now()
    report = ReportService(db).gather(options)
    if not has_content(report):
        raise LedgerValidationError("Nothing to export for the selected filters")
    payload = render_report(report, fmt)
    duration = (datetime.now() - start_time).total_seconds()
    logger.info(
        f"report_downloaded: format={fmt} period={report.period.slug} "
        f"size_bytes={len(payload)} duration={duration:.2f}s"
    )
    filename = export_filename(report, fmt)
    return StreamingResponse(
        iter([payload]),
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(payload)),
        },
    )
