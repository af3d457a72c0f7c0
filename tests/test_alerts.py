from datetime import date, datetime, timezone
from types import SimpleNamespace

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from alerts import AlertService, compute_alerts
from database import Base
from models import ScheduledStatus, TransactionType
from schemas import ScheduledTransactionIn
from services import ScheduledTransactionService

NOW = datetime(2024, 3, 10, 12, 0)


def _item(name, at, status=ScheduledStatus.scheduled):
    return SimpleNamespace(description=name, scheduled_at=at, status=status)


def test_compute_alerts_splits_overdue_and_upcoming():
    items = [
        _item("far", datetime(2024, 3, 25)),
        _item("soon", datetime(2024, 3, 15)),
        _item("late", datetime(2024, 3, 1)),
        _item("done", datetime(2024, 3, 2), ScheduledStatus.paid),
        _item("edge", datetime(2024, 3, 17, 12, 0)),
    ]
    alerts = compute_alerts(items, NOW, window_days=7)

    assert [i.description for i in alerts.overdue] == ["late"]
    assert [i.description for i in alerts.upcoming] == ["soon", "edge"]


def test_alert_lists_are_disjoint():
    items = [_item(str(day), datetime(2024, 3, day)) for day in range(1, 29)]
    alerts = compute_alerts(items, NOW)
    overdue = {id(i) for i in alerts.overdue}
    upcoming = {id(i) for i in alerts.upcoming}
    assert overdue.isdisjoint(upcoming)


def test_aware_now_is_compared_in_utc():
    items = [_item("today", datetime(2024, 3, 10, 13, 0))]
    aware = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
    assert [i.description for i in compute_alerts(items, aware).upcoming] == ["today"]


def test_alert_service_reads_unpaid_items():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = ScheduledTransactionService(session)
        rent = service.create(
            ScheduledTransactionIn(
                description="Rent",
                amount_cents=50_000,
                type=TransactionType.expense,
                category="aluguel",
                scheduled_date=date(2024, 3, 5),
            )
        )
        service.create(
            ScheduledTransactionIn(
                description="Hosting",
                amount_cents=2_000,
                type=TransactionType.expense,
                category="infra",
                scheduled_date=date(2024, 3, 12),
            )
        )
        alerts = AlertService(session).alerts(now=NOW)

        assert [i.id for i in alerts.overdue] == [rent.id]
        assert [i.description for i in alerts.upcoming] == ["Hosting"]
