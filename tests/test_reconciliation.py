from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from database import Base
from errors import LedgerValidationError, PartialReconciliationError, StoreError
from models import (
    PROJECTS_CATEGORY,
    LedgerEvent,
    LedgerEventStatus,
    Project,
    ProjectStatus,
    ScheduledStatus,
    Transaction,
    TransactionType,
)
from reconciliation import ReconciliationService
from schemas import ClientIn, ProjectIn, ScheduledTransactionIn, TransactionIn
from services import ClientService, ScheduledTransactionService, TransactionService

TODAY = date(2024, 3, 10)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _project(title="Website", value_cents=150_000, status=ProjectStatus.in_progress, **extra):
    return ProjectIn(title=title, value_cents=value_cents, status=status, **extra)


def _transactions(session: Session) -> list[Transaction]:
    return session.scalars(select(Transaction).order_by(Transaction.id)).all()


def test_completing_project_posts_one_income_entry():
    with _session() as session:
        service = ReconciliationService(session)
        project = service.save_project(_project(), today=TODAY)
        assert _transactions(session) == []

        service.save_project(
            _project(status=ProjectStatus.completed), project.id, today=TODAY
        )

        txns = _transactions(session)
        assert len(txns) == 1
        txn = txns[0]
        assert txn.description == "Website"
        assert txn.amount_cents == 150_000
        assert txn.type == TransactionType.income
        assert txn.category == PROJECTS_CATEGORY
        assert txn.date == TODAY
        assert txn.origin_project_id == project.id


def test_resaving_completed_project_does_not_duplicate():
    with _session() as session:
        service = ReconciliationService(session)
        project = service.save_project(
            _project(status=ProjectStatus.completed), today=TODAY
        )
        service.save_project(
            _project(title="Website v2", status=ProjectStatus.completed),
            project.id,
            today=date(2024, 3, 11),
        )

        txns = _transactions(session)
        assert len(txns) == 1
        assert txns[0].date == TODAY


def test_cancelling_removes_only_the_linked_entry():
    with _session() as session:
        service = ReconciliationService(session)
        manual = TransactionService(session).create(
            TransactionIn(
                description="Logo Redesign",
                amount_cents=80_000,
                type=TransactionType.income,
                category=PROJECTS_CATEGORY,
                date=TODAY,
            )
        )
        project = service.save_project(
            _project("Logo Redesign", 80_000, ProjectStatus.completed), today=TODAY
        )
        assert len(_transactions(session)) == 2

        service.save_project(
            _project("Logo Redesign", 80_000, ProjectStatus.cancelled),
            project.id,
            today=TODAY,
        )

        remaining = _transactions(session)
        assert [t.id for t in remaining] == [manual.id]


def test_project_can_be_completed_again_after_cancellation():
    with _session() as session:
        service = ReconciliationService(session)
        project = service.save_project(
            _project(status=ProjectStatus.completed), today=TODAY
        )
        service.save_project(_project(status=ProjectStatus.cancelled), project.id, today=TODAY)
        service.save_project(
            _project(status=ProjectStatus.completed), project.id, today=date(2024, 4, 2)
        )

        txns = _transactions(session)
        assert len(txns) == 1
        assert txns[0].date == date(2024, 4, 2)


def test_marking_scheduled_item_paid_posts_matching_transaction():
    notified = []
    with _session() as session:
        item = ScheduledTransactionService(session).create(
            ScheduledTransactionIn(
                description="Rent",
                amount_cents=50_000,
                type=TransactionType.expense,
                category="aluguel",
                scheduled_date=date(2024, 3, 5),
            )
        )
        service = ReconciliationService(session, notifier=lambda: notified.append(1))
        updated = service.change_scheduled_status(item.id, "paid", today=TODAY)

        assert updated.status == ScheduledStatus.paid
        txns = _transactions(session)
        assert len(txns) == 1
        txn = txns[0]
        assert (txn.description, txn.amount_cents, txn.type, txn.category) == (
            "Rent",
            50_000,
            TransactionType.expense,
            "ALUGUEL",
        )
        assert txn.date == TODAY
        assert txn.origin_scheduled_id == item.id
        assert notified == [1]

        # same status again is a no-op
        service.change_scheduled_status(item.id, ScheduledStatus.paid, today=TODAY)
        assert len(_transactions(session)) == 1

        with pytest.raises(LedgerValidationError):
            service.change_scheduled_status(item.id, "scheduled", today=TODAY)
        with pytest.raises(LedgerValidationError):
            service.change_scheduled_status(item.id, "overdue", today=TODAY)


def test_failed_commit_is_a_store_error_and_applies_nothing(monkeypatch):
    def locked():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    with _session() as session:
        item = ScheduledTransactionService(session).create(
            ScheduledTransactionIn(
                description="Rent",
                amount_cents=50_000,
                type=TransactionType.expense,
                category="aluguel",
                scheduled_date=date(2024, 3, 5),
            )
        )
        service = ReconciliationService(session)
        with monkeypatch.context() as patch:
            patch.setattr(session, "commit", locked)
            with pytest.raises(StoreError):
                service.change_scheduled_status(item.id, "paid", today=TODAY)

        session.refresh(item)
        assert item.status == ScheduledStatus.scheduled
        assert session.scalars(select(LedgerEvent)).all() == []
        assert _transactions(session) == []

        service.change_scheduled_status(item.id, "paid", today=TODAY)
        assert len(_transactions(session)) == 1


def test_failed_ledger_write_keeps_project_and_replays_once(monkeypatch):
    def boom(self, event):
        raise RuntimeError("disk full")

    with _session() as session:
        with monkeypatch.context() as patch:
            patch.setattr(ReconciliationService, "_post_project_completion", boom)
            service = ReconciliationService(session)
            with pytest.raises(PartialReconciliationError) as excinfo:
                service.save_project(_project(status=ProjectStatus.completed), today=TODAY)

        project = session.scalars(select(Project)).one()
        assert project.status == ProjectStatus.completed
        assert _transactions(session) == []
        event = session.get(LedgerEvent, excinfo.value.event_id)
        assert event.status == LedgerEventStatus.failed
        assert event.attempts == 1
        assert "disk full" in event.last_error

        service = ReconciliationService(session)
        assert len(service.pending_events()) == 1
        assert service.replay_pending() == 1
        assert service.replay_pending() == 0

        txns = _transactions(session)
        assert len(txns) == 1
        assert txns[0].date == TODAY
        session.refresh(event)
        assert event.status == LedgerEventStatus.applied
        assert event.attempts == 2


def test_applying_same_event_twice_is_idempotent():
    with _session() as session:
        service = ReconciliationService(session)
        service.save_project(_project(status=ProjectStatus.completed), today=TODAY)
        event = session.scalars(select(LedgerEvent)).one()

        first = _transactions(session)[0]
        again = service.apply_event(event)
        assert again.id == first.id
        assert len(_transactions(session)) == 1


def test_deleting_project_keeps_its_ledger_entry():
    with _session() as session:
        service = ReconciliationService(session)
        project = service.save_project(
            _project(status=ProjectStatus.completed), today=TODAY
        )
        service.delete_project(project.id)

        txns = _transactions(session)
        assert len(txns) == 1
        assert txns[0].origin_project_id is None


def test_unknown_client_is_rejected():
    with _session() as session:
        with pytest.raises(LedgerValidationError):
            ReconciliationService(session).save_project(_project(client_id=99), today=TODAY)
        assert session.scalars(select(Project)).all() == []


def test_deleting_client_keeps_projects():
    with _session() as session:
        client = ClientService(session).create(ClientIn(name="Acme"))
        project = ReconciliationService(session).save_project(
            _project(client_id=client.id), today=TODAY
        )
        ClientService(session).delete(client.id)

        session.refresh(project)
        assert project.client_id is None
        assert project.client_name is None
