"""Keeps the transaction ledger consistent with project and schedule state.

Every state change that implies a ledger entry is written together with a
``LedgerEvent`` row (the outbox) in one commit. The event is then applied
in a second commit. Applying is idempotent: the synthesized transaction
carries a deterministic ``idempotency_key`` that is unique per account, so
an event that failed halfway can be replayed without doubling the entry.
"""

import logging
from datetime import date
from typing import Callable, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from aggregation import normalize_category
from errors import LedgerValidationError, PartialReconciliationError, StoreError
from models import (
    PROJECTS_CATEGORY,
    LedgerEvent,
    LedgerEventStatus,
    LedgerEventType,
    Project,
    ProjectStatus,
    ScheduledStatus,
    ScheduledTransaction,
    Transaction,
    TransactionType,
    utcnow,
)
from periods import local_today
from schemas import ProjectIn
from services import (
    Notifier,
    ProjectService,
    ScheduledTransactionService,
    TransactionService,
    commit_or_raise,
    get_current_user_id,
    notify,
)

logger = logging.getLogger(__name__)


def idempotency_key(event_type: LedgerEventType, source_id: int) -> str:
    if event_type == LedgerEventType.project_completed:
        return f"project:{source_id}:completed"
    if event_type == LedgerEventType.project_cancelled:
        return f"project:{source_id}:cancelled"
    return f"scheduled:{source_id}:paid"


class ReconciliationService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.notifier = notifier
        self.projects = ProjectService(session, self.user_id)
        self.transactions = TransactionService(session, self.user_id)
        self.scheduled = ScheduledTransactionService(session, self.user_id)
        self._handlers: dict[
            LedgerEventType, Callable[[LedgerEvent], Optional[Transaction]]
        ] = {
            LedgerEventType.project_completed: self._post_project_completion,
            LedgerEventType.project_cancelled: self._reverse_project_completion,
            LedgerEventType.scheduled_paid: self._post_scheduled_payment,
        }

    # -- entity mutations -------------------------------------------------

    def save_project(
        self,
        data: ProjectIn,
        project_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> Project:
        today = today or local_today()
        try:
            project, previous = self.projects.stage(data, project_id)
            event = None
            if project.status != previous:
                if project.status == ProjectStatus.completed:
                    event = self._record(
                        LedgerEventType.project_completed, project.id, today
                    )
                elif project.status == ProjectStatus.cancelled:
                    event = self._record(
                        LedgerEventType.project_cancelled, project.id, today
                    )
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Could not save project") from exc
        commit_or_raise(self.session)
        logger.info(
            f"project_saved: id={project.id} status={project.status.value} "
            f"previous={previous.value if previous else None}"
        )

        if event is not None:
            self._apply_or_report(event, project)
        notify(self.notifier)
        return project

    def change_scheduled_status(
        self,
        item_id: int,
        new_status: Union[ScheduledStatus, str],
        *,
        today: Optional[date] = None,
    ) -> ScheduledTransaction:
        today = today or local_today()
        try:
            status = ScheduledStatus(new_status)
        except ValueError as exc:
            raise LedgerValidationError(f"Unknown status: {new_status}") from exc

        item = self.scheduled.get(item_id)
        if item.status == status:
            return item
        if item.status == ScheduledStatus.paid:
            raise LedgerValidationError("A paid scheduled transaction cannot be reopened")

        try:
            item.status = status
            event = None
            if status == ScheduledStatus.paid:
                event = self._record(LedgerEventType.scheduled_paid, item.id, today)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Could not update scheduled transaction") from exc
        commit_or_raise(self.session)
        logger.info(f"scheduled_status_changed: id={item.id} status={status.value}")

        if event is not None:
            self._apply_or_report(event, item)
        notify(self.notifier)
        return item

    def delete_project(self, project_id: int) -> None:
        self.projects.delete(project_id)
        logger.info(f"project_deleted: id={project_id}")
        notify(self.notifier)

    def delete_scheduled_transaction(self, item_id: int) -> None:
        self.scheduled.delete(item_id)
        logger.info(f"scheduled_deleted: id={item_id}")
        notify(self.notifier)

    def delete_transaction(self, transaction_id: int) -> None:
        self.transactions.delete(transaction_id)
        logger.info(f"transaction_deleted: id={transaction_id}")
        notify(self.notifier)

    # -- outbox -----------------------------------------------------------

    def pending_events(self) -> list[LedgerEvent]:
        stmt = (
            select(LedgerEvent)
            .where(
                LedgerEvent.user_id == self.user_id,
                LedgerEvent.status.in_(
                    [LedgerEventStatus.pending, LedgerEventStatus.failed]
                ),
            )
            .order_by(LedgerEvent.id)
        )
        return self.session.scalars(stmt).all()

    def replay_pending(self, limit: int = 100) -> int:
        """Re-apply pending or failed events in the order they were recorded."""
        applied = 0
        for event in self.pending_events()[:limit]:
            event_id = event.id
            try:
                self.apply_event(event)
            except Exception:
                logger.warning(f"ledger_event_replay_failed: id={event_id}")
                continue
            applied += 1
        if applied:
            notify(self.notifier)
        logger.info(f"ledger_events_replayed: applied={applied}")
        return applied

    def apply_event(self, event: LedgerEvent) -> Optional[Transaction]:
        event_id = event.id
        try:
            txn = self._handlers[event.event_type](event)
            event.status = LedgerEventStatus.applied
            event.attempts += 1
            event.last_error = None
            event.applied_at = utcnow()
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            self._mark_failed(event_id, exc)
            raise
        logger.info(
            f"ledger_event_applied: id={event_id} key={event.idempotency_key} "
            f"txn_id={txn.id if txn else None}"
        )
        return txn

    def _record(
        self, event_type: LedgerEventType, source_id: int, today: date
    ) -> LedgerEvent:
        event = LedgerEvent(
            user_id=self.user_id,
            event_type=event_type,
            source_id=source_id,
            idempotency_key=idempotency_key(event_type, source_id),
            status=LedgerEventStatus.pending,
            effective_date=today,
        )
        self.session.add(event)
        self.session.flush()
        return event

    def _apply_or_report(self, event: LedgerEvent, entity: object) -> None:
        event_id, key = event.id, event.idempotency_key
        try:
            self.apply_event(event)
        except Exception as exc:
            logger.error(
                f"ledger_event_partial: id={event_id} key={key} "
                f"error={exc.__class__.__name__}"
            )
            notify(self.notifier)
            raise PartialReconciliationError(
                "Saved, but the ledger entry could not be recorded",
                entity=entity,
                event_id=event_id,
            ) from exc

    def _mark_failed(self, event_id: int, exc: Exception) -> None:
        try:
            event = self.session.get(LedgerEvent, event_id)
            if event is None:
                return
            event.status = LedgerEventStatus.failed
            event.attempts += 1
            event.last_error = f"{exc.__class__.__name__}: {exc}"[:500]
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(f"ledger_event_mark_failed_failed: id={event_id}")

    # -- event handlers ---------------------------------------------------

    def _existing(self, key: str) -> Optional[Transaction]:
        return self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.idempotency_key == key,
            )
        )

    def _post_project_completion(self, event: LedgerEvent) -> Optional[Transaction]:
        existing = self._existing(event.idempotency_key)
        if existing is not None:
            return existing
        project = self.session.get(Project, event.source_id)
        if project is None or project.status != ProjectStatus.completed:
            # deleted or moved on since the event was recorded
            logger.info(f"ledger_event_obsolete: id={event.id}")
            return None
        txn = Transaction(
            user_id=self.user_id,
            description=project.title,
            amount_cents=project.value_cents,
            type=TransactionType.income,
            category=PROJECTS_CATEGORY,
            date=event.effective_date,
            origin_project_id=project.id,
            idempotency_key=event.idempotency_key,
        )
        self.session.add(txn)
        self.session.flush()
        return txn

    def _reverse_project_completion(self, event: LedgerEvent) -> Optional[Transaction]:
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.origin_project_id == event.source_id,
                Transaction.idempotency_key
                == idempotency_key(LedgerEventType.project_completed, event.source_id),
            )
        )
        logger.info(
            f"project_completion_reversed: project_id={event.source_id} "
            f"deleted={result.rowcount}"
        )
        return None

    def _post_scheduled_payment(self, event: LedgerEvent) -> Optional[Transaction]:
        existing = self._existing(event.idempotency_key)
        if existing is not None:
            return existing
        item = self.session.get(ScheduledTransaction, event.source_id)
        if item is None:
            logger.info(f"ledger_event_obsolete: id={event.id}")
            return None
        txn = Transaction(
            user_id=self.user_id,
            description=item.description,
            amount_cents=item.amount_cents,
            type=item.type,
            category=normalize_category(item.category),
            date=event.effective_date,
            origin_scheduled_id=item.id,
            idempotency_key=event.idempotency_key,
        )
        self.session.add(txn)
        self.session.flush()
        return txn
