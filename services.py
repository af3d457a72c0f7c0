from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from aggregation import QuickStats, daily_rollup, monthly_rollup, period_totals
from errors import LedgerValidationError, StoreError
from models import (
    Client,
    Project,
    ProjectStatus,
    ScheduledStatus,
    ScheduledTransaction,
    Transaction,
    TransactionType,
    utc_midnight,
)
from periods import Period, days_in_month, filter_transactions, local_today
from schemas import ClientIn, ProjectIn, ScheduledTransactionIn, TransactionIn

logger = logging.getLogger(__name__)

Notifier = Callable[[], None]


def get_current_user_id() -> int:
    return 1


def commit_or_raise(session: Session) -> None:
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(f"store_commit_failed: error={exc.__class__.__name__}")
        raise StoreError("Could not write to the record store") from exc


def notify(notifier: Optional[Notifier]) -> None:
    """Fire a "ledger changed" signal; a failing listener never fails the write."""
    if notifier is None:
        return
    try:
        notifier()
    except Exception:
        logger.exception("ledger_changed_listener_failed")


class ClientService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, query: Optional[str] = None) -> list[Client]:
        stmt = select(Client).where(Client.user_id == self.user_id)
        query_clean = (query or "").strip()
        if query_clean:
            like = f"%{query_clean.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Client.name).like(like),
                    func.lower(func.coalesce(Client.email, "")).like(like),
                    func.lower(func.coalesce(Client.phone, "")).like(like),
                )
            )
        return self.session.scalars(stmt.order_by(Client.name, Client.id)).all()

    def get(self, client_id: int) -> Client:
        client = self.session.get(Client, client_id)
        if not client or client.user_id != self.user_id:
            raise LedgerValidationError("Client not found")
        return client

    def create(self, data: ClientIn) -> Client:
        client = Client(user_id=self.user_id, **data.model_dump())
        self.session.add(client)
        commit_or_raise(self.session)
        self.session.refresh(client)
        return client

    def update(self, client_id: int, data: ClientIn) -> Client:
        client = self.get(client_id)
        for field, value in data.model_dump().items():
            setattr(client, field, value)
        commit_or_raise(self.session)
        self.session.refresh(client)
        return client

    def delete(self, client_id: int) -> None:
        client = self.get(client_id)
        # projects survive their client
        self.session.execute(
            update(Project)
            .where(Project.user_id == self.user_id, Project.client_id == client.id)
            .values(client_id=None)
        )
        self.session.delete(client)
        commit_or_raise(self.session)


class ProjectService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Project]:
        stmt = (
            select(Project)
            .options(joinedload(Project.client))
            .where(Project.user_id == self.user_id)
            .order_by(Project.created_at.desc(), Project.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, project_id: int) -> Project:
        project = self.session.get(Project, project_id)
        if not project or project.user_id != self.user_id:
            raise LedgerValidationError("Project not found")
        return project

    def count_active(self) -> int:
        stmt = select(func.count(Project.id)).where(
            Project.user_id == self.user_id,
            Project.status == ProjectStatus.in_progress,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def stage(
        self, data: ProjectIn, project_id: Optional[int] = None
    ) -> tuple[Project, Optional[ProjectStatus]]:
        """Write ``data`` into a new or existing project without committing.

        Returns the project and its status before the write (``None`` for a
        new project).
        """
        if data.client_id is not None:
            client = self.session.get(Client, data.client_id)
            if not client or client.user_id != self.user_id:
                raise LedgerValidationError("Client not found")

        if project_id is None:
            project = Project(user_id=self.user_id, **data.model_dump())
            self.session.add(project)
            previous = None
        else:
            project = self.get(project_id)
            previous = project.status
            for field, value in data.model_dump().items():
                setattr(project, field, value)
        self.session.flush()
        return project, previous

    def delete(self, project_id: int) -> None:
        project = self.get(project_id)
        # ledger entries stay; only the back-reference goes
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.origin_project_id == project.id,
            )
            .values(origin_project_id=None)
        )
        self.session.delete(project)
        commit_or_raise(self.session)


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.notifier = notifier

    def list(
        self, period: Period, kind: str = "all", query: Optional[str] = None
    ) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if period.start is not None:
            stmt = stmt.where(Transaction.date >= period.start)
        if period.end is not None:
            stmt = stmt.where(Transaction.date <= period.end)
        if kind != "all":
            stmt = stmt.where(Transaction.type == TransactionType(kind))
        query_clean = (query or "").strip()
        if query_clean:
            stmt = stmt.where(
                func.lower(Transaction.description).like(f"%{query_clean.lower()}%")
            )
        stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
        return self.session.scalars(stmt).all()

    def all(self) -> list[Transaction]:
        return self.list(Period("all", None, None))

    def recent(self, limit: int = 5) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise LedgerValidationError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(user_id=self.user_id, **data.model_dump())
        self.session.add(txn)
        commit_or_raise(self.session)
        self.session.refresh(txn)
        notify(self.notifier)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        for field, value in data.model_dump().items():
            setattr(txn, field, value)
        commit_or_raise(self.session)
        self.session.refresh(txn)
        notify(self.notifier)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        commit_or_raise(self.session)


class ScheduledTransactionService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.notifier = notifier

    def list_all(self) -> list[ScheduledTransaction]:
        stmt = (
            select(ScheduledTransaction)
            .where(ScheduledTransaction.user_id == self.user_id)
            .order_by(ScheduledTransaction.scheduled_at, ScheduledTransaction.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, item_id: int) -> ScheduledTransaction:
        item = self.session.get(ScheduledTransaction, item_id)
        if not item or item.user_id != self.user_id:
            raise LedgerValidationError("Scheduled transaction not found")
        return item

    def count_pending(self) -> int:
        stmt = select(func.count(ScheduledTransaction.id)).where(
            ScheduledTransaction.user_id == self.user_id,
            ScheduledTransaction.status == ScheduledStatus.scheduled,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def create(self, data: ScheduledTransactionIn) -> ScheduledTransaction:
        item = ScheduledTransaction(
            user_id=self.user_id,
            description=data.description,
            amount_cents=data.amount_cents,
            type=data.type,
            category=data.category,
            scheduled_at=utc_midnight(data.scheduled_date),
            status=ScheduledStatus.scheduled,
        )
        self.session.add(item)
        commit_or_raise(self.session)
        self.session.refresh(item)
        notify(self.notifier)
        return item

    def update(self, item_id: int, data: ScheduledTransactionIn) -> ScheduledTransaction:
        item = self.get(item_id)
        if item.status == ScheduledStatus.paid:
            raise LedgerValidationError("Paid scheduled transactions cannot be edited")
        item.description = data.description
        item.amount_cents = data.amount_cents
        item.type = data.type
        item.category = data.category
        item.scheduled_at = utc_midnight(data.scheduled_date)
        commit_or_raise(self.session)
        self.session.refresh(item)
        notify(self.notifier)
        return item

    def delete(self, item_id: int) -> None:
        item = self.get(item_id)
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.origin_scheduled_id == item.id,
            )
            .values(origin_scheduled_id=None)
        )
        self.session.delete(item)
        commit_or_raise(self.session)


class DashboardService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.txn_service = TransactionService(session, self.user_id)

    @staticmethod
    def _month_period(today: date) -> Period:
        first = today.replace(day=1)
        last = first.replace(day=days_in_month(first.year, first.month))
        return Period("month", first, last)

    def quick_stats(self, today: Optional[date] = None) -> QuickStats:
        today = today or local_today()
        month_txns = self.txn_service.list(self._month_period(today))
        return QuickStats(
            pending_scheduled=ScheduledTransactionService(
                self.session, self.user_id
            ).count_pending(),
            active_projects=ProjectService(self.session, self.user_id).count_active(),
            monthly_balance_cents=period_totals(month_txns).balance_cents,
        )

    def summary(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        transactions = self.txn_service.all()
        month_txns = filter_transactions(transactions, self._month_period(today))
        scheduled = ScheduledTransactionService(self.session, self.user_id).list_all()
        return {
            "totals": period_totals(month_txns),
            "scheduled_count": len(scheduled),
            "monthly": monthly_rollup(transactions, today.year),
            "daily": daily_rollup(transactions, today.year, today.month),
            "recent_transactions": transactions[:5],
            "upcoming_schedule": scheduled[:5],
        }
