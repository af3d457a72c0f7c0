from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class ProjectStatus(str, Enum):
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class ScheduledStatus(str, Enum):
    scheduled = "scheduled"
    paid = "paid"


class LedgerEventType(str, Enum):
    project_completed = "project_completed"
    project_cancelled = "project_cancelled"
    scheduled_paid = "scheduled_paid"


class LedgerEventStatus(str, Enum):
    pending = "pending"
    applied = "applied"
    failed = "failed"


PROJECTS_CATEGORY = "PROJECTS"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Client(Base, TimestampMixin):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(40))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    projects: Mapped[list["Project"]] = relationship(
        "Project", back_populates="client"
    )

    __table_args__ = (Index("ix_clients_user_name", "user_id", "name"),)


class Project(Base, TimestampMixin):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    client_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("clients.id", ondelete="SET NULL")
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    value_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[ProjectStatus] = mapped_column(
        SAEnum(ProjectStatus), nullable=False, default=ProjectStatus.in_progress
    )
    deadline: Mapped[Optional[date]] = mapped_column(Date)

    client: Mapped[Optional["Client"]] = relationship(
        "Client", back_populates="projects"
    )

    __table_args__ = (
        CheckConstraint("value_cents >= 0", name="ck_projects_value_positive"),
        Index("ix_projects_user_status", "user_id", "status"),
    )

    @property
    def client_name(self) -> Optional[str]:
        return self.client.name if self.client else None


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    origin_project_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL")
    )
    origin_scheduled_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("scheduled_transactions.id", ondelete="SET NULL")
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(80))

    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_txn_idempotency"),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        Index("ix_transactions_origin_project", "origin_project_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class ScheduledTransaction(Base, TimestampMixin):
    __tablename__ = "scheduled_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    # UTC midnight of the chosen calendar day
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[ScheduledStatus] = mapped_column(
        SAEnum(ScheduledStatus), nullable=False, default=ScheduledStatus.scheduled
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_scheduled_amount_positive"),
        Index("ix_scheduled_user_at", "user_id", "scheduled_at"),
    )

    @property
    def scheduled_date(self) -> date:
        return self.scheduled_at.date()


class LedgerEvent(Base, TimestampMixin):
    __tablename__ = "ledger_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    event_type: Mapped[LedgerEventType] = mapped_column(
        SAEnum(LedgerEventType), nullable=False
    )
    source_id: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(80), nullable=False)
    status: Mapped[LedgerEventStatus] = mapped_column(
        SAEnum(LedgerEventStatus), nullable=False, default=LedgerEventStatus.pending
    )
    # ledger date chosen when the source entity was written
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_ledger_events_user_status", "user_id", "status", "id"),
    )
