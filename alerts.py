from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import ScheduledStatus, ScheduledTransaction, utcnow
from services import get_current_user_id


@dataclass
class ScheduleAlerts:
    overdue: list[ScheduledTransaction] = field(default_factory=list)
    upcoming: list[ScheduledTransaction] = field(default_factory=list)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def compute_alerts(
    items: Iterable[ScheduledTransaction],
    now: datetime,
    *,
    window_days: int = 7,
) -> ScheduleAlerts:
    """Split unpaid items into overdue (before ``now``) and upcoming (within
    ``window_days`` from ``now``). Anything further out is left out."""
    now = _as_naive_utc(now)
    limit = now + timedelta(days=window_days)
    alerts = ScheduleAlerts()
    ordered = sorted(items, key=lambda item: _as_naive_utc(item.scheduled_at))
    for item in ordered:
        if item.status == ScheduledStatus.paid:
            continue
        at = _as_naive_utc(item.scheduled_at)
        if at < now:
            alerts.overdue.append(item)
        elif at <= limit:
            alerts.upcoming.append(item)
    return alerts


class AlertService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def alerts(self, now: Optional[datetime] = None) -> ScheduleAlerts:
        stmt = (
            select(ScheduledTransaction)
            .where(
                ScheduledTransaction.user_id == self.user_id,
                ScheduledTransaction.status != ScheduledStatus.paid,
            )
            .order_by(ScheduledTransaction.scheduled_at, ScheduledTransaction.id)
        )
        items = self.session.scalars(stmt).all()
        return compute_alerts(
            items,
            now or utcnow(),
            window_days=get_settings().upcoming_window_days,
        )
