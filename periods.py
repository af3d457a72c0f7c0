import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Optional, TypeVar
from zoneinfo import ZoneInfo

from config import get_settings

logger = logging.getLogger(__name__)

PERIOD_MODES = ("all", "month", "last3months", "year", "custom")


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _month_end(d: date) -> date:
    return d.replace(day=days_in_month(d.year, d.month))


def _add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


@dataclass(frozen=True)
class Period:
    """Inclusive calendar interval; a ``None`` side is unbounded."""

    slug: str
    start: Optional[date]
    end: Optional[date]

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True

    def as_instants(self) -> tuple[Optional[datetime], Optional[datetime]]:
        start = datetime.combine(self.start, time.min) if self.start else None
        end = datetime.combine(self.end, time.max) if self.end else None
        return start, end

    def describe(self) -> str:
        if self.is_unbounded:
            return "All records"
        start = self.start.strftime("%d/%m/%Y") if self.start else "…"
        end = self.end.strftime("%d/%m/%Y") if self.end else "…"
        return f"{start} to {end}"


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value or not value.strip():
        return None
    value = value.strip()
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    logger.warning(f"period_custom_date_ignored: value={value!r}")
    return None


def resolve_period(
    period: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if not period or period == "all":
        return Period("all", None, None)
    if period == "month":
        first = today.replace(day=1)
        return Period("month", first, _month_end(first))
    if period == "last3months":
        first = _add_months(today.replace(day=1), -2)
        return Period("last3months", first, _month_end(today))
    if period == "year":
        return Period("year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "custom":
        return Period("custom", _parse_day(start), _parse_day(end))

    logger.warning(f"period_unknown_mode: mode={period!r}")
    return Period("all", None, None)


T = TypeVar("T")


def filter_transactions(
    transactions: Iterable[T], period: Period, kind: Optional[str] = "all"
) -> list[T]:
    """Keep the items dated inside ``period`` and, unless ``kind`` is "all",
    of that transaction type."""
    out = []
    for txn in transactions:
        if not period.contains(txn.date):  # type: ignore[attr-defined]
            continue
        if kind and kind != "all":
            txn_kind = getattr(txn.type, "value", txn.type)  # type: ignore[attr-defined]
            if txn_kind != kind:
                continue
        out.append(txn)
    return out
