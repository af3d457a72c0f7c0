"""Rollups over transaction collections.

Everything here is a pure function of its input: callers scope the
collection by account and period (see ``periods.filter_transactions``)
before handing it over. Items only need ``date``, ``type``,
``amount_cents`` and ``category`` attributes, so ORM rows and plain
objects both work.
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Protocol

from periods import days_in_month

MONTH_LABELS = (
    "jan",
    "feb",
    "mar",
    "apr",
    "may",
    "jun",
    "jul",
    "aug",
    "sep",
    "oct",
    "nov",
    "dec",
)

DEFAULT_CATEGORY = "OTHER"


class LedgerRow(Protocol):
    date: date
    type: object
    amount_cents: int
    category: str


def normalize_category(value: object) -> object:
    if not isinstance(value, str):
        return value
    clean = value.strip().upper()
    return clean or DEFAULT_CATEGORY


def _kind(txn: LedgerRow) -> str:
    return getattr(txn.type, "value", txn.type)  # type: ignore[return-value]


def _bucket(label_key: str, label: str, income: int, expense: int) -> dict[str, object]:
    return {
        label_key: label,
        "income_cents": income,
        "expense_cents": expense,
        "balance_cents": income - expense,
    }


def monthly_rollup(transactions: Iterable[LedgerRow], year: int) -> list[dict[str, object]]:
    income = [0] * 12
    expense = [0] * 12
    for txn in transactions:
        if txn.date.year != year:
            continue
        idx = txn.date.month - 1
        if _kind(txn) == "income":
            income[idx] += txn.amount_cents
        else:
            expense[idx] += txn.amount_cents
    return [
        _bucket("month", MONTH_LABELS[i], income[i], expense[i]) for i in range(12)
    ]


def daily_rollup(
    transactions: Iterable[LedgerRow], year: int, month: int
) -> list[dict[str, object]]:
    dim = days_in_month(year, month)
    income = [0] * dim
    expense = [0] * dim
    for txn in transactions:
        if txn.date.year != year or txn.date.month != month:
            continue
        idx = txn.date.day - 1
        if _kind(txn) == "income":
            income[idx] += txn.amount_cents
        else:
            expense[idx] += txn.amount_cents
    return [_bucket("day", str(i + 1), income[i], expense[i]) for i in range(dim)]


def category_breakdown(transactions: Iterable[LedgerRow]) -> list[dict[str, object]]:
    income: dict[str, int] = {}
    expense: dict[str, int] = {}
    counts: dict[str, int] = {}
    for txn in transactions:
        name = str(normalize_category(txn.category))
        if name not in counts:
            income[name] = 0
            expense[name] = 0
            counts[name] = 0
        if _kind(txn) == "income":
            income[name] += txn.amount_cents
        else:
            expense[name] += txn.amount_cents
        counts[name] += 1

    breakdown = []
    for name, count in counts.items():
        average = Decimal(income[name] + expense[name]) / count
        breakdown.append(
            {
                "category": name,
                "income_cents": income[name],
                "expense_cents": expense[name],
                "net_cents": income[name] - expense[name],
                "count": count,
                "average_cents": average.quantize(
                    Decimal("0.01"), rounding=ROUND_HALF_UP
                ),
            }
        )
    return breakdown


def top_categories(
    breakdown: list[dict[str, object]], limit: Optional[int] = 5
) -> list[dict[str, object]]:
    # sorted() is stable, so ties keep first-encountered order
    ranked = sorted(breakdown, key=lambda r: r["net_cents"], reverse=True)
    return ranked if limit is None else ranked[:limit]


@dataclass(frozen=True)
class PeriodTotals:
    income_cents: int
    expense_cents: int
    count: int

    @property
    def balance_cents(self) -> int:
        return self.income_cents - self.expense_cents

    def as_dict(self) -> dict[str, int]:
        return {
            "income_cents": self.income_cents,
            "expense_cents": self.expense_cents,
            "balance_cents": self.balance_cents,
            "count": self.count,
        }


def period_totals(transactions: Iterable[LedgerRow]) -> PeriodTotals:
    income = 0
    expense = 0
    count = 0
    for txn in transactions:
        if _kind(txn) == "income":
            income += txn.amount_cents
        else:
            expense += txn.amount_cents
        count += 1
    return PeriodTotals(income_cents=income, expense_cents=expense, count=count)


@dataclass(frozen=True)
class QuickStats:
    pending_scheduled: int
    active_projects: int
    monthly_balance_cents: int

    def as_dict(self) -> dict[str, int]:
        return {
            "pending_scheduled": self.pending_scheduled,
            "active_projects": self.active_projects,
            "monthly_balance_cents": self.monthly_balance_cents,
        }
