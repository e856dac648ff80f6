"""Monthly view of recurring fixed expenses.

A month's fixed expenses are never stored. They are rebuilt on every read
from three tables:

* ``fixed_expenses``: the template, shared by every month;
* ``expense_overrides``: an optional amount for one (expense, month);
* ``monthly_expense_status``: an optional paid flag for one (expense, month).

``materialize_month`` is the only place that merges them. The HTTP endpoint,
the yearly totals, the combined expense ledger and the month copy all go
through it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence

from models import DueDayPolicy, ExpenseOverride, FixedExpense, MonthlyExpenseStatus
from periods import MonthPeriod
from recurrence import due_date_for


@dataclass(frozen=True)
class MonthlyFixedExpense:
    id: str
    fixed_expense_id: int
    name: str
    amount_cents: int
    is_override: bool
    category: Optional[str]
    day_of_month: Optional[int]
    is_paid: bool
    due_date: Optional[date]

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "fixed_expense_id": self.fixed_expense_id,
            "name": self.name,
            "amount_cents": self.amount_cents,
            "is_override": self.is_override,
            "category": self.category,
            "day_of_month": self.day_of_month,
            "is_paid": self.is_paid,
            "due_date": self.due_date.isoformat() if self.due_date else None,
        }


def _row_key(
    template: FixedExpense,
    override: Optional[ExpenseOverride],
    period: MonthPeriod,
) -> str:
    if override is not None:
        return f"override:{override.id}"
    return f"template:{template.id}:{period.slug}"


def _display_order(row: MonthlyFixedExpense) -> tuple:
    no_day = row.day_of_month is None
    return (no_day, row.day_of_month or 0, row.name.lower(), row.fixed_expense_id)


def materialize_month(
    templates: Iterable[FixedExpense],
    overrides: Iterable[ExpenseOverride],
    statuses: Iterable[MonthlyExpenseStatus],
    period: MonthPeriod,
    *,
    policy: DueDayPolicy = DueDayPolicy.clamp,
) -> list[MonthlyFixedExpense]:
    """Merge templates with the overrides and statuses of ``period``.

    Rows of ``overrides`` / ``statuses`` for other periods are ignored, so
    callers may pass a wider fetch. Every template yields exactly one row.
    """
    overrides_by_expense = {
        o.fixed_expense_id: o
        for o in overrides
        if (o.year, o.month) == (period.year, period.month)
    }
    statuses_by_expense = {
        s.fixed_expense_id: s
        for s in statuses
        if (s.year, s.month) == (period.year, period.month)
    }

    rows: list[MonthlyFixedExpense] = []
    for tmpl in templates:
        override = overrides_by_expense.get(tmpl.id)
        status = statuses_by_expense.get(tmpl.id)
        rows.append(
            MonthlyFixedExpense(
                id=_row_key(tmpl, override, period),
                fixed_expense_id=tmpl.id,
                name=tmpl.name,
                amount_cents=(
                    override.amount_cents
                    if override is not None
                    else tmpl.default_amount_cents
                ),
                is_override=override is not None,
                category=tmpl.category,
                day_of_month=tmpl.day_of_month,
                is_paid=bool(status.is_paid) if status is not None else False,
                due_date=due_date_for(tmpl.day_of_month, period, policy),
            )
        )
    rows.sort(key=_display_order)
    return rows


@dataclass(frozen=True)
class PaymentBuckets:
    paid: list[MonthlyFixedExpense]
    overdue: list[MonthlyFixedExpense]
    upcoming: list[MonthlyFixedExpense]

    @staticmethod
    def _total(rows: Sequence[MonthlyFixedExpense]) -> int:
        return sum(r.amount_cents for r in rows)

    @property
    def paid_cents(self) -> int:
        return self._total(self.paid)

    @property
    def overdue_cents(self) -> int:
        return self._total(self.overdue)

    @property
    def upcoming_cents(self) -> int:
        return self._total(self.upcoming)


def bucket_by_status(
    rows: Iterable[MonthlyFixedExpense], *, today: date
) -> PaymentBuckets:
    paid: list[MonthlyFixedExpense] = []
    overdue: list[MonthlyFixedExpense] = []
    upcoming: list[MonthlyFixedExpense] = []
    for row in rows:
        if row.is_paid:
            paid.append(row)
        elif row.due_date is not None and row.due_date < today:
            overdue.append(row)
        else:
            upcoming.append(row)
    return PaymentBuckets(paid=paid, overdue=overdue, upcoming=upcoming)


def monthly_total(rows: Iterable[MonthlyFixedExpense]) -> int:
    return sum(r.amount_cents for r in rows)
