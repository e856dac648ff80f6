from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import DueDayPolicy, TransactionType
from periods import MonthPeriod
from schemas import AccountIn, FixedExpenseIn, TransactionIn
from services import (
    AccountService,
    ExpenseLedgerService,
    FixedExpenseService,
    MetricsService,
    TransactionService,
)


JUNE = MonthPeriod(2024, 6)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _seed(session: Session) -> None:
    account = AccountService(session, 1).create(
        AccountIn(name="Checking", type="bank", balance_cents=100_000)
    )
    txns = TransactionService(session, 1)
    txns.create(
        TransactionIn(
            name="Salary",
            type=TransactionType.income,
            amount_cents=500_000,
            date=date(2024, 6, 1),
            account_id=account.id,
        )
    )
    txns.create(
        TransactionIn(
            name="Lunch",
            type=TransactionType.expense,
            amount_cents=1_500,
            date=date(2024, 6, 10),
            account_id=account.id,
            category="Food",
        )
    )
    txns.create(
        TransactionIn(
            name="Old lunch",
            type=TransactionType.expense,
            amount_cents=700,
            date=date(2024, 5, 31),
            category="Food",
        )
    )
    fixed = FixedExpenseService(session, 1, policy=DueDayPolicy.clamp)
    fixed.create(
        FixedExpenseIn(
            name="Rent", default_amount_cents=120_000, category="Housing", day_of_month=5
        )
    )
    fixed.create(FixedExpenseIn(name="Gym", default_amount_cents=9_000))


def test_expense_ledger_combines_variable_and_fixed_rows() -> None:
    with _session() as session:
        _seed(session)
        entries = ExpenseLedgerService(
            session, 1, policy=DueDayPolicy.clamp
        ).expenses_for_month(JUNE)

        assert [(e.kind, e.name) for e in entries] == [
            ("variable", "Lunch"),
            ("fixed", "Rent"),
            ("fixed", "Gym"),
        ]
        lunch, rent, gym = entries
        assert lunch.account_name == "Checking"
        assert lunch.is_paid is True
        assert rent.date == date(2024, 6, 5)
        assert rent.id.startswith("template:")
        assert rent.is_paid is False
        assert gym.date is None
        assert gym.as_dict()["date"] is None


def test_summary_splits_fixed_expenses_by_payment_state() -> None:
    with _session() as session:
        _seed(session)
        summary = MetricsService(session, 1, policy=DueDayPolicy.clamp).summary(
            JUNE, today=date(2024, 6, 7)
        )

        assert summary == {
            "income_cents": 500_000,
            "variable_expense_cents": 1_500,
            "fixed_expense_cents": 129_000,
            "fixed_paid_cents": 0,
            "fixed_overdue_cents": 120_000,
            "fixed_upcoming_cents": 9_000,
            "total_expense_cents": 130_500,
            "net_cents": 369_500,
            "accounts_balance_cents": 100_000,
        }


def test_summary_uses_override_amounts() -> None:
    with _session() as session:
        _seed(session)
        fixed = FixedExpenseService(session, 1, policy=DueDayPolicy.clamp)
        rent = next(t for t in fixed.list_templates() if t.name == "Rent")
        fixed.edit_month(rent.id, JUNE, amount_cents=130_000, is_paid=True)

        summary = MetricsService(session, 1, policy=DueDayPolicy.clamp).summary(
            JUNE, today=date(2024, 6, 7)
        )
        assert summary["fixed_paid_cents"] == 130_000
        assert summary["fixed_overdue_cents"] == 0
        assert summary["fixed_expense_cents"] == 139_000


def test_category_breakdown_merges_transactions_and_fixed_expenses() -> None:
    with _session() as session:
        _seed(session)
        breakdown = MetricsService(
            session, 1, policy=DueDayPolicy.clamp
        ).category_breakdown(JUNE)

        assert [(row["name"], row["amount_cents"]) for row in breakdown] == [
            ("Housing", 120_000),
            (None, 9_000),
            ("Food", 1_500),
        ]
        assert sum(row["percent"] for row in breakdown) == pytest.approx(100)


def test_daily_spending_covers_every_day_of_month() -> None:
    with _session() as session:
        _seed(session)
        series = MetricsService(session, 1, policy=DueDayPolicy.clamp).daily_spending(
            JUNE
        )

        assert len(series) == 30
        assert series[0] == {"date": "2024-06-01", "amount_cents": 0}
        assert series[9] == {"date": "2024-06-10", "amount_cents": 1_500}
        assert sum(point["amount_cents"] for point in series) == 1_500


def test_metrics_are_scoped_to_owner() -> None:
    with _session() as session:
        _seed(session)
        summary = MetricsService(session, 2, policy=DueDayPolicy.clamp).summary(
            JUNE, today=date(2024, 6, 7)
        )
        assert summary["income_cents"] == 0
        assert summary["fixed_expense_cents"] == 0
        assert summary["accounts_balance_cents"] == 0


def test_daily_spending_for_last_supported_month() -> None:
    with _session() as session:
        TransactionService(session, 1).create(
            TransactionIn(
                name="Fireworks",
                type=TransactionType.expense,
                amount_cents=5_000,
                date=date(9999, 12, 31),
            )
        )
        series = MetricsService(session, 1, policy=DueDayPolicy.clamp).daily_spending(
            MonthPeriod(9999, 12)
        )
        assert len(series) == 31
        assert series[-1] == {"date": "9999-12-31", "amount_cents": 5_000}
