from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from auth import NotAuthenticatedError
from database import Base
from models import DueDayPolicy, ExpenseOverride, FixedExpense, MonthlyExpenseStatus
from periods import MonthPeriod
from schemas import FixedExpenseIn
from services import FixedExpenseService, NotFoundError, SamePeriodCopyError


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _service(session: Session, user_id: int = 1) -> FixedExpenseService:
    return FixedExpenseService(session, user_id, policy=DueDayPolicy.clamp)


def _template(
    service: FixedExpenseService,
    name: str,
    amount_cents: int,
    day_of_month=None,
    category=None,
) -> FixedExpense:
    return service.create(
        FixedExpenseIn(
            name=name,
            default_amount_cents=amount_cents,
            category=category,
            day_of_month=day_of_month,
        )
    )


def _row(service: FixedExpenseService, fixed_expense_id: int, period: MonthPeriod):
    rows = {r.fixed_expense_id: r for r in service.monthly(period)}
    return rows[fixed_expense_id]


def test_rent_scenario_override_survives_template_edit() -> None:
    with _session() as session:
        service = _service(session)
        rent = _template(service, "Rent", 120_000, day_of_month=5)
        march = MonthPeriod(2024, 3)
        april = MonthPeriod(2024, 4)

        row = _row(service, rent.id, march)
        assert row.amount_cents == 120_000
        assert row.is_override is False
        assert row.is_paid is False

        service.set_override(rent.id, march, 135_000)
        row = _row(service, rent.id, march)
        assert row.amount_cents == 135_000
        assert row.is_override is True

        service.set_paid_status(rent.id, march, True)
        assert _row(service, rent.id, march).is_paid is True

        service.update_template(
            rent.id,
            FixedExpenseIn(name="Rent", default_amount_cents=125_000, day_of_month=5),
        )
        assert _row(service, rent.id, march).amount_cents == 135_000
        assert _row(service, rent.id, april).amount_cents == 125_000
        assert _row(service, rent.id, april).is_override is False


def test_template_edit_writes_no_override_or_status_rows() -> None:
    with _session() as session:
        service = _service(session)
        gym = _template(service, "Gym", 9_000)
        service.update_template(
            gym.id,
            FixedExpenseIn(
                name="Gym Plus", default_amount_cents=11_000, category="Health"
            ),
        )
        assert session.scalars(select(ExpenseOverride)).all() == []
        assert session.scalars(select(MonthlyExpenseStatus)).all() == []

        row = _row(service, gym.id, MonthPeriod(2024, 1))
        assert row.name == "Gym Plus"
        assert row.category == "Health"
        assert row.amount_cents == 11_000


def test_override_upsert_keeps_one_row_and_last_write_wins() -> None:
    with _session() as session:
        service = _service(session)
        internet = _template(service, "Internet", 10_000)
        june = MonthPeriod(2024, 6)

        service.set_override(internet.id, june, 12_000)
        service.set_override(internet.id, june, 12_000)
        overrides = session.scalars(select(ExpenseOverride)).all()
        assert len(overrides) == 1
        assert overrides[0].amount_cents == 12_000

        service.set_override(internet.id, june, 14_500)
        overrides = session.scalars(select(ExpenseOverride)).all()
        assert len(overrides) == 1
        assert overrides[0].amount_cents == 14_500


def test_paid_status_upsert_last_write_wins() -> None:
    with _session() as session:
        service = _service(session)
        water = _template(service, "Water", 5_000)
        june = MonthPeriod(2024, 6)

        service.set_paid_status(water.id, june, True)
        service.set_paid_status(water.id, june, False)
        statuses = session.scalars(select(MonthlyExpenseStatus)).all()
        assert len(statuses) == 1
        assert statuses[0].is_paid is False
        assert _row(service, water.id, june).is_paid is False


def test_override_is_scoped_to_one_period() -> None:
    with _session() as session:
        service = _service(session)
        phone = _template(service, "Phone", 6_000)
        service.set_override(phone.id, MonthPeriod(2024, 2), 7_000)

        assert _row(service, phone.id, MonthPeriod(2024, 1)).amount_cents == 6_000
        assert _row(service, phone.id, MonthPeriod(2024, 3)).amount_cents == 6_000
        assert _row(service, phone.id, MonthPeriod(2025, 2)).amount_cents == 6_000


def test_clear_override_restores_template_default() -> None:
    with _session() as session:
        service = _service(session)
        power = _template(service, "Power", 20_000)
        may = MonthPeriod(2024, 5)
        service.set_override(power.id, may, 25_000)

        assert service.clear_override(power.id, may) is True
        assert service.clear_override(power.id, may) is False
        row = _row(service, power.id, may)
        assert row.amount_cents == 20_000
        assert row.is_override is False


def test_edit_month_sets_amount_and_status_together() -> None:
    with _session() as session:
        service = _service(session)
        school = _template(service, "School", 80_000, day_of_month=10)
        row = service.edit_month(
            school.id, MonthPeriod(2024, 8), amount_cents=82_000, is_paid=True
        )
        assert row.amount_cents == 82_000
        assert row.is_override is True
        assert row.is_paid is True


def test_edit_month_rolls_back_override_when_status_write_fails(monkeypatch) -> None:
    with _session() as session:
        service = _service(session)
        school = _template(service, "School", 80_000)

        def broken_status(self, fixed_expense_id, period, is_paid):
            raise RuntimeError("status write failed")

        monkeypatch.setattr(FixedExpenseService, "_upsert_status", broken_status)
        with pytest.raises(RuntimeError):
            service.edit_month(
                school.id, MonthPeriod(2024, 8), amount_cents=82_000, is_paid=True
            )

        assert session.scalars(select(ExpenseOverride)).all() == []
        assert _row(service, school.id, MonthPeriod(2024, 8)).amount_cents == 80_000


def test_copy_same_period_is_rejected_without_writes() -> None:
    with _session() as session:
        service = _service(session)
        rent = _template(service, "Rent", 120_000)
        june = MonthPeriod(2024, 6)

        with pytest.raises(SamePeriodCopyError):
            service.copy_month(june, june)
        assert session.scalars(select(ExpenseOverride)).all() == []
        assert _row(service, rent.id, june).is_override is False


def test_copy_snapshots_effective_amounts_and_leaves_statuses() -> None:
    with _session() as session:
        service = _service(session)
        rent = _template(service, "Rent", 120_000, day_of_month=5)
        car = _template(service, "Car", 45_000, day_of_month=20)
        june = MonthPeriod(2024, 6)
        july = MonthPeriod(2024, 7)

        service.set_override(car.id, june, 47_500)
        service.set_paid_status(rent.id, june, True)

        written = service.copy_month(june, july)
        assert written == 2

        july_rows = {r.fixed_expense_id: r for r in service.monthly(july)}
        assert july_rows[rent.id].amount_cents == 120_000
        assert july_rows[rent.id].is_override is True
        assert july_rows[car.id].amount_cents == 47_500
        assert all(not r.is_paid for r in july_rows.values())
        july_statuses = session.scalars(
            select(MonthlyExpenseStatus).where(MonthlyExpenseStatus.month == 7)
        ).all()
        assert july_statuses == []

        june_rows = {r.fixed_expense_id: r for r in service.monthly(june)}
        assert june_rows[rent.id].is_override is False
        assert june_rows[rent.id].is_paid is True
        assert june_rows[car.id].amount_cents == 47_500


def test_copy_overwrites_existing_destination_override() -> None:
    with _session() as session:
        service = _service(session)
        tv = _template(service, "TV", 8_000)
        june = MonthPeriod(2024, 6)
        july = MonthPeriod(2024, 7)
        service.set_override(tv.id, july, 5_000)

        service.copy_month(june, july)
        service.copy_month(june, july)

        overrides = session.scalars(
            select(ExpenseOverride).where(ExpenseOverride.month == 7)
        ).all()
        assert len(overrides) == 1
        assert overrides[0].amount_cents == 8_000


def test_copy_rolls_back_all_overrides_on_failure(monkeypatch) -> None:
    with _session() as session:
        service = _service(session)
        _template(service, "Rent", 120_000)
        _template(service, "Car", 45_000)

        original = FixedExpenseService._upsert_override
        calls = {"n": 0}

        def flaky(self, fixed_expense_id, period, amount_cents):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("store unavailable")
            return original(self, fixed_expense_id, period, amount_cents)

        monkeypatch.setattr(FixedExpenseService, "_upsert_override", flaky)
        with pytest.raises(RuntimeError):
            service.copy_month(MonthPeriod(2024, 6), MonthPeriod(2024, 7))

        assert session.scalars(select(ExpenseOverride)).all() == []


def test_delete_template_removes_overrides_and_statuses() -> None:
    with _session() as session:
        service = _service(session)
        rent = _template(service, "Rent", 120_000)
        june = MonthPeriod(2024, 6)
        service.edit_month(rent.id, june, amount_cents=130_000, is_paid=True)

        service.delete(rent.id)
        assert service.monthly(june) == []
        assert session.scalars(select(ExpenseOverride)).all() == []
        assert session.scalars(select(MonthlyExpenseStatus)).all() == []


def test_yearly_totals_sum_materialized_months() -> None:
    with _session() as session:
        service = _service(session)
        rent = _template(service, "Rent", 100_000)
        _template(service, "Gym", 10_000)
        service.set_override(rent.id, MonthPeriod(2024, 3), 150_000)
        service.set_override(rent.id, MonthPeriod(2023, 3), 1_000)

        yearly = service.yearly(2024)
        assert [r["month"] for r in yearly] == list(range(1, 13))
        by_month = {r["month"]: r["amount_cents"] for r in yearly}
        assert by_month[1] == 110_000
        assert by_month[3] == 160_000


def test_other_owner_cannot_touch_templates() -> None:
    with _session() as session:
        mine = _service(session, 1)
        rent = _template(mine, "Rent", 120_000)
        theirs = _service(session, 2)

        assert theirs.monthly(MonthPeriod(2024, 6)) == []
        with pytest.raises(NotFoundError):
            theirs.set_override(rent.id, MonthPeriod(2024, 6), 1_000)
        with pytest.raises(NotFoundError):
            theirs.set_paid_status(rent.id, MonthPeriod(2024, 6), True)
        with pytest.raises(NotFoundError):
            theirs.delete(rent.id)
        assert session.scalars(select(ExpenseOverride)).all() == []


def test_missing_owner_is_rejected() -> None:
    with _session() as session:
        with pytest.raises(NotAuthenticatedError):
            FixedExpenseService(session, None, policy=DueDayPolicy.clamp)


def test_buckets_split_paid_overdue_upcoming() -> None:
    with _session() as session:
        service = _service(session)
        rent = _template(service, "Rent", 120_000, day_of_month=5)
        power = _template(service, "Power", 20_000, day_of_month=10)
        _template(service, "Gym", 9_000, day_of_month=25)
        _template(service, "Donation", 3_000)
        march = MonthPeriod(2024, 3)
        service.set_paid_status(rent.id, march, True)

        buckets = service.buckets(march, today=date(2024, 3, 15))
        assert [r.name for r in buckets.paid] == ["Rent"]
        assert [r.fixed_expense_id for r in buckets.overdue] == [power.id]
        assert [r.name for r in buckets.upcoming] == ["Gym", "Donation"]
        assert buckets.paid_cents == 120_000
        assert buckets.overdue_cents == 20_000
        assert buckets.upcoming_cents == 12_000


def test_last_supported_month_materializes() -> None:
    with _session() as session:
        service = _service(session)
        rent = _template(service, "Rent", 120_000, day_of_month=31)
        december = MonthPeriod(9999, 12)

        row = service.edit_month(rent.id, december, amount_cents=1_000, is_paid=False)
        assert row.due_date == date(9999, 12, 31)
        yearly = {r["month"]: r["amount_cents"] for r in service.yearly(9999)}
        assert yearly[12] == 1_000
        assert yearly[11] == 120_000


def test_edit_month_commits_nothing_when_view_cannot_be_built(monkeypatch) -> None:
    with _session() as session:
        service = _service(session)
        rent = _template(service, "Rent", 120_000, day_of_month=5)

        def broken_monthly(self, period):
            raise ValueError("cannot build month")

        monkeypatch.setattr(FixedExpenseService, "monthly", broken_monthly)
        with pytest.raises(ValueError):
            service.edit_month(
                rent.id, MonthPeriod(2024, 8), amount_cents=90_000, is_paid=True
            )
        monkeypatch.undo()

        assert session.scalars(select(ExpenseOverride)).all() == []
        assert session.scalars(select(MonthlyExpenseStatus)).all() == []
