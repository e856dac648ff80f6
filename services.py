from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload

from rapidfuzz.distance import Levenshtein

from auth import require_owner
from fixed_expenses import (
    MonthlyFixedExpense,
    PaymentBuckets,
    bucket_by_status,
    materialize_month,
    monthly_total,
)
from models import (
    Account,
    Category,
    DueDayPolicy,
    ExpenseOverride,
    FixedExpense,
    MonthlyExpenseStatus,
    Transaction,
    TransactionType,
)
from periods import MonthPeriod
from recurrence import configured_due_day_policy
from schemas import AccountIn, CategoryIn, FixedExpenseIn, TransactionIn


logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    pass


class NotFoundError(ValueError):
    pass


class SamePeriodCopyError(ValidationError):
    pass


class CategoryAmbiguousError(ValidationError):
    pass


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = require_owner(user_id)

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at, Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type.strip(),
            balance_cents=data.balance_cents,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        logger.info(f"account_created: user_id={self.user_id} account_id={account.id}")
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        account = self.get(account_id)
        account.name = data.name.strip()
        account.type = data.type.strip()
        account.balance_cents = data.balance_cents
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        # income rows must keep an account
        income_count = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
                Transaction.type == TransactionType.income,
            )
        )
        if income_count:
            raise ValidationError(
                f"Account has {income_count} income transaction(s); "
                "move or delete them first"
            )
        self.session.delete(account)
        self.session.commit()
        logger.info(f"account_deleted: user_id={self.user_id} account_id={account_id}")

    def total_balance(self) -> int:
        stmt = select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
            Account.user_id == self.user_id
        )
        return int(self.session.execute(stmt).scalar_one() or 0)


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = require_owner(user_id)

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(func.lower(Category.name), Category.id)
        )
        return self.session.scalars(stmt).all()

    def find(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == name.strip().lower(),
            )
        )

    def create(self, data: CategoryIn) -> Category:
        clean_name = data.name.strip()
        if not clean_name:
            raise ValidationError("Category name cannot be empty")
        if self.find(clean_name):
            raise ValidationError("Category with this name already exists")
        category = Category(user_id=self.user_id, name=clean_name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def resolve(self, name: str, *, fuzzy: bool = False) -> Category:
        """Return the category called ``name``, creating it when missing.

        With ``fuzzy`` a unique existing name within one edit is reused
        (typos like "Groceris"); several equally close names are ambiguous.
        """
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Category name cannot be empty")
        exact = self.find(clean_name)
        if exact:
            return exact

        if fuzzy:
            input_lower = clean_name.lower()
            best_distance: Optional[int] = None
            best: list[Category] = []
            for category in self.list_all():
                dist = int(Levenshtein.distance(input_lower, category.name.lower()))
                if best_distance is None or dist < best_distance:
                    best_distance = dist
                    best = [category]
                elif dist == best_distance:
                    best.append(category)
            if best_distance is not None and best_distance <= 1:
                if len(best) > 1:
                    options = ", ".join(sorted(c.name for c in best))
                    raise CategoryAmbiguousError(
                        f"Category '{clean_name}' is ambiguous; matches: {options}"
                    )
                return best[0]

        return self.create(CategoryIn(name=clean_name))

    def rename(self, old_name: str, new_name: str) -> Category:
        """Rename a category and every transaction / fixed expense using it.

        Category names are copied onto the rows that use them, so this is a
        bulk rewrite rather than a single-row update.
        """
        category = self.find(old_name)
        if not category:
            raise NotFoundError("Category not found")
        clean_new = new_name.strip()
        if not clean_new:
            raise ValidationError("Category name cannot be empty")
        clash = self.find(clean_new)
        if clash and clash.id != category.id:
            raise ValidationError("Category with this name already exists")

        previous = category.name
        txn_result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.category == previous,
            )
            .values(category=clean_new)
        )
        fixed_result = self.session.execute(
            update(FixedExpense)
            .where(
                FixedExpense.user_id == self.user_id,
                FixedExpense.category == previous,
            )
            .values(category=clean_new)
        )
        category.name = clean_new
        self.session.commit()
        self.session.refresh(category)
        logger.info(
            f"category_renamed: user_id={self.user_id} from={previous!r} "
            f"to={clean_new!r} transactions={txn_result.rowcount} "
            f"fixed_expenses={fixed_result.rowcount}"
        )
        return category

    def delete(self, name: str) -> None:
        category = self.find(name)
        if not category:
            raise NotFoundError("Category not found")
        previous = category.name
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.category == previous,
            )
            .values(category=None)
        )
        self.session.execute(
            update(FixedExpense)
            .where(
                FixedExpense.user_id == self.user_id,
                FixedExpense.category == previous,
            )
            .values(category=None)
        )
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_deleted: user_id={self.user_id} name={previous!r}")

    def canonical_name(self, name: Optional[str]) -> Optional[str]:
        if name is None:
            return None
        return self.resolve(name).name


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = require_owner(user_id)

    def _check_account(self, data: TransactionIn) -> None:
        if data.account_id is None:
            if data.type == TransactionType.income:
                raise ValidationError("Income transactions require an account")
            return
        AccountService(self.session, self.user_id).get(data.account_id)

    def create(self, data: TransactionIn) -> Transaction:
        self._check_account(data)
        category = CategoryService(self.session, self.user_id).canonical_name(
            data.category
        )
        txn = Transaction(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            amount_cents=data.amount_cents,
            date=data.date,
            account_id=data.account_id,
            category=category,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} transaction_id={txn.id} "
            f"type={txn.type.value}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_account(data)
        txn.name = data.name.strip()
        txn.type = data.type
        txn.amount_cents = data.amount_cents
        txn.date = data.date
        txn.account_id = data.account_id
        txn.category = CategoryService(self.session, self.user_id).canonical_name(
            data.category
        )
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(
            f"transaction_deleted: user_id={self.user_id} transaction_id={transaction_id}"
        )

    def list_for_month(
        self,
        period: MonthPeriod,
        *,
        type: Optional[TransactionType] = None,
        category: Optional[str] = None,
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if type:
            stmt = stmt.where(Transaction.type == type)
        if category:
            stmt = stmt.where(func.lower(Transaction.category) == category.lower())
        return self.session.scalars(stmt).all()

    def totals_for_month(self, period: MonthPeriod) -> dict[TransactionType, int]:
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.type)
        )
        totals = {TransactionType.income: 0, TransactionType.expense: 0}
        for row in self.session.execute(stmt):
            totals[row.type] = int(row.total or 0)
        return totals


class FixedExpenseService:
    """Recurring fixed expenses and their per-month overrides and statuses.

    Template edits ("standard" edits) never write override or status rows,
    so a month with an override keeps its amount whatever happens to the
    template afterwards. Month-scoped edits never touch the template.
    """

    def __init__(
        self,
        session: Session,
        user_id: Optional[int],
        *,
        policy: Optional[DueDayPolicy] = None,
    ) -> None:
        self.session = session
        self.user_id = require_owner(user_id)
        self.policy = policy or configured_due_day_policy()

    # templates

    def list_templates(self) -> list[FixedExpense]:
        stmt = (
            select(FixedExpense)
            .where(FixedExpense.user_id == self.user_id)
            .order_by(FixedExpense.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, fixed_expense_id: int) -> FixedExpense:
        tmpl = self.session.get(FixedExpense, fixed_expense_id)
        if not tmpl or tmpl.user_id != self.user_id:
            raise NotFoundError("Fixed expense not found")
        return tmpl

    def create(self, data: FixedExpenseIn) -> FixedExpense:
        tmpl = FixedExpense(
            user_id=self.user_id,
            name=data.name.strip(),
            default_amount_cents=data.default_amount_cents,
            category=CategoryService(self.session, self.user_id).canonical_name(
                data.category
            ),
            day_of_month=data.day_of_month,
        )
        self.session.add(tmpl)
        self.session.commit()
        self.session.refresh(tmpl)
        logger.info(
            f"fixed_expense_created: user_id={self.user_id} fixed_expense_id={tmpl.id}"
        )
        return tmpl

    def update_template(
        self, fixed_expense_id: int, data: FixedExpenseIn
    ) -> FixedExpense:
        tmpl = self.get(fixed_expense_id)
        tmpl.name = data.name.strip()
        tmpl.default_amount_cents = data.default_amount_cents
        tmpl.category = CategoryService(self.session, self.user_id).canonical_name(
            data.category
        )
        tmpl.day_of_month = data.day_of_month
        self.session.commit()
        self.session.refresh(tmpl)
        logger.info(
            f"fixed_expense_updated: user_id={self.user_id} fixed_expense_id={tmpl.id} "
            f"default_amount_cents={tmpl.default_amount_cents}"
        )
        return tmpl

    def delete(self, fixed_expense_id: int) -> None:
        tmpl = self.get(fixed_expense_id)
        self.session.delete(tmpl)
        self.session.commit()
        logger.info(
            f"fixed_expense_deleted: user_id={self.user_id} "
            f"fixed_expense_id={fixed_expense_id}"
        )

    # materialized views

    def monthly(self, period: MonthPeriod) -> list[MonthlyFixedExpense]:
        templates = self.list_templates()
        overrides = self.session.scalars(
            select(ExpenseOverride).where(
                ExpenseOverride.user_id == self.user_id,
                ExpenseOverride.year == period.year,
                ExpenseOverride.month == period.month,
            )
        ).all()
        statuses = self.session.scalars(
            select(MonthlyExpenseStatus).where(
                MonthlyExpenseStatus.user_id == self.user_id,
                MonthlyExpenseStatus.year == period.year,
                MonthlyExpenseStatus.month == period.month,
            )
        ).all()
        return materialize_month(
            templates, overrides, statuses, period, policy=self.policy
        )

    def yearly(self, year: int) -> list[dict[str, int]]:
        templates = self.list_templates()
        overrides = self.session.scalars(
            select(ExpenseOverride).where(
                ExpenseOverride.user_id == self.user_id,
                ExpenseOverride.year == year,
            )
        ).all()
        totals: list[dict[str, int]] = []
        for month in range(1, 13):
            rows = materialize_month(
                templates, overrides, [], MonthPeriod(year, month), policy=self.policy
            )
            totals.append({"month": month, "amount_cents": monthly_total(rows)})
        return totals

    def buckets(self, period: MonthPeriod, *, today: date) -> PaymentBuckets:
        return bucket_by_status(self.monthly(period), today=today)

    # month-scoped writes

    def _find_override(
        self, fixed_expense_id: int, period: MonthPeriod
    ) -> Optional[ExpenseOverride]:
        return self.session.scalar(
            select(ExpenseOverride).where(
                ExpenseOverride.user_id == self.user_id,
                ExpenseOverride.fixed_expense_id == fixed_expense_id,
                ExpenseOverride.year == period.year,
                ExpenseOverride.month == period.month,
            )
        )

    def _find_status(
        self, fixed_expense_id: int, period: MonthPeriod
    ) -> Optional[MonthlyExpenseStatus]:
        return self.session.scalar(
            select(MonthlyExpenseStatus).where(
                MonthlyExpenseStatus.user_id == self.user_id,
                MonthlyExpenseStatus.fixed_expense_id == fixed_expense_id,
                MonthlyExpenseStatus.year == period.year,
                MonthlyExpenseStatus.month == period.month,
            )
        )

    def _upsert_override(
        self, fixed_expense_id: int, period: MonthPeriod, amount_cents: int
    ) -> ExpenseOverride:
        if amount_cents <= 0:
            raise ValidationError("Amount must be positive")
        existing = self._find_override(fixed_expense_id, period)
        if existing:
            existing.amount_cents = amount_cents
            self.session.flush()
            return existing
        override = ExpenseOverride(
            user_id=self.user_id,
            fixed_expense_id=fixed_expense_id,
            year=period.year,
            month=period.month,
            amount_cents=amount_cents,
        )
        self.session.add(override)
        self.session.flush()
        return override

    def _upsert_status(
        self, fixed_expense_id: int, period: MonthPeriod, is_paid: bool
    ) -> MonthlyExpenseStatus:
        existing = self._find_status(fixed_expense_id, period)
        if existing:
            existing.is_paid = is_paid
            self.session.flush()
            return existing
        status = MonthlyExpenseStatus(
            user_id=self.user_id,
            fixed_expense_id=fixed_expense_id,
            year=period.year,
            month=period.month,
            is_paid=is_paid,
        )
        self.session.add(status)
        self.session.flush()
        return status

    def set_override(
        self, fixed_expense_id: int, period: MonthPeriod, amount_cents: int
    ) -> ExpenseOverride:
        self.get(fixed_expense_id)
        try:
            override = self._upsert_override(fixed_expense_id, period, amount_cents)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(override)
        logger.info(
            f"override_set: user_id={self.user_id} fixed_expense_id={fixed_expense_id} "
            f"period={period.slug} amount_cents={amount_cents}"
        )
        return override

    def clear_override(self, fixed_expense_id: int, period: MonthPeriod) -> bool:
        self.get(fixed_expense_id)
        existing = self._find_override(fixed_expense_id, period)
        if not existing:
            return False
        self.session.delete(existing)
        self.session.commit()
        logger.info(
            f"override_cleared: user_id={self.user_id} "
            f"fixed_expense_id={fixed_expense_id} period={period.slug}"
        )
        return True

    def set_paid_status(
        self, fixed_expense_id: int, period: MonthPeriod, is_paid: bool
    ) -> MonthlyExpenseStatus:
        self.get(fixed_expense_id)
        try:
            status = self._upsert_status(fixed_expense_id, period, is_paid)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(status)
        logger.info(
            f"paid_status_set: user_id={self.user_id} "
            f"fixed_expense_id={fixed_expense_id} period={period.slug} is_paid={is_paid}"
        )
        return status

    def edit_month(
        self,
        fixed_expense_id: int,
        period: MonthPeriod,
        *,
        amount_cents: int,
        is_paid: bool,
    ) -> MonthlyFixedExpense:
        """Set this month's amount and paid flag together, in one transaction."""
        self.get(fixed_expense_id)
        try:
            self._upsert_override(fixed_expense_id, period, amount_cents)
            self._upsert_status(fixed_expense_id, period, is_paid)
            row = next(
                r
                for r in self.monthly(period)
                if r.fixed_expense_id == fixed_expense_id
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"month_edited: user_id={self.user_id} fixed_expense_id={fixed_expense_id} "
            f"period={period.slug} amount_cents={amount_cents} is_paid={is_paid}"
        )
        return row

    def copy_month(self, source: MonthPeriod, dest: MonthPeriod) -> int:
        """Snapshot ``source``'s effective amounts as overrides on ``dest``.

        Existing ``dest`` overrides for the same expenses are overwritten;
        paid statuses are not copied and ``source`` is only read.
        """
        if source == dest:
            raise SamePeriodCopyError("Source and destination months must differ")

        rows = self.monthly(source)
        try:
            for row in rows:
                self._upsert_override(row.fixed_expense_id, dest, row.amount_cents)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"copy_monthly_expenses: user_id={self.user_id} source={source.slug} "
            f"dest={dest.slug} written={len(rows)}"
        )
        return len(rows)


@dataclass(frozen=True)
class LedgerEntry:
    kind: str  # "variable" | "fixed"
    id: str
    name: str
    amount_cents: int
    date: Optional[date]
    category: Optional[str]
    account_name: Optional[str]
    is_paid: bool
    fixed_expense_id: Optional[int] = None

    def as_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "id": self.id,
            "name": self.name,
            "amount_cents": self.amount_cents,
            "date": self.date.isoformat() if self.date else None,
            "category": self.category,
            "account_name": self.account_name,
            "is_paid": self.is_paid,
            "fixed_expense_id": self.fixed_expense_id,
        }


class ExpenseLedgerService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int],
        *,
        policy: Optional[DueDayPolicy] = None,
    ) -> None:
        self.session = session
        self.user_id = require_owner(user_id)
        self.transactions = TransactionService(session, self.user_id)
        self.fixed = FixedExpenseService(session, self.user_id, policy=policy)

    def expenses_for_month(self, period: MonthPeriod) -> list[LedgerEntry]:
        entries: list[LedgerEntry] = []
        for txn in self.transactions.list_for_month(
            period, type=TransactionType.expense
        ):
            entries.append(
                LedgerEntry(
                    kind="variable",
                    id=f"transaction:{txn.id}",
                    name=txn.name,
                    amount_cents=txn.amount_cents,
                    date=txn.date,
                    category=txn.category,
                    account_name=txn.account.name if txn.account else None,
                    is_paid=True,
                )
            )
        for row in self.fixed.monthly(period):
            entries.append(
                LedgerEntry(
                    kind="fixed",
                    id=row.id,
                    name=row.name,
                    amount_cents=row.amount_cents,
                    date=row.due_date,
                    category=row.category,
                    account_name=None,
                    is_paid=row.is_paid,
                    fixed_expense_id=row.fixed_expense_id,
                )
            )
        dated = [e for e in entries if e.date is not None]
        undated = [e for e in entries if e.date is None]
        dated.sort(key=lambda e: e.date, reverse=True)
        return dated + undated


class MetricsService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int],
        *,
        policy: Optional[DueDayPolicy] = None,
    ) -> None:
        self.session = session
        self.user_id = require_owner(user_id)
        self.transactions = TransactionService(session, self.user_id)
        self.fixed = FixedExpenseService(session, self.user_id, policy=policy)

    def summary(self, period: MonthPeriod, *, today: date) -> dict[str, int]:
        totals = self.transactions.totals_for_month(period)
        buckets = self.fixed.buckets(period, today=today)
        fixed_total = (
            buckets.paid_cents + buckets.overdue_cents + buckets.upcoming_cents
        )
        income = totals[TransactionType.income]
        variable = totals[TransactionType.expense]
        return {
            "income_cents": income,
            "variable_expense_cents": variable,
            "fixed_expense_cents": fixed_total,
            "fixed_paid_cents": buckets.paid_cents,
            "fixed_overdue_cents": buckets.overdue_cents,
            "fixed_upcoming_cents": buckets.upcoming_cents,
            "total_expense_cents": variable + fixed_total,
            "net_cents": income - variable - fixed_total,
            "accounts_balance_cents": AccountService(
                self.session, self.user_id
            ).total_balance(),
        }

    def category_breakdown(self, period: MonthPeriod) -> list[dict[str, object]]:
        stmt = (
            select(
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.category)
        )
        totals: dict[Optional[str], int] = {}
        for row in self.session.execute(stmt):
            totals[row.category] = totals.get(row.category, 0) + int(row.total or 0)
        for row in self.fixed.monthly(period):
            totals[row.category] = totals.get(row.category, 0) + row.amount_cents

        grand_total = sum(totals.values())
        breakdown = []
        for name, amount in totals.items():
            percent = (amount / grand_total * 100) if grand_total else 0
            breakdown.append(
                {"name": name, "amount_cents": amount, "percent": percent}
            )
        breakdown.sort(key=lambda row: (-row["amount_cents"], row["name"] or ""))
        return breakdown

    def daily_spending(self, period: MonthPeriod) -> list[dict[str, object]]:
        stmt = (
            select(
                Transaction.date,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.date)
        )
        by_day = {row.date: int(row.total or 0) for row in self.session.execute(stmt)}
        return [
            {"date": day.isoformat(), "amount_cents": by_day.get(day, 0)}
            for day in period.days()
        ]
