from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class DueDayPolicy(str, Enum):
    clamp = "clamp"
    rollover = "rollover"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user_created", "user_id", "created_at"),)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL")
    )
    # denormalized category name, kept in sync by CategoryService.rename/delete
    category: Mapped[Optional[str]] = mapped_column(String(100))

    account: Mapped[Optional["Account"]] = relationship(
        "Account", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class FixedExpense(Base, TimestampMixin):
    __tablename__ = "fixed_expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    default_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)

    overrides: Mapped[list["ExpenseOverride"]] = relationship(
        "ExpenseOverride",
        back_populates="fixed_expense",
        cascade="all, delete-orphan",
    )
    statuses: Mapped[list["MonthlyExpenseStatus"]] = relationship(
        "MonthlyExpenseStatus",
        back_populates="fixed_expense",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "default_amount_cents > 0", name="ck_fixed_expense_amount_positive"
        ),
        CheckConstraint(
            "day_of_month IS NULL OR (day_of_month BETWEEN 1 AND 31)",
            name="ck_fixed_expense_day_of_month",
        ),
        Index("ix_fixed_expenses_user", "user_id"),
    )


class ExpenseOverride(Base, TimestampMixin):
    __tablename__ = "expense_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    fixed_expense_id: Mapped[int] = mapped_column(
        ForeignKey("fixed_expenses.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    fixed_expense: Mapped["FixedExpense"] = relationship(
        "FixedExpense", back_populates="overrides"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_expense_override_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_expense_override_month"),
        UniqueConstraint(
            "user_id",
            "fixed_expense_id",
            "month",
            "year",
            name="uq_expense_override_user_expense_period",
        ),
        Index("ix_expense_override_user_period", "user_id", "year", "month"),
    )


class MonthlyExpenseStatus(Base, TimestampMixin):
    __tablename__ = "monthly_expense_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    fixed_expense_id: Mapped[int] = mapped_column(
        ForeignKey("fixed_expenses.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    fixed_expense: Mapped["FixedExpense"] = relationship(
        "FixedExpense", back_populates="statuses"
    )

    __table_args__ = (
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_expense_status_month"),
        UniqueConstraint(
            "user_id",
            "fixed_expense_id",
            "month",
            "year",
            name="uq_expense_status_user_expense_period",
        ),
        Index("ix_expense_status_user_period", "user_id", "year", "month"),
    )
