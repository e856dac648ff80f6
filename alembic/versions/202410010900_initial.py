"""initial schema

Revision ID: 202410010900
Revises:
Create Date: 2024-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202410010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user_created", "accounts", ["user_id", "created_at"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("category", sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )

    op.create_table(
        "fixed_expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("default_amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "default_amount_cents > 0", name="ck_fixed_expense_amount_positive"
        ),
        sa.CheckConstraint(
            "day_of_month IS NULL OR (day_of_month BETWEEN 1 AND 31)",
            name="ck_fixed_expense_day_of_month",
        ),
    )
    op.create_index("ix_fixed_expenses_user", "fixed_expenses", ["user_id"])

    for table, value_column, constraint, extra in (
        (
            "expense_overrides",
            sa.Column("amount_cents", sa.Integer(), nullable=False),
            "expense_override",
            [
                sa.CheckConstraint(
                    "amount_cents > 0", name="ck_expense_override_amount_positive"
                )
            ],
        ),
        (
            "monthly_expense_status",
            sa.Column(
                "is_paid", sa.Boolean(), nullable=False, server_default=sa.false()
            ),
            "expense_status",
            [],
        ),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column(
                "fixed_expense_id",
                sa.Integer(),
                sa.ForeignKey("fixed_expenses.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("month", sa.Integer(), nullable=False),
            value_column,
            *_timestamps(),
            sa.CheckConstraint("month BETWEEN 1 AND 12", name=f"ck_{constraint}_month"),
            *extra,
            sa.UniqueConstraint(
                "user_id",
                "fixed_expense_id",
                "month",
                "year",
                name=f"uq_{constraint}_user_expense_period",
            ),
        )
        op.create_index(
            f"ix_{constraint}_user_period", table, ["user_id", "year", "month"]
        )


def downgrade():
    op.drop_table("monthly_expense_status")
    op.drop_table("expense_overrides")
    op.drop_table("fixed_expenses")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("accounts")
