"""initial family finance schema

Revision ID: 202610011200
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610011200"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("INCOME", "EXPENSE", name="transactiontype")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "families",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "family_id", sa.Integer(), sa.ForeignKey("families.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column(
            "role", sa.Enum("ADMIN", "MEMBER", name="userrole"), nullable=False
        ),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_login_date", sa.Date()),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "family_id", sa.Integer(), sa.ForeignKey("families.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum("CASH", "BANK", "CREDIT_CARD", name="accounttype"),
            nullable=False,
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("limit_cents", sa.Integer()),
        sa.Column("closing_day", sa.Integer()),
        sa.Column("due_day", sa.Integer()),
        sa.Column("color", sa.String(length=9), nullable=False),
        sa.Column("icon", sa.String(length=16)),
        *_timestamps(),
        sa.CheckConstraint(
            "closing_day IS NULL OR (closing_day BETWEEN 1 AND 31)",
            name="ck_account_closing_day_range",
        ),
        sa.CheckConstraint(
            "due_day IS NULL OR (due_day BETWEEN 1 AND 31)",
            name="ck_account_due_day_range",
        ),
    )
    op.create_index("ix_accounts_family", "accounts", ["family_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "family_id", sa.Integer(), sa.ForeignKey("families.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("color", sa.String(length=9), nullable=False),
        sa.Column("icon", sa.String(length=16), nullable=False),
        sa.Column("rules_json", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint(
            "family_id", "name", "type", name="uq_category_family_name_type"
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "family_id", sa.Integer(), sa.ForeignKey("families.id"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "CONFIRMED", "CANCELLED", name="transactionstatus"),
            nullable=False,
        ),
        sa.Column(
            "source",
            sa.Enum("MANUAL", "EMAIL", "BILL_PAYMENT", name="transactionsource"),
            nullable=False,
        ),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("billing_month", sa.Date()),
        sa.Column(
            "is_installment", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("installment_group_id", sa.String(length=32)),
        sa.Column("installment_number", sa.Integer()),
        sa.Column("total_installments", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_family_date", "transactions", ["family_id", "date"]
    )
    op.create_index(
        "ix_transactions_family_status_date",
        "transactions",
        ["family_id", "status", "date"],
    )
    op.create_index(
        "ix_transactions_installment_group", "transactions", ["installment_group_id"]
    )
    op.create_index(
        "ix_transactions_account_billing",
        "transactions",
        ["account_id", "billing_month"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "family_id", sa.Integer(), sa.ForeignKey("families.id"), nullable=False
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("limit_cents > 0", name="ck_budget_limit_positive"),
        sa.UniqueConstraint(
            "family_id", "category_id", "month", name="uq_budget_family_category_month"
        ),
    )
    op.create_index("ix_budget_family_month", "budgets", ["family_id", "month"])

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "family_id", sa.Integer(), sa.ForeignKey("families.id"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("response", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_chat_messages_user_created", "chat_messages", ["user_id", "created_at"]
    )

    op.create_table(
        "achievements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=80), nullable=False),
        sa.Column("icon", sa.String(length=16), nullable=False),
        sa.Column("earned_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "type", name="uq_achievement_user_type"),
    )


def downgrade():
    op.drop_table("achievements")
    op.drop_index("ix_chat_messages_user_created", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_budget_family_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_account_billing", table_name="transactions")
    op.drop_index("ix_transactions_installment_group", table_name="transactions")
    op.drop_index("ix_transactions_family_status_date", table_name="transactions")
    op.drop_index("ix_transactions_family_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_index("ix_accounts_family", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("users")
    op.drop_table("families")
