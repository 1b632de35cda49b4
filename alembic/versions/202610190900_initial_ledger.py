"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


SCOPE = sa.Enum("shared", "private", "family", name="scope")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "cash",
                "bank",
                "credit_card",
                "e_money",
                "investment",
                name="accounttype",
            ),
            nullable=False,
        ),
        sa.Column("scope", SCOPE, nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_date", sa.Date()),
        sa.Column("closing_day", sa.Integer()),
        sa.Column("payment_day", sa.Integer()),
        sa.Column("is_credit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "is_archived", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "closing_day IS NULL OR (closing_day BETWEEN 1 AND 31) OR closing_day = 99",
            name="ck_accounts_closing_day",
        ),
        sa.CheckConstraint(
            "payment_day IS NULL OR payment_day BETWEEN 1 AND 31",
            name="ck_accounts_payment_day",
        ),
    )
    op.create_index("ix_accounts_user_order", "accounts", ["user_id", "order"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="categorytype"), nullable=False
        ),
        sa.Column("icon", sa.String(length=60)),
        sa.Column("color", sa.String(length=9)),
        sa.Column("budget", sa.Integer()),
        sa.Column("sub_categories", sa.JSON(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "type", "name", name="uq_category_user_type_name"
        ),
    )

    op.create_table(
        "recurring_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120)),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("sub_category", sa.String(length=100)),
        sa.Column(
            "source_account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column(
            "frequency",
            sa.Enum(
                "monthly", "2months", "3months", "6months", "yearly", name="frequency"
            ),
            nullable=False,
        ),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column(
            "holiday_action",
            sa.Enum("none", "before", "after", name="holidayaction"),
            nullable=False,
        ),
        sa.Column("end_date", sa.Date()),
        sa.Column("next_due_date", sa.Date()),
        sa.Column("auto_post", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_on", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("day BETWEEN 1 AND 31", name="ck_rule_day_range"),
        sa.CheckConstraint("amount > 0", name="ck_rule_amount_positive"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column(
            "type",
            sa.Enum("income", "expense", "transfer", "charge", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("memo", sa.Text()),
        sa.Column("category_id", sa.Integer()),
        sa.Column("category_name", sa.String(length=100)),
        sa.Column("sub_category", sa.String(length=100)),
        sa.Column("source_account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("target_account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("scope", SCOPE, nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column(
            "approval_status",
            sa.Enum("confirmed", "pending", "rejected", name="approvalstatus"),
            nullable=False,
        ),
        sa.Column("image_url", sa.String(length=500)),
        sa.Column(
            "origin_rule_id",
            sa.Integer(),
            sa.ForeignKey("recurring_rules.id", ondelete="SET NULL"),
        ),
        sa.Column("occurrence_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "origin_rule_id",
            "occurrence_date",
            name="uq_txn_origin_occurrence",
        ),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )


def downgrade():
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("recurring_rules")
    op.drop_table("categories")
    op.drop_index("ix_accounts_user_order", table_name="accounts")
    op.drop_table("accounts")
