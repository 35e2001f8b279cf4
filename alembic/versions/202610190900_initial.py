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


DEFAULT_GOALS = [
    ("1", "Liberdade Financeira"),
    ("2", "Custos Fixos"),
    ("3", "Conforto"),
    ("4", "Metas"),
    ("5", "Prazeres"),
    ("6", "Conhecimento"),
]


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_account_user_name"),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_tag_user_name"),
    )

    goals = op.create_table(
        "goals",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.bulk_insert(
        goals,
        [
            {"id": goal_id, "name": name, "display_order": order}
            for order, (goal_id, name) in enumerate(DEFAULT_GOALS)
        ],
    )

    op.create_table(
        "goal_configs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "goal_id", sa.String(length=36), sa.ForeignKey("goals.id"), nullable=False
        ),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "goal_id", name="uq_goal_config_user_goal"),
        sa.CheckConstraint(
            "percentage >= 0 AND percentage <= 100", name="ck_goal_config_percentage"
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("tag_id", sa.String(length=36), sa.ForeignKey("tags.id")),
        sa.Column("goal_id", sa.String(length=36), sa.ForeignKey("goals.id")),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column(
            "recurrence_type",
            sa.Enum("single", "recurring", "installment", name="recurrencetype"),
            nullable=False,
        ),
        sa.Column("installment_total", sa.Integer()),
        sa.Column("installment_current", sa.Integer()),
        sa.Column("parent_transaction_id", sa.String(length=36)),
        sa.Column(
            "hide_from_reports", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("materialized_through", sa.Date()),
        sa.Column("series_end_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "installment_total IS NULL OR installment_total >= 2",
            name="ck_transactions_installment_total",
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_recurrence",
        "transactions",
        ["user_id", "recurrence_type"],
    )
    op.create_index(
        "ix_transactions_parent_date",
        "transactions",
        ["parent_transaction_id", "date"],
    )


def downgrade():
    op.drop_index("ix_transactions_parent_date", table_name="transactions")
    op.drop_index("ix_transactions_user_recurrence", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("goal_configs")
    op.drop_table("goals")
    op.drop_table("tags")
    op.drop_table("accounts")
