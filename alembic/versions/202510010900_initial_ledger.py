"""initial ledger schema

Revision ID: 202510010900
Revises:
Create Date: 2025-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column(
            "currency_placement",
            sa.Enum("before", "after", name="currencyplacement"),
            nullable=False,
        ),
        sa.Column(
            "number_format",
            sa.Enum(
                "1,234.56", "1.234,56", "1 234.56", "1 234,56", name="numberformat"
            ),
            nullable=False,
        ),
        sa.Column(
            "date_format",
            sa.Enum("DD/MM/YYYY", "MM/DD/YYYY", "YYYY-MM-DD", name="dateformat"),
            nullable=False,
        ),
        *_timestamps(),
    )

    op.create_table(
        "ledger_state",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "active_budget_id",
            sa.Integer(),
            sa.ForeignKey("budgets.id", ondelete="SET NULL"),
        ),
        sa.Column("current_year", sa.Integer(), nullable=False),
        sa.Column("current_month", sa.Integer(), nullable=False),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum("checking", "savings", "credit", "loan", name="accounttype"),
            nullable=False,
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("interest_rate", sa.Float()),
        sa.Column("monthly_payment_cents", sa.Integer()),
        sa.Column("original_balance_cents", sa.Integer()),
        sa.Column("loan_start_date", sa.Date()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_budget_type", "accounts", ["budget_id", "type"])

    op.create_table(
        "tracking_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind", sa.Enum("asset", "liability", name="trackingkind"), nullable=False
        ),
        sa.Column("value_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("value_cents >= 0", name="ck_tracking_value_positive"),
    )

    op.create_table(
        "category_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("category_groups.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("goal_cents", sa.Integer()),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index(
        "ix_categories_budget_group", "categories", ["budget_id", "group_id"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("payee", sa.String(length=200), nullable=False),
        sa.Column("category_id", sa.Integer()),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("memo", sa.Text()),
        sa.Column("cleared", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "is_opening_balance",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_transactions_budget_date", "transactions", ["budget_id", "date"]
    )
    op.create_index(
        "ix_transactions_budget_category_date",
        "transactions",
        ["budget_id", "category_id", "date"],
    )
    op.create_index("ix_transactions_account", "transactions", ["account_id"])

    op.create_table(
        "category_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint(
            "budget_id",
            "year",
            "month",
            "category_id",
            name="uq_assignment_budget_month_category",
        ),
    )
    op.create_index(
        "ix_assignment_budget_month",
        "category_assignments",
        ["budget_id", "year", "month"],
    )

    op.create_table(
        "budget_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
    )

    op.create_table(
        "budget_template_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("budget_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_template_goal_amount_positive"
        ),
        sa.UniqueConstraint(
            "template_id", "category_id", name="uq_template_goal_category"
        ),
    )


def downgrade():
    op.drop_table("budget_template_goals")
    op.drop_table("budget_templates")
    op.drop_index("ix_assignment_budget_month", table_name="category_assignments")
    op.drop_table("category_assignments")
    op.drop_index("ix_transactions_account", table_name="transactions")
    op.drop_index("ix_transactions_budget_category_date", table_name="transactions")
    op.drop_index("ix_transactions_budget_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_categories_budget_group", table_name="categories")
    op.drop_table("categories")
    op.drop_table("category_groups")
    op.drop_table("tracking_accounts")
    op.drop_index("ix_accounts_budget_type", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("ledger_state")
    op.drop_table("budgets")
