"""initial ledger schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None

MOVEMENT_TYPE = sa.Enum("income", "expense", "transfer", name="movementtype")
FIXED_FLAG = sa.Enum("fixed", "variable", name="fixedflag")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "bank",
                "cash",
                "broker",
                "roboadvisor",
                "ewallet",
                "credit_card",
                name="accounttype",
            ),
            nullable=False,
        ),
        sa.Column(
            "opening_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_owner_name", "accounts", ["owner_id", "name"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind", sa.Enum("income", "expense", name="categorykind"), nullable=False
        ),
        sa.Column("is_fixed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint(
            "owner_id", "kind", "name", name="uq_category_owner_kind_name"
        ),
    )

    op.create_table(
        "recurring_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", MOVEMENT_TYPE, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("fixed_var", FIXED_FLAG),
        sa.Column("note", sa.Text()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("next_occurrence", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_template_day_of_month"
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_template_amount_positive"),
        sa.CheckConstraint("type != 'transfer'", name="ck_template_not_transfer"),
    )

    op.create_table(
        "movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", MOVEMENT_TYPE, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("account_from_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("account_to_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("fixed_var", FIXED_FLAG),
        sa.Column("note", sa.Text()),
        sa.Column(
            "template_id", sa.Integer(), sa.ForeignKey("recurring_templates.id")
        ),
        sa.Column("occurrence_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint(
            "owner_id",
            "template_id",
            "occurrence_date",
            name="uq_movement_template_occurrence",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_movements_amount_positive"),
        sa.CheckConstraint(
            "(type != 'transfer' AND account_id IS NOT NULL"
            " AND account_from_id IS NULL AND account_to_id IS NULL)"
            " OR (type = 'transfer' AND account_id IS NULL AND category_id IS NULL"
            " AND account_from_id IS NOT NULL AND account_to_id IS NOT NULL"
            " AND account_from_id != account_to_id)",
            name="ck_movements_account_shape",
        ),
    )
    op.create_index("ix_movements_owner_date", "movements", ["owner_id", "date"])
    op.create_index(
        "ix_movements_owner_type_date", "movements", ["owner_id", "type", "date"]
    )
    op.create_index(
        "ix_movements_owner_category_date",
        "movements",
        ["owner_id", "category_id", "date"],
    )

    op.create_table(
        "snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "date", name="uq_snapshot_account_date"),
    )
    op.create_index("ix_snapshots_owner_date", "snapshots", ["owner_id", "date"])

    op.create_table(
        "day_notes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("note", sa.Text(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("owner_id", "date", name="uq_day_note_owner_date"),
    )


def downgrade():
    op.drop_table("day_notes")
    op.drop_index("ix_snapshots_owner_date", table_name="snapshots")
    op.drop_table("snapshots")
    op.drop_index("ix_movements_owner_category_date", table_name="movements")
    op.drop_index("ix_movements_owner_type_date", table_name="movements")
    op.drop_index("ix_movements_owner_date", table_name="movements")
    op.drop_table("movements")
    op.drop_table("recurring_templates")
    op.drop_table("categories")
    op.drop_index("ix_accounts_owner_name", table_name="accounts")
    op.drop_table("accounts")
