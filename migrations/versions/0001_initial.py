"""Initial migration

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def upgrade():
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chapter_id", sa.String(36), nullable=False, index=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("description", sa.Text()),
    )
    op.create_table(
        "recurring_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chapter_id", sa.String(36), nullable=False, index=True),
        sa.Column("name", sa.String(), nullable=False, server_default=""),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("frequency", sa.String(16), nullable=False),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chapter_id", sa.String(36), nullable=False, index=True),
        sa.Column("full_name", sa.String()),
        sa.Column("email", sa.String()),
        sa.Column("installment_eligible", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "member_dues",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("member_id", sa.String(36), sa.ForeignKey("members.id"), nullable=False, index=True),
        sa.Column("chapter_id", sa.String(36), nullable=False, index=True),
        sa.Column("base_amount", MONEY, nullable=False),
        sa.Column("late_fee", MONEY, nullable=False, server_default="0"),
        sa.Column("adjustments", MONEY, nullable=False, server_default="0"),
        sa.Column("amount_paid", MONEY, nullable=False, server_default="0"),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("flexible_plan_deadline", sa.Date()),
        sa.Column("notes", sa.Text()),
    )
    op.create_table(
        "installment_eligibility",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "member_dues_id",
            sa.String(36),
            sa.ForeignKey("member_dues.id"),
            nullable=False,
            unique=True,
            index=True,
        ),
        sa.Column("is_eligible", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allowed_plans", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text()),
    )
    op.create_table(
        "installment_plans",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "member_dues_id", sa.String(36), sa.ForeignKey("member_dues.id"), nullable=False, index=True
        ),
        sa.Column("num_installments", sa.Integer(), nullable=False),
        sa.Column("installment_amount", MONEY, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("payment_method_id", sa.String()),
        sa.Column("payment_method_type", sa.String(16), nullable=False, server_default="card"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "installment_payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "plan_id", sa.String(36), sa.ForeignKey("installment_plans.id"), nullable=False, index=True
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="scheduled"),
        sa.Column("processed_at", sa.DateTime()),
    )
    op.create_table(
        "saved_payment_methods",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("member_id", sa.String(36), sa.ForeignKey("members.id"), nullable=False, index=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("brand", sa.String()),
        sa.Column("last4", sa.String(4)),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "payment_intents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "member_dues_id", sa.String(36), sa.ForeignKey("member_dues.id"), nullable=False, index=True
        ),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )


def downgrade():
    op.drop_table("payment_intents")
    op.drop_table("saved_payment_methods")
    op.drop_table("installment_payments")
    op.drop_table("installment_plans")
    op.drop_table("installment_eligibility")
    op.drop_table("member_dues")
    op.drop_table("members")
    op.drop_table("recurring_items")
    op.drop_table("transactions")
