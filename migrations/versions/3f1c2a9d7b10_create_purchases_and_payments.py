"""create purchases, payments, payment events and completions

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:12:03.114022

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("subtotal", sa.Numeric(18, 2), nullable=False),
        sa.Column("shipping", sa.Numeric(18, 2), nullable=False),
        sa.Column("tax", sa.Numeric(18, 2), nullable=False),
        sa.Column("total", sa.Numeric(18, 2), nullable=False),
        sa.Column("gateway_total", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("total >= 0", name="ck_purchases_total_ge_0"),
    )
    op.create_table(
        "purchase_items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("purchase_id", sa.Integer,
                  sa.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("deal_id", sa.Integer, nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_method", sa.JSON, nullable=False),
        sa.Column("data", sa.JSON),
        sa.CheckConstraint("quantity > 0", name="ck_purchase_items_qty_gt_0"),
    )
    op.create_index("idx_purchase_items_purchase",
                    "purchase_items", ["purchase_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("payment_method", sa.String, nullable=False),
        sa.Column("purchase_id", sa.Integer,
                  sa.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("transaction_id", sa.String, nullable=False),
        sa.Column("deals", sa.JSON, nullable=False),
        sa.Column("shipping_address", sa.JSON),
        sa.Column("api_response", sa.JSON),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_payments_amount_ge_0"),
        sa.CheckConstraint("status in ('authorized','complete')",
                           name="ck_payments_status"),
        sa.UniqueConstraint("transaction_id", name="uq_payments_transaction_id"),
    )
    op.create_index("idx_payments_purchase", "payments", ["purchase_id"])
    op.create_index("idx_payments_status", "payments", ["status"])

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String, nullable=False),
        sa.Column("payment_id", sa.Integer),
        sa.Column("purchase_id", sa.Integer),
        sa.Column("raw", sa.Text, nullable=False),
        sa.Column("emitted_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_payment_events_payment",
                    "payment_events", ["payment_id"])

    op.create_table(
        "purchase_completions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("purchase_id", sa.Integer,
                  sa.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("payment_method", sa.String, nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("purchase_id", "payment_method",
                            name="uq_purchase_completions_purchase_method"),
    )


def downgrade():
    op.drop_table("purchase_completions")
    op.drop_index("idx_payment_events_payment", table_name="payment_events")
    op.drop_table("payment_events")
    op.drop_index("idx_payments_status", table_name="payments")
    op.drop_index("idx_payments_purchase", table_name="payments")
    op.drop_table("payments")
    op.drop_index("idx_purchase_items_purchase", table_name="purchase_items")
    op.drop_table("purchase_items")
    op.drop_table("purchases")
