# models/schema.py
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    JSON, String, Text, Integer, Numeric, DateTime, ForeignKey, CheckConstraint,
    UniqueConstraint, Index
)
from models.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- PURCHASES (owned by the host commerce core)

class Purchase(Base):
    __tablename__ = "purchases"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD")
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    shipping: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    # what this gateway was authorized for offsite
    gateway_total: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False)

    items = relationship(
        "PurchaseItem",
        back_populates="purchase",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PurchaseItem.position.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_purchases_total_ge_0"),
    )


class PurchaseItem(Base):
    __tablename__ = "purchase_items"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    purchase_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deal_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False)
    # {"amazon_fps": "25.00", "account_balance": "5.00"}
    payment_method: Mapped[dict] = mapped_column(JSON, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSON)

    purchase = relationship("Purchase", back_populates="items")

    __table_args__ = (
        Index("idx_purchase_items_purchase", "purchase_id"),
        CheckConstraint("quantity > 0", name="ck_purchase_items_qty_gt_0"),
    )


# --- PAYMENTS

class Payment(Base):
    __tablename__ = "payments"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    payment_method: Mapped[str] = mapped_column(String, nullable=False)
    purchase_id: Mapped[int] = mapped_column(Integer, ForeignKey(
        "purchases.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="authorized")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String, nullable=False)
    deals: Mapped[dict] = mapped_column(JSON, nullable=False)
    shipping_address: Mapped[dict | None] = mapped_column(JSON)
    api_response: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payments_amount_ge_0"),
        CheckConstraint(
            "status in ('authorized','complete')", name="ck_payments_status"),
        UniqueConstraint("transaction_id", name="uq_payments_transaction_id"),
    )


Index("idx_payments_purchase", Payment.purchase_id)
Index("idx_payments_status", Payment.status)


class PaymentEvent(Base):
    __tablename__ = "payment_events"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    payment_id: Mapped[int | None] = mapped_column(
        Integer)  # intended FK to payments.id (nullable)
    purchase_id: Mapped[int | None] = mapped_column(Integer)
    raw: Mapped[str] = mapped_column(Text, nullable=False)
    emitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False)


Index("idx_payment_events_payment", PaymentEvent.payment_id)


class PurchaseCompletion(Base):
    __tablename__ = "purchase_completions"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    purchase_id: Mapped[int] = mapped_column(Integer, ForeignKey(
        "purchases.id", ondelete="CASCADE"), nullable=False)
    payment_method: Mapped[str] = mapped_column(String, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False)
    __table_args__ = (
        UniqueConstraint("purchase_id", "payment_method",
                         name="uq_purchase_completions_purchase_method"),
    )
