# models/payments_store.py (SQLAlchemy)
from __future__ import annotations
import json
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from models.base import session_scope
from models.schema import Payment, PaymentEvent, PurchaseCompletion
from services.payments.base import (
    PaymentRecord, ProviderResponseError, STATUS_AUTHORIZED, STATUS_ORDER,
)
from services.payments.money import quantize


def _to_record(p: Payment) -> PaymentRecord:
    return PaymentRecord(
        id=p.id, purchase_id=p.purchase_id, payment_method=p.payment_method,
        amount=quantize(p.amount), currency=p.currency,
        transaction_id=p.transaction_id, status=p.status,
        deals=p.deals or {}, shipping_address=p.shipping_address,
        api_response=p.api_response,
    )


def new_payment(*, purchase_id: int, payment_method: str, amount: Decimal, currency: str,
                transaction_id: str, deals: dict, shipping_address: Optional[dict] = None,
                api_response: Optional[dict] = None, status: str = STATUS_AUTHORIZED) -> PaymentRecord:
    # a Payment never exists without a transaction id and a non-negative amount
    if not transaction_id:
        raise ValueError("transaction_id is required")
    if amount is None or Decimal(amount) < 0:
        raise ValueError("amount must be >= 0")
    try:
        with session_scope() as s:
            p = Payment(
                purchase_id=purchase_id, payment_method=payment_method,
                amount=quantize(amount), currency=currency,
                transaction_id=transaction_id, status=status, deals=deals,
                shipping_address=shipping_address, api_response=api_response,
            )
            s.add(p)
            s.flush()
            return _to_record(p)
    except IntegrityError as e:
        # payments.transaction_id is unique
        raise ProviderResponseError(
            f"transaction {transaction_id} is already recorded") from e


def get_payment(payment_id: int) -> Optional[PaymentRecord]:
    with session_scope() as s:
        p = s.get(Payment, payment_id)
        return _to_record(p) if p else None


def get_payments_for_purchase(purchase_id: int, payment_method: Optional[str] = None) -> List[PaymentRecord]:
    with session_scope() as s:
        q = select(Payment).where(Payment.purchase_id == purchase_id)
        if payment_method:
            q = q.where(Payment.payment_method == payment_method)
        rows = s.execute(q.order_by(Payment.id.asc())).scalars().all()
        return [_to_record(p) for p in rows]


def set_payment_status(payment_id: int, status: str) -> PaymentRecord:
    """Statuses only move forward: authorized -> complete."""
    if status not in STATUS_ORDER:
        raise ValueError(f"unknown payment status: {status}")
    with session_scope() as s:
        p = s.get(Payment, payment_id)
        if not p:
            raise ValueError(f"payment {payment_id} not found")
        if STATUS_ORDER.index(status) < STATUS_ORDER.index(p.status):
            raise ValueError(
                f"payment {payment_id} cannot go from {p.status} back to {status}")
        p.status = status
        s.add(p)
        s.flush()
        return _to_record(p)


def record_payment_event(event_type: str, payment_id: Optional[int], purchase_id: Optional[int],
                         payload: dict) -> int:
    raw_text = json.dumps(payload, ensure_ascii=False,
                          separators=(",", ":"), default=str)
    with session_scope() as s:
        e = PaymentEvent(event_type=event_type, payment_id=payment_id,
                         purchase_id=purchase_id, raw=raw_text)
        s.add(e)
        s.flush()
        return e.id


def list_payment_events(purchase_id: int) -> List[dict]:
    with session_scope() as s:
        rows = s.execute(select(PaymentEvent).where(
            PaymentEvent.purchase_id == purchase_id).order_by(PaymentEvent.id.asc())).scalars().all()
        return [{"id": e.id, "event_type": e.event_type, "payment_id": e.payment_id,
                 "payload": json.loads(e.raw)} for e in rows]


def claim_purchase_completion(purchase_id: int, payment_method: str) -> bool:
    """
    Insert the idempotency row for the complete-purchase step.
    Returns False if it was already claimed.
    """
    try:
        with session_scope() as s:
            s.add(PurchaseCompletion(purchase_id=purchase_id,
                  payment_method=payment_method))
            s.flush()
        return True
    except IntegrityError:
        return False


def release_purchase_completion(purchase_id: int, payment_method: str) -> None:
    """Drop the claim so a failed completion can be retried."""
    with session_scope() as s:
        s.execute(delete(PurchaseCompletion).where(
            PurchaseCompletion.purchase_id == purchase_id,
            PurchaseCompletion.payment_method == payment_method))
