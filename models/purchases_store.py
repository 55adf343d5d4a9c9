# models/purchases_store.py (SQLAlchemy)
# Host-side purchases. The payment gateway only reads these.
from __future__ import annotations
from typing import Optional

from models.base import session_scope
from models.schema import Purchase, PurchaseItem
from services.payments.base import CartItem, CheckoutSession, PurchaseSnapshot
from services.payments.money import D, quantize


def _to_snapshot(p: Purchase) -> PurchaseSnapshot:
    return PurchaseSnapshot(
        id=p.id, user_id=p.user_id, currency=p.currency, total=quantize(p.total),
        gateway_total=quantize(p.gateway_total),
        items=[CartItem(
            deal_id=i.deal_id, quantity=i.quantity, unit_price=quantize(i.unit_price),
            payment_method={k: D(v) for k, v in (i.payment_method or {}).items()},
            data=i.data or {},
        ) for i in p.items],
    )


def create_purchase_from_checkout(user_id: str, checkout: CheckoutSession,
                                  currency: str = "USD") -> PurchaseSnapshot:
    with session_scope() as s:
        p = Purchase(
            user_id=user_id, currency=currency,
            subtotal=quantize(checkout.subtotal), shipping=quantize(checkout.shipping),
            tax=quantize(checkout.tax), total=quantize(checkout.total),
            gateway_total=quantize(checkout.gateway_total),
        )
        for pos, item in enumerate(checkout.items):
            p.items.append(PurchaseItem(
                position=pos, deal_id=item.deal_id, quantity=item.quantity,
                unit_price=quantize(item.unit_price),
                payment_method={k: str(quantize(v))
                                for k, v in item.payment_method.items()},
                data=item.data or None,
            ))
        s.add(p)
        s.flush()
        return _to_snapshot(p)


def load_purchase(purchase_id: int) -> Optional[PurchaseSnapshot]:
    with session_scope() as s:
        p = s.get(Purchase, purchase_id)
        return _to_snapshot(p) if p else None

