# services/payments/events.py
"""
Downstream notifications for payments.

Each notification is a blinker signal (the same mechanism Flask uses for
its own signals) plus a row in payment_events, so fulfillment code can
subscribe in-process and operators can see what fired.

    from services.payments.events import payment_authorized

    @payment_authorized.connect
    def activate_vouchers(payment, **extra): ...
"""

from __future__ import annotations
import logging
from dataclasses import asdict
from typing import Any, Callable, Optional

from blinker import Namespace

from services.metrics import NOTIFICATIONS
from services.payments.base import PaymentRecord

logger = logging.getLogger(__name__)

_signals = Namespace()

payment_authorized = _signals.signal("payment_authorized")
payment_captured = _signals.signal("payment_captured")
payment_complete = _signals.signal("payment_complete")


def _default_recorder(event_type: str, payment: PaymentRecord, extra: dict) -> None:
    from models.payments_store import record_payment_event
    payload = {k: v for k, v in asdict(payment).items() if k != "api_response"}
    payload.update(extra)
    record_payment_event(event_type, payment.id, payment.purchase_id, payload)


class Notifier:
    def __init__(self, recorder: Optional[Callable[[str, PaymentRecord, dict], Any]] = None):
        self.recorder = recorder or _default_recorder

    def _emit(self, signal, payment: PaymentRecord, **extra) -> None:
        self.recorder(signal.name, payment, extra)
        NOTIFICATIONS.labels(event=signal.name).inc()
        logger.info("%s payment=%s purchase=%s",
                    signal.name, payment.id, payment.purchase_id)
        signal.send(payment, **extra)

    def payment_authorized(self, payment: PaymentRecord) -> None:
        self._emit(payment_authorized, payment)

    def payment_captured(self, payment: PaymentRecord, items_captured: list) -> None:
        self._emit(payment_captured, payment, items_captured=items_captured)

    def payment_complete(self, payment: PaymentRecord) -> None:
        self._emit(payment_complete, payment)
