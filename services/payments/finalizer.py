# services/payments/finalizer.py
from __future__ import annotations
import logging
import time
from decimal import Decimal
from typing import Optional

from services.metrics import FINALIZE_RESULTS, PROVIDER_LATENCY
from services.payments.base import (
    AlreadyPaid, BuildError, CheckoutSession, PaymentProvider, PaymentRecord, PayResult,
    ProviderResponseError, PurchaseSnapshot, TransportError, STATUS_AUTHORIZED,
    STATUS_COMPLETE,
)
from services.payments.builder import new_caller_reference
from services.payments.events import Notifier
from services.payments.money import is_chargeable, quantize
from services.payments.token_store import TokenStore

logger = logging.getLogger(__name__)


def group_deals(purchase: PurchaseSnapshot, method: str) -> dict:
    """Items paid (at least partly) with `method`, grouped by deal id in purchase order."""
    deals: dict = {}
    for item in purchase.items:
        if method in item.payment_method:
            deals.setdefault(str(item.deal_id), []).append(item.as_dict())
    return deals


class PaymentFinalizer:
    def __init__(self, client: PaymentProvider, tokens: TokenStore, payments,
                 notifier: Optional[Notifier] = None):
        self.client = client
        self.tokens = tokens
        # repository: new_payment / get_payments_for_purchase / set_payment_status /
        # claim_purchase_completion / release_purchase_completion
        # (models.payments_store in the app)
        self.payments = payments
        self.notifier = notifier or Notifier()

    @property
    def method(self) -> str:
        return self.client.name

    def _ensure_payable(self, purchase: PurchaseSnapshot) -> Decimal:
        existing = self.payments.get_payments_for_purchase(purchase.id)
        paid_here = sum((p.amount for p in existing if p.payment_method == self.method),
                        Decimal("0"))
        due = purchase.gateway_total - paid_here
        if not is_chargeable(due):
            # another handler (or an earlier attempt) already took care of it
            raise AlreadyPaid(existing[0] if existing else None)
        return due

    def finalize(self, checkout: CheckoutSession, purchase: PurchaseSnapshot) -> Optional[PaymentRecord]:
        """
        Exchange the stored token for an authorization and record the Payment.

        Returns the existing Payment when nothing is left to pay; raises a
        PaymentError subclass otherwise. A Payment row is only written once
        the provider response carries a transaction id and charged exactly
        the amount due, in the purchase currency.
        """
        try:
            due = self._ensure_payable(purchase)
        except AlreadyPaid as e:
            FINALIZE_RESULTS.labels(provider=self.method, outcome="already_paid").inc()
            return e.payment

        token = self.tokens.get_token()
        if not token:
            FINALIZE_RESULTS.labels(provider=self.method, outcome="build_error").inc()
            raise BuildError("No payment authorization found. Please check out again.")

        currency = purchase.currency or self.client.config.currency_code
        try:
            t0 = time.perf_counter()
            try:
                result = self.client.pay(token, due, currency, new_caller_reference())
            finally:
                PROVIDER_LATENCY.labels(provider=self.method).observe(time.perf_counter() - t0)
            self._check_amount(result, due, currency)
            payment = self.payments.new_payment(
                purchase_id=purchase.id,
                payment_method=self.method,
                amount=result.amount,
                currency=result.currency,
                transaction_id=result.transaction_id,
                deals=group_deals(purchase, self.method),
                shipping_address=(checkout.shipping_address.as_dict()
                                  if checkout.shipping_address else None),
                api_response=result.raw,
                status=STATUS_AUTHORIZED,
            )
        except TransportError:
            FINALIZE_RESULTS.labels(provider=self.method, outcome="transport_error").inc()
            logger.exception("Pay request failed for purchase %s", purchase.id)
            raise
        except ProviderResponseError as e:
            FINALIZE_RESULTS.labels(provider=self.method, outcome="response_error").inc()
            logger.warning("Pay response rejected for purchase %s: %s", purchase.id, e)
            raise

        # single use
        self.tokens.clear_token()
        FINALIZE_RESULTS.labels(provider=self.method, outcome="authorized").inc()
        logger.info("payment %s authorized for purchase %s: %s %s (txn %s)",
                    payment.id, purchase.id, payment.amount, payment.currency,
                    payment.transaction_id)
        self.notifier.payment_authorized(payment)
        return payment

    @staticmethod
    def _check_amount(result: PayResult, due: Decimal, currency: str) -> None:
        if result.amount != quantize(due):
            raise ProviderResponseError(
                f"provider charged {result.amount}, expected {quantize(due)}")
        if (result.currency or "").upper() != (currency or "").upper():
            raise ProviderResponseError(
                f"provider charged in {result.currency}, expected {currency}")

    def complete_purchase(self, purchase: PurchaseSnapshot) -> bool:
        """
        Capture + complete every authorized Payment on the purchase, otherwise
        vouchers are never activated. Runs once per purchase; later calls are
        no-ops and return False.

        If a receiver fails part way, the claim is released and the error
        propagates. Payments already marked complete are not notified again
        on the retry.
        """
        if not self.payments.claim_purchase_completion(purchase.id, self.method):
            logger.info("purchase %s already completed, skipping", purchase.id)
            return False

        items_captured = [item.deal_id for item in purchase.items]
        try:
            for payment in self.payments.get_payments_for_purchase(purchase.id):
                if payment.status == STATUS_COMPLETE:
                    continue
                self.notifier.payment_captured(payment, items_captured)
                self.notifier.payment_complete(payment)
                self.payments.set_payment_status(payment.id, STATUS_COMPLETE)
        except Exception:
            logger.exception("completing purchase %s failed; releasing claim", purchase.id)
            self.payments.release_purchase_completion(purchase.id, self.method)
            raise
        return True
