from decimal import Decimal

import pytest
import requests

from models import payments_store
from models.purchases_store import create_purchase_from_checkout
from services.payments import events
from services.payments.base import (
    BuildError, CheckoutSession, ProviderResponseError, TransportError,
)
from services.payments.builder import build_authorization_request
from services.payments.finalizer import PaymentFinalizer, group_deals
from services.payments.token_store import TokenStore
from tests.utils import make_client, checkout_dict, pay_response, FakeResponse, RecordingPost

SHIP = {"first_name": "Ann", "last_name": "Lee", "street": "1 Main St", "city": "Springfield",
        "zone": "IL", "postal_code": "62701", "country": "US"}


@pytest.fixture()
def fps():
    return make_client()


@pytest.fixture()
def tokens():
    t = TokenStore({}, tenant_id="7", user_id="alice")
    t.set_token("TOK123")
    return t


@pytest.fixture()
def finalizer(fps, tokens):
    return PaymentFinalizer(fps, tokens, payments_store)


@pytest.fixture()
def checkout():
    return CheckoutSession.from_dict(checkout_dict(shipping_address=SHIP))


@pytest.fixture()
def purchase(checkout):
    return create_purchase_from_checkout("alice", checkout, "USD")


def _provider(monkeypatch, fps, **fields):
    post = RecordingPost(FakeResponse(pay_response(fps, **fields)))
    monkeypatch.setattr(requests, "post", post)
    return post


def test_finalize_creates_authorized_payment(monkeypatch, finalizer, fps, tokens, checkout, purchase):
    post = _provider(monkeypatch, fps, TransactionId="TXN-1")

    payment = finalizer.finalize(checkout, purchase)

    sent = post.calls[0]["data"]
    assert sent["SenderTokenId"] == "TOK123"
    # items sum to 20.00; shipping and tax were approved offsite too
    assert sent["TransactionAmount.Value"] == "25.00"
    assert payment.status == "authorized"
    assert payment.amount == Decimal("25.00")
    assert payment.transaction_id == "TXN-1"
    assert payment.shipping_address["city"] == "Springfield"
    assert payment.purchase_id == purchase.id
    # single use
    assert tokens.get_token() is None


def test_deals_grouped_by_deal_in_item_order(purchase):
    deals = group_deals(purchase, "amazon_fps")
    assert list(deals) == ["11", "12"]
    assert [i["unit_price"] for i in deals["11"]] == ["10.00", "4.00"]
    assert deals["12"][0]["quantity"] == 2


def test_items_paid_elsewhere_are_left_out():
    data = checkout_dict(items=[
        {"deal_id": 1, "quantity": 1, "unit_price": "10.00",
         "payment_method": {"account_balance": "10.00"}},
        {"deal_id": 2, "quantity": 1, "unit_price": "15.00",
         "payment_method": {"amazon_fps": "15.00"}},
    ])
    purchase = create_purchase_from_checkout("alice", CheckoutSession.from_dict(data))
    assert list(group_deals(purchase, "amazon_fps")) == ["2"]
    assert purchase.total_for("amazon_fps") == Decimal("15.00")


def test_missing_transaction_id_creates_no_payment(monkeypatch, finalizer, fps, tokens, checkout, purchase):
    _provider(monkeypatch, fps, TransactionId=None)
    with pytest.raises(ProviderResponseError):
        finalizer.finalize(checkout, purchase)
    assert payments_store.get_payments_for_purchase(purchase.id) == []
    # the approval is still there; the buyer may retry
    assert tokens.get_token() == "TOK123"


def test_transport_error_creates_no_payment(monkeypatch, finalizer, checkout, purchase):
    post = RecordingPost(requests.ConnectionError("down"))
    monkeypatch.setattr(requests, "post", post)
    with pytest.raises(TransportError):
        finalizer.finalize(checkout, purchase)
    assert len(post.calls) == 1  # no retry
    assert payments_store.get_payments_for_purchase(purchase.id) == []


def test_missing_token_is_build_error(monkeypatch, fps, checkout, purchase):
    post = _provider(monkeypatch, fps)
    finalizer = PaymentFinalizer(fps, TokenStore({}, "7", "alice"), payments_store)
    with pytest.raises(BuildError):
        finalizer.finalize(checkout, purchase)
    assert post.calls == []


def test_already_paid_returns_existing_without_network(monkeypatch, finalizer, checkout, purchase):
    existing = payments_store.new_payment(
        purchase_id=purchase.id, payment_method="amazon_fps", amount=Decimal("25.00"),
        currency="USD", transaction_id="EARLIER", deals={})
    post = RecordingPost(AssertionError("no network call expected"))
    monkeypatch.setattr(requests, "post", post)

    payment = finalizer.finalize(checkout, purchase)

    assert payment.id == existing.id
    assert post.calls == []


def test_covered_by_other_gateway_returns_that_payment(monkeypatch, finalizer):
    data = checkout_dict(covered_elsewhere="25.00",
                         items=[{"deal_id": 1, "quantity": 1, "unit_price": "20.00",
                                 "payment_method": {"account_balance": "20.00"}}])
    checkout = CheckoutSession.from_dict(data)
    purchase = create_purchase_from_checkout("alice", checkout)
    other = payments_store.new_payment(
        purchase_id=purchase.id, payment_method="account_balance", amount=Decimal("25.00"),
        currency="USD", transaction_id="CREDIT-1", deals={})
    monkeypatch.setattr(requests, "post", RecordingPost(AssertionError("unexpected")))

    assert finalizer.finalize(checkout, purchase).id == other.id


def test_token_cannot_pay_twice(monkeypatch, finalizer, fps, tokens, checkout, purchase):
    post = _provider(monkeypatch, fps, TransactionId="TXN-ONCE")
    first = finalizer.finalize(checkout, purchase)

    tokens.set_token("TOK123")  # replayed approval
    second = finalizer.finalize(checkout, purchase)

    assert second.id == first.id
    assert len(post.calls) == 1
    assert len(payments_store.get_payments_for_purchase(purchase.id)) == 1


def test_authorized_notification_is_sent_and_logged(monkeypatch, finalizer, fps, checkout, purchase):
    _provider(monkeypatch, fps, TransactionId="TXN-N")
    seen = []

    def receiver(payment, **extra):
        seen.append(payment.transaction_id)

    events.payment_authorized.connect(receiver)
    try:
        finalizer.finalize(checkout, purchase)
    finally:
        events.payment_authorized.disconnect(receiver)

    assert seen == ["TXN-N"]
    logged = payments_store.list_payment_events(purchase.id)
    assert [e["event_type"] for e in logged] == ["payment_authorized"]


def test_complete_purchase_runs_once(monkeypatch, finalizer, fps, checkout, purchase):
    _provider(monkeypatch, fps, TransactionId="TXN-C")
    payment = finalizer.finalize(checkout, purchase)
    captured = []

    def on_captured(p, items_captured=None, **extra):
        captured.append(items_captured)

    events.payment_captured.connect(on_captured)
    try:
        assert finalizer.complete_purchase(purchase) is True
        assert finalizer.complete_purchase(purchase) is False
    finally:
        events.payment_captured.disconnect(on_captured)

    assert captured == [[11, 12, 11]]
    assert payments_store.get_payment(payment.id).status == "complete"
    kinds = [e["event_type"] for e in payments_store.list_payment_events(purchase.id)]
    assert kinds == ["payment_authorized", "payment_captured", "payment_complete"]


def test_status_never_moves_backwards(purchase):
    p = payments_store.new_payment(
        purchase_id=purchase.id, payment_method="amazon_fps", amount=Decimal("1.00"),
        currency="USD", transaction_id="TXN-B", deals={})
    payments_store.set_payment_status(p.id, "complete")
    with pytest.raises(ValueError):
        payments_store.set_payment_status(p.id, "authorized")


def test_payment_requires_transaction_id_and_amount(purchase):
    with pytest.raises(ValueError):
        payments_store.new_payment(purchase_id=purchase.id, payment_method="amazon_fps",
                                   amount=Decimal("1.00"), currency="USD",
                                   transaction_id="", deals={})
    with pytest.raises(ValueError):
        payments_store.new_payment(purchase_id=purchase.id, payment_method="amazon_fps",
                                   amount=Decimal("-1.00"), currency="USD",
                                   transaction_id="T", deals={})


def test_pay_amount_matches_offsite_authorization_after_credit(monkeypatch, fps, tokens):
    checkout = CheckoutSession.from_dict(checkout_dict(covered_elsewhere="5.00"))
    purchase = create_purchase_from_checkout("alice", checkout)
    auth = build_authorization_request(checkout, fps)
    post = _provider(monkeypatch, fps, TransactionId="TXN-CR", **{"TransactionAmount.Value": "20.00"})

    payment = PaymentFinalizer(fps, tokens, payments_store).finalize(checkout, purchase)

    assert auth.total == "20.00"
    assert post.calls[0]["data"]["TransactionAmount.Value"] == auth.total
    assert payment.amount == Decimal("20.00")


@pytest.mark.parametrize("fields", [
    {"TransactionAmount.Value": "0.01"},
    {"TransactionAmount.Value": "250.00"},
    {"TransactionAmount.CurrencyCode": "EUR"},
])
def test_charge_that_differs_from_due_is_rejected(monkeypatch, finalizer, fps, tokens,
                                                  checkout, purchase, fields):
    _provider(monkeypatch, fps, TransactionId="TXN-ODD", **fields)
    with pytest.raises(ProviderResponseError):
        finalizer.finalize(checkout, purchase)
    assert payments_store.get_payments_for_purchase(purchase.id) == []
    assert tokens.get_token() == "TOK123"


def test_repeated_transaction_id_is_response_error(monkeypatch, finalizer, fps, checkout, purchase):
    other = create_purchase_from_checkout("bob", checkout)
    payments_store.new_payment(
        purchase_id=other.id, payment_method="amazon_fps", amount=Decimal("25.00"),
        currency="USD", transaction_id="TXN-DUP", deals={})
    _provider(monkeypatch, fps, TransactionId="TXN-DUP")

    with pytest.raises(ProviderResponseError):
        finalizer.finalize(checkout, purchase)
    assert payments_store.get_payments_for_purchase(purchase.id) == []


def test_failed_completion_can_be_retried(monkeypatch, finalizer, fps, checkout, purchase):
    _provider(monkeypatch, fps, TransactionId="TXN-R")
    payment = finalizer.finalize(checkout, purchase)
    completed = []

    def broken(p, **extra):
        raise RuntimeError("voucher service down")

    def on_complete(p, **extra):
        completed.append(p.id)

    events.payment_captured.connect(broken)
    try:
        with pytest.raises(RuntimeError):
            finalizer.complete_purchase(purchase)
    finally:
        events.payment_captured.disconnect(broken)
    assert payments_store.get_payment(payment.id).status == "authorized"

    events.payment_complete.connect(on_complete)
    try:
        assert finalizer.complete_purchase(purchase) is True
        assert finalizer.complete_purchase(purchase) is False
    finally:
        events.payment_complete.disconnect(on_complete)

    assert completed == [payment.id]
    assert payments_store.get_payment(payment.id).status == "complete"
