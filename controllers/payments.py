# controllers/payments.py
from __future__ import annotations
from flask import Blueprint, request, redirect, url_for, abort, jsonify, session, flash, current_app
from flask_login import login_required, current_user

from controllers.auth import admin_required
from models import payments_store
from models.purchases_store import create_purchase_from_checkout, load_purchase
from services.payments.base import (
    BuildError, CheckoutSession, InboundRequest, PaymentError, TransportError,
)
from services.payments.checkout import CheckoutRedirectController
from services.payments.finalizer import PaymentFinalizer
from services.payments.registry import get_provider
from services.payments.token_store import TokenStore

payments_bp = Blueprint("payments", __name__)

# the host writes the cart snapshot here (see CheckoutSession.from_dict)
CHECKOUT_SESSION_KEY = "checkout"
PENDING_PURCHASE_KEY = "pending_purchase_id"


def _gateway():
    client = get_provider()
    cfg = client.config
    tokens = TokenStore(session, cfg.tenant_id,
                        current_user.get_id(), ttl=cfg.token_ttl)
    return (client,
            CheckoutRedirectController(client, tokens),
            PaymentFinalizer(client, tokens, payments_store))


def _checkout() -> CheckoutSession:
    data = session.get(CHECKOUT_SESSION_KEY)
    if not data:
        abort(404)
    try:
        return CheckoutSession.from_dict(data)
    except (KeyError, ValueError) as e:
        current_app.logger.warning("bad checkout snapshot in session: %s", e)
        abort(400)


def _cart_url(client, checkout: CheckoutSession | None = None) -> str:
    return (client.config.cancel_url
            or (checkout.cancel_url if checkout else "")
            or url_for("payments.checkout_page"))


def _payment_json(p) -> dict:
    return {
        "id": p.id, "purchase_id": p.purchase_id, "payment_method": p.payment_method,
        "amount": str(p.amount), "currency": p.currency,
        "transaction_id": p.transaction_id, "status": p.status, "deals": p.deals,
    }


# ----- checkout page load: detects the provider callback -----

@payments_bp.get("/checkout")
@login_required
def checkout_page():
    _, controller, _ = _gateway()
    inbound = InboundRequest.from_flask(request)
    state = controller.back_from_offsite(inbound)
    if inbound.checkout_action == "back_from_offsite":
        return redirect(url_for("payments.review"))
    return jsonify(state=state.value, checkout=session.get(CHECKOUT_SESSION_KEY))


# ----- payment step: send the buyer offsite -----

@payments_bp.post("/checkout")
@login_required
def send_offsite():
    client, controller, _ = _gateway()
    checkout = _checkout()
    decision = controller.send_offsite(checkout, InboundRequest.from_flask(request))

    if decision.error_message:
        flash(decision.error_message, "error")
        return redirect(decision.redirect_url or _cart_url(client, checkout), 303)
    if decision.redirect_url:
        return redirect(decision.redirect_url, decision.redirect_status)
    return jsonify(state=decision.state.value)


# ----- back from the provider: review + pay -----

@payments_bp.get("/checkout/review")
@login_required
def review():
    _, controller, _ = _gateway()
    has_token = controller.tokens.get_token() is not None
    return jsonify(state="review", authorized=has_token,
                   checkout=session.get(CHECKOUT_SESSION_KEY))


@payments_bp.post("/checkout/review")
@login_required
def process_payment():
    client, _, finalizer = _gateway()
    checkout = _checkout()

    purchase = None
    pid = session.get(PENDING_PURCHASE_KEY)
    if pid:
        purchase = load_purchase(pid)
        if purchase and purchase.user_id != current_user.get_id():
            purchase = None
    if purchase is None:
        purchase = create_purchase_from_checkout(
            current_user.get_id(), checkout, client.config.currency_code)
        session[PENDING_PURCHASE_KEY] = purchase.id

    try:
        payment = finalizer.finalize(checkout, purchase)
    except TransportError:
        flash("We could not reach the payment provider. Please try again.", "error")
        return redirect(_cart_url(client, checkout), 303)
    except BuildError as e:
        flash(str(e), "error")
        return redirect(_cart_url(client, checkout), 303)
    except PaymentError:
        flash("The payment could not be completed. Please check out again.", "error")
        return redirect(_cart_url(client, checkout), 303)

    # purchase completed on the host side: capture + activate
    finalizer.complete_purchase(purchase)

    session.pop(PENDING_PURCHASE_KEY, None)
    session.pop(CHECKOUT_SESSION_KEY, None)
    payment = payments_store.get_payment(payment.id) if payment else None
    return jsonify(purchase_id=purchase.id,
                   payment=_payment_json(payment) if payment else None)


# ----- host hook: re-run purchase completion (idempotent) -----

@payments_bp.post("/purchases/<int:purchase_id>/complete")
@admin_required
def complete_purchase(purchase_id: int):
    _, _, finalizer = _gateway()
    purchase = load_purchase(purchase_id)
    if not purchase:
        abort(404)
    done = finalizer.complete_purchase(purchase)
    return jsonify(purchase_id=purchase_id, completed=done,
                   payments=[_payment_json(p) for p in payments_store.get_payments_for_purchase(purchase_id)])
