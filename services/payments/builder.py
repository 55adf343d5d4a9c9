# services/payments/builder.py
from __future__ import annotations
import logging
import uuid
from decimal import Decimal

from services.payments.base import AuthorizationRequest, BuildError, CheckoutSession, PaymentProvider
from services.payments.money import quantize, fmt, is_chargeable, ZERO

logger = logging.getLogger(__name__)

# Used by the provider to reference the incoming request
CALLER_REFERENCE_PREFIX = "gbs_"


def new_caller_reference() -> str:
    return f"{CALLER_REFERENCE_PREFIX}{uuid.uuid4().hex}"


def _apply_credit(subtotal: Decimal, shipping: Decimal, tax: Decimal,
                  credit: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    """Take credit out of subtotal first, then shipping, then tax."""
    lines = [subtotal, shipping, tax]
    for i, amount in enumerate(lines):
        if credit <= 0:
            break
        used = min(amount, credit)
        lines[i] = amount - used
        credit -= used
    return lines[0], lines[1], lines[2]


def build_authorization_request(checkout: CheckoutSession, client: PaymentProvider,
                                caller_reference: str | None = None) -> AuthorizationRequest:
    """
    Map a checkout snapshot to the provider's authorization parameters.

    Raises BuildError instead of producing a request the provider would
    reject (nothing to charge, missing return URL, ...).
    """
    config = client.config
    if not is_chargeable(checkout.total):
        raise BuildError("Nothing to pay for this cart.")

    filtered_total = quantize(checkout.gateway_total)
    if not is_chargeable(filtered_total):
        raise BuildError("The remaining balance is below the minimum charge.")

    cart_total = quantize(checkout.total)
    subtotal = quantize(checkout.subtotal)
    shipping = quantize(checkout.shipping)
    tax = quantize(checkout.tax)
    if filtered_total < cart_total:
        subtotal, shipping, tax = _apply_credit(
            subtotal, shipping, tax, cart_total - filtered_total)

    # the provider rejects a zero primary line item but allows zero shipping/tax
    if fmt(subtotal) == ZERO:
        if fmt(shipping) != ZERO:
            subtotal, shipping = shipping, Decimal("0")
        elif fmt(tax) != ZERO:
            subtotal, tax = tax, Decimal("0")
        else:
            subtotal = filtered_total

    req = AuthorizationRequest(
        currency_code=config.currency_code,
        total=fmt(filtered_total),
        subtotal=fmt(subtotal),
        shipping=fmt(shipping),
        tax=fmt(tax),
        caller_reference=caller_reference or new_caller_reference(),
        return_url=config.return_url or checkout.return_url,
        cancel_url=config.cancel_url or checkout.cancel_url,
        payment_reason=checkout.payment_reason,
        shipping_address=(checkout.shipping_address.as_dict()
                          if checkout.shipping_address else None),
    )

    missing = [name for name, value in (
        ("caller reference", req.caller_reference),
        ("return URL", req.return_url),
    ) if not value]
    if missing:
        raise BuildError("Payment request is missing: " + ", ".join(missing))

    try:
        req.signature = client.sign_authorization(req)
    except ValueError as e:
        raise BuildError("Payment gateway is not configured.") from e
    logger.debug("built authorization request %s total=%s %s",
                 req.caller_reference, req.total, req.currency_code)
    return req
