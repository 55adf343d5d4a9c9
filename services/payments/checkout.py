# services/payments/checkout.py
"""
Checkout redirect controller.

Instead of landing the buyer on the local payment page, set up the
authorization and send them to the provider. When they come back with a
token, remember it and tell the host this is a resumed checkout.

    FRESH --(payment step, no token)--> AWAITING_CALLBACK   (redirect out)
    *     --(token in callback)-------> RETURNED
    FRESH --(no token, no action)-----> FRESH               (stale token cleared)
"""

from __future__ import annotations
import logging
from urllib.parse import unquote

from services.metrics import OFFSITE_REDIRECTS
from services.payments.base import (
    BuildError, CheckoutSession, CheckoutState, InboundRequest, OffsiteDecision,
    PaymentProvider,
)
from services.payments.builder import build_authorization_request
from services.payments.money import is_chargeable
from services.payments.token_store import TokenStore

logger = logging.getLogger(__name__)

TOKEN_PARAM = "tokenID"
PAYMENT_PAGE = "payment"
BACK_FROM_OFFSITE = "back_from_offsite"


def returned_from_offsite(inbound: InboundRequest) -> bool:
    return bool(inbound.args.get(TOKEN_PARAM))


class CheckoutRedirectController:
    def __init__(self, client: PaymentProvider, tokens: TokenStore):
        self.client = client
        self.tokens = tokens

    def back_from_offsite(self, inbound: InboundRequest) -> CheckoutState:
        """Runs when the cart/checkout loads."""
        if returned_from_offsite(inbound):
            self.tokens.set_token(unquote(inbound.args[TOKEN_PARAM]))
            # not a fresh start: the host lands the buyer on payment review
            inbound.checkout_action = BACK_FROM_OFFSITE
            OFFSITE_REDIRECTS.labels(provider=self.client.name, outcome="returned").inc()
            logger.info("buyer returned from offsite, caller_reference=%s status=%s",
                        inbound.args.get("callerReference"), inbound.args.get("status"))
            return CheckoutState.RETURNED
        if not inbound.checkout_action:
            # new checkout; an old approval must not pay for a different cart
            self.tokens.clear_token()
        return CheckoutState.FRESH

    def send_offsite(self, checkout: CheckoutSession, inbound: InboundRequest) -> OffsiteDecision:
        if not is_chargeable(checkout.total):  # free deals
            OFFSITE_REDIRECTS.labels(provider=self.client.name, outcome="skipped").inc()
            return OffsiteDecision(state=CheckoutState.FRESH)

        if returned_from_offsite(inbound) or inbound.checkout_action != PAYMENT_PAGE:
            state = (CheckoutState.RETURNED if returned_from_offsite(inbound)
                     or self.tokens.get_token() else CheckoutState.FRESH)
            return OffsiteDecision(state=state)

        try:
            auth = build_authorization_request(checkout, self.client)
            url = self.client.cbui_url(auth)
        except BuildError as e:
            logger.warning("could not start offsite authorization: %s", e)
            OFFSITE_REDIRECTS.labels(provider=self.client.name, outcome="error").inc()
            return OffsiteDecision(
                state=CheckoutState.FRESH,
                redirect_url=self.client.config.cancel_url or checkout.cancel_url,
                redirect_status=303,
                error_message=str(e),
            )

        OFFSITE_REDIRECTS.labels(provider=self.client.name, outcome="redirect").inc()
        logger.info("sending buyer offsite, caller_reference=%s total=%s %s",
                    auth.caller_reference, auth.total, auth.currency_code)
        return OffsiteDecision(state=CheckoutState.AWAITING_CALLBACK,
                               redirect_url=url, request=auth)
