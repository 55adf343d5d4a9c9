# services/payments/amazon_fps.py
"""
Thin Amazon FPS client: builds the co-branded UI (CBUI) redirect for a
single-use authorization and posts the Pay request that moves the money.

Configuration comes from GatewayConfig (see registry.load_gateway_config):
  AMAZON_FPS_ACCESS_KEY   caller key / AWSAccessKeyId
  AMAZON_FPS_SECRET_KEY   HMAC secret for request signing
  AMAZON_FPS_MODE         sandbox | production (aliases: sdbx, prod)
  AMAZON_FPS_TIMEOUT      seconds for the Pay call (default 15)
"""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Dict, Any
from urllib.parse import urlencode, parse_qsl

import requests

from services.payments import signing
from services.payments.base import (
    PAYMENT_METHOD, AuthorizationRequest, BuildError, PayResult, TransportError,
    ProviderResponseError,
)
from services.payments.money import D, fmt
from services.payments.registry import GatewayConfig, MODE_PRODUCTION

logger = logging.getLogger(__name__)

PROD_ENDPOINT_URL = "https://fps.amazonaws.com/"
SDBX_ENDPOINT_URL = "https://fps.sandbox.amazonaws.com/"
CBUI_PROD_ENDPOINT_URL = "https://authorize.payments.amazon.com/cobranded-ui/actions/start"
CBUI_SDBX_ENDPOINT_URL = "https://authorize.payments-sandbox.amazon.com/cobranded-ui/actions/start"

API_VERSION = "2010-08-28"
CBUI_VERSION = "2009-01-09"
PIPELINE_NAME = "SingleUse"

# never written to logs
_SECRET_FIELDS = {"Signature", "signature", "SenderTokenId", "AWSAccessKeyId", "callerKey"}


def _redact(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("***" if k in _SECRET_FIELDS else v) for k, v in params.items()}


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AmazonFPSClient:
    name = PAYMENT_METHOD

    def __init__(self, config: GatewayConfig):
        self.config = config

    @property
    def api_url(self) -> str:
        if self.config.mode == MODE_PRODUCTION:
            return PROD_ENDPOINT_URL
        return SDBX_ENDPOINT_URL

    @property
    def cbui_endpoint(self) -> str:
        if self.config.mode == MODE_PRODUCTION:
            return CBUI_PROD_ENDPOINT_URL
        return CBUI_SDBX_ENDPOINT_URL

    # ----- authorization (redirect) -----

    def cbui_params(self, auth: AuthorizationRequest) -> Dict[str, str]:
        """Provider parameters for one single-use pipeline."""
        params = {
            "callerKey": self.config.access_key,
            "callerReference": auth.caller_reference,
            "returnURL": auth.return_url,
            "transactionAmount": auth.total,
            "pipelineName": PIPELINE_NAME,
            "version": CBUI_VERSION,
            "currencyCode": auth.currency_code,
            "itemTotal": auth.subtotal,
            "shipping": auth.shipping,
            "tax": auth.tax,
            "signatureMethod": signing.SIGNATURE_METHOD,
            "signatureVersion": signing.SIGNATURE_VERSION,
        }
        if auth.payment_reason:
            params["paymentReason"] = auth.payment_reason
        if auth.cancel_url:
            params["cancelURL"] = auth.cancel_url
        ship = auth.shipping_address
        if ship:
            params.update({
                "addressLine1": ship.get("street", ""),
                "city": ship.get("city", ""),
                "state": ship.get("zone", ""),
                "zip": ship.get("postal_code", ""),
                "country": ship.get("country", ""),
            })
        return params

    def sign_authorization(self, auth: AuthorizationRequest) -> str:
        return signing.sign(self.config.secret_key, "GET", self.cbui_endpoint,
                            self.cbui_params(auth), signature_field="signature")

    def cbui_url(self, auth: AuthorizationRequest) -> str:
        """
        Full provider-hosted URL to send the buyer to.
        Refuses to build a URL whose parameters no longer match the signature
        attached by the builder.
        """
        params = self.cbui_params(auth)
        params["signature"] = auth.signature
        if not signing.verify(self.config.secret_key, "GET", self.cbui_endpoint, params,
                              signature_field="signature"):
            raise BuildError("authorization request signature does not match its parameters")
        logger.debug("CBUI pipeline params: %s", _redact(params))
        return f"{self.cbui_endpoint}?{urlencode(params)}"

    # ----- Pay -----

    def pay_params(self, token: str, amount, currency: str, caller_reference: str) -> Dict[str, str]:
        params = {
            "Action": "Pay",
            "AWSAccessKeyId": self.config.access_key,
            "SenderTokenId": token,
            "CallerReference": caller_reference,
            "TransactionAmount.Value": fmt(amount),
            "TransactionAmount.CurrencyCode": currency,
            "Timestamp": _timestamp(),
            "Version": API_VERSION,
            "SignatureMethod": signing.SIGNATURE_METHOD,
            "SignatureVersion": signing.SIGNATURE_VERSION,
        }
        params["Signature"] = signing.sign(
            self.config.secret_key, "POST", self.api_url, params)
        return params

    def pay(self, token: str, amount, currency: str, caller_reference: str) -> PayResult:
        """
        Single attempt, bounded by config.timeout. No retry: the buyer
        re-initiates checkout if this fails.
        """
        params = self.pay_params(token, amount, currency, caller_reference)
        logger.debug("FPS Pay request: %s", _redact(params))
        try:
            r = requests.post(self.api_url, data=params,
                              timeout=self.config.timeout)
        except requests.RequestException as e:
            raise TransportError(f"FPS Pay request failed: {e}") from e

        if r.status_code >= 500:
            raise TransportError(f"FPS Pay returned HTTP {r.status_code}")
        if r.status_code >= 400:
            raise ProviderResponseError(
                f"FPS Pay rejected the request (HTTP {r.status_code})")

        resp = dict(parse_qsl(r.text or "", keep_blank_values=True))
        logger.debug("FPS Pay response: %s", _redact(resp))
        return self.parse_pay_response(resp)

    def parse_pay_response(self, resp: Dict[str, str]) -> PayResult:
        if "Signature" in resp and not signing.verify(
                self.config.secret_key, "POST", self.api_url, resp):
            raise ProviderResponseError("response signature mismatch")

        status = resp.get("TransactionStatus") or ""
        if status.lower() == "failure":
            raise ProviderResponseError(
                resp.get("StatusMessage") or "transaction failed")

        txn_id = (resp.get("TransactionId") or "").strip()
        if not txn_id:
            raise ProviderResponseError("response has no TransactionId")

        raw_amount = resp.get("TransactionAmount.Value")
        if raw_amount in (None, ""):
            raise ProviderResponseError("response has no transaction amount")
        try:
            amount = D(raw_amount)
        except ValueError as e:
            raise ProviderResponseError(f"bad transaction amount: {raw_amount!r}") from e
        if not amount.is_finite() or amount < 0:
            raise ProviderResponseError(f"negative transaction amount: {raw_amount}")

        return PayResult(
            transaction_id=txn_id,
            amount=amount,
            currency=resp.get("TransactionAmount.CurrencyCode") or self.config.currency_code,
            status=status or "Pending",
            raw=resp,
        )
