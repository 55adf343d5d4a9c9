# tests/utils.py
from decimal import Decimal
from urllib.parse import urlencode

from services.payments import signing
from services.payments.amazon_fps import AmazonFPSClient
from services.payments.registry import GatewayConfig


def make_client(**overrides) -> AmazonFPSClient:
    cfg = dict(access_key="AKIDTEST", secret_key="test-secret", mode="sandbox",
               currency_code="USD", tenant_id="7")
    cfg.update(overrides)
    return AmazonFPSClient(GatewayConfig(**cfg))


def checkout_dict(subtotal="20.00", shipping="3.00", tax="2.00", total=None,
                  covered_elsewhere="0", items=None, shipping_address=None):
    if total is None:
        total = str(Decimal(subtotal) + Decimal(shipping) + Decimal(tax))
    if items is None:
        items = [
            {"deal_id": 11, "quantity": 1, "unit_price": "10.00",
             "payment_method": {"amazon_fps": "10.00"}},
            {"deal_id": 12, "quantity": 2, "unit_price": "3.00",
             "payment_method": {"amazon_fps": "6.00"}},
            {"deal_id": 11, "quantity": 1, "unit_price": "4.00",
             "payment_method": {"amazon_fps": "4.00"}},
        ]
    return {
        "items": items,
        "subtotal": subtotal, "shipping": shipping, "tax": tax, "total": total,
        "covered_elsewhere": covered_elsewhere,
        "shipping_address": shipping_address,
        "return_url": "https://shop.example.com/checkout",
        "cancel_url": "https://shop.example.com/cart",
        "payment_reason": "Group deal purchase",
    }


class FakeResponse:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code


def pay_response(client, sign=True, **fields) -> str:
    resp = {
        "TransactionId": "14GN6D3TLAQ8C2CC1F5TVLR7NMPR2JNL5C1",
        "TransactionStatus": "Pending",
        "TransactionAmount.Value": "25.00",
        "TransactionAmount.CurrencyCode": "USD",
    }
    resp.update(fields)
    resp = {k: v for k, v in resp.items() if v is not None}
    if sign:
        resp["Signature"] = signing.sign(
            client.config.secret_key, "POST", client.api_url, resp)
    return urlencode(resp)


class RecordingPost:
    """Stands in for requests.post and remembers what was sent."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    def __call__(self, url, data=None, timeout=None, **kw):
        self.calls.append({"url": url, "data": dict(data or {}), "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def login(client, user_id="alice", role="user"):
    with client.session_transaction() as sess:
        sess["_user_id"] = user_id
        sess["_fresh"] = True
        sess["role"] = role


def set_checkout(client, data):
    with client.session_transaction() as sess:
        sess["checkout"] = data
