# services/payments/base.py
"""
Value objects and error taxonomy for the offsite payment flow.

Everything in here is plain data: the host commerce core produces the
checkout/purchase snapshots, the gateway consumes them and returns
AuthorizationRequest / PaymentRecord values.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any, List, Mapping, Protocol

from services.payments.money import D

PAYMENT_METHOD = "amazon_fps"

STATUS_AUTHORIZED = "authorized"
STATUS_COMPLETE = "complete"
# forward-only ordering of payment statuses
STATUS_ORDER = (STATUS_AUTHORIZED, STATUS_COMPLETE)


# ----- errors -----

class PaymentError(Exception):
    """Base class; every failure is scoped to one checkout attempt."""


class BuildError(PaymentError):
    """The authorization request could not be constructed."""


class TransportError(PaymentError):
    """Network failure or timeout while talking to the provider."""


class ProviderResponseError(PaymentError):
    """The provider answered, but the answer is malformed or incomplete."""


class AlreadyPaid(PaymentError):
    """Not a real failure: another payment already covers the purchase."""

    def __init__(self, payment: Optional["PaymentRecord"]):
        super().__init__("purchase already paid")
        self.payment = payment


# ----- checkout side -----

@dataclass
class ShippingAddress:
    first_name: str = ""
    last_name: str = ""
    street: str = ""
    city: str = ""
    zone: str = ""
    postal_code: str = ""
    country: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ShippingAddress":
        return cls(**{k: str(data.get(k) or "") for k in cls.__dataclass_fields__})

    def as_dict(self) -> Dict[str, str]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass
class CartItem:
    deal_id: int
    quantity: int
    unit_price: Decimal
    # method name -> amount that method is responsible for
    payment_method: Dict[str, Decimal] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CartItem":
        return cls(
            deal_id=int(data["deal_id"]),
            quantity=int(data.get("quantity") or 1),
            unit_price=D(data.get("unit_price")),
            payment_method={k: D(v) for k, v in (
                data.get("payment_method") or {}).items()},
            data=dict(data.get("data") or {}),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "payment_method": {k: str(v) for k, v in self.payment_method.items()},
            "data": self.data,
        }


@dataclass
class CheckoutSession:
    items: List[CartItem]
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    # credit or other gateways covering part of the cart
    covered_elsewhere: Decimal = Decimal("0")
    shipping_address: Optional[ShippingAddress] = None
    return_url: str = ""
    cancel_url: str = ""
    payment_reason: str = ""

    @property
    def gateway_total(self) -> Decimal:
        """What this gateway is actually responsible for charging."""
        return self.total - self.covered_elsewhere

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CheckoutSession":
        ship = data.get("shipping_address")
        return cls(
            items=[CartItem.from_dict(i) for i in data.get("items") or []],
            subtotal=D(data.get("subtotal")),
            shipping=D(data.get("shipping")),
            tax=D(data.get("tax")),
            total=D(data.get("total")),
            covered_elsewhere=D(data.get("covered_elsewhere")),
            shipping_address=ShippingAddress.from_dict(ship) if ship else None,
            return_url=data.get("return_url") or "",
            cancel_url=data.get("cancel_url") or "",
            payment_reason=data.get("payment_reason") or "",
        )


@dataclass
class InboundRequest:
    """The slice of an inbound web request the checkout flow looks at."""
    args: Dict[str, str] = field(default_factory=dict)
    form: Dict[str, str] = field(default_factory=dict)
    checkout_action: Optional[str] = None

    @classmethod
    def from_flask(cls, request) -> "InboundRequest":
        args = request.args.to_dict()
        form = request.form.to_dict()
        action = form.get("checkout_action") or args.get("checkout_action")
        return cls(args=args, form=form, checkout_action=action or None)


@dataclass
class AuthorizationRequest:
    currency_code: str
    total: str
    subtotal: str
    shipping: str
    tax: str
    caller_reference: str
    return_url: str
    cancel_url: str
    payment_reason: str = ""
    shipping_address: Optional[Dict[str, str]] = None
    signature: str = ""


class CheckoutState(str, Enum):
    FRESH = "fresh"
    AWAITING_CALLBACK = "awaiting_callback"
    RETURNED = "returned"


@dataclass
class OffsiteDecision:
    state: CheckoutState
    redirect_url: Optional[str] = None
    redirect_status: int = 302
    error_message: Optional[str] = None
    request: Optional[AuthorizationRequest] = None


# ----- purchase / payment side -----

@dataclass
class PurchaseSnapshot:
    id: int
    user_id: str
    currency: str
    total: Decimal
    items: List[CartItem]
    # amount the buyer approved offsite: total less credit/other gateways
    gateway_total: Decimal = Decimal("0")

    def total_for(self, method: str) -> Decimal:
        """Sum of the item allocations for `method` (subtotal only, no shipping/tax)."""
        return sum((i.payment_method.get(method, Decimal("0")) for i in self.items),
                   Decimal("0"))


@dataclass
class PaymentRecord:
    id: int
    purchase_id: int
    payment_method: str
    amount: Decimal
    currency: str
    transaction_id: str
    status: str
    deals: Dict[str, List[Dict[str, Any]]]
    shipping_address: Optional[Dict[str, str]] = None
    api_response: Optional[Dict[str, Any]] = None


@dataclass
class PayResult:
    transaction_id: str
    amount: Decimal
    currency: str
    status: str
    raw: Dict[str, str]


class PaymentProvider(Protocol):
    name: str
    config: Any                   # GatewayConfig

    def sign_authorization(self, auth: AuthorizationRequest) -> str:
        """Signature for the authorization parameters. ValueError if keys are missing."""

    def cbui_url(self, auth: AuthorizationRequest) -> str:
        """Provider-hosted URL the buyer is redirected to."""

    def pay(self, token: str, amount, currency: str, caller_reference: str) -> PayResult:
        """
        Exchange a single-use token for a charge.
        Raise TransportError / ProviderResponseError; never return a partial result.
        """
