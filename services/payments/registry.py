# services/payments/registry.py
from __future__ import annotations
import os
from dataclasses import dataclass

from flask import current_app, has_app_context

from services.payments.base import PaymentProvider

MODE_SANDBOX = "sandbox"
MODE_PRODUCTION = "production"

_MODE_ALIASES = {
    "sandbox": MODE_SANDBOX,
    "sdbx": MODE_SANDBOX,
    "production": MODE_PRODUCTION,
    "prod": MODE_PRODUCTION,
}


def _cfg(key: str, default: str | None = None) -> str | None:
    v = os.environ.get(key)
    if v is not None:
        return v
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def normalize_mode(mode: str | None) -> str:
    m = (mode or MODE_SANDBOX).strip().lower()
    if m not in _MODE_ALIASES:
        raise RuntimeError(f"Unknown AMAZON_FPS_MODE: {mode}")
    return _MODE_ALIASES[m]


@dataclass(frozen=True)
class GatewayConfig:
    access_key: str
    secret_key: str
    mode: str = MODE_SANDBOX
    currency_code: str = "USD"
    # overrides; empty means "use the URLs the checkout carries"
    return_url: str = ""
    cancel_url: str = ""
    timeout: float = 15.0
    tenant_id: str = "1"
    token_ttl: int = 3600


def load_gateway_config() -> GatewayConfig:
    """Env first, then Flask config."""
    return GatewayConfig(
        access_key=_cfg("AMAZON_FPS_ACCESS_KEY") or "",
        secret_key=_cfg("AMAZON_FPS_SECRET_KEY") or "",
        mode=normalize_mode(_cfg("AMAZON_FPS_MODE", MODE_SANDBOX)),
        currency_code=(_cfg("PAYMENT_CURRENCY") or "USD").upper(),
        return_url=_cfg("AMAZON_FPS_RETURN_URL") or "",
        cancel_url=_cfg("AMAZON_FPS_CANCEL_URL") or "",
        timeout=float(_cfg("AMAZON_FPS_TIMEOUT") or 15),
        tenant_id=str(_cfg("SITE_ID") or "1"),
        token_ttl=int(_cfg("PAYMENT_TOKEN_TTL_SEC") or 3600),
    )


def get_provider(config: GatewayConfig | None = None) -> PaymentProvider:
    from services.payments.amazon_fps import AmazonFPSClient
    return AmazonFPSClient(config or load_gateway_config())
