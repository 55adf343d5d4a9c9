# services/metrics.py
from __future__ import annotations
import os

os.environ.setdefault("PROMETHEUS_DISABLE_CREATED_SERIES", "1")

from prometheus_client import (  # noqa: E402
    Counter, Histogram, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST,
)

# Use a DEDICATED registry so only our app metrics show up
APP_REGISTRY = CollectorRegistry(auto_describe=True)

# --- Generic HTTP metrics (bind to our registry) ---
REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests total",
    ["method", "endpoint", "status"], registry=APP_REGISTRY
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Request latency (seconds)",
    ["endpoint", "method"], registry=APP_REGISTRY,
)

# --- Offsite payment flow ---
OFFSITE_REDIRECTS = Counter(
    "payments_offsite_redirects_total", "Checkout redirect decisions",
    ["provider", "outcome"], registry=APP_REGISTRY
)
FINALIZE_RESULTS = Counter(
    "payments_finalize_total", "Payment finalize attempts",
    ["provider", "outcome"], registry=APP_REGISTRY
)
PROVIDER_LATENCY = Histogram(
    "payments_provider_request_seconds", "Provider Pay request latency (seconds)",
    ["provider"], registry=APP_REGISTRY,
)
NOTIFICATIONS = Counter(
    "payments_notifications_total", "Payment notifications emitted",
    ["event"], registry=APP_REGISTRY
)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    for outcome in ("redirect", "skipped", "error", "returned"):
        OFFSITE_REDIRECTS.labels(provider="amazon_fps", outcome=outcome).inc(0)
    for outcome in ("authorized", "already_paid", "transport_error", "response_error", "build_error"):
        FINALIZE_RESULTS.labels(provider="amazon_fps", outcome=outcome).inc(0)
    for event in ("payment_authorized", "payment_captured", "payment_complete"):
        NOTIFICATIONS.labels(event=event).inc(0)
