from __future__ import annotations

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

_NS = "chatapi"

# HTTP
HTTP_REQUESTS = Counter(
    "http_requests_total",
    "Requests served, by route template and status",
    ["method", "route", "status"],
    namespace=_NS,
)
HTTP_SERVER_ERRORS = Counter(
    "http_server_errors_total",
    "Requests answered with a 5xx status",
    ["method", "route"],
    namespace=_NS,
)
HTTP_LATENCY = Histogram(
    "http_request_seconds",
    "Time spent producing a response",
    ["method", "route"],
    namespace=_NS,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)
HTTP_IN_FLIGHT = Gauge(
    "http_requests_in_flight",
    "Requests currently being handled",
    ["method"],
    namespace=_NS,
)

# Auth
AUTH_EVENTS = Counter(
    "auth_events_total",
    "Login steps by stage and outcome",
    ["stage", "outcome"],
    namespace=_NS,
)
RATE_LIMITED = Counter(
    "rate_limited_total",
    "Attempts rejected by a rate gate",
    ["gate"],
    namespace=_NS,
)

# Broker
BROKER_PUBLISHED = Counter(
    "broker_published_total",
    "Messages handed to the broker",
    namespace=_NS,
)
BROKER_DELIVERED = Counter(
    "broker_delivered_total",
    "Per-subscription deliveries made by the broker",
    namespace=_NS,
)
BROKER_SUBSCRIPTIONS = Gauge(
    "broker_subscriptions",
    "Attached broker subscriptions in this process",
    namespace=_NS,
)

PROCESS_UPTIME = Gauge("uptime_seconds", "Seconds since the app module was loaded", namespace=_NS)
BUILD_INFO = Info("build", "Service name and version", namespace=_NS)

_LOADED_AT = time.monotonic()

_AUTH_STAGES = {"register", "login", "otp_verify"}


def _route_template(request: Request) -> str:
    # Templates, not raw paths, so conversation ids do not explode label cardinality.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def record_auth_event(event: str, outcome: str) -> None:
    if event in _AUTH_STAGES and outcome in ("success", "failure"):
        AUTH_EVENTS.labels(stage=event, outcome=outcome).inc()


def record_rate_limited(gate: str) -> None:
    RATE_LIMITED.labels(gate=gate).inc()


def record_published(delivered: int) -> None:
    BROKER_PUBLISHED.inc()
    if delivered:
        BROKER_DELIVERED.inc(delivered)


def set_active_subscriptions(count: int) -> None:
    BROKER_SUBSCRIPTIONS.set(count)


async def metrics_middleware(request: Request, call_next: Callable) -> Response:
    method = request.method
    started = time.perf_counter()
    status = 500
    in_flight = HTTP_IN_FLIGHT.labels(method=method)
    in_flight.inc()
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        in_flight.dec()
        # The route is only resolved once the router has run.
        route = _route_template(request)
        HTTP_LATENCY.labels(method=method, route=route).observe(time.perf_counter() - started)
        HTTP_REQUESTS.labels(method=method, route=route, status=str(status)).inc()
        if status >= 500:
            HTTP_SERVER_ERRORS.labels(method=method, route=route).inc()


def set_app_info(name: str, version: str) -> None:
    BUILD_INFO.info({"name": name, "version": version})


def metrics_endpoint() -> Response:
    PROCESS_UPTIME.set(time.monotonic() - _LOADED_AT)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
