"""
Prometheus metrics: HTTP latency per endpoint plus settlement outcomes.

``/metrics`` is unauthenticated; expose it to the monitoring network only.
"""
import os
import time

from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share samples through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = 'PROMETHEUS_MULTIPROC_DIR' in os.environ

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

http_requests_total = Counter(
    'pdv_http_requests_total',
    'HTTP requests by endpoint and status',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'pdv_http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

settlements_total = Counter(
    'pdv_settlements_total',
    'Settlement attempts by flow (comanda/direct) and outcome (completed/rejected/failed)',
    ['flow', 'outcome'],
    registry=_metric_registry
)

settlement_amount = Histogram(
    'pdv_settlement_amount',
    'Totals of completed settlements (BRL)',
    ['flow'],
    registry=_metric_registry,
    buckets=(10, 25, 50, 100, 200, 500, 1000)
)

loyalty_coupons_issued_total = Counter(
    'pdv_loyalty_coupons_issued_total',
    'Loyalty coupons issued right after settlement',
    registry=_metric_registry
)


def record_settlement(flow: str, outcome: str, result=None):
    """Count a settlement attempt; pass the SettlementResult of completed ones."""
    settlements_total.labels(flow=flow, outcome=outcome).inc()
    if result is None:
        return
    settlement_amount.labels(flow=flow).observe(float(result.pricing.total))
    if result.loyalty_coupon is not None:
        loyalty_coupons_issued_total.inc()


def setup_metrics_instrumentation(app):
    """Time every request and count it by endpoint and status."""

    @app.before_request
    def start_request_timer():
        g.request_started_at = time.perf_counter()

    @app.after_request
    def observe_request(response):
        started_at = g.pop('request_started_at', None)
        if started_at is None:
            return response

        endpoint = request.endpoint or 'unknown'
        try:
            http_request_duration_seconds.labels(request.method, endpoint).observe(
                time.perf_counter() - started_at
            )
            http_requests_total.labels(request.method, endpoint, response.status_code).inc()
        except ValueError as e:
            app.logger.warning(f"[METRICS] Could not record request: {e}")
        return response


@metrics_bp.route('/metrics')
def metrics():
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
