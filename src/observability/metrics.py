"""
Prometheus metrics for the bidding engine.

Outcome labels are lowercase: "accepted", "restored", "reset" or the
lowercased error code ("bid_too_low", "insufficient_budget", ...).
"""

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest

bids_total = Counter(
    "auction_bids_total",
    "Bid attempts by outcome",
    ["outcome"],
)

retractions_total = Counter(
    "auction_retractions_total",
    "Retraction attempts by outcome",
    ["outcome"],
)

items_finalized_total = Counter(
    "auction_items_finalized_total",
    "Items moved to SOLD or UNSOLD",
    ["status"],
)

notifications_total = Counter(
    "auction_notifications_total",
    "Notification deliveries by type and result",
    ["type", "result"],
)

transient_errors_total = Counter(
    "auction_transient_errors_total",
    "Store failures reported as Transient",
    ["operation"],
)

# Wraps the whole unit of work, so rejected bids are timed too
bid_latency = Histogram(
    "auction_bid_latency_seconds",
    "Time to evaluate and commit or reject a bid",
    buckets=(0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0),
)


class MetricsCollector:
    """Engine-facing recording calls over the module-level metrics."""

    def record_bid(self, outcome: str):
        bids_total.labels(outcome=outcome).inc()

    def record_retraction(self, outcome: str):
        retractions_total.labels(outcome=outcome).inc()

    def record_finalized(self, status: str):
        items_finalized_total.labels(status=status).inc()

    def record_notification(self, notification_type: str, result: str):
        """result is 'delivered' or 'failed'."""
        notifications_total.labels(type=notification_type, result=result).inc()

    def record_transient(self, operation: str):
        transient_errors_total.labels(operation=operation).inc()

    def get_metrics(self) -> bytes:
        return generate_latest(REGISTRY)


metrics_collector = MetricsCollector()


def register_metrics_route(app, path: str = "/metrics"):
    """Expose the default registry on a FastAPI app."""
    from fastapi import Response

    @app.get(path, include_in_schema=False)
    def metrics():
        return Response(content=metrics_collector.get_metrics(), media_type=CONTENT_TYPE_LATEST)
