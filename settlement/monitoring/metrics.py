"""
Prometheus metrics for settlement monitoring.

Tracks:
- Webhook deliveries by event type and outcome
- Settlements by outcome, including uncommissioned transactions
- Commission payouts by outcome
- Payout gateway calls, errors and circuit breaker state
- Withdrawal requests by outcome
- Checkout initializations
"""
from prometheus_client import Counter, Gauge, Histogram

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],  # success, failed, duplicate, no_handler
)

webhook_signature_failures_total = Counter(
    "webhook_signature_failures_total",
    "Webhook deliveries rejected for an invalid signature",
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Settlement metrics
settlements_total = Counter(
    "settlements_total",
    "Payment confirmations handled by the settlement engine",
    ["outcome"],  # settled, already_processed, not_successful, uncommissioned
)

uncommissioned_transactions_total = Counter(
    "uncommissioned_transactions_total",
    "Completed transactions whose commission insert failed",
)

settlement_amount_minor = Histogram(
    "settlement_amount_minor",
    "Settled transaction amounts in minor units",
    buckets=(500, 1000, 5000, 10000, 50000, 100000, 500000, 1000000),
)

# Commission payout metrics
commission_payouts_total = Counter(
    "commission_payouts_total",
    "Commission payout attempts",
    ["outcome"],  # paid, submitted, skipped, lost_race
)

commission_transfer_outcomes_total = Counter(
    "commission_transfer_outcomes_total",
    "Transfer webhook outcomes applied to commissions",
    ["event_type", "applied"],
)

# Payout gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payout gateway requests",
    ["operation", "status"],
)

gateway_errors_total = Counter(
    "gateway_errors_total",
    "Total payout gateway errors",
    ["error_type"],  # transient, permanent
)

gateway_duration_seconds = Histogram(
    "gateway_duration_seconds",
    "Payout gateway call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 15.0),
)

gateway_circuit_breaker_state = Gauge(
    "gateway_circuit_breaker_state",
    "Payout gateway circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Withdrawal metrics
withdrawal_requests_total = Counter(
    "withdrawal_requests_total",
    "Affiliate withdrawal requests",
    ["outcome"],  # completed, pending, rejected
)

# Checkout metrics
payment_initializations_total = Counter(
    "payment_initializations_total",
    "Checkout payment initializations",
    ["status"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(event_type=event_type).inc()
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_webhook_signature_failure() -> None:
        webhook_signature_failures_total.inc()

    @staticmethod
    def record_settlement(outcome: str, amount_minor: int = 0) -> None:
        """Record a settlement engine outcome."""
        settlements_total.labels(outcome=outcome).inc()
        if outcome == "settled" and amount_minor > 0:
            settlement_amount_minor.observe(amount_minor)

    @staticmethod
    def record_uncommissioned_transaction() -> None:
        uncommissioned_transactions_total.inc()

    @staticmethod
    def record_commission_payout(outcome: str) -> None:
        commission_payouts_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_transfer_outcome(event_type: str, applied: bool) -> None:
        commission_transfer_outcomes_total.labels(
            event_type=event_type, applied=str(applied).lower()
        ).inc()

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record payout gateway call."""
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_gateway_error(error_type: str) -> None:
        gateway_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        gateway_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_withdrawal(outcome: str) -> None:
        withdrawal_requests_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_payment_initialization(status: str) -> None:
        payment_initializations_total.labels(status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
