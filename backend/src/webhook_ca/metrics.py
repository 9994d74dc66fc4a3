"""OpenTelemetry metrics for the webhook CA controller."""

from collections.abc import Iterator
from datetime import datetime, timezone

from opentelemetry import metrics

# Get meter for the controller
meter = metrics.get_meter("webhook_ca")

# ============================================================================
# Reconcile
# ============================================================================

reconciles_total = meter.create_counter(
    name="webhook_ca_reconciles_total",
    description="Total CA reconciles by result",
    unit="1",
)

reconcile_duration = meter.create_histogram(
    name="webhook_ca_reconcile_duration_seconds",
    description="CA reconcile duration in seconds",
    unit="s",
)

# ============================================================================
# CA lifecycle
# ============================================================================

cas_generated_total = meter.create_counter(
    name="webhook_ca_cas_generated_total",
    description="Total CAs generated by reason (missing|expired|forced)",
    unit="1",
)

ca_generation_duration = meter.create_histogram(
    name="webhook_ca_ca_generation_duration_seconds",
    description="CA key pair and certificate generation duration in seconds",
    unit="s",
)

ca_persisted_total = meter.create_counter(
    name="webhook_ca_ca_persisted_total",
    description="CA record writes by outcome (created|updated|unchanged)",
    unit="1",
)

# ============================================================================
# Trust propagation
# ============================================================================

bundle_propagations_total = meter.create_counter(
    name="webhook_ca_bundle_propagations_total",
    description="CA bundle pushes to webhook configurations by kind and outcome",
    unit="1",
)

conflict_retries_total = meter.create_counter(
    name="webhook_ca_conflict_retries_total",
    description="Optimistic-concurrency conflicts retried, by operation",
    unit="1",
)

leaf_invalidations_total = meter.create_counter(
    name="webhook_ca_leaf_invalidations_total",
    description="Derived leaf record invalidations by outcome",
    unit="1",
)

# CA expiry gauge - report seconds left on the last reconciled CA
_ca_not_after: datetime | None = None


def _get_ca_expiry(
    options: metrics.CallbackOptions,
) -> Iterator[metrics.Observation]:
    """Callback to report seconds until the current CA expires."""
    if _ca_not_after is not None:
        remaining = (_ca_not_after - datetime.now(timezone.utc)).total_seconds()
        yield metrics.Observation(remaining, {})


ca_expiry_gauge = meter.create_observable_gauge(
    name="webhook_ca_ca_expiry_seconds",
    description="Seconds until the current CA certificate expires",
    unit="s",
    callbacks=[_get_ca_expiry],
)


class CAMetrics:
    """Facade for controller metrics with proper labels."""

    def record_reconcile(self, result: str, duration_seconds: float) -> None:
        """Record a reconcile. Labels: result=success|error"""
        reconciles_total.add(1, {"result": result})
        reconcile_duration.record(duration_seconds)

    def record_ca_generated(self, reason: str) -> None:
        """Record CA generation. Labels: reason=missing|expired|forced"""
        cas_generated_total.add(1, {"reason": reason})

    def record_ca_generation_duration(self, duration_seconds: float) -> None:
        ca_generation_duration.record(duration_seconds)

    def record_ca_persisted(self, outcome: str) -> None:
        """Record CA record persistence. Labels: outcome=created|updated|unchanged"""
        ca_persisted_total.add(1, {"outcome": outcome})

    def record_bundle_propagated(self, kind: str, outcome: str) -> None:
        """Record a webhook configuration push. Labels: kind, outcome=updated|unchanged|error"""
        bundle_propagations_total.add(1, {"kind": kind, "outcome": outcome})

    def record_conflict_retry(self, operation: str) -> None:
        conflict_retries_total.add(1, {"operation": operation})

    def record_leaf_invalidation(self, outcome: str) -> None:
        """Record leaf invalidation. Labels: outcome=updated|unchanged|missing|error"""
        leaf_invalidations_total.add(1, {"outcome": outcome})

    def record_ca_expiry(self, not_after: datetime) -> None:
        """Track the notAfter of the CA currently in use."""
        global _ca_not_after
        _ca_not_after = not_after


# Singleton instance
ca_metrics = CAMetrics()
