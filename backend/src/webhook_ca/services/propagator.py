"""CA bundle propagation to the webhook configurations.

One task per configuration, each with its own retry-on-conflict loop. The
tasks never cancel each other; the join waits for all of them and any
failure fails the whole propagation. A half-propagated bundle would leave
the two admission paths trusting different CAs.
"""

import asyncio
import logging
from dataclasses import dataclass

from opentelemetry import trace

from webhook_ca.domain.states import OperationResult, ResourceKind
from webhook_ca.metrics import ca_metrics
from webhook_ca.repository.store import ResourceStore
from webhook_ca.services.retry import RetryPolicy, retry_on_conflict

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class WebhookTarget:
    """A webhook configuration that must trust the CA."""

    kind: ResourceKind
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


class PropagationError(Exception):
    """Raised when at least one configuration could not be updated."""

    def __init__(self, errors: list[tuple[WebhookTarget, BaseException]]):
        self.errors = errors
        details = "; ".join(f"{target}: {error}" for target, error in errors)
        super().__init__(f"CA bundle propagation failed for {len(errors)} target(s): {details}")


async def update_ca_bundle(
    store: ResourceStore,
    target: WebhookTarget,
    ca_bundle: bytes,
    policy: RetryPolicy,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> OperationResult:
    """Fetch, patch and commit one configuration under retry-on-conflict.

    Returns:
        UPDATED if a write was issued, UNCHANGED if the bundle was in place.
    """

    async def _attempt() -> OperationResult:
        configuration = await store.get(target.kind, target.name)
        if not configuration.apply_ca_bundle(ca_bundle):  # type: ignore[union-attr]
            return OperationResult.UNCHANGED
        await store.update(configuration)
        return OperationResult.UPDATED

    with tracer.start_as_current_span("propagator.update_ca_bundle") as span:
        span.set_attribute("kind", target.kind.value)
        span.set_attribute("name", target.name)

        try:
            result = await retry_on_conflict(_attempt, policy, str(target), log)
        except Exception as e:
            ca_metrics.record_bundle_propagated(target.kind.value, "error")
            log.error(
                "ca_bundle_update_failed",
                extra={"target": str(target), "error": str(e)},
            )
            raise

        span.set_attribute("result", result.value)
        ca_metrics.record_bundle_propagated(target.kind.value, result.value)
        log.info("ca_bundle_propagated", extra={"target": str(target), "result": result.value})
        return result


async def propagate_ca_bundle(
    store: ResourceStore,
    targets: list[WebhookTarget],
    ca_bundle: bytes,
    policy: RetryPolicy,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> dict[WebhookTarget, OperationResult]:
    """Push ``ca_bundle`` to every target concurrently and join.

    Raises:
        PropagationError: If any target failed, with every failure attached.
    """
    outcomes = await asyncio.gather(
        *(update_ca_bundle(store, target, ca_bundle, policy, log) for target in targets),
        return_exceptions=True,
    )

    errors = [
        (target, outcome)
        for target, outcome in zip(targets, outcomes)
        if isinstance(outcome, BaseException)
    ]
    if errors:
        raise PropagationError(errors)

    return dict(zip(targets, outcomes))
