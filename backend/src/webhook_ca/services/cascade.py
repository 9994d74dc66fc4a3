"""Leaf material invalidation after a CA rotation."""

import logging

from opentelemetry import trace

from webhook_ca.domain.states import OperationResult, ResourceKind
from webhook_ca.metrics import ca_metrics
from webhook_ca.repository.store import NotFoundError, ResourceStore, StoreError
from webhook_ca.services.retry import ConflictExhaustedError, RetryPolicy, retry_on_conflict

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CascadeError(Exception):
    """Raised when the leaf record could not be cleared after a rotation."""

    pass


async def invalidate_leaf_certificate(
    store: ResourceStore,
    namespace: str,
    name: str,
    policy: RetryPolicy,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> OperationResult | None:
    """Clear the leaf record so the issuance process re-signs it with the new CA.

    Returns:
        UPDATED if the data was cleared, UNCHANGED if it was already empty,
        None if the record does not exist (nothing to invalidate).

    Raises:
        CascadeError: On any other failure, including exhausted retries.
    """

    async def _attempt() -> OperationResult:
        record = await store.get(ResourceKind.SECRET, name, namespace)
        if not record.data:
            return OperationResult.UNCHANGED
        record.data = {}
        await store.update(record)
        return OperationResult.UPDATED

    with tracer.start_as_current_span("cascade.invalidate_leaf_certificate") as span:
        span.set_attribute("leaf_secret", f"{namespace}/{name}")

        try:
            result = await retry_on_conflict(_attempt, policy, f"secret/{namespace}/{name}", log)
        except NotFoundError:
            ca_metrics.record_leaf_invalidation("missing")
            log.info("leaf_secret_missing", extra={"leaf_secret": f"{namespace}/{name}"})
            return None
        except (StoreError, ConflictExhaustedError) as e:
            ca_metrics.record_leaf_invalidation("error")
            log.error(
                "leaf_invalidation_failed",
                extra={"leaf_secret": f"{namespace}/{name}", "error": str(e)},
            )
            raise CascadeError(f"Cannot clear leaf secret {namespace}/{name}: {e}") from e

        span.set_attribute("result", result.value)
        ca_metrics.record_leaf_invalidation(result.value)
        log.info(
            "leaf_secret_invalidated",
            extra={"leaf_secret": f"{namespace}/{name}", "result": result.value},
        )
        return result
