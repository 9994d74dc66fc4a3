"""CA reconciler for the admission webhook trust chain.

One reconcile:
1. Load the CA record and evaluate it (keep or regenerate)
2. Push the CA bundle to both webhook configurations concurrently
3. Persist the CA record (created | updated | unchanged)
4. On UPDATED, clear the derived leaf record
5. Return when to reconcile again

The CA record is written only after propagation fully succeeded. A failed
propagation leaves the record untouched, and the next reconcile re-derives
the bundle from it.

A rotation whose leaf invalidation failed stays pending for its target, and
every following reconcile retries the invalidation until one succeeds, even
though the stored CA no longer changes.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from opentelemetry import trace

from shared.logging import bind_logger
from webhook_ca.ca.authority import CertificateAuthority, CertificateAuthorityGenerator
from webhook_ca.domain.states import OperationResult, ResourceKind
from webhook_ca.metrics import ca_metrics
from webhook_ca.repository.store import ResourceStore
from webhook_ca.services.cascade import invalidate_leaf_certificate
from webhook_ca.services.evaluator import (
    Decision,
    Regenerate,
    UseExisting,
    evaluate,
    load_certificate_authority,
)
from webhook_ca.services.propagator import WebhookTarget, propagate_ca_bundle
from webhook_ca.services.retry import RetryPolicy, retry_on_conflict

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReconcileTarget:
    """Identity of the CA record being reconciled."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ReconcileResult:
    """Outcome of one reconcile; the driver must call again after ``requeue_after``."""

    requeue_after: timedelta
    decision: Decision
    persisted: OperationResult
    ca_fingerprint: str
    ca_not_after: datetime
    bundle_results: dict[WebhookTarget, OperationResult] = field(default_factory=dict)
    leaf_invalidation: OperationResult | None = None

    @property
    def rotated(self) -> bool:
        return self.persisted == OperationResult.UPDATED


def compute_requeue_after(decision: Decision, ca: CertificateAuthority) -> timedelta:
    """Time until the next required reconcile.

    A kept CA is revisited when it expires; a fresh one after its full validity.
    """
    if isinstance(decision, UseExisting):
        return decision.remaining
    return ca.validity


class CAReconciler:
    """Keeps the webhook CA valid and trusted by every webhook configuration."""

    def __init__(
        self,
        store: ResourceStore,
        generator: CertificateAuthorityGenerator,
        webhook_targets: list[WebhookTarget],
        leaf_secret_name: str,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.generator = generator
        self.webhook_targets = webhook_targets
        self.leaf_secret_name = leaf_secret_name
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._pending_leaf_invalidation: set[ReconcileTarget] = set()

    @classmethod
    def from_settings(cls, store: ResourceStore, settings) -> "CAReconciler":
        return cls(
            store=store,
            generator=CertificateAuthorityGenerator.from_settings(settings),
            webhook_targets=[
                WebhookTarget(
                    ResourceKind.MUTATING_WEBHOOK_CONFIGURATION,
                    settings.MUTATING_WEBHOOK_CONFIGURATION_NAME,
                ),
                WebhookTarget(
                    ResourceKind.VALIDATING_WEBHOOK_CONFIGURATION,
                    settings.VALIDATING_WEBHOOK_CONFIGURATION_NAME,
                ),
            ],
            leaf_secret_name=settings.TLS_SECRET_NAME,
            retry_policy=RetryPolicy.from_settings(settings),
        )

    def leaf_invalidation_pending(self, target: ReconcileTarget) -> bool:
        """True while a rotation of ``target`` still has a leaf record to clear."""
        return target in self._pending_leaf_invalidation

    async def reconcile(
        self, target: ReconcileTarget, force_rotation: bool = False
    ) -> ReconcileResult:
        """Reconcile the CA record ``target``.

        Args:
            target: Namespace and name of the CA record.
            force_rotation: Regenerate even if the stored CA is still valid.

        Raises:
            RetrievalError: The CA record could not be loaded.
            PropagationError: A webhook configuration could not be updated.
            ConflictExhaustedError: The CA record write kept conflicting.
            CascadeError: The leaf record could not be cleared after a rotation;
                the invalidation is retried by the next reconcile of ``target``.
        """
        log = bind_logger(logger, ca_secret=str(target))
        start_time = time.time()

        with tracer.start_as_current_span("CAReconciler.reconcile") as span:
            span.set_attribute("target", str(target))
            log.info("reconcile_started", extra={"force_rotation": force_rotation})

            try:
                result = await self._reconcile(target, force_rotation, log)
            except Exception as e:
                ca_metrics.record_reconcile("error", time.time() - start_time)
                span.set_attribute("result", "error")
                log.error(
                    "reconcile_failed",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )
                raise

            span.set_attribute("result", "success")
            span.set_attribute("persisted", result.persisted.value)
            span.set_attribute("requeue_after_seconds", result.requeue_after.total_seconds())
            ca_metrics.record_reconcile("success", time.time() - start_time)
            ca_metrics.record_ca_expiry(result.ca_not_after)

            log.info(
                "reconcile_completed",
                extra={
                    "persisted": result.persisted.value,
                    "fingerprint": result.ca_fingerprint,
                    "requeue_after_seconds": result.requeue_after.total_seconds(),
                },
            )
            return result

    async def _reconcile(
        self,
        target: ReconcileTarget,
        force_rotation: bool,
        log: logging.LoggerAdapter,
    ) -> ReconcileResult:
        now = self._clock()

        stored = await load_certificate_authority(self.store, target.namespace, target.name)
        decision = evaluate(stored, now, force=force_rotation)

        if isinstance(decision, Regenerate):
            log.info(
                "ca_regeneration_required",
                extra={
                    "reason": decision.reason.value,
                    "discard_existing": decision.discard_existing,
                },
            )
            ca = self.generator.generate(now)
            ca_metrics.record_ca_generated(decision.reason.value)
        else:
            ca = decision.ca

        bundle_results = await propagate_ca_bundle(
            self.store, self.webhook_targets, ca.certificate_bytes(), self.retry_policy, log
        )

        persisted = await self._persist(target, ca, log)

        if persisted == OperationResult.UPDATED:
            log.info("ca_rotated", extra={"fingerprint": ca.fingerprint})
            self._pending_leaf_invalidation.add(target)
        elif target in self._pending_leaf_invalidation:
            log.info("leaf_invalidation_resumed", extra={"fingerprint": ca.fingerprint})

        leaf_invalidation = None
        if target in self._pending_leaf_invalidation:
            leaf_invalidation = await invalidate_leaf_certificate(
                self.store, target.namespace, self.leaf_secret_name, self.retry_policy, log
            )
            self._pending_leaf_invalidation.discard(target)

        return ReconcileResult(
            requeue_after=compute_requeue_after(decision, ca),
            decision=decision,
            persisted=persisted,
            ca_fingerprint=ca.fingerprint,
            ca_not_after=ca.not_after,
            bundle_results=bundle_results,
            leaf_invalidation=leaf_invalidation,
        )

    async def _persist(
        self,
        target: ReconcileTarget,
        ca: CertificateAuthority,
        log: logging.LoggerAdapter,
    ) -> OperationResult:
        """Create or update the CA record with exactly the CA's data."""
        desired = ca.to_secret_data()

        def _mutate(record) -> None:
            # Wholesale replacement drops any residual data of an expired record
            record.data = dict(desired)

        async def _attempt() -> OperationResult:
            return await self.store.create_or_update(
                ResourceKind.SECRET, target.name, _mutate, namespace=target.namespace
            )

        with tracer.start_as_current_span("CAReconciler.persist") as span:
            result = await retry_on_conflict(_attempt, self.retry_policy, f"secret/{target}", log)
            span.set_attribute("result", result.value)

        ca_metrics.record_ca_persisted(result.value)
        log.info("ca_secret_persisted", extra={"result": result.value})
        return result
