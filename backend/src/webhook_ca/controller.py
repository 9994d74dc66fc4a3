"""Reconcile driver for a single CA record.

Runs the reconciler forever: sleep until the returned deadline, or until
something triggers an early reconcile; on failure back off exponentially and
try again. One loop per target means at most one reconcile per target runs
at any time.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from shared.logging import bind_logger
from webhook_ca.services.reconciler import CAReconciler, ReconcileResult, ReconcileTarget

logger = logging.getLogger(__name__)


@dataclass
class LoopStatus:
    """Snapshot of the driver's view of its target."""

    target: ReconcileTarget
    last_result: ReconcileResult | None
    last_reconciled_at: datetime | None
    last_error: str | None
    consecutive_failures: int
    next_delay_seconds: float | None
    rotation_pending: bool
    leaf_invalidation_pending: bool


class ReconcileLoop:
    """Drive ``reconciler`` for ``target`` with requeue and error backoff."""

    def __init__(
        self,
        reconciler: CAReconciler,
        target: ReconcileTarget,
        base_delay: float = 0.005,
        max_delay: float = 1000.0,
    ) -> None:
        self.reconciler = reconciler
        self.target = target
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._wakeup = asyncio.Event()
        self._force_rotation = False
        self._failures = 0
        self._last_result: ReconcileResult | None = None
        self._last_reconciled_at: datetime | None = None
        self._last_error: str | None = None
        self._next_delay: float | None = None
        self._log = bind_logger(logger, ca_secret=str(target))

    @classmethod
    def from_settings(cls, reconciler: CAReconciler, settings) -> "ReconcileLoop":
        return cls(
            reconciler=reconciler,
            target=ReconcileTarget(namespace=settings.CA_NAMESPACE, name=settings.CA_SECRET_NAME),
            base_delay=settings.REQUEUE_BASE_DELAY_SECONDS,
            max_delay=settings.REQUEUE_MAX_DELAY_SECONDS,
        )

    def trigger(self, force_rotation: bool = False) -> None:
        """Wake the loop for an immediate reconcile.

        A forced rotation stays pending until a reconcile succeeds.
        """
        if force_rotation:
            self._force_rotation = True
        self._wakeup.set()

    def backoff_delay(self) -> float:
        """Delay after the current run of consecutive failures."""
        if self._failures == 0:
            return 0.0
        return min(self.base_delay * 2 ** (self._failures - 1), self.max_delay)

    async def run_once(self) -> float:
        """Run one reconcile and return the seconds to wait before the next."""
        force_rotation = self._force_rotation
        try:
            result = await self.reconciler.reconcile(self.target, force_rotation=force_rotation)
        except Exception as e:
            # Never terminal: every failure is retried after backoff
            self._failures += 1
            self._last_error = f"{type(e).__name__}: {e}"
            self._next_delay = self.backoff_delay()
            self._log.warning(
                "reconcile_requeued_after_error",
                extra={
                    "error": str(e),
                    "consecutive_failures": self._failures,
                    "delay_seconds": self._next_delay,
                },
            )
            return self._next_delay

        if force_rotation:
            self._force_rotation = False
        self._failures = 0
        self._last_error = None
        self._last_result = result
        self._last_reconciled_at = datetime.now(timezone.utc)
        self._next_delay = result.requeue_after.total_seconds()
        return self._next_delay

    async def run(self) -> None:
        """Reconcile forever; cancel the task to stop."""
        self._log.info("reconcile_loop_started")
        while True:
            delay = await self.run_once()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

    def status(self) -> LoopStatus:
        return LoopStatus(
            target=self.target,
            last_result=self._last_result,
            last_reconciled_at=self._last_reconciled_at,
            last_error=self._last_error,
            consecutive_failures=self._failures,
            next_delay_seconds=self._next_delay,
            rotation_pending=self._force_rotation,
            leaf_invalidation_pending=self.reconciler.leaf_invalidation_pending(self.target),
        )
