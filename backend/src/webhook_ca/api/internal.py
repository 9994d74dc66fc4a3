"""Internal API for operating the CA controller.

Status is open to in-cluster callers; anything that changes state requires
the operator API key.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from opentelemetry import trace

from webhook_ca.api.auth import require_operator
from webhook_ca.api.schemas import (
    CAStatusResponse,
    RotationResponse,
    WebhookConfigurationRequest,
    WebhookConfigurationResponse,
)
from webhook_ca.controller import ReconcileLoop
from webhook_ca.domain.models import (
    WEBHOOK_CONFIGURATION_KINDS,
    ServiceReference,
    WebhookConfiguration,
    WebhookEntry,
)
from webhook_ca.domain.states import ResourceKind
from webhook_ca.repository.store import ResourceStore, StoreError
from webhook_ca.services.retry import ConflictExhaustedError, retry_on_conflict

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

router = APIRouter(prefix="/internal/ca", tags=["internal"])

# Global instances (initialized on startup)
_controller: ReconcileLoop | None = None
_store: ResourceStore | None = None


def set_controller(controller: ReconcileLoop) -> None:
    """Set the global reconcile loop instance."""
    global _controller
    _controller = controller


def get_controller() -> ReconcileLoop:
    """Get the global reconcile loop instance."""
    if _controller is None:
        raise RuntimeError("ReconcileLoop not initialized")
    return _controller


def set_store(store: ResourceStore) -> None:
    """Set the global resource store instance."""
    global _store
    _store = store


def get_store() -> ResourceStore:
    """Get the global resource store instance."""
    if _store is None:
        raise RuntimeError("ResourceStore not initialized")
    return _store


@router.get("/status", response_model=CAStatusResponse)
async def get_status(
    controller: ReconcileLoop = Depends(get_controller),
) -> CAStatusResponse:
    """Report the last reconcile outcome and when the next one is due."""
    loop_status = controller.status()
    result = loop_status.last_result
    return CAStatusResponse(
        ca_secret=str(loop_status.target),
        reconciled=result is not None,
        last_reconciled_at=loop_status.last_reconciled_at,
        persisted=result.persisted.value if result else None,
        ca_fingerprint=result.ca_fingerprint if result else None,
        ca_not_after=result.ca_not_after if result else None,
        next_reconcile_in_seconds=loop_status.next_delay_seconds,
        consecutive_failures=loop_status.consecutive_failures,
        last_error=loop_status.last_error,
        rotation_pending=loop_status.rotation_pending,
        leaf_invalidation_pending=loop_status.leaf_invalidation_pending,
    )


@router.post(
    "/rotate",
    response_model=RotationResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_operator)],
)
async def rotate_ca(
    controller: ReconcileLoop = Depends(get_controller),
) -> RotationResponse:
    """Schedule a forced CA rotation on the next reconcile."""
    controller.trigger(force_rotation=True)
    logger.info("ca_rotation_requested", extra={"ca_secret": str(controller.target)})
    return RotationResponse(ca_secret=str(controller.target))


@router.put(
    "/webhook-configurations/{kind}/{name}",
    response_model=WebhookConfigurationResponse,
    dependencies=[Depends(require_operator)],
)
async def put_webhook_configuration(
    kind: ResourceKind,
    name: str,
    body: WebhookConfigurationRequest,
    store: ResourceStore = Depends(get_store),
    controller: ReconcileLoop = Depends(get_controller),
) -> WebhookConfigurationResponse:
    """Register or replace a webhook configuration's entries.

    Entries that keep their name keep their current CA bundle, so replacing a
    configuration never drops trust. A reconcile is triggered afterwards.
    """
    if kind not in WEBHOOK_CONFIGURATION_KINDS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{kind} is not a webhook configuration kind",
        )

    def _mutate(configuration: WebhookConfiguration) -> None:
        bundles = {webhook.name: webhook.ca_bundle for webhook in configuration.webhooks}
        configuration.webhooks = [
            WebhookEntry(
                name=entry.name,
                service=ServiceReference(**entry.service.model_dump()) if entry.service else None,
                url=entry.url,
                ca_bundle=bundles.get(entry.name, b""),
            )
            for entry in body.webhooks
        ]

    async def _attempt():
        return await store.create_or_update(kind, name, _mutate)

    with tracer.start_as_current_span("put_webhook_configuration") as span:
        span.set_attribute("kind", kind.value)
        span.set_attribute("configuration", name)

        try:
            result = await retry_on_conflict(
                _attempt, controller.reconciler.retry_policy, f"{kind}/{name}"
            )
        except ConflictExhaustedError as e:
            raise HTTPException(status_code=409, detail=str(e)) from None
        except StoreError as e:
            raise HTTPException(status_code=503, detail=str(e)) from None

        span.set_attribute("result", result.value)

    logger.info(
        "webhook_configuration_registered",
        extra={"kind": kind.value, "configuration": name, "result": result.value},
    )
    controller.trigger()

    return WebhookConfigurationResponse(
        kind=kind.value,
        name=name,
        result=result.value,
        entries=len(body.webhooks),
    )
