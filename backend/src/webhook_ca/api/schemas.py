"""Pydantic schemas for the internal CA API."""

from datetime import datetime

from pydantic import BaseModel, Field


class CAStatusResponse(BaseModel):
    """Driver view of the CA record."""

    ca_secret: str
    reconciled: bool
    last_reconciled_at: datetime | None = None
    persisted: str | None = None
    ca_fingerprint: str | None = None
    ca_not_after: datetime | None = None
    next_reconcile_in_seconds: float | None = None
    consecutive_failures: int = 0
    last_error: str | None = None
    rotation_pending: bool = False
    leaf_invalidation_pending: bool = False


class RotationResponse(BaseModel):
    """Response after scheduling a forced rotation."""

    ca_secret: str
    scheduled: bool = True


class ServiceReferenceRequest(BaseModel):
    """In-cluster service a webhook calls."""

    namespace: str = Field(..., min_length=1, max_length=63)
    name: str = Field(..., min_length=1, max_length=63)
    path: str | None = None
    port: int = Field(443, ge=1, le=65535)


class WebhookEntryRequest(BaseModel):
    """One webhook entry; either ``service`` or ``url`` is set."""

    name: str = Field(..., min_length=1, max_length=253)
    service: ServiceReferenceRequest | None = None
    url: str | None = None


class WebhookConfigurationRequest(BaseModel):
    """Request body for registering a webhook configuration."""

    webhooks: list[WebhookEntryRequest] = Field(default_factory=list)


class WebhookConfigurationResponse(BaseModel):
    """Result of registering a webhook configuration."""

    kind: str
    name: str
    result: str
    entries: int
