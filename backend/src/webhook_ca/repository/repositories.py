"""SQLAlchemy-backed resource store."""

import base64
import copy
import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from webhook_ca.domain.models import (
    WEBHOOK_CONFIGURATION_KINDS,
    Resource,
    SecretRecord,
    ServiceReference,
    WebhookConfiguration,
    WebhookEntry,
)
from webhook_ca.domain.orm import SecretRow, WebhookConfigurationRow
from webhook_ca.domain.states import ResourceKind
from webhook_ca.repository.store import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceStore,
    StoreError,
)

logger = logging.getLogger(__name__)

Row = SecretRow | WebhookConfigurationRow


def _encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _decode(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"))


def _encode_webhook(webhook: WebhookEntry) -> dict[str, Any]:
    service = None
    if webhook.service is not None:
        service = {
            "namespace": webhook.service.namespace,
            "name": webhook.service.name,
            "path": webhook.service.path,
            "port": webhook.service.port,
        }
    return {
        "name": webhook.name,
        "service": service,
        "url": webhook.url,
        "ca_bundle": _encode(webhook.ca_bundle),
    }


def _decode_webhook(raw: dict[str, Any]) -> WebhookEntry:
    service = raw.get("service")
    return WebhookEntry(
        name=raw["name"],
        service=ServiceReference(**service) if service else None,
        url=raw.get("url"),
        ca_bundle=_decode(raw.get("ca_bundle", "")),
    )


class SqlStore(ResourceStore):
    """Store secrets and webhook configurations as versioned rows.

    Each operation runs in its own session from ``session_factory``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, kind: ResourceKind, name: str, namespace: str = "") -> Resource:
        try:
            async with self._session_factory() as db:
                row = await db.get(*self._identity(kind, name, namespace))
        except SQLAlchemyError as e:
            logger.error(
                "store_read_failed",
                extra={"kind": kind.value, "resource_name": name, "error": str(e)},
            )
            raise StoreError(f"Failed to read {kind} {name}: {e}") from e

        if row is None:
            raise NotFoundError(kind, name, namespace)
        return self._to_resource(row)

    async def create(self, resource: Resource) -> Resource:
        row = self._to_row(resource)
        try:
            async with self._session_factory() as db:
                db.add(row)
                await db.commit()
        except IntegrityError as e:
            raise AlreadyExistsError(resource.kind, resource.name, resource.namespace) from e
        except SQLAlchemyError as e:
            logger.error(
                "store_write_failed",
                extra={
                    "kind": resource.kind.value,
                    "resource_name": resource.name,
                    "error": str(e),
                },
            )
            raise StoreError(f"Failed to create {resource.kind} {resource.name}: {e}") from e
        return self._to_resource(row)

    async def update(self, resource: Resource) -> Resource:
        model, values, criteria = self._update_parts(resource)
        stmt = (
            update(model)
            .where(*criteria, model.version == resource.version)
            .values(**values, version=resource.version + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                if result.rowcount == 0:
                    await db.rollback()
                    current = await db.get(
                        *self._identity(resource.kind, resource.name, resource.namespace)
                    )
                    if current is None:
                        raise NotFoundError(resource.kind, resource.name, resource.namespace)
                    raise ConflictError(
                        resource.kind,
                        resource.name,
                        resource.namespace,
                        detail=f"expected version {resource.version}, found {current.version}",
                    )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "store_write_failed",
                extra={
                    "kind": resource.kind.value,
                    "resource_name": resource.name,
                    "error": str(e),
                },
            )
            raise StoreError(f"Failed to update {resource.kind} {resource.name}: {e}") from e

        updated = copy.deepcopy(resource)
        updated.version = resource.version + 1
        return updated

    @staticmethod
    def _identity(kind: ResourceKind, name: str, namespace: str) -> tuple[type[Row], tuple]:
        if kind == ResourceKind.SECRET:
            return SecretRow, (namespace, name)
        if kind in WEBHOOK_CONFIGURATION_KINDS:
            return WebhookConfigurationRow, (kind.value, name)
        raise ValueError(f"Unknown resource kind: {kind}")

    @staticmethod
    def _update_parts(resource: Resource) -> tuple[type[Row], dict[str, Any], list]:
        if isinstance(resource, SecretRecord):
            return (
                SecretRow,
                {"data": {k: _encode(v) for k, v in resource.data.items()}},
                [SecretRow.namespace == resource.namespace, SecretRow.name == resource.name],
            )
        return (
            WebhookConfigurationRow,
            {"webhooks": [_encode_webhook(w) for w in resource.webhooks]},
            [
                WebhookConfigurationRow.kind == resource.kind.value,
                WebhookConfigurationRow.name == resource.name,
            ],
        )

    @staticmethod
    def _to_row(resource: Resource) -> Row:
        if isinstance(resource, SecretRecord):
            return SecretRow(
                namespace=resource.namespace,
                name=resource.name,
                data={k: _encode(v) for k, v in resource.data.items()},
            )
        return WebhookConfigurationRow(
            kind=resource.kind.value,
            name=resource.name,
            webhooks=[_encode_webhook(w) for w in resource.webhooks],
        )

    @staticmethod
    def _to_resource(row: Row) -> Resource:
        if isinstance(row, SecretRow):
            return SecretRecord(
                name=row.name,
                namespace=row.namespace,
                data={k: _decode(v) for k, v in row.data.items()},
                version=row.version,
            )
        return WebhookConfiguration(
            kind=ResourceKind(row.kind),
            name=row.name,
            webhooks=[_decode_webhook(w) for w in row.webhooks],
            version=row.version,
        )
