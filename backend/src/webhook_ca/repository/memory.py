"""In-process resource store, for single-replica deployments and tests."""

import copy

from webhook_ca.domain.models import Resource
from webhook_ca.domain.states import ResourceKind
from webhook_ca.repository.store import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceStore,
)

StoreKey = tuple[ResourceKind, str, str]


class MemoryStore(ResourceStore):
    """Dict-backed store. Resources are deep-copied in and out."""

    def __init__(self) -> None:
        self._resources: dict[StoreKey, Resource] = {}

    @staticmethod
    def _key(resource: Resource) -> StoreKey:
        return (resource.kind, resource.namespace, resource.name)

    async def get(self, kind: ResourceKind, name: str, namespace: str = "") -> Resource:
        stored = self._resources.get((kind, namespace, name))
        if stored is None:
            raise NotFoundError(kind, name, namespace)
        return copy.deepcopy(stored)

    async def create(self, resource: Resource) -> Resource:
        key = self._key(resource)
        if key in self._resources:
            raise AlreadyExistsError(resource.kind, resource.name, resource.namespace)
        created = copy.deepcopy(resource)
        created.version = 1
        self._resources[key] = created
        return copy.deepcopy(created)

    async def update(self, resource: Resource) -> Resource:
        key = self._key(resource)
        stored = self._resources.get(key)
        if stored is None:
            raise NotFoundError(resource.kind, resource.name, resource.namespace)
        if stored.version != resource.version:
            raise ConflictError(
                resource.kind,
                resource.name,
                resource.namespace,
                detail=f"expected version {resource.version}, found {stored.version}",
            )
        updated = copy.deepcopy(resource)
        updated.version = stored.version + 1
        self._resources[key] = updated
        return copy.deepcopy(updated)
