"""Store boundary for versioned resources.

Every write is version checked: ``update`` only succeeds when the stored
version still equals the one the caller read. This is the only
concurrency-control mechanism; callers retry on ``ConflictError``.
"""

import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from webhook_ca.domain.models import Resource, new_resource
from webhook_ca.domain.states import OperationResult, ResourceKind

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the store cannot serve a request."""

    pass


class NotFoundError(StoreError):
    """Raised when a resource does not exist."""

    def __init__(self, kind: ResourceKind, name: str, namespace: str = ""):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        super().__init__(f"{kind} {_qualified(name, namespace)} not found")


class ConflictError(StoreError):
    """Raised when a write carries a stale version."""

    def __init__(self, kind: ResourceKind, name: str, namespace: str = "", detail: str = ""):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        message = f"{kind} {_qualified(name, namespace)} was modified concurrently"
        super().__init__(f"{message}: {detail}" if detail else message)


class AlreadyExistsError(ConflictError):
    """Raised when a create loses the race against another writer."""

    def __init__(self, kind: ResourceKind, name: str, namespace: str = ""):
        super().__init__(kind, name, namespace, detail="already exists")


def _qualified(name: str, namespace: str) -> str:
    return f"{namespace}/{name}" if namespace else name


class ResourceStore(ABC):
    """Versioned resource store.

    Subclasses implement the three primitives; ``create_or_update`` is built
    on top of them.
    """

    @abstractmethod
    async def get(self, kind: ResourceKind, name: str, namespace: str = "") -> Resource:
        """Get the latest version of a resource.

        Raises:
            NotFoundError: If the resource does not exist.
        """
        ...

    @abstractmethod
    async def create(self, resource: Resource) -> Resource:
        """Store a new resource and return it with its first version.

        Raises:
            AlreadyExistsError: If a resource with the same identity exists.
        """
        ...

    @abstractmethod
    async def update(self, resource: Resource) -> Resource:
        """Replace a resource if ``resource.version`` is still current.

        Raises:
            ConflictError: If the stored version differs.
            NotFoundError: If the resource no longer exists.
        """
        ...

    async def create_or_update(
        self,
        kind: ResourceKind,
        name: str,
        mutate: Callable[[Resource], None],
        namespace: str = "",
    ) -> OperationResult:
        """Bring a resource to the state produced by ``mutate``.

        - Absent: mutate an empty resource and create it (CREATED)
        - Present and mutation changes nothing: no write (UNCHANGED)
        - Present otherwise: version-checked update (UPDATED)
        """
        try:
            current = await self.get(kind, name, namespace)
        except NotFoundError:
            resource = new_resource(kind, name, namespace)
            mutate(resource)
            await self.create(resource)
            logger.debug(
                "resource_created",
                extra={"kind": kind.value, "resource_name": name, "namespace": namespace},
            )
            return OperationResult.CREATED

        desired = copy.deepcopy(current)
        mutate(desired)
        if desired == current:
            return OperationResult.UNCHANGED

        await self.update(desired)
        logger.debug(
            "resource_updated",
            extra={"kind": kind.value, "resource_name": name, "namespace": namespace},
        )
        return OperationResult.UPDATED
