"""Versioned resources handled by the controller.

``version`` is the optimistic-concurrency token: stores bump it on every
successful write and reject writes that carry a stale one. ``0`` means the
resource has never been stored.
"""

from dataclasses import dataclass, field

from .states import ResourceKind

WEBHOOK_CONFIGURATION_KINDS = (
    ResourceKind.MUTATING_WEBHOOK_CONFIGURATION,
    ResourceKind.VALIDATING_WEBHOOK_CONFIGURATION,
)


@dataclass
class SecretRecord:
    """Named byte-blob map: the CA record and the derived leaf record."""

    name: str
    namespace: str
    data: dict[str, bytes] = field(default_factory=dict)
    version: int = 0

    kind = ResourceKind.SECRET


@dataclass
class ServiceReference:
    """In-cluster service an admission webhook is served from."""

    namespace: str
    name: str
    path: str | None = None
    port: int = 443


@dataclass
class WebhookEntry:
    name: str
    service: ServiceReference | None = None
    url: str | None = None
    ca_bundle: bytes = b""

    @property
    def refers_to_in_cluster_service(self) -> bool:
        return self.service is not None


@dataclass
class WebhookConfiguration:
    """Mutating or validating webhook registration (cluster scoped)."""

    kind: ResourceKind
    name: str
    webhooks: list[WebhookEntry] = field(default_factory=list)
    version: int = 0
    namespace: str = ""

    def apply_ca_bundle(self, ca_bundle: bytes) -> bool:
        """Set ``ca_bundle`` on every in-cluster entry.

        Entries pointing at an external URL are left alone.

        Returns:
            True if any entry changed.
        """
        changed = False
        for webhook in self.webhooks:
            if webhook.refers_to_in_cluster_service and webhook.ca_bundle != ca_bundle:
                webhook.ca_bundle = ca_bundle
                changed = True
        return changed

    def trusts(self, ca_bundle: bytes) -> bool:
        """Check every in-cluster entry already carries ``ca_bundle``."""
        return all(
            webhook.ca_bundle == ca_bundle
            for webhook in self.webhooks
            if webhook.refers_to_in_cluster_service
        )


Resource = SecretRecord | WebhookConfiguration


def new_resource(kind: ResourceKind, name: str, namespace: str = "") -> Resource:
    """Build an empty, never-stored resource of ``kind``."""
    if kind == ResourceKind.SECRET:
        return SecretRecord(name=name, namespace=namespace)
    if kind in WEBHOOK_CONFIGURATION_KINDS:
        return WebhookConfiguration(kind=kind, name=name)
    raise ValueError(f"Unknown resource kind: {kind}")
