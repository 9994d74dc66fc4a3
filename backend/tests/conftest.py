"""Shared fixtures and store doubles for controller tests."""

from datetime import datetime, timedelta, timezone

import pytest

from webhook_ca.ca.authority import CertificateAuthority, CertificateAuthorityGenerator
from webhook_ca.domain.models import ServiceReference, WebhookConfiguration, WebhookEntry
from webhook_ca.domain.states import ResourceKind
from webhook_ca.repository.memory import MemoryStore
from webhook_ca.services.propagator import WebhookTarget
from webhook_ca.services.retry import RetryPolicy

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
VALIDITY = timedelta(days=30)

CA_NAMESPACE = "webhook-system"
CA_SECRET_NAME = "webhook-ca"
TLS_SECRET_NAME = "webhook-tls"

MUTATING = WebhookTarget(ResourceKind.MUTATING_WEBHOOK_CONFIGURATION, "webhook-mutating")
VALIDATING = WebhookTarget(ResourceKind.VALIDATING_WEBHOOK_CONFIGURATION, "webhook-validating")
WEBHOOK_TARGETS = [MUTATING, VALIDATING]

EXTERNAL_BUNDLE = b"external-bundle"


class RecordingStore(MemoryStore):
    """MemoryStore that records writes and can fail updates of chosen resources."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[tuple[str, ResourceKind, str]] = []
        self.update_attempts: dict[tuple[ResourceKind, str], int] = {}
        self._faults: dict[tuple[ResourceKind, str], list] = {}

    def fail_updates(self, kind, name, error_factory, times: int | None = None) -> None:
        """Raise ``error_factory()`` on the next ``times`` updates (always if None)."""
        self._faults[(kind, name)] = [error_factory, times]

    async def create(self, resource):
        created = await super().create(resource)
        self.writes.append(("create", resource.kind, resource.name))
        return created

    async def update(self, resource):
        key = (resource.kind, resource.name)
        self.update_attempts[key] = self.update_attempts.get(key, 0) + 1

        fault = self._faults.get(key)
        if fault is not None:
            error_factory, remaining = fault
            if remaining is None or remaining > 0:
                if remaining is not None:
                    fault[1] = remaining - 1
                raise error_factory()

        updated = await super().update(resource)
        self.writes.append(("update", resource.kind, resource.name))
        return updated

    def writes_to(self, kind, name) -> int:
        return sum(1 for _, k, n in self.writes if k == kind and n == name)


def webhook_configuration(target: WebhookTarget, ca_bundle: bytes = b"") -> WebhookConfiguration:
    """A configuration with one in-cluster entry and one external URL entry."""
    return WebhookConfiguration(
        kind=target.kind,
        name=target.name,
        webhooks=[
            WebhookEntry(
                name=f"{target.name}.example.com",
                service=ServiceReference(namespace=CA_NAMESPACE, name="webhook-service"),
                ca_bundle=ca_bundle,
            ),
            WebhookEntry(
                name="external.example.com",
                url="https://external.example.com/hook",
                ca_bundle=EXTERNAL_BUNDLE,
            ),
        ],
    )


async def seed_webhook_configurations(store, ca_bundle: bytes = b"") -> None:
    for target in WEBHOOK_TARGETS:
        await store.create(webhook_configuration(target, ca_bundle))


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def recording_store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def policy() -> RetryPolicy:
    """Four attempts, no sleeping between them."""
    return RetryPolicy(max_attempts=4, base_delay=0.0, factor=5.0, jitter=0.0, max_delay=0.0)


@pytest.fixture(scope="session")
def generator() -> CertificateAuthorityGenerator:
    # ECDSA keys are much faster to generate than RSA
    return CertificateAuthorityGenerator(validity=VALIDITY, algorithm="ECDSA")


@pytest.fixture(scope="session")
def ca(generator: CertificateAuthorityGenerator) -> CertificateAuthority:
    """A CA valid from NOW for VALIDITY."""
    return generator.generate(NOW)
