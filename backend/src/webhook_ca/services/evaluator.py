"""CA state evaluation: keep the stored CA or regenerate it."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from webhook_ca.ca.authority import (
    CAExpiredError,
    CertificateAuthority,
    CertificateAuthorityError,
    MissingCAError,
)
from webhook_ca.domain.states import RegenerateReason, ResourceKind
from webhook_ca.repository.store import NotFoundError, ResourceStore, StoreError

logger = logging.getLogger(__name__)


class RetrievalError(Exception):
    """Raised when the CA record exists but cannot be loaded."""

    pass


@dataclass(frozen=True)
class UseExisting:
    """The stored CA is valid for ``remaining`` more."""

    ca: CertificateAuthority
    remaining: timedelta


@dataclass(frozen=True)
class Regenerate:
    """A new CA must be generated in this reconcile."""

    reason: RegenerateReason

    @property
    def discard_existing(self) -> bool:
        """Residual record data is treated as empty, not as a fault."""
        return self.reason == RegenerateReason.EXPIRED


Decision = UseExisting | Regenerate


async def load_certificate_authority(
    store: ResourceStore, namespace: str, name: str
) -> CertificateAuthority | None:
    """Load the CA from its record.

    Returns:
        The stored CA, or None when the record or its CA material is absent.

    Raises:
        RetrievalError: On any other store failure or malformed CA material.
    """
    try:
        record = await store.get(ResourceKind.SECRET, name, namespace)
    except NotFoundError:
        return None
    except StoreError as e:
        raise RetrievalError(f"Cannot retrieve CA record {namespace}/{name}: {e}") from e

    try:
        return CertificateAuthority.from_secret_data(record.data)
    except MissingCAError:
        return None
    except CertificateAuthorityError as e:
        raise RetrievalError(f"CA record {namespace}/{name} is malformed: {e}") from e


def evaluate(ca: CertificateAuthority | None, now: datetime, force: bool = False) -> Decision:
    """Decide whether the loaded CA can be kept at ``now``.

    - No CA: Regenerate(MISSING)
    - Rotation forced by the operator: Regenerate(FORCED)
    - notAfter <= now: Regenerate(EXPIRED)
    - Otherwise: UseExisting(remaining = notAfter - now)
    """
    if ca is None:
        return Regenerate(RegenerateReason.MISSING)
    if force:
        return Regenerate(RegenerateReason.FORCED)
    try:
        remaining = ca.expires_in(now)
    except CAExpiredError:
        logger.info(
            "ca_expired",
            extra={"not_after": ca.not_after.isoformat(), "fingerprint": ca.fingerprint},
        )
        return Regenerate(RegenerateReason.EXPIRED)
    return UseExisting(ca=ca, remaining=remaining)
