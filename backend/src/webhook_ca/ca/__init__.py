"""Certificate Authority module for the webhook CA controller.

This module provides:
- The CertificateAuthority value (PEM blobs plus validity window)
- Self-signed CA generation
- Conversion to and from the persisted CA record layout
"""

from webhook_ca.ca.authority import (
    CAExpiredError,
    CertificateAuthority,
    CertificateAuthorityError,
    CertificateAuthorityGenerator,
    MissingCAError,
)

__all__ = [
    "CAExpiredError",
    "CertificateAuthority",
    "CertificateAuthorityError",
    "CertificateAuthorityGenerator",
    "MissingCAError",
]
