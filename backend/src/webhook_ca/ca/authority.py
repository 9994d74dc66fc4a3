"""CA generation and loading for the admission webhook trust chain.

The CA is persisted as two PEM blobs in the CA record:
- ``ca.crt``: the self-signed CA certificate (also the distributed CA bundle)
- ``ca.key``: the PKCS#8 private key

Blobs are kept exactly as loaded so an unchanged CA always maps back to
identical record data.
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.x509.oid import NameOID
from opentelemetry import trace

from webhook_ca.metrics import ca_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

CA_CERT_KEY = "ca.crt"
CA_PRIVATE_KEY_KEY = "ca.key"


class CertificateAuthorityError(Exception):
    """Raised when a CA cannot be generated or parsed."""

    pass


class MissingCAError(CertificateAuthorityError):
    """Raised when the CA record carries no CA material.

    Not a failure: it routes the reconcile to regeneration.
    """

    pass


class CAExpiredError(CertificateAuthorityError):
    """Raised when the CA is already past its notAfter."""

    def __init__(self, not_after: datetime, now: datetime):
        self.not_after = not_after
        self.now = now
        super().__init__(f"CA expired at {not_after.isoformat()} (now {now.isoformat()})")


@dataclass(frozen=True)
class CertificateAuthority:
    """CA certificate and private key as PEM byte blobs."""

    certificate_pem: bytes
    private_key_pem: bytes
    certificate: x509.Certificate = field(repr=False, compare=False)

    @classmethod
    def from_pem(cls, certificate_pem: bytes, private_key_pem: bytes) -> "CertificateAuthority":
        """Parse and validate a PEM certificate/key pair.

        Raises:
            CertificateAuthorityError: If either blob cannot be parsed.
        """
        try:
            certificate = x509.load_pem_x509_certificate(certificate_pem)
            serialization.load_pem_private_key(private_key_pem, password=None)
        except ValueError as e:
            raise CertificateAuthorityError(f"Invalid CA material: {e}") from e

        return cls(
            certificate_pem=certificate_pem,
            private_key_pem=private_key_pem,
            certificate=certificate,
        )

    @classmethod
    def from_secret_data(cls, data: dict[str, bytes]) -> "CertificateAuthority":
        """Load the CA from CA record data.

        Raises:
            MissingCAError: If either key is absent or empty.
            CertificateAuthorityError: If the stored material is malformed.
        """
        certificate_pem = data.get(CA_CERT_KEY)
        private_key_pem = data.get(CA_PRIVATE_KEY_KEY)
        if not certificate_pem or not private_key_pem:
            raise MissingCAError("CA record does not contain a certificate and private key")
        return cls.from_pem(certificate_pem, private_key_pem)

    def to_secret_data(self) -> dict[str, bytes]:
        """Get the CA record data layout."""
        return {
            CA_CERT_KEY: self.certificate_pem,
            CA_PRIVATE_KEY_KEY: self.private_key_pem,
        }

    def certificate_bytes(self) -> bytes:
        return self.certificate_pem

    def private_key_bytes(self) -> bytes:
        return self.private_key_pem

    @property
    def not_before(self) -> datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    @property
    def validity(self) -> timedelta:
        """Full validity period of the certificate."""
        return self.not_after - self.not_before

    @property
    def fingerprint(self) -> str:
        """Lowercase hex SHA-256 of the DER certificate."""
        der_bytes = self.certificate.public_bytes(serialization.Encoding.DER)
        return hashlib.sha256(der_bytes).hexdigest().lower()

    def expires_in(self, now: datetime) -> timedelta:
        """Time left until notAfter.

        Raises:
            CAExpiredError: If notAfter is at or before ``now``.
        """
        if self.not_after <= now:
            raise CAExpiredError(self.not_after, now)
        return self.not_after - now


class CertificateAuthorityGenerator:
    """Generates self-signed CAs for the admission webhooks."""

    DEFAULT_VALIDITY = timedelta(days=365)
    DEFAULT_ALGORITHM = "RSA"
    DEFAULT_RSA_KEY_SIZE = 2048
    ECDSA_CURVE = ec.SECP384R1()

    def __init__(
        self,
        validity: timedelta = DEFAULT_VALIDITY,
        algorithm: str = DEFAULT_ALGORITHM,
        rsa_key_size: int = DEFAULT_RSA_KEY_SIZE,
        common_name: str = "webhook-ca",
        organization: str = "Webhook CA Controller",
    ) -> None:
        if validity <= timedelta(0):
            raise CertificateAuthorityError("CA validity must be positive")
        self.validity = validity
        self.algorithm = algorithm.upper()
        self.rsa_key_size = rsa_key_size
        self.common_name = common_name
        self.organization = organization

    @classmethod
    def from_settings(cls, settings) -> "CertificateAuthorityGenerator":
        return cls(
            validity=timedelta(days=settings.CA_VALIDITY_DAYS),
            algorithm=settings.CA_ALGORITHM,
            rsa_key_size=settings.CA_RSA_KEY_SIZE,
            common_name=settings.CA_COMMON_NAME,
            organization=settings.CA_ORGANIZATION,
        )

    def generate(self, now: datetime | None = None) -> CertificateAuthority:
        """Generate a new CA valid from ``now`` for the configured validity.

        ``now`` is truncated to whole seconds, the resolution X.509 stores.

        Raises:
            CertificateAuthorityError: If generation fails.
        """
        with tracer.start_as_current_span("CertificateAuthorityGenerator.generate") as span:
            span.set_attribute("algorithm", self.algorithm)

            start_time = time.time()
            not_before = (now or datetime.now(timezone.utc)).replace(microsecond=0)
            not_after = not_before + self.validity

            try:
                private_key = self._generate_private_key()

                subject = issuer = x509.Name(
                    [
                        x509.NameAttribute(NameOID.COMMON_NAME, self.common_name),
                        x509.NameAttribute(NameOID.ORGANIZATION_NAME, self.organization),
                    ]
                )

                certificate = (
                    x509.CertificateBuilder()
                    .subject_name(subject)
                    .issuer_name(issuer)
                    .public_key(private_key.public_key())  # type: ignore[arg-type]
                    .serial_number(x509.random_serial_number())
                    .not_valid_before(not_before)
                    .not_valid_after(not_after)
                    .add_extension(
                        x509.BasicConstraints(ca=True, path_length=0),
                        critical=True,
                    )
                    .add_extension(
                        x509.KeyUsage(
                            digital_signature=True,
                            key_cert_sign=True,
                            crl_sign=True,
                            key_encipherment=False,
                            content_commitment=False,
                            data_encipherment=False,
                            key_agreement=False,
                            encipher_only=False,
                            decipher_only=False,
                        ),
                        critical=True,
                    )
                    .add_extension(
                        x509.SubjectKeyIdentifier.from_public_key(
                            private_key.public_key()  # type: ignore[arg-type]
                        ),
                        critical=False,
                    )
                    .sign(private_key, hashes.SHA256())  # type: ignore[arg-type]
                )

                certificate_pem = certificate.public_bytes(serialization.Encoding.PEM)
                private_key_pem = private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.PKCS8,
                    encryption_algorithm=serialization.NoEncryption(),
                )
            except ValueError as e:
                logger.error(
                    "ca_generation_failed",
                    extra={"algorithm": self.algorithm, "error": str(e)},
                )
                raise CertificateAuthorityError(f"Failed to generate CA: {e}") from e

            ca = CertificateAuthority(
                certificate_pem=certificate_pem,
                private_key_pem=private_key_pem,
                certificate=certificate,
            )

            generation_time = time.time() - start_time
            span.set_attribute("ca_not_after", ca.not_after.isoformat())
            ca_metrics.record_ca_generation_duration(generation_time)

            logger.info(
                "ca_generated",
                extra={
                    "algorithm": self.algorithm,
                    "fingerprint": ca.fingerprint,
                    "not_after": ca.not_after.isoformat(),
                    "duration_seconds": generation_time,
                },
            )
            return ca

    def _generate_private_key(self) -> PrivateKeyTypes:
        if self.algorithm == "ECDSA":
            return ec.generate_private_key(self.ECDSA_CURVE)
        if self.algorithm == "RSA":
            return rsa.generate_private_key(
                public_exponent=65537,
                key_size=self.rsa_key_size,
            )
        raise CertificateAuthorityError(f"Unsupported CA algorithm: {self.algorithm}")
