"""Crypto backend contract and the default cryptography-based implementation."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.types import CertificatePublicKeyTypes

from .cert_utils import (
    deserialize_certificate,
    deserialize_csr,
    deserialize_private_key,
    generate_private_key,
    parse_alt_names,
    serialize_certificate,
    serialize_csr,
    serialize_private_key,
)
from .certificate_builder import CertificateBuilder
from .config import DistinguishedName
from .errors import BackendFailure

logger = logging.getLogger(__name__)


class CertificateProfile(Enum):
    """Extension profile applied when signing a CSR."""

    ROOT_CA = "root-ca"
    INTERMEDIATE_CA = "intermediate-ca"
    HOST = "host"


@dataclass
class Signer:
    """Key material used to sign. ``cert_pem`` is None for self-signing."""

    key_pem: bytes
    passphrase: bytes | None
    cert_pem: bytes | None = None


class CryptoBackend(Protocol):
    """Capabilities the lifecycle controller needs from a crypto provider."""

    def generate_key(self, key_size: int, passphrase: bytes | None = None) -> bytes: ...

    def create_csr(
        self,
        key_pem: bytes,
        subject: DistinguishedName,
        alt_names: list[str],
        passphrase: bytes | None = None,
    ) -> bytes: ...

    def sign_certificate(
        self,
        csr_pem: bytes,
        signer: Signer,
        serial_number: int,
        validity_days: int,
        profile: CertificateProfile,
        not_before: datetime | None = None,
    ) -> bytes: ...

    def sign_crl(
        self,
        signer: Signer,
        revoked: list[tuple[int, datetime]],
        crl_number: int,
        validity_days: int,
        last_update: datetime | None = None,
    ) -> bytes: ...


@contextmanager
def _backend_call(operation: str) -> Iterator[None]:
    """Translate cryptography errors into BackendFailure."""
    try:
        yield
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.error("Backend %s failed: %s", operation, e)
        raise BackendFailure(f"{operation} failed: {e}") from e


class CryptographyBackend:
    """In-process backend built on the ``cryptography`` library."""

    def generate_key(self, key_size: int, passphrase: bytes | None = None) -> bytes:
        """Generate an RSA key, returned as PEM (encrypted when a passphrase is given)."""
        with _backend_call("key generation"):
            key = generate_private_key(key_size)
            return serialize_private_key(key, passphrase)

    def create_csr(
        self,
        key_pem: bytes,
        subject: DistinguishedName,
        alt_names: list[str],
        passphrase: bytes | None = None,
    ) -> bytes:
        """Create a CSR for ``subject`` requesting the given ``IP:``/``DNS:`` alt names."""
        with _backend_call("CSR creation"):
            key = deserialize_private_key(key_pem, passphrase)
            builder = x509.CertificateSigningRequestBuilder().subject_name(subject.to_x509_name())
            if alt_names:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName(parse_alt_names(alt_names)),
                    critical=False,
                )
            return serialize_csr(builder.sign(key, hashes.SHA256()))

    def sign_certificate(
        self,
        csr_pem: bytes,
        signer: Signer,
        serial_number: int,
        validity_days: int,
        profile: CertificateProfile,
        not_before: datetime | None = None,
    ) -> bytes:
        """Sign a CSR under ``profile``.

        ROOT_CA self-signs: the CSR's key must be the signer's key and
        ``signer.cert_pem`` is ignored. Other profiles require an issuer
        certificate.
        """
        with _backend_call(f"{profile.value} signing"):
            csr = deserialize_csr(csr_pem)
            key = deserialize_private_key(signer.key_pem, signer.passphrase)

            if profile is CertificateProfile.ROOT_CA:
                if _public_der(csr.public_key()) != _public_der(key.public_key()):
                    raise ValueError("self-signed CSR does not match signing key")
                cert = CertificateBuilder.build_root_ca(
                    subject=csr.subject,
                    private_key=key,
                    validity_days=validity_days,
                    serial_number=serial_number,
                    not_before=not_before,
                )
                return serialize_certificate(cert)

            if signer.cert_pem is None:
                raise ValueError(f"{profile.value} signing requires an issuer certificate")
            issuer_cert = deserialize_certificate(signer.cert_pem)
            build = (
                CertificateBuilder.build_intermediate_ca
                if profile is CertificateProfile.INTERMEDIATE_CA
                else CertificateBuilder.build_host_certificate
            )
            cert = build(
                csr=csr,
                issuer_cert=issuer_cert,
                issuer_key=key,
                validity_days=validity_days,
                serial_number=serial_number,
                not_before=not_before,
            )
            return serialize_certificate(cert)

    def sign_crl(
        self,
        signer: Signer,
        revoked: list[tuple[int, datetime]],
        crl_number: int,
        validity_days: int,
        last_update: datetime | None = None,
    ) -> bytes:
        """Sign a full CRL for the given revoked serials."""
        with _backend_call("CRL signing"):
            if signer.cert_pem is None:
                raise ValueError("CRL signing requires the CA certificate")
            crl = CertificateBuilder.build_crl(
                issuer_cert=deserialize_certificate(signer.cert_pem),
                issuer_key=deserialize_private_key(signer.key_pem, signer.passphrase),
                revoked=revoked,
                crl_number=crl_number,
                validity_days=validity_days,
                last_update=last_update,
            )
            return crl.public_bytes(serialization.Encoding.PEM)


def _public_der(public_key: CertificatePublicKeyTypes) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
