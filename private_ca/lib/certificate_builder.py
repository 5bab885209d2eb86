"""Certificate builder for X.509 certificate and CRL construction."""

from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.x509.oid import ExtendedKeyUsageOID

from .cert_utils import (
    extract_csr_alt_names,
    extract_csr_public_key,
    extract_csr_subject,
    validate_csr_signature,
)

CA_KEY_USAGE = x509.KeyUsage(
    digital_signature=True,
    content_commitment=False,
    key_encipherment=False,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=True,
    crl_sign=True,
    encipher_only=False,
    decipher_only=False,
)

HOST_KEY_USAGE = x509.KeyUsage(
    digital_signature=True,
    content_commitment=False,
    key_encipherment=True,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=False,
    crl_sign=False,
    encipher_only=False,
    decipher_only=False,
)


def _validity(validity_days: int, not_before: datetime | None) -> tuple[datetime, datetime]:
    start = not_before or datetime.now(UTC)
    return start, start + timedelta(days=validity_days)


def _checked_csr(csr: x509.CertificateSigningRequest) -> tuple[x509.Name, RSAPublicKey]:
    if not validate_csr_signature(csr):
        raise ValueError("CSR signature validation failed")
    return extract_csr_subject(csr), extract_csr_public_key(csr)


class CertificateBuilder:
    """Builds X.509 certificates for a CA hierarchy and its hosts."""

    @staticmethod
    def build_root_ca(
        subject: x509.Name,
        private_key: RSAPrivateKey,
        validity_days: int,
        serial_number: int,
        not_before: datetime | None = None,
    ) -> x509.Certificate:
        """Build self-signed Root CA certificate.

        Args:
            subject: Distinguished name for certificate subject and issuer
            private_key: RSA private key for signing
            validity_days: Certificate validity period in days
            serial_number: Serial for the certificate
            not_before: Start of validity (defaults to now)

        Returns:
            Self-signed X.509 certificate with CA extensions
        """
        start, end = _validity(validity_days, not_before)
        public_key = private_key.public_key()

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(public_key)
            .serial_number(serial_number)
            .not_valid_before(start)
            .not_valid_after(end)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(CA_KEY_USAGE, critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        )

        return builder.sign(private_key, hashes.SHA256())

    @staticmethod
    def build_intermediate_ca(
        csr: x509.CertificateSigningRequest,
        issuer_cert: x509.Certificate,
        issuer_key: RSAPrivateKey,
        validity_days: int,
        serial_number: int,
        not_before: datetime | None = None,
    ) -> x509.Certificate:
        """Build Intermediate CA certificate from CSR, signed by its parent CA.

        No path length constraint is set so intermediates can nest.

        Raises:
            ValueError: If CSR signature is invalid
        """
        subject, public_key = _checked_csr(csr)
        start, end = _validity(validity_days, not_before)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer_cert.subject)
            .public_key(public_key)
            .serial_number(serial_number)
            .not_valid_before(start)
            .not_valid_after(end)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(CA_KEY_USAGE, critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
                critical=False,
            )
        )

        return builder.sign(issuer_key, hashes.SHA256())

    @staticmethod
    def build_host_certificate(
        csr: x509.CertificateSigningRequest,
        issuer_cert: x509.Certificate,
        issuer_key: RSAPrivateKey,
        validity_days: int,
        serial_number: int,
        not_before: datetime | None = None,
    ) -> x509.Certificate:
        """Build TLS host certificate from CSR, signed by the issuing CA.

        Subject alternative names requested in the CSR are copied onto the
        certificate. The CA never sees the host's private key.

        Raises:
            ValueError: If CSR signature is invalid
        """
        subject, public_key = _checked_csr(csr)
        start, end = _validity(validity_days, not_before)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer_cert.subject)
            .public_key(public_key)
            .serial_number(serial_number)
            .not_valid_before(start)
            .not_valid_after(end)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(HOST_KEY_USAGE, critical=False)
            .add_extension(
                x509.ExtendedKeyUsage(
                    [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
                ),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
                critical=False,
            )
        )

        alt_names = extract_csr_alt_names(csr)
        if alt_names is not None:
            builder = builder.add_extension(alt_names, critical=False)

        return builder.sign(issuer_key, hashes.SHA256())

    @staticmethod
    def build_crl(
        issuer_cert: x509.Certificate,
        issuer_key: RSAPrivateKey,
        revoked: list[tuple[int, datetime]],
        crl_number: int,
        validity_days: int,
        last_update: datetime | None = None,
    ) -> x509.CertificateRevocationList:
        """Build a full CRL listing every revoked serial.

        Args:
            issuer_cert: CA certificate the CRL is issued under
            issuer_key: CA private key for signing
            revoked: (serial, revocation time) pairs
            crl_number: Monotonic CRL number
            validity_days: Days until nextUpdate
            last_update: thisUpdate (defaults to now)
        """
        start, end = _validity(validity_days, last_update)

        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(issuer_cert.subject)
            .last_update(start)
            .next_update(end)
            .add_extension(x509.CRLNumber(crl_number), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
                critical=False,
            )
        )
        for serial, revoked_at in revoked:
            builder = builder.add_revoked_certificate(
                x509.RevokedCertificateBuilder()
                .serial_number(serial)
                .revocation_date(revoked_at)
                .build()
            )

        return builder.sign(issuer_key, hashes.SHA256())
