"""Certificate utility functions for key generation, serialization, and name handling."""

import ipaddress
import uuid

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

PEM_CERT_MARKER = b"-----BEGIN CERTIFICATE-----"


def generate_private_key(key_size: int = 4096) -> RSAPrivateKey:
    """Generate RSA private key with specified size."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def serialize_private_key(key: RSAPrivateKey, passphrase: bytes | None = None) -> bytes:
    """Serialize private key to PEM (PKCS8), encrypted when a passphrase is given."""
    encryption: serialization.KeySerializationEncryption
    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase)
    else:
        encryption = serialization.NoEncryption()
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def deserialize_private_key(pem_data: bytes, passphrase: bytes | None = None) -> RSAPrivateKey:
    """Deserialize private key from PEM bytes."""
    key = serialization.load_pem_private_key(pem_data, password=passphrase or None)
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("expected RSA private key")
    return key


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes."""
    return x509.load_pem_x509_certificate(pem_data)


def deserialize_certificates(pem_data: bytes) -> list[x509.Certificate]:
    """Deserialize every certificate in a PEM bundle, preserving order."""
    if PEM_CERT_MARKER not in pem_data:
        return []
    return x509.load_pem_x509_certificates(pem_data)


def serialize_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize CSR to PEM format."""
    return csr.public_bytes(serialization.Encoding.PEM)


def deserialize_csr(pem_data: bytes) -> x509.CertificateSigningRequest:
    """Deserialize CSR from PEM bytes."""
    return x509.load_pem_x509_csr(pem_data)


def generate_serial_number() -> int:
    """Generate a random serial number for self-signed root certificates.

    Root certificates are not recorded in any ledger, so they take a UUID4
    value (122 bits of entropy) instead of a counter serial.
    """
    return uuid.uuid4().int


def format_serial(serial: int) -> str:
    """Return serial as uppercase hex padded to an even number of digits (e.g. 0A)."""
    serial_hex = f"{serial:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return serial_hex


def get_common_name(name: x509.Name) -> str | None:
    """Return the first CN attribute of a name, if any."""
    attributes = name.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
    if not attributes:
        return None
    value = attributes[0].value
    if not isinstance(value, str):
        raise ValueError("CN must be string")
    return value


def format_subject_oneline(name: x509.Name) -> str:
    """Render a name in OpenSSL one-line form, e.g. ``/C=GB/O=Org/CN=host1``."""
    parts = []
    for attribute in name:
        value = attribute.value
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        parts.append(f"/{attribute.rfc4514_attribute_name}={value}")
    return "".join(parts)


def parse_alt_names(alt_names: list[str]) -> list[x509.GeneralName]:
    """Convert ``IP:``/``DNS:`` prefixed strings to x509 general names.

    Raises:
        ValueError: If an entry has an unknown prefix or a malformed IP literal
    """
    general_names: list[x509.GeneralName] = []
    for entry in alt_names:
        kind, _, value = entry.partition(":")
        kind = kind.strip().upper()
        value = value.strip()
        if kind == "DNS":
            general_names.append(x509.DNSName(value))
        elif kind == "IP":
            general_names.append(x509.IPAddress(ipaddress.ip_address(value)))
        else:
            raise ValueError(f"unsupported subject alt name: {entry}")
    return general_names


def extract_csr_subject(csr: x509.CertificateSigningRequest) -> x509.Name:
    """Extract subject DN from CSR."""
    return csr.subject


def extract_csr_public_key(
    csr: x509.CertificateSigningRequest,
) -> rsa.RSAPublicKey:
    """Extract public key from CSR.

    Raises:
        ValueError: If public key is not RSA type
    """
    public_key = csr.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValueError("CSR public key must be RSA type")
    return public_key


def extract_csr_alt_names(csr: x509.CertificateSigningRequest) -> x509.SubjectAlternativeName | None:
    """Return the CSR's requested SAN extension, if present."""
    try:
        return csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return None


def validate_csr_signature(csr: x509.CertificateSigningRequest) -> bool:
    """Verify CSR self-signature to prove private key possession."""
    try:
        return csr.is_signature_valid
    except (ValueError, TypeError):
        return False


def validate_certificate_chain(certs: list[x509.Certificate]) -> bool:
    """Verify each certificate in a leaf-first list is issued by the next one.

    Returns True if every link verifies, False otherwise.
    """
    try:
        for child, issuer in zip(certs, certs[1:]):
            child.verify_directly_issued_by(issuer)
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False
