"""Test fixtures for private_ca tests."""

from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from private_ca.lib.cert_utils import generate_private_key, parse_alt_names
from private_ca.lib.certificate_builder import CertificateBuilder
from private_ca.lib.config import CAConfig, DistinguishedName, write_document
from private_ca.lib.hierarchy import ca_reference
from private_ca.lib.layout import CALayout
from private_ca.lib.lifecycle import LifecycleController

TEST_PASSPHRASE = b"correct horse battery staple"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def temp_output_dir(tmp_path: Path) -> Path:
    """Return temporary directory for test output artifacts."""
    return tmp_path


@pytest.fixture
def ca_config() -> CAConfig:
    """Return test CA configuration with a small key size."""
    return CAConfig(
        country="GB",
        state="London",
        locality="London",
        organization="Test Org",
        organizational_unit="Test Unit",
        common_name="Test Root CA",
        validity_days=3650,
        key_size=2048,  # Faster for tests
        crl_days=7,
    )


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Return a clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def passphrase_calls() -> list[Path]:
    """Record every CA root a passphrase was requested for."""
    return []


@pytest.fixture
def passphrase_source(passphrase_calls: list[Path]) -> Callable[[CALayout], bytes]:
    def source(layout: CALayout) -> bytes:
        passphrase_calls.append(layout.root)
        return TEST_PASSPHRASE

    return source


@pytest.fixture
def make_controller(
    passphrase_source: Callable[[CALayout], bytes],
    clock: Callable[[], datetime],
) -> Callable[[Path], LifecycleController]:
    """Return a factory for controllers sharing the test passphrase and clock."""

    def factory(root: Path) -> LifecycleController:
        return LifecycleController(root, passphrase_source=passphrase_source, clock=clock)

    return factory


@pytest.fixture
def make_ca(
    make_controller: Callable[[Path], LifecycleController],
    ca_config: CAConfig,
) -> Callable[..., LifecycleController]:
    """Return a factory that creates and initializes a CA.

    ``parent`` makes the new CA an intermediate of that CA directory.
    """

    def factory(
        root: Path, common_name: str = "Test Root CA", parent: Path | None = None
    ) -> LifecycleController:
        controller = make_controller(root)
        controller.create()
        write_document(controller.layout.config_path, replace(ca_config, common_name=common_name))
        parent_ref = ca_reference(CALayout(parent.resolve())) if parent else None
        controller.init(parent_ref)
        return controller

    return factory


@pytest.fixture
def root_ca(make_ca: Callable[..., LifecycleController], temp_output_dir: Path) -> LifecycleController:
    """Return a controller for an initialized root CA."""
    return make_ca(temp_output_dir / "root")


@pytest.fixture
def intermediate_ca(
    make_ca: Callable[..., LifecycleController],
    root_ca: LifecycleController,
    temp_output_dir: Path,
) -> LifecycleController:
    """Return a controller for an intermediate CA signed by root_ca."""
    return make_ca(
        temp_output_dir / "issuing",
        common_name="Test Issuing CA",
        parent=root_ca.layout.root,
    )


@pytest.fixture
def root_key() -> RSAPrivateKey:
    """Generate RSA private key for Root CA."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def root_dn() -> DistinguishedName:
    """Return test Root CA distinguished name."""
    return DistinguishedName(
        country="GB",
        state="London",
        locality="London",
        organization="Test Org",
        organizational_unit="Test Unit",
        common_name="Test Root CA",
    )


@pytest.fixture
def root_cert(root_key: RSAPrivateKey, root_dn: DistinguishedName) -> x509.Certificate:
    """Generate self-signed Root CA certificate."""
    return CertificateBuilder.build_root_ca(
        subject=root_dn.to_x509_name(),
        private_key=root_key,
        validity_days=365,
        serial_number=0x1000,
    )


@pytest.fixture
def intermediate_key() -> RSAPrivateKey:
    """Generate RSA private key for Intermediate CA."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def intermediate_csr(
    intermediate_key: RSAPrivateKey,
    root_dn: DistinguishedName,
) -> x509.CertificateSigningRequest:
    """Generate Intermediate CA CSR."""
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(replace(root_dn, common_name="Test Intermediate CA").to_x509_name())
        .sign(intermediate_key, hashes.SHA256())
    )


@pytest.fixture
def intermediate_cert(
    intermediate_csr: x509.CertificateSigningRequest,
    root_cert: x509.Certificate,
    root_key: RSAPrivateKey,
) -> x509.Certificate:
    """Generate Intermediate CA certificate signed by Root CA."""
    return CertificateBuilder.build_intermediate_ca(
        csr=intermediate_csr,
        issuer_cert=root_cert,
        issuer_key=root_key,
        validity_days=365,
        serial_number=1,
    )


@pytest.fixture
def host_key() -> RSAPrivateKey:
    """Generate RSA private key for a host certificate."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def host_csr(host_key: RSAPrivateKey, root_dn: DistinguishedName) -> x509.CertificateSigningRequest:
    """Generate host CSR requesting DNS and IP alt names."""
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(replace(root_dn, common_name="host1").to_x509_name())
        .add_extension(
            x509.SubjectAlternativeName(parse_alt_names(["DNS:host1", "IP:10.0.0.5"])),
            critical=False,
        )
        .sign(host_key, hashes.SHA256())
    )


@pytest.fixture
def host_cert(
    host_csr: x509.CertificateSigningRequest,
    intermediate_cert: x509.Certificate,
    intermediate_key: RSAPrivateKey,
) -> x509.Certificate:
    """Generate host certificate signed by Intermediate CA."""
    return CertificateBuilder.build_host_certificate(
        csr=host_csr,
        issuer_cert=intermediate_cert,
        issuer_key=intermediate_key,
        validity_days=30,
        serial_number=2,
    )
