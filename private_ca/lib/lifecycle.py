"""Lifecycle controller: create, init, new, sign, revoke, renew, crl, status, destroy."""

import logging
import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType

from .backend import CertificateProfile, CryptoBackend, CryptographyBackend, Signer
from .cert_utils import (
    deserialize_certificate,
    format_serial,
    format_subject_oneline,
    generate_serial_number,
    get_common_name,
)
from .config import CAConfig, HostConfig, load_ca_config, render_host_config, write_document
from .errors import (
    AlreadyInitialized,
    CAError,
    DestroyAborted,
    HostAlreadyExists,
    InvalidParent,
    MissingConfig,
    NoValidCertificate,
)
from .hierarchy import (
    CARole,
    LocalSigningAuthority,
    SigningAuthority,
    SigningPolicy,
    build_chain,
    ca_common_name,
    ca_reference,
    ca_role,
    is_ca_reference,
    resolve_ca_reference,
    validate_parent,
)
from .host_store import HostStore
from .layout import CALayout
from .ledger import Ledger, LedgerRecord
from .models import InitResult, IssueResult, RenewResult, RevokeResult

logger = logging.getLogger(__name__)

# Host keys are not configurable per host
HOST_KEY_SIZE = 2048

PassphraseSource = Callable[[CALayout], bytes | None]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class PassphraseCache:
    """CA passphrases fetched once per CA for the life of one command."""

    def __init__(self, source: PassphraseSource) -> None:
        self._source = source
        self._cache: dict[Path, bytes | None] = {}

    def get(self, layout: CALayout) -> bytes | None:
        if layout.root not in self._cache:
            self._cache[layout.root] = self._source(layout)
        return self._cache[layout.root]

    def clear(self) -> None:
        self._cache.clear()


class LifecycleController:
    """Runs lifecycle commands against one CA directory.

    Use as a context manager around a single top-level command; cached
    passphrases are released on exit.

    There is no locking. Running two commands against the same CA directory
    at once can corrupt the ledger or the serial counter.
    """

    def __init__(
        self,
        root: Path,
        passphrase_source: PassphraseSource,
        backend: CryptoBackend | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize controller for the CA rooted at ``root``.

        Args:
            root: CA root directory (holds ``ca/`` and ``hosts/``)
            passphrase_source: Called once per CA to obtain its key passphrase
            backend: Crypto backend (defaults to CryptographyBackend)
            clock: Source of the current UTC time
        """
        self.layout = CALayout(Path(root).expanduser().resolve())
        self.backend: CryptoBackend = backend or CryptographyBackend()
        self.clock = clock
        self.credentials = PassphraseCache(passphrase_source)
        self._passphrase_source = passphrase_source
        self.ledger = Ledger(
            index_path=self.layout.index_path,
            serial_path=self.layout.serial_path,
            crlnumber_path=self.layout.crlnumber_path,
        )
        self.hosts = HostStore(self.layout.hosts_dir)

    def __enter__(self) -> "LifecycleController":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.credentials.clear()

    # -- helpers -----------------------------------------------------------

    def _require_initialized(self) -> CAConfig:
        if not self.layout.is_initialized():
            raise MissingConfig(f"CA is not initialized: {self.layout.root}; run init first")
        return load_ca_config(self.layout.config_path)

    def _signer(self) -> Signer:
        return Signer(
            key_pem=self.layout.key_path.read_bytes(),
            passphrase=self.credentials.get(self.layout),
            cert_pem=self.layout.cert_path.read_bytes(),
        )

    def _record_issued(self, serial: int, cert_pem: bytes) -> LedgerRecord:
        cert = deserialize_certificate(cert_pem)
        self.layout.newcerts_dir.mkdir(parents=True, exist_ok=True)
        (self.layout.newcerts_dir / f"{format_serial(serial)}.pem").write_bytes(cert_pem)
        return self.ledger.append_valid(
            serial=serial,
            expiry=cert.not_valid_after_utc,
            subject=format_subject_oneline(cert.subject),
        )

    def _regenerate_crl(self, config: CAConfig) -> Path:
        revoked = [
            (record.serial, record.revoked_at)
            for record in self.ledger.revoked_records()
            if record.revoked_at is not None
        ]
        crl_number = self.ledger.next_crl_number()
        crl_pem = self.backend.sign_crl(
            signer=self._signer(),
            revoked=revoked,
            crl_number=crl_number,
            validity_days=config.crl_days,
            last_update=self.clock(),
        )
        self.layout.crl_path.write_bytes(crl_pem)
        logger.info("Wrote CRL #%d with %d revoked serial(s)", crl_number, len(revoked))
        return self.layout.crl_path

    def _target_common_name(self, target: str) -> str:
        if is_ca_reference(target):
            return ca_common_name(resolve_ca_reference(target))
        if self.hosts.exists(target):
            return self.hosts.load_config(target).common_name or target
        return target

    def signing_authority(self, parent: CALayout) -> SigningAuthority:
        """Signing authority for ``parent``: this same tooling, pointed at the parent CA."""
        return LocalSigningAuthority(
            parent,
            lambda: LifecycleController(
                parent.root,
                passphrase_source=self._passphrase_source,
                backend=self.backend,
                clock=self.clock,
            ),
        )

    def destroy_phrase(self) -> str:
        return f"destroy {self.layout.root.name}"

    # -- commands ----------------------------------------------------------

    def create(self) -> Path:
        """Scaffold an empty CA directory with default config documents.

        Raises:
            AlreadyInitialized: If the CA directory already exists
        """
        if self.layout.root.exists():
            raise AlreadyInitialized(f"CA directory already exists: {self.layout.root}")

        self.layout.ca_dir.mkdir(parents=True)
        self.layout.hosts_dir.mkdir()

        config = CAConfig(common_name=f"{self.layout.root.name} CA")
        dn = config.distinguished_name()
        template = HostConfig(
            country=dn.country,
            state=dn.state,
            locality=dn.locality,
            organization=dn.organization,
            organizational_unit=dn.organizational_unit,
        )
        write_document(self.layout.config_path, config)
        write_document(self.layout.host_template_path, template)

        logger.info("Created CA scaffold at %s", self.layout.root)
        return self.layout.root

    def init(self, parent_ref: str | None = None) -> InitResult:
        """Bootstrap the CA key and certificate, ledger, counters and CRL.

        With no ``parent_ref`` the CA is a self-signed root. With a
        ``ca:<path>`` reference the CA is an intermediate: its CSR is signed
        by the parent CA's own controller and a chain file is written.

        Created directories and keys are not rolled back if a later step fails.

        Raises:
            AlreadyInitialized: If a certificate (or key from an earlier attempt) exists
            MissingConfig: If ca.json is missing or has no validity period
            InvalidParent: If the parent reference is not an initialized CA
            BackendFailure: If key generation or signing fails
        """
        if self.layout.is_initialized():
            raise AlreadyInitialized(f"CA already initialized: {self.layout.cert_path}")
        if self.layout.key_path.exists():
            raise AlreadyInitialized(
                f"CA key exists without a certificate (interrupted init?): {self.layout.key_path}"
            )
        config = load_ca_config(self.layout.config_path)

        parent: CALayout | None = None
        if parent_ref:
            if not is_ca_reference(parent_ref):
                raise InvalidParent(f"parent must be a CA reference (ca:<path>): {parent_ref}")
            parent = resolve_ca_reference(parent_ref)
            if parent.root == self.layout.root:
                raise InvalidParent("a CA cannot be its own parent")
            validate_parent(parent)

        passphrase = self.credentials.get(self.layout)
        key_pem = self.backend.generate_key(config.key_size, passphrase)
        self.layout.newcerts_dir.mkdir(parents=True, exist_ok=True)
        self.layout.key_path.write_bytes(key_pem)
        self.layout.key_path.chmod(0o600)

        csr_pem = self.backend.create_csr(key_pem, config.distinguished_name(), [], passphrase)

        chain_path: Path | None = None
        if parent is None:
            cert_pem = self.backend.sign_certificate(
                csr_pem=csr_pem,
                signer=Signer(key_pem=key_pem, passphrase=passphrase),
                serial_number=generate_serial_number(),
                validity_days=config.validity_days,
                profile=CertificateProfile.ROOT_CA,
                not_before=self.clock(),
            )
            self.layout.cert_path.write_bytes(cert_pem)
        else:
            self.layout.csr_path.write_bytes(csr_pem)
            authority = self.signing_authority(parent)
            cert_pem = authority.sign(csr_pem, SigningPolicy(requester=ca_reference(self.layout)))
            self.layout.cert_path.write_bytes(cert_pem)
            chain_path = build_chain(self.layout, parent)

        self.ledger.initialize()
        crl_path = self._regenerate_crl(config)

        role = CARole.ROOT if parent is None else CARole.INTERMEDIATE
        logger.info("Initialized %s CA %s at %s", role.value, config.common_name, self.layout.root)
        return InitResult(
            role=role,
            key_path=self.layout.key_path,
            cert_path=self.layout.cert_path,
            chain_path=chain_path,
            crl_path=crl_path,
        )

    def new(self, hostname: str, alt_names: list[str] | None = None) -> Path:
        """Register a host workspace with a config rendered from the host template.

        Raises:
            HostAlreadyExists: If the host workspace exists
            MissingTemplate: If the CA has no host template
        """
        if self.hosts.exists(hostname):
            raise HostAlreadyExists(f"host already exists: {hostname}")
        config = render_host_config(self.layout.host_template_path, hostname, alt_names or [])
        host_dir = self.hosts.create_host(hostname, config)
        logger.info("Registered host %s (%s)", hostname, config.subject_alt_names)
        return host_dir

    def sign(self, target: str) -> IssueResult:
        """Issue a certificate for a host, or for a child CA given as ``ca:<path>``."""
        if is_ca_reference(target):
            return self.sign_ca(resolve_ca_reference(target))
        return self.sign_host(target)

    def issue_ca_certificate(self, csr_pem: bytes, policy: SigningPolicy) -> bytes:
        """Sign a child CA's CSR with the next serial and record it in this CA's ledger."""
        config = self._require_initialized()
        serial = self.ledger.next_serial()
        cert_pem = self.backend.sign_certificate(
            csr_pem=csr_pem,
            signer=self._signer(),
            serial_number=serial,
            validity_days=config.validity_days,
            profile=policy.profile,
            not_before=self.clock(),
        )
        record = self._record_issued(serial, cert_pem)
        logger.info(
            "Issued %s certificate serial %s to %s",
            policy.profile.value,
            format_serial(serial),
            policy.requester or record.subject,
        )
        return cert_pem

    def sign_ca(self, child: CALayout) -> IssueResult:
        """Sign a child CA's pending CSR, write its certificate and rebuild its chain.

        Raises:
            InvalidParent: If asked to sign itself
            MissingConfig: If the child has no CSR
        """
        if child.root == self.layout.root:
            raise InvalidParent("a CA cannot sign its own certificate")
        if not child.csr_path.is_file():
            raise MissingConfig(f"no CSR for CA {child.root}: {child.csr_path}")

        cert_pem = self.issue_ca_certificate(
            child.csr_path.read_bytes(), SigningPolicy(requester=ca_reference(child))
        )
        child.cert_path.write_bytes(cert_pem)
        chain_path = build_chain(child, self.layout)

        cert = deserialize_certificate(cert_pem)
        return IssueResult(
            serial=cert.serial_number,
            common_name=get_common_name(cert.subject) or ca_reference(child),
            cert_path=child.cert_path,
            chain_cert_path=chain_path,
        )

    def sign_host(self, hostname: str) -> IssueResult:
        """Issue a new certificate instance for a registered host.

        A CSR staged at ``hosts/<hostname>/request.csr`` is copied into the
        instance and removed once the certificate is recorded, so a failed
        signing leaves it staged. Otherwise a fresh key and CSR are generated
        from the host config.

        Raises:
            MissingConfig: If the CA or host config is missing or has no validity period
            BackendFailure: If key generation or signing fails
        """
        config = self._require_initialized()
        host_config = self.hosts.load_config(hostname)

        existing = self.ledger.find_valid_by_cn(host_config.common_name)
        if existing:
            logger.warning(
                "%s already has %d valid certificate(s); issuing another",
                hostname,
                len(existing),
            )

        now = self.clock()
        instance_dir = self.hosts.new_instance(hostname, now.date())
        csr_path = instance_dir / f"{hostname}.csr"
        staged_csr = self.hosts.staged_csr_path(hostname)

        key_pem: bytes | None = None
        key_path: Path | None = None
        staged = staged_csr.is_file()
        if staged:
            csr_pem = staged_csr.read_bytes()
            csr_path.write_bytes(csr_pem)
            logger.info("Using staged CSR for %s", hostname)
        else:
            key_pem = self.backend.generate_key(HOST_KEY_SIZE)
            key_path = instance_dir / f"{hostname}.key"
            key_path.write_bytes(key_pem)
            key_path.chmod(0o600)
            csr_pem = self.backend.create_csr(
                key_pem, host_config.distinguished_name(), host_config.alt_names()
            )
            csr_path.write_bytes(csr_pem)

        serial = self.ledger.next_serial()
        cert_pem = self.backend.sign_certificate(
            csr_pem=csr_pem,
            signer=self._signer(),
            serial_number=serial,
            validity_days=config.validity_days,
            profile=CertificateProfile.HOST,
            not_before=now,
        )
        cert_path = instance_dir / f"{hostname}.crt"
        cert_path.write_bytes(cert_pem)
        record = self._record_issued(serial, cert_pem)
        # Staged CSR stays in place until the certificate is recorded
        if staged:
            staged_csr.unlink()

        result = IssueResult(
            serial=serial,
            common_name=record.common_name or hostname,
            cert_path=cert_path,
            instance_dir=instance_dir,
            key_path=key_path,
        )
        if key_pem is not None:
            result.bundle_path = instance_dir / f"{hostname}.pem"
            result.bundle_path.write_bytes(key_pem + cert_pem)

        if ca_role(self.layout) is CARole.INTERMEDIATE:
            chain_pem = self.layout.chain_path.read_bytes()
            result.chain_cert_path = instance_dir / f"{hostname}-chain.crt"
            result.chain_cert_path.write_bytes(cert_pem + chain_pem)
            if key_pem is not None:
                result.chain_bundle_path = instance_dir / f"{hostname}-chain.pem"
                result.chain_bundle_path.write_bytes(key_pem + cert_pem + chain_pem)

        logger.info(
            "Issued certificate serial %s for %s in %s",
            format_serial(serial),
            hostname,
            instance_dir.name,
        )
        return result

    def revoke(self, target: str) -> RevokeResult:
        """Revoke the valid certificate for a host or ``ca:<path>`` and regenerate the CRL.

        When several valid records share the common name, the first one in
        ledger order is revoked.

        Raises:
            NoValidCertificate: If no valid record matches
        """
        config = self._require_initialized()
        common_name = self._target_common_name(target)

        matches = self.ledger.find_valid_by_cn(common_name)
        if not matches:
            raise NoValidCertificate(f"no valid certificate for {common_name}")
        if len(matches) > 1:
            logger.warning(
                "%d valid certificates share CN %s; revoking the first in ledger order (serial %s)",
                len(matches),
                common_name,
                format_serial(matches[0].serial),
            )

        record = self.ledger.revoke(matches[0].serial, self.clock())
        crl_path = self._regenerate_crl(config)
        logger.info("Revoked serial %s (%s)", format_serial(record.serial), common_name)
        return RevokeResult(serial=record.serial, common_name=common_name, crl_path=crl_path)

    def renew(self, target: str) -> RenewResult:
        """Revoke then sign. Not atomic: a signing failure leaves the target revoked."""
        revoked = self.revoke(target)
        try:
            issued = self.sign(target)
        except CAError:
            logger.error(
                "Revoked serial %s but re-signing %s failed; it has no valid certificate",
                format_serial(revoked.serial),
                target,
            )
            raise
        return RenewResult(revoked=revoked, issued=issued)

    def crl(self) -> Path:
        """Regenerate the CRL from the current ledger."""
        config = self._require_initialized()
        return self._regenerate_crl(config)

    def status(self) -> list[LedgerRecord]:
        """Mark expired records and return the full ledger."""
        self._require_initialized()
        self.ledger.mark_expired(self.clock())
        records = self.ledger.records()
        logger.info(
            "Ledger holds %d record(s); next serial %s",
            len(records),
            format_serial(self.ledger.peek_serial()),
        )
        return records

    def destroy(self, confirmation: str) -> None:
        """Remove the CA directory, its ledger and its host store.

        Raises:
            DestroyAborted: If ``confirmation`` is not exactly ``destroy_phrase()``
            MissingConfig: If the directory does not look like a CA
        """
        if confirmation != self.destroy_phrase():
            raise DestroyAborted("confirmation phrase did not match; nothing was removed")
        if not self.layout.ca_dir.is_dir():
            raise MissingConfig(f"not a CA directory: {self.layout.root}")
        shutil.rmtree(self.layout.root)
        logger.warning("Destroyed CA at %s", self.layout.root)
