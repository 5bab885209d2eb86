"""Result models for CA lifecycle operations."""

from dataclasses import dataclass
from pathlib import Path

from .hierarchy import CARole


@dataclass
class InitResult:
    """Result from CA initialization.

    Contains the CA's role and the artifact paths written by ``init``.
    """

    role: CARole
    key_path: Path
    cert_path: Path
    chain_path: Path | None
    crl_path: Path


@dataclass
class IssueResult:
    """Result from signing a host or intermediate CA certificate.

    Bundle paths are None when the artifact was not produced: no local key
    (staged CSR) means no key bundles, and a root issuer means no chain files.
    """

    serial: int
    common_name: str
    cert_path: Path
    instance_dir: Path | None = None
    key_path: Path | None = None
    bundle_path: Path | None = None
    chain_cert_path: Path | None = None
    chain_bundle_path: Path | None = None


@dataclass
class RevokeResult:
    """Result from revoking a certificate."""

    serial: int
    common_name: str
    crl_path: Path


@dataclass
class RenewResult:
    """Result from renew: the revocation followed by the new issuance."""

    revoked: RevokeResult
    issued: IssueResult
