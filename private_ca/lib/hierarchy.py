"""CA hierarchy: CA references, parent validation, chain files, remote signing."""

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from .backend import CertificateProfile
from .cert_utils import (
    deserialize_certificate,
    deserialize_certificates,
    validate_certificate_chain,
)
from .config import load_ca_config
from .errors import InvalidParent, MissingConfig
from .layout import CALayout

logger = logging.getLogger(__name__)

CA_REF_PREFIX = "ca:"


class CARole(Enum):
    ROOT = "root"
    INTERMEDIATE = "intermediate"


def is_ca_reference(target: str) -> bool:
    """Return True when ``target`` names a CA directory rather than a host."""
    return target.startswith(CA_REF_PREFIX)


def resolve_ca_reference(target: str) -> CALayout:
    """Turn ``ca:<path>`` into the layout of that CA.

    Raises:
        ValueError: If ``target`` is not a CA reference
    """
    if not is_ca_reference(target):
        raise ValueError(f"not a CA reference: {target!r}")
    path = target[len(CA_REF_PREFIX) :]
    if not path:
        raise ValueError("CA reference has an empty path")
    return CALayout(Path(path).expanduser().resolve())


def ca_reference(layout: CALayout) -> str:
    return f"{CA_REF_PREFIX}{layout.root}"


def ca_role(layout: CALayout) -> CARole:
    """Intermediates carry a chain file; roots never do."""
    if layout.chain_path.is_file():
        return CARole.INTERMEDIATE
    return CARole.ROOT


def validate_parent(parent: CALayout) -> None:
    """Check ``parent`` is an initialized CA.

    Raises:
        InvalidParent: If the directory, config or certificate is missing
    """
    if not parent.ca_dir.is_dir():
        raise InvalidParent(f"parent CA directory not found: {parent.root}")
    if not parent.config_path.is_file():
        raise InvalidParent(f"parent CA has no config: {parent.config_path}")
    if not parent.is_initialized():
        raise InvalidParent(f"parent CA is not initialized: {parent.root}")


def ca_common_name(layout: CALayout) -> str:
    """Return the CN a CA is configured with.

    Raises:
        MissingConfig: If the CA has no readable config
    """
    common_name = load_ca_config(layout.config_path).common_name
    if not common_name:
        raise MissingConfig(f"CA config has no common_name: {layout.config_path}")
    return common_name


def _pem_block(data: bytes) -> bytes:
    return data if data.endswith(b"\n") else data + b"\n"


def build_chain(child: CALayout, parent: CALayout) -> Path:
    """Write the child's chain file: own certificate, then the parent's chain.

    A root parent has no chain file, so a first-level intermediate's chain is
    just its own certificate. The root certificate is never included.

    Raises:
        InvalidParent: If the child certificate was not issued by ``parent``
    """
    chain = _pem_block(child.cert_path.read_bytes())
    if parent.chain_path.is_file():
        chain += _pem_block(parent.chain_path.read_bytes())
        certs = deserialize_certificates(chain)
    else:
        parent_cert = deserialize_certificate(parent.cert_path.read_bytes())
        certs = [*deserialize_certificates(chain), parent_cert]
    if not validate_certificate_chain(certs):
        raise InvalidParent(
            f"certificate chain of {child.root} does not verify up to {parent.root}"
        )
    child.chain_path.write_bytes(chain)
    logger.info("Wrote chain file %s", child.chain_path)
    return child.chain_path


@dataclass
class SigningPolicy:
    """What a signing authority is asked to issue."""

    profile: CertificateProfile = CertificateProfile.INTERMEDIATE_CA
    requester: str = ""


class CertificateIssuer(Protocol):
    def issue_ca_certificate(self, csr_pem: bytes, policy: SigningPolicy) -> bytes: ...


class SigningAuthority(Protocol):
    """Anything that turns a CSR into a certificate under a policy."""

    def sign(self, csr_pem: bytes, policy: SigningPolicy) -> bytes: ...


class LocalSigningAuthority:
    """Signing authority backed by another CA directory on this machine.

    Opens a separate lifecycle controller pointed at the parent CA for the
    duration of one signing request, so the parent's own config, ledger and
    passphrase apply.
    """

    def __init__(
        self,
        parent: CALayout,
        open_issuer: Callable[[], AbstractContextManager[CertificateIssuer]],
    ) -> None:
        self.parent = parent
        self._open_issuer = open_issuer

    def sign(self, csr_pem: bytes, policy: SigningPolicy) -> bytes:
        validate_parent(self.parent)
        logger.info("Requesting %s signature from %s", policy.profile.value, self.parent.root)
        with self._open_issuer() as issuer:
            return issuer.issue_ca_certificate(csr_pem, policy)
