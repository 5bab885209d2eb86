"""On-disk layout of a CA root directory."""

from dataclasses import dataclass
from pathlib import Path

CA_SUBDIR = "ca"
HOSTS_SUBDIR = "hosts"


@dataclass(frozen=True)
class CALayout:
    """Paths of every artifact owned by one CA.

    ``root`` holds two siblings: ``ca/`` with the CA's own key material, config
    and ledger, and ``hosts/`` with one workspace per registered host.
    """

    root: Path

    @property
    def ca_dir(self) -> Path:
        return self.root / CA_SUBDIR

    @property
    def hosts_dir(self) -> Path:
        return self.root / HOSTS_SUBDIR

    @property
    def config_path(self) -> Path:
        return self.ca_dir / "ca.json"

    @property
    def host_template_path(self) -> Path:
        return self.ca_dir / "host-template.json"

    @property
    def key_path(self) -> Path:
        return self.ca_dir / "ca.key"

    @property
    def csr_path(self) -> Path:
        return self.ca_dir / "ca.csr"

    @property
    def cert_path(self) -> Path:
        return self.ca_dir / "ca.crt"

    @property
    def chain_path(self) -> Path:
        return self.ca_dir / "ca-chain.crt"

    @property
    def serial_path(self) -> Path:
        return self.ca_dir / "serial"

    @property
    def crlnumber_path(self) -> Path:
        return self.ca_dir / "crlnumber"

    @property
    def index_path(self) -> Path:
        return self.ca_dir / "index.txt"

    @property
    def crl_path(self) -> Path:
        return self.ca_dir / "crl.pem"

    @property
    def newcerts_dir(self) -> Path:
        return self.ca_dir / "newcerts"

    def is_initialized(self) -> bool:
        return self.cert_path.is_file()
