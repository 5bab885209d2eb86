"""Per-host workspaces and their dated certificate instance directories."""

import re
from datetime import date
from pathlib import Path

from .config import HostConfig, load_host_config, write_document
from .errors import HostAlreadyExists, MissingConfig

HOST_CONFIG_NAME = "host.json"
STAGED_CSR_NAME = "request.csr"
INSTANCE_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})-(\d+)$")


class HostStore:
    """Host store rooted at a CA's ``hosts/`` directory.

    Layout::

        hosts/<hostname>/host.json
        hosts/<hostname>/request.csr          (optional, staged externally)
        hosts/<hostname>/<YYYY-MM-DD>-<n>/    (one per issuance)
    """

    def __init__(self, hosts_dir: Path) -> None:
        self.hosts_dir = hosts_dir

    def host_dir(self, hostname: str) -> Path:
        if not hostname or "/" in hostname or hostname in {".", ".."}:
            raise ValueError(f"invalid hostname: {hostname!r}")
        return self.hosts_dir / hostname

    def config_path(self, hostname: str) -> Path:
        return self.host_dir(hostname) / HOST_CONFIG_NAME

    def staged_csr_path(self, hostname: str) -> Path:
        return self.host_dir(hostname) / STAGED_CSR_NAME

    def exists(self, hostname: str) -> bool:
        return self.host_dir(hostname).is_dir()

    def create_host(self, hostname: str, config: HostConfig) -> Path:
        """Create the host workspace and write its config.

        Raises:
            HostAlreadyExists: If the workspace directory exists
        """
        host_dir = self.host_dir(hostname)
        try:
            host_dir.mkdir(parents=True)
        except FileExistsError as e:
            raise HostAlreadyExists(f"host already exists: {hostname}") from e
        write_document(self.config_path(hostname), config)
        return host_dir

    def load_config(self, hostname: str) -> HostConfig:
        """Load a host's config.

        Raises:
            MissingConfig: If the host was never registered with ``new``
        """
        path = self.config_path(hostname)
        if not path.is_file():
            raise MissingConfig(f"no config for host {hostname}; run 'new {hostname}' first")
        return load_host_config(path)

    def instances(self, hostname: str) -> list[Path]:
        """Return instance directories ordered by (date, sequence)."""
        host_dir = self.host_dir(hostname)
        if not host_dir.is_dir():
            return []
        found: list[tuple[str, int, Path]] = []
        for child in host_dir.iterdir():
            match = INSTANCE_PATTERN.match(child.name)
            if match and child.is_dir():
                found.append((match.group(1), int(match.group(2)), child))
        return [path for _, _, path in sorted(found)]

    def new_instance(self, hostname: str, issued_on: date) -> Path:
        """Create the next instance directory for ``issued_on``.

        The sequence is the smallest positive integer not already used for
        that date. Existing directories are never reused.
        """
        prefix = issued_on.isoformat()
        used: set[int] = set()
        for instance in self.instances(hostname):
            day, _, number = instance.name.rpartition("-")
            if day == prefix:
                used.add(int(number))
        sequence = 1
        while sequence in used:
            sequence += 1
        instance_dir = self.host_dir(hostname) / f"{prefix}-{sequence}"
        instance_dir.mkdir()
        return instance_dir
