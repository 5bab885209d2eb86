"""CA and host configuration documents."""

import ipaddress
import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.x509 import oid

from .errors import MissingConfig, MissingTemplate

INTEGER_FIELDS = ("validity_days", "key_size", "crl_days")


@dataclass
class DistinguishedName:
    """X.509 Subject Distinguished Name."""

    country: str
    state: str
    locality: str
    organization: str
    organizational_unit: str
    common_name: str

    def to_x509_name(self) -> x509.Name:
        """Convert to cryptography x509.Name, skipping blank fields."""
        pairs = [
            (oid.NameOID.COUNTRY_NAME, self.country),
            (oid.NameOID.STATE_OR_PROVINCE_NAME, self.state),
            (oid.NameOID.LOCALITY_NAME, self.locality),
            (oid.NameOID.ORGANIZATION_NAME, self.organization),
            (oid.NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
            (oid.NameOID.COMMON_NAME, self.common_name),
        ]
        return x509.Name([x509.NameAttribute(key, value) for key, value in pairs if value])


@dataclass
class CAConfig:
    """CA configuration document (ca.json)."""

    country: str = "GB"
    state: str = "London"
    locality: str = "London"
    organization: str = "Private CA"
    organizational_unit: str = "Engineering"
    common_name: str = "Private Root CA"
    validity_days: int = 3650
    key_size: int = 4096
    crl_days: int = 30

    def distinguished_name(self) -> DistinguishedName:
        return DistinguishedName(
            country=self.country,
            state=self.state,
            locality=self.locality,
            organization=self.organization,
            organizational_unit=self.organizational_unit,
            common_name=self.common_name,
        )


@dataclass
class HostConfig:
    """Host configuration document (host.json), also the shape of the host template."""

    country: str = "GB"
    state: str = "London"
    locality: str = "London"
    organization: str = "Private CA"
    organizational_unit: str = "Engineering"
    common_name: str = ""
    subject_alt_names: str = ""

    def distinguished_name(self) -> DistinguishedName:
        return DistinguishedName(
            country=self.country,
            state=self.state,
            locality=self.locality,
            organization=self.organization,
            organizational_unit=self.organizational_unit,
            common_name=self.common_name,
        )

    def alt_names(self) -> list[str]:
        """Return SAN entries as ``TYPE:value`` strings."""
        return [item.strip() for item in self.subject_alt_names.split(",") if item.strip()]


def classify_alt_name(name: str) -> str:
    """Prefix an alt name with ``IP:`` for IP literals, ``DNS:`` otherwise."""
    try:
        ipaddress.ip_address(name)
    except ValueError:
        return f"DNS:{name}"
    return f"IP:{name}"


def render_alt_names(hostname: str, alt_names: list[str]) -> str:
    """Render the SAN list for a host, hostname first, duplicates dropped."""
    rendered: list[str] = []
    for name in [hostname, *alt_names]:
        entry = classify_alt_name(name)
        if entry not in rendered:
            rendered.append(entry)
    return ", ".join(rendered)


def _read_document(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError as e:
        raise MissingConfig(f"config document not found: {path}") from e
    except json.JSONDecodeError as e:
        raise MissingConfig(f"config document is not valid JSON: {path}: {e}") from e
    if not isinstance(data, dict):
        raise MissingConfig(f"config document must be a JSON object: {path}")
    return data


def _known_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}


def write_document(path: Path, document: Any) -> None:
    """Write a config dataclass as indented JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(document), indent=2) + "\n")


def load_ca_config(path: Path) -> CAConfig:
    """Load ca.json.

    Raises:
        MissingConfig: If the document is absent or unreadable, has no validity
            period, or holds a non-positive or non-integer size or period
    """
    data = _read_document(path)
    if "validity_days" not in data:
        raise MissingConfig(f"no validity period (validity_days) in {path}")
    for key in INTEGER_FIELDS:
        value = data.get(key, 1)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise MissingConfig(f"{key} must be a positive integer in {path}, got {value!r}")
    try:
        return CAConfig(**_known_fields(CAConfig, data))
    except TypeError as e:
        raise MissingConfig(f"invalid CA config {path}: {e}") from e


def load_host_config(path: Path) -> HostConfig:
    data = _read_document(path)
    return HostConfig(**_known_fields(HostConfig, data))


def render_host_config(template_path: Path, hostname: str, alt_names: list[str]) -> HostConfig:
    """Materialize a host config from the CA's host template.

    Raises:
        MissingTemplate: If the CA has no host template
    """
    if not template_path.is_file():
        raise MissingTemplate(f"host template not found: {template_path}")
    template = load_host_config(template_path)
    return replace(
        template,
        common_name=hostname,
        subject_alt_names=render_alt_names(hostname, alt_names),
    )
