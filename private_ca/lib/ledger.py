"""Certificate ledger: OpenSSL-compatible index.txt plus serial and CRL counters.

Each line of ``index.txt`` is tab-delimited::

    status  expiry  revocation  serial  filename  subject

``status`` is ``V`` (valid), ``R`` (revoked) or ``E`` (expired). Times use
``YYMMDDHHMMSSZ`` (``YYYYMMDDHHMMSSZ`` from 2050 on), serials are uppercase
hex, and the subject is in OpenSSL one-line form, as ``openssl ca`` writes it.
"""

import logging
import os
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .cert_utils import format_serial
from .errors import NoValidCertificate, StoreCorruption

logger = logging.getLogger(__name__)

INITIAL_SERIAL = 1
INITIAL_CRL_NUMBER = 1
UNKNOWN_FILENAME = "unknown"


class LedgerStatus(Enum):
    VALID = "V"
    REVOKED = "R"
    EXPIRED = "E"


def format_ledger_time(value: datetime) -> str:
    """Format a timestamp as ASN.1 UTCTime, or GeneralizedTime from 2050."""
    value = value.astimezone(UTC)
    if value.year < 2050:
        return value.strftime("%y%m%d%H%M%SZ")
    return value.strftime("%Y%m%d%H%M%SZ")


def parse_ledger_time(value: str) -> datetime:
    """Parse a UTCTime/GeneralizedTime string.

    Raises:
        ValueError: If the string is in neither form
    """
    if len(value) == 13:
        parsed = datetime.strptime(value, "%y%m%d%H%M%SZ")
        # RFC 5280: two-digit years 50-99 are 19xx
        if parsed.year >= 2050:
            parsed = parsed.replace(year=parsed.year - 100)
    elif len(value) == 15:
        parsed = datetime.strptime(value, "%Y%m%d%H%M%SZ")
    else:
        raise ValueError(f"unrecognised time format: {value!r}")
    return parsed.replace(tzinfo=UTC)


@dataclass(frozen=True)
class LedgerRecord:
    """One issued certificate."""

    status: LedgerStatus
    expiry: datetime
    revoked_at: datetime | None
    serial: int
    filename: str
    subject: str

    @property
    def common_name(self) -> str | None:
        for part in self.subject.split("/"):
            key, sep, value = part.partition("=")
            if sep and key == "CN":
                return value
        return None

    def to_line(self) -> str:
        revoked = format_ledger_time(self.revoked_at) if self.revoked_at else ""
        return "\t".join(
            [
                self.status.value,
                format_ledger_time(self.expiry),
                revoked,
                format_serial(self.serial),
                self.filename,
                self.subject,
            ]
        )

    @classmethod
    def from_line(cls, line: str) -> "LedgerRecord":
        """Parse an index.txt line.

        Raises:
            StoreCorruption: If the line is malformed
        """
        parts = line.rstrip("\n").split("\t")
        if len(parts) != 6:
            raise StoreCorruption(f"ledger line has {len(parts)} fields, expected 6: {line!r}")
        status, expiry, revoked, serial, filename, subject = parts
        try:
            revoked_at = None
            if revoked:
                # openssl may append ",<reason>" to the revocation time
                revoked_at = parse_ledger_time(revoked.split(",", 1)[0])
            return cls(
                status=LedgerStatus(status),
                expiry=parse_ledger_time(expiry),
                revoked_at=revoked_at,
                serial=int(serial, 16),
                filename=filename,
                subject=subject,
            )
        except ValueError as e:
            raise StoreCorruption(f"unreadable ledger line {line!r}: {e}") from e


def _atomic_write(path: Path, text: str) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(text)
    os.replace(tmp_path, path)


def _read_counter(path: Path) -> int:
    try:
        raw = path.read_text().strip()
        value = int(raw, 16)
    except FileNotFoundError as e:
        raise StoreCorruption(f"counter file missing: {path}") from e
    except ValueError as e:
        raise StoreCorruption(f"counter file unreadable: {path}: {e}") from e
    if value < 1:
        raise StoreCorruption(f"counter file holds non-positive value: {path}")
    return value


class Ledger:
    """Append-only certificate index with a persisted serial counter.

    No locking: one process at a time per CA directory.
    """

    def __init__(self, index_path: Path, serial_path: Path, crlnumber_path: Path) -> None:
        self.index_path = index_path
        self.serial_path = serial_path
        self.crlnumber_path = crlnumber_path

    def initialize(self) -> None:
        """Create an empty index and reset both counters to their starting values."""
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(self.serial_path, format_serial(INITIAL_SERIAL) + "\n")
        _atomic_write(self.crlnumber_path, format_serial(INITIAL_CRL_NUMBER) + "\n")
        _atomic_write(self.index_path, "")

    def records(self) -> list[LedgerRecord]:
        try:
            text = self.index_path.read_text()
        except FileNotFoundError as e:
            raise StoreCorruption(f"ledger not found: {self.index_path}") from e
        return [LedgerRecord.from_line(line) for line in text.splitlines() if line.strip()]

    def _write_records(self, records: list[LedgerRecord]) -> None:
        _atomic_write(self.index_path, "".join(record.to_line() + "\n" for record in records))

    def peek_serial(self) -> int:
        """Return the serial the next issuance will consume, without reserving it."""
        return _read_counter(self.serial_path)

    def next_serial(self) -> int:
        """Reserve the next serial, persisting the advanced counter before returning."""
        serial = _read_counter(self.serial_path)
        _atomic_write(self.serial_path, format_serial(serial + 1) + "\n")
        return serial

    def next_crl_number(self) -> int:
        number = _read_counter(self.crlnumber_path)
        _atomic_write(self.crlnumber_path, format_serial(number + 1) + "\n")
        return number

    def append_valid(self, serial: int, expiry: datetime, subject: str) -> LedgerRecord:
        """Append a ``V`` record.

        Raises:
            StoreCorruption: If ``serial`` does not exceed every recorded serial
        """
        records = self.records()
        if records and serial <= max(record.serial for record in records):
            raise StoreCorruption(
                f"serial {format_serial(serial)} is not greater than every recorded serial"
            )
        record = LedgerRecord(
            status=LedgerStatus.VALID,
            expiry=expiry,
            revoked_at=None,
            serial=serial,
            filename=UNKNOWN_FILENAME,
            subject=subject,
        )
        with self.index_path.open("a") as f:
            f.write(record.to_line() + "\n")
        return record

    def find_valid_by_cn(self, common_name: str) -> list[LedgerRecord]:
        """Return every valid record whose CN matches, in ledger order."""
        return [
            record
            for record in self.records()
            if record.status is LedgerStatus.VALID and record.common_name == common_name
        ]

    def revoke(self, serial: int, timestamp: datetime) -> LedgerRecord:
        """Flip a valid record to revoked.

        Raises:
            NoValidCertificate: If no valid record carries ``serial``
        """
        records = self.records()
        for i, record in enumerate(records):
            if record.serial == serial and record.status is LedgerStatus.VALID:
                revoked = replace(record, status=LedgerStatus.REVOKED, revoked_at=timestamp)
                records[i] = revoked
                self._write_records(records)
                return revoked
        raise NoValidCertificate(f"no valid certificate with serial {format_serial(serial)}")

    def revoked_records(self) -> list[LedgerRecord]:
        return [record for record in self.records() if record.status is LedgerStatus.REVOKED]

    def mark_expired(self, now: datetime) -> list[LedgerRecord]:
        """Flip valid records whose expiry has passed to ``E``; return the flipped records."""
        records = self.records()
        expired: list[LedgerRecord] = []
        for i, record in enumerate(records):
            if record.status is LedgerStatus.VALID and record.expiry <= now:
                records[i] = replace(record, status=LedgerStatus.EXPIRED)
                expired.append(records[i])
        if expired:
            self._write_records(records)
            logger.info("Marked %d certificate(s) expired", len(expired))
        return expired
