"""Tests for ledger module."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from private_ca.lib.errors import NoValidCertificate, StoreCorruption
from private_ca.lib.ledger import (
    Ledger,
    LedgerRecord,
    LedgerStatus,
    format_ledger_time,
    parse_ledger_time,
)

EXPIRY = datetime(2036, 2, 27, 12, 0, 0, tzinfo=UTC)
SUBJECT = "/C=GB/O=Test Org/CN={cn}"


@pytest.fixture
def ledger(tmp_path: Path) -> Ledger:
    ledger = Ledger(
        index_path=tmp_path / "index.txt",
        serial_path=tmp_path / "serial",
        crlnumber_path=tmp_path / "crlnumber",
    )
    ledger.initialize()
    return ledger


def _reopen(ledger: Ledger) -> Ledger:
    """Simulate a process restart: new object over the same files."""
    return Ledger(ledger.index_path, ledger.serial_path, ledger.crlnumber_path)


def _issue(ledger: Ledger, cn: str) -> LedgerRecord:
    return ledger.append_valid(ledger.next_serial(), EXPIRY, SUBJECT.format(cn=cn))


class TestTimeFormat:
    def test_utctime_before_2050(self) -> None:
        assert format_ledger_time(EXPIRY) == "360227120000Z"

    def test_generalized_time_from_2050(self) -> None:
        value = datetime(2051, 1, 2, 3, 4, 5, tzinfo=UTC)
        assert format_ledger_time(value) == "20510102030405Z"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("360227120000Z", datetime(2036, 2, 27, 12, 0, 0, tzinfo=UTC)),
            ("991231235959Z", datetime(1999, 12, 31, 23, 59, 59, tzinfo=UTC)),
            ("20510102030405Z", datetime(2051, 1, 2, 3, 4, 5, tzinfo=UTC)),
        ],
    )
    def test_parse(self, raw: str, expected: datetime) -> None:
        assert parse_ledger_time(raw) == expected

    def test_parse_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            parse_ledger_time("yesterday")


class TestRecordFormat:
    def test_valid_line_layout(self) -> None:
        record = LedgerRecord(
            status=LedgerStatus.VALID,
            expiry=EXPIRY,
            revoked_at=None,
            serial=0x1A,
            filename="unknown",
            subject="/C=GB/CN=host1",
        )

        assert record.to_line() == "V\t360227120000Z\t\t1A\tunknown\t/C=GB/CN=host1"

    def test_parses_openssl_revoked_line_with_reason(self) -> None:
        record = LedgerRecord.from_line(
            "R\t360227120000Z\t260301120000Z,keyCompromise\t0F\tunknown\t/O=Org/CN=host1\n"
        )

        assert record.status is LedgerStatus.REVOKED
        assert record.serial == 15
        assert record.revoked_at == datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
        assert record.common_name == "host1"

    def test_common_name_absent(self) -> None:
        record = LedgerRecord.from_line("V\t360227120000Z\t\t01\tunknown\t/O=Org\n")
        assert record.common_name is None

    @pytest.mark.parametrize(
        "line",
        [
            "V\t360227120000Z\t01\tunknown\t/CN=x",
            "X\t360227120000Z\t\t01\tunknown\t/CN=x",
            "V\tnever\t\t01\tunknown\t/CN=x",
            "V\t360227120000Z\t\tZZ\tunknown\t/CN=x",
        ],
    )
    def test_malformed_lines_raise(self, line: str) -> None:
        with pytest.raises(StoreCorruption):
            LedgerRecord.from_line(line)


class TestInitialize:
    def test_empty_ledger_and_initial_counters(self, ledger: Ledger) -> None:
        assert ledger.records() == []
        assert ledger.peek_serial() == 1
        assert ledger.serial_path.read_text() == "01\n"
        assert ledger.crlnumber_path.read_text() == "01\n"


class TestSerials:
    def test_next_serial_persists_before_use(self, ledger: Ledger) -> None:
        assert ledger.next_serial() == 1
        assert ledger.serial_path.read_text() == "02\n"

    def test_serials_strictly_increase_across_restarts(self, ledger: Ledger) -> None:
        serials = []
        for i in range(5):
            ledger = _reopen(ledger)
            serials.append(_issue(ledger, f"host{i}").serial)

        assert serials == [1, 2, 3, 4, 5]
        assert [r.serial for r in _reopen(ledger).records()] == serials

    def test_revocation_does_not_reuse_serials(self, ledger: Ledger) -> None:
        first = _issue(ledger, "host1")
        ledger.revoke(first.serial, EXPIRY - timedelta(days=3000))

        second = _issue(ledger, "host1")

        assert second.serial == first.serial + 1

    def test_serial_file_uses_hex(self, ledger: Ledger) -> None:
        for _ in range(10):
            ledger.next_serial()

        assert ledger.serial_path.read_text() == "0B\n"

    def test_append_rejects_non_increasing_serial(self, ledger: Ledger) -> None:
        _issue(ledger, "host1")

        with pytest.raises(StoreCorruption, match="not greater"):
            ledger.append_valid(1, EXPIRY, SUBJECT.format(cn="host2"))

    def test_missing_serial_file(self, ledger: Ledger) -> None:
        ledger.serial_path.unlink()

        with pytest.raises(StoreCorruption, match="missing"):
            ledger.next_serial()

    def test_garbage_serial_file(self, ledger: Ledger) -> None:
        ledger.serial_path.write_text("not-hex\n")

        with pytest.raises(StoreCorruption, match="unreadable"):
            ledger.next_serial()

    def test_crl_number_advances(self, ledger: Ledger) -> None:
        assert [ledger.next_crl_number() for _ in range(3)] == [1, 2, 3]


class TestLookupAndRevoke:
    def test_find_valid_by_cn_in_ledger_order(self, ledger: Ledger) -> None:
        a = _issue(ledger, "host1")
        _issue(ledger, "host2")
        b = _issue(ledger, "host1")

        assert [r.serial for r in ledger.find_valid_by_cn("host1")] == [a.serial, b.serial]

    def test_find_ignores_prefix_matches(self, ledger: Ledger) -> None:
        _issue(ledger, "host10")

        assert ledger.find_valid_by_cn("host1") == []

    def test_revoke_flips_status_and_timestamps(self, ledger: Ledger) -> None:
        record = _issue(ledger, "host1")
        when = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)

        revoked = ledger.revoke(record.serial, when)

        assert revoked.status is LedgerStatus.REVOKED
        assert revoked.revoked_at == when
        assert ledger.find_valid_by_cn("host1") == []
        assert ledger.index_path.read_text().startswith("R\t360227120000Z\t260301120000Z\t01\t")

    def test_revoke_leaves_other_records_untouched(self, ledger: Ledger) -> None:
        first = _issue(ledger, "host1")
        second = _issue(ledger, "host2")

        ledger.revoke(first.serial, EXPIRY)

        assert ledger.records()[1] == second

    def test_revoke_twice_fails(self, ledger: Ledger) -> None:
        record = _issue(ledger, "host1")
        ledger.revoke(record.serial, EXPIRY)

        with pytest.raises(NoValidCertificate):
            ledger.revoke(record.serial, EXPIRY)

    def test_revoked_records(self, ledger: Ledger) -> None:
        a = _issue(ledger, "host1")
        _issue(ledger, "host2")
        ledger.revoke(a.serial, EXPIRY)

        assert [r.serial for r in ledger.revoked_records()] == [a.serial]


class TestMarkExpired:
    def test_only_past_valid_records_expire(self, ledger: Ledger) -> None:
        past = ledger.append_valid(ledger.next_serial(), datetime(2020, 1, 1, tzinfo=UTC), "/CN=old")
        future = _issue(ledger, "new")
        revoked = ledger.append_valid(
            ledger.next_serial(), datetime(2020, 1, 1, tzinfo=UTC), "/CN=gone"
        )
        ledger.revoke(revoked.serial, datetime(2019, 6, 1, tzinfo=UTC))

        expired = ledger.mark_expired(datetime(2026, 3, 1, tzinfo=UTC))

        assert [r.serial for r in expired] == [past.serial]
        statuses = {r.serial: r.status for r in ledger.records()}
        assert statuses == {
            past.serial: LedgerStatus.EXPIRED,
            future.serial: LedgerStatus.VALID,
            revoked.serial: LedgerStatus.REVOKED,
        }

    def test_no_change_leaves_file_alone(self, ledger: Ledger) -> None:
        _issue(ledger, "host1")
        before = ledger.index_path.read_text()

        assert ledger.mark_expired(datetime(2026, 3, 1, tzinfo=UTC)) == []
        assert ledger.index_path.read_text() == before
