"""Tests for host_store module."""

from datetime import date
from pathlib import Path

import pytest

from private_ca.lib.config import HostConfig
from private_ca.lib.errors import HostAlreadyExists, MissingConfig
from private_ca.lib.host_store import HostStore

TODAY = date(2026, 3, 1)


@pytest.fixture
def store(tmp_path: Path) -> HostStore:
    store = HostStore(tmp_path / "hosts")
    store.create_host("host1", HostConfig(common_name="host1", subject_alt_names="DNS:host1"))
    return store


class TestHosts:
    def test_create_writes_config(self, store: HostStore) -> None:
        assert store.exists("host1")
        assert store.load_config("host1").common_name == "host1"

    def test_create_twice_fails(self, store: HostStore) -> None:
        with pytest.raises(HostAlreadyExists):
            store.create_host("host1", HostConfig(common_name="host1"))

    def test_unknown_host_has_no_config(self, store: HostStore) -> None:
        with pytest.raises(MissingConfig, match="run 'new host2' first"):
            store.load_config("host2")

    @pytest.mark.parametrize("hostname", ["", ".", "..", "a/b"])
    def test_rejects_path_like_hostnames(self, store: HostStore, hostname: str) -> None:
        with pytest.raises(ValueError, match="invalid hostname"):
            store.host_dir(hostname)


class TestInstances:
    def test_first_instance_of_the_day(self, store: HostStore) -> None:
        instance = store.new_instance("host1", TODAY)

        assert instance.name == "2026-03-01-1"
        assert instance.is_dir()

    def test_same_day_increments(self, store: HostStore) -> None:
        names = [store.new_instance("host1", TODAY).name for _ in range(3)]

        assert names == ["2026-03-01-1", "2026-03-01-2", "2026-03-01-3"]

    def test_new_day_restarts_sequence(self, store: HostStore) -> None:
        store.new_instance("host1", TODAY)
        store.new_instance("host1", TODAY)

        assert store.new_instance("host1", date(2026, 3, 2)).name == "2026-03-02-1"

    def test_fills_smallest_unused_sequence(self, store: HostStore) -> None:
        (store.host_dir("host1") / "2026-03-01-2").mkdir()

        assert store.new_instance("host1", TODAY).name == "2026-03-01-1"
        assert store.new_instance("host1", TODAY).name == "2026-03-01-3"

    def test_existing_instances_untouched(self, store: HostStore) -> None:
        first = store.new_instance("host1", TODAY)
        (first / "host1.crt").write_text("old")

        store.new_instance("host1", TODAY)

        assert (first / "host1.crt").read_text() == "old"

    def test_instances_sorted_by_date_then_sequence(self, store: HostStore) -> None:
        for day in (date(2026, 3, 2), TODAY):
            for _ in range(11):
                store.new_instance("host1", day)

        names = [p.name for p in store.instances("host1")]

        assert names[0] == "2026-03-01-1"
        assert names[9:11] == ["2026-03-01-10", "2026-03-01-11"]
        assert names[11] == "2026-03-02-1"

    def test_instances_skip_non_instance_entries(self, store: HostStore) -> None:
        store.staged_csr_path("host1").write_text("csr")
        store.new_instance("host1", TODAY)

        assert [p.name for p in store.instances("host1")] == ["2026-03-01-1"]

    def test_sequence_ignores_non_instance_directories(self, store: HostStore) -> None:
        (store.host_dir("host1") / "2026-03-01-old").mkdir()
        (store.host_dir("host1") / "2026-03-01-1").mkdir()

        assert store.new_instance("host1", TODAY).name == "2026-03-01-2"
