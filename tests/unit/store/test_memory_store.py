"""Tests for InMemoryBlobStore."""

import pytest

from dcomaudit.core.exceptions import AclNotFoundError, AclUnauthorizedError
from dcomaudit.store.base import ACCESS_DEFAULT, APP_ACCESS, AclTarget
from dcomaudit.store.memory import InMemoryBlobStore

from conftest import APP_ID


class TestBlobs:
    def test_absent_value_reads_as_none(self, store, app_target):
        assert store.read_blob(app_target, APP_ACCESS) is None

    def test_write_then_read(self, store, app_target):
        store.write_blob(app_target, APP_ACCESS, b"\x01\x00")

        assert store.read_blob(app_target, APP_ACCESS) == b"\x01\x00"
        assert store.writes == 1

    def test_hosts_are_kept_apart(self, store):
        store.write_blob(AclTarget.machine("SRV02"), ACCESS_DEFAULT, b"remote")

        assert store.read_blob(AclTarget.machine(), ACCESS_DEFAULT) is None
        assert store.read_blob(AclTarget.machine("srv02"), ACCESS_DEFAULT) == b"remote"

    def test_delete_of_missing_value_is_quiet(self, store, app_target):
        store.delete_blob(app_target, APP_ACCESS)

        assert store.read_blob(app_target, APP_ACCESS) is None

    def test_unregistered_application_is_not_found(self, store):
        target = AclTarget.application(APP_ID, "SRV03")

        with pytest.raises(AclNotFoundError):
            store.read_blob(target, APP_ACCESS)

    def test_read_only_store_rejects_changes(self, app_target):
        store = InMemoryBlobStore(read_only=True)
        store.register_application(APP_ID)

        with pytest.raises(AclUnauthorizedError):
            store.write_blob(app_target, APP_ACCESS, b"x")
        with pytest.raises(AclUnauthorizedError):
            store.delete_blob(app_target, APP_ACCESS)
        with pytest.raises(AclUnauthorizedError):
            store.write_settings({})


class TestRegistrations:
    def test_applications_are_listed_per_host(self, store):
        assert set(store.list_applications()) == {
            "{11111111-2222-3333-4444-555555555555}",
            "{AAAAAAAA-BBBB-CCCC-DDDD-EEEEEEEEEEEE}",
        }
        assert store.list_applications("srv02") == {APP_ID: "Test Server"}

    def test_settings_round_trip(self, store, settings_record):
        store.write_settings(settings_record, "SRV02")

        assert store.read_settings("srv02") == settings_record

    def test_missing_settings_are_not_found(self, store):
        with pytest.raises(AclNotFoundError):
            store.read_settings()

    def test_principal_names(self, store):
        store.add_principal_name("S-1-5-21-1-2-3-500", "CONTOSO\\Administrator")

        assert store.principal_names() == {"S-1-5-21-1-2-3-500": "CONTOSO\\Administrator"}

    def test_application_settings_are_kept_per_registration(self, store):
        target = store.register_application(
            "{00000000-0000-0000-0000-0000000000A1}",
            "Spooler Proxy",
            settings={"RunAs": "LocalSystem"},
        )

        assert store.read_application_settings(target) == {"RunAs": "LocalSystem"}
        assert store.read_application_settings(AclTarget.application(APP_ID)) == {}

    def test_settings_of_unregistered_application_are_not_found(self, store):
        with pytest.raises(AclNotFoundError):
            store.read_application_settings(
                AclTarget.application("{00000000-0000-0000-0000-000000000009}")
            )

    def test_protocols_are_kept_per_host(self, store):
        records = [{"Name": "TCP/IP", "Order": 1, "ProtocolCode": "ncacn_ip_tcp"}]
        store.set_protocols(records, host="srv02")

        assert store.read_protocols("SRV02") == records
        assert store.read_protocols() == []
