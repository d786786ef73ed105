"""Tests for MachineDcom and DcomApplication."""

import pytest

from dcomaudit.acl.mutation import AclMutationEngine
from dcomaudit.acl.principal import EVERYONE
from dcomaudit.acl.rights import (
    AccessType,
    ElementaryRight,
    PermissionCategory,
    PermissionScope,
)
from dcomaudit.core.exceptions import (
    AclNotFoundError,
    AclUnauthorizedError,
    AggregateFailureError,
    StoreError,
    UnsupportedCategoryError,
)
from dcomaudit.machine.scope import DcomApplication, MachineDcom
from dcomaudit.machine.settings import LAUNCHING_USER, AuthenticationLevel, RpcProtocol
from dcomaudit.store.base import (
    ACCESS_DEFAULT,
    ACCESS_LIMITS,
    APP_ACCESS,
    APP_LAUNCH,
    LAUNCH_DEFAULT,
    LAUNCH_LIMITS,
    AclKey,
    AclState,
    AclTarget,
)
from dcomaudit.store.memory import InMemoryBlobStore

from conftest import APP_ID, OTHER_APP_ID


class BlobLockedStore(InMemoryBlobStore):
    """Refuses permission writes but accepts settings."""

    def _check_writable(self, target: AclTarget, key: AclKey) -> None:
        raise AclUnauthorizedError(f"Permission values of {target} are locked")


@pytest.fixture
def remote_machine(engine, store):
    return MachineDcom(engine, host="SRV02", catalog=store)


class TestMachineAcls:
    def test_absent_lists_read_as_empty(self, machine):
        assert machine.default_access == []
        assert machine.limits_launch == []
        assert machine.state(LAUNCH_LIMITS) == AclState.USES_DEFAULT

    def test_machine_lists_never_use_a_default(self, machine):
        assert not machine.uses_default(ACCESS_DEFAULT)

    def test_entries_carry_the_list_scope(self, machine, store, make_blob):
        store.write_blob(AclTarget.machine(), ACCESS_LIMITS, make_blob((EVERYONE, AccessType.ALLOW, 0x7)))

        (entry,) = machine.limits_access

        assert entry.scope == PermissionScope.LIMITS
        assert entry.user == "Everyone"

    def test_writes_refresh_the_cached_list(self, machine, alice):
        assert machine.default_launch == []

        machine.set_rights(LAUNCH_DEFAULT, alice, [ElementaryRight.EXECUTE_LOCAL], AccessType.ALLOW)

        assert alice in [e.principal for e in machine.default_launch]

        machine.remove_rights(LAUNCH_DEFAULT, alice)

        assert alice not in [e.principal for e in machine.default_launch]

    def test_application_keys_are_rejected(self, machine):
        with pytest.raises(UnsupportedCategoryError):
            machine.entries(APP_ACCESS)

    def test_machine_lists_cannot_use_default_permissions(self, machine):
        with pytest.raises(UnsupportedCategoryError):
            machine.use_default_permissions(ACCESS_DEFAULT)


class TestMachineComparison:
    def test_given_two_hosts_when_copying_all_lists_then_they_match(
        self, machine, remote_machine, store, alice, make_blob, settings_record
    ):
        # Given
        store.write_settings(settings_record)
        store.write_blob(AclTarget.machine(), LAUNCH_LIMITS, make_blob((alice, AccessType.ALLOW, 0x7)))
        store.write_blob(
            AclTarget.machine("SRV02"), LAUNCH_LIMITS, make_blob((EVERYONE, AccessType.ALLOW, 0x1))
        )
        assert not remote_machine.permission_equality(machine, LAUNCH_LIMITS)

        # When
        reports = remote_machine.copy_from(machine, overwrite_acl=True)

        # Then
        assert len(reports) == 4
        assert remote_machine.permission_equality(machine, LAUNCH_LIMITS)
        assert remote_machine.mismatched_permissions(machine, LAUNCH_LIMITS) == []
        assert remote_machine.settings_equal(machine)

    @pytest.fixture
    def blob_locked_machine(self, resolver):
        locked = BlobLockedStore()
        return MachineDcom(AclMutationEngine(locked, resolver), catalog=locked)

    @pytest.fixture
    def populated_machine(self, machine, store, alice, make_blob, settings_record):
        store.write_settings(settings_record)
        for key in (ACCESS_DEFAULT, LAUNCH_DEFAULT):
            store.write_blob(AclTarget.machine(), key, make_blob((alice, AccessType.ALLOW, 0x3)))
        return machine

    def test_copy_from_attempts_every_list(self, populated_machine, blob_locked_machine):
        with pytest.raises(AggregateFailureError) as exc_info:
            blob_locked_machine.copy_from(populated_machine)

        error = exc_info.value
        assert len(error.failures) == 2
        assert len(error.report) == 4
        # settings are committed before any list is copied
        assert blob_locked_machine.settings_equal(populated_machine)

    def test_copy_from_stops_at_first_failing_list(self, populated_machine, blob_locked_machine):
        with pytest.raises(AggregateFailureError) as exc_info:
            blob_locked_machine.copy_from(populated_machine, stop_on_error=True)

        assert len(exc_info.value.failures) == 1
        assert [r.key for r in exc_info.value.report] == [ACCESS_DEFAULT]


class TestMachineSettings:
    def test_missing_catalog_is_a_store_error(self, engine):
        machine = MachineDcom(engine)

        with pytest.raises(StoreError):
            machine.settings

    def test_settings_are_a_working_copy(self, machine, store, settings_record):
        store.write_settings(settings_record)

        settings = machine.settings
        settings.is_router = True

        assert machine.settings.is_router is False

    def test_commit_writes_the_whole_record(self, machine, store, settings_record):
        store.write_settings(settings_record)
        settings = machine.settings
        settings.default_authentication_level = AuthenticationLevel.PACKET_PRIVACY

        machine.commit(settings)

        assert store.read_settings()["DefaultAuthenticationLevel"] == 6
        assert store.read_settings()["Description"] == "Test machine"

    def test_with_batch_commits_once(self, machine, store, settings_record):
        store.write_settings(settings_record)

        def change(settings):
            settings.dcom_enabled = False
            settings.ports = "5000-5100"

        result = machine.with_batch(change)

        assert result.dcom_enabled is False
        record = store.read_settings()
        assert record["DCOMEnabled"] is False
        assert record["Ports"] == "5000-5100"

    def test_with_batch_writes_nothing_when_fn_raises(self, machine, store, settings_record):
        store.write_settings(settings_record)

        def change(settings):
            settings.is_router = True
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            machine.with_batch(change)
        assert store.read_settings()["IsRouter"] is False


class TestDcomApplication:
    def test_factories_share_or_create_machine_handles(self, engine, machine, store):
        shared = DcomApplication.from_handle(machine, APP_ID)
        fresh = DcomApplication.from_scratch(engine, APP_ID.lower(), catalog=store)

        assert shared.machine is machine
        assert fresh.machine is not machine
        assert fresh.app_id == APP_ID
        assert fresh.name == "Test Server"
        assert fresh.describe() == f"Test Server {APP_ID}@local"

    def test_unregistered_application_is_not_found(self, machine):
        with pytest.raises(AclNotFoundError):
            DcomApplication.from_handle(machine, "{00000000-0000-0000-0000-000000000009}")

    def test_remote_registration_is_looked_up_on_that_host(self, engine):
        app = DcomApplication.from_scratch(engine, APP_ID, host="srv02")

        assert app.target.host == "SRV02"

    def test_default_list_is_reported_with_application_scope(self, machine, store, alice, make_blob):
        # Given only the machine default holds entries
        store.write_blob(AclTarget.machine(), LAUNCH_DEFAULT, make_blob((alice, AccessType.ALLOW, 0x7)))
        app = DcomApplication.from_handle(machine, APP_ID)

        # When
        entries = app.launch_permissions

        # Then
        assert app.launch_uses_default
        assert [e.principal for e in entries] == [alice]
        assert entries[0].scope == PermissionScope.NONE

    def test_granting_creates_an_override(self, machine, alice):
        app = DcomApplication.from_handle(machine, APP_ID)

        app.set_rights(APP_ACCESS, alice, [ElementaryRight.EXECUTE_REMOTE], AccessType.ALLOW)

        assert not app.access_uses_default
        (entry,) = [e for e in app.access_permissions if e.principal == alice]
        assert (entry.local_access, entry.remote_access) == (False, True)

    def test_use_default_permissions_drops_the_override(self, machine, alice):
        app = DcomApplication.from_handle(machine, APP_ID)
        app.set_rights(APP_LAUNCH, alice, [], AccessType.DENY)

        app.use_default_permissions(APP_LAUNCH)

        assert app.launch_uses_default

    def test_key_for_uses_the_application_scope(self):
        assert DcomApplication.key_for(PermissionCategory.ACCESS) == APP_ACCESS

    def test_machine_keys_are_rejected(self, machine):
        app = DcomApplication.from_handle(machine, APP_ID)

        with pytest.raises(UnsupportedCategoryError):
            app.entries(ACCESS_DEFAULT)


TCP = {"Name": "TCP/IP", "Order": 1, "ProtocolCode": "ncacn_ip_tcp"}
HTTP = {"Name": "HTTP", "Order": 2, "ProtocolCode": "ncacn_http"}


class TestMachineProtocols:
    def test_protocols_are_listed_in_order(self, machine, store):
        store.set_protocols([HTTP, TCP])

        assert [p.name for p in machine.protocols] == ["TCP/IP", "HTTP"]

    def test_protocols_are_cached_until_refresh(self, machine, store):
        store.set_protocols([TCP])
        assert len(machine.protocols) == 1

        store.set_protocols([TCP, HTTP])
        assert len(machine.protocols) == 1

        machine.refresh()
        assert machine.protocols[1] == RpcProtocol(
            name="http", order=2, protocol_code="NCACN_HTTP"
        )

    def test_protocol_lists_compare_regardless_of_listing_order(
        self, machine, remote_machine, store
    ):
        store.set_protocols([TCP, HTTP])
        store.set_protocols([HTTP, TCP], host="SRV02")

        assert machine.protocols_equal(remote_machine)

        store.set_protocols([TCP], host="SRV02")
        remote_machine.refresh()
        assert not machine.protocols_equal(remote_machine)

    def test_missing_catalog_is_a_store_error(self, engine):
        with pytest.raises(StoreError):
            MachineDcom(engine).protocols


class TestMachineEquality:
    @pytest.fixture
    def twin_hosts(self, machine, remote_machine, store, settings_record):
        for host in (None, "SRV02"):
            store.write_settings(settings_record, host=host)
            store.set_protocols([TCP, HTTP], host=host)
        return machine, remote_machine

    def test_hosts_with_the_same_configuration_are_equal(self, twin_hosts):
        local, remote = twin_hosts

        assert local.equals(remote)
        assert remote.equals(local)

    def test_a_different_list_breaks_equality(self, twin_hosts, alice):
        local, remote = twin_hosts

        remote.set_rights(LAUNCH_LIMITS, alice, [ElementaryRight.EXECUTE_LOCAL], AccessType.ALLOW)

        assert not local.equals(remote)

    def test_a_different_protocol_list_breaks_equality(self, twin_hosts, store):
        local, remote = twin_hosts

        store.set_protocols([TCP], host="SRV02")
        remote.refresh()

        assert not local.equals(remote)

    def test_different_settings_break_equality(self, twin_hosts):
        local, remote = twin_hosts

        remote.with_batch(lambda s: setattr(s, "is_router", True))

        assert not local.equals(remote)


class TestApplicationSettingsAndEquality:
    def test_settings_come_from_the_registration(self, engine, store):
        store.register_application(
            "{00000000-0000-0000-0000-0000000000A1}",
            "Spooler Proxy",
            settings={"LocalService": "Spooler", "ServiceStartup": 2, "AuthenticationLevel": 4},
        )

        app = DcomApplication.from_scratch(engine, "{00000000-0000-0000-0000-0000000000A1}")

        assert app.settings.service_name == "Spooler"
        assert app.settings.authentication_level is AuthenticationLevel.PACKET

    def test_plain_application_runs_as_launching_user(self, machine):
        app = DcomApplication.from_handle(machine, APP_ID)

        assert app.settings.run_as == LAUNCHING_USER
        assert not app.settings.runs_as_service

    def test_same_application_on_two_hosts_is_equal(self, machine, remote_machine):
        local = DcomApplication.from_handle(machine, APP_ID)
        remote = DcomApplication.from_handle(remote_machine, APP_ID)

        assert local.equals(remote)

        local.set_rights(APP_ACCESS, EVERYONE, [ElementaryRight.EXECUTE_LOCAL], AccessType.ALLOW)

        assert not local.equals(remote)

    def test_different_identity_breaks_equality(self, engine, store, machine):
        store.register_application(
            APP_ID, "Test Server", host="SRV03", settings={"RunAs": "Interactive User"}
        )
        local = DcomApplication.from_handle(machine, APP_ID)
        other = DcomApplication.from_scratch(engine, APP_ID, host="SRV03")

        assert not local.equals(other)

    def test_different_ids_are_never_equal(self, machine):
        first = DcomApplication.from_handle(machine, APP_ID)
        second = DcomApplication.from_handle(machine, OTHER_APP_ID)

        assert not first.equals(second)
