"""Tests for the ACL mutation engine."""

import pytest

from dcomaudit.acl.descriptor import (
    AceFlags,
    AceType,
    RawAce,
    bootstrap_default,
    decode,
    parse_descriptor,
)
from dcomaudit.acl.mutation import AclMutationEngine, confirm_ace, confirm_ace_removal
from dcomaudit.acl.principal import BUILTIN_ADMINISTRATORS, EVERYONE, LOCAL_SYSTEM, PRINCIPAL_SELF
from dcomaudit.acl.rights import AccessType, ElementaryRight
from dcomaudit.core.exceptions import (
    AclNotFoundError,
    AclUnauthorizedError,
    CanonicalizationDataLossError,
    RemovalNotConfirmedError,
    UnsupportedCategoryError,
    WriteNotConfirmedError,
)
from dcomaudit.store.base import (
    ACCESS_DEFAULT,
    APP_ACCESS,
    APP_LAUNCH,
    LAUNCH_LIMITS,
    AclKey,
    AclState,
    AclTarget,
)
from dcomaudit.store.memory import InMemoryBlobStore


class DroppingStore(InMemoryBlobStore):
    """Accepts writes but keeps the built-in default instead."""

    def write_blob(self, target: AclTarget, key: AclKey, data: bytes) -> None:
        super().write_blob(target, key, bootstrap_default())


class FrozenStore(InMemoryBlobStore):
    """Silently ignores writes once frozen."""

    frozen = False

    def write_blob(self, target: AclTarget, key: AclKey, data: bytes) -> None:
        if not self.frozen:
            super().write_blob(target, key, data)


class VanishingStore(InMemoryBlobStore):
    """Accepts writes but loses the value straight away."""

    def write_blob(self, target: AclTarget, key: AclKey, data: bytes) -> None:
        super().write_blob(target, key, data)
        self.delete_blob(target, key)


def _aces_for(engine: AclMutationEngine, target: AclTarget, key: AclKey, principal) -> list:
    return [a for a in engine.read_raw(target, key) if a.principal == principal]


class TestConfirm:
    def test_confirm_requires_exactly_one_match(self, alice):
        ace = RawAce.for_access(alice, AccessType.ALLOW, 0x3)

        assert confirm_ace([ace], alice, AccessType.ALLOW, 0x3)
        assert not confirm_ace([ace, ace], alice, AccessType.ALLOW, 0x3)
        assert not confirm_ace([ace], alice, AccessType.ALLOW, 0x7)
        assert not confirm_ace([ace], alice, AccessType.DENY, 0x3)

    def test_removal_confirmation_respects_access_type(self, alice):
        deny = RawAce.for_access(alice, AccessType.DENY, 0x1)

        assert confirm_ace_removal([deny], alice, AccessType.ALLOW)
        assert not confirm_ace_removal([deny], alice)
        assert confirm_ace_removal([], alice)


class TestSetRights:
    def test_given_absent_value_when_granting_then_default_gains_one_entry(
        self, engine, machine_target, alice
    ):
        # Given
        assert engine.state(machine_target, ACCESS_DEFAULT) == AclState.USES_DEFAULT

        # When
        mask = engine.set_rights(
            machine_target,
            ACCESS_DEFAULT,
            alice,
            [ElementaryRight.EXECUTE_LOCAL],
            AccessType.ALLOW,
        )

        # Then
        assert mask == 0x3
        entries = [e for e in engine.read_entries(machine_target, ACCESS_DEFAULT) if e.principal == alice]
        assert len(entries) == 1
        assert entries[0].access_type == AccessType.ALLOW
        assert entries[0].local_access is True
        assert entries[0].remote_access is False
        principals = {a.principal for a in engine.read_raw(machine_target, ACCESS_DEFAULT)}
        assert {PRINCIPAL_SELF, LOCAL_SYSTEM, BUILTIN_ADMINISTRATORS} <= principals

    def test_existing_entry_of_same_type_is_replaced(self, engine, store, app_target, alice, make_blob):
        store.write_blob(
            app_target,
            APP_LAUNCH,
            make_blob((alice, AccessType.ALLOW, 0x1F), (EVERYONE, AccessType.ALLOW, 0x1)),
        )

        engine.set_rights(
            app_target, APP_LAUNCH, alice, [ElementaryRight.EXECUTE_REMOTE], AccessType.ALLOW
        )

        aces = _aces_for(engine, app_target, APP_LAUNCH, alice)
        assert [(a.access_type, a.mask) for a in aces] == [(AccessType.ALLOW, 0x5)]

    def test_entry_of_other_type_is_kept(self, engine, store, app_target, alice, make_blob):
        store.write_blob(app_target, APP_ACCESS, make_blob((alice, AccessType.ALLOW, 0x3)))

        engine.set_rights(
            app_target, APP_ACCESS, alice, [ElementaryRight.EXECUTE_REMOTE], AccessType.DENY
        )

        aces = engine.read_raw(app_target, APP_ACCESS)
        # deny entries sort ahead of allow entries
        assert [(a.access_type, a.mask) for a in aces] == [
            (AccessType.DENY, 0x5),
            (AccessType.ALLOW, 0x3),
        ]

    def test_owner_and_group_are_preserved(self, engine, store, app_target, alice, make_blob):
        store.write_blob(app_target, APP_ACCESS, make_blob((EVERYONE, AccessType.ALLOW, 0x1)))

        engine.set_rights(app_target, APP_ACCESS, alice, [], AccessType.ALLOW)

        descriptor = parse_descriptor(store.read_blob(app_target, APP_ACCESS))
        assert descriptor.owner == BUILTIN_ADMINISTRATORS
        assert descriptor.group == BUILTIN_ADMINISTRATORS

    def test_unplaceable_entry_aborts_before_writing(self, engine, store, app_target, alice, raw_blob):
        # Given a stored list holding an explicit audit entry
        store.write_blob(
            app_target,
            APP_ACCESS,
            raw_blob(
                [
                    RawAce.for_access(EVERYONE, AccessType.ALLOW, 0x1),
                    RawAce(AceType.SYSTEM_AUDIT, mask=0x1, principal=EVERYONE),
                ]
            ),
        )
        writes = store.writes

        # When / Then
        with pytest.raises(CanonicalizationDataLossError):
            engine.set_rights(app_target, APP_ACCESS, alice, [], AccessType.ALLOW)
        assert store.writes == writes

    def test_inherited_entries_survive_a_write(self, engine, store, app_target, alice, raw_blob):
        inherited = RawAce(
            AceType.ACCESS_ALLOWED, mask=0x7, principal=EVERYONE, flags=AceFlags.INHERITED
        )
        store.write_blob(app_target, APP_ACCESS, raw_blob([inherited]))

        engine.set_rights(app_target, APP_ACCESS, alice, [], AccessType.ALLOW)

        aces = decode(store.read_blob(app_target, APP_ACCESS))
        assert aces[-1] == inherited

    def test_unconfirmed_write_raises(self, resolver, alice):
        store = DroppingStore()
        engine = AclMutationEngine(store, resolver)

        with pytest.raises(WriteNotConfirmedError) as exc_info:
            engine.set_rights(
                AclTarget.machine(), LAUNCH_LIMITS, alice, [], AccessType.ALLOW
            )
        assert exc_info.value.error_code == "DA-MUT-001"
        assert exc_info.value.principal == str(alice)

    def test_value_lost_after_write_is_an_unconfirmed_write(self, resolver, alice):
        engine = AclMutationEngine(VanishingStore(), resolver)

        with pytest.raises(WriteNotConfirmedError) as exc_info:
            engine.set_rights(AclTarget.machine(), ACCESS_DEFAULT, alice, [], AccessType.ALLOW)
        assert "missing after writing" in str(exc_info.value)
        assert exc_info.value.principal == str(alice)
        assert exc_info.value.category == "access"

    def test_read_only_store_is_unauthorized(self, resolver, alice):
        engine = AclMutationEngine(InMemoryBlobStore(read_only=True), resolver)

        with pytest.raises(AclUnauthorizedError):
            engine.set_rights(AclTarget.machine(), ACCESS_DEFAULT, alice, [], AccessType.ALLOW)

    def test_application_key_on_machine_is_rejected(self, engine, machine_target, alice):
        with pytest.raises(UnsupportedCategoryError):
            engine.set_rights(machine_target, APP_ACCESS, alice, [], AccessType.ALLOW)

    def test_unknown_application_is_not_found(self, engine, alice):
        target = AclTarget.application("{00000000-0000-0000-0000-000000000001}")

        with pytest.raises(AclNotFoundError):
            engine.set_rights(target, APP_ACCESS, alice, [], AccessType.ALLOW)


class TestRemoveRights:
    def test_given_allow_and_deny_when_removing_then_both_go(
        self, engine, store, app_target, alice, make_blob
    ):
        # Given
        store.write_blob(
            app_target,
            APP_ACCESS,
            make_blob(
                (alice, AccessType.DENY, 0x5),
                (EVERYONE, AccessType.ALLOW, 0x7),
                (alice, AccessType.ALLOW, 0x3),
            ),
        )

        # When
        engine.remove_rights(app_target, APP_ACCESS, alice)

        # Then
        aces = engine.read_raw(app_target, APP_ACCESS)
        assert confirm_ace_removal(aces, alice)
        assert [a.principal for a in aces] == [EVERYONE]

    def test_only_requested_type_is_removed(self, engine, store, app_target, alice, make_blob):
        store.write_blob(
            app_target,
            APP_ACCESS,
            make_blob((alice, AccessType.DENY, 0x5), (alice, AccessType.ALLOW, 0x3)),
        )

        engine.remove_rights(app_target, APP_ACCESS, alice, AccessType.DENY)

        aces = _aces_for(engine, app_target, APP_ACCESS, alice)
        assert [a.access_type for a in aces] == [AccessType.ALLOW]

    def test_removing_from_absent_value_stores_the_default(self, engine, store, machine_target):
        engine.remove_rights(machine_target, LAUNCH_LIMITS, LOCAL_SYSTEM)

        principals = [a.principal for a in engine.read_raw(machine_target, LAUNCH_LIMITS)]
        assert principals == [PRINCIPAL_SELF, BUILTIN_ADMINISTRATORS]

    def test_unconfirmed_removal_raises(self, resolver, alice, make_blob):
        store = FrozenStore()
        target = AclTarget.machine()
        store.write_blob(target, ACCESS_DEFAULT, make_blob((alice, AccessType.ALLOW, 0x3)))
        store.frozen = True
        engine = AclMutationEngine(store, resolver)

        with pytest.raises(RemovalNotConfirmedError) as exc_info:
            engine.remove_rights(target, ACCESS_DEFAULT, alice)
        assert exc_info.value.error_code == "DA-MUT-002"


    def test_value_lost_after_removal_is_an_unconfirmed_removal(self, resolver, alice):
        engine = AclMutationEngine(VanishingStore(), resolver)

        with pytest.raises(RemovalNotConfirmedError) as exc_info:
            engine.remove_rights(AclTarget.machine(), LAUNCH_LIMITS, alice)
        assert exc_info.value.error_code == "DA-MUT-002"
        assert exc_info.value.scope == "limits"


class TestResetToDefault:
    def test_application_override_is_deleted(self, engine, store, app_target, alice):
        engine.set_rights(app_target, APP_LAUNCH, alice, [], AccessType.ALLOW)
        assert engine.state(app_target, APP_LAUNCH) == AclState.CUSTOMIZED

        engine.reset_to_default(app_target, APP_LAUNCH)

        assert store.read_blob(app_target, APP_LAUNCH) is None
        assert engine.read_entries(app_target, APP_LAUNCH) is None

    def test_reset_of_default_list_writes_nothing(self, engine, store, app_target):
        engine.reset_to_default(app_target, APP_ACCESS)

        assert store.writes == 0

    def test_machine_lists_cannot_be_reset(self, engine, machine_target):
        with pytest.raises(UnsupportedCategoryError):
            engine.reset_to_default(machine_target, ACCESS_DEFAULT)


class TestReads:
    def test_empty_blob_reads_as_default(self, engine, store, app_target):
        store.write_blob(app_target, APP_ACCESS, b"")

        assert engine.read_descriptor(app_target, APP_ACCESS) is None
        assert engine.state(app_target, APP_ACCESS) == AclState.USES_DEFAULT

    def test_entries_use_resolver_names(self, engine, store, app_target, alice, make_blob):
        store.write_blob(app_target, APP_ACCESS, make_blob((alice, AccessType.ALLOW, 0x3)))

        entries = engine.read_entries(app_target, APP_ACCESS)

        assert [e.user for e in entries] == ["CONTOSO\\alice"]

    def test_entries_for_update_start_from_the_built_in_default(self, engine, app_target):
        entries = engine.read_entries_for_update(app_target, APP_LAUNCH)

        assert engine.read_entries(app_target, APP_LAUNCH) is None
        assert [e.principal for e in entries] == [
            PRINCIPAL_SELF,
            LOCAL_SYSTEM,
            BUILTIN_ADMINISTRATORS,
        ]

    def test_entries_for_update_are_the_stored_list_when_present(
        self, engine, store, app_target, alice, make_blob
    ):
        store.write_blob(app_target, APP_ACCESS, make_blob((alice, AccessType.ALLOW, 0x3)))

        entries = engine.read_entries_for_update(app_target, APP_ACCESS)

        assert entries == engine.read_entries(app_target, APP_ACCESS)
