"""
ACL owners: the machine-wide DCOM configuration and single applications.

MachineDcom holds the four machine ACLs (Default/Limits for Access and
Launch) plus the machine settings. DcomApplication holds one AppID's Access
and Launch ACLs, each of which may fall back to the machine Default.

Applications are created through exactly two factories:

    app = DcomApplication.from_scratch(engine, app_id, host="SRV01")
    app = DcomApplication.from_handle(machine, app_id)
"""

from __future__ import annotations

from collections import Counter
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence

from dcomaudit.acl.entry import AccessControlEntry
from dcomaudit.acl.mutation import AclMutationEngine
from dcomaudit.acl.principal import PrincipalId
from dcomaudit.acl.rights import (
    AccessType,
    ElementaryRight,
    PermissionCategory,
    PermissionScope,
)
from dcomaudit.acl.sync import SyncReport, acl_equals, copy_acl, mismatched
from dcomaudit.core.exceptions import (
    AclNotFoundError,
    AggregateFailureError,
    DcomAuditError,
    StoreError,
)
from dcomaudit.core.logging import get_logger
from dcomaudit.machine.settings import (
    ApplicationSettings,
    MachineSettings,
    RpcProtocol,
    application_settings_from_record,
    protocols_from_records,
    settings_from_record,
    settings_to_record,
)
from dcomaudit.store.base import (
    ACCESS_DEFAULT,
    ACCESS_LIMITS,
    APPLICATION_KEYS,
    LAUNCH_DEFAULT,
    LAUNCH_LIMITS,
    MACHINE_KEYS,
    AclKey,
    AclState,
    AclTarget,
    SettingsCatalog,
    default_key_for,
    validate_key,
)

logger = get_logger(__name__)


class MachineDcom:
    """Machine-wide DCOM permissions and settings on one host."""

    def __init__(
        self,
        engine: AclMutationEngine,
        host: Optional[str] = None,
        catalog: Optional[SettingsCatalog] = None,
    ) -> None:
        self.engine = engine
        self.target = AclTarget.machine(host)
        self.catalog = catalog
        self._acls: Dict[AclKey, List[AccessControlEntry]] = {}
        self._settings: Optional[MachineSettings] = None
        self._protocols: Optional[List[RpcProtocol]] = None

    @property
    def host(self) -> Optional[str]:
        return self.target.host

    def describe(self) -> str:
        return str(self.target)

    def equals(self, other: "MachineDcom") -> bool:
        """Same settings, protocols and all four ACLs; the host is ignored."""
        return (
            self.settings_equal(other)
            and self.protocols_equal(other)
            and all(self.permission_equality(other, key) for key in MACHINE_KEYS)
        )

    # ------------------------------------------------------------------
    # ACLs
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """Drop cached ACLs, settings and protocols; the next access re-reads the store."""
        self._acls.clear()
        self._settings = None
        self._protocols = None

    def _key(self, key: AclKey) -> AclKey:
        return validate_key(self.target, key)

    def entries(self, key: AclKey) -> List[AccessControlEntry]:
        key = self._key(key)
        if key not in self._acls:
            self._acls[key] = self.engine.read_entries(self.target, key) or []
        return list(self._acls[key])

    def entries_for_update(self, key: AclKey) -> List[AccessControlEntry]:
        return self.engine.read_entries_for_update(self.target, self._key(key))

    def uses_default(self, key: AclKey) -> bool:
        # machine lists have nothing to fall back to
        self._key(key)
        return False

    def state(self, key: AclKey) -> AclState:
        return self.engine.state(self.target, self._key(key))

    @property
    def default_access(self) -> List[AccessControlEntry]:
        return self.entries(ACCESS_DEFAULT)

    @property
    def limits_access(self) -> List[AccessControlEntry]:
        return self.entries(ACCESS_LIMITS)

    @property
    def default_launch(self) -> List[AccessControlEntry]:
        return self.entries(LAUNCH_DEFAULT)

    @property
    def limits_launch(self) -> List[AccessControlEntry]:
        return self.entries(LAUNCH_LIMITS)

    def set_rights(
        self,
        key: AclKey,
        principal: PrincipalId,
        rights: Sequence[ElementaryRight],
        access_type: AccessType,
    ) -> None:
        key = self._key(key)
        try:
            self.engine.set_rights(self.target, key, principal, rights, access_type)
        finally:
            self._acls.pop(key, None)

    def remove_rights(
        self,
        key: AclKey,
        principal: PrincipalId,
        access_type: Optional[AccessType] = None,
    ) -> None:
        key = self._key(key)
        try:
            self.engine.remove_rights(self.target, key, principal, access_type)
        finally:
            self._acls.pop(key, None)

    def use_default_permissions(self, key: AclKey) -> None:
        self.engine.reset_to_default(self.target, self._key(key))

    def permission_equality(self, other: "MachineDcom", key: AclKey) -> bool:
        return acl_equals(self.entries(key), other.entries(key))

    def mismatched_permissions(
        self, other: "MachineDcom", key: AclKey
    ) -> List[AccessControlEntry]:
        """Entries here that ``other`` does not have."""
        return mismatched(self.entries(key), other.entries(key))

    def copy_access_control_list(
        self,
        source: "MachineDcom",
        key: AclKey,
        overwrite: bool = False,
        stop_on_error: bool = False,
    ) -> SyncReport:
        """Bring this machine's ``key`` ACL in line with ``source``'s."""
        return copy_acl(source, self, self._key(key), overwrite, stop_on_error)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _require_catalog(self) -> SettingsCatalog:
        if self.catalog is None:
            raise StoreError(
                f"The configured store cannot provide machine settings for {self.target}"
            )
        return self.catalog

    @property
    def settings(self) -> MachineSettings:
        """A copy of the current settings; change it and pass it to commit()."""
        if self._settings is None:
            record = self._require_catalog().read_settings(self.host)
            self._settings = settings_from_record(record)
        return self._settings.model_copy(deep=True)

    def commit(self, settings: MachineSettings) -> None:
        """Write a complete settings record in one step."""
        self._require_catalog().write_settings(settings_to_record(settings), self.host)
        self._settings = settings.model_copy(deep=True)
        logger.info("Machine settings committed", target=str(self.target))

    def with_batch(self, fn: Callable[[MachineSettings], None]) -> MachineSettings:
        """Apply ``fn`` to a working copy of the settings, then commit once.

        Nothing is written if ``fn`` raises.
        """
        working = self.settings
        fn(working)
        self.commit(working)
        return working

    def settings_equal(self, other: "MachineDcom") -> bool:
        return self.settings == other.settings

    @property
    def protocols(self) -> List[RpcProtocol]:
        """RPC protocols in the order DCOM tries them."""
        if self._protocols is None:
            records = self._require_catalog().read_protocols(self.host)
            self._protocols = protocols_from_records(records)
        return list(self._protocols)

    def protocols_equal(self, other: "MachineDcom") -> bool:
        return Counter(self.protocols) == Counter(other.protocols)

    def copy_from(
        self,
        other: "MachineDcom",
        overwrite_acl: bool = False,
        stop_on_error: bool = False,
    ) -> List[SyncReport]:
        """Copy settings and all four ACLs from ``other``.

        Raises:
            AggregateFailureError: If any ACL copy failed; every ACL is
                still attempted unless ``stop_on_error`` is set.
        """
        self.commit(other.settings)
        reports: List[SyncReport] = []
        failures: List[DcomAuditError] = []
        for key in MACHINE_KEYS:
            try:
                reports.append(
                    self.copy_access_control_list(other, key, overwrite_acl, stop_on_error)
                )
            except AggregateFailureError as e:
                failures.extend(e.failures)
                if e.report is not None:
                    reports.append(e.report)
                if stop_on_error:
                    break
        if failures:
            raise AggregateFailureError(
                f"Copying {other.describe()} to {self.describe()}", failures, report=reports
            )
        return reports


class DcomApplication:
    """
    Launch and access permissions of one DCOM application (AppID).

    An application ACL that is not stored uses the machine Default ACL of
    the same category; its entries are then reported from the machine
    list, re-scoped to the application.
    """

    def __init__(self, machine: MachineDcom, app_id: str) -> None:
        self.machine = machine
        self.engine = machine.engine
        self.target = AclTarget.application(app_id, machine.host)
        apps = self.engine.store.list_applications(machine.host)
        if self.target.app_id not in apps:
            raise AclNotFoundError(
                f"Application {self.target.app_id} is not registered on "
                f"{machine.host or 'local'}"
            )
        self.name = apps[self.target.app_id]
        self._acls: Dict[AclKey, Optional[List[AccessControlEntry]]] = {}
        self._settings: Optional[ApplicationSettings] = None

    @classmethod
    def from_scratch(
        cls,
        engine: AclMutationEngine,
        app_id: str,
        host: Optional[str] = None,
        catalog: Optional[SettingsCatalog] = None,
    ) -> "DcomApplication":
        """Open an application with its own machine handle."""
        return cls(MachineDcom(engine, host, catalog), app_id)

    @classmethod
    def from_handle(cls, machine: MachineDcom, app_id: str) -> "DcomApplication":
        """Open an application sharing an existing machine handle."""
        return cls(machine, app_id)

    @property
    def app_id(self) -> str:
        return self.target.app_id or ""

    def describe(self) -> str:
        label = f"{self.name} " if self.name else ""
        return f"{label}{self.target}"

    @staticmethod
    def key_for(category: PermissionCategory) -> AclKey:
        return AclKey(category, PermissionScope.NONE)

    def _key(self, key: AclKey) -> AclKey:
        return validate_key(self.target, key)

    @property
    def settings(self) -> ApplicationSettings:
        if self._settings is None:
            record = self.engine.store.read_application_settings(self.target)
            self._settings = application_settings_from_record(record)
        return self._settings

    def equals(self, other: "DcomApplication") -> bool:
        """Same id, name, settings and both ACLs."""
        return (
            self.app_id == other.app_id
            and self.name.casefold() == other.name.casefold()
            and self.settings == other.settings
            and all(
                self.permission_equality(other, key.category) for key in APPLICATION_KEYS
            )
        )

    def refresh(self) -> None:
        self._acls.clear()
        self._settings = None
        self.machine.refresh()

    def _stored(self, key: AclKey) -> Optional[List[AccessControlEntry]]:
        key = self._key(key)
        if key not in self._acls:
            self._acls[key] = self.engine.read_entries(self.target, key)
        return self._acls[key]

    def uses_default(self, key: AclKey) -> bool:
        return self._stored(key) is None

    def entries(self, key: AclKey) -> List[AccessControlEntry]:
        stored = self._stored(key)
        if stored is not None:
            return list(stored)
        fallback = self.machine.entries(default_key_for(key))
        return [replace(e, scope=key.scope) for e in fallback]

    def entries_for_update(self, key: AclKey) -> List[AccessControlEntry]:
        return self.engine.read_entries_for_update(self.target, self._key(key))

    @property
    def access_permissions(self) -> List[AccessControlEntry]:
        return self.entries(self.key_for(PermissionCategory.ACCESS))

    @property
    def launch_permissions(self) -> List[AccessControlEntry]:
        return self.entries(self.key_for(PermissionCategory.LAUNCH))

    @property
    def access_uses_default(self) -> bool:
        return self.uses_default(self.key_for(PermissionCategory.ACCESS))

    @property
    def launch_uses_default(self) -> bool:
        return self.uses_default(self.key_for(PermissionCategory.LAUNCH))

    def set_rights(
        self,
        key: AclKey,
        principal: PrincipalId,
        rights: Sequence[ElementaryRight],
        access_type: AccessType,
    ) -> None:
        key = self._key(key)
        try:
            self.engine.set_rights(self.target, key, principal, rights, access_type)
        finally:
            self._acls.pop(key, None)

    def remove_rights(
        self,
        key: AclKey,
        principal: PrincipalId,
        access_type: Optional[AccessType] = None,
    ) -> None:
        key = self._key(key)
        try:
            self.engine.remove_rights(self.target, key, principal, access_type)
        finally:
            self._acls.pop(key, None)

    def use_default_permissions(self, key: AclKey) -> None:
        key = self._key(key)
        try:
            self.engine.reset_to_default(self.target, key)
        finally:
            self._acls.pop(key, None)

    def permission_equality(self, other: "DcomApplication", category: PermissionCategory) -> bool:
        key = self.key_for(category)
        return acl_equals(self.entries(key), other.entries(key))

    def mismatched_permissions(
        self, other: "DcomApplication", category: PermissionCategory
    ) -> List[AccessControlEntry]:
        key = self.key_for(category)
        return mismatched(self.entries(key), other.entries(key))

    def copy_access_control_list(
        self,
        source: "DcomApplication",
        category: PermissionCategory,
        overwrite: bool = False,
        stop_on_error: bool = False,
    ) -> SyncReport:
        """Bring this application's ``category`` ACL in line with ``source``'s."""
        return copy_acl(source, self, self.key_for(category), overwrite, stop_on_error)
