"""
Store contract for DCOM permission descriptors.

A store holds the raw security-descriptor bytes for each ACL key and the
application registrations. Machine keys live under
HKLM\\SOFTWARE\\Microsoft\\Ole, application keys under HKCR\\AppID\\{id}.

An absent value is not an error: read_blob() returns None and the caller
treats the ACL as "uses default". AclNotFoundError is reserved for a missing
container (unknown application id, missing Ole key).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from dcomaudit.acl.rights import PermissionCategory, PermissionScope, require_supported
from dcomaudit.core.exceptions import UnsupportedCategoryError

LOCAL_HOST_NAMES = ("", ".", "localhost")


def normalize_host(host: Optional[str]) -> Optional[str]:
    """None for the local machine, otherwise the upper-cased host name."""
    if host is None or host.strip().lower() in LOCAL_HOST_NAMES:
        return None
    return host.strip().upper()


def normalize_app_id(app_id: str) -> str:
    """Upper-case braced form: {0000031A-0000-0000-C000-000000000046}."""
    text = app_id.strip().strip("{}").upper()
    if not text:
        raise ValueError("Application id must not be empty")
    return "{" + text + "}"


class TargetKind(str, Enum):
    MACHINE = "machine"
    APPLICATION = "application"


@dataclass(frozen=True)
class AclTarget:
    """The machine-wide settings or one application, on one host."""

    kind: TargetKind
    app_id: Optional[str] = None
    host: Optional[str] = None

    @classmethod
    def machine(cls, host: Optional[str] = None) -> "AclTarget":
        return cls(TargetKind.MACHINE, None, normalize_host(host))

    @classmethod
    def application(cls, app_id: str, host: Optional[str] = None) -> "AclTarget":
        return cls(TargetKind.APPLICATION, normalize_app_id(app_id), normalize_host(host))

    @property
    def is_machine(self) -> bool:
        return self.kind == TargetKind.MACHINE

    def __str__(self) -> str:
        where = self.host or "local"
        if self.is_machine:
            return f"machine@{where}"
        return f"{self.app_id}@{where}"


@dataclass(frozen=True)
class AclKey:
    category: PermissionCategory
    scope: PermissionScope = PermissionScope.NONE

    def __str__(self) -> str:
        return f"{self.category.value}/{self.scope.value}"


ACCESS_DEFAULT = AclKey(PermissionCategory.ACCESS, PermissionScope.DEFAULT)
ACCESS_LIMITS = AclKey(PermissionCategory.ACCESS, PermissionScope.LIMITS)
LAUNCH_DEFAULT = AclKey(PermissionCategory.LAUNCH, PermissionScope.DEFAULT)
LAUNCH_LIMITS = AclKey(PermissionCategory.LAUNCH, PermissionScope.LIMITS)
APP_ACCESS = AclKey(PermissionCategory.ACCESS, PermissionScope.NONE)
APP_LAUNCH = AclKey(PermissionCategory.LAUNCH, PermissionScope.NONE)

MACHINE_KEYS: Tuple[AclKey, ...] = (ACCESS_DEFAULT, ACCESS_LIMITS, LAUNCH_DEFAULT, LAUNCH_LIMITS)
APPLICATION_KEYS: Tuple[AclKey, ...] = (APP_ACCESS, APP_LAUNCH)

_VALUE_NAMES = {
    (TargetKind.MACHINE, ACCESS_DEFAULT): "DefaultAccessPermission",
    (TargetKind.MACHINE, ACCESS_LIMITS): "MachineAccessRestriction",
    (TargetKind.MACHINE, LAUNCH_DEFAULT): "DefaultLaunchPermission",
    (TargetKind.MACHINE, LAUNCH_LIMITS): "MachineLaunchRestriction",
    (TargetKind.APPLICATION, APP_ACCESS): "AccessPermission",
    (TargetKind.APPLICATION, APP_LAUNCH): "LaunchPermission",
}


class AclState(str, Enum):
    USES_DEFAULT = "uses_default"
    CUSTOMIZED = "customized"


def validate_key(target: AclTarget, key: AclKey) -> AclKey:
    """Reject keys that do not exist for ``target``.

    Raises:
        UnsupportedCategoryError: For the Config category or a scope that
            does not apply to the target kind.
    """
    require_supported(key.category)
    valid = MACHINE_KEYS if target.is_machine else APPLICATION_KEYS
    if key not in valid:
        raise UnsupportedCategoryError(
            f"{target.kind.value} targets have no {key} permission list",
            category=key.category.value,
            scope=key.scope.value,
        )
    return key


def registry_value_name(target: AclTarget, key: AclKey) -> str:
    """Registry value that stores the descriptor for (target, key)."""
    validate_key(target, key)
    return _VALUE_NAMES[(target.kind, key)]


def default_key_for(key: AclKey) -> AclKey:
    """Machine Default key an application key falls back to."""
    return AclKey(key.category, PermissionScope.DEFAULT)


class BlobStore(ABC):
    """Raw descriptor storage."""

    @abstractmethod
    def read_blob(self, target: AclTarget, key: AclKey) -> Optional[bytes]:
        """Stored bytes, or None if the value is absent.

        Raises:
            AclNotFoundError: If the target itself does not exist.
            AclUnauthorizedError: If the caller may not read it.
        """

    @abstractmethod
    def write_blob(self, target: AclTarget, key: AclKey, data: bytes) -> None:
        """Replace the stored bytes.

        Raises:
            AclNotFoundError: If the target itself does not exist.
            AclUnauthorizedError: If the caller may not write it.
        """

    @abstractmethod
    def delete_blob(self, target: AclTarget, key: AclKey) -> None:
        """Remove the value; a missing value is not an error."""

    @abstractmethod
    def list_applications(self, host: Optional[str] = None) -> Dict[str, str]:
        """Registered application ids mapped to their display names."""

    @abstractmethod
    def read_application_settings(self, target: AclTarget) -> Dict[str, Any]:
        """Raw application record keyed by registry value name.

        Fields: AuthenticationLevel, RunAs, LocalService and ServiceStartup;
        absent fields are left out.

        Raises:
            AclNotFoundError: If the application is not registered.
        """

    def application_exists(self, target: AclTarget) -> bool:
        return target.app_id in self.list_applications(target.host)

    def principal_names(self) -> Dict[str, str]:
        """Known SID string -> account name pairs recorded by the store."""
        return {}


class SettingsCatalog(ABC):
    """Source of the machine-wide DCOM settings record."""

    @abstractmethod
    def read_settings(self, host: Optional[str] = None) -> Dict[str, Any]:
        """Raw record keyed by catalog field name."""

    @abstractmethod
    def write_settings(self, record: Dict[str, Any], host: Optional[str] = None) -> None:
        """Persist a complete record."""

    @abstractmethod
    def read_protocols(self, host: Optional[str] = None) -> List[Dict[str, Any]]:
        """DCOM protocol records (Name, Order, ProtocolCode); empty if none."""
