"""
Windows registry store.

Reads and writes the live DCOM permission values through ``winreg``.
Remote hosts are reached with RegConnectRegistry, which needs the Remote
Registry service on the target.
"""

from __future__ import annotations

import sys
from typing import Any, Dict, Optional

from dcomaudit.core.exceptions import (
    AclNotFoundError,
    AclUnauthorizedError,
    ConfigValidationError,
    StoreError,
)
from dcomaudit.core.logging import get_logger
from dcomaudit.store.base import AclKey, AclTarget, BlobStore, registry_value_name

logger = get_logger(__name__)

OLE_KEY = r"SOFTWARE\Microsoft\Ole"
APPID_KEY = r"SOFTWARE\Classes\AppID"
SERVICES_KEY = r"SYSTEM\CurrentControlSet\Services"


class WindowsRegistryStore(BlobStore):
    """BlobStore over HKLM, local or remote."""

    def __init__(self) -> None:
        if sys.platform != "win32":
            raise ConfigValidationError(
                "The registry store backend is only available on Windows",
                field="store.backend",
                value="registry",
            )
        import winreg

        self._winreg = winreg
        self._roots: Dict[Optional[str], Any] = {}

    def _root(self, host: Optional[str]) -> Any:
        if host not in self._roots:
            computer = f"\\\\{host}" if host else None
            try:
                self._roots[host] = self._winreg.ConnectRegistry(
                    computer, self._winreg.HKEY_LOCAL_MACHINE
                )
            except PermissionError as e:
                raise AclUnauthorizedError(f"Access denied connecting to {host}") from e
            except OSError as e:
                raise StoreError(f"Cannot connect to the registry on {host}: {e}") from e
        return self._roots[host]

    def _subkey(self, target: AclTarget) -> str:
        if target.is_machine:
            return OLE_KEY
        return f"{APPID_KEY}\\{target.app_id}"

    def _open(self, target: AclTarget, key: AclKey, write: bool) -> Any:
        access = self._winreg.KEY_READ
        if write:
            access |= self._winreg.KEY_SET_VALUE
        try:
            return self._winreg.OpenKey(self._root(target.host), self._subkey(target), 0, access)
        except FileNotFoundError as e:
            raise AclNotFoundError(
                f"Registry key {self._subkey(target)} does not exist on "
                f"{target.host or 'local'}",
                category=key.category.value,
                scope=key.scope.value,
            ) from e
        except PermissionError as e:
            raise AclUnauthorizedError(
                f"Access denied opening {self._subkey(target)}",
                category=key.category.value,
                scope=key.scope.value,
            ) from e

    def read_blob(self, target: AclTarget, key: AclKey) -> Optional[bytes]:
        name = registry_value_name(target, key)
        with self._open(target, key, write=False) as handle:
            try:
                value, value_type = self._winreg.QueryValueEx(handle, name)
            except FileNotFoundError:
                return None
        if value_type != self._winreg.REG_BINARY:
            logger.warning("Permission value is not REG_BINARY", value=name)
            return None
        return bytes(value)

    def write_blob(self, target: AclTarget, key: AclKey, data: bytes) -> None:
        name = registry_value_name(target, key)
        with self._open(target, key, write=True) as handle:
            try:
                self._winreg.SetValueEx(handle, name, 0, self._winreg.REG_BINARY, bytes(data))
            except PermissionError as e:
                raise AclUnauthorizedError(
                    f"Access denied writing {name}",
                    category=key.category.value,
                    scope=key.scope.value,
                ) from e

    def delete_blob(self, target: AclTarget, key: AclKey) -> None:
        name = registry_value_name(target, key)
        with self._open(target, key, write=True) as handle:
            try:
                self._winreg.DeleteValue(handle, name)
            except FileNotFoundError:
                return
            except PermissionError as e:
                raise AclUnauthorizedError(
                    f"Access denied deleting {name}",
                    category=key.category.value,
                    scope=key.scope.value,
                ) from e

    def list_applications(self, host: Optional[str] = None) -> Dict[str, str]:
        apps: Dict[str, str] = {}
        try:
            handle = self._winreg.OpenKey(self._root(host), APPID_KEY)
        except FileNotFoundError:
            return apps
        with handle:
            index = 0
            while True:
                try:
                    name = self._winreg.EnumKey(handle, index)
                except OSError:
                    break
                index += 1
                if not name.startswith("{"):
                    continue
                apps[name.upper()] = self._default_value(handle, name)
        return apps

    def read_application_settings(self, target: AclTarget) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        try:
            handle = self._winreg.OpenKey(self._root(target.host), self._subkey(target))
        except FileNotFoundError as e:
            raise AclNotFoundError(
                f"Application {target.app_id} is not registered on {target.host or 'local'}"
            ) from e
        with handle:
            for name in ("AuthenticationLevel", "LocalService", "RunAs"):
                value = self._query(handle, name)
                if value is not None:
                    record[name] = value
        service = record.get("LocalService")
        if service:
            try:
                sub = self._winreg.OpenKey(self._root(target.host), f"{SERVICES_KEY}\\{service}")
            except FileNotFoundError:
                logger.warning("Service key missing", app_id=target.app_id, service=service)
                return record
            with sub:
                account = self._query(sub, "ObjectName")
                start = self._query(sub, "Start")
            if account is not None:
                record["RunAs"] = account
            if start is not None:
                record["ServiceStartup"] = start
        return record

    def _query(self, handle: Any, name: str) -> Any:
        try:
            value, _ = self._winreg.QueryValueEx(handle, name)
        except FileNotFoundError:
            return None
        return value

    def _default_value(self, parent: Any, name: str) -> str:
        try:
            with self._winreg.OpenKey(parent, name) as sub:
                value, _ = self._winreg.QueryValueEx(sub, "")
                return str(value)
        except OSError:
            return ""
