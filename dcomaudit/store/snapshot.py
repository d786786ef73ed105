"""
JSON snapshot store.

A snapshot is an offline copy of a machine's DCOM configuration: the raw
permission values (base64), the application registrations, the machine
settings record and optionally the account names of the SIDs it contains.
It lets the tool audit and edit configuration exported from another host.

    {
      "version": 1,
      "machines": {
        ".": {
          "values": {"DefaultLaunchPermission": "AQAEgF..."},
          "applications": {
            "{...}": {
              "name": "...",
              "values": {"LaunchPermission": "..."},
              "settings": {"AuthenticationLevel": 2, "RunAs": "Interactive User"}
            }
          },
          "settings": {"DCOMEnabled": true, ...},
          "protocols": [{"Name": "TCP/IP", "Order": 1, "ProtocolCode": "ncacn_ip_tcp"}]
        }
      },
      "principals": {"S-1-5-21-...-1001": "CONTOSO\\\\alice"}
    }
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from dcomaudit.core.exceptions import (
    AclNotFoundError,
    AclUnauthorizedError,
    ConfigValidationError,
    MalformedDescriptorError,
)
from dcomaudit.core.logging import get_logger
from dcomaudit.store.base import (
    AclKey,
    AclTarget,
    BlobStore,
    SettingsCatalog,
    normalize_app_id,
    normalize_host,
    registry_value_name,
)

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1
LOCAL_MACHINE = "."


class SnapshotApplication(BaseModel):
    """One AppID registration."""

    name: str = ""
    values: Dict[str, str] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)


class SnapshotMachine(BaseModel):
    """Everything recorded for one host."""

    values: Dict[str, str] = Field(default_factory=dict)
    applications: Dict[str, SnapshotApplication] = Field(default_factory=dict)
    settings: Optional[Dict[str, Any]] = None
    protocols: List[Dict[str, Any]] = Field(default_factory=list)


class SnapshotDocument(BaseModel):
    """Root of a snapshot file."""

    version: int = Field(default=SNAPSHOT_VERSION, ge=1, le=SNAPSHOT_VERSION)
    machines: Dict[str, SnapshotMachine] = Field(default_factory=dict)
    principals: Dict[str, str] = Field(default_factory=dict)


def _host_key(host: Optional[str]) -> str:
    return normalize_host(host) or LOCAL_MACHINE


def _find_application(
    machine: SnapshotMachine, app_id: str
) -> Optional[SnapshotApplication]:
    for key, app in machine.applications.items():
        if normalize_app_id(key) == app_id:
            return app
    return None


class SnapshotBlobStore(BlobStore, SettingsCatalog):
    """
    Store backed by a JSON snapshot file.

    The file is re-read on every call and written atomically, so the
    engine's read-after-write confirmation sees what is on disk.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> SnapshotDocument:
        if not self._path.exists():
            return SnapshotDocument()
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except PermissionError as e:
            raise AclUnauthorizedError(f"Cannot read snapshot {self._path}") from e
        except json.JSONDecodeError as e:
            raise ConfigValidationError(
                f"Snapshot {self._path.name} is not valid JSON: {e}",
                value=str(self._path),
            ) from e
        try:
            return SnapshotDocument(**data)
        except ValidationError as e:
            raise ConfigValidationError(
                f"Snapshot {self._path.name} has an invalid layout: {e}",
                value=str(self._path),
            ) from e

    def _save(self, document: SnapshotDocument) -> None:
        """Atomic persist to disk; the temp file never outlives a failed save."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self._path.parent), prefix=self._path.name, suffix=".tmp"
            )
        except PermissionError as e:
            raise AclUnauthorizedError(f"Cannot write snapshot {self._path}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document.model_dump(mode="json"), f, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException as e:
            Path(tmp_name).unlink(missing_ok=True)
            if isinstance(e, PermissionError):
                raise AclUnauthorizedError(f"Cannot write snapshot {self._path}") from e
            raise

    def _values(
        self, document: SnapshotDocument, target: AclTarget, key: AclKey, create: bool
    ) -> Dict[str, str]:
        host = _host_key(target.host)
        machine = document.machines.get(host)
        if target.is_machine:
            if machine is None:
                if not create:
                    return {}
                machine = document.machines[host] = SnapshotMachine()
            return machine.values
        app = _find_application(machine, target.app_id or "") if machine else None
        if app is None:
            raise AclNotFoundError(
                f"Application {target.app_id} is not registered on {host}",
                category=key.category.value,
                scope=key.scope.value,
            )
        return app.values

    def read_blob(self, target: AclTarget, key: AclKey) -> Optional[bytes]:
        name = registry_value_name(target, key)
        encoded = self._values(self._load(), target, key, create=False).get(name)
        if encoded is None:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedDescriptorError(
                f"{name} in {self._path.name} is not valid base64",
                category=key.category.value,
                scope=key.scope.value,
            ) from e

    def write_blob(self, target: AclTarget, key: AclKey, data: bytes) -> None:
        name = registry_value_name(target, key)
        document = self._load()
        values = self._values(document, target, key, create=True)
        values[name] = base64.b64encode(bytes(data)).decode("ascii")
        self._save(document)
        logger.debug("Snapshot value written", target=str(target), value=name)

    def delete_blob(self, target: AclTarget, key: AclKey) -> None:
        name = registry_value_name(target, key)
        document = self._load()
        values = self._values(document, target, key, create=True)
        if values.pop(name, None) is not None:
            self._save(document)
            logger.debug("Snapshot value deleted", target=str(target), value=name)

    def register_application(
        self,
        app_id: str,
        name: str = "",
        host: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> AclTarget:
        target = AclTarget.application(app_id, host)
        document = self._load()
        machine = document.machines.setdefault(_host_key(host), SnapshotMachine())
        machine.applications.setdefault(
            target.app_id or "", SnapshotApplication(name=name, settings=dict(settings or {}))
        )
        self._save(document)
        return target

    def list_applications(self, host: Optional[str] = None) -> Dict[str, str]:
        machine = self._load().machines.get(_host_key(host))
        if machine is None:
            return {}
        return {normalize_app_id(k): v.name for k, v in machine.applications.items()}

    def application_exists(self, target: AclTarget) -> bool:
        return (target.app_id or "") in self.list_applications(target.host)

    def read_application_settings(self, target: AclTarget) -> Dict[str, Any]:
        machine = self._load().machines.get(_host_key(target.host))
        app = _find_application(machine, target.app_id or "") if machine else None
        if app is None:
            raise AclNotFoundError(
                f"Application {target.app_id} is not registered on {_host_key(target.host)}"
            )
        return dict(app.settings)

    def read_protocols(self, host: Optional[str] = None) -> List[Dict[str, Any]]:
        machine = self._load().machines.get(_host_key(host))
        if machine is None:
            return []
        return [dict(p) for p in machine.protocols]

    def principal_names(self) -> Dict[str, str]:
        return dict(self._load().principals)

    def read_settings(self, host: Optional[str] = None) -> Dict[str, Any]:
        machine = self._load().machines.get(_host_key(host))
        if machine is None or machine.settings is None:
            raise AclNotFoundError(
                f"No machine settings recorded for {_host_key(host)} in {self._path.name}"
            )
        return dict(machine.settings)

    def write_settings(self, record: Dict[str, Any], host: Optional[str] = None) -> None:
        document = self._load()
        machine = document.machines.setdefault(_host_key(host), SnapshotMachine())
        machine.settings = dict(record)
        self._save(document)
