"""In-memory store, used by tests and the ``memory`` backend."""

from typing import Any, Dict, List, Optional, Tuple

from dcomaudit.core.exceptions import AclNotFoundError, AclUnauthorizedError
from dcomaudit.store.base import (
    AclKey,
    AclTarget,
    BlobStore,
    SettingsCatalog,
    normalize_app_id,
    normalize_host,
    registry_value_name,
)

_BlobKey = Tuple[Optional[str], Optional[str], str]


class InMemoryBlobStore(BlobStore, SettingsCatalog):
    """
    Dictionary-backed store.

    Several hosts can live in one instance, which makes machine-to-machine
    copies easy to exercise. ``read_only`` makes every write raise
    AclUnauthorizedError.
    """

    def __init__(self, read_only: bool = False) -> None:
        self.read_only = read_only
        self._blobs: Dict[_BlobKey, bytes] = {}
        self._apps: Dict[Optional[str], Dict[str, str]] = {}
        self._settings: Dict[Optional[str], Dict[str, Any]] = {}
        self._protocols: Dict[Optional[str], List[Dict[str, Any]]] = {}
        self._app_settings: Dict[Tuple[Optional[str], str], Dict[str, Any]] = {}
        self._principals: Dict[str, str] = {}
        self.writes = 0

    def register_application(
        self,
        app_id: str,
        name: str = "",
        host: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> AclTarget:
        """Add an application registration and return its target."""
        target = AclTarget.application(app_id, host)
        self._apps.setdefault(target.host, {})[target.app_id] = name
        self._app_settings[(target.host, target.app_id)] = dict(settings or {})
        return target

    def set_protocols(
        self, records: List[Dict[str, Any]], host: Optional[str] = None
    ) -> None:
        self._protocols[normalize_host(host)] = [dict(r) for r in records]

    def add_principal_name(self, sid: str, name: str) -> None:
        self._principals[sid] = name

    def principal_names(self) -> Dict[str, str]:
        return dict(self._principals)

    def _key(self, target: AclTarget, key: AclKey) -> _BlobKey:
        name = registry_value_name(target, key)
        if not target.is_machine and not self.application_exists(target):
            raise AclNotFoundError(
                f"Application {target.app_id} is not registered on {target.host or 'local'}",
                category=key.category.value,
                scope=key.scope.value,
            )
        return (target.host, target.app_id, name)

    def _check_writable(self, target: AclTarget, key: AclKey) -> None:
        if self.read_only:
            raise AclUnauthorizedError(
                f"Store is read-only; cannot modify {target}",
                category=key.category.value,
                scope=key.scope.value,
            )

    def read_blob(self, target: AclTarget, key: AclKey) -> Optional[bytes]:
        return self._blobs.get(self._key(target, key))

    def write_blob(self, target: AclTarget, key: AclKey, data: bytes) -> None:
        blob_key = self._key(target, key)
        self._check_writable(target, key)
        self._blobs[blob_key] = bytes(data)
        self.writes += 1

    def delete_blob(self, target: AclTarget, key: AclKey) -> None:
        blob_key = self._key(target, key)
        self._check_writable(target, key)
        self._blobs.pop(blob_key, None)

    def list_applications(self, host: Optional[str] = None) -> Dict[str, str]:
        return dict(self._apps.get(normalize_host(host), {}))

    def application_exists(self, target: AclTarget) -> bool:
        return normalize_app_id(target.app_id or "") in self._apps.get(target.host, {})

    def read_application_settings(self, target: AclTarget) -> Dict[str, Any]:
        if not self.application_exists(target):
            raise AclNotFoundError(
                f"Application {target.app_id} is not registered on {target.host or 'local'}"
            )
        return dict(self._app_settings.get((target.host, target.app_id or ""), {}))

    def read_protocols(self, host: Optional[str] = None) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._protocols.get(normalize_host(host), [])]

    def read_settings(self, host: Optional[str] = None) -> Dict[str, Any]:
        host = normalize_host(host)
        if host not in self._settings:
            raise AclNotFoundError(f"No machine settings recorded for {host or 'local'}")
        return dict(self._settings[host])

    def write_settings(self, record: Dict[str, Any], host: Optional[str] = None) -> None:
        if self.read_only:
            raise AclUnauthorizedError("Store is read-only; cannot modify machine settings")
        self._settings[normalize_host(host)] = dict(record)
