"""
Descriptor stores.

    BlobStore           abstract raw-descriptor storage
    InMemoryBlobStore   dictionary-backed, for tests
    SnapshotBlobStore   JSON snapshot file
    WindowsRegistryStore  live registry (Windows only, imported lazily)
"""

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
    BlobStore,
    SettingsCatalog,
)
from dcomaudit.store.memory import InMemoryBlobStore
from dcomaudit.store.snapshot import SnapshotBlobStore

__all__ = [
    "ACCESS_DEFAULT",
    "ACCESS_LIMITS",
    "APP_ACCESS",
    "APP_LAUNCH",
    "LAUNCH_DEFAULT",
    "LAUNCH_LIMITS",
    "AclKey",
    "AclState",
    "AclTarget",
    "BlobStore",
    "InMemoryBlobStore",
    "SettingsCatalog",
    "SnapshotBlobStore",
]
