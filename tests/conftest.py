"""
Shared pytest fixtures for dcomaudit tests.

Fixture Organization
--------------------
- **store / engine / machine**: in-memory store with one registered app
- **blob helpers**: build stored descriptors from (principal, type, mask)
- **settings_record**: a complete machine settings catalog record
- **snapshot_path**: a temporary snapshot file location
"""

from pathlib import Path
from typing import Any, Callable, Dict, Sequence, Tuple

import pytest

from dcomaudit.acl.descriptor import RawAce, SecurityDescriptor, serialize_descriptor
from dcomaudit.acl.mutation import AclMutationEngine
from dcomaudit.acl.principal import (
    BUILTIN_ADMINISTRATORS,
    PrincipalId,
    WellKnownPrincipalResolver,
)
from dcomaudit.acl.rights import AccessType
from dcomaudit.machine.scope import MachineDcom
from dcomaudit.store.base import AclTarget
from dcomaudit.store.memory import InMemoryBlobStore

APP_ID = "{11111111-2222-3333-4444-555555555555}"
OTHER_APP_ID = "{AAAAAAAA-BBBB-CCCC-DDDD-EEEEEEEEEEEE}"
ALICE = PrincipalId.parse("S-1-5-21-1004336348-1177238915-682003330-1001")
BOB = PrincipalId.parse("S-1-5-21-1004336348-1177238915-682003330-1002")
PRINCIPAL_NAMES = {str(ALICE): "CONTOSO\\alice", str(BOB): "CONTOSO\\bob"}


def make_descriptor(*aces: Tuple[PrincipalId, AccessType, int]) -> SecurityDescriptor:
    return SecurityDescriptor(
        owner=BUILTIN_ADMINISTRATORS,
        group=BUILTIN_ADMINISTRATORS,
        dacl=[RawAce.for_access(p, t, m) for p, t, m in aces],
    )


def make_blob(*aces: Tuple[PrincipalId, AccessType, int]) -> bytes:
    """Serialized descriptor holding plain allow/deny entries, in the given order."""
    return serialize_descriptor(make_descriptor(*aces))


def raw_blob(aces: Sequence[RawAce]) -> bytes:
    return serialize_descriptor(
        SecurityDescriptor(
            owner=BUILTIN_ADMINISTRATORS, group=BUILTIN_ADMINISTRATORS, dacl=list(aces)
        )
    )


# ============================================================================
# Principals and Blobs
# ============================================================================


@pytest.fixture
def alice() -> PrincipalId:
    return ALICE


@pytest.fixture
def bob() -> PrincipalId:
    return BOB


@pytest.fixture(name="make_blob")
def make_blob_fixture() -> Callable[..., bytes]:
    """make_blob((principal, AccessType, mask), ...) -> descriptor bytes."""
    return make_blob


@pytest.fixture(name="raw_blob")
def raw_blob_fixture() -> Callable[[Sequence[RawAce]], bytes]:
    return raw_blob


# ============================================================================
# Store and Engine Fixtures
# ============================================================================


@pytest.fixture
def resolver() -> WellKnownPrincipalResolver:
    return WellKnownPrincipalResolver(PRINCIPAL_NAMES)


@pytest.fixture
def store() -> InMemoryBlobStore:
    """In-memory store with two applications on the local host and one on SRV02."""
    store = InMemoryBlobStore()
    store.register_application(APP_ID, "Test Server")
    store.register_application(OTHER_APP_ID, "Other Server")
    store.register_application(APP_ID, "Test Server", host="SRV02")
    return store


@pytest.fixture
def engine(store: InMemoryBlobStore, resolver: WellKnownPrincipalResolver) -> AclMutationEngine:
    return AclMutationEngine(store, resolver)


@pytest.fixture
def machine_target() -> AclTarget:
    return AclTarget.machine()


@pytest.fixture
def app_target() -> AclTarget:
    return AclTarget.application(APP_ID)


@pytest.fixture
def other_app_target() -> AclTarget:
    return AclTarget.application(OTHER_APP_ID)


@pytest.fixture
def machine(engine: AclMutationEngine, store: InMemoryBlobStore) -> MachineDcom:
    return MachineDcom(engine, catalog=store)


# ============================================================================
# Settings and Files
# ============================================================================


@pytest.fixture
def settings_record() -> Dict[str, Any]:
    """Catalog record with every mapped field present."""
    return {
        "ApplicationProxyRSN": None,
        "Description": "Test machine",
        "DCOMEnabled": True,
        "CISEnabled": False,
        "DefaultAuthenticationLevel": 2,
        "DefaultImpersonationLevel": 2,
        "DefaultToInternetPorts": False,
        "DSPartitionLookupEnabled": True,
        "InternetPortsListed": False,
        "IsRouter": False,
        "LoadBalancingCLSID": None,
        "LocalPartitionLookupEnabled": False,
        "PartitionsEnabled": False,
        "Ports": "",
        "ResourcePoolingEnabled": True,
        "RPCProxyEnabled": False,
        "SecureReferencesEnabled": False,
        "SecurityTrackingEnabled": True,
        "SRPActivateAsActivatorChecks": True,
        "SRPRunningObjectChecks": True,
        "TransactionTimeout": 60,
    }


@pytest.fixture
def snapshot_path(tmp_path: Path) -> Path:
    return tmp_path / "dcom_snapshot.json"
