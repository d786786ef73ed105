"""
Machine-wide DCOM settings, RPC protocols and per-application settings.

MachineSettings is a plain value object: nothing is written until it is
handed to MachineDcom.commit(). SETTINGS_FIELD_MAP lists, one pair per
field, which catalog field populates which attribute; PROTOCOL_FIELD_MAP
and APPLICATION_FIELD_MAP do the same for protocol and application records.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from dcomaudit.core.exceptions import ConfigValidationError

LAUNCHING_USER = "Launching User"


def _text_key(value: Optional[str]) -> str:
    """Case-insensitive comparison key; None and "" are the same."""
    return (value or "").casefold()


class AuthenticationLevel(IntEnum):
    """RPC_C_AUTHN_LEVEL_*"""

    DEFAULT = 0
    NONE = 1
    CONNECT = 2
    CALL = 3
    PACKET = 4
    PACKET_INTEGRITY = 5
    PACKET_PRIVACY = 6


class ImpersonationLevel(IntEnum):
    """RPC_C_IMP_LEVEL_*"""

    ANONYMOUS = 1
    IDENTIFY = 2
    IMPERSONATE = 3
    DELEGATE = 4


class ServiceStartup(IntEnum):
    """Start value of a Windows service key."""

    BOOT = 0
    SYSTEM = 1
    AUTOMATIC = 2
    MANUAL = 3
    DISABLED = 4


class MachineSettings(BaseModel):
    """Machine-wide RPC/DCOM settings from the COM+ catalog."""

    application_proxy_rsn: Optional[str] = None
    description: str = ""
    dcom_enabled: bool = True
    cis_enabled: bool = False
    default_authentication_level: AuthenticationLevel = AuthenticationLevel.CONNECT
    default_impersonation_level: ImpersonationLevel = ImpersonationLevel.IDENTIFY
    default_to_internet_ports: bool = False
    ds_partition_lookup_enabled: bool = True
    internet_ports_listed: bool = False
    is_router: bool = False
    load_balancing_clsid: Optional[str] = None
    local_partition_lookup_enabled: bool = False
    partitions_enabled: bool = False
    ports: str = ""
    resource_pooling_enabled: bool = True
    rpc_proxy_enabled: bool = False
    secure_references_enabled: bool = False
    security_tracking_enabled: bool = True
    srp_activate_as_activator_checks: bool = True
    srp_running_object_checks: bool = True
    transaction_timeout: int = Field(default=60, ge=0)

    model_config = {"validate_assignment": True}


SETTINGS_FIELD_MAP: Tuple[Tuple[str, str], ...] = (
    ("ApplicationProxyRSN", "application_proxy_rsn"),
    ("Description", "description"),
    ("DCOMEnabled", "dcom_enabled"),
    ("CISEnabled", "cis_enabled"),
    ("DefaultAuthenticationLevel", "default_authentication_level"),
    ("DefaultImpersonationLevel", "default_impersonation_level"),
    ("DefaultToInternetPorts", "default_to_internet_ports"),
    ("DSPartitionLookupEnabled", "ds_partition_lookup_enabled"),
    ("InternetPortsListed", "internet_ports_listed"),
    ("IsRouter", "is_router"),
    ("LoadBalancingCLSID", "load_balancing_clsid"),
    ("LocalPartitionLookupEnabled", "local_partition_lookup_enabled"),
    ("PartitionsEnabled", "partitions_enabled"),
    ("Ports", "ports"),
    ("ResourcePoolingEnabled", "resource_pooling_enabled"),
    ("RPCProxyEnabled", "rpc_proxy_enabled"),
    ("SecureReferencesEnabled", "secure_references_enabled"),
    ("SecurityTrackingEnabled", "security_tracking_enabled"),
    ("SRPActivateAsActivatorChecks", "srp_activate_as_activator_checks"),
    ("SRPRunningObjectChecks", "srp_running_object_checks"),
    ("TransactionTimeout", "transaction_timeout"),
)


def settings_from_record(record: Dict[str, Any]) -> MachineSettings:
    """Build settings from a catalog record.

    Raises:
        ConfigValidationError: If mapped fields are missing or invalid.
    """
    missing: List[str] = [name for name, _ in SETTINGS_FIELD_MAP if name not in record]
    if missing:
        raise ConfigValidationError(
            f"Machine settings record is missing: {', '.join(missing)}",
            field=missing[0],
        )
    values = {attr: record[name] for name, attr in SETTINGS_FIELD_MAP}
    try:
        return MachineSettings(**values)
    except ValidationError as e:
        raise ConfigValidationError(f"Invalid machine settings record: {e}") from e


def settings_to_record(settings: MachineSettings) -> Dict[str, Any]:
    """Catalog record for ``settings``; enum levels are stored as ints."""
    record: Dict[str, Any] = {}
    for name, attr in SETTINGS_FIELD_MAP:
        value = getattr(settings, attr)
        record[name] = int(value) if isinstance(value, IntEnum) else value
    return record


# ============================================================================
# RPC protocols
# ============================================================================


class RpcProtocol(BaseModel):
    """
    One entry of the machine's DCOM protocol list.

    Protocols are tried in ascending ``order``. Name and protocol code
    compare case-insensitively.
    """

    name: str = ""
    order: int = 0
    protocol_code: str = ""

    model_config = {"frozen": True}

    def _key(self) -> Tuple[str, int, str]:
        return (_text_key(self.name), self.order, _text_key(self.protocol_code))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RpcProtocol):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())


PROTOCOL_FIELD_MAP: Tuple[Tuple[str, str], ...] = (
    ("Name", "name"),
    ("Order", "order"),
    ("ProtocolCode", "protocol_code"),
)


def protocols_from_records(records: List[Dict[str, Any]]) -> List[RpcProtocol]:
    """Protocols sorted by ``order``.

    Raises:
        ConfigValidationError: If a record misses a mapped field or is invalid.
    """
    protocols = []
    for record in records:
        missing = [name for name, _ in PROTOCOL_FIELD_MAP if name not in record]
        if missing:
            raise ConfigValidationError(
                f"Protocol record is missing: {', '.join(missing)}", field=missing[0]
            )
        try:
            protocols.append(
                RpcProtocol(**{attr: record[name] for name, attr in PROTOCOL_FIELD_MAP})
            )
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid protocol record: {e}") from e
    return sorted(protocols, key=lambda p: p.order)


# ============================================================================
# Per-application settings
# ============================================================================


class ApplicationSettings(BaseModel):
    """Identity and authentication settings of one DCOM application.

    ``service_name`` and ``service_startup`` are None unless the application
    runs as a Windows service. ``run_as`` is the service logon account, the
    configured RunAs identity, or "Launching User".
    """

    authentication_level: AuthenticationLevel = AuthenticationLevel.DEFAULT
    run_as: Optional[str] = None
    service_name: Optional[str] = None
    service_startup: Optional[ServiceStartup] = None

    model_config = {"frozen": True}

    @property
    def runs_as_service(self) -> bool:
        return bool(self.service_name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ApplicationSettings):
            return NotImplemented
        return (
            self.authentication_level == other.authentication_level
            and _text_key(self.run_as) == _text_key(other.run_as)
            and _text_key(self.service_name) == _text_key(other.service_name)
            and self.service_startup == other.service_startup
        )

    def __hash__(self) -> int:
        return hash((self.authentication_level, _text_key(self.run_as)))


# Every field is optional in the registry; absent ones keep the model default.
APPLICATION_FIELD_MAP: Tuple[Tuple[str, str], ...] = (
    ("AuthenticationLevel", "authentication_level"),
    ("RunAs", "run_as"),
    ("LocalService", "service_name"),
    ("ServiceStartup", "service_startup"),
)


def application_settings_from_record(record: Dict[str, Any]) -> ApplicationSettings:
    """Build application settings from a store record.

    An application that is not a service and has no RunAs value runs as the
    launching user.

    Raises:
        ConfigValidationError: If a present field is invalid.
    """
    values = {
        attr: record[name]
        for name, attr in APPLICATION_FIELD_MAP
        if record.get(name) is not None
    }
    if not values.get("service_name") and not values.get("run_as"):
        values["run_as"] = LAUNCHING_USER
    try:
        return ApplicationSettings(**values)
    except ValidationError as e:
        raise ConfigValidationError(f"Invalid application settings record: {e}") from e
