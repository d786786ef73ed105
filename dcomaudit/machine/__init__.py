"""Machine-wide and per-application DCOM permission owners."""

from dcomaudit.machine.scope import DcomApplication, MachineDcom
from dcomaudit.machine.settings import (
    SETTINGS_FIELD_MAP,
    AuthenticationLevel,
    ImpersonationLevel,
    MachineSettings,
)

__all__ = [
    "SETTINGS_FIELD_MAP",
    "AuthenticationLevel",
    "DcomApplication",
    "ImpersonationLevel",
    "MachineDcom",
    "MachineSettings",
]
