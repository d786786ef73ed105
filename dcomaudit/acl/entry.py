"""
DCOM permission entries in human terms.

An AccessControlEntry is the decoded view of one raw ACE: who, allow or
deny, and which of the local/remote capabilities it grants. Access
entries carry two flags, Launch entries four; the flags of the other
shape are always None (not applicable).
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import List, Optional, Tuple

from dcomaudit.acl.principal import PrincipalId
from dcomaudit.acl.rights import (
    AccessType,
    ElementaryRight,
    PermissionCategory,
    PermissionScope,
    require_supported,
)

ACCESS_FLAGS = ("local_access", "remote_access")
LAUNCH_FLAGS = ("local_launch", "remote_launch", "local_activation", "remote_activation")


@dataclass(eq=False)
class AccessControlEntry:
    """
    One decoded DCOM permission entry.

    Equality compares the display name case-insensitively together with the
    grant/deny type, category, scope and all six flags. The binary principal
    is carried for writes but does not take part in equality, so entries
    read from two machines compare by account name.
    """

    principal: PrincipalId
    user: str
    access_type: AccessType
    category: PermissionCategory
    scope: PermissionScope = PermissionScope.NONE
    local_access: Optional[bool] = None
    remote_access: Optional[bool] = None
    local_launch: Optional[bool] = None
    remote_launch: Optional[bool] = None
    local_activation: Optional[bool] = None
    remote_activation: Optional[bool] = None

    def __post_init__(self) -> None:
        require_supported(self.category)
        if self.category == PermissionCategory.ACCESS:
            live, dead = ACCESS_FLAGS, LAUNCH_FLAGS
        else:
            live, dead = LAUNCH_FLAGS, ACCESS_FLAGS
        for name in dead:
            if getattr(self, name) is not None:
                raise ValueError(
                    f"{name} does not apply to {self.category.value} entries"
                )
        for name in live:
            if getattr(self, name) is None:
                setattr(self, name, False)

    @classmethod
    def for_access(
        cls,
        principal: PrincipalId,
        user: str,
        access_type: AccessType,
        local_access: bool,
        remote_access: bool,
        scope: PermissionScope = PermissionScope.NONE,
    ) -> "AccessControlEntry":
        return cls(
            principal=principal,
            user=user,
            access_type=access_type,
            category=PermissionCategory.ACCESS,
            scope=scope,
            local_access=local_access,
            remote_access=remote_access,
        )

    @classmethod
    def for_launch(
        cls,
        principal: PrincipalId,
        user: str,
        access_type: AccessType,
        local_launch: bool,
        remote_launch: bool,
        local_activation: bool,
        remote_activation: bool,
        scope: PermissionScope = PermissionScope.NONE,
    ) -> "AccessControlEntry":
        return cls(
            principal=principal,
            user=user,
            access_type=access_type,
            category=PermissionCategory.LAUNCH,
            scope=scope,
            local_launch=local_launch,
            remote_launch=remote_launch,
            local_activation=local_activation,
            remote_activation=remote_activation,
        )

    def _flags(self) -> Tuple[Optional[bool], ...]:
        return tuple(getattr(self, name) for name in ACCESS_FLAGS + LAUNCH_FLAGS)

    def _user_key(self) -> str:
        return (self.user or "").casefold()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccessControlEntry):
            return NotImplemented
        return (
            self._user_key() == other._user_key()
            and self.access_type == other.access_type
            and self.category == other.category
            and self.scope == other.scope
            and self._flags() == other._flags()
        )

    def __hash__(self) -> int:
        return hash((self._user_key(), self.access_type, self.category, self.scope))

    def to_rights(self) -> List[ElementaryRight]:
        """Elementary rights implied by the flags, without duplicates.

        Activation rights come first, then Execute paired with the local
        and remote execute bits.
        """
        rights: List[ElementaryRight] = []

        def add(*items: ElementaryRight) -> None:
            for item in items:
                if item not in rights:
                    rights.append(item)

        if self.local_activation:
            add(ElementaryRight.ACTIVATE_LOCAL)
        if self.remote_activation:
            add(ElementaryRight.ACTIVATE_REMOTE)
        if self.local_access or self.local_launch:
            add(ElementaryRight.EXECUTE, ElementaryRight.EXECUTE_LOCAL)
        if self.remote_access or self.remote_launch:
            add(ElementaryRight.EXECUTE, ElementaryRight.EXECUTE_REMOTE)
        return rights

    @property
    def effective_rights(self) -> ElementaryRight:
        mask = ElementaryRight(0)
        for right in self.to_rights():
            mask |= right
        return mask

    def flag_summary(self) -> str:
        names = ACCESS_FLAGS if self.category == PermissionCategory.ACCESS else LAUNCH_FLAGS
        granted = [n.replace("_", " ") for n in names if getattr(self, n)]
        return ", ".join(granted) or "none"

    def __str__(self) -> str:
        return (
            f"{self.user} {self.access_type.value} {self.category.value}"
            f"/{self.scope.value}: {self.flag_summary()}"
        )

    def __repr__(self) -> str:
        values = ", ".join(
            f"{f.name}={getattr(self, f.name)!r}"
            for f in fields(self)
            if getattr(self, f.name) is not None
        )
        return f"AccessControlEntry({values})"
