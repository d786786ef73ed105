"""
Translation between raw ACE masks and AccessControlEntry flags.

decompose() turns stored (principal, type, mask) tuples into entries with
local/remote flags; compose() builds the mask written for a list of
requested elementary rights.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from dcomaudit.acl.descriptor import RawAce
from dcomaudit.acl.entry import AccessControlEntry
from dcomaudit.acl.principal import PrincipalResolver, resolve_display_name
from dcomaudit.acl.rights import (
    ElementaryRight,
    PermissionCategory,
    PermissionScope,
    require_supported,
)
from dcomaudit.core.logging import get_logger

logger = get_logger(__name__)

_EXECUTE = ElementaryRight.EXECUTE
_EXECUTE_LOCAL = ElementaryRight.EXECUTE_LOCAL
_EXECUTE_REMOTE = ElementaryRight.EXECUTE_REMOTE
_ACTIVATE_LOCAL = ElementaryRight.ACTIVATE_LOCAL
_ACTIVATE_REMOTE = ElementaryRight.ACTIVATE_REMOTE


def _has(mask: int, right: ElementaryRight) -> bool:
    return bool(mask & right)


def _execute_only(mask: int, *excluded: ElementaryRight) -> bool:
    """Execute is set and none of ``excluded`` are."""
    return _has(mask, _EXECUTE) and not any(_has(mask, r) for r in excluded)


def derive_launch_flags(mask: int) -> Tuple[bool, bool, bool, bool]:
    """(local_launch, remote_launch, local_activation, remote_activation).

    A bare Execute bit (legacy ACLs) implies whatever the specific bits
    do not rule out.
    """
    local_launch = _has(mask, _EXECUTE_LOCAL) or _execute_only(
        mask, _EXECUTE_REMOTE, _ACTIVATE_REMOTE, _ACTIVATE_LOCAL
    )
    remote_launch = _has(mask, _EXECUTE_REMOTE) or _execute_only(
        mask, _EXECUTE_LOCAL, _ACTIVATE_REMOTE, _ACTIVATE_LOCAL
    )
    local_activation = _has(mask, _ACTIVATE_LOCAL) or _execute_only(
        mask, _EXECUTE_LOCAL, _EXECUTE_REMOTE, _ACTIVATE_REMOTE
    )
    remote_activation = _has(mask, _ACTIVATE_REMOTE) or _execute_only(
        mask, _EXECUTE_LOCAL, _EXECUTE_REMOTE, _ACTIVATE_LOCAL
    )
    return local_launch, remote_launch, local_activation, remote_activation


def derive_access_flags(mask: int) -> Tuple[bool, bool]:
    """(local_access, remote_access)."""
    local_access = _has(mask, _EXECUTE_LOCAL) or _execute_only(mask, _EXECUTE_REMOTE)
    remote_access = _has(mask, _EXECUTE_REMOTE) or _execute_only(mask, _EXECUTE_LOCAL)
    return local_access, remote_access


def decompose(
    raw_aces: Iterable[RawAce],
    category: PermissionCategory,
    scope: PermissionScope = PermissionScope.NONE,
    resolver: Optional[PrincipalResolver] = None,
    host: Optional[str] = None,
) -> List[AccessControlEntry]:
    """Build entries for every plain allow/deny ACE.

    Principal names come from ``resolver`` when it can provide them and
    fall back to the SID string otherwise. ACE types other than plain
    allow/deny carry no DCOM meaning and are skipped.

    Raises:
        UnsupportedCategoryError: For the Config category.
    """
    require_supported(category)
    entries = []
    for raw in raw_aces:
        access_type = raw.access_type
        if access_type is None or raw.principal is None:
            logger.warning(
                "Skipping ACE with no DCOM meaning",
                ace_type=int(raw.ace_type),
                category=category.value,
            )
            continue
        user = resolve_display_name(resolver, raw.principal, host)
        if category == PermissionCategory.LAUNCH:
            local_launch, remote_launch, local_act, remote_act = derive_launch_flags(
                raw.mask
            )
            entry = AccessControlEntry.for_launch(
                raw.principal,
                user,
                access_type,
                local_launch,
                remote_launch,
                local_act,
                remote_act,
                scope=scope,
            )
        else:
            local_access, remote_access = derive_access_flags(raw.mask)
            entry = AccessControlEntry.for_access(
                raw.principal, user, access_type, local_access, remote_access, scope=scope
            )
        entries.append(entry)
    return entries


def filter_rights(
    rights: Sequence[ElementaryRight], category: PermissionCategory
) -> List[ElementaryRight]:
    """Drop rights that are never written for ``category``.

    For Launch requests that include either activation right, both
    activation rights are removed from the request.
    """
    requested = list(rights)
    if category == PermissionCategory.LAUNCH and (
        _ACTIVATE_LOCAL in requested or _ACTIVATE_REMOTE in requested
    ):
        # TODO: confirm with the DCOM owners whether activation rights should
        # really be dropped here; granting them through set_rights is impossible.
        requested = [r for r in requested if r not in (_ACTIVATE_LOCAL, _ACTIVATE_REMOTE)]
    return requested


def compose(rights: Sequence[ElementaryRight], category: PermissionCategory) -> int:
    """Access mask for ``rights``; Execute is always included.

    Raises:
        UnsupportedCategoryError: For the Config category.
    """
    require_supported(category)
    mask = int(_EXECUTE)
    for right in filter_rights(rights, category):
        mask |= int(right)
    return mask
