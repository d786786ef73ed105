"""
Rights vocabulary for DCOM launch and access permissions.

The elementary rights are the bits the COM runtime checks in the access
mask of a DCOM permission ACE. Their values are fixed by the OS.
"""

from enum import Enum, IntFlag

from dcomaudit.core.exceptions import UnsupportedCategoryError


class ElementaryRight(IntFlag):
    """COM_RIGHTS_* bits carried in a DCOM ACE mask."""

    EXECUTE = 1
    EXECUTE_LOCAL = 2
    EXECUTE_REMOTE = 4
    ACTIVATE_LOCAL = 8
    ACTIVATE_REMOTE = 16


ALL_RIGHTS = (
    ElementaryRight.EXECUTE
    | ElementaryRight.EXECUTE_LOCAL
    | ElementaryRight.EXECUTE_REMOTE
    | ElementaryRight.ACTIVATE_LOCAL
    | ElementaryRight.ACTIVATE_REMOTE
)


class PermissionCategory(str, Enum):
    """Which DCOM permission list an entry belongs to."""

    ACCESS = "access"  # call-class
    LAUNCH = "launch"  # activation-class
    CONFIG = "config"  # no per-entry semantics


class PermissionScope(str, Enum):
    """Where a permission list sits in the machine/application hierarchy."""

    NONE = "none"
    DEFAULT = "default"
    LIMITS = "limits"


class AccessType(str, Enum):
    """Grant or deny."""

    ALLOW = "allow"
    DENY = "deny"


SUPPORTED_CATEGORIES = (PermissionCategory.ACCESS, PermissionCategory.LAUNCH)


def require_supported(category: PermissionCategory) -> PermissionCategory:
    """Fail fast for categories that have no ACE semantics.

    Raises:
        UnsupportedCategoryError: For the Config category.
    """
    if category not in SUPPORTED_CATEGORIES:
        raise UnsupportedCategoryError(
            f"ACE operations are not supported for the {category.value} category",
            category=category.value,
        )
    return category
