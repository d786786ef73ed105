"""
ACL comparison and synchronization.

ACLs are compared as multisets of AccessControlEntry values: an entry
listed twice must be matched twice. Comparisons never touch the store;
copy_acl() applies the differences one entry at a time through the
destination's mutation methods.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol, Sequence

from dcomaudit.acl.entry import AccessControlEntry
from dcomaudit.acl.principal import PrincipalId
from dcomaudit.acl.rights import AccessType, ElementaryRight
from dcomaudit.acl.translate import filter_rights
from dcomaudit.core.exceptions import (
    AggregateFailureError,
    CopyNotConfirmedError,
    DcomAuditError,
    UnwritableEntryError,
)
from dcomaudit.core.logging import get_logger
from dcomaudit.store.base import AclKey

logger = get_logger(__name__)


class AclOwner(Protocol):
    """Something holding DCOM ACLs: the machine settings or one application."""

    def describe(self) -> str:
        ...

    def uses_default(self, key: AclKey) -> bool:
        ...

    def entries(self, key: AclKey) -> List[AccessControlEntry]:
        ...

    def entries_for_update(self, key: AclKey) -> List[AccessControlEntry]:
        ...

    def set_rights(
        self,
        key: AclKey,
        principal: PrincipalId,
        rights: Sequence[ElementaryRight],
        access_type: AccessType,
    ) -> None:
        ...

    def remove_rights(
        self,
        key: AclKey,
        principal: PrincipalId,
        access_type: Optional[AccessType] = None,
    ) -> None:
        ...

    def use_default_permissions(self, key: AclKey) -> None:
        ...

    def refresh(self) -> None:
        ...


def acl_equals(
    a: Optional[Sequence[AccessControlEntry]],
    b: Optional[Sequence[AccessControlEntry]],
) -> bool:
    """Multiset equality; None and empty are the same."""
    a = a or []
    b = b or []
    if not a and not b:
        return True
    return Counter(a) == Counter(b)


def mismatched(
    a: Optional[Sequence[AccessControlEntry]],
    b: Optional[Sequence[AccessControlEntry]],
) -> List[AccessControlEntry]:
    """Entries of ``a`` not accounted for by ``b``, in ``a``'s order.

    mismatched(b, a) gives the entries ``a`` is missing.
    """
    remaining = Counter(b or [])
    result = []
    for entry in a or []:
        if remaining[entry] > 0:
            remaining[entry] -= 1
        else:
            result.append(entry)
    return result


@dataclass
class SyncReport:
    """What copy_acl() did to one destination ACL."""

    source: str
    destination: str
    key: AclKey
    reset_to_default: bool = False
    added: List[AccessControlEntry] = field(default_factory=list)
    removed: List[AccessControlEntry] = field(default_factory=list)
    failures: List[DcomAuditError] = field(default_factory=list)
    remaining: List[AccessControlEntry] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def in_sync(self) -> bool:
        return not self.remaining


def _record_failure(report: SyncReport, error: DcomAuditError, label: str) -> None:
    logger.warning(
        "ACL copy step failed",
        destination=report.destination,
        key=str(report.key),
        principal=label,
        error=error.error_code,
    )
    report.failures.append(error)


def _attempt(
    report: SyncReport, action: Callable[..., None], label: str, *args: Any
) -> bool:
    try:
        action(*args)
        return True
    except DcomAuditError as e:
        _record_failure(report, e, label)
        return False


def _write_entry(
    report: SyncReport, destination: AclOwner, key: AclKey, entry: AccessControlEntry
) -> bool:
    """Write ``entry`` on ``destination``, refusing entries that would widen.

    A written mask always carries Execute, which alone grants every flag, so
    an entry whose writable rights are empty is reported instead of written.
    """
    rights = entry.to_rights()
    if not filter_rights(rights, key.category):
        _record_failure(
            report,
            UnwritableEntryError(
                f"Refusing to copy '{entry}' to {report.destination}",
                principal=entry.user,
                category=key.category.value,
                scope=key.scope.value,
            ),
            entry.user,
        )
        return False
    return _attempt(
        report,
        destination.set_rights,
        entry.user,
        key,
        entry.principal,
        rights,
        entry.access_type,
    )


def _verify(
    report: SyncReport,
    src: Sequence[AccessControlEntry],
    after: Sequence[AccessControlEntry],
) -> None:
    """Fail every entry still different after an otherwise clean overwrite."""
    key = report.key
    leftovers = [(e, "missing from") for e in mismatched(src, after)]
    leftovers += [(e, "left over in") for e in mismatched(after, src)]
    for entry, where in leftovers:
        _record_failure(
            report,
            CopyNotConfirmedError(
                f"'{entry}' is still {where} {report.destination}",
                principal=entry.user,
                category=key.category.value,
                scope=key.scope.value,
            ),
            entry.user,
        )


def copy_acl(
    source: AclOwner,
    destination: AclOwner,
    key: AclKey,
    overwrite: bool = False,
    stop_on_error: bool = False,
    destination_key: Optional[AclKey] = None,
) -> SyncReport:
    """Make ``destination``'s ACL match ``source``'s.

    If the source uses the default, the destination is switched to the
    default too. Otherwise every source entry the destination lacks is
    written; with ``overwrite`` destination entries the source lacks are
    then removed. An entry that only changed flags is rewritten in place,
    since writing replaces the principal's entry of the same type.

    A destination with no stored list is compared against the built-in
    default its first write starts from, not against the list it currently
    reports. With ``overwrite``, every entry still different once all steps
    succeeded is reported as a CopyNotConfirmedError.

    Raises:
        AggregateFailureError: If any step failed; ``report`` is attached.
    """
    dest_key = destination_key or key
    report = SyncReport(source.describe(), destination.describe(), dest_key)

    if source.uses_default(key):
        if _attempt(report, destination.use_default_permissions, "(all)", dest_key):
            report.reset_to_default = True
        destination.refresh()
        return _finish(report)

    src = source.entries(key)
    current = destination.entries(dest_key)
    surplus = mismatched(current, src)
    if not mismatched(src, current) and not (overwrite and surplus):
        report.remaining = surplus
        return _finish(report)

    dst = destination.entries_for_update(dest_key)
    # (principal, type) pairs already written, removed or refused
    handled = set()

    def stopped() -> bool:
        return bool(report.failures) and stop_on_error

    for entry in mismatched(src, dst):
        if stopped():
            break
        pair = (entry.principal, entry.access_type)
        handled.add(pair)
        if _write_entry(report, destination, dest_key, entry):
            report.added.append(entry)

    if overwrite:
        wanted = {(e.principal, e.access_type): e for e in src}
        for entry in mismatched(dst, src):
            if stopped():
                break
            pair = (entry.principal, entry.access_type)
            if pair in handled:
                continue
            handled.add(pair)
            keep = wanted.get(pair)
            if keep is not None:
                # surplus duplicates of a kept entry collapse into one rewrite
                ok = _write_entry(report, destination, dest_key, keep)
            else:
                ok = _attempt(
                    report,
                    destination.remove_rights,
                    entry.user,
                    dest_key,
                    entry.principal,
                    entry.access_type,
                )
            if ok:
                report.removed.append(entry)

    destination.refresh()
    after = destination.entries(dest_key)
    report.remaining = mismatched(src, after) + mismatched(after, src)
    if overwrite and not report.failures:
        _verify(report, src, after)
    return _finish(report)


def _finish(report: SyncReport) -> SyncReport:
    if report.failures:
        raise AggregateFailureError(
            f"Copying {report.key} from {report.source} to {report.destination}",
            report.failures,
            report=report,
        )
    logger.info(
        "ACL copied",
        source=report.source,
        destination=report.destination,
        key=str(report.key),
        added=len(report.added),
        removed=len(report.removed),
        reset=report.reset_to_default,
    )
    return report
