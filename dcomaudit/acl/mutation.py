"""
ACL mutation engine.

Every operation is one full round trip against the store: read the
descriptor, change the DACL in memory, canonicalize and write it back,
then re-read and confirm the change is visible. No lock is held across
the round trip; callers serialize work on the same (target, key).

    engine = AclMutationEngine(store, resolver)
    engine.set_rights(target, LAUNCH_DEFAULT, sid,
                      [ElementaryRight.EXECUTE_LOCAL], AccessType.ALLOW)
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from dcomaudit.acl.descriptor import (
    RawAce,
    SecurityDescriptor,
    bootstrap_default,
    decode,
    encode,
    parse_descriptor,
)
from dcomaudit.acl.entry import AccessControlEntry
from dcomaudit.acl.principal import PrincipalId, PrincipalResolver
from dcomaudit.acl.rights import AccessType, ElementaryRight
from dcomaudit.acl.translate import compose, decompose
from dcomaudit.core.exceptions import (
    RemovalNotConfirmedError,
    UnsupportedCategoryError,
    WriteNotConfirmedError,
)
from dcomaudit.core.logging import get_logger
from dcomaudit.store.base import AclKey, AclState, AclTarget, BlobStore, validate_key

logger = get_logger(__name__)


def confirm_ace(
    aces: Iterable[RawAce], principal: PrincipalId, access_type: AccessType, mask: int
) -> bool:
    """True if exactly one entry grants/denies ``mask`` to ``principal``."""
    matches = [
        ace
        for ace in aces
        if ace.principal == principal
        and ace.access_type == access_type
        and ace.mask == mask
    ]
    return len(matches) == 1


def confirm_ace_removal(
    aces: Iterable[RawAce],
    principal: PrincipalId,
    access_type: Optional[AccessType] = None,
) -> bool:
    """True if no entry (of ``access_type``, when given) remains for ``principal``."""
    return not any(
        ace.principal == principal
        and (access_type is None or ace.access_type == access_type)
        for ace in aces
    )


class AclMutationEngine:
    """Adds, removes and resets principals' rights in stored DCOM ACLs."""

    def __init__(
        self,
        store: BlobStore,
        resolver: Optional[PrincipalResolver] = None,
    ) -> None:
        self.store = store
        self.resolver = resolver

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_descriptor(self, target: AclTarget, key: AclKey) -> Optional[SecurityDescriptor]:
        """Parsed stored descriptor, or None when the value is absent or empty."""
        validate_key(target, key)
        blob = self.store.read_blob(target, key)
        if not blob:
            return None
        return parse_descriptor(blob)

    def state(self, target: AclTarget, key: AclKey) -> AclState:
        validate_key(target, key)
        blob = self.store.read_blob(target, key)
        return AclState.CUSTOMIZED if blob else AclState.USES_DEFAULT

    def read_raw(self, target: AclTarget, key: AclKey) -> List[RawAce]:
        """Stored DACL entries; empty when the value is absent."""
        descriptor = self.read_descriptor(target, key)
        if descriptor is None:
            return []
        return list(descriptor.dacl or [])

    def read_entries(
        self, target: AclTarget, key: AclKey
    ) -> Optional[List[AccessControlEntry]]:
        """Decoded entries, or None when the ACL uses the default."""
        descriptor = self.read_descriptor(target, key)
        if descriptor is None:
            return None
        return decompose(
            descriptor.dacl or [], key.category, key.scope, self.resolver, target.host
        )

    def read_entries_for_update(
        self, target: AclTarget, key: AclKey
    ) -> List[AccessControlEntry]:
        """Entries the next write starts from.

        This is the stored list, or the built-in default when nothing is
        stored yet.
        """
        validate_key(target, key)
        descriptor = self._load_for_update(target, key)
        return decompose(
            descriptor.dacl or [], key.category, key.scope, self.resolver, target.host
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _load_for_update(self, target: AclTarget, key: AclKey) -> SecurityDescriptor:
        blob = self.store.read_blob(target, key)
        if not blob:
            logger.debug(
                "No stored descriptor, starting from the built-in default",
                target=str(target),
                key=str(key),
            )
            blob = bootstrap_default()
        return parse_descriptor(blob)

    def _write(
        self, target: AclTarget, key: AclKey, descriptor: SecurityDescriptor, aces: Sequence[RawAce]
    ) -> Optional[List[RawAce]]:
        """Write ``aces`` and re-read them; None if the value is gone afterwards."""
        self.store.write_blob(target, key, encode(aces, template=descriptor))
        blob = self.store.read_blob(target, key)
        if not blob:
            return None
        return decode(blob)

    def set_rights(
        self,
        target: AclTarget,
        key: AclKey,
        principal: PrincipalId,
        rights: Sequence[ElementaryRight],
        access_type: AccessType,
    ) -> int:
        """Replace ``principal``'s entry of ``access_type`` with ``rights``.

        Returns:
            The access mask that was written.

        Raises:
            UnsupportedCategoryError: For an invalid key.
            WriteNotConfirmedError: If the re-read ACL does not hold exactly
                one matching entry.
        """
        validate_key(target, key)
        mask = compose(rights, key.category)
        descriptor = self._load_for_update(target, key)
        aces = [
            ace
            for ace in descriptor.dacl or []
            if not (ace.principal == principal and ace.access_type == access_type)
        ]
        aces.append(RawAce.for_access(principal, access_type, mask))

        written = self._write(target, key, descriptor, aces)
        if written is None:
            raise WriteNotConfirmedError(
                f"{key} value was missing after writing {target}",
                principal=str(principal),
                category=key.category.value,
                scope=key.scope.value,
            )
        if not confirm_ace(written, principal, access_type, mask):
            raise WriteNotConfirmedError(
                f"{access_type.value} entry with mask 0x{mask:x} not found after writing {target}",
                principal=str(principal),
                category=key.category.value,
                scope=key.scope.value,
            )
        logger.info(
            "ACE written",
            target=str(target),
            key=str(key),
            principal=str(principal),
            type=access_type.value,
            mask=f"0x{mask:x}",
        )
        return mask

    def remove_rights(
        self,
        target: AclTarget,
        key: AclKey,
        principal: PrincipalId,
        access_type: Optional[AccessType] = None,
    ) -> None:
        """Remove every entry for ``principal`` (only ``access_type`` entries if given).

        Raises:
            UnsupportedCategoryError: For an invalid key.
            RemovalNotConfirmedError: If entries remain after writing.
        """
        validate_key(target, key)
        descriptor = self._load_for_update(target, key)
        aces = [
            ace
            for ace in descriptor.dacl or []
            if not (
                ace.principal == principal
                and (access_type is None or ace.access_type == access_type)
            )
        ]

        written = self._write(target, key, descriptor, aces)
        if written is None:
            raise RemovalNotConfirmedError(
                f"{key} value was missing after writing {target}",
                principal=str(principal),
                category=key.category.value,
                scope=key.scope.value,
            )
        if not confirm_ace_removal(written, principal, access_type):
            raise RemovalNotConfirmedError(
                f"Entries still present after writing {target}",
                principal=str(principal),
                category=key.category.value,
                scope=key.scope.value,
            )
        logger.info(
            "ACEs removed",
            target=str(target),
            key=str(key),
            principal=str(principal),
            type=access_type.value if access_type else "any",
        )

    def reset_to_default(self, target: AclTarget, key: AclKey) -> None:
        """Delete an application's override so it uses the machine default.

        Raises:
            UnsupportedCategoryError: For machine targets or an invalid key.
        """
        validate_key(target, key)
        if target.is_machine:
            raise UnsupportedCategoryError(
                "Machine-wide permission lists cannot be reset to a default",
                category=key.category.value,
                scope=key.scope.value,
            )
        if not self.store.read_blob(target, key):
            logger.debug("ACL already uses the default", target=str(target), key=str(key))
            return
        self.store.delete_blob(target, key)
        logger.info("ACL reset to default", target=str(target), key=str(key))
