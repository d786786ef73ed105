"""
Security identifiers and display-name resolution.

PrincipalId is the binary SID. Identity comparisons always use it;
display names exist only for presentation.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol, Tuple

from dcomaudit.core.exceptions import MalformedDescriptorError
from dcomaudit.core.logging import get_logger

logger = get_logger(__name__)

SID_REVISION = 1
MAX_SUB_AUTHORITIES = 15
SID_HEADER_SIZE = 8


@dataclass(frozen=True)
class PrincipalId:
    """
    A Windows security identifier.

    Attributes:
        revision: SID revision, always 1 in practice
        authority: 48-bit identifier authority
        sub_authorities: Relative identifiers, in order
    """

    revision: int
    authority: int
    sub_authorities: Tuple[int, ...]

    def __post_init__(self) -> None:
        if len(self.sub_authorities) > MAX_SUB_AUTHORITIES:
            raise ValueError(
                f"A SID holds at most {MAX_SUB_AUTHORITIES} sub-authorities"
            )
        if not 0 <= self.authority < 1 << 48:
            raise ValueError("SID identifier authority must fit in 48 bits")

    @property
    def size(self) -> int:
        """Encoded length in bytes."""
        return SID_HEADER_SIZE + 4 * len(self.sub_authorities)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "PrincipalId":
        """Parse a binary SID starting at ``offset``.

        Raises:
            MalformedDescriptorError: If the buffer is too short.
        """
        if offset < 0 or len(data) < offset + SID_HEADER_SIZE:
            raise MalformedDescriptorError(
                f"SID header at offset {offset} runs past the end of the buffer"
            )
        revision, count = data[offset], data[offset + 1]
        if count > MAX_SUB_AUTHORITIES:
            raise MalformedDescriptorError(
                f"SID at offset {offset} claims {count} sub-authorities"
            )
        end = offset + SID_HEADER_SIZE + 4 * count
        if len(data) < end:
            raise MalformedDescriptorError(
                f"SID at offset {offset} runs past the end of the buffer"
            )
        # the authority is the only big-endian field in a SID
        authority = int.from_bytes(data[offset + 2 : offset + 8], "big")
        subs = struct.unpack_from(f"<{count}I", data, offset + SID_HEADER_SIZE)
        return cls(revision, authority, tuple(subs))

    def to_bytes(self) -> bytes:
        return (
            bytes((self.revision, len(self.sub_authorities)))
            + self.authority.to_bytes(6, "big")
            + struct.pack(f"<{len(self.sub_authorities)}I", *self.sub_authorities)
        )

    @classmethod
    def parse(cls, text: str) -> "PrincipalId":
        """Parse the ``S-1-5-32-544`` string form.

        Raises:
            ValueError: If the text is not a SID string.
        """
        parts = text.strip().upper().split("-")
        if len(parts) < 3 or parts[0] != "S":
            raise ValueError(f"Not a SID string: {text!r}")
        try:
            revision = int(parts[1])
            authority = int(parts[2], 0) if parts[2].startswith("0X") else int(parts[2])
            subs = tuple(int(p) for p in parts[3:])
        except ValueError as e:
            raise ValueError(f"Not a SID string: {text!r}") from e
        if any(not 0 <= s <= 0xFFFFFFFF for s in subs):
            raise ValueError(f"SID sub-authority out of range: {text!r}")
        return cls(revision, authority, subs)

    def __str__(self) -> str:
        if self.authority >= 1 << 32:
            authority = f"0x{self.authority:012X}"
        else:
            authority = str(self.authority)
        tail = "".join(f"-{s}" for s in self.sub_authorities)
        return f"S-{self.revision}-{authority}{tail}"


EVERYONE = PrincipalId.parse("S-1-1-0")
CREATOR_OWNER = PrincipalId.parse("S-1-3-0")
NETWORK = PrincipalId.parse("S-1-5-2")
INTERACTIVE = PrincipalId.parse("S-1-5-4")
ANONYMOUS_LOGON = PrincipalId.parse("S-1-5-7")
PRINCIPAL_SELF = PrincipalId.parse("S-1-5-10")
AUTHENTICATED_USERS = PrincipalId.parse("S-1-5-11")
LOCAL_SYSTEM = PrincipalId.parse("S-1-5-18")
LOCAL_SERVICE = PrincipalId.parse("S-1-5-19")
NETWORK_SERVICE = PrincipalId.parse("S-1-5-20")
BUILTIN_ADMINISTRATORS = PrincipalId.parse("S-1-5-32-544")
BUILTIN_USERS = PrincipalId.parse("S-1-5-32-545")
BUILTIN_GUESTS = PrincipalId.parse("S-1-5-32-546")
PERFORMANCE_LOG_USERS = PrincipalId.parse("S-1-5-32-559")
DISTRIBUTED_COM_USERS = PrincipalId.parse("S-1-5-32-562")

WELL_KNOWN_NAMES: Dict[PrincipalId, str] = {
    EVERYONE: "Everyone",
    CREATOR_OWNER: "CREATOR OWNER",
    NETWORK: "NT AUTHORITY\\NETWORK",
    INTERACTIVE: "NT AUTHORITY\\INTERACTIVE",
    ANONYMOUS_LOGON: "NT AUTHORITY\\ANONYMOUS LOGON",
    PRINCIPAL_SELF: "NT AUTHORITY\\SELF",
    AUTHENTICATED_USERS: "NT AUTHORITY\\Authenticated Users",
    LOCAL_SYSTEM: "NT AUTHORITY\\SYSTEM",
    LOCAL_SERVICE: "NT AUTHORITY\\LOCAL SERVICE",
    NETWORK_SERVICE: "NT AUTHORITY\\NETWORK SERVICE",
    BUILTIN_ADMINISTRATORS: "BUILTIN\\Administrators",
    BUILTIN_USERS: "BUILTIN\\Users",
    BUILTIN_GUESTS: "BUILTIN\\Guests",
    PERFORMANCE_LOG_USERS: "BUILTIN\\Performance Log Users",
    DISTRIBUTED_COM_USERS: "BUILTIN\\Distributed COM Users",
}


class PrincipalResolver(Protocol):
    """Translates a SID into an account name for presentation."""

    def resolve_name(self, principal: PrincipalId, host: Optional[str]) -> str:
        ...


class WellKnownPrincipalResolver:
    """
    Offline resolver backed by the well-known SID table.

    Extra names (for domain or local accounts) can be supplied keyed by SID
    string; those take precedence over the built-in table. Unknown SIDs
    raise LookupError, which resolve_display_name() turns into the SID
    string.
    """

    def __init__(self, names: Optional[Mapping[str, str]] = None) -> None:
        self._names: Dict[PrincipalId, str] = dict(WELL_KNOWN_NAMES)
        for sid_text, name in (names or {}).items():
            self._names[PrincipalId.parse(sid_text)] = name

    def resolve_name(self, principal: PrincipalId, host: Optional[str]) -> str:
        try:
            return self._names[principal]
        except KeyError:
            raise LookupError(f"No account name known for {principal}") from None

    def lookup_principal(self, name: str) -> PrincipalId:
        """Reverse lookup by account name (case-insensitive) or SID string.

        Raises:
            LookupError: If nothing matches.
        """
        if name.upper().startswith("S-"):
            try:
                return PrincipalId.parse(name)
            except ValueError as e:
                raise LookupError(str(e)) from e
        wanted = name.casefold()
        for sid, known in self._names.items():
            if known.casefold() == wanted or known.split("\\")[-1].casefold() == wanted:
                return sid
        raise LookupError(f"Unknown account name: {name}")


def resolve_display_name(
    resolver: Optional[PrincipalResolver],
    principal: PrincipalId,
    host: Optional[str] = None,
) -> str:
    """Best-effort display name; falls back to the SID string on any failure."""
    if resolver is None:
        return str(principal)
    try:
        name = resolver.resolve_name(principal, host)
    except Exception as e:  # resolution is presentation only
        logger.debug("Principal name lookup failed", principal=str(principal), error=e)
        return str(principal)
    return name or str(principal)
