"""
Self-relative security descriptor codec.

DCOM stores every launch/access permission list as a binary
SECURITY_DESCRIPTOR in self-relative form. The real COM runtime reads these
bytes back, so encoding must match the OS layout exactly:

    SECURITY_DESCRIPTOR (20 bytes)
        Revision  u8   (1)
        Sbz1      u8
        Control   u16  (SE_SELF_RELATIVE always set)
        OffsetOwner, OffsetGroup, OffsetSacl, OffsetDacl  u32 each

    ACL header (8 bytes)
        AclRevision u8, Sbz1 u8, AclSize u16, AceCount u16, Sbz2 u16

    ACE header (4 bytes)
        AceType u8, AceFlags u8, AceSize u16
    followed by mask u32 and a SID, with object ACEs carrying object flags
    and up to two GUIDs between the mask and the SID.

    SID
        Revision u8, SubAuthorityCount u8, IdentifierAuthority 6 bytes
        (big-endian), SubAuthority u32[count]

All integers are little-endian except the SID identifier authority.
Serialization lays components out as header, owner, group, SACL, DACL.
"""

from __future__ import annotations

import struct
import uuid
from dataclasses import dataclass, field, replace
from enum import IntEnum, IntFlag
from typing import List, Optional, Sequence, Tuple, Union

from dcomaudit.acl.principal import (
    BUILTIN_ADMINISTRATORS,
    LOCAL_SYSTEM,
    PRINCIPAL_SELF,
    PrincipalId,
)
from dcomaudit.acl.rights import AccessType
from dcomaudit.core.exceptions import (
    CanonicalizationDataLossError,
    EmptyEncodingError,
    MalformedDescriptorError,
)

SD_REVISION = 1
SD_HEADER = struct.Struct("<BBHIIII")
ACL_HEADER = struct.Struct("<BBHHH")
ACE_HEADER = struct.Struct("<BBH")

ACL_REVISION = 2
ACL_REVISION_DS = 4


class DescriptorControl(IntFlag):
    OWNER_DEFAULTED = 0x0001
    GROUP_DEFAULTED = 0x0002
    DACL_PRESENT = 0x0004
    DACL_DEFAULTED = 0x0008
    SACL_PRESENT = 0x0010
    SACL_DEFAULTED = 0x0020
    DACL_AUTO_INHERIT_REQ = 0x0100
    SACL_AUTO_INHERIT_REQ = 0x0200
    DACL_AUTO_INHERITED = 0x0400
    SACL_AUTO_INHERITED = 0x0800
    DACL_PROTECTED = 0x1000
    SACL_PROTECTED = 0x2000
    RM_CONTROL_VALID = 0x4000
    SELF_RELATIVE = 0x8000


class AceType(IntEnum):
    ACCESS_ALLOWED = 0x00
    ACCESS_DENIED = 0x01
    SYSTEM_AUDIT = 0x02
    SYSTEM_ALARM = 0x03
    ACCESS_ALLOWED_COMPOUND = 0x04
    ACCESS_ALLOWED_OBJECT = 0x05
    ACCESS_DENIED_OBJECT = 0x06
    SYSTEM_AUDIT_OBJECT = 0x07
    SYSTEM_ALARM_OBJECT = 0x08
    ACCESS_ALLOWED_CALLBACK = 0x09
    ACCESS_DENIED_CALLBACK = 0x0A
    ACCESS_ALLOWED_CALLBACK_OBJECT = 0x0B
    ACCESS_DENIED_CALLBACK_OBJECT = 0x0C
    SYSTEM_AUDIT_CALLBACK = 0x0D
    SYSTEM_ALARM_CALLBACK = 0x0E
    SYSTEM_AUDIT_CALLBACK_OBJECT = 0x0F
    SYSTEM_ALARM_CALLBACK_OBJECT = 0x10
    SYSTEM_MANDATORY_LABEL = 0x11
    SYSTEM_RESOURCE_ATTRIBUTE = 0x12
    SYSTEM_SCOPED_POLICY_ID = 0x13
    SYSTEM_PROCESS_TRUST_LABEL = 0x14


class AceFlags(IntFlag):
    OBJECT_INHERIT = 0x01
    CONTAINER_INHERIT = 0x02
    NO_PROPAGATE_INHERIT = 0x04
    INHERIT_ONLY = 0x08
    INHERITED = 0x10
    SUCCESSFUL_ACCESS = 0x40
    FAILED_ACCESS = 0x80


class ObjectAceFlags(IntFlag):
    OBJECT_TYPE_PRESENT = 0x01
    INHERITED_OBJECT_TYPE_PRESENT = 0x02


# mask + SID (+ optional application data)
_SID_ACE_TYPES = frozenset(
    {
        AceType.ACCESS_ALLOWED,
        AceType.ACCESS_DENIED,
        AceType.SYSTEM_AUDIT,
        AceType.SYSTEM_ALARM,
        AceType.ACCESS_ALLOWED_CALLBACK,
        AceType.ACCESS_DENIED_CALLBACK,
        AceType.SYSTEM_AUDIT_CALLBACK,
        AceType.SYSTEM_ALARM_CALLBACK,
        AceType.SYSTEM_MANDATORY_LABEL,
        AceType.SYSTEM_RESOURCE_ATTRIBUTE,
        AceType.SYSTEM_SCOPED_POLICY_ID,
        AceType.SYSTEM_PROCESS_TRUST_LABEL,
    }
)
# mask + object flags + GUIDs + SID (+ optional application data)
_OBJECT_ACE_TYPES = frozenset(
    {
        AceType.ACCESS_ALLOWED_OBJECT,
        AceType.ACCESS_DENIED_OBJECT,
        AceType.SYSTEM_AUDIT_OBJECT,
        AceType.SYSTEM_ALARM_OBJECT,
        AceType.ACCESS_ALLOWED_CALLBACK_OBJECT,
        AceType.ACCESS_DENIED_CALLBACK_OBJECT,
        AceType.SYSTEM_AUDIT_CALLBACK_OBJECT,
        AceType.SYSTEM_ALARM_CALLBACK_OBJECT,
    }
)

_ACCESS_TYPES = {
    AceType.ACCESS_ALLOWED: AccessType.ALLOW,
    AceType.ACCESS_DENIED: AccessType.DENY,
}


def _coerce_type(value: int) -> Union[AceType, int]:
    try:
        return AceType(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class RawAce:
    """
    One entry of a discretionary ACL, exactly as stored.

    ACE types the codec does not understand keep their body in
    ``opaque_body`` and have no principal; they are re-emitted unchanged.
    """

    ace_type: Union[AceType, int]
    mask: int = 0
    principal: Optional[PrincipalId] = None
    flags: AceFlags = AceFlags(0)
    object_flags: ObjectAceFlags = ObjectAceFlags(0)
    object_type: Optional[uuid.UUID] = None
    inherited_object_type: Optional[uuid.UUID] = None
    application_data: bytes = b""
    opaque_body: Optional[bytes] = None

    @classmethod
    def for_access(
        cls, principal: PrincipalId, access_type: AccessType, mask: int
    ) -> "RawAce":
        """A plain, non-inherited allow or deny entry."""
        ace_type = (
            AceType.ACCESS_ALLOWED
            if access_type == AccessType.ALLOW
            else AceType.ACCESS_DENIED
        )
        return cls(ace_type=ace_type, mask=mask, principal=principal)

    @property
    def inherited(self) -> bool:
        return bool(self.flags & AceFlags.INHERITED)

    @property
    def access_type(self) -> Optional[AccessType]:
        """Allow/Deny for plain access entries, None for anything else."""
        return _ACCESS_TYPES.get(self.ace_type)

    @property
    def is_opaque(self) -> bool:
        return self.opaque_body is not None

    def body_bytes(self) -> bytes:
        """Everything after the 4-byte ACE header."""
        if self.opaque_body is not None:
            return self.opaque_body
        if self.principal is None:
            raise MalformedDescriptorError(
                f"ACE of type {int(self.ace_type)} has no principal to encode"
            )
        parts = [struct.pack("<I", self.mask & 0xFFFFFFFF)]
        if self.ace_type in _OBJECT_ACE_TYPES:
            object_flags = ObjectAceFlags(0)
            guids = []
            if self.object_type is not None:
                object_flags |= ObjectAceFlags.OBJECT_TYPE_PRESENT
                guids.append(self.object_type.bytes_le)
            if self.inherited_object_type is not None:
                object_flags |= ObjectAceFlags.INHERITED_OBJECT_TYPE_PRESENT
                guids.append(self.inherited_object_type.bytes_le)
            parts.append(struct.pack("<I", int(object_flags)))
            parts.extend(guids)
        parts.append(self.principal.to_bytes())
        parts.append(self.application_data)
        return b"".join(parts)

    def to_bytes(self) -> bytes:
        body = self.body_bytes()
        if self.opaque_body is None and len(body) % 4:
            body += b"\x00" * (4 - len(body) % 4)
        size = ACE_HEADER.size + len(body)
        if size > 0xFFFF:
            raise MalformedDescriptorError(
                f"ACE of {size} bytes exceeds the ACE size field"
            )
        return ACE_HEADER.pack(int(self.ace_type), int(self.flags), size) + body


@dataclass
class SecurityDescriptor:
    """
    Parsed self-relative security descriptor.

    ``dacl`` is None when no DACL is present (or it is a NULL DACL); the SACL
    is carried as raw ACL bytes because DCOM permissions never use it.
    """

    owner: Optional[PrincipalId] = None
    group: Optional[PrincipalId] = None
    dacl: Optional[List[RawAce]] = field(default_factory=list)
    sacl: Optional[bytes] = None
    control: DescriptorControl = (
        DescriptorControl.SELF_RELATIVE | DescriptorControl.DACL_PRESENT
    )
    dacl_revision: int = ACL_REVISION


# ============================================================================
# Decoding
# ============================================================================


def _read_guid(data: bytes, cursor: int, end: int) -> Tuple[uuid.UUID, int]:
    if cursor + 16 > end:
        raise MalformedDescriptorError(f"Object ACE GUID at offset {cursor} is truncated")
    return uuid.UUID(bytes_le=bytes(data[cursor : cursor + 16])), cursor + 16


def _parse_ace(data: bytes, offset: int, end: int) -> Tuple[RawAce, int]:
    if offset + ACE_HEADER.size > end:
        raise MalformedDescriptorError(f"ACE header at offset {offset} is truncated")
    type_value, flags, size = ACE_HEADER.unpack_from(data, offset)
    if size < ACE_HEADER.size or offset + size > end:
        raise MalformedDescriptorError(
            f"ACE at offset {offset} declares size {size} outside its ACL"
        )
    ace_type = _coerce_type(type_value)
    body_start = offset + ACE_HEADER.size
    body_end = offset + size
    ace_flags = AceFlags(flags)

    if ace_type not in _SID_ACE_TYPES and ace_type not in _OBJECT_ACE_TYPES:
        return RawAce(
            ace_type=ace_type, flags=ace_flags, opaque_body=bytes(data[body_start:body_end])
        ), body_end

    cursor = body_start
    if cursor + 4 > body_end:
        raise MalformedDescriptorError(f"ACE at offset {offset} has no access mask")
    (mask,) = struct.unpack_from("<I", data, cursor)
    cursor += 4

    object_flags = ObjectAceFlags(0)
    object_type = inherited_object_type = None
    if ace_type in _OBJECT_ACE_TYPES:
        if cursor + 4 > body_end:
            raise MalformedDescriptorError(f"Object ACE at offset {offset} is truncated")
        object_flags = ObjectAceFlags(struct.unpack_from("<I", data, cursor)[0] & 0x3)
        cursor += 4
        if object_flags & ObjectAceFlags.OBJECT_TYPE_PRESENT:
            object_type, cursor = _read_guid(data, cursor, body_end)
        if object_flags & ObjectAceFlags.INHERITED_OBJECT_TYPE_PRESENT:
            inherited_object_type, cursor = _read_guid(data, cursor, body_end)

    principal = PrincipalId.from_bytes(data[:body_end], cursor)
    cursor += principal.size
    ace = RawAce(
        ace_type=ace_type,
        mask=mask,
        principal=principal,
        flags=ace_flags,
        object_flags=object_flags,
        object_type=object_type,
        inherited_object_type=inherited_object_type,
        application_data=bytes(data[cursor:body_end]),
    )
    return ace, body_end


def _acl_bounds(data: bytes, offset: int) -> Tuple[int, int, int, int]:
    """Return (revision, size, count, end) of the ACL at ``offset``."""
    if offset + ACL_HEADER.size > len(data):
        raise MalformedDescriptorError(f"ACL header at offset {offset} is truncated")
    revision, _sbz1, size, count, _sbz2 = ACL_HEADER.unpack_from(data, offset)
    if revision not in (ACL_REVISION, 3, ACL_REVISION_DS):
        raise MalformedDescriptorError(f"Unsupported ACL revision {revision}")
    if size < ACL_HEADER.size or offset + size > len(data):
        raise MalformedDescriptorError(
            f"ACL at offset {offset} declares size {size} beyond the descriptor"
        )
    return revision, size, count, offset + size


def _parse_acl(data: bytes, offset: int) -> Tuple[int, List[RawAce]]:
    revision, _size, count, end = _acl_bounds(data, offset)
    aces = []
    cursor = offset + ACL_HEADER.size
    for _ in range(count):
        ace, cursor = _parse_ace(data, cursor, end)
        aces.append(ace)
    return revision, aces


def parse_descriptor(blob: bytes) -> SecurityDescriptor:
    """Parse a self-relative security descriptor.

    Raises:
        MalformedDescriptorError: If the bytes are not a valid descriptor.
    """
    data = bytes(blob)
    if len(data) < SD_HEADER.size:
        raise MalformedDescriptorError(
            f"Descriptor of {len(data)} bytes is shorter than its header"
        )
    (
        revision,
        _sbz1,
        control,
        owner_off,
        group_off,
        sacl_off,
        dacl_off,
    ) = SD_HEADER.unpack_from(data)
    if revision != SD_REVISION:
        raise MalformedDescriptorError(f"Unsupported descriptor revision {revision}")
    control = DescriptorControl(control)
    if not control & DescriptorControl.SELF_RELATIVE:
        raise MalformedDescriptorError("Descriptor is not in self-relative form")

    owner = PrincipalId.from_bytes(data, owner_off) if owner_off else None
    group = PrincipalId.from_bytes(data, group_off) if group_off else None

    sacl = None
    if control & DescriptorControl.SACL_PRESENT and sacl_off:
        _rev, size, _count, end = _acl_bounds(data, sacl_off)
        sacl = data[sacl_off:end]

    dacl: Optional[List[RawAce]] = None
    dacl_revision = ACL_REVISION
    if control & DescriptorControl.DACL_PRESENT and dacl_off:
        dacl_revision, dacl = _parse_acl(data, dacl_off)

    return SecurityDescriptor(
        owner=owner,
        group=group,
        dacl=dacl,
        sacl=sacl,
        control=control,
        dacl_revision=dacl_revision,
    )


def decode(blob: bytes) -> List[RawAce]:
    """Ordered DACL entries of a descriptor; empty for a missing/NULL DACL."""
    return list(parse_descriptor(blob).dacl or [])


# ============================================================================
# Encoding
# ============================================================================


def _serialize_acl(aces: Sequence[RawAce], revision: int) -> bytes:
    if any(a.ace_type in _OBJECT_ACE_TYPES for a in aces):
        revision = ACL_REVISION_DS
    body = b"".join(a.to_bytes() for a in aces)
    size = ACL_HEADER.size + len(body)
    if size > 0xFFFF or len(aces) > 0xFFFF:
        raise MalformedDescriptorError("ACL exceeds the maximum encodable size")
    return ACL_HEADER.pack(revision, 0, size, len(aces), 0) + body


def serialize_descriptor(descriptor: SecurityDescriptor) -> bytes:
    """Lay out a descriptor in self-relative form (no reordering)."""
    control = DescriptorControl(descriptor.control) | DescriptorControl.SELF_RELATIVE
    owner = descriptor.owner.to_bytes() if descriptor.owner else b""
    group = descriptor.group.to_bytes() if descriptor.group else b""
    sacl = descriptor.sacl or b""
    if descriptor.sacl is not None:
        control |= DescriptorControl.SACL_PRESENT
    else:
        control &= ~DescriptorControl.SACL_PRESENT
    dacl = b""
    if descriptor.dacl is not None:
        control |= DescriptorControl.DACL_PRESENT
        dacl = _serialize_acl(descriptor.dacl, descriptor.dacl_revision)

    offset = SD_HEADER.size
    offsets = []
    for part in (owner, group, sacl, dacl):
        offsets.append(offset if part else 0)
        offset += len(part)
    header = SD_HEADER.pack(SD_REVISION, 0, int(control), *offsets)
    return header + owner + group + sacl + dacl


# Bucket order for canonical DACLs.
_BUCKET_DENY = 0
_BUCKET_DENY_OBJECT = 1
_BUCKET_ALLOW = 2
_BUCKET_ALLOW_OBJECT = 3
_BUCKET_INHERITED = 4

_BUCKET_BY_TYPE = {
    AceType.ACCESS_DENIED: _BUCKET_DENY,
    AceType.ACCESS_DENIED_OBJECT: _BUCKET_DENY_OBJECT,
    AceType.ACCESS_ALLOWED: _BUCKET_ALLOW,
    AceType.ACCESS_ALLOWED_OBJECT: _BUCKET_ALLOW_OBJECT,
}


def canonicalize(aces: Sequence[RawAce]) -> List[RawAce]:
    """Stable-sort entries into canonical DACL order.

    Explicit deny, explicit deny-object, explicit allow, explicit
    allow-object, then every inherited entry; relative order is kept
    inside each group.

    Raises:
        CanonicalizationDataLossError: If an entry fits no group, or the
            output would not contain every input entry exactly once.
    """
    buckets: Tuple[List[RawAce], ...] = ([], [], [], [], [])
    for ace in aces:
        if ace.inherited:
            buckets[_BUCKET_INHERITED].append(ace)
            continue
        bucket = _BUCKET_BY_TYPE.get(ace.ace_type)
        if bucket is None:
            raise CanonicalizationDataLossError(
                f"ACE of type {_type_label(ace.ace_type)} "
                "cannot be placed in canonical order",
                principal=str(ace.principal) if ace.principal else None,
            )
        buckets[bucket].append(ace)

    result = [ace for bucket in buckets for ace in bucket]
    if len(result) != len(aces):
        raise CanonicalizationDataLossError(
            f"Canonical ordering produced {len(result)} entries from {len(aces)}"
        )
    return result


def _type_label(ace_type: Union[AceType, int]) -> str:
    if isinstance(ace_type, AceType):
        return ace_type.name
    return f"0x{ace_type:02X}"


def encode(
    aces: Sequence[RawAce], template: Optional[SecurityDescriptor] = None
) -> bytes:
    """Canonicalize entries and encode them as a self-relative descriptor.

    Owner, group, SACL and control bits come from ``template`` when given
    (normally the descriptor the entries were read from); otherwise owner and
    group default to BUILTIN\\Administrators.

    Raises:
        CanonicalizationDataLossError: See canonicalize().
        EmptyEncodingError: If nothing was produced.
    """
    ordered = canonicalize(aces)
    if template is None:
        template = SecurityDescriptor(
            owner=BUILTIN_ADMINISTRATORS, group=BUILTIN_ADMINISTRATORS
        )
    blob = serialize_descriptor(replace(template, dacl=ordered))
    if not blob:
        raise EmptyEncodingError("Encoding the access control list produced no bytes")
    return blob


def default_descriptor() -> SecurityDescriptor:
    """O:BAG:BAD:(A;;CCDCLC;;;PS)(A;;CCDC;;;SY)(A;;CCDCLC;;;BA)"""
    return SecurityDescriptor(
        owner=BUILTIN_ADMINISTRATORS,
        group=BUILTIN_ADMINISTRATORS,
        dacl=[
            RawAce.for_access(PRINCIPAL_SELF, AccessType.ALLOW, 0x7),
            RawAce.for_access(LOCAL_SYSTEM, AccessType.ALLOW, 0x3),
            RawAce.for_access(BUILTIN_ADMINISTRATORS, AccessType.ALLOW, 0x7),
        ],
    )


def bootstrap_default() -> bytes:
    """Descriptor used when a permission value does not exist yet."""
    return serialize_descriptor(default_descriptor())
