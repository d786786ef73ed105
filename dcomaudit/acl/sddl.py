"""
Textual (SDDL) form of DCOM permission descriptors.

Only the parts DCOM permissions use are supported: owner, group and the
DACL. A SACL section is rejected.

    O:BAG:BAD:(A;;CCDCLC;;;PS)(A;;CCDC;;;SY)(A;;CCDCLC;;;BA)
"""

import re
import uuid
from typing import List, Optional, Tuple

from dcomaudit.acl.descriptor import (
    AceFlags,
    AceType,
    DescriptorControl,
    RawAce,
    SecurityDescriptor,
)
from dcomaudit.acl.principal import PrincipalId
from dcomaudit.core.exceptions import MalformedDescriptorError

DEFAULT_DESCRIPTOR_SDDL = "O:BAG:BAD:(A;;CCDCLC;;;PS)(A;;CCDC;;;SY)(A;;CCDCLC;;;BA)"

SID_ALIASES = {
    "WD": "S-1-1-0",
    "CO": "S-1-3-0",
    "CG": "S-1-3-1",
    "NU": "S-1-5-2",
    "IU": "S-1-5-4",
    "SU": "S-1-5-6",
    "AN": "S-1-5-7",
    "PS": "S-1-5-10",
    "AU": "S-1-5-11",
    "RC": "S-1-5-12",
    "SY": "S-1-5-18",
    "LS": "S-1-5-19",
    "NS": "S-1-5-20",
    "BA": "S-1-5-32-544",
    "BU": "S-1-5-32-545",
    "BG": "S-1-5-32-546",
    "PU": "S-1-5-32-547",
    "AO": "S-1-5-32-548",
    "SO": "S-1-5-32-549",
    "PO": "S-1-5-32-550",
    "BO": "S-1-5-32-551",
    "RE": "S-1-5-32-552",
    "RU": "S-1-5-32-554",
    "RD": "S-1-5-32-555",
    "NO": "S-1-5-32-556",
    "MU": "S-1-5-32-558",
    "LU": "S-1-5-32-559",
    "ER": "S-1-5-32-573",
}
_ALIAS_BY_SID = {PrincipalId.parse(v): k for k, v in SID_ALIASES.items()}

ACE_TYPE_CODES = {
    "A": AceType.ACCESS_ALLOWED,
    "D": AceType.ACCESS_DENIED,
    "OA": AceType.ACCESS_ALLOWED_OBJECT,
    "OD": AceType.ACCESS_DENIED_OBJECT,
    "AU": AceType.SYSTEM_AUDIT,
    "AL": AceType.SYSTEM_ALARM,
    "OU": AceType.SYSTEM_AUDIT_OBJECT,
    "ML": AceType.SYSTEM_MANDATORY_LABEL,
}
_CODE_BY_ACE_TYPE = {v: k for k, v in ACE_TYPE_CODES.items()}

ACE_FLAG_CODES = {
    "OI": AceFlags.OBJECT_INHERIT,
    "CI": AceFlags.CONTAINER_INHERIT,
    "NP": AceFlags.NO_PROPAGATE_INHERIT,
    "IO": AceFlags.INHERIT_ONLY,
    "ID": AceFlags.INHERITED,
    "SA": AceFlags.SUCCESSFUL_ACCESS,
    "FA": AceFlags.FAILED_ACCESS,
}

# Directory-service codes, in bit order; these are what DCOM defaults use.
RIGHT_CODES = {
    "CC": 0x00000001,
    "DC": 0x00000002,
    "LC": 0x00000004,
    "SW": 0x00000008,
    "RP": 0x00000010,
    "WP": 0x00000020,
    "DT": 0x00000040,
    "LO": 0x00000080,
    "CR": 0x00000100,
    "SD": 0x00010000,
    "RC": 0x00020000,
    "WD": 0x00040000,
    "WO": 0x00080000,
    "GA": 0x10000000,
    "GX": 0x20000000,
    "GW": 0x40000000,
    "GR": 0x80000000,
}

DACL_FLAG_CODES = {
    "P": DescriptorControl.DACL_PROTECTED,
    "AR": DescriptorControl.DACL_AUTO_INHERIT_REQ,
    "AI": DescriptorControl.DACL_AUTO_INHERITED,
}

_SECTION_RE = re.compile(r"([OGDS]):")


def parse_sid(text: str) -> PrincipalId:
    """Resolve a two-letter alias or an S-1-... string."""
    text = text.strip()
    alias = SID_ALIASES.get(text.upper())
    try:
        return PrincipalId.parse(alias or text)
    except ValueError as e:
        raise MalformedDescriptorError(f"Unknown SID in SDDL: {text!r}") from e


def format_sid(principal: PrincipalId) -> str:
    return _ALIAS_BY_SID.get(principal, str(principal))


def _split_codes(text: str, table: dict, what: str) -> List[str]:
    codes = []
    i = 0
    while i < len(text):
        # two-letter codes first, then the single-letter DACL flag "P"
        chunk = text[i : i + 2].upper()
        if chunk in table:
            codes.append(chunk)
            i += 2
        elif text[i].upper() in table:
            codes.append(text[i].upper())
            i += 1
        else:
            raise MalformedDescriptorError(f"Unknown {what} in SDDL: {text[i:]!r}")
    return codes


def parse_rights(text: str) -> int:
    text = text.strip()
    if not text:
        return 0
    if text.lower().startswith("0x") or text.isdigit():
        try:
            return int(text, 0)
        except ValueError as e:
            raise MalformedDescriptorError(f"Bad access mask in SDDL: {text!r}") from e
    mask = 0
    for code in _split_codes(text, RIGHT_CODES, "access right"):
        mask |= RIGHT_CODES[code]
    return mask


def format_rights(mask: int) -> str:
    codes = []
    remaining = mask
    for code, bit in RIGHT_CODES.items():
        if mask & bit:
            codes.append(code)
            remaining &= ~bit
    if remaining or not codes:
        return f"0x{mask:x}"
    return "".join(codes)


def _parse_guid(text: str) -> Optional[uuid.UUID]:
    if not text:
        return None
    try:
        return uuid.UUID(text)
    except ValueError as e:
        raise MalformedDescriptorError(f"Bad object GUID in SDDL: {text!r}") from e


def _parse_ace(text: str) -> RawAce:
    fields = text.split(";")
    if len(fields) != 6:
        raise MalformedDescriptorError(f"ACE must have 6 fields: ({text})")
    type_code, flag_text, rights, object_guid, inherit_guid, sid = fields
    ace_type = ACE_TYPE_CODES.get(type_code.upper())
    if ace_type is None:
        raise MalformedDescriptorError(f"Unsupported ACE type in SDDL: {type_code!r}")
    flags = AceFlags(0)
    for code in _split_codes(flag_text, ACE_FLAG_CODES, "ACE flag"):
        flags |= ACE_FLAG_CODES[code]
    return RawAce(
        ace_type=ace_type,
        mask=parse_rights(rights),
        principal=parse_sid(sid),
        flags=flags,
        object_type=_parse_guid(object_guid),
        inherited_object_type=_parse_guid(inherit_guid),
    )


def _parse_dacl(text: str) -> Tuple[DescriptorControl, Optional[List[RawAce]]]:
    head, _, rest = text.partition("(")
    rest = "(" + rest if rest else ""
    control = DescriptorControl(0)
    if head.upper() == "NO_ACCESS_CONTROL":
        return DescriptorControl.DACL_PRESENT, None
    for code in _split_codes(head, DACL_FLAG_CODES, "DACL flag"):
        control |= DACL_FLAG_CODES[code]
    aces = []
    for match in re.finditer(r"\(([^()]*)\)|([^()\s]+)", rest):
        if match.group(2):
            raise MalformedDescriptorError(f"Unexpected text in DACL: {match.group(2)!r}")
        aces.append(_parse_ace(match.group(1)))
    return control, aces


def parse_sddl(text: str) -> SecurityDescriptor:
    """Parse SDDL into a SecurityDescriptor.

    Raises:
        MalformedDescriptorError: For syntax errors or a SACL section.
    """
    text = "".join(text.split())
    matches = list(_SECTION_RE.finditer(text))
    if not matches or matches[0].start() != 0:
        raise MalformedDescriptorError(f"Not an SDDL string: {text!r}")

    sections = {}
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        sections[match.group(1)] = text[match.end() : end]
    if "S" in sections:
        raise MalformedDescriptorError("SACL sections are not supported")

    descriptor = SecurityDescriptor(
        owner=parse_sid(sections["O"]) if "O" in sections else None,
        group=parse_sid(sections["G"]) if "G" in sections else None,
        dacl=None,
        control=DescriptorControl.SELF_RELATIVE,
    )
    if "D" in sections:
        control, aces = _parse_dacl(sections["D"])
        descriptor.control |= control | DescriptorControl.DACL_PRESENT
        descriptor.dacl = aces
    return descriptor


def _format_ace(ace: RawAce) -> str:
    if ace.is_opaque or ace.principal is None:
        raise MalformedDescriptorError(
            f"ACE of type {int(ace.ace_type)} has no SDDL form"
        )
    type_code = _CODE_BY_ACE_TYPE.get(ace.ace_type)
    if type_code is None:
        raise MalformedDescriptorError(f"ACE type {int(ace.ace_type)} has no SDDL form")
    flags = "".join(code for code, bit in ACE_FLAG_CODES.items() if ace.flags & bit)
    return "({};{};{};{};{};{})".format(
        type_code,
        flags,
        format_rights(ace.mask),
        ace.object_type or "",
        ace.inherited_object_type or "",
        format_sid(ace.principal),
    )


def format_sddl(descriptor: SecurityDescriptor) -> str:
    """Render owner, group and DACL as SDDL."""
    parts = []
    if descriptor.owner is not None:
        parts.append(f"O:{format_sid(descriptor.owner)}")
    if descriptor.group is not None:
        parts.append(f"G:{format_sid(descriptor.group)}")
    if descriptor.dacl is not None:
        flags = "".join(
            code for code, bit in DACL_FLAG_CODES.items() if descriptor.control & bit
        )
        parts.append("D:" + flags + "".join(_format_ace(a) for a in descriptor.dacl))
    elif descriptor.control & DescriptorControl.DACL_PRESENT:
        parts.append("D:NO_ACCESS_CONTROL")
    return "".join(parts)
