"""
Centralized Exception Hierarchy for dcomaudit.

Every failure raised by the ACL engine derives from DcomAuditError so the
CLI (and any embedding tool) can catch one type and still render helpful
guidance.

Each exception includes:
- user_message: Human-readable description of what went wrong
- why_it_happened: Explanation of the root cause
- how_to_fix: Actionable steps to resolve the issue
- error_code: Unique identifier for documentation lookup (e.g., "DA-CODEC-001")

Mutation and synchronization errors also carry the principal, permission
category and scope they were working on, so an operator can re-run a
narrower corrective action.

Exception Hierarchy
-------------------
    DcomAuditError (base)
    ├── StoreError
    │   ├── AclNotFoundError
    │   └── AclUnauthorizedError
    ├── UnsupportedCategoryError
    ├── CodecError
    │   ├── MalformedDescriptorError
    │   ├── EmptyEncodingError
    │   └── CanonicalizationDataLossError
    ├── ConfirmationError
    │   ├── WriteNotConfirmedError
    │   ├── RemovalNotConfirmedError
    │   └── CopyNotConfirmedError
    ├── UnwritableEntryError
    ├── AggregateFailureError
    └── ConfigValidationError
"""

from __future__ import annotations

import re
from typing import Any, List, Optional, Sequence


def sanitize_message(message: str) -> str:
    """Mask credentials that may leak through remote host strings.

    Args:
        message: Original error message

    Returns:
        Sanitized message
    """
    if not message:
        return message

    patterns = [
        (r"://[^:/\s]+:[^@\s]+@", "://<user>:<pass>@"),
        (r"(password|passwd|pwd)[=:]\s*[^\s]+", r"\1=<hidden>"),
        (r"/(?:home|Users)/[^/\s]+", "<user-home>"),
        (r"[A-Za-z]:\\Users\\[^\\\s]+", "<user-home>"),
    ]
    result = message
    for pattern, replacement in patterns:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)
    return result


def get_root_cause(exc: BaseException) -> BaseException:
    """Follow __cause__/__context__ to the exception that started the chain."""
    seen = set()
    current = exc
    while current is not None:
        if id(current) in seen:
            break
        seen.add(id(current))
        if current.__cause__ is not None:
            current = current.__cause__
        elif current.__context__ is not None:
            current = current.__context__
        else:
            break
    return current


class DcomAuditError(Exception):
    """
    Base exception for all dcomaudit errors.

    Includes helpful error information:
    - error_code: Unique code for documentation lookup
    - why_it_happened: Explanation of the root cause
    - how_to_fix: List of actionable suggestions

    Example
    -------
        try:
            engine.set_rights(target, key, principal, rights, AccessType.ALLOW)
        except DcomAuditError as e:
            logger.error("ACL update failed", code=e.error_code)
            print(f"Fix: {e.how_to_fix}")
    """

    error_code: str = "DA-ERR-000"
    why_it_happened: str = "An unexpected error occurred"
    how_to_fix: List[str] = ["Check the error message for details"]

    def __init__(
        self,
        message: str,
        *,
        principal: Optional[str] = None,
        category: Optional[str] = None,
        scope: Optional[str] = None,
        error_code: Optional[str] = None,
        why_it_happened: Optional[str] = None,
        how_to_fix: Optional[List[str]] = None,
    ) -> None:
        """Initialize DcomAuditError with helpful information.

        Args:
            message: Human-readable error message
            principal: Principal (SID string or display name) involved
            category: Permission category involved
            scope: Permission scope involved
            error_code: Unique identifier (e.g., "DA-MUT-001")
            why_it_happened: Explanation of root cause
            how_to_fix: List of actionable fix suggestions
        """
        self.principal = principal
        self.category = category
        self.scope = scope
        super().__init__(sanitize_message(self._with_context(message)))

        if error_code is not None:
            self.error_code = error_code
        if why_it_happened is not None:
            self.why_it_happened = why_it_happened
        if how_to_fix is not None:
            self.how_to_fix = how_to_fix

    def _with_context(self, message: str) -> str:
        parts = []
        if self.principal is not None:
            parts.append(f"principal={self.principal}")
        if self.category is not None:
            parts.append(f"category={self.category}")
        if self.scope is not None:
            parts.append(f"scope={self.scope}")
        if not parts:
            return message
        return f"{message} ({', '.join(parts)})"

    @property
    def user_message(self) -> str:
        """Get the user-friendly error message."""
        return str(self)

    def get_root_cause(self) -> BaseException:
        """Get the root cause of this exception chain."""
        return get_root_cause(self)


# ============================================================================
# Store Exceptions
# ============================================================================


class StoreError(DcomAuditError):
    """Base exception for failures reported by the descriptor store."""

    error_code = "DA-STORE-000"
    why_it_happened = "The descriptor store could not complete the request"
    how_to_fix = [
        "Check that the configured store backend is reachable",
        "Re-run the command with --verbose for details",
    ]


class AclNotFoundError(StoreError):
    """
    Raised when a store path or application id does not exist.

    An absent ACL value is NOT an error (it means "uses default"); this is
    raised only when the containing key itself is missing.
    """

    error_code = "DA-STORE-001"
    why_it_happened = (
        "The registry key or application id that should hold the ACL "
        "does not exist on the target machine"
    )
    how_to_fix = [
        "Verify the application id with 'dcomaudit acl show --app <id>'",
        "Check that the application is registered on the target host",
    ]


class AclUnauthorizedError(StoreError):
    """Raised when the caller lacks the privilege to read or mutate the store."""

    error_code = "DA-STORE-002"
    why_it_happened = (
        "The current account is not allowed to modify the DCOM security "
        "settings on the target"
    )
    how_to_fix = [
        "Run the command from an elevated (administrator) session",
        "For remote hosts, ensure the Remote Registry service is running",
        "Check file permissions on the snapshot file",
    ]


# ============================================================================
# ACL Model Exceptions
# ============================================================================


class UnsupportedCategoryError(DcomAuditError):
    """
    Raised when an ACE operation is requested for an unsupported key.

    The Config category never has ACE semantics, and application targets
    have no Default/Limits distinction.
    """

    error_code = "DA-ACL-001"
    why_it_happened = (
        "Only the Access and Launch permission categories can be edited "
        "entry by entry, and Limits exist only at machine scope"
    )
    how_to_fix = [
        "Use --category access or --category launch",
        "Drop --scope limits when targeting an application",
    ]


# ============================================================================
# Codec Exceptions
# ============================================================================


class CodecError(DcomAuditError):
    """Base exception for security-descriptor encoding failures."""

    error_code = "DA-CODEC-000"
    why_it_happened = "A security descriptor could not be encoded or decoded"
    how_to_fix = ["Inspect the stored value with 'dcomaudit acl show --raw'"]


class MalformedDescriptorError(CodecError):
    """Raised when bytes cannot be parsed as a self-relative security descriptor."""

    error_code = "DA-CODEC-001"
    why_it_happened = (
        "The stored value is truncated, has an unknown revision, or has "
        "offsets that point outside the buffer"
    )
    how_to_fix = [
        "Reset the ACL to its default with 'dcomaudit acl reset'",
        "Restore the value from a known good snapshot",
    ]


class EmptyEncodingError(CodecError):
    """Raised when encoding produced no bytes."""

    error_code = "DA-CODEC-002"
    why_it_happened = "Encoding the access control list produced an empty value"
    how_to_fix = ["Report this as a bug together with the input entries"]


class CanonicalizationDataLossError(CodecError):
    """
    Raised when entries cannot be put into canonical order without loss.

    The write is rejected instead of persisting a truncated list.
    """

    error_code = "DA-CODEC-003"
    why_it_happened = (
        "The access control list contains entries that do not belong to any "
        "canonical ordering bucket"
    )
    how_to_fix = [
        "Inspect the list with 'dcomaudit acl show --raw'",
        "Remove the unsupported entries with a native security editor",
    ]


# ============================================================================
# Mutation Exceptions
# ============================================================================


class ConfirmationError(DcomAuditError):
    """Base exception for read-after-write verification failures."""

    error_code = "DA-MUT-000"
    why_it_happened = "The stored ACL did not reflect the change after writing"
    how_to_fix = [
        "Another process may have modified the ACL concurrently; retry",
    ]


class WriteNotConfirmedError(ConfirmationError):
    """Raised when the re-read ACL does not hold exactly one matching entry."""

    error_code = "DA-MUT-001"
    why_it_happened = (
        "After writing, the ACL did not contain exactly one entry for the "
        "principal with the requested rights"
    )


class RemovalNotConfirmedError(ConfirmationError):
    """Raised when entries for the principal remain after removal."""

    error_code = "DA-MUT-002"
    why_it_happened = (
        "After writing, the ACL still contained entries for the principal"
    )


# ============================================================================
# Synchronization Exceptions
# ============================================================================


class CopyNotConfirmedError(ConfirmationError):
    """
    Raised for each entry still different after an overwriting copy.

    Every individual write succeeded, but the re-read destination list does
    not equal the source list.
    """

    error_code = "DA-SYNC-002"
    why_it_happened = (
        "After copying with --overwrite, the destination list still differs "
        "from the source list"
    )
    how_to_fix = [
        "Launch entries that grant activation rights cannot be copied "
        "entry by entry; set them with a native security editor",
        "Use 'dcomaudit acl diff' to see the remaining differences",
    ]


class UnwritableEntryError(DcomAuditError):
    """
    Raised when a copied entry has no rights that can be written.

    Written masks always include Execute, which on its own grants every
    local and remote right, so such an entry is refused rather than widened.
    """

    error_code = "DA-SYNC-003"
    why_it_happened = (
        "The entry grants no launch or access right that can be written; "
        "writing it would grant full local and remote rights instead"
    )
    how_to_fix = [
        "Remove the entry from the source list, or set it on the destination "
        "with a native security editor",
    ]


class AggregateFailureError(DcomAuditError):
    """
    Raised when one or more entries failed during a copy/merge.

    Attributes
    ----------
    failures : list
        The underlying DcomAuditError instances, in the order they occurred.
        The first failure's principal/category/scope are promoted to this
        exception so the message names them.
    report : SyncReport, optional
        What was applied before and after the failures.
    """

    error_code = "DA-SYNC-001"
    why_it_happened = (
        "Copying an access control list partly failed; some entries were "
        "applied and others were not"
    )
    how_to_fix = [
        "Fix the first reported failure and re-run the copy",
        "Use 'dcomaudit acl diff' to see what is still different",
    ]

    def __init__(
        self,
        message: str,
        failures: Sequence[DcomAuditError],
        report: Any = None,
    ) -> None:
        self.failures = list(failures)
        self.report = report
        first = self.failures[0] if self.failures else None
        summary = f"{message}: {len(self.failures)} operation(s) failed"
        if first is not None:
            summary = f"{summary}; first: {first}"
        super().__init__(
            summary,
            principal=getattr(first, "principal", None),
            category=getattr(first, "category", None),
            scope=getattr(first, "scope", None),
        )

    def _with_context(self, message: str) -> str:
        # the first failure's message already names its context
        return message


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigValidationError(DcomAuditError):
    """
    Raised when configuration or a settings record fails validation.

    Attributes
    ----------
    field : str
        The configuration field that failed validation
    value : any
        The invalid value
    """

    error_code = "DA-CFG-001"
    why_it_happened = (
        "A configuration value is invalid. "
        "The dcomaudit.yaml file may have incorrect settings"
    )
    how_to_fix = [
        "Check dcomaudit.yaml for syntax errors",
        "Verify the value type matches what's expected",
        "Check DCOMAUDIT_* environment variables",
    ]

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        *,
        error_code: Optional[str] = None,
        why_it_happened: Optional[str] = None,
        how_to_fix: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            error_code=error_code,
            why_it_happened=why_it_happened,
            how_to_fix=how_to_fix,
        )
        self.field = field
        self.value = value
