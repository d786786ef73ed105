"""Grant, revoke and reset commands.

Each command is one engine round trip: the list is re-read after writing
and the command fails if the change is not visible.
"""

from __future__ import annotations

from typing import List, Optional

import typer

from dcomaudit.acl.rights import AccessType, PermissionCategory, PermissionScope
from dcomaudit.cli.acl.base import (
    AclCommand,
    AclContext,
    app_option,
    category_option,
    host_option,
    scope_option,
)
from dcomaudit.cli.errors import safe_cli_command
from dcomaudit.store.base import APPLICATION_KEYS, AclKey


class GrantCommand(AclCommand):
    """Write an allow or deny entry for one principal."""

    def execute(
        self,
        context: AclContext,
        principal: str,
        rights: List[str],
        deny: bool,
        app: Optional[str],
        host: Optional[str],
        category: PermissionCategory,
        scope: Optional[PermissionScope],
    ) -> int:
        sid = self.parse_principal(context.resolver, principal)
        parsed = self.parse_rights(rights)
        access_type = AccessType.DENY if deny else AccessType.ALLOW
        holder = context.holder(app, host)
        key = self.single_key(holder, category, scope)

        holder.set_rights(key, sid, parsed, access_type)
        self.print_success(
            f"{access_type.value} {', '.join(r.name.lower() for r in parsed) or 'execute'} "
            f"for {principal} on {holder.describe()} ({key})"
        )
        return 0


class RevokeCommand(AclCommand):
    """Remove a principal's entries."""

    def execute(
        self,
        context: AclContext,
        principal: str,
        access_type: Optional[AccessType],
        app: Optional[str],
        host: Optional[str],
        category: PermissionCategory,
        scope: Optional[PermissionScope],
    ) -> int:
        sid = self.parse_principal(context.resolver, principal)
        holder = context.holder(app, host)
        key = self.single_key(holder, category, scope)

        holder.remove_rights(key, sid, access_type)
        which = access_type.value if access_type else "all"
        self.print_success(f"Removed {which} entries for {principal} from {holder.describe()} ({key})")
        return 0


class ResetCommand(AclCommand):
    """Drop an application's own lists so it uses the machine default."""

    def execute(
        self,
        context: AclContext,
        app: str,
        host: Optional[str],
        category: Optional[PermissionCategory],
    ) -> int:
        holder = context.holder(app, host)
        keys: List[AclKey] = (
            [AclKey(category, PermissionScope.NONE)] if category else list(APPLICATION_KEYS)
        )
        for key in keys:
            holder.use_default_permissions(key)
            self.print_success(f"{holder.describe()} {key.category.value} uses the machine default")
        return 0


@safe_cli_command("acl grant")
def grant_command(
    ctx: typer.Context,
    principal: str = typer.Argument(..., help="Account name or SID string"),
    rights: List[str] = typer.Option(
        [],
        "--right",
        "-r",
        help="execute-local, execute-remote, activate-local, activate-remote (repeatable)",
    ),
    deny: bool = typer.Option(False, "--deny", help="Write a deny entry"),
    app: Optional[str] = app_option(),
    host: Optional[str] = host_option(),
    category: PermissionCategory = typer.Option(
        ..., "--category", "-C", help="access or launch", case_sensitive=False
    ),
    scope: Optional[PermissionScope] = scope_option(),
) -> None:
    """Grant (or deny) rights to a principal.

    Replaces the principal's existing entry of the same type.

    Examples:
        dcomaudit acl grant "BUILTIN\\Users" -C launch -r execute-local -r activate-local

        dcomaudit acl grant S-1-5-7 -C access --deny --app {00020812-0000-0000-C000-000000000046}
    """
    cmd = GrantCommand()
    exit_code = cmd.execute(
        cmd.build_context(ctx), principal, rights, deny, app, host, category, scope
    )
    if exit_code != 0:
        raise typer.Exit(code=exit_code)


@safe_cli_command("acl revoke")
def revoke_command(
    ctx: typer.Context,
    principal: str = typer.Argument(..., help="Account name or SID string"),
    access_type: Optional[AccessType] = typer.Option(
        None, "--type", "-t", help="Only remove allow or deny entries", case_sensitive=False
    ),
    app: Optional[str] = app_option(),
    host: Optional[str] = host_option(),
    category: PermissionCategory = typer.Option(
        ..., "--category", "-C", help="access or launch", case_sensitive=False
    ),
    scope: Optional[PermissionScope] = scope_option(),
) -> None:
    """Remove a principal's entries from a permission list.

    Examples:
        dcomaudit acl revoke Everyone -C access --scope limits
    """
    cmd = RevokeCommand()
    exit_code = cmd.execute(
        cmd.build_context(ctx), principal, access_type, app, host, category, scope
    )
    if exit_code != 0:
        raise typer.Exit(code=exit_code)


@safe_cli_command("acl reset")
def reset_command(
    ctx: typer.Context,
    app: str = typer.Option(..., "--app", help="Application id (AppID GUID)"),
    host: Optional[str] = host_option(),
    category: Optional[PermissionCategory] = category_option("Only reset this category"),
) -> None:
    """Make an application use the machine default permissions.

    Examples:
        dcomaudit acl reset --app {00020812-0000-0000-C000-000000000046}
    """
    cmd = ResetCommand()
    exit_code = cmd.execute(cmd.build_context(ctx), app, host, category)
    if exit_code != 0:
        raise typer.Exit(code=exit_code)
