"""Show command - Display DCOM permission lists.

Shows the machine-wide lists, or one application's identity settings and
lists together with whether each one uses the machine default.
"""

from __future__ import annotations

from typing import Optional

import typer

from dcomaudit.acl.rights import PermissionCategory, PermissionScope
from dcomaudit.acl.sddl import format_sddl
from dcomaudit.cli.acl.base import (
    AclCommand,
    AclContext,
    AclHolder,
    app_option,
    category_option,
    host_option,
    scope_option,
)
from dcomaudit.cli.errors import safe_cli_command
from dcomaudit.machine.scope import DcomApplication
from dcomaudit.store.base import AclKey


class ShowCommand(AclCommand):
    """Display permission lists."""

    def execute(
        self,
        context: AclContext,
        app: Optional[str],
        host: Optional[str],
        category: Optional[PermissionCategory],
        scope: Optional[PermissionScope],
        raw: bool,
    ) -> int:
        holder = context.holder(app, host)
        self.console.print(f"[bold]{holder.describe()}[/bold]")
        if isinstance(holder, DcomApplication):
            self._show_settings(holder)
        for key in self.keys_for(holder, category, scope):
            if raw:
                self._show_raw(context, holder, key)
            else:
                self._show_entries(holder, key)
        return 0

    def _show_settings(self, app: DcomApplication) -> None:
        settings = app.settings
        level = settings.authentication_level.name.lower()
        line = f"Runs as {settings.run_as}, authentication {level}"
        if settings.runs_as_service:
            startup = settings.service_startup
            start = startup.name.lower() if startup is not None else "unknown"
            line += f", service {settings.service_name} ({start} start)"
        self.print_info(line)

    def _show_entries(self, holder: AclHolder, key: AclKey) -> None:
        title = f"{key.category.value.title()} permissions ({key.scope.value})"
        if holder.uses_default(key):
            title += " - uses machine default"
        entries = holder.entries(key)
        if not entries:
            self.print_info(f"{title}: no entries")
            return
        self.console.print(self.entries_table(title, entries))

    def _show_raw(self, context: AclContext, holder: AclHolder, key: AclKey) -> None:
        descriptor = context.engine.read_descriptor(holder.target, key)
        label = f"{key.category.value}/{key.scope.value}"
        if descriptor is None:
            self.print_info(f"{label}: not stored (uses default)")
            return
        self.console.print(f"{label}: {format_sddl(descriptor)}", markup=False, highlight=False)


@safe_cli_command("acl show")
def command(
    ctx: typer.Context,
    app: Optional[str] = app_option(),
    host: Optional[str] = host_option(),
    category: Optional[PermissionCategory] = category_option(),
    scope: Optional[PermissionScope] = scope_option(),
    raw: bool = typer.Option(False, "--raw", help="Print stored descriptors as SDDL"),
) -> None:
    """Show DCOM permission lists.

    Examples:
        # Machine-wide Default and Limits lists
        dcomaudit acl show

        # One application's launch permissions
        dcomaudit acl show --app {00020812-0000-0000-C000-000000000046} -C launch

        # Stored descriptors as SDDL
        dcomaudit acl show --raw
    """
    cmd = ShowCommand()
    exit_code = cmd.execute(cmd.build_context(ctx), app, host, category, scope, raw)
    if exit_code != 0:
        raise typer.Exit(code=exit_code)
