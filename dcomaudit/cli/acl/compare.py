"""Diff and copy commands.

Both compare a source (``--from-app``/``--from-host``) with a destination
(``--app``/``--host``). Omitting both application ids compares the
machine-wide lists of the two hosts.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import typer

from dcomaudit.acl.rights import PermissionCategory, PermissionScope
from dcomaudit.acl.sync import SyncReport, copy_acl, mismatched
from dcomaudit.cli.acl.base import (
    AclCommand,
    AclContext,
    AclHolder,
    app_option,
    category_option,
    host_option,
    scope_option,
)
from dcomaudit.cli.console import tip
from dcomaudit.cli.errors import safe_cli_command
from dcomaudit.core.exceptions import AggregateFailureError
from dcomaudit.machine.scope import MachineDcom


class DiffCommand(AclCommand):
    """Show entries present on one side only."""

    def execute(
        self,
        context: AclContext,
        source: AclHolder,
        destination: AclHolder,
        category: Optional[PermissionCategory],
        scope: Optional[PermissionScope],
    ) -> int:
        differences = 0
        for key in self.keys_for(destination, category, scope):
            src = source.entries(key)
            dst = destination.entries(key)
            missing = mismatched(src, dst)
            extra = mismatched(dst, src)
            if not missing and not extra:
                self.print_success(f"{key}: identical")
                continue
            differences += 1
            if missing:
                self.console.print(
                    self.entries_table(f"{key}: only in {source.describe()}", missing)
                )
            if extra:
                self.console.print(
                    self.entries_table(f"{key}: only in {destination.describe()}", extra)
                )
        if differences:
            self.print_warning(f"{differences} permission list(s) differ")
            tip("run 'dcomaudit acl copy' with the same options and --overwrite to align them")
        return 0


class CopyCommand(AclCommand):
    """Make the destination lists match the source."""

    def execute(
        self,
        context: AclContext,
        source: AclHolder,
        destination: AclHolder,
        category: Optional[PermissionCategory],
        scope: Optional[PermissionScope],
        overwrite: bool,
        stop_on_error: bool,
        with_settings: bool,
    ) -> int:
        if with_settings:
            if not isinstance(source, MachineDcom) or not isinstance(destination, MachineDcom):
                raise typer.BadParameter("--with-settings only applies to machine copies")
            destination.commit(source.settings)
            self.print_success("Machine settings copied")

        reports: List[SyncReport] = []
        failed: Optional[AggregateFailureError] = None
        for key in self.keys_for(destination, category, scope):
            try:
                reports.append(copy_acl(source, destination, key, overwrite, stop_on_error))
            except AggregateFailureError as e:
                failed = failed or e
                if e.report is not None:
                    reports.append(e.report)
                if stop_on_error:
                    break

        for report in reports:
            self._print_report(report)
        if failed is not None:
            raise failed
        return 0

    def _print_report(self, report: SyncReport) -> None:
        if report.reset_to_default:
            self.print_success(f"{report.key}: now uses the machine default")
            return
        summary = f"{report.key}: {len(report.added)} added, {len(report.removed)} removed"
        if report.in_sync:
            self.print_success(summary)
        else:
            self.print_warning(f"{summary}, {len(report.remaining)} still different")


def _holders(
    context: AclContext,
    app: Optional[str],
    host: Optional[str],
    from_app: Optional[str],
    from_host: Optional[str],
) -> Tuple[AclHolder, AclHolder]:
    if (app is None) != (from_app is None):
        raise typer.BadParameter("Pass both --app and --from-app, or neither")
    return context.holder(from_app, from_host), context.holder(app, host)


@safe_cli_command("acl diff")
def diff_command(
    ctx: typer.Context,
    app: Optional[str] = app_option(),
    host: Optional[str] = host_option(),
    from_app: Optional[str] = app_option("--from-app", "Source application id"),
    from_host: Optional[str] = host_option("--from-host", "Source host"),
    category: Optional[PermissionCategory] = category_option(),
    scope: Optional[PermissionScope] = scope_option(),
) -> None:
    """Compare two permission lists.

    Examples:
        # Machine lists of two hosts
        dcomaudit acl diff --from-host SRV01 --host SRV02

        # Two applications on the same host
        dcomaudit acl diff --from-app {...} --app {...} -C launch
    """
    cmd = DiffCommand()
    context = cmd.build_context(ctx)
    source, destination = _holders(context, app, host, from_app, from_host)
    exit_code = cmd.execute(context, source, destination, category, scope)
    if exit_code != 0:
        raise typer.Exit(code=exit_code)


@safe_cli_command("acl copy")
def copy_command(
    ctx: typer.Context,
    app: Optional[str] = app_option(help_text="Destination application id"),
    host: Optional[str] = host_option(help_text="Destination host"),
    from_app: Optional[str] = app_option("--from-app", "Source application id"),
    from_host: Optional[str] = host_option("--from-host", "Source host"),
    category: Optional[PermissionCategory] = category_option(),
    scope: Optional[PermissionScope] = scope_option(),
    overwrite: bool = typer.Option(
        False, "--overwrite", help="Also remove entries the source does not have"
    ),
    stop_on_error: Optional[bool] = typer.Option(
        None,
        "--stop-on-error/--keep-going",
        help="Stop at the first failed entry (default from sync.stop_on_error)",
    ),
    with_settings: bool = typer.Option(
        False, "--with-settings", help="Also copy machine settings (machine copies only)"
    ),
) -> None:
    """Copy permission lists from a source to a destination.

    Examples:
        dcomaudit acl copy --from-host SRV01 --host SRV02 --overwrite

        dcomaudit acl copy --from-app {...} --app {...} -C access
    """
    cmd = CopyCommand()
    context = cmd.build_context(ctx)
    source, destination = _holders(context, app, host, from_app, from_host)
    if stop_on_error is None:
        stop_on_error = context.config.sync.stop_on_error
    exit_code = cmd.execute(
        context, source, destination, category, scope, overwrite, stop_on_error, with_settings
    )
    if exit_code != 0:
        raise typer.Exit(code=exit_code)
