"""Shared plumbing for the ``acl`` commands.

Builds the store, resolver, engine and machine handle from the loaded
configuration, and turns command-line text (principals, rights, keys)
into model values.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

import typer
from rich.console import Console
from rich.table import Table

from dcomaudit.acl.entry import AccessControlEntry
from dcomaudit.acl.mutation import AclMutationEngine
from dcomaudit.acl.principal import PrincipalId, WellKnownPrincipalResolver
from dcomaudit.acl.rights import (
    AccessType,
    ElementaryRight,
    PermissionCategory,
    PermissionScope,
)
from dcomaudit.cli.console import get_console
from dcomaudit.core.config import Config, create_resolver, create_store, load_config
from dcomaudit.core.logging import configure_logging
from dcomaudit.machine.scope import DcomApplication, MachineDcom
from dcomaudit.store.base import (
    APPLICATION_KEYS,
    MACHINE_KEYS,
    AclKey,
    BlobStore,
    SettingsCatalog,
)

AclHolder = Union[MachineDcom, DcomApplication]

RIGHT_NAMES = {
    "execute": ElementaryRight.EXECUTE,
    "execute-local": ElementaryRight.EXECUTE_LOCAL,
    "execute-remote": ElementaryRight.EXECUTE_REMOTE,
    "activate-local": ElementaryRight.ACTIVATE_LOCAL,
    "activate-remote": ElementaryRight.ACTIVATE_REMOTE,
    "e": ElementaryRight.EXECUTE,
    "el": ElementaryRight.EXECUTE_LOCAL,
    "er": ElementaryRight.EXECUTE_REMOTE,
    "al": ElementaryRight.ACTIVATE_LOCAL,
    "ar": ElementaryRight.ACTIVATE_REMOTE,
}
LONG_RIGHT_NAMES = ", ".join(name for name in RIGHT_NAMES if len(name) > 2)


@dataclass
class AclContext:
    """Collaborators for one command invocation."""

    config: Config
    store: BlobStore
    resolver: WellKnownPrincipalResolver
    engine: AclMutationEngine

    def machine(self, host: Optional[str] = None) -> MachineDcom:
        catalog = self.store if isinstance(self.store, SettingsCatalog) else None
        return MachineDcom(self.engine, host or self.config.store.host, catalog)

    def holder(self, app: Optional[str], host: Optional[str] = None) -> AclHolder:
        """The machine on ``host``, or application ``app`` on it."""
        machine = self.machine(host)
        if app is None:
            return machine
        return DcomApplication.from_handle(machine, app)


class AclCommand:
    """Base class for acl commands."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or get_console()

    def build_context(self, ctx: typer.Context) -> AclContext:
        """Load configuration and build the store and engine it selects."""
        options = ctx.find_root().obj or {}
        config_path: Optional[Path] = options.get("config_path")
        config = load_config(config_path)
        if options.get("verbose"):
            configure_logging(level="DEBUG")
        else:
            log_file = Path(config.logging.file) if config.logging.file else None
            configure_logging(config.logging.level, log_file, config.logging.console)

        store = create_store(config)
        resolver = create_resolver(config, store)
        return AclContext(config, store, resolver, AclMutationEngine(store, resolver))

    # === Parsing ===

    @staticmethod
    def parse_principal(resolver: WellKnownPrincipalResolver, text: str) -> PrincipalId:
        """SID string or account name to a principal.

        Raises:
            typer.BadParameter: If nothing matches.
        """
        try:
            return resolver.lookup_principal(text)
        except LookupError as e:
            raise typer.BadParameter(str(e)) from e

    @staticmethod
    def parse_rights(names: Sequence[str]) -> List[ElementaryRight]:
        rights: List[ElementaryRight] = []
        for name in names:
            for part in name.split(","):
                key = part.strip().lower().replace("_", "-")
                if not key:
                    continue
                if key not in RIGHT_NAMES:
                    raise typer.BadParameter(
                        f"Unknown right '{part}', expected one of {LONG_RIGHT_NAMES}"
                    )
                rights.append(RIGHT_NAMES[key])
        return rights

    @staticmethod
    def keys_for(
        holder: AclHolder,
        category: Optional[PermissionCategory],
        scope: Optional[PermissionScope],
    ) -> List[AclKey]:
        """Keys selected by --category/--scope for ``holder``.

        Application targets ignore an omitted scope; machine targets default
        to both scopes. An explicit key that does not exist for the target
        is passed through so the engine reports it.
        """
        is_machine = isinstance(holder, MachineDcom)
        if category is not None and scope is not None:
            return [AclKey(category, scope)]
        if category is not None and not is_machine:
            return [AclKey(category, PermissionScope.NONE)]
        candidates = MACHINE_KEYS if is_machine else APPLICATION_KEYS
        return [
            key
            for key in candidates
            if (category is None or key.category == category)
            and (scope is None or key.scope == scope)
        ] or [AclKey(category or PermissionCategory.ACCESS, scope or PermissionScope.NONE)]

    @staticmethod
    def single_key(
        holder: AclHolder,
        category: PermissionCategory,
        scope: Optional[PermissionScope],
    ) -> AclKey:
        """The one key a mutation targets; machines default to the Default scope."""
        if scope is None:
            scope = (
                PermissionScope.DEFAULT
                if isinstance(holder, MachineDcom)
                else PermissionScope.NONE
            )
        return AclKey(category, scope)

    # === Output ===

    def entries_table(self, title: str, entries: Sequence[AccessControlEntry]) -> Table:
        table = Table(title=title, show_lines=False)
        table.add_column("Principal", style="cyan")
        table.add_column("Type")
        table.add_column("Rights")
        table.add_column("Mask", justify="right", style="dim")
        for entry in entries:
            style = "red" if entry.access_type == AccessType.DENY else "green"
            table.add_row(
                entry.user or str(entry.principal),
                f"[{style}]{entry.access_type.value}[/{style}]",
                entry.flag_summary(),
                f"0x{int(entry.effective_rights):x}",
            )
        return table

    def print_success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def print_info(self, message: str) -> None:
        self.console.print(f"[cyan]ℹ[/cyan] {message}")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")


def category_option(help_text: str = "Permission category") -> Any:
    return typer.Option(None, "--category", "-C", help=help_text, case_sensitive=False)


def scope_option() -> Any:
    return typer.Option(
        None,
        "--scope",
        "-s",
        help="default or limits (machine lists only)",
        case_sensitive=False,
    )


def app_option(flag: str = "--app", help_text: str = "Application id (AppID GUID)") -> Any:
    return typer.Option(None, flag, help=help_text)


def host_option(
    flag: str = "--host", help_text: str = "Remote host; local machine if omitted"
) -> Any:
    return typer.Option(None, flag, help=help_text)
