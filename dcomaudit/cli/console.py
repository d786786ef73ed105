"""Console output helpers.

Provides one shared rich Console and the ErrorRenderer used by every
command to show "Why" and "How to fix" sections instead of a traceback.
"""

from __future__ import annotations

import traceback
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from dcomaudit.core.exceptions import AggregateFailureError, DcomAuditError, get_root_cause

_console: Console | None = None

# Set by the --verbose flag
_verbose_mode: bool = False


def get_console() -> Console:
    """Get shared console instance (lazy-loaded)."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Optional[Console]) -> None:
    """Replace the shared console; None restores lazy creation."""
    global _console
    _console = console


def set_verbose_mode(enabled: bool) -> None:
    global _verbose_mode
    _verbose_mode = enabled


def is_verbose_mode() -> bool:
    return _verbose_mode


def tip(message: str) -> None:
    """Display a dimmed tip line."""
    get_console().print(f"  [dim]Tip: {message}[/dim]")


class ErrorRenderer:
    """Renders an exception as a panel with its error code and fix hints.

    Example
    -------
        try:
            engine.remove_rights(target, key, principal)
        except DcomAuditError as e:
            ErrorRenderer.render(e)
            raise typer.Exit(1)
    """

    @staticmethod
    def render(
        exc: BaseException,
        context: str = "",
        show_traceback: Optional[bool] = None,
    ) -> None:
        """Render an exception as a helpful error panel.

        Args:
            exc: Exception to render
            context: Optional context line (e.g., "While running acl grant")
            show_traceback: Override for verbose mode (None = use global setting)
        """
        if isinstance(exc, DcomAuditError):
            error_code = exc.error_code
            why = exc.why_it_happened
            how_to_fix = exc.how_to_fix
        else:
            error_code = "DA-ERR-999"
            why = f"Unexpected {type(exc).__name__}"
            how_to_fix = ["Re-run with --verbose and report the traceback"]

        root_cause = get_root_cause(exc)
        root_message = str(root_cause) if root_cause is not exc else None

        content = ErrorRenderer._build_error_content(
            message=str(exc),
            context=context,
            why=why,
            how_to_fix=how_to_fix,
            root_message=root_message,
            failures=exc.failures if isinstance(exc, AggregateFailureError) else [],
        )
        get_console().print(
            Panel(
                content,
                title=f"[bold red]Error: {error_code}[/bold red]",
                border_style="red",
                padding=(1, 2),
            )
        )

        should_show = show_traceback if show_traceback is not None else is_verbose_mode()
        if should_show:
            ErrorRenderer._render_traceback(exc)

    @staticmethod
    def _build_error_content(
        message: str,
        context: str,
        why: str,
        how_to_fix: List[str],
        root_message: Optional[str],
        failures: List[DcomAuditError],
    ) -> Text:
        text = Text()
        if context:
            text.append(f"{context}\n\n", style="dim")

        text.append(message, style="bold red")
        text.append("\n\n")

        if root_message and root_message != message:
            text.append("Root cause: ", style="bold yellow")
            text.append(root_message, style="yellow")
            text.append("\n\n")

        if failures:
            text.append("Failed operations:\n", style="bold yellow")
            for failure in failures:
                text.append(f"  - [{failure.error_code}] {failure}\n", style="yellow")
            text.append("\n")

        text.append("Why it happened:\n", style="bold cyan")
        text.append(f"  {why}\n\n", style="cyan")

        text.append("How to fix:\n", style="bold green")
        for fix in how_to_fix:
            text.append(f"  - {fix}\n", style="green")
        return text

    @staticmethod
    def _render_traceback(exc: BaseException) -> None:
        console = get_console()
        console.print()
        console.print("[dim]--- Traceback (--verbose mode) ---[/dim]")
        tb_text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        console.print(tb_text, style="dim", markup=False, highlight=False)
