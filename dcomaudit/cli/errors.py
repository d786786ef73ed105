"""Error handling shared by every CLI command."""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable

import typer

from dcomaudit.cli.console import ErrorRenderer
from dcomaudit.core.exceptions import DcomAuditError
from dcomaudit.core.logging import get_logger

logger = get_logger(__name__)


def safe_cli_command(
    operation_name: str,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator to wrap CLI commands with user-friendly error handling.

    Any exception is rendered with its error code and fix hints, logged,
    and turned into exit code 1. Unexpected exceptions are logged with
    their traceback.

    Args:
        operation_name: Human-readable operation name for error context

    Returns:
        Decorator function that wraps the command with error handling
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except (typer.Exit, typer.Abort, typer.BadParameter):
                raise
            except DcomAuditError as e:
                ErrorRenderer.render(e, context=f"While running {operation_name}")
                logger.error(
                    f"[{operation_name}] failed",
                    error=type(e).__name__,
                    code=e.error_code,
                )
                raise typer.Exit(code=1)
            except Exception as e:
                ErrorRenderer.render(e, context=f"While running {operation_name}")
                logger.exception(f"[{operation_name}] failed", error=type(e).__name__)
                raise typer.Exit(code=1)

        return wrapper

    return decorator
