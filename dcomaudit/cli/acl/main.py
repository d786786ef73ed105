"""ACL subcommands.

Provides tools for auditing and editing DCOM permission lists:
- show: Display permission lists
- grant: Write an allow or deny entry
- revoke: Remove a principal's entries
- reset: Make an application use the machine default
- diff: Compare two permission lists
- copy: Copy permission lists between hosts or applications
"""

from __future__ import annotations

import typer

from dcomaudit.cli.acl import compare, edit, show

app = typer.Typer(
    name="acl",
    help="DCOM launch and access permission lists",
    add_completion=False,
)

app.command("show")(show.command)
app.command("grant")(edit.grant_command)
app.command("revoke")(edit.revoke_command)
app.command("reset")(edit.reset_command)
app.command("diff")(compare.diff_command)
app.command("copy")(compare.copy_command)


@app.callback()
def main() -> None:
    """Audit and edit DCOM permission lists.

    Machine-wide lists come in Default and Limits scopes for both the
    Access and Launch categories. Applications have one Access and one
    Launch list, each of which may fall back to the machine Default.

    For help on specific commands:
        dcomaudit acl <command> --help
    """
