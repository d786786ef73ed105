"""CLI package entry point.

Allows running the CLI as: python -m dcomaudit.cli
"""

from dcomaudit.cli.main import cli_main

if __name__ == "__main__":
    cli_main()
