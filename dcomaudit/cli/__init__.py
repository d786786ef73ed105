"""Command-line interface for dcomaudit."""
