"""ACL command group - DCOM permission auditing and editing."""

from __future__ import annotations

from dcomaudit.cli.acl.main import app as acl_app

__all__ = ["acl_app"]
