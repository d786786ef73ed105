"""
Core infrastructure for dcomaudit.

The innermost layer: exceptions, structured logging and configuration.
Nothing here imports from the acl, store or machine packages.
"""
