"""dcomaudit - audit and edit DCOM launch and access permissions.

The engine reads and writes the security descriptors that hold the
machine-wide and per-application DCOM permission lists, presenting them
as AccessControlEntry values with Local/Remote Launch, Activation and
Access flags.
"""

__version__ = "0.3.0"
__all__ = ["__version__"]
