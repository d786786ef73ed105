"""
Configuration Management for dcomaudit.

    from dcomaudit.core.config import load_config, create_store

    config = load_config()
    store = create_store(config)
"""

from dcomaudit.core.config.config import (
    Config,
    LoggingConfig,
    PrincipalConfig,
    StoreConfig,
    SyncConfig,
)
from dcomaudit.core.config.loaders import (
    create_resolver,
    create_store,
    expand_env_vars,
    load_config,
    save_config,
)

__all__ = [
    "Config",
    "LoggingConfig",
    "PrincipalConfig",
    "StoreConfig",
    "SyncConfig",
    "create_resolver",
    "create_store",
    "expand_env_vars",
    "load_config",
    "save_config",
]
