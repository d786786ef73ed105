"""
Configuration Loading Functions.

Handles loading dcomaudit.yaml, environment variable expansion and
overrides, and building the configured collaborators (store, resolver).

Environment overrides
---------------------
    DCOMAUDIT_STORE_BACKEND   store.backend
    DCOMAUDIT_SNAPSHOT        store.snapshot_path
    DCOMAUDIT_HOST            store.host
    DCOMAUDIT_LOG_LEVEL       logging.level
    DCOMAUDIT_LOG_FILE        logging.file
"""

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import yaml

from dcomaudit.core.config.config import LOG_LEVELS, STORE_BACKENDS, Config
from dcomaudit.core.exceptions import ConfigValidationError
from dcomaudit.core.logging import get_logger

if TYPE_CHECKING:
    from dcomaudit.acl.principal import WellKnownPrincipalResolver
    from dcomaudit.store.base import BlobStore

logger = get_logger(__name__)

CONFIG_FILENAMES = ("dcomaudit.yaml", "dcomaudit.yml")


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values.

    Strings may use ${VAR_NAME} or ${VAR_NAME:default}.

    Args:
        value: Configuration value (string, dict, list, or primitive)

    Returns:
        Value with all environment variables expanded
    """
    if isinstance(value, str):
        pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

        def replace_env_var(match: re.Match) -> str:
            default_value = match.group(2) if match.group(2) is not None else ""
            return os.environ.get(match.group(1), default_value)

        return re.sub(pattern, replace_env_var, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


def _apply_env_overrides(config: Config) -> Config:
    """
    Apply environment variable overrides to configuration.

    Environment variables take precedence over config file values.
    """
    backend = os.environ.get("DCOMAUDIT_STORE_BACKEND")
    if backend:
        if backend not in STORE_BACKENDS:
            raise ConfigValidationError(
                f"DCOMAUDIT_STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}",
                field="store.backend",
                value=backend,
            )
        config.store.backend = backend

    snapshot = os.environ.get("DCOMAUDIT_SNAPSHOT")
    if snapshot:
        config.store.snapshot_path = snapshot

    host = os.environ.get("DCOMAUDIT_HOST")
    if host:
        config.store.host = host

    level = os.environ.get("DCOMAUDIT_LOG_LEVEL")
    if level:
        if level.upper() not in LOG_LEVELS:
            raise ConfigValidationError(
                f"DCOMAUDIT_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}",
                field="logging.level",
                value=level,
            )
        config.logging.level = level.upper()

    log_file = os.environ.get("DCOMAUDIT_LOG_FILE")
    if log_file:
        config.logging.file = log_file
    return config


def load_config(
    config_path: Optional[Path] = None, base_path: Optional[Path] = None
) -> Config:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration precedence: 1. Env vars, 2. YAML file, 3. Defaults

    Args:
        config_path: Path to config file. Defaults to dcomaudit.yaml in base_path.
        base_path: Base path for relative paths. Defaults to current directory.

    Returns:
        Config object with all settings.

    Raises:
        ConfigValidationError: If the file is not valid YAML or a value is invalid.
    """
    base_path = base_path or Path.cwd()

    if config_path is None:
        for filename in CONFIG_FILENAMES:
            candidate = base_path / filename
            if candidate.exists():
                config_path = candidate
                break
        else:
            return _create_default_config(base_path)
    if not config_path.exists():
        logger.debug("Config file not found, using defaults", path=config_path)
        return _create_default_config(base_path)

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigValidationError(
            f"Could not parse {config_path.name}: {e}", value=str(config_path)
        ) from e
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"{config_path.name} must contain a mapping at the top level",
            value=str(config_path),
        )

    config = Config.from_dict(data, config_path.parent)
    return _apply_env_overrides(config)


def _create_default_config(base_path: Path) -> Config:
    config = Config()
    config._base_path = base_path
    return _apply_env_overrides(config)


def save_config(config: Config, config_path: Optional[Path] = None) -> None:
    """Save configuration to YAML file."""
    if config_path is None:
        config_path = config._base_path / CONFIG_FILENAMES[0]
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)


def create_store(config: Config) -> "BlobStore":
    """Build the descriptor store selected by store.backend."""
    backend = config.store.backend
    if backend == "snapshot":
        from dcomaudit.store.snapshot import SnapshotBlobStore

        return SnapshotBlobStore(config.snapshot_file)
    if backend == "registry":
        from dcomaudit.store.registry import WindowsRegistryStore

        return WindowsRegistryStore()
    from dcomaudit.store.memory import InMemoryBlobStore

    return InMemoryBlobStore()


def create_resolver(
    config: Config, store: Optional["BlobStore"] = None
) -> "WellKnownPrincipalResolver":
    """Build the principal resolver, layering configured names over store names."""
    from dcomaudit.acl.principal import WellKnownPrincipalResolver

    names: dict[str, str] = {}
    if store is not None:
        names.update(store.principal_names())
    names.update(config.principals.names)
    return WellKnownPrincipalResolver(names)
