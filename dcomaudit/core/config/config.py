"""
Main configuration class.

Maps the dcomaudit.yaml layout onto nested dataclasses. Validation runs in
__post_init__ so a bad file fails at load time instead of at first use.
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from dcomaudit.core.exceptions import ConfigValidationError

STORE_BACKENDS = ("snapshot", "registry", "memory")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class StoreConfig:
    """Descriptor store configuration."""

    backend: str = "snapshot"  # snapshot, registry, memory
    snapshot_path: str = "dcom_snapshot.json"
    host: Optional[str] = None  # None means the local machine

    def __post_init__(self) -> None:
        if self.backend not in STORE_BACKENDS:
            raise ConfigValidationError(
                f"Unknown store backend '{self.backend}', "
                f"expected one of {', '.join(STORE_BACKENDS)}",
                field="store.backend",
                value=self.backend,
            )
        if self.backend == "snapshot" and not self.snapshot_path:
            raise ConfigValidationError(
                "store.snapshot_path is required for the snapshot backend",
                field="store.snapshot_path",
                value=self.snapshot_path,
            )
        if self.host is not None and not self.host.strip():
            self.host = None


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True

    def __post_init__(self) -> None:
        self.level = self.level.upper()
        if self.level not in LOG_LEVELS:
            raise ConfigValidationError(
                f"Unknown log level '{self.level}'",
                field="logging.level",
                value=self.level,
            )


@dataclass
class PrincipalConfig:
    """Display-name overrides, keyed by SID string."""

    names: Dict[str, str] = field(default_factory=dict)


@dataclass
class SyncConfig:
    """ACL copy behaviour."""

    stop_on_error: bool = False


@dataclass
class Config:
    """Complete dcomaudit configuration."""

    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    principals: PrincipalConfig = field(default_factory=PrincipalConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    _base_path: Path = field(default_factory=Path.cwd, repr=False)

    @property
    def snapshot_file(self) -> Path:
        """Snapshot path resolved against the config file's directory."""
        path = Path(self.store.snapshot_path)
        if path.is_absolute():
            return path
        return self._base_path / path

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        result: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if key.startswith("_"):
                continue
            result[key] = value
        return result

    @staticmethod
    def _filter_fields(cls_type: Any, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Filter dict to only keys that match dataclass fields, handling None."""
        if not data:
            return {}
        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"Expected a mapping for {cls_type.__name__}", value=data
            )
        valid_keys = {f.name for f in fields(cls_type)}
        return {k: v for k, v in data.items() if k in valid_keys}

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], base_path: Optional[Path] = None
    ) -> "Config":
        """Create Config from dictionary."""
        from dcomaudit.core.config.loaders import expand_env_vars

        data = expand_env_vars(data or {})
        principals = cls._filter_fields(PrincipalConfig, data.get("principals"))
        config = cls(
            store=StoreConfig(**cls._filter_fields(StoreConfig, data.get("store"))),
            logging=LoggingConfig(
                **cls._filter_fields(LoggingConfig, data.get("logging"))
            ),
            principals=PrincipalConfig(
                names={str(k): str(v) for k, v in (principals.get("names") or {}).items()}
            ),
            sync=SyncConfig(**cls._filter_fields(SyncConfig, data.get("sync"))),
        )
        if base_path is not None:
            config._base_path = base_path
        return config
