"""
Configuration management for the Vault server.

Configuration comes from one JSON file with these sections:
- bind: HTTP listen address
- session.store: cookie session settings (signing hash, encryption secret)
- database: sharded database descriptor (group 0 = registry, group 1 = data)
- queue: AMQP broker for outbound invitation messages
- invitations, stores: engine defaults
- logging: level and format

A small set of environment variables override file values for containers:
VAULT_CONFIG, VAULT_LOG_LEVEL, VAULT_LOG_FORMAT, VAULT_AMQP_URL.

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged or exposed in error messages
    - A file that cannot be opened exits with 1, one that cannot be parsed with 2

How to change safely:
    - Add new settings with defaults that keep old files valid
    - Keep JSON key names stable; they are shared with deployed files
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.json"


class EnvOverrides(BaseSettings):
    """Environment variables that override file values (VAULT_ prefix)."""

    config_path: str | None = Field(
        default=None, validation_alias="VAULT_CONFIG", description="Configuration file path"
    )
    log_level: str | None = Field(default=None, description="Logging level")
    log_format: str | None = Field(default=None, description="json or text")
    amqp_url: str | None = Field(default=None, description="AMQP broker URL")

    model_config = {"env_prefix": "VAULT_"}


@dataclass(frozen=True)
class BindConfig:
    """HTTP listen address.

    Attributes:
        host: Interface to bind
        port: TCP port
    """

    host: str = "127.0.0.1"
    port: int = 3000

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BindConfig:
        return cls(
            host=str(data.get("host", "127.0.0.1")),
            port=int(data.get("port", 3000)),
        )


@dataclass(frozen=True)
class CookieOptions:
    """Attributes set on the session cookie."""

    path: str = "/"
    domain: str | None = None
    max_age: int = 3600
    secure: bool = False
    http_only: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CookieOptions:
        return cls(
            path=str(data.get("path", "/")),
            domain=data.get("domain") or None,
            max_age=int(data.get("maxage", 3600)),
            secure=bool(data.get("secure", False)),
            http_only=bool(data.get("httponly", True)),
        )


@dataclass(frozen=True)
class CookieConfig:
    """Cookie session store settings.

    Attributes:
        id: Cookie name
        hash: Secret used to authenticate the cookie
        encryption: Secret used to encrypt the cookie
        options: Cookie attributes
    """

    id: str = "vault-session"
    hash: str = "development-only-hash-secret"
    encryption: str = "development-only-encryption-secret"
    options: CookieOptions = field(default_factory=CookieOptions)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CookieConfig:
        return cls(
            id=str(data.get("id", "vault-session")),
            hash=str(data.get("hash", cls.hash)),
            encryption=str(data.get("encryption", cls.encryption)),
            options=CookieOptions.from_dict(data.get("options") or {}),
        )


@dataclass(frozen=True)
class SessionStoreConfig:
    """HTTP session store (only "cookie" is supported)."""

    type: str = "cookie"
    cookie: CookieConfig = field(default_factory=CookieConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionStoreConfig:
        return cls(
            type=str(data.get("type", "cookie")),
            cookie=CookieConfig.from_dict(data.get("cookie") or {}),
        )


@dataclass(frozen=True)
class ShardConfig:
    """One SQLite shard.

    Attributes:
        group: Shard group (0 = registry, 1 = data)
        shard: Shard id within the group
        file: SQLite file name, relative to DatabaseConfig.path
    """

    group: int
    shard: int
    file: str


@dataclass(frozen=True)
class DatabaseConfig:
    """Sharded database descriptor.

    Attributes:
        path: Directory holding the shard files
        shards: Every configured shard
        wal_mode: Enable SQLite WAL journal mode
        busy_timeout_ms: SQLite busy timeout per operation
    """

    path: str = "./data"
    shards: tuple[ShardConfig, ...] = (
        ShardConfig(0, 0, "registry.db"),
        ShardConfig(1, 0, "data-0.db"),
        ShardConfig(1, 1, "data-1.db"),
    )
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DatabaseConfig:
        """Parse the "database" section.

        Each group lists shards by id range; the file name may contain
        "{shard}" which is replaced by the shard id.
        """
        groups = data.get("shard-groups")
        if groups is None:
            shards = cls.shards
        else:
            expanded: list[ShardConfig] = []
            for group, group_data in enumerate(groups):
                for shard_data in group_data.get("shards", []):
                    start, end = shard_data.get("range", [0, 0])
                    template = shard_data.get("connection", {}).get("file")
                    if not template:
                        template = f"group{group}-{{shard}}.db"
                    for shard in range(int(start), int(end) + 1):
                        expanded.append(ShardConfig(group, shard, template.format(shard=shard)))
            shards = tuple(expanded)

        return cls(
            path=str(data.get("path", "./data")),
            shards=shards,
            wal_mode=bool(data.get("wal_mode", True)),
            busy_timeout_ms=int(data.get("busy_timeout_ms", 5000)),
        )

    @classmethod
    def local(cls, path: str, data_shards: int = 2, wal_mode: bool = False) -> DatabaseConfig:
        """Single registry shard plus data_shards data shards under path."""
        shards = [ShardConfig(0, 0, "registry.db")]
        shards.extend(ShardConfig(1, shard, f"data-{shard}.db") for shard in range(data_shards))
        return cls(path=path, shards=tuple(shards), wal_mode=wal_mode)


@dataclass(frozen=True)
class QueueConfig:
    """Outbound AMQP queue.

    Attributes:
        url: AMQP broker URL (None selects the in-memory queue)
        name: Default queue name for invitation messages
        timeout: Per-publish timeout in seconds
    """

    url: str | None = None
    name: str = "action-incoming"
    timeout: float = 5.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueConfig:
        return cls(
            url=EnvOverrides().amqp_url or data.get("url") or None,
            name=str(data.get("name", "action-incoming")),
            timeout=float(data.get("timeout", 5.0)),
        )


@dataclass(frozen=True)
class InvitationConfig:
    """Invitation defaults.

    Attributes:
        expiry_days: Default lifetime of a new invitation
        max_expiry_days: Largest lifetime a caller may request
        sweep_interval_seconds: Period of the expiry sweeper (0 disables it)
    """

    expiry_days: int = 3
    max_expiry_days: int = 30
    sweep_interval_seconds: int = 3600

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InvitationConfig:
        return cls(
            expiry_days=int(data.get("expiry_days", 3)),
            max_expiry_days=int(data.get("max_expiry_days", 30)),
            sweep_interval_seconds=int(data.get("sweep_interval_seconds", 3600)),
        )


@dataclass(frozen=True)
class StoreConfig:
    """Store session defaults."""

    session_minutes: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreConfig:
        return cls(session_minutes=int(data.get("session_minutes", 5)))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format ("json" or "text")
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObservabilityConfig:
        env = EnvOverrides()
        return cls(
            log_level=env.log_level or data.get("level", "INFO"),
            log_format=env.log_format or data.get("format", "json"),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Complete server configuration.

    Example:
        >>> config = ServerConfig.from_file("config.json")
        >>> config.validate()
        >>> config.bind.port
        3000
    """

    bind: BindConfig = field(default_factory=BindConfig)
    session: SessionStoreConfig = field(default_factory=SessionStoreConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    invitations: InvitationConfig = field(default_factory=InvitationConfig)
    stores: StoreConfig = field(default_factory=StoreConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerConfig:
        """Build configuration from a parsed JSON document."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a JSON object")

        try:
            return cls(
                bind=BindConfig.from_dict(data.get("bind") or {}),
                session=SessionStoreConfig.from_dict((data.get("session") or {}).get("store") or {}),
                database=DatabaseConfig.from_dict(data.get("database") or {}),
                queue=QueueConfig.from_dict(data.get("queue") or {}),
                invitations=InvitationConfig.from_dict(data.get("invitations") or {}),
                stores=StoreConfig.from_dict(data.get("stores") or {}),
                observability=ObservabilityConfig.from_dict(data.get("logging") or {}),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, path: str | Path) -> ServerConfig:
        """Load configuration from a JSON file.

        Raises:
            ConfigError: exit_code 1 if the file cannot be opened,
                2 if it cannot be parsed
        """
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(
                f"Cannot open configuration file {path}: {e.strerror}",
                exit_code=ConfigError.CANNOT_OPEN,
            ) from e

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Cannot parse configuration file {path}: {e}") from e

        return cls.from_dict(data)

    @classmethod
    def load(cls, path: str | None = None) -> ServerConfig:
        """Load from path, VAULT_CONFIG, or the default file name."""
        return cls.from_file(path or EnvOverrides().config_path or DEFAULT_CONFIG_PATH)

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If configuration is invalid
        """
        errors = []

        if not 0 < self.bind.port < 65536:
            errors.append(f"bind.port out of range: {self.bind.port}")

        if self.session.type != "cookie":
            errors.append(f"Unsupported session store type: {self.session.type}")
        if not self.session.cookie.hash or not self.session.cookie.encryption:
            errors.append("session.store.cookie requires both hash and encryption secrets")

        groups = {(shard.group, shard.shard) for shard in self.database.shards}
        if (0, 0) not in groups:
            errors.append("database requires a registry shard (group 0, shard 0)")
        if not any(group == 1 for group, _ in groups):
            errors.append("database requires at least one data shard (group 1)")
        if len(groups) != len(self.database.shards):
            errors.append("database lists the same shard more than once")

        if not 1 <= self.invitations.expiry_days <= self.invitations.max_expiry_days:
            errors.append("invitations.expiry_days must be within [1, max_expiry_days]")
        if self.invitations.sweep_interval_seconds < 0:
            errors.append("invitations.sweep_interval_seconds must not be negative")
        if self.stores.session_minutes <= 0:
            errors.append("stores.session_minutes must be positive")
        if self.queue.timeout <= 0:
            errors.append("queue.timeout must be positive")

        if errors:
            raise ConfigError("Configuration validation failed:\n" + "\n".join(errors))

    def log_config(self) -> None:
        """Log configuration (secrets excluded)."""
        logger.info(
            "Server configuration",
            extra={
                "bind": f"{self.bind.host}:{self.bind.port}",
                "session_store": self.session.type,
                "cookie": self.session.cookie.id,
                "database_path": self.database.path,
                "shards": len(self.database.shards),
                "queue": "amqp" if self.queue.url else "memory",
                "queue_name": self.queue.name,
                "invitation_expiry_days": self.invitations.expiry_days,
                "store_session_minutes": self.stores.session_minutes,
                "log_level": self.observability.log_level,
            },
        )
