"""
SQLite shard database for the Vault server.

Each shard is one SQLite file. Group 0 holds the registry tables, group 1
holds the data tables. Connections are created per operation and closed on
every exit path; writes use explicit BEGIN IMMEDIATE transactions.

Invariants:
    - A transaction never spans two shards
    - Every connection is closed when its context exits, including on error
    - Local row ids are allocated by AUTOINCREMENT and never reused

How to change safely:
    - Schema changes must be additive (new tables, new nullable columns)
    - Bump SCHEMA_VERSION and keep CREATE ... IF NOT EXISTS idempotent

Registry schema (group 0):
    registry_users:        id, alias, email, name, state, verifier
    registry_orgs:         id, alias, name, state
    registry_invitations:  id, uid, id_object, id_creator, invitee,
                           expiration, state

Data schema (group 1):
    users, orgs, stores, store_entries, keys, invitations
    registry_org_stores:    id_org, id_store, store_alias, state
    registry_object_users:  id_object, id_user, username, state, roles,
                            mgr_roles, mgr_invites, ciphertext
    registry_user_objects:  id_user, id_object, alias, type, favorite
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import ErrorCode, VaultError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_METADATA_COLUMNS = """
                creator INTEGER,
                created INTEGER NOT NULL,
                modifier INTEGER,
                modified INTEGER
"""

REGISTRY_SCHEMA = f"""
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS registry_users (
        id INTEGER PRIMARY KEY,
        alias TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        name TEXT,
        state INTEGER NOT NULL DEFAULT 0,
        verifier BLOB
    );

    CREATE TABLE IF NOT EXISTS registry_orgs (
        id INTEGER PRIMARY KEY,
        alias TEXT NOT NULL UNIQUE,
        name TEXT,
        state INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS registry_invitations (
        id INTEGER PRIMARY KEY,
        uid TEXT NOT NULL UNIQUE,
        id_object INTEGER NOT NULL,
        id_creator INTEGER NOT NULL,
        invitee TEXT NOT NULL,
        expiration INTEGER NOT NULL,
        state INTEGER NOT NULL DEFAULT 0
    );

    CREATE INDEX IF NOT EXISTS idx_registry_invitations_object
        ON registry_invitations(id_object, state);

    -- At most one pending invitation per (object, invitee)
    CREATE UNIQUE INDEX IF NOT EXISTS idx_registry_invitations_pending
        ON registry_invitations(id_object, invitee) WHERE state = 0;

    INSERT OR IGNORE INTO schema_version (version, applied_at)
    VALUES ({SCHEMA_VERSION}, strftime('%s', 'now'));
"""

DATA_SCHEMA = f"""
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        alias TEXT NOT NULL,
        email TEXT NOT NULL,
        name TEXT,
        verifier BLOB,
        state INTEGER NOT NULL DEFAULT 0,
        last_password_change INTEGER,
        {_METADATA_COLUMNS}
    );

    CREATE TABLE IF NOT EXISTS orgs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        alias TEXT NOT NULL,
        name TEXT,
        {_METADATA_COLUMNS}
    );

    CREATE TABLE IF NOT EXISTS stores (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        id_org INTEGER NOT NULL,
        alias TEXT NOT NULL,
        name TEXT,
        {_METADATA_COLUMNS}
    );

    CREATE TABLE IF NOT EXISTS store_entries (
        id_store INTEGER NOT NULL,
        id INTEGER NOT NULL,
        id_parent INTEGER NOT NULL DEFAULT 0,
        type INTEGER NOT NULL,
        title TEXT NOT NULL,
        ciphertext BLOB,
        {_METADATA_COLUMNS},
        PRIMARY KEY (id_store, id)
    );

    CREATE INDEX IF NOT EXISTS idx_store_entries_parent
        ON store_entries(id_store, id_parent);

    CREATE TABLE IF NOT EXISTS store_entry_ids (
        id INTEGER PRIMARY KEY AUTOINCREMENT
    );

    CREATE TABLE IF NOT EXISTS keys (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ciphertext BLOB NOT NULL,
        expiration INTEGER NOT NULL,
        {_METADATA_COLUMNS}
    );

    CREATE TABLE IF NOT EXISTS invitations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        uid TEXT NOT NULL UNIQUE,
        id_object INTEGER NOT NULL,
        invitee TEXT NOT NULL,
        message TEXT,
        roles TEXT,
        id_key INTEGER,
        key_pick TEXT,
        expiration INTEGER NOT NULL,
        state INTEGER NOT NULL DEFAULT 0,
        {_METADATA_COLUMNS}
    );

    CREATE TABLE IF NOT EXISTS registry_org_stores (
        id_org INTEGER NOT NULL,
        id_store INTEGER NOT NULL,
        store_alias TEXT NOT NULL,
        state INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (id_org, id_store),
        UNIQUE (id_org, store_alias)
    );

    CREATE TABLE IF NOT EXISTS registry_object_users (
        id_object INTEGER NOT NULL,
        id_user INTEGER NOT NULL,
        username TEXT NOT NULL,
        state INTEGER NOT NULL DEFAULT 0,
        roles TEXT,
        mgr_roles INTEGER NOT NULL DEFAULT 0,
        mgr_invites INTEGER NOT NULL DEFAULT 0,
        ciphertext BLOB,
        {_METADATA_COLUMNS},
        PRIMARY KEY (id_object, id_user)
    );

    CREATE TABLE IF NOT EXISTS registry_user_objects (
        id_user INTEGER NOT NULL,
        id_object INTEGER NOT NULL,
        alias TEXT NOT NULL,
        type INTEGER NOT NULL,
        favorite INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (id_user, id_object)
    );

    INSERT OR IGNORE INTO schema_version (version, applied_at)
    VALUES ({SCHEMA_VERSION}, strftime('%s', 'now'));
"""


def now_seconds() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())


class ShardDatabase:
    """One SQLite shard.

    Connections are created per operation. SQLite handles concurrent access
    through its own locking (WAL mode recommended in production).

    Example:
        >>> db = ShardDatabase(0, 0, "/var/lib/vault/registry.db")
        >>> db.initialize()
        >>> with db.connection() as conn:
        ...     conn.execute("SELECT COUNT(*) FROM registry_users").fetchone()
    """

    def __init__(
        self,
        group: int,
        shard: int,
        path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the shard.

        Args:
            group: Shard group (0 = registry, 1 = data)
            shard: Shard id within the group
            path: SQLite file path
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.group = group
        self.shard = shard
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    def __repr__(self) -> str:
        return f"ShardDatabase(group={self.group}, shard={self.shard}, path={str(self.path)!r})"

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection to this shard.

        Yields:
            SQLite connection in autocommit mode

        Raises:
            VaultError: 5100 if the database cannot be opened
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to open shard {self.group}:{self.shard}: {e}")
            raise VaultError(ErrorCode.DATABASE) from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a connection inside a write transaction.

        Commits when the block exits normally, rolls back on any exception.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def initialize(self) -> None:
        """Create this shard's schema if missing."""
        schema = REGISTRY_SCHEMA if self.group == 0 else DATA_SCHEMA
        with self.connection() as conn:
            conn.executescript(schema)
        logger.info(
            "Initialized shard",
            extra={"group": self.group, "shard": self.shard, "path": str(self.path)},
        )
