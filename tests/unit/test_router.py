"""
Unit tests for the shard router and shard databases.

Tests cover:
- Building from configuration
- Routing ids to shards
- Transactions and schema creation
"""

import os

import pytest

from vaultapi.vault_server.config import DatabaseConfig, ShardConfig
from vaultapi.vault_server.core.ids import GROUP_DATA, GROUP_REGISTRY, ObjectType, pack
from vaultapi.vault_server.errors import ErrorCode, InitError, VaultError
from vaultapi.vault_server.storage import ShardRouter


class TestBuild:
    """Tests for ShardRouter.build()."""

    def test_build_local(self, router, data_dir):
        assert router.registry().group == GROUP_REGISTRY
        assert [db.shard for db in router.data_shards()] == [0, 1]
        assert os.path.exists(os.path.join(data_dir, "registry.db"))

    def test_missing_registry(self, data_dir):
        config = DatabaseConfig(path=data_dir, shards=(ShardConfig(1, 0, "data-0.db"),))
        with pytest.raises(InitError):
            ShardRouter.build(config)

    def test_missing_data_group(self, data_dir):
        config = DatabaseConfig(path=data_dir, shards=(ShardConfig(0, 0, "registry.db"),))
        with pytest.raises(InitError):
            ShardRouter.build(config)

    def test_duplicate_shard(self, data_dir):
        config = DatabaseConfig(
            path=data_dir,
            shards=(
                ShardConfig(0, 0, "registry.db"),
                ShardConfig(1, 0, "a.db"),
                ShardConfig(1, 0, "b.db"),
            ),
        )
        with pytest.raises(InitError) as exc_info:
            ShardRouter.build(config)
        assert exc_info.value.code == ErrorCode.MISCONFIGURED

    def test_initialize_is_idempotent(self, router):
        router.initialize()
        with router.registry().connection() as conn:
            version = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
        assert version == 1


class TestRouting:
    """Tests for connect()."""

    def test_connect_by_id(self, router):
        db = router.connect(pack(GROUP_DATA, ObjectType.USER, 1, 42))
        assert (db.group, db.shard) == (GROUP_DATA, 1)

    def test_unknown_shard(self, router):
        """Ids on unconfigured shards raise 5303 instead of guessing."""
        with pytest.raises(VaultError) as exc_info:
            router.connect(pack(GROUP_DATA, ObjectType.USER, 7, 42))
        assert exc_info.value.code == ErrorCode.MISCONFIGURED

    def test_random_data_shard(self, router):
        shards = {router.random_data_shard().shard for _ in range(50)}
        assert shards <= {0, 1}


class TestShardDatabase:
    """Tests for ShardDatabase transactions."""

    def test_transaction_rolls_back(self, router):
        db = router.data_shards()[0]

        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute(
                    "INSERT INTO keys (ciphertext, expiration, created) VALUES (?, ?, ?)",
                    (b"x", 0, 0),
                )
                raise RuntimeError("boom")

        with db.connection() as conn:
            assert conn.execute("SELECT COUNT(*) FROM keys").fetchone()[0] == 0

    def test_registry_and_data_schemas_differ(self, router):
        with router.registry().connection() as conn:
            tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert "registry_users" in tables
        assert "store_entries" not in tables
