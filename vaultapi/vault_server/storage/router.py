"""
Shard router: maps global ids to shard databases.

The router holds {group -> {shard -> ShardDatabase}}. Group 0 shard 0 is the
registry; group 1 shards hold data rows. New data rows are placed on a
random data shard; afterwards their id routes every access.

Invariants:
    - The registry shard always exists (checked in build())
    - connect(id) never guesses: unknown (group, shard) pairs raise
    - The router holds no open connections; ShardDatabase opens per call

How to change safely:
    - Adding shards is safe; removing or renumbering shards orphans rows
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import DatabaseConfig
from ..core.ids import GROUP_DATA, GROUP_REGISTRY, random_shard, shard_key
from ..errors import ErrorCode, InitError, VaultError
from .database import ShardDatabase

logger = logging.getLogger(__name__)


class ShardRouter:
    """Routes ids to shard databases.

    Example:
        >>> router = ShardRouter.build(DatabaseConfig.local("/tmp/vault"))
        >>> router.initialize()
        >>> db = router.connect(user_id)
    """

    def __init__(self, shards: dict[int, dict[int, ShardDatabase]]) -> None:
        self._groups = shards

    @classmethod
    def build(cls, config: DatabaseConfig) -> ShardRouter:
        """Build a router from the database configuration.

        Raises:
            InitError: If the registry shard or every data shard is missing
        """
        groups: dict[int, dict[int, ShardDatabase]] = {}
        base = Path(config.path)
        for shard in config.shards:
            group = groups.setdefault(shard.group, {})
            if shard.shard in group:
                raise InitError(details={"reason": f"duplicate shard {shard.group}:{shard.shard}"})
            group[shard.shard] = ShardDatabase(
                shard.group,
                shard.shard,
                base / shard.file,
                wal_mode=config.wal_mode,
                busy_timeout_ms=config.busy_timeout_ms,
            )

        if GROUP_REGISTRY not in groups or 0 not in groups[GROUP_REGISTRY]:
            raise InitError(details={"reason": "registry shard (0:0) not configured"})
        if not groups.get(GROUP_DATA):
            raise InitError(details={"reason": "no data shards (group 1) configured"})

        return cls(groups)

    def initialize(self) -> None:
        """Create the schema on every shard."""
        for group in self._groups.values():
            for db in group.values():
                db.initialize()

    def connect_to(self, group: int, shard: int) -> ShardDatabase:
        """Explicit (group, shard) lookup.

        Raises:
            VaultError: 5303 if the shard is not configured
        """
        try:
            return self._groups[group][shard]
        except KeyError:
            logger.error(f"Shard {group}:{shard} is not configured")
            raise VaultError(
                ErrorCode.MISCONFIGURED, details={"group": group, "shard": shard}
            ) from None

    def connect(self, id: int) -> ShardDatabase:
        """Shard database that owns a global id."""
        group, shard = shard_key(id)
        return self.connect_to(group, shard)

    def registry(self) -> ShardDatabase:
        """The registry shard (group 0, shard 0)."""
        return self.connect_to(GROUP_REGISTRY, 0)

    def data_shards(self) -> list[ShardDatabase]:
        """All data shards ordered by shard id."""
        group = self._groups[GROUP_DATA]
        return [group[shard] for shard in sorted(group)]

    def random_data_shard(self) -> ShardDatabase:
        """Pick a random data shard for a new row."""
        shards = self.data_shards()
        return shards[random_shard(0, len(shards) - 1)]
