"""
Organization and store rows on data shards.

Organizations are placed on a random data shard. Stores are placed on a
random data shard as well and point back to their organization; the
organization's shard keeps the org-store registry (see memberships.py).
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from ..core.ids import GROUP_DATA, ObjectType, local_id, pack
from .database import ShardDatabase, now_seconds
from .router import ShardRouter


@dataclass
class Org:
    """Organization profile."""

    id: int
    alias: str
    name: str | None
    creator: int | None = None
    created: int = 0


@dataclass
class Store:
    """Store profile.

    Attributes:
        id: Global store id
        org_id: Owning organization
        alias: Alias, unique within the organization
        name: Display name
    """

    id: int
    org_id: int
    alias: str
    name: str | None
    creator: int | None = None
    created: int = 0


def _row_to_org(db: ShardDatabase, row: sqlite3.Row) -> Org:
    return Org(
        id=pack(GROUP_DATA, ObjectType.ORG, db.shard, row["id"]),
        alias=row["alias"],
        name=row["name"],
        creator=row["creator"],
        created=row["created"],
    )


def _row_to_store(db: ShardDatabase, row: sqlite3.Row) -> Store:
    return Store(
        id=pack(GROUP_DATA, ObjectType.STORE, db.shard, row["id"]),
        org_id=row["id_org"],
        alias=row["alias"],
        name=row["name"],
        creator=row["creator"],
        created=row["created"],
    )


class OrgStore:
    """Organization and store rows."""

    def __init__(self, router: ShardRouter) -> None:
        self.router = router

    async def create_org(self, alias: str, name: str | None, creator: int) -> Org:
        now = now_seconds()
        db = self.router.random_data_shard()
        with db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO orgs (alias, name, creator, created) VALUES (?, ?, ?, ?)",
                (alias, name, creator, now),
            )
            local = cursor.lastrowid
        return Org(
            id=pack(GROUP_DATA, ObjectType.ORG, db.shard, local),
            alias=alias,
            name=name,
            creator=creator,
            created=now,
        )

    async def get_org(self, org_id: int) -> Org | None:
        db = self.router.connect(org_id)
        with db.connection() as conn:
            row = conn.execute("SELECT * FROM orgs WHERE id = ?", (local_id(org_id),)).fetchone()
        return _row_to_org(db, row) if row else None

    async def delete_org(self, org_id: int) -> bool:
        db = self.router.connect(org_id)
        with db.transaction() as conn:
            cursor = conn.execute("DELETE FROM orgs WHERE id = ?", (local_id(org_id),))
            return cursor.rowcount > 0

    async def create_store(self, org_id: int, alias: str, name: str | None, creator: int) -> Store:
        now = now_seconds()
        db = self.router.random_data_shard()
        with db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO stores (id_org, alias, name, creator, created)
                VALUES (?, ?, ?, ?, ?)
                """,
                (org_id, alias, name, creator, now),
            )
            local = cursor.lastrowid
        return Store(
            id=pack(GROUP_DATA, ObjectType.STORE, db.shard, local),
            org_id=org_id,
            alias=alias,
            name=name,
            creator=creator,
            created=now,
        )

    async def get_store(self, store_id: int) -> Store | None:
        db = self.router.connect(store_id)
        with db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM stores WHERE id = ?", (local_id(store_id),)
            ).fetchone()
        return _row_to_store(db, row) if row else None

    async def delete_store(self, store_id: int) -> bool:
        db = self.router.connect(store_id)
        with db.transaction() as conn:
            cursor = conn.execute("DELETE FROM stores WHERE id = ?", (local_id(store_id),))
            return cursor.rowcount > 0
