"""
Key rows: wrapped secrets with an expiration, on a random data shard.

Invitations use a Key row to carry the store key to the invitee: the store
key is wrapped under a fresh secret which is kept on the invitation.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from ..core.ids import GROUP_DATA, ObjectType, local_id, pack
from .database import ShardDatabase, now_seconds
from .router import ShardRouter


@dataclass
class Key:
    """Wrapped secret.

    Attributes:
        id: Global key id
        ciphertext: Wrapped secret
        expiration: Unix seconds after which the key is unusable
    """

    id: int
    ciphertext: bytes
    expiration: int
    creator: int | None = None
    created: int = 0

    def is_expired(self, now: int) -> bool:
        return self.expiration <= now


def _row_to_key(db: ShardDatabase, row: sqlite3.Row) -> Key:
    return Key(
        id=pack(GROUP_DATA, ObjectType.KEY, db.shard, row["id"]),
        ciphertext=row["ciphertext"],
        expiration=row["expiration"],
        creator=row["creator"],
        created=row["created"],
    )


class KeyStore:
    """Key rows."""

    def __init__(self, router: ShardRouter) -> None:
        self.router = router

    async def create(self, ciphertext: bytes, expiration: int, creator: int) -> Key:
        now = now_seconds()
        db = self.router.random_data_shard()
        with db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO keys (ciphertext, expiration, creator, created) VALUES (?, ?, ?, ?)",
                (ciphertext, expiration, creator, now),
            )
            local = cursor.lastrowid
        return Key(
            id=pack(GROUP_DATA, ObjectType.KEY, db.shard, local),
            ciphertext=ciphertext,
            expiration=expiration,
            creator=creator,
            created=now,
        )

    async def get(self, key_id: int) -> Key | None:
        db = self.router.connect(key_id)
        with db.connection() as conn:
            row = conn.execute("SELECT * FROM keys WHERE id = ?", (local_id(key_id),)).fetchone()
        return _row_to_key(db, row) if row else None

    async def delete(self, key_id: int) -> bool:
        db = self.router.connect(key_id)
        with db.transaction() as conn:
            cursor = conn.execute("DELETE FROM keys WHERE id = ?", (local_id(key_id),))
            return cursor.rowcount > 0
