"""
User rows on data shards.

The User row is the source of truth for a user's profile; the registry keeps
a mirror (alias, email, name, state, verifier) for shard-free lookups.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from ..core.ids import GROUP_DATA, ObjectType, local_id, pack
from .database import ShardDatabase, now_seconds
from .router import ShardRouter

logger = logging.getLogger(__name__)


@dataclass
class User:
    """User profile.

    Attributes:
        id: Global user id
        alias: Unique user name (lowercase)
        email: Unique email (lowercase)
        name: Display name
        verifier: Password verifier blob
        state: Global user state flags
        last_password_change: Unix seconds of the last password change
    """

    id: int
    alias: str
    email: str
    name: str | None
    verifier: bytes | None
    state: int = 0
    last_password_change: int | None = None
    creator: int | None = None
    created: int = 0
    modifier: int | None = None
    modified: int | None = None


def _row_to_user(db: ShardDatabase, row: sqlite3.Row) -> User:
    return User(
        id=pack(GROUP_DATA, ObjectType.USER, db.shard, row["id"]),
        alias=row["alias"],
        email=row["email"],
        name=row["name"],
        verifier=row["verifier"],
        state=row["state"],
        last_password_change=row["last_password_change"],
        creator=row["creator"],
        created=row["created"],
        modifier=row["modifier"],
        modified=row["modified"],
    )


class UserStore:
    """User rows, one per user on a random data shard."""

    def __init__(self, router: ShardRouter) -> None:
        self.router = router

    async def create(
        self,
        alias: str,
        email: str,
        name: str | None,
        verifier: bytes,
        creator: int | None = None,
        now: int | None = None,
    ) -> User:
        """Insert a user on a random data shard."""
        now = now or now_seconds()
        db = self.router.random_data_shard()
        with db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (alias, email, name, verifier, state,
                                   last_password_change, creator, created)
                VALUES (?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (alias, email, name, verifier, now, creator, now),
            )
            local = cursor.lastrowid

        user = User(
            id=pack(GROUP_DATA, ObjectType.USER, db.shard, local),
            alias=alias,
            email=email,
            name=name,
            verifier=verifier,
            last_password_change=now,
            creator=creator,
            created=now,
        )
        logger.debug("Created user row", extra={"user_id": user.id, "shard": db.shard})
        return user

    async def get(self, user_id: int) -> User | None:
        db = self.router.connect(user_id)
        with db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = ?", (local_id(user_id),)
            ).fetchone()
        return _row_to_user(db, row) if row else None

    async def update_verifier(
        self,
        user_id: int,
        verifier: bytes,
        modifier: int,
        now: int | None = None,
    ) -> bool:
        """Replace the password verifier and stamp the change time."""
        now = now or now_seconds()
        db = self.router.connect(user_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE users SET verifier = ?, last_password_change = ?,
                                 modifier = ?, modified = ?
                WHERE id = ?
                """,
                (verifier, now, modifier, now, local_id(user_id)),
            )
            return cursor.rowcount > 0

    async def delete(self, user_id: int) -> bool:
        db = self.router.connect(user_id)
        with db.transaction() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (local_id(user_id),))
            return cursor.rowcount > 0
