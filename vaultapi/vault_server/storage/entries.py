"""
Store entries (folders and JSON values) on the store's shard.

Entries form a tree per store. Entry ids are allocated from a shard-wide
sequence (store_entry_ids) and are only meaningful together with their store
id. Id 0 is the implicit root folder and has no row.

Invariants:
    - Values are stored encrypted; this module never sees plaintext
    - An entry's parent is 0 or an existing folder of the same store
    - A folder with children is never deleted
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import IntEnum

from .database import now_seconds
from .router import ShardRouter

ROOT_ENTRY = 0


class EntryType(IntEnum):
    FOLDER = 0
    JSON = 1

    @classmethod
    def parse(cls, value: str | int) -> EntryType:
        """Map "folder" / "json" (or 0 / 1) to an entry type.

        Raises:
            ValueError: If value is neither
        """
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str) and value.upper() in cls.__members__:
            return cls[value.upper()]
        raise ValueError(f"Unknown entry type: {value!r}")


@dataclass
class Entry:
    """Store entry.

    Attributes:
        store_id: Owning store
        id: Entry id within the store
        parent: Parent folder id (0 = root)
        type: Folder or JSON value
        title: Display title
        ciphertext: Encrypted value (None for folders)
    """

    store_id: int
    id: int
    parent: int
    type: EntryType
    title: str
    ciphertext: bytes | None = None
    creator: int | None = None
    created: int = 0
    modifier: int | None = None
    modified: int | None = None

    @property
    def is_folder(self) -> bool:
        return self.type == EntryType.FOLDER


def _row_to_entry(row: sqlite3.Row) -> Entry:
    return Entry(
        store_id=row["id_store"],
        id=row["id"],
        parent=row["id_parent"],
        type=EntryType(row["type"]),
        title=row["title"],
        ciphertext=row["ciphertext"],
        creator=row["creator"],
        created=row["created"],
        modifier=row["modifier"],
        modified=row["modified"],
    )


class EntryStore:
    """Entry rows of stores."""

    def __init__(self, router: ShardRouter) -> None:
        self.router = router

    async def get(self, store_id: int, entry_id: int) -> Entry | None:
        db = self.router.connect(store_id)
        with db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM store_entries WHERE id_store = ? AND id = ?",
                (store_id, entry_id),
            ).fetchone()
        return _row_to_entry(row) if row else None

    async def list_children(self, store_id: int, parent: int = ROOT_ENTRY) -> list[Entry]:
        db = self.router.connect(store_id)
        with db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM store_entries WHERE id_store = ? AND id_parent = ?
                ORDER BY type, title
                """,
                (store_id, parent),
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    async def count_children(self, store_id: int, parent: int) -> int:
        db = self.router.connect(store_id)
        with db.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM store_entries WHERE id_store = ? AND id_parent = ?",
                (store_id, parent),
            ).fetchone()
        return row[0]

    async def create(
        self,
        store_id: int,
        parent: int,
        type: EntryType,
        title: str,
        ciphertext: bytes | None,
        creator: int,
    ) -> Entry:
        """Insert an entry; the id is taken from the shard sequence."""
        now = now_seconds()
        db = self.router.connect(store_id)
        with db.transaction() as conn:
            entry_id = conn.execute("INSERT INTO store_entry_ids DEFAULT VALUES").lastrowid
            conn.execute(
                """
                INSERT INTO store_entries (id_store, id, id_parent, type, title,
                                           ciphertext, creator, created)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (store_id, entry_id, parent, int(type), title, ciphertext, creator, now),
            )
        return Entry(
            store_id=store_id,
            id=entry_id,
            parent=parent,
            type=type,
            title=title,
            ciphertext=ciphertext,
            creator=creator,
            created=now,
        )

    async def update(self, entry: Entry, modifier: int) -> bool:
        """Persist title, parent and value of an entry."""
        entry.modifier = modifier
        entry.modified = now_seconds()
        db = self.router.connect(entry.store_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE store_entries
                SET id_parent = ?, title = ?, ciphertext = ?, modifier = ?, modified = ?
                WHERE id_store = ? AND id = ?
                """,
                (
                    entry.parent,
                    entry.title,
                    entry.ciphertext,
                    entry.modifier,
                    entry.modified,
                    entry.store_id,
                    entry.id,
                ),
            )
            return cursor.rowcount > 0

    async def delete(self, store_id: int, entry_id: int) -> bool:
        db = self.router.connect(store_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM store_entries WHERE id_store = ? AND id = ?",
                (store_id, entry_id),
            )
            return cursor.rowcount > 0
