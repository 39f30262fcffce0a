"""
Membership registries on data shards.

Three relation tables, each placed on the shard of the id it is keyed by:
- registry_object_users (object's shard): who belongs to an org/store, with
  roles, state, manager flags and, for stores, the wrapped store key
- registry_user_objects (user's shard): the reverse direction, so "all
  objects of user X" needs no fan-out
- registry_org_stores (org's shard): the stores of an organization

Invariants:
    - Object-user and user-object rows exist as pairs: register() writes the
      forward row then the reverse row under a saga; remove() deletes both
    - mgr_roles / mgr_invites always reflect the stored roles
    - Blocked or deleted registrations are not counted as managers
    - A store registration always carries a wrapped store key

How to change safely:
    - Every roles write must go through _manager_flags()
    - Keep forward/reverse writes inside a Saga
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field

from ..core.ids import ObjectType, type_of
from ..core.roles import RoleSet
from ..core.states import State
from ..errors import ErrorCode, VaultError
from .database import now_seconds
from .router import ShardRouter
from .saga import Saga

logger = logging.getLogger(__name__)


@dataclass
class Membership:
    """Object-user registration (forward row).

    Attributes:
        object_id: Organization or store
        user_id: Member
        username: Member alias (denormalized for listings)
        state: Registration state flags
        roles: Roles held on the object
        wrapped_key: Store key wrapped under the member's password hash
            (None for organizations)
        creator: Who registered the member
    """

    object_id: int
    user_id: int
    username: str
    state: int = 0
    roles: RoleSet = field(default_factory=RoleSet)
    wrapped_key: bytes | None = None
    creator: int | None = None
    created: int = 0
    modifier: int | None = None
    modified: int | None = None

    @property
    def is_roles_manager(self) -> bool:
        return self.roles.is_roles_manager()

    @property
    def is_invites_manager(self) -> bool:
        return self.roles.is_invites_manager()


@dataclass
class UserLink:
    """User-object registration (reverse row)."""

    user_id: int
    object_id: int
    alias: str
    type: ObjectType
    favorite: bool = False


@dataclass
class OrgStoreLink:
    """Organization-store registration."""

    org_id: int
    store_id: int
    alias: str
    state: int = 0


def _manager_flags(roles: RoleSet) -> tuple[int, int]:
    return int(roles.is_roles_manager()), int(roles.is_invites_manager())


def _row_to_membership(row: sqlite3.Row) -> Membership:
    return Membership(
        object_id=row["id_object"],
        user_id=row["id_user"],
        username=row["username"],
        state=row["state"],
        roles=RoleSet.from_csv(row["roles"]),
        wrapped_key=row["ciphertext"],
        creator=row["creator"],
        created=row["created"],
        modifier=row["modifier"],
        modified=row["modified"],
    )


def _row_to_link(row: sqlite3.Row) -> UserLink:
    return UserLink(
        user_id=row["id_user"],
        object_id=row["id_object"],
        alias=row["alias"],
        type=ObjectType(row["type"]),
        favorite=bool(row["favorite"]),
    )


class MembershipStore:
    """Forward, reverse and org-store registries."""

    def __init__(self, router: ShardRouter) -> None:
        self.router = router

    # --- Forward rows (object shard) ---

    async def get(self, object_id: int, user_id: int) -> Membership | None:
        db = self.router.connect(object_id)
        with db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM registry_object_users WHERE id_object = ? AND id_user = ?",
                (object_id, user_id),
            ).fetchone()
        return _row_to_membership(row) if row else None

    async def list_members(self, object_id: int) -> list[Membership]:
        db = self.router.connect(object_id)
        with db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM registry_object_users WHERE id_object = ? ORDER BY username",
                (object_id,),
            ).fetchall()
        return [_row_to_membership(row) for row in rows]

    async def count_managers(self, object_id: int) -> tuple[int, int]:
        """Count (roles managers, invites managers) among active registrations."""
        db = self.router.connect(object_id)
        with db.connection() as conn:
            row = conn.execute(
                """
                SELECT COALESCE(SUM(mgr_roles), 0), COALESCE(SUM(mgr_invites), 0)
                FROM registry_object_users WHERE id_object = ? AND (state & ?) = 0
                """,
                (object_id, int(State.BLOCKED | State.DELETED)),
            ).fetchone()
        return row[0], row[1]

    async def _insert_forward(self, member: Membership) -> Membership:
        db = self.router.connect(member.object_id)
        mgr_roles, mgr_invites = _manager_flags(member.roles)
        member.created = member.created or now_seconds()
        try:
            with db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO registry_object_users (id_object, id_user, username, state,
                                                       roles, mgr_roles, mgr_invites,
                                                       ciphertext, creator, created)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        member.object_id,
                        member.user_id,
                        member.username,
                        member.state,
                        member.roles.to_csv() or None,
                        mgr_roles,
                        mgr_invites,
                        member.wrapped_key,
                        member.creator,
                        member.created,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise VaultError(ErrorCode.ALREADY_REGISTERED) from e
        return member

    async def _delete_forward(self, object_id: int, user_id: int) -> bool:
        db = self.router.connect(object_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM registry_object_users WHERE id_object = ? AND id_user = ?",
                (object_id, user_id),
            )
            return cursor.rowcount > 0

    async def update(self, member: Membership, modifier: int) -> bool:
        """Persist roles, state and wrapped key of an existing registration."""
        db = self.router.connect(member.object_id)
        mgr_roles, mgr_invites = _manager_flags(member.roles)
        member.modifier = modifier
        member.modified = now_seconds()
        with db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE registry_object_users
                SET state = ?, roles = ?, mgr_roles = ?, mgr_invites = ?, ciphertext = ?,
                    modifier = ?, modified = ?
                WHERE id_object = ? AND id_user = ?
                """,
                (
                    member.state,
                    member.roles.to_csv() or None,
                    mgr_roles,
                    mgr_invites,
                    member.wrapped_key,
                    member.modifier,
                    member.modified,
                    member.object_id,
                    member.user_id,
                ),
            )
            return cursor.rowcount > 0

    async def update_wrapped_key(self, object_id: int, user_id: int, wrapped: bytes, modifier: int) -> bool:
        """Replace the wrapped store key of one store registration."""
        db = self.router.connect(object_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE registry_object_users SET ciphertext = ?, modifier = ?, modified = ?
                WHERE id_object = ? AND id_user = ?
                """,
                (wrapped, modifier, now_seconds(), object_id, user_id),
            )
            return cursor.rowcount > 0

    # --- Reverse rows (user shard) ---

    async def get_link(self, user_id: int, object_id: int) -> UserLink | None:
        db = self.router.connect(user_id)
        with db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM registry_user_objects WHERE id_user = ? AND id_object = ?",
                (user_id, object_id),
            ).fetchone()
        return _row_to_link(row) if row else None

    async def list_links(
        self,
        user_id: int,
        type: ObjectType | None = None,
        favorites: bool = False,
    ) -> list[UserLink]:
        query = "SELECT * FROM registry_user_objects WHERE id_user = ?"
        params: list[object] = [user_id]
        if type is not None:
            query += " AND type = ?"
            params.append(int(type))
        if favorites:
            query += " AND favorite = 1"
        query += " ORDER BY alias"

        db = self.router.connect(user_id)
        with db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_link(row) for row in rows]

    async def _insert_link(self, link: UserLink) -> UserLink:
        db = self.router.connect(link.user_id)
        with db.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO registry_user_objects (id_user, id_object, alias, type, favorite)
                VALUES (?, ?, ?, ?, ?)
                """,
                (link.user_id, link.object_id, link.alias, int(link.type), int(link.favorite)),
            )
        return link

    async def _delete_link(self, user_id: int, object_id: int) -> bool:
        db = self.router.connect(user_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM registry_user_objects WHERE id_user = ? AND id_object = ?",
                (user_id, object_id),
            )
            return cursor.rowcount > 0

    async def toggle_favorite(self, user_id: int, object_id: int) -> bool | None:
        """Flip the favorite flag.

        Returns:
            New flag value, or None if the link does not exist
        """
        db = self.router.connect(user_id)
        with db.transaction() as conn:
            row = conn.execute(
                "SELECT favorite FROM registry_user_objects WHERE id_user = ? AND id_object = ?",
                (user_id, object_id),
            ).fetchone()
            if row is None:
                return None
            favorite = not bool(row["favorite"])
            conn.execute(
                "UPDATE registry_user_objects SET favorite = ? WHERE id_user = ? AND id_object = ?",
                (int(favorite), user_id, object_id),
            )
        return favorite

    # --- Pairs ---

    async def register(self, member: Membership, alias: str) -> Membership:
        """Write a forward/reverse registration pair.

        Args:
            member: Forward row to insert
            alias: Object alias stored on the reverse row

        Raises:
            VaultError: 4012 if already registered, 5100 on storage failure
        """
        saga = Saga("register-member")
        await saga.step(
            "object-user",
            lambda: self._insert_forward(member),
            lambda m: self._delete_forward(m.object_id, m.user_id),
        )
        await saga.step(
            "user-object",
            lambda: self._insert_link(
                UserLink(member.user_id, member.object_id, alias, type_of(member.object_id))
            ),
        )
        logger.info(
            "Registered member",
            extra={"object_id": member.object_id, "user_id": member.user_id},
        )
        return member

    async def remove(self, object_id: int, user_id: int) -> bool:
        """Delete both rows of a registration pair."""
        removed = await self._delete_forward(object_id, user_id)
        await self._delete_link(user_id, object_id)
        return removed

    # --- Org stores (org shard) ---

    async def add_org_store(self, link: OrgStoreLink) -> OrgStoreLink:
        db = self.router.connect(link.org_id)
        try:
            with db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO registry_org_stores (id_org, id_store, store_alias, state)
                    VALUES (?, ?, ?, ?)
                    """,
                    (link.org_id, link.store_id, link.alias, link.state),
                )
        except sqlite3.IntegrityError as e:
            raise VaultError(ErrorCode.ALIAS_EXISTS, details={"store": link.alias}) from e
        return link

    async def remove_org_store(self, org_id: int, store_id: int) -> bool:
        db = self.router.connect(org_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM registry_org_stores WHERE id_org = ? AND id_store = ?",
                (org_id, store_id),
            )
            return cursor.rowcount > 0

    async def find_org_store(self, org_id: int, reference: int | str) -> OrgStoreLink | None:
        """Find a store of an organization by id or alias."""
        if isinstance(reference, int):
            where, value = "id_store = ?", reference
        else:
            where, value = "store_alias = ?", reference.lower()

        db = self.router.connect(org_id)
        with db.connection() as conn:
            row = conn.execute(
                f"SELECT * FROM registry_org_stores WHERE id_org = ? AND {where}",
                (org_id, value),
            ).fetchone()
        if row is None:
            return None
        return OrgStoreLink(row["id_org"], row["id_store"], row["store_alias"], row["state"])

    async def list_org_stores(self, org_id: int) -> list[OrgStoreLink]:
        db = self.router.connect(org_id)
        with db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM registry_org_stores WHERE id_org = ? ORDER BY store_alias",
                (org_id,),
            ).fetchall()
        return [OrgStoreLink(r["id_org"], r["id_store"], r["store_alias"], r["state"]) for r in rows]

    async def update_org_store_state(self, org_id: int, store_id: int, state: int) -> bool:
        db = self.router.connect(org_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE registry_org_stores SET state = ? WHERE id_org = ? AND id_store = ?",
                (state, org_id, store_id),
            )
            return cursor.rowcount > 0
