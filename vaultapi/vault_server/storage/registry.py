"""
Registry tables on the registry shard (group 0, shard 0).

The registry answers "does it exist and where does it live" without knowing
the target shard:
- registry_users: users by id, alias or email
- registry_orgs: organizations by id or alias
- registry_invitations: invitations by id, uid or object

Invariants:
    - Registry rows are written after their source rows and deleted before
      or together with them (see saga.py)
    - Registry reads are authoritative for existence and addressing; source
      rows are authoritative for every other attribute
    - An invitation registry row leaves state PENDING at most once
      (conditional update on state = 0)

How to change safely:
    - Keep uniqueness constraints in the schema, not only in code
    - Any new mirrored column must be updated on every source write
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from enum import IntEnum

from ..errors import ErrorCode, VaultError
from .database import ShardDatabase
from .router import ShardRouter

logger = logging.getLogger(__name__)


class InvitationState(IntEnum):
    """Invitation lifecycle states."""

    PENDING = 0
    ACCEPTED = 1
    DECLINED = 2
    REVOKED = 3
    EXPIRED = 4


@dataclass
class UserEntry:
    """User registry row."""

    id: int
    alias: str
    email: str
    name: str | None
    state: int
    verifier: bytes | None


@dataclass
class OrgEntry:
    """Organization registry row."""

    id: int
    alias: str
    name: str | None
    state: int


@dataclass
class InvitationEntry:
    """Invitation registry row.

    Attributes:
        id: Global invitation id (routes to the invitation's shard)
        uid: 40-character public handle
        object_id: Organization or store the invitation grants access to
        creator: Global id of the inviting user
        invitee: Invitee email (lowercase)
        expiration: Unix seconds after which a pending invitation is expired
        state: InvitationState value
    """

    id: int
    uid: str
    object_id: int
    creator: int
    invitee: str
    expiration: int
    state: int

    def is_expired(self, now: int) -> bool:
        return self.state == InvitationState.PENDING and self.expiration <= now

    def is_pending(self, now: int) -> bool:
        return self.state == InvitationState.PENDING and self.expiration > now


def _conflict(error: sqlite3.IntegrityError, default: ErrorCode) -> VaultError:
    message = str(error)
    if ".email" in message:
        return VaultError(ErrorCode.EMAIL_EXISTS)
    if ".alias" in message:
        return VaultError(ErrorCode.ALIAS_EXISTS)
    return VaultError(default)


class RegistryStore:
    """Registry tables on the registry shard."""

    def __init__(self, router: ShardRouter) -> None:
        self.router = router

    @property
    def db(self) -> ShardDatabase:
        return self.router.registry()

    # --- Users ---

    async def add_user(self, entry: UserEntry) -> None:
        """Register a user.

        Raises:
            VaultError: 4010 alias taken, 4011 email taken
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO registry_users (id, alias, email, name, state, verifier)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (entry.id, entry.alias, entry.email, entry.name, entry.state, entry.verifier),
                )
        except sqlite3.IntegrityError as e:
            raise _conflict(e, ErrorCode.ALIAS_EXISTS) from e

    async def get_user(self, user_id: int) -> UserEntry | None:
        return self._fetch_user("id = ?", user_id)

    async def find_user(self, reference: int | str) -> UserEntry | None:
        """Find a user by id, alias or email."""
        if isinstance(reference, int):
            return self._fetch_user("id = ?", reference)
        reference = reference.strip().lower()
        if "@" in reference:
            return self._fetch_user("email = ?", reference)
        return self._fetch_user("alias = ?", reference)

    async def user_exists(self, alias: str | None = None, email: str | None = None) -> ErrorCode | None:
        """Check alias/email availability.

        Returns:
            ALIAS_EXISTS or EMAIL_EXISTS if taken, None if both free
        """
        if alias and self._fetch_user("alias = ?", alias.lower()):
            return ErrorCode.ALIAS_EXISTS
        if email and self._fetch_user("email = ?", email.lower()):
            return ErrorCode.EMAIL_EXISTS
        return None

    def _fetch_user(self, where: str, value: object) -> UserEntry | None:
        with self.db.connection() as conn:
            row = conn.execute(f"SELECT * FROM registry_users WHERE {where}", (value,)).fetchone()
        if row is None:
            return None
        return UserEntry(
            id=row["id"],
            alias=row["alias"],
            email=row["email"],
            name=row["name"],
            state=row["state"],
            verifier=row["verifier"],
        )

    async def update_user_verifier(self, user_id: int, verifier: bytes) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE registry_users SET verifier = ? WHERE id = ?", (verifier, user_id)
            )
            return cursor.rowcount > 0

    async def delete_user(self, user_id: int) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM registry_users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    # --- Organizations ---

    async def add_org(self, entry: OrgEntry) -> None:
        """Register an organization.

        Raises:
            VaultError: 4010 if the alias is taken
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO registry_orgs (id, alias, name, state) VALUES (?, ?, ?, ?)",
                    (entry.id, entry.alias, entry.name, entry.state),
                )
        except sqlite3.IntegrityError as e:
            raise _conflict(e, ErrorCode.ALIAS_EXISTS) from e

    async def find_org(self, reference: int | str) -> OrgEntry | None:
        """Find an organization by id or alias."""
        if isinstance(reference, int):
            where, value = "id = ?", reference
        else:
            where, value = "alias = ?", reference.strip().lower()

        with self.db.connection() as conn:
            row = conn.execute(f"SELECT * FROM registry_orgs WHERE {where}", (value,)).fetchone()
        if row is None:
            return None
        return OrgEntry(id=row["id"], alias=row["alias"], name=row["name"], state=row["state"])

    async def delete_org(self, org_id: int) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM registry_orgs WHERE id = ?", (org_id,))
            return cursor.rowcount > 0

    # --- Invitations ---

    async def add_invitation(self, entry: InvitationEntry) -> None:
        """Register an invitation.

        Raises:
            VaultError: 4390 if another invitation for (object, invitee) is
                still pending
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO registry_invitations (id, uid, id_object, id_creator,
                                                      invitee, expiration, state)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.id,
                        entry.uid,
                        entry.object_id,
                        entry.creator,
                        entry.invitee,
                        entry.expiration,
                        entry.state,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise VaultError(
                ErrorCode.INVALID_INVITATION, details={"reason": "pending invitation exists"}
            ) from e

    async def get_invitation(self, invitation_id: int) -> InvitationEntry | None:
        return self._fetch_invitation("id = ?", invitation_id)

    async def find_invitation(self, uid: str) -> InvitationEntry | None:
        return self._fetch_invitation("uid = ?", uid.lower())

    async def pending_invitation(self, object_id: int, invitee: str) -> InvitationEntry | None:
        """Invitation in state PENDING for (object, invitee), expired or not."""
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM registry_invitations
                WHERE id_object = ? AND invitee = ? AND state = ?
                """,
                (object_id, invitee, InvitationState.PENDING),
            ).fetchone()
        return self._row_to_invitation(row) if row else None

    async def list_invitations(
        self,
        object_id: int,
        state: InvitationState | None = InvitationState.PENDING,
    ) -> list[InvitationEntry]:
        query = "SELECT * FROM registry_invitations WHERE id_object = ?"
        params: list[object] = [object_id]
        if state is not None:
            query += " AND state = ?"
            params.append(int(state))
        query += " ORDER BY expiration"

        with self.db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_invitation(row) for row in rows]

    async def expired_invitations(self, now: int, limit: int = 100) -> list[InvitationEntry]:
        """Pending rows whose expiration has passed."""
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM registry_invitations
                WHERE state = ? AND expiration <= ?
                ORDER BY expiration LIMIT ?
                """,
                (InvitationState.PENDING, now, limit),
            ).fetchall()
        return [self._row_to_invitation(row) for row in rows]

    async def transition_invitation(self, invitation_id: int, state: InvitationState) -> bool:
        """Move a PENDING invitation to state.

        Returns:
            True if the row was pending and is now in state
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE registry_invitations SET state = ? WHERE id = ? AND state = ?",
                (int(state), invitation_id, InvitationState.PENDING),
            )
            return cursor.rowcount > 0

    def _fetch_invitation(self, where: str, value: object) -> InvitationEntry | None:
        with self.db.connection() as conn:
            row = conn.execute(
                f"SELECT * FROM registry_invitations WHERE {where}", (value,)
            ).fetchone()
        return self._row_to_invitation(row) if row else None

    @staticmethod
    def _row_to_invitation(row: sqlite3.Row) -> InvitationEntry:
        return InvitationEntry(
            id=row["id"],
            uid=row["uid"],
            object_id=row["id_object"],
            creator=row["id_creator"],
            invitee=row["invitee"],
            expiration=row["expiration"],
            state=row["state"],
        )
