"""
Invitation rows on the invited object's shard.

The row holds everything needed to complete the invitation: the roles to
grant, the message shown to the invitee and, for store invitations, the
Key row id plus the secret that unwraps it. The registry keeps a mirror
(uid, object, creator, invitee, expiration, state) for lookups.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field

from ..core.ids import GROUP_DATA, ObjectType, local_id, pack, shard_key
from ..core.roles import RoleSet
from .database import ShardDatabase, now_seconds
from .registry import InvitationState
from .router import ShardRouter


@dataclass
class Invitation:
    """Invitation row.

    Attributes:
        id: Global invitation id
        uid: Public 40-hex handle
        object_id: Organization or store
        invitee: Invitee email (lowercase)
        message: Optional message from the inviter
        roles: Roles granted on acceptance
        key_id: Key row carrying the store key (stores only)
        key_pick: Secret that unwraps the Key row (stores only)
        expiration: Unix seconds
        state: InvitationState value
        creator: Inviting user
    """

    id: int
    uid: str
    object_id: int
    invitee: str
    expiration: int
    message: str | None = None
    roles: RoleSet = field(default_factory=RoleSet)
    key_id: int | None = None
    key_pick: str | None = None
    state: int = InvitationState.PENDING
    creator: int | None = None
    created: int = 0
    modifier: int | None = None
    modified: int | None = None


def _row_to_invitation(db: ShardDatabase, row: sqlite3.Row) -> Invitation:
    return Invitation(
        id=pack(GROUP_DATA, ObjectType.INVITATION, db.shard, row["id"]),
        uid=row["uid"],
        object_id=row["id_object"],
        invitee=row["invitee"],
        expiration=row["expiration"],
        message=row["message"],
        roles=RoleSet.from_csv(row["roles"]),
        key_id=row["id_key"],
        key_pick=row["key_pick"],
        state=row["state"],
        creator=row["creator"],
        created=row["created"],
        modifier=row["modifier"],
        modified=row["modified"],
    )


class InvitationStore:
    """Invitation rows."""

    def __init__(self, router: ShardRouter) -> None:
        self.router = router

    async def create(self, invitation: Invitation) -> Invitation:
        """Insert on the object's shard and assign the global id."""
        group, shard = shard_key(invitation.object_id)
        db = self.router.connect_to(group, shard)
        invitation.created = invitation.created or now_seconds()
        with db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO invitations (uid, id_object, invitee, message, roles, id_key,
                                         key_pick, expiration, state, creator, created)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    invitation.uid,
                    invitation.object_id,
                    invitation.invitee,
                    invitation.message,
                    invitation.roles.to_csv() or None,
                    invitation.key_id,
                    invitation.key_pick,
                    invitation.expiration,
                    int(invitation.state),
                    invitation.creator,
                    invitation.created,
                ),
            )
            invitation.id = pack(GROUP_DATA, ObjectType.INVITATION, db.shard, cursor.lastrowid)
        return invitation

    async def get(self, invitation_id: int) -> Invitation | None:
        db = self.router.connect(invitation_id)
        with db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM invitations WHERE id = ?", (local_id(invitation_id),)
            ).fetchone()
        return _row_to_invitation(db, row) if row else None

    async def set_state(self, invitation_id: int, state: InvitationState, modifier: int | None) -> bool:
        """Move a pending invitation to state.

        Returns:
            True if the row was pending
        """
        db = self.router.connect(invitation_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE invitations SET state = ?, modifier = ?, modified = ?
                WHERE id = ? AND state = ?
                """,
                (
                    int(state),
                    modifier,
                    now_seconds(),
                    local_id(invitation_id),
                    InvitationState.PENDING,
                ),
            )
            return cursor.rowcount > 0

    async def delete(self, invitation_id: int) -> bool:
        db = self.router.connect(invitation_id)
        with db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM invitations WHERE id = ?", (local_id(invitation_id),)
            )
            return cursor.rowcount > 0
