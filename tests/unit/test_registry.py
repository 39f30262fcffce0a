"""
Unit tests for the registry shard.

Tests cover:
- User alias/email uniqueness
- Organization lookups
- Invitation uniqueness and state transitions
- Expired invitation listing
"""

import pytest

from vaultapi.vault_server.core.ids import GROUP_DATA, ObjectType, pack
from vaultapi.vault_server.errors import ErrorCode, VaultError
from vaultapi.vault_server.storage import (
    InvitationEntry,
    InvitationState,
    OrgEntry,
    RegistryStore,
    UserEntry,
)

ORG = pack(GROUP_DATA, ObjectType.ORG, 0, 1)
ALICE = pack(GROUP_DATA, ObjectType.USER, 0, 1)


def user(local, alias, email):
    return UserEntry(pack(GROUP_DATA, ObjectType.USER, 0, local), alias, email, None, 0, None)


def invitation(local, invitee="bob@example.com", expiration=2000, state=InvitationState.PENDING):
    return InvitationEntry(
        id=pack(GROUP_DATA, ObjectType.INVITATION, 1, local),
        uid=f"{local:040x}",
        object_id=ORG,
        creator=ALICE,
        invitee=invitee,
        expiration=expiration,
        state=state,
    )


@pytest.fixture
def registry(router):
    return RegistryStore(router)


class TestUsers:
    """Tests for registry users."""

    @pytest.mark.asyncio
    async def test_add_and_find(self, registry):
        entry = user(1, "alice", "alice@example.com")
        await registry.add_user(entry)

        assert await registry.get_user(entry.id) == entry
        assert await registry.find_user("Alice") == entry
        assert await registry.find_user("ALICE@example.com") == entry
        assert await registry.find_user(entry.id) == entry
        assert await registry.find_user("nobody") is None

    @pytest.mark.asyncio
    async def test_alias_conflict(self, registry):
        await registry.add_user(user(1, "alice", "alice@example.com"))

        with pytest.raises(VaultError) as exc_info:
            await registry.add_user(user(2, "alice", "other@example.com"))
        assert exc_info.value.code == ErrorCode.ALIAS_EXISTS

    @pytest.mark.asyncio
    async def test_email_conflict(self, registry):
        await registry.add_user(user(1, "alice", "alice@example.com"))

        with pytest.raises(VaultError) as exc_info:
            await registry.add_user(user(2, "alice2", "alice@example.com"))
        assert exc_info.value.code == ErrorCode.EMAIL_EXISTS

    @pytest.mark.asyncio
    async def test_user_exists(self, registry):
        await registry.add_user(user(1, "alice", "alice@example.com"))

        assert await registry.user_exists(alias="ALICE") == ErrorCode.ALIAS_EXISTS
        assert await registry.user_exists(email="alice@example.com") == ErrorCode.EMAIL_EXISTS
        assert await registry.user_exists(alias="bob", email="bob@example.com") is None

    @pytest.mark.asyncio
    async def test_update_verifier_and_delete(self, registry):
        entry = user(1, "alice", "alice@example.com")
        await registry.add_user(entry)

        assert await registry.update_user_verifier(entry.id, b"new")
        assert (await registry.get_user(entry.id)).verifier == b"new"
        assert await registry.delete_user(entry.id)
        assert await registry.get_user(entry.id) is None


class TestOrgs:
    """Tests for registry organizations."""

    @pytest.mark.asyncio
    async def test_add_find_delete(self, registry):
        await registry.add_org(OrgEntry(ORG, "acme", "Acme", 0))

        assert (await registry.find_org(" ACME ")).id == ORG
        assert (await registry.find_org(ORG)).alias == "acme"
        assert await registry.delete_org(ORG)
        assert await registry.find_org("acme") is None

    @pytest.mark.asyncio
    async def test_alias_conflict(self, registry):
        await registry.add_org(OrgEntry(ORG, "acme", None, 0))
        with pytest.raises(VaultError) as exc_info:
            await registry.add_org(OrgEntry(ORG + 1, "acme", None, 0))
        assert exc_info.value.code == ErrorCode.ALIAS_EXISTS


class TestInvitations:
    """Tests for registry invitations."""

    @pytest.mark.asyncio
    async def test_one_pending_per_invitee(self, registry):
        """A second pending invitation for the same (object, invitee) is refused."""
        await registry.add_invitation(invitation(1))

        with pytest.raises(VaultError) as exc_info:
            await registry.add_invitation(invitation(2))
        assert exc_info.value.code == ErrorCode.INVALID_INVITATION

        await registry.add_invitation(invitation(3, invitee="carol@example.com"))

    @pytest.mark.asyncio
    async def test_new_invitation_after_terminal_state(self, registry):
        first = invitation(1)
        await registry.add_invitation(first)
        assert await registry.transition_invitation(first.id, InvitationState.DECLINED)

        await registry.add_invitation(invitation(2))
        pending = await registry.pending_invitation(ORG, "bob@example.com")
        assert pending.id == invitation(2).id

    @pytest.mark.asyncio
    async def test_transition_only_from_pending(self, registry):
        entry = invitation(1)
        await registry.add_invitation(entry)

        assert await registry.transition_invitation(entry.id, InvitationState.ACCEPTED)
        assert not await registry.transition_invitation(entry.id, InvitationState.REVOKED)
        assert (await registry.get_invitation(entry.id)).state == InvitationState.ACCEPTED

    @pytest.mark.asyncio
    async def test_find_by_uid(self, registry):
        entry = invitation(1)
        await registry.add_invitation(entry)
        assert await registry.find_invitation(entry.uid.upper()) == entry

    @pytest.mark.asyncio
    async def test_list_and_expired(self, registry):
        await registry.add_invitation(invitation(1, invitee="a@x", expiration=1000))
        await registry.add_invitation(invitation(2, invitee="b@x", expiration=3000))
        await registry.add_invitation(invitation(3, invitee="c@x", expiration=500))
        await registry.transition_invitation(invitation(3).id, InvitationState.REVOKED)

        pending = await registry.list_invitations(ORG)
        assert [e.invitee for e in pending] == ["a@x", "b@x"]
        assert len(await registry.list_invitations(ORG, state=None)) == 3

        expired = await registry.expired_invitations(now=1000)
        assert [e.invitee for e in expired] == ["a@x"]

    def test_entry_expiry_boundary(self):
        """expiration <= now means expired."""
        entry = invitation(1, expiration=1000)
        assert entry.is_expired(1000)
        assert not entry.is_pending(1000)
        assert entry.is_pending(999)

        entry.state = InvitationState.ACCEPTED
        assert not entry.is_expired(5000)
