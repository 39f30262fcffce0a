"""
Integration tests for member administration.

Tests cover:
- Role replacement and the last-manager guard
- Admin toggling
- Lock, block and raw state changes
- Member reads and their role requirements
"""

import pytest

from vaultapi.vault_server.core.ids import ObjectType
from vaultapi.vault_server.core.roles import (
    ORG_ADMIN_ROLES,
    ORG_DEFAULT_ROLES,
    STORE_DEFAULT_ROLES,
    RoleSet,
)
from vaultapi.vault_server.core.states import State
from vaultapi.vault_server.errors import ErrorCode, VaultError

from tests.helpers import create_org, join_org, sign_up

ORG = ObjectType.ORG
ADMIN_CSV = RoleSet(ORG_ADMIN_ROLES).to_csv()
DEFAULT_CSV = RoleSet(ORG_DEFAULT_ROLES).to_csv()


@pytest.fixture
def team(services):
    """Alice administers acme; bob joined with default roles."""

    async def build():
        alice = await sign_up(services, "alice")
        bob = await sign_up(services, "bob")
        org_id = await create_org(services, alice)
        await join_org(services, alice, org_id, bob)
        return alice, bob, org_id

    return build


async def registration(services, org_id, session):
    return await services.repos.memberships.get(org_id, session["user-id"])


class TestSetRoles:
    """Tests for set_roles()."""

    @pytest.mark.asyncio
    async def test_grant_roles(self, services, team):
        alice, bob, org_id = await team()

        reply = await services.members.set_roles(alice, ORG, org_id, "bob", ADMIN_CSV)

        assert reply.data["user"]["roles"] == ADMIN_CSV
        assert reply.data["user"]["admin"] is False
        assert (await registration(services, org_id, bob)).is_roles_manager

    @pytest.mark.asyncio
    async def test_last_manager_checked_before_admin_guard(self, services, team):
        """Demoting the only manager fails with 4061 even though they are admin."""
        alice, _, org_id = await team()
        before = await registration(services, org_id, alice)

        with pytest.raises(VaultError) as exc_info:
            await services.members.set_roles(alice, ORG, org_id, "alice", DEFAULT_CSV)

        assert exc_info.value.code == ErrorCode.LAST_MANAGER
        assert exc_info.value.details["manager"] == "roles"
        assert (await registration(services, org_id, alice)).roles.to_csv() == before.roles.to_csv()

    @pytest.mark.asyncio
    async def test_admin_roles_not_replaceable(self, services, team):
        alice, bob, org_id = await team()
        await services.members.set_roles(alice, ORG, org_id, "bob", ADMIN_CSV)

        with pytest.raises(VaultError) as exc_info:
            await services.members.set_roles(bob, ORG, org_id, "alice", DEFAULT_CSV)
        assert exc_info.value.code == ErrorCode.SYSTEM_USER

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "csv",
        ["not,roles", RoleSet(STORE_DEFAULT_ROLES).to_csv()],
        ids=["malformed", "store-category"],
    )
    async def test_invalid_roles(self, services, team, csv):
        alice, _, org_id = await team()
        with pytest.raises(VaultError) as exc_info:
            await services.members.set_roles(alice, ORG, org_id, "bob", csv)
        assert exc_info.value.code == ErrorCode.INVALID_BODY_FIELD

    @pytest.mark.asyncio
    async def test_requires_roles_update(self, services, team):
        alice, bob, org_id = await team()
        with pytest.raises(VaultError) as exc_info:
            await services.members.set_roles(bob, ORG, org_id, "alice", DEFAULT_CSV)
        assert exc_info.value.code == ErrorCode.ACCESS_DENIED


class TestToggleAdmin:
    """Tests for toggle_admin()."""

    @pytest.mark.asyncio
    async def test_grant_and_revoke(self, services, team):
        alice, bob, org_id = await team()

        granted = await services.members.toggle_admin(alice, ORG, org_id, "bob")
        assert granted.data["admin"] is True
        member = await registration(services, org_id, bob)
        assert member.state & State.SYSTEM
        assert member.is_roles_manager and member.is_invites_manager

        revoked = await services.members.toggle_admin(alice, ORG, org_id, "bob")
        assert revoked.data["admin"] is False
        member = await registration(services, org_id, bob)
        assert not member.is_roles_manager
        assert not member.is_invites_manager

    @pytest.mark.asyncio
    async def test_not_on_self(self, services, team):
        alice, _, org_id = await team()
        with pytest.raises(VaultError) as exc_info:
            await services.members.toggle_admin(alice, ORG, org_id, "alice")
        assert exc_info.value.code == ErrorCode.NOT_ON_SELF


class TestFlags:
    """Tests for lock, block and raw state changes."""

    @pytest.mark.asyncio
    async def test_lock_and_unlock(self, services, team):
        alice, bob, org_id = await team()

        reply = await services.members.set_flag(alice, ORG, org_id, "bob", State.READONLY, True)
        assert reply.data["locked"] is True
        assert reply.data["user"]["locked"] is True

        reply = await services.members.set_flag(alice, ORG, org_id, "bob", State.READONLY, False)
        assert reply.data["locked"] is False

    @pytest.mark.asyncio
    async def test_blocked_member_loses_access(self, services, team):
        alice, bob, org_id = await team()
        await services.members.set_flag(alice, ORG, org_id, "bob", State.BLOCKED, True)

        with pytest.raises(VaultError) as exc_info:
            await services.orgs.get_org(bob, org_id)
        assert exc_info.value.code == ErrorCode.ACCESS_DENIED

    @pytest.mark.asyncio
    async def test_admin_cannot_be_blocked(self, services, team):
        alice, bob, org_id = await team()
        await services.members.set_roles(alice, ORG, org_id, "bob", ADMIN_CSV)

        with pytest.raises(VaultError) as exc_info:
            await services.members.set_flag(bob, ORG, org_id, "alice", State.BLOCKED, True)
        assert exc_info.value.code == ErrorCode.SYSTEM_USER

    @pytest.mark.asyncio
    async def test_blocking_last_manager(self, services, team):
        """Once the admin hands over management, the new manager cannot be blocked."""
        alice, bob, org_id = await team()
        await services.members.set_roles(alice, ORG, org_id, "bob", ADMIN_CSV)
        await services.members.toggle_admin(bob, ORG, org_id, "alice")

        with pytest.raises(VaultError) as exc_info:
            await services.members.set_flag(alice, ORG, org_id, "bob", State.BLOCKED, True)

        assert exc_info.value.code == ErrorCode.LAST_MANAGER
        assert not (await registration(services, org_id, bob)).state & State.BLOCKED

    @pytest.mark.asyncio
    async def test_blocked_manager_does_not_cover_last_active(self, services, team):
        alice, bob, org_id = await team()
        carol = await sign_up(services, "carol")
        await join_org(services, alice, org_id, carol)
        await services.members.set_roles(alice, ORG, org_id, "bob", ADMIN_CSV)
        await services.members.set_roles(alice, ORG, org_id, "carol", ADMIN_CSV)
        await services.members.set_flag(alice, ORG, org_id, "bob", State.BLOCKED, True)
        await services.members.toggle_admin(carol, ORG, org_id, "alice")

        with pytest.raises(VaultError) as exc_info:
            await services.members.set_roles(carol, ORG, org_id, "carol", DEFAULT_CSV)

        assert exc_info.value.code == ErrorCode.LAST_MANAGER
        assert exc_info.value.details == {"manager": "roles"}
        assert (await registration(services, org_id, carol)).is_roles_manager

    @pytest.mark.asyncio
    async def test_change_state(self, services, team):
        alice, bob, org_id = await team()

        reply = await services.members.change_state(alice, ORG, org_id, "bob", int(State.INACTIVE), True)

        assert reply.data["user"]["state"] == int(State.INACTIVE)

    @pytest.mark.asyncio
    async def test_change_state_rejects_markers(self, services, team):
        alice, _, org_id = await team()
        with pytest.raises(VaultError) as exc_info:
            await services.members.change_state(alice, ORG, org_id, "bob", int(State.SYSTEM), True)
        assert exc_info.value.code == ErrorCode.INVALID_PARAMETER


class TestRead:
    """Tests for member listing and lookup."""

    @pytest.mark.asyncio
    async def test_admin_lists_members(self, services, team):
        alice, _, org_id = await team()

        users = (await services.members.list_members(alice, ORG, org_id)).data["users"]

        assert sorted(u["username"] for u in users) == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_default_member_cannot_list(self, services, team):
        _, bob, org_id = await team()
        with pytest.raises(VaultError) as exc_info:
            await services.members.list_members(bob, ORG, org_id)
        assert exc_info.value.code == ErrorCode.ACCESS_DENIED

    @pytest.mark.asyncio
    async def test_member_reads_self(self, services, team):
        _, bob, org_id = await team()

        user = (await services.members.get_member(bob, ORG, org_id, "bob")).data["user"]

        assert user["email"] == "bob@example.com"
        assert user["roles"] == DEFAULT_CSV

        with pytest.raises(VaultError) as exc_info:
            await services.members.get_member(bob, ORG, org_id, "alice")
        assert exc_info.value.code == ErrorCode.ACCESS_DENIED

    @pytest.mark.asyncio
    async def test_unknown_and_unregistered_users(self, services, team):
        alice, _, org_id = await team()
        await sign_up(services, "carol")

        with pytest.raises(VaultError) as exc_info:
            await services.members.get_member(alice, ORG, org_id, "ghost")
        assert exc_info.value.code == ErrorCode.USER_NOT_FOUND

        with pytest.raises(VaultError) as exc_info:
            await services.members.get_member(alice, ORG, org_id, "carol")
        assert exc_info.value.code == ErrorCode.NOT_REGISTERED
