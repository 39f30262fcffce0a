"""
Integration tests for account operations over real shards.

Tests cover:
- Sign-up conflicts and field validation
- Login, session replacement and logout
- Password change with store key re-wrapping
- Object lists and favorites
"""

import sqlite3

import pytest

from vaultapi.vault_server.core.crypto import generate_store_key, wrap_key
from vaultapi.vault_server.core.ids import ObjectType
from vaultapi.vault_server.core.states import State
from vaultapi.vault_server.errors import ErrorCode, InvalidCredentialsError, VaultError
from vaultapi.vault_server.sessions import session_key

from tests.helpers import (
    create_org,
    create_store,
    hash_of,
    id_of,
    open_store,
    password_of,
    sign_up,
)


class TestSignup:
    """Tests for sign-up."""

    @pytest.mark.asyncio
    async def test_signup_registers_user(self, services):
        reply = await services.accounts.signup(
            {"alias": "Alice", "email": "ALICE@example.com", "name": " Alice ", "hash": hash_of("pw")}
        )

        user = reply.data["user"]
        assert user["alias"] == "alice"
        assert user["email"] == "alice@example.com"
        assert user["name"] == "Alice"
        assert user["id"].startswith(":")

        entry = await services.repos.registry.find_user("alice")
        assert entry.id == id_of(user)
        assert (await services.repos.users.get(entry.id)).alias == "alice"

    @pytest.mark.asyncio
    async def test_alias_taken(self, services):
        await sign_up(services, "alice")
        with pytest.raises(VaultError) as exc_info:
            await services.accounts.signup({"alias": "alice", "email": "x@example.com", "hash": hash_of("pw")})
        assert exc_info.value.code == ErrorCode.ALIAS_EXISTS

    @pytest.mark.asyncio
    async def test_email_taken(self, services):
        await sign_up(services, "alice")
        with pytest.raises(VaultError) as exc_info:
            await services.accounts.signup(
                {"alias": "alice2", "email": "alice@example.com", "hash": hash_of("pw")}
            )
        assert exc_info.value.code == ErrorCode.EMAIL_EXISTS

    @pytest.mark.asyncio
    async def test_invalid_fields(self, services):
        with pytest.raises(VaultError) as exc_info:
            await services.accounts.signup({"alias": "a", "email": "nope", "hash": "plain"})

        assert exc_info.value.code == ErrorCode.INVALID_BODY_FIELD
        assert set(exc_info.value.details["fields"]) == {"alias", "email", "hash"}


class TestLogin:
    """Tests for login, hello and logout."""

    @pytest.mark.asyncio
    async def test_login_by_alias_or_email(self, services):
        await sign_up(services, "alice")

        for reference in ("alice", "ALICE@example.com"):
            session = {}
            reply = await services.accounts.login(session, reference, hash_of(password_of("alice")))
            assert reply.data["user"]["alias"] == "alice"
            assert session["user-hash"] == hash_of(password_of("alice"))

    @pytest.mark.asyncio
    async def test_unregistered_login_keeps_no_hash(self, services):
        await sign_up(services, "alice")
        session = {}

        reply = await services.accounts.login(session, "alice", hash_of(password_of("alice")), register=False)

        assert reply.data["user"]["registered"] is False
        assert "user-hash" not in session

    @pytest.mark.asyncio
    async def test_wrong_password(self, services):
        await sign_up(services, "alice")
        with pytest.raises(VaultError) as exc_info:
            await services.accounts.login({}, "alice", hash_of("wrong"))
        assert exc_info.value.code == ErrorCode.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_unknown_user(self, services):
        with pytest.raises(VaultError) as exc_info:
            await services.accounts.login({}, "ghost", hash_of("pw"))
        assert exc_info.value.code == ErrorCode.USER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_blocked_user(self, services, router):
        await sign_up(services, "alice")
        with router.registry().transaction() as conn:
            conn.execute("UPDATE registry_users SET state = ? WHERE alias = 'alice'", (int(State.BLOCKED),))

        with pytest.raises(VaultError) as exc_info:
            await services.accounts.login({}, "alice", hash_of(password_of("alice")))
        assert exc_info.value.code == ErrorCode.USER_INACTIVE

    @pytest.mark.asyncio
    async def test_login_as_other_user_replaces_session(self, services):
        """Store sessions of the previous user do not survive a login switch."""
        alice = await sign_up(services, "alice")
        await sign_up(services, "bob")
        org_id = await create_org(services, alice)
        store_id = await create_store(services, alice, org_id)
        await open_store(services, alice, org_id, store_id)

        await services.accounts.login(alice, "bob", hash_of(password_of("bob")))

        assert alice["user-username"] == "bob"
        assert session_key(store_id) not in alice

    @pytest.mark.asyncio
    async def test_relogin_same_user_keeps_session(self, services):
        alice = await sign_up(services, "alice")
        alice["marker"] = True

        await services.accounts.login(alice, "alice", hash_of(password_of("alice")))
        assert alice["marker"]

        await services.accounts.login(alice, "alice", hash_of(password_of("alice")), reset=True)
        assert "marker" not in alice

    @pytest.mark.asyncio
    async def test_hello(self, services):
        assert (await services.accounts.hello({})).code == ErrorCode.LOGIN_TO_CONTINUE

        alice = await sign_up(services, "alice")
        reply = await services.accounts.hello(alice)
        assert reply.code == ErrorCode.OK
        assert reply.data["user"]["registered"] is True

    @pytest.mark.asyncio
    async def test_logout(self, services):
        alice = await sign_up(services, "alice")

        reply = await services.accounts.logout(alice)

        assert reply.code == ErrorCode.LOGGED_OUT
        assert alice == {}
        with pytest.raises(VaultError) as exc_info:
            await services.accounts.me(alice)
        assert exc_info.value.code == ErrorCode.NOT_LOGGED_IN


class TestChangePassword:
    """Tests for password change."""

    @pytest.mark.asyncio
    async def test_rewraps_store_keys(self, services):
        """Every store opens with the new password and no longer with the old one."""
        alice = await sign_up(services, "alice")
        org_id = await create_org(services, alice)
        first = await create_store(services, alice, org_id, "first")
        second = await create_store(services, alice, org_id, "second")

        reply = await services.accounts.change_password(
            alice, hash_of(password_of("alice")), hash_of("new-password")
        )

        assert reply.data["stores"] == 2
        assert alice["user-hash"] == hash_of("new-password")
        for store_id in (first, second):
            session = {}
            await services.accounts.login(session, "alice", hash_of("new-password"))
            await services.stores.open(session, org_id, store_id, hash_of("new-password"))

            stale = {}
            await services.accounts.login(stale, "alice", hash_of("new-password"))
            with pytest.raises(InvalidCredentialsError):
                await services.stores.open(stale, org_id, store_id, hash_of(password_of("alice")))

        with pytest.raises(VaultError):
            await services.accounts.login({}, "alice", hash_of(password_of("alice")))

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, services):
        alice = await sign_up(services, "alice")
        with pytest.raises(VaultError) as exc_info:
            await services.accounts.change_password(alice, hash_of("wrong"), hash_of("new"))
        assert exc_info.value.code == ErrorCode.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_same_password_rejected(self, services):
        alice = await sign_up(services, "alice")
        current = hash_of(password_of("alice"))
        with pytest.raises(VaultError) as exc_info:
            await services.accounts.change_password(alice, current, current)
        assert exc_info.value.code == ErrorCode.INVALID_BODY_FIELD

    @pytest.mark.asyncio
    async def test_unwrappable_key_writes_nothing(self, services):
        """If one store key does not unwrap, neither verifier nor keys change."""
        alice = await sign_up(services, "alice")
        org_id = await create_org(services, alice)
        good = await create_store(services, alice, org_id, "good")
        bad = await create_store(services, alice, org_id, "bad")
        user_id = alice["user-id"]
        await services.repos.memberships.update_wrapped_key(
            bad, user_id, wrap_key(hash_of("someone-else"), generate_store_key()), user_id
        )
        before = (await services.repos.memberships.get(good, user_id)).wrapped_key

        with pytest.raises(InvalidCredentialsError):
            await services.accounts.change_password(alice, hash_of(password_of("alice")), hash_of("new"))

        assert (await services.repos.memberships.get(good, user_id)).wrapped_key == before
        await services.accounts.login({}, "alice", hash_of(password_of("alice")))

    @pytest.mark.asyncio
    async def test_failed_key_write_restores_old_password(self, services, monkeypatch):
        """A store write failing midway puts back every key already re-wrapped."""
        alice = await sign_up(services, "alice")
        org_id = await create_org(services, alice)
        first = await create_store(services, alice, org_id, "first")
        second = await create_store(services, alice, org_id, "second")
        memberships = services.repos.memberships
        update = memberships.update_wrapped_key
        calls = []

        async def fail_second_write(object_id, *args):
            calls.append(object_id)
            if len(calls) == 2:
                raise sqlite3.OperationalError("database is locked")
            return await update(object_id, *args)

        monkeypatch.setattr(memberships, "update_wrapped_key", fail_second_write)
        with pytest.raises(VaultError) as exc_info:
            await services.accounts.change_password(alice, hash_of(password_of("alice")), hash_of("new"))
        monkeypatch.undo()

        assert exc_info.value.code == ErrorCode.DATABASE
        assert len(calls) == 3
        assert calls[2] == calls[0]
        for store_id in (first, second):
            session = {}
            await services.accounts.login(session, "alice", hash_of(password_of("alice")))
            await services.stores.open(session, org_id, store_id, hash_of(password_of("alice")))


class TestObjects:
    """Tests for the user's object list and favorites."""

    @pytest.mark.asyncio
    async def test_objects_and_favorites(self, services):
        alice = await sign_up(services, "alice")
        org_id = await create_org(services, alice)
        store_id = await create_store(services, alice, org_id)

        objects = (await services.accounts.objects(alice)).data["objects"]
        assert {o["alias"] for o in objects} == {"acme", "vault"}

        stores = (await services.accounts.objects(alice, ObjectType.STORE)).data["objects"]
        assert [id_of(o, "object") for o in stores] == [store_id]

        reply = await services.accounts.toggle_favorite(alice, "acme")
        assert reply.data["object"]["favorite"] is True
        favorites = (await services.accounts.objects(alice, favorites=True)).data["objects"]
        assert [id_of(o, "object") for o in favorites] == [org_id]

    @pytest.mark.asyncio
    async def test_favorite_requires_registration(self, services):
        alice = await sign_up(services, "alice")
        bob = await sign_up(services, "bob")
        org_id = await create_org(services, alice)

        with pytest.raises(VaultError) as exc_info:
            await services.accounts.toggle_favorite(bob, org_id)
        assert exc_info.value.code == ErrorCode.NOT_REGISTERED
