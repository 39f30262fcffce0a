"""
Account operations: sign-up, login/logout, profile, password change and the
user's object lists.

A user is two rows: the User row on a random data shard (source) and the
User-Registry row (mirror). Sign-up writes both under a saga.

Password change re-wraps every store key held by the user: all keys are
unwrapped with the current hash first, and nothing is written unless every
unwrap succeeded.
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.crypto import check_verifier, is_password_hash, make_verifier, unwrap_key, wrap_key
from ..core.ids import ObjectType, is_type
from ..core.states import State, has_any
from ..errors import ErrorCode, VaultError
from ..pipeline import Abort, Chain
from ..storage.registry import UserEntry
from ..storage.saga import Saga
from .base import USER_ALIAS_PATTERN, Reply, ServiceBase, field_error, normalize_email
from .context import LoginContext, RequestContext
from .exports import export_link, export_user

logger = logging.getLogger(__name__)


class AccountService(ServiceBase):
    """Sign-up, sessions and the session user's profile."""

    def context(self, session: Any) -> RequestContext:
        return RequestContext(session=session, now=self.now())

    # --- Users ---

    async def create_user(
        self,
        alias: str,
        email: str,
        name: str | None,
        password_hash: str,
        creator: int | None = None,
    ) -> UserEntry:
        """Create the User row and its registry mirror.

        Raises:
            VaultError: 4010/4011 if alias or email are taken
        """
        conflict = await self.repos.registry.user_exists(alias, email)
        if conflict is not None:
            raise VaultError(conflict)

        verifier = make_verifier(password_hash)
        saga = Saga("create-user")
        user = await saga.step(
            "user",
            lambda: self.repos.users.create(alias, email, name, verifier, creator, self.now()),
            lambda created: self.repos.users.delete(created.id),
        )
        entry = UserEntry(
            id=user.id, alias=alias, email=email, name=name, state=0, verifier=verifier
        )
        await saga.step("registry", lambda: self.repos.registry.add_user(entry))

        logger.info("Created user", extra={"user_id": user.id})
        return entry

    @staticmethod
    def validate_profile(body: dict[str, Any], require_email: bool = True) -> dict[str, Any]:
        """Check sign-up fields.

        Raises:
            VaultError: 5202 with the failing fields
        """
        errors: dict[str, str] = {}
        alias = body.get("alias")
        if not isinstance(alias, str) or not USER_ALIAS_PATTERN.match(alias.strip().lower()):
            errors["alias"] = "Value is not a valid user alias"
        email = normalize_email(body.get("email"))
        if require_email and email is None:
            errors["email"] = "Value is not a valid email"
        password_hash = body.get("hash")
        if not is_password_hash(password_hash):
            errors["hash"] = "Value is not a valid password hash"
        name = body.get("name")
        if name is not None and not isinstance(name, str):
            errors["name"] = "Value is not a string"
        if errors:
            raise field_error(**errors)

        return {
            "alias": alias.strip().lower(),
            "email": email,
            "name": name.strip() if isinstance(name, str) and name.strip() else None,
            "hash": password_hash,
        }

    async def signup(self, body: dict[str, Any]) -> Reply:
        profile = self.validate_profile(body)
        user = await self.create_user(profile["alias"], profile["email"], profile["name"], profile["hash"])
        return Reply({"user": export_user(user)})

    # --- Session ---

    async def hello(self, session: Any) -> Reply:
        ctx = self.context(session)
        user_id = ctx.user.user_id
        if user_id is None:
            return Reply(code=ErrorCode.LOGIN_TO_CONTINUE)

        user = await self.repos.registry.get_user(user_id)
        if user is None:
            ctx.user.clear()
            return Reply(code=ErrorCode.LOGIN_TO_CONTINUE)
        return Reply({"user": export_user(user, ctx.user.is_registered)})

    async def login(
        self,
        session: Any,
        reference: int | str,
        password_hash: str,
        reset: bool = False,
        register: bool = True,
    ) -> Reply:
        """Open a user session.

        An existing session for another user is always closed; one for the
        same user is kept unless reset is requested.
        """
        ctx = LoginContext(
            session=session,
            now=self.now(),
            reference=reference,
            password_hash=password_hash,
            reset=reset,
            register=register,
        )
        await Chain(
            "login",
            self._find_account,
            self._close_previous,
            self._check_account,
            self._open_session,
        ).run(ctx)
        logger.info("User logged in", extra={"user_id": ctx.account.id})
        return Reply({"user": export_user(ctx.account, register)})

    async def _find_account(self, ctx: LoginContext) -> None:
        reference = ctx.reference
        if isinstance(reference, int) and not is_type(reference, ObjectType.USER):
            raise Abort(ErrorCode.USER_NOT_FOUND)
        ctx.account = await self.repos.registry.find_user(reference)
        if ctx.account is None:
            raise Abort(ErrorCode.USER_NOT_FOUND)

    async def _close_previous(self, ctx: LoginContext) -> None:
        current = ctx.user.user_id
        if current is not None and (current != ctx.account.id or ctx.reset):
            ctx.user.clear()

    async def _check_account(self, ctx: LoginContext) -> None:
        if has_any(ctx.account.state, State.INACTIVE | State.BLOCKED | State.DELETED):
            raise Abort(ErrorCode.USER_INACTIVE)
        if not check_verifier(ctx.password_hash, ctx.account.verifier):
            raise Abort(ErrorCode.INVALID_CREDENTIALS)

    async def _open_session(self, ctx: LoginContext) -> None:
        ctx.user.login(ctx.account, ctx.password_hash if ctx.register else None)

    async def logout(self, session: Any) -> Reply:
        self.context(session).user.clear()
        return Reply(code=ErrorCode.LOGGED_OUT)

    # --- Profile ---

    async def _session_user(self, ctx: RequestContext) -> UserEntry:
        user_id = ctx.user.require()
        user = await self.repos.registry.get_user(user_id)
        if user is None:
            ctx.user.clear()
            raise VaultError(ErrorCode.USER_NOT_FOUND)
        return user

    async def me(self, session: Any) -> Reply:
        ctx = self.context(session)
        user = await self._session_user(ctx)
        return Reply({"user": export_user(user, ctx.user.is_registered)})

    async def change_password(self, session: Any, current: Any, new: Any) -> Reply:
        """Replace the password verifier and re-wrap every store key.

        Raises:
            VaultError: 5202 on malformed hashes, 3001 if current is wrong or
                does not unwrap every store key
        """
        ctx = self.context(session)
        user = await self._session_user(ctx)

        errors: dict[str, str] = {}
        if not is_password_hash(current):
            errors["current"] = "Value is not a valid password hash"
        if not is_password_hash(new):
            errors["new"] = "Value is not a valid password hash"
        elif new == current:
            errors["new"] = "New password must differ from current password"
        if errors:
            raise field_error(**errors)

        if not check_verifier(current, user.verifier):
            raise VaultError(ErrorCode.INVALID_CREDENTIALS)

        memberships = self.repos.memberships
        old_keys: dict[int, bytes] = {}
        new_keys: dict[int, bytes] = {}
        for link in await memberships.list_links(user.id, ObjectType.STORE):
            member = await memberships.get(link.object_id, user.id)
            if member is None or not member.wrapped_key:
                continue
            store_key = unwrap_key(current, member.wrapped_key)
            old_keys[link.object_id] = member.wrapped_key
            new_keys[link.object_id] = wrap_key(new, store_key)

        verifier = make_verifier(new)
        saga = Saga("change-password")
        await saga.step(
            "user",
            lambda: self.repos.users.update_verifier(user.id, verifier, user.id, ctx.now),
            lambda _: self.repos.users.update_verifier(user.id, user.verifier, user.id, ctx.now),
        )
        await saga.step(
            "registry",
            lambda: self.repos.registry.update_user_verifier(user.id, verifier),
            lambda _: self.repos.registry.update_user_verifier(user.id, user.verifier),
        )
        for store_id, wrapped in new_keys.items():
            await saga.step(
                f"store-key:{store_id:x}",
                lambda store_id=store_id, wrapped=wrapped: memberships.update_wrapped_key(
                    store_id, user.id, wrapped, user.id
                ),
                lambda _, store_id=store_id: memberships.update_wrapped_key(
                    store_id, user.id, old_keys[store_id], user.id
                ),
            )

        if ctx.user.is_registered:
            ctx.user.login(user, new)
        logger.info(
            "Changed password", extra={"user_id": user.id, "stores": len(new_keys)}
        )
        return Reply({"user": export_user(user, ctx.user.is_registered), "stores": len(new_keys)})

    # --- Objects ---

    async def objects(self, session: Any, kind: ObjectType | None = None, favorites: bool = False) -> Reply:
        ctx = self.context(session)
        user_id = ctx.user.require()
        links = await self.repos.memberships.list_links(user_id, kind, favorites)
        return Reply({"objects": [export_link(link) for link in links]})

    async def toggle_favorite(self, session: Any, object_id: int | str) -> Reply:
        ctx = self.context(session)
        user_id = ctx.user.require()
        if not isinstance(object_id, int):
            org = await self.repos.registry.find_org(object_id)
            if org is None:
                raise VaultError(ErrorCode.ORG_NOT_FOUND)
            object_id = org.id

        favorite = await self.repos.memberships.toggle_favorite(user_id, object_id)
        if favorite is None:
            raise VaultError(ErrorCode.NOT_REGISTERED)
        link = await self.repos.memberships.get_link(user_id, object_id)
        return Reply({"object": export_link(link)})
