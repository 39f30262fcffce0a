"""
Organization operations: creation, profile, store list and store creation.

Creating an organization or a store makes the creator its administrator
(SYSTEM registration marker plus the admin role set). A new store gets a
fresh content key, wrapped under the creator's password hash.
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.crypto import check_verifier, generate_store_key, is_password_hash, wrap_key
from ..core.ids import ObjectType, to_external
from ..core.roles import (
    FUNCTION_CREATE,
    FUNCTION_LIST,
    FUNCTION_READ,
    FUNCTION_UPDATE,
    ORG_ADMIN_ROLES,
    STORE_ADMIN_ROLES,
    SUBCATEGORY_ORG,
    SUBCATEGORY_STORE,
    RoleSet,
)
from ..core.states import State, clear_states, has_any, set_states
from ..errors import ErrorCode, VaultError
from ..pipeline import Chain
from ..storage.memberships import Membership, OrgStoreLink
from ..storage.registry import OrgEntry
from ..storage.saga import Saga
from .base import ORG_ALIAS_PATTERN, USER_ALIAS_PATTERN, Reply, ServiceBase, field_error, require_role
from .context import ObjectRequestContext
from .exports import export_org, export_org_store, export_store

logger = logging.getLogger(__name__)


def _clean_name(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise field_error(name="Value is not a string")
    return value.strip() or None


class OrgService(ServiceBase):
    """Organizations and the stores they own."""

    def context(self, session: Any, reference: int | str | None) -> ObjectRequestContext:
        return ObjectRequestContext(
            session=session, now=self.now(), kind=ObjectType.ORG, reference=reference
        )

    async def create_org(self, session: Any, alias: Any, name: Any = None) -> Reply:
        """Create an organization with the session user as administrator.

        Raises:
            VaultError: 5202 on a malformed alias, 4010 if the alias is taken
        """
        ctx = self.context(session, None)
        user_id = ctx.user.require()
        if not isinstance(alias, str) or not ORG_ALIAS_PATTERN.match(alias.strip().lower()):
            raise field_error(alias="Value is not a valid organization alias")
        alias = alias.strip().lower()
        name = _clean_name(name)

        if await self.repos.registry.find_org(alias) is not None:
            raise VaultError(ErrorCode.ALIAS_EXISTS, details={"organization": alias})

        saga = Saga("create-org")
        org = await saga.step(
            "org",
            lambda: self.repos.orgs.create_org(alias, name, user_id),
            lambda created: self.repos.orgs.delete_org(created.id),
        )
        entry = OrgEntry(id=org.id, alias=alias, name=name, state=0)
        await saga.step(
            "registry",
            lambda: self.repos.registry.add_org(entry),
            lambda _: self.repos.registry.delete_org(org.id),
        )
        await saga.step(
            "admin",
            lambda: self.repos.memberships.register(
                Membership(
                    object_id=org.id,
                    user_id=user_id,
                    username=ctx.user.alias,
                    state=State.SYSTEM,
                    roles=RoleSet(ORG_ADMIN_ROLES),
                    creator=user_id,
                ),
                alias,
            ),
        )

        logger.info("Created organization", extra={"org_id": org.id, "user_id": user_id})
        return Reply({"organization": export_org(entry)})

    async def get_org(self, session: Any, reference: int | str) -> Reply:
        ctx = self.context(session, reference)
        await Chain(
            "get-org",
            self.require_session,
            self.load_org,
            self.load_member,
            require_role(SUBCATEGORY_ORG, FUNCTION_READ),
        ).run(ctx)
        return Reply({"organization": export_org(ctx.org)})

    async def list_stores(self, session: Any, reference: int | str) -> Reply:
        ctx = self.context(session, reference)
        await Chain(
            "list-org-stores",
            self.require_session,
            self.load_org,
            self.load_member,
            require_role(SUBCATEGORY_STORE, FUNCTION_LIST),
        ).run(ctx)
        links = await self.repos.memberships.list_org_stores(ctx.org.id)
        return Reply({"stores": [export_org_store(link) for link in links]})

    async def create_store(
        self,
        session: Any,
        reference: int | str,
        alias: Any,
        name: Any,
        password_hash: Any,
    ) -> Reply:
        """Create a store in an organization.

        The creator's password hash wraps the new store key, so it must
        match their login credentials.

        Raises:
            VaultError: 5202 on malformed fields, 3001 on a wrong hash,
                4010 if the alias is taken in the organization
        """
        ctx = self.context(session, reference)
        await Chain(
            "create-store",
            self.require_session,
            self.load_org,
            self.load_member,
            require_role(SUBCATEGORY_STORE, FUNCTION_CREATE),
        ).run(ctx)

        errors: dict[str, str] = {}
        if not isinstance(alias, str) or not USER_ALIAS_PATTERN.match(alias.strip().lower()):
            errors["alias"] = "Value is not a valid store alias"
        if not is_password_hash(password_hash):
            errors["hash"] = "Value is not a valid password hash"
        if errors:
            raise field_error(**errors)
        alias = alias.strip().lower()
        name = _clean_name(name)

        user = await self.repos.registry.get_user(ctx.user.require())
        if user is None or not check_verifier(password_hash, user.verifier):
            raise VaultError(ErrorCode.INVALID_CREDENTIALS)
        if await self.repos.memberships.find_org_store(ctx.org.id, alias) is not None:
            raise VaultError(ErrorCode.ALIAS_EXISTS, details={"store": alias})

        store_key = generate_store_key()
        memberships = self.repos.memberships
        saga = Saga("create-store")
        store = await saga.step(
            "store",
            lambda: self.repos.orgs.create_store(ctx.org.id, alias, name, user.id),
            lambda created: self.repos.orgs.delete_store(created.id),
        )
        await saga.step(
            "org-store",
            lambda: memberships.add_org_store(OrgStoreLink(ctx.org.id, store.id, alias)),
            lambda link: memberships.remove_org_store(link.org_id, link.store_id),
        )
        await saga.step(
            "admin",
            lambda: memberships.register(
                Membership(
                    object_id=store.id,
                    user_id=user.id,
                    username=user.alias,
                    state=State.SYSTEM,
                    roles=RoleSet(STORE_ADMIN_ROLES),
                    wrapped_key=wrap_key(password_hash, store_key),
                    creator=user.id,
                ),
                alias,
            ),
        )

        logger.info(
            "Created store",
            extra={"org_id": ctx.org.id, "store_id": store.id, "user_id": user.id},
        )
        return Reply({"store": export_store(store)})

    async def set_store_state(
        self,
        session: Any,
        reference: int | str,
        store_reference: int | str,
        flag: State,
        enabled: bool,
    ) -> Reply:
        """Lock (READONLY) or block (BLOCKED) a store within its organization."""
        ctx = self.context(session, reference)

        async def load_store(ctx: ObjectRequestContext) -> None:
            await self.load_org_store(ctx, store_reference)

        await Chain(
            "set-store-state",
            self.require_session,
            self.load_org,
            self.load_member,
            require_role(SUBCATEGORY_STORE, FUNCTION_UPDATE),
            load_store,
        ).run(ctx)

        state = set_states(ctx.store_state, flag) if enabled else clear_states(ctx.store_state, flag)
        if not await self.repos.memberships.update_org_store_state(ctx.org.id, ctx.store.id, state):
            raise VaultError(ErrorCode.STORE_NOT_FOUND, details={"store": to_external(ctx.store.id)})

        key = "locked" if flag == State.READONLY else "blocked"
        return Reply({key: has_any(state, flag), "store": export_store(ctx.store, state)})
