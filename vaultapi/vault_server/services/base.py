"""
Shared steps and helpers for service chains.

Services compose these steps into Chains:

    await Chain(
        "get-org",
        self.require_session,
        self.load_object,
        self.load_member,
        require_role(SUBCATEGORY_ORG, FUNCTION_READ),
    ).run(ctx)

Invariants:
    - Role requirements are expressed by subcategory and functions; the
      category follows the target object (organization or store)
    - A blocked registration grants nothing
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..core.ids import ObjectType, is_type, to_external
from ..core.roles import CATEGORY_ORG, CATEGORY_STORE, role
from ..core.states import State, has_any, is_blocked, is_readonly, is_system
from ..errors import ErrorCode, VaultError
from ..pipeline import Abort, Step
from .context import ObjectRequestContext, RequestContext

if TYPE_CHECKING:
    from . import VaultServices

USER_ALIAS_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.-]{1,63}$")
ORG_ALIAS_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]{1,63}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")


@dataclass
class Reply:
    """Service result: response code plus the "data" member."""

    data: dict[str, Any] | None = None
    code: int = ErrorCode.OK


def field_error(**fields: str) -> VaultError:
    """5202 with per-field messages."""
    return VaultError(ErrorCode.INVALID_BODY_FIELD, details={"fields": fields})


def normalize_email(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    email = value.strip().lower()
    return email if EMAIL_PATTERN.match(email) else None


def category_for(kind: ObjectType) -> int:
    return CATEGORY_STORE if kind == ObjectType.STORE else CATEGORY_ORG


def require_role(subcategory: int, functions: int) -> Step:
    """Step: caller's registration must hold the role on the target object."""

    async def check_role(ctx: ObjectRequestContext) -> None:
        required = role(category_for(ctx.kind) | subcategory, functions)
        if not ctx.roles.has(required):
            raise Abort(ErrorCode.ACCESS_DENIED, {"required": required})

    return check_role


class ServiceBase:
    """Base for services: repositories, clock and common steps."""

    def __init__(self, services: VaultServices) -> None:
        self.services = services
        self.repos = services.repos
        self.config = services.config

    def now(self) -> int:
        return int(self.services.clock())

    # --- Session ---

    async def require_session(self, ctx: RequestContext) -> None:
        ctx.user.require()

    # --- Objects ---

    async def load_object(self, ctx: ObjectRequestContext) -> None:
        if ctx.kind == ObjectType.STORE:
            await self.load_store(ctx)
        else:
            await self.load_org(ctx)

    async def load_org(self, ctx: ObjectRequestContext) -> None:
        reference = ctx.reference
        if reference is None or (isinstance(reference, int) and not is_type(reference, ObjectType.ORG)):
            raise Abort(ErrorCode.ORG_NOT_FOUND)

        org = await self.repos.registry.find_org(reference)
        if org is None:
            raise Abort(ErrorCode.ORG_NOT_FOUND, {"organization": str(reference)})
        ctx.org = org

    async def load_store(self, ctx: ObjectRequestContext) -> None:
        """Load a store by global id, with its organization and state."""
        reference = ctx.reference
        if not isinstance(reference, int):
            raise Abort(
                ErrorCode.INVALID_PARAMETER,
                {"store": str(reference), "reason": "store alias requires its organization"},
            )
        if not is_type(reference, ObjectType.STORE):
            raise Abort(ErrorCode.STORE_NOT_FOUND)

        store = await self.repos.orgs.get_store(reference)
        if store is None:
            raise Abort(ErrorCode.STORE_NOT_FOUND, {"store": to_external(reference)})
        await self._attach_store(ctx, store.org_id, store.id)

    async def load_org_store(self, ctx: ObjectRequestContext, reference: int | str) -> None:
        """Load a store through its organization (id or alias within the org)."""
        link = await self.repos.memberships.find_org_store(ctx.org.id, reference)
        if link is None:
            raise Abort(ErrorCode.STORE_NOT_FOUND, {"store": str(reference)})
        await self._attach_store(ctx, link.org_id, link.store_id)

    async def _attach_store(self, ctx: ObjectRequestContext, org_id: int, store_id: int) -> None:
        store = await self.repos.orgs.get_store(store_id)
        link = await self.repos.memberships.find_org_store(org_id, store_id)
        if store is None or link is None:
            raise Abort(ErrorCode.STORE_NOT_FOUND, {"store": to_external(store_id)})

        org = ctx.org if ctx.org is not None and ctx.org.id == org_id else None
        if org is None:
            org = await self.repos.registry.find_org(org_id)
            if org is None:
                raise Abort(ErrorCode.ORG_NOT_FOUND, {"organization": to_external(org_id)})

        ctx.org = org
        ctx.store = store
        ctx.store_state = link.state

    async def require_store_available(self, ctx: ObjectRequestContext) -> None:
        if is_blocked(ctx.store_state):
            raise Abort(ErrorCode.STORE_BLOCKED)

    async def require_store_writable(self, ctx: ObjectRequestContext) -> None:
        if is_readonly(ctx.store_state) or (ctx.member is not None and is_readonly(ctx.member.state)):
            raise Abort(ErrorCode.STORE_READONLY)

    # --- Registrations ---

    async def load_member(self, ctx: ObjectRequestContext) -> None:
        """Caller's registration with the target object."""
        user_id = ctx.user.require()
        member = await self.repos.memberships.get(ctx.object_id, user_id)
        if member is None or has_any(member.state, State.BLOCKED | State.DELETED):
            raise Abort(ErrorCode.ACCESS_DENIED, {"object": to_external(ctx.object_id)})
        ctx.member = member

    async def load_target(self, ctx: ObjectRequestContext) -> None:
        """User a member operation targets, and their registration."""
        if ctx.target_reference is None:
            raise Abort(ErrorCode.INVALID_PARAMETER, {"user": None})

        user = await self.repos.registry.find_user(ctx.target_reference)
        if user is None:
            raise Abort(ErrorCode.USER_NOT_FOUND, {"user": str(ctx.target_reference)})

        target = await self.repos.memberships.get(ctx.object_id, user.id)
        if target is None:
            raise Abort(ErrorCode.NOT_REGISTERED, {"user": user.alias})

        ctx.target_user = user
        ctx.target = target

    async def require_not_self(self, ctx: ObjectRequestContext) -> None:
        if ctx.target_user is not None and ctx.target_user.id == ctx.user.user_id:
            raise Abort(ErrorCode.NOT_ON_SELF)

    async def require_not_system(self, ctx: ObjectRequestContext) -> None:
        if ctx.target is not None and is_system(ctx.target.state):
            raise Abort(ErrorCode.SYSTEM_USER)
