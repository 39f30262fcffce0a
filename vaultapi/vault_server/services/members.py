"""
Member administration for organizations and stores.

Operations target one registration (object, user): roles, the admin marker,
lock (READONLY), block (BLOCKED) and raw function state bits.

Invariants:
    - Every object keeps at least one roles manager and one invites manager;
      a change that would remove the last one fails with 4061 and writes
      nothing
    - Roles granted on an object belong to that object's category
    - SYSTEM (admin) registrations cannot be locked, blocked or re-stated
      by others

How to change safely:
    - Run the last-manager check before any write
    - Keep role requirements in the chain of each operation
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.ids import ObjectType
from ..core.roles import (
    FUNCTION_LIST,
    FUNCTION_READ,
    FUNCTION_UPDATE,
    ORG_ADMIN_ROLES,
    ORG_MANAGEMENT_ROLES,
    STORE_ADMIN_ROLES,
    STORE_MANAGEMENT_ROLES,
    SUBCATEGORY_ROLES,
    SUBCATEGORY_USER,
    RoleSet,
    is_valid_roles_csv,
)
from ..core.states import (
    State,
    clear_states,
    clear_user_states,
    has_any,
    is_system,
    set_states,
    set_user_states,
)
from ..errors import ErrorCode, VaultError
from ..pipeline import Chain
from ..storage.memberships import Membership
from .base import Reply, ServiceBase, category_for, field_error, require_role
from .context import ObjectRequestContext
from .exports import export_member

logger = logging.getLogger(__name__)


class MemberService(ServiceBase):
    """Registrations of users with organizations and stores."""

    def context(
        self,
        session: Any,
        kind: ObjectType,
        reference: int | str,
        user: int | str | None = None,
    ) -> ObjectRequestContext:
        return ObjectRequestContext(
            session=session,
            now=self.now(),
            kind=kind,
            reference=reference,
            target_reference=user,
        )

    async def _load(self, ctx: ObjectRequestContext, *steps: Any, name: str) -> None:
        await Chain(
            name,
            self.require_session,
            self.load_object,
            self.load_member,
            *steps,
        ).run(ctx)

    async def protect_last_manager(self, ctx: ObjectRequestContext, roles: RoleSet, state: int) -> None:
        """Fail with 4061 if the target would stop being the last manager.

        A blocked or deleted registration counts as holding no roles.
        """
        target = ctx.target
        active = not has_any(state, State.BLOCKED | State.DELETED)
        roles_mgr = active and roles.is_roles_manager()
        invites_mgr = active and roles.is_invites_manager()
        target_active = not has_any(target.state, State.BLOCKED | State.DELETED)

        losing_roles = target_active and target.is_roles_manager and not roles_mgr
        losing_invites = target_active and target.is_invites_manager and not invites_mgr
        if not (losing_roles or losing_invites):
            return

        roles_count, invites_count = await self.repos.memberships.count_managers(ctx.object_id)
        if losing_roles and roles_count <= 1:
            raise VaultError(ErrorCode.LAST_MANAGER, details={"manager": "roles"})
        if losing_invites and invites_count <= 1:
            raise VaultError(ErrorCode.LAST_MANAGER, details={"manager": "invites"})

    async def _save(self, ctx: ObjectRequestContext, roles: RoleSet, state: int) -> Membership:
        target = ctx.target
        target.roles = roles
        target.state = state
        await self.repos.memberships.update(target, ctx.user.require())
        logger.info(
            "Updated registration",
            extra={
                "object_id": target.object_id,
                "user_id": target.user_id,
                "state": state,
                "roles": roles.to_csv(),
            },
        )
        return target

    # --- Read ---

    async def _require_read_unless_self(self, ctx: ObjectRequestContext) -> None:
        if ctx.target_user.id != ctx.member.user_id:
            await require_role(SUBCATEGORY_USER, FUNCTION_READ)(ctx)

    async def list_members(self, session: Any, kind: ObjectType, reference: int | str) -> Reply:
        ctx = self.context(session, kind, reference)
        await self._load(ctx, require_role(SUBCATEGORY_USER, FUNCTION_LIST), name="list-members")
        members = await self.repos.memberships.list_members(ctx.object_id)
        return Reply({"users": [export_member(member) for member in members]})

    async def get_member(self, session: Any, kind: ObjectType, reference: int | str, user: int | str) -> Reply:
        ctx = self.context(session, kind, reference, user)
        await self._load(ctx, self.load_target, self._require_read_unless_self, name="get-member")
        return Reply({"user": export_member(ctx.target, ctx.target_user)})

    # --- Roles ---

    async def set_roles(
        self, session: Any, kind: ObjectType, reference: int | str, user: int | str, csv: Any
    ) -> Reply:
        """Replace the roles of a registration.

        Raises:
            VaultError: 5202 on a malformed CSV or roles outside the object's
                category, 4061 if the last manager would be removed, 4101 if
                the target is an admin of the object
        """
        ctx = self.context(session, kind, reference, user)
        await self._load(
            ctx,
            require_role(SUBCATEGORY_ROLES, FUNCTION_UPDATE),
            self.load_target,
            name="set-roles",
        )

        if not isinstance(csv, str) or not is_valid_roles_csv(csv):
            raise field_error(roles="Value is not a valid roles list")
        roles = RoleSet.from_csv(csv)
        if not roles.in_category(category_for(ctx.kind)):
            raise field_error(roles="Roles do not belong to the object category")

        await Chain(
            "set-roles-checks",
            lambda c: self.protect_last_manager(c, roles, c.target.state),
            self.require_not_system,
        ).run(ctx)

        member = await self._save(ctx, roles, ctx.target.state)
        return Reply({"user": export_member(member, ctx.target_user)})

    async def toggle_admin(self, session: Any, kind: ObjectType, reference: int | str, user: int | str) -> Reply:
        """Flip the admin marker.

        Granting adds the admin role set; revoking removes the management
        roles.
        """
        ctx = self.context(session, kind, reference, user)
        await self._load(
            ctx,
            require_role(SUBCATEGORY_ROLES, FUNCTION_UPDATE),
            self.load_target,
            self.require_not_self,
            name="toggle-admin",
        )

        target = ctx.target
        roles = target.roles.copy()
        if is_system(target.state):
            roles.remove_all(STORE_MANAGEMENT_ROLES if ctx.kind == ObjectType.STORE else ORG_MANAGEMENT_ROLES)
            state = clear_states(target.state, State.SYSTEM)
            await self.protect_last_manager(ctx, roles, state)
        else:
            roles.add_all(STORE_ADMIN_ROLES if ctx.kind == ObjectType.STORE else ORG_ADMIN_ROLES)
            state = set_states(target.state, State.SYSTEM)

        member = await self._save(ctx, roles, state)
        return Reply({"admin": is_system(state), "user": export_member(member, ctx.target_user)})

    # --- State ---

    async def set_flag(
        self,
        session: Any,
        kind: ObjectType,
        reference: int | str,
        user: int | str,
        flag: State,
        enabled: bool,
    ) -> Reply:
        """Lock (READONLY) or block (BLOCKED) a registration."""
        ctx = self.context(session, kind, reference, user)
        await self._load(
            ctx,
            require_role(SUBCATEGORY_USER, FUNCTION_UPDATE),
            self.load_target,
            self.require_not_self,
            self.require_not_system,
            name="set-member-flag",
        )

        target = ctx.target
        state = set_states(target.state, flag) if enabled else clear_states(target.state, flag)
        await self.protect_last_manager(ctx, target.roles, state)

        member = await self._save(ctx, target.roles, state)
        key = "locked" if flag == State.READONLY else "blocked"
        return Reply({key: has_any(state, flag), "user": export_member(member, ctx.target_user)})

    async def change_state(
        self,
        session: Any,
        kind: ObjectType,
        reference: int | str,
        user: int | str,
        flags: int,
        enabled: bool,
    ) -> Reply:
        """Set or clear raw function state bits (markers are rejected with 3100)."""
        ctx = self.context(session, kind, reference, user)
        await self._load(
            ctx,
            require_role(SUBCATEGORY_USER, FUNCTION_UPDATE),
            self.load_target,
            self.require_not_self,
            self.require_not_system,
            name="change-member-state",
        )

        target = ctx.target
        state = set_user_states(target.state, flags) if enabled else clear_user_states(target.state, flags)
        await self.protect_last_manager(ctx, target.roles, state)

        member = await self._save(ctx, target.roles, state)
        return Reply({"user": export_member(member, ctx.target_user)})
