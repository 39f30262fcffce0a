"""
Member and invite routes shared by organizations and stores.

Both /1/org/{object} and /1/store/{object} expose the same member
administration; build_member_router() creates one router per object kind.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...core.ids import ObjectType
from ...core.states import State
from ...services import VaultServices
from ..deps import get_services, get_session, not_implemented, reference, respond


class RolesRequest(BaseModel):
    """Replacement role set."""

    roles: str = Field(..., description="CSV of decimal role integers")


class InviteRequest(BaseModel):
    """Invitation to an organization or store."""

    invitee: str = Field(..., description="Invitee email")
    roles: str | None = Field(None, description="CSV of roles granted on acceptance")
    message: str | None = Field(None, description="Message shown to the invitee")
    expiry_in_days: int | None = Field(None, description="Days until the invitation expires")


def build_member_router(kind: ObjectType) -> APIRouter:
    """Routes under /1/org/{object} or /1/store/{object}."""
    base = "/1/store/{object}" if kind == ObjectType.STORE else "/1/org/{object}"
    label = "store" if kind == ObjectType.STORE else "organization"
    router = APIRouter(prefix=base, tags=["Stores" if kind == ObjectType.STORE else "Organizations"])

    @router.post("/invite")
    async def invite(
        object: str,
        body: InviteRequest,
        session: dict[str, Any] = Depends(get_session),
        services: VaultServices = Depends(get_services),
    ):
        return respond(
            await services.invitations.create(
                session, kind, reference(object, label), body.model_dump(exclude_none=True)
            )
        )

    @router.get("/users")
    async def list_members(
        object: str,
        session: dict[str, Any] = Depends(get_session),
        services: VaultServices = Depends(get_services),
    ):
        return respond(await services.members.list_members(session, kind, reference(object, label)))

    @router.get("/user/{user}")
    async def get_member(
        object: str,
        user: str,
        session: dict[str, Any] = Depends(get_session),
        services: VaultServices = Depends(get_services),
    ):
        return respond(
            await services.members.get_member(
                session, kind, reference(object, label), reference(user, "user")
            )
        )

    @router.put("/user/{user}/roles")
    async def set_roles(
        object: str,
        user: str,
        body: RolesRequest,
        session: dict[str, Any] = Depends(get_session),
        services: VaultServices = Depends(get_services),
    ):
        return respond(
            await services.members.set_roles(
                session, kind, reference(object, label), reference(user, "user"), body.roles
            )
        )

    @router.put("/user/{user}/admin")
    async def toggle_admin(
        object: str,
        user: str,
        session: dict[str, Any] = Depends(get_session),
        services: VaultServices = Depends(get_services),
    ):
        return respond(
            await services.members.toggle_admin(
                session, kind, reference(object, label), reference(user, "user")
            )
        )

    @router.put("/user/{user}/lock/{locked}")
    async def lock_member(
        object: str,
        user: str,
        locked: bool,
        session: dict[str, Any] = Depends(get_session),
        services: VaultServices = Depends(get_services),
    ):
        return respond(
            await services.members.set_flag(
                session, kind, reference(object, label), reference(user, "user"), State.READONLY, locked
            )
        )

    @router.put("/user/{user}/block/{blocked}")
    async def block_member(
        object: str,
        user: str,
        blocked: bool,
        session: dict[str, Any] = Depends(get_session),
        services: VaultServices = Depends(get_services),
    ):
        return respond(
            await services.members.set_flag(
                session, kind, reference(object, label), reference(user, "user"), State.BLOCKED, blocked
            )
        )

    @router.delete("/user/{user}")
    async def remove_member(object: str, user: str):
        raise not_implemented(f"remove-{label}-member")

    if kind == ObjectType.ORG:

        @router.put("/user/{user}/state/{state}")
        async def set_state(
            object: str,
            user: str,
            state: int,
            session: dict[str, Any] = Depends(get_session),
            services: VaultServices = Depends(get_services),
        ):
            return respond(
                await services.members.change_state(
                    session, kind, reference(object, label), reference(user, "user"), state, True
                )
            )

        @router.delete("/user/{user}/state/{state}")
        async def clear_state(
            object: str,
            user: str,
            state: int,
            session: dict[str, Any] = Depends(get_session),
            services: VaultServices = Depends(get_services),
        ):
            return respond(
                await services.members.change_state(
                    session, kind, reference(object, label), reference(user, "user"), state, False
                )
            )

        @router.delete("/users")
        async def remove_all_members(object: str):
            raise not_implemented("remove-organization-members")

    return router
