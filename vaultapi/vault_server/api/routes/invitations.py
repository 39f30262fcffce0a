"""
Invitation routes.

Public (no session needed): /1/invitation/invite/{uid} (info),
/1/invitation/accept/{uid}, /1/invitation/decline/{uid}.
Member routes: /1/invites/{object}, /1/invite/{id}.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from ...services import VaultServices
from ..deps import get_services, get_session, reference, respond

router = APIRouter(prefix="/1", tags=["Invitations"])


@router.get("/invitation/invite/{uid}")
async def invitation_info(uid: str, services: VaultServices = Depends(get_services)):
    return respond(await services.invitations.info(uid))


@router.post("/invitation/accept/{uid}")
async def accept_invitation(
    uid: str,
    body: dict[str, Any] | None = Body(None),
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.invitations.accept(session, uid, body or {}))


@router.get("/invitation/decline/{uid}")
async def decline_invitation(
    uid: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.invitations.decline(session, uid))


@router.get("/invites/{object}")
async def list_invitations(
    object: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.invitations.list_for_object(session, reference(object, "object")))


@router.get("/invite/{invitation}")
async def get_invitation(
    invitation: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.invitations.get(session, reference(invitation, "invitation")))


@router.put("/invite/{invitation}")
async def resend_invitation(
    invitation: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.invitations.resend(session, reference(invitation, "invitation")))


@router.delete("/invite/{invitation}")
async def revoke_invitation(
    invitation: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.invitations.revoke(session, reference(invitation, "invitation")))
