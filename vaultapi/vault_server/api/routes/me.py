"""
Session user routes: /1/me.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...core.ids import ObjectType
from ...services import VaultServices
from ..deps import get_services, get_session, not_implemented, reference, respond

router = APIRouter(prefix="/1/me", tags=["Me"])


class PasswordChangeRequest(BaseModel):
    """Password change; both values are client-side hashes."""

    current: str = Field(..., description="Hash of the current password")
    new: str = Field(..., description="Hash of the new password")


@router.get("")
async def me(
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.accounts.me(session))


@router.put("")
async def update_me():
    raise not_implemented("update-profile")


@router.delete("")
async def delete_me():
    raise not_implemented("delete-account")


@router.post("/password")
async def change_password(
    body: PasswordChangeRequest,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.accounts.change_password(session, body.current, body.new))


@router.get("/objects")
async def objects(
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.accounts.objects(session))


@router.get("/orgs")
async def orgs(
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.accounts.objects(session, ObjectType.ORG))


@router.get("/stores")
async def stores(
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.accounts.objects(session, ObjectType.STORE))


@router.get("/favorites")
async def favorites(
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.accounts.objects(session, favorites=True))


@router.put("/favorite/toggle/{object}")
async def toggle_favorite(
    object: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.accounts.toggle_favorite(session, reference(object, "object")))


@router.delete("/org/{org}")
async def leave_org(org: str):
    raise not_implemented("leave-organization")


@router.delete("/store/{store}")
async def leave_store(store: str):
    raise not_implemented("leave-store")
