"""
Organization routes: /1/org.

Member administration and invitations under /1/org/{org} come from
members.build_member_router().
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Form
from pydantic import BaseModel, Field

from ...core.states import State
from ...services import VaultServices
from ..deps import get_services, get_session, reference, respond

router = APIRouter(prefix="/1/org", tags=["Organizations"])


class CreateOrgRequest(BaseModel):
    """New organization."""

    alias: str = Field(..., description="Organization alias")
    name: str | None = Field(None, description="Display name")


class CreateStoreRequest(BaseModel):
    """New store; hash wraps the store key for the creator."""

    alias: str = Field(..., description="Store alias, unique in the organization")
    name: str | None = Field(None, description="Display name")
    hash: str = Field(..., description="Hex SHA-256 of the creator's password")


@router.post("")
async def create_org(
    body: CreateOrgRequest,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.orgs.create_org(session, body.alias, body.name))


@router.get("/{org}")
async def get_org(
    org: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.orgs.get_org(session, reference(org, "organization")))


@router.get("/{org}/stores")
async def list_stores(
    org: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.orgs.list_stores(session, reference(org, "organization")))


@router.post("/{org}/store")
async def create_store(
    org: str,
    body: CreateStoreRequest,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(
        await services.orgs.create_store(
            session, reference(org, "organization"), body.alias, body.name, body.hash
        )
    )


@router.post("/{org}/store/{store}/open")
async def open_store(
    org: str,
    store: str,
    credentials: str = Form(..., description="Hex SHA-256 of the password"),
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(
        await services.stores.open(
            session, reference(org, "organization"), reference(store, "store"), credentials
        )
    )


@router.put("/{org}/store/{store}/lock/{locked}")
async def lock_store(
    org: str,
    store: str,
    locked: bool,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(
        await services.orgs.set_store_state(
            session, reference(org, "organization"), reference(store, "store"), State.READONLY, locked
        )
    )


@router.put("/{org}/store/{store}/block/{blocked}")
async def block_store(
    org: str,
    store: str,
    blocked: bool,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(
        await services.orgs.set_store_state(
            session, reference(org, "organization"), reference(store, "store"), State.BLOCKED, blocked
        )
    )
