"""
Store and entry routes: /1/store.

Store ids are required here; store aliases only resolve through
/1/org/{org}/store/{store}.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from ...services import VaultServices
from ..deps import get_services, get_session, not_implemented, reference, respond

router = APIRouter(prefix="/1/store", tags=["Stores"])


@router.get("/{store}")
async def get_store(
    store: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.stores.get_store(session, reference(store, "store")))


@router.put("/{store}")
async def update_store(store: str):
    raise not_implemented("update-store")


@router.get("/{store}/open")
async def is_open(
    store: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.stores.is_open(session, reference(store, "store")))


@router.delete("/{store}/close")
async def close_store(
    store: str,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.stores.close(session, reference(store, "store")))


# --- Entries ---


@router.get("/{store}/objs/{parent}")
async def list_entries(
    store: str,
    parent: int,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.entries.list_entries(session, reference(store, "store"), parent))


@router.get("/{store}/obj/{entry}")
async def get_entry(
    store: str,
    entry: int,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.entries.get(session, reference(store, "store"), entry))


@router.post("/{store}/obj/{parent}")
async def create_entry(
    store: str,
    parent: int,
    body: dict[str, Any] = Body(...),
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.entries.create(session, reference(store, "store"), parent, body))


@router.put("/{store}/obj/{parent}/{entry}")
async def update_entry(
    store: str,
    parent: int,
    entry: int,
    body: dict[str, Any] = Body(...),
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(
        await services.entries.update(session, reference(store, "store"), parent, entry, body)
    )


@router.delete("/{store}/obj/{entry}")
async def delete_entry(
    store: str,
    entry: int,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.entries.delete(session, reference(store, "store"), entry))
