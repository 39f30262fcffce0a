"""
Session and sign-up routes: /1/session, /1/signup.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...services import VaultServices
from ..deps import get_services, get_session, reference, respond

router = APIRouter(prefix="/1", tags=["Session"])


class LoginRequest(BaseModel):
    """Login with a client-side password hash."""

    hash: str = Field(..., description="Hex SHA-256 of the password")
    reset: bool = Field(False, description="Close an existing session of the same user")
    register: bool = Field(True, description="Keep the hash in the session for store invitations")


class SignupRequest(BaseModel):
    """New account."""

    alias: str = Field(..., description="User alias")
    email: str = Field(..., description="Email address")
    name: str | None = Field(None, description="Display name")
    hash: str = Field(..., description="Hex SHA-256 of the password")


@router.get("/session")
async def hello(
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    """Current session user, or 1001."""
    return respond(await services.accounts.hello(session))


@router.post("/session/{user}")
async def login(
    user: str,
    body: LoginRequest,
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(
        await services.accounts.login(
            session, reference(user, "user"), body.hash, reset=body.reset, register=body.register
        )
    )


@router.delete("/session")
async def logout(
    session: dict[str, Any] = Depends(get_session),
    services: VaultServices = Depends(get_services),
):
    return respond(await services.accounts.logout(session))


@router.post("/signup")
async def signup(body: SignupRequest, services: VaultServices = Depends(get_services)):
    return respond(await services.accounts.signup(body.model_dump()))
