"""
FastAPI application factory for the Vault server.

This module creates the FastAPI app with:
- Shard router and outbound queue lifecycle management
- Encrypted cookie sessions
- Versioned API routes under /1
- Exception handlers that render every failure in the response envelope

Invariants:
    - Every response body is {"code", "message", "data"}
    - Unexpected exceptions are logged with traceback and answered with 5303
    - The queue is closed on shutdown

How to change safely:
    - Register new routers in create_app()
    - Keep handler registration order: VaultError before Exception
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .._version import __version__
from ..config import ServerConfig
from ..core.ids import ObjectType
from ..errors import ErrorCode, VaultError, message_for, status_for
from ..queue import OutboundQueue, create_queue
from ..services import VaultServices
from ..sessions import Clock
from ..storage import ShardRouter
from .cookies import CookieSessionMiddleware
from .routes import invitations, me, orgs, session, stores
from .routes.members import build_member_router

logger = logging.getLogger(__name__)


def _envelope(code: int, data=None, status: int | None = None) -> JSONResponse:
    return JSONResponse(
        {"code": code, "message": message_for(code), "data": data},
        status_code=status if status is not None else status_for(code),
    )


def _field_errors(exc: RequestValidationError) -> dict[str, str]:
    fields = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "path", "query", "form")]
        fields[".".join(location) or "body"] = error.get("msg", "invalid")
    return fields


async def sweep_invitations(services: VaultServices, interval: float) -> None:
    """Expire stale pending invitations every interval seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await services.invitations.sweep_expired()
        except VaultError as e:
            logger.error(f"Invitation sweep failed: {e.message}", extra={"code": e.code})
        except Exception as e:
            logger.error(f"Invitation sweep failed: {e}", exc_info=True)


def install_exception_handlers(app: FastAPI) -> None:
    """Map exceptions to the response envelope."""

    @app.exception_handler(VaultError)
    async def vault_error(request: Request, exc: VaultError) -> JSONResponse:
        log = logger.error if exc.status >= 500 else logger.info
        log(
            f"{request.method} {request.url.path} failed: {exc.message}",
            extra={"code": exc.code, "details": exc.details},
        )
        return JSONResponse(exc.to_dict(), status_code=exc.status)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = _field_errors(exc)
        logger.info(
            f"{request.method} {request.url.path} rejected",
            extra={"code": int(ErrorCode.INVALID_BODY_FIELD), "fields": fields},
        )
        return _envelope(ErrorCode.INVALID_BODY_FIELD, {"fields": fields})

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _envelope(ErrorCode.INVALID_REQUEST, {"detail": exc.detail}, status=exc.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} crashed: {exc}", exc_info=exc)
        return _envelope(ErrorCode.MISCONFIGURED)


def create_app(
    config: ServerConfig | None = None,
    queue: OutboundQueue | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration (loaded from file when omitted)
        queue: Outbound queue (built from config.queue when omitted)
        clock: Time source in unix seconds (time.time when omitted)

    Example:
        >>> app = create_app(config, queue=InMemoryQueue())
        >>> with TestClient(app) as client:
        ...     client.post("/1/signup", json={...})
    """
    config = config or ServerConfig.load()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage shard and queue lifecycle."""
        router = ShardRouter.build(config.database)
        router.initialize()
        outbound = queue if queue is not None else create_queue(config.queue)

        app.state.config = config
        services = VaultServices(router, outbound, config, clock=clock or time.time)
        app.state.services = services

        sweeper = None
        if config.invitations.sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(
                sweep_invitations(services, config.invitations.sweep_interval_seconds)
            )
        logger.info("Vault server ready", extra={"shards": len(config.database.shards)})

        yield

        if sweeper is not None:
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)
        await outbound.close()
        logger.info("Vault server stopped")

    app = FastAPI(
        title="Vault API",
        description="Multi-tenant encrypted vault: organizations, stores, entries and invitations.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(CookieSessionMiddleware, config=config.session.cookie)
    install_exception_handlers(app)

    # API routes
    app.include_router(session.router)
    app.include_router(me.router)
    app.include_router(orgs.router)
    app.include_router(build_member_router(ObjectType.ORG))
    app.include_router(stores.router)
    app.include_router(build_member_router(ObjectType.STORE))
    app.include_router(invitations.router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "vault-server", "version": __version__}

    return app
