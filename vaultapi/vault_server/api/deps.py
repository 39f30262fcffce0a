"""
Request dependencies and response helpers shared by the route modules.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from ..core.ids import parse_reference
from ..errors import ErrorCode, NotYetImplemented, VaultError, message_for, status_for
from ..services import Reply, VaultServices


def get_services(request: Request) -> VaultServices:
    """Get the service container from app state."""
    return request.app.state.services


def get_session(request: Request) -> dict[str, Any]:
    """HTTP session loaded by the cookie middleware."""
    return request.session


def reference(value: str, name: str = "reference") -> int | str:
    """Parse an id (":<hex>" or decimal) or alias route parameter.

    Raises:
        VaultError: 3100 if the value is a malformed id
    """
    try:
        return parse_reference(value)
    except ValueError:
        raise VaultError(ErrorCode.INVALID_PARAMETER, details={name: value}) from None


def respond(reply: Reply) -> JSONResponse:
    """Wrap a service reply in the response envelope."""
    code = int(reply.code)
    return JSONResponse(
        {"code": code, "message": message_for(code), "data": reply.data},
        status_code=status_for(code),
    )


def not_implemented(operation: str) -> VaultError:
    return NotYetImplemented(details={"operation": operation})
