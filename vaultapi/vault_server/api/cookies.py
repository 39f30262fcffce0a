"""
Encrypted cookie sessions.

The whole HTTP session (user id, alias, email, name, password hash, open
store keys) lives in one cookie, encrypted and authenticated with Fernet.
The Fernet key is derived from the two configured secrets: the "hash"
secret yields the signing half, the "encryption" secret the encryption
half.

The session is read once when the request enters and written once when the
response leaves; handlers see it as request.session.

Invariants:
    - A cookie that fails authentication or is older than max_age is ignored
    - An unchanged session is not re-sent
    - An emptied session deletes the cookie
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from ..config import CookieConfig

logger = logging.getLogger(__name__)

COOKIE_KEY_LABEL = b"vault:cookie:v1"


def _derive(secret: str) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=16, salt=None, info=COOKIE_KEY_LABEL)
    return hkdf.derive(secret.encode("utf-8"))


def cookie_cipher(config: CookieConfig) -> Fernet:
    """Fernet instance for the configured cookie secrets."""
    key = _derive(config.hash) + _derive(config.encryption)
    return Fernet(base64.urlsafe_b64encode(key))


class CookieSessionMiddleware(BaseHTTPMiddleware):
    """Load request.session from the cookie and persist it on the way out.

    Example:
        >>> app.add_middleware(CookieSessionMiddleware, config=config.session.cookie)
    """

    def __init__(self, app: ASGIApp, config: CookieConfig) -> None:
        super().__init__(app)
        self.config = config
        self.cipher = cookie_cipher(config)

    def load(self, token: str | None) -> dict[str, Any]:
        if not token:
            return {}
        try:
            payload = self.cipher.decrypt(token.encode("ascii"), ttl=self.config.options.max_age)
            session = json.loads(payload)
        except (InvalidToken, UnicodeError, ValueError):
            logger.debug("Ignoring unreadable session cookie")
            return {}
        return session if isinstance(session, dict) else {}

    def dump(self, session: dict[str, Any]) -> str:
        payload = json.dumps(session, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return self.cipher.encrypt(payload).decode("ascii")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        token = request.cookies.get(self.config.id)
        session = self.load(token)
        before = json.dumps(session, sort_keys=True)
        request.scope["session"] = session

        response = await call_next(request)

        options = self.config.options
        if not session:
            if token:
                response.delete_cookie(self.config.id, path=options.path, domain=options.domain)
        elif json.dumps(session, sort_keys=True) != before:
            response.set_cookie(
                self.config.id,
                self.dump(session),
                max_age=options.max_age,
                path=options.path,
                domain=options.domain,
                secure=options.secure,
                httponly=options.http_only,
                samesite="lax",
            )
        return response
