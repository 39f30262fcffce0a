"""
Store sessions: short-lived unwrapped store keys held in the HTTP session.

Opening a store unwraps the caller's copy of the store key with their
password hash and keeps it in the (encrypted) session cookie under
"_s:<store hex>":

    /<store hex>/<key hex>/<established hex>/<expires hex>/

Every successful entry operation extends the session; once it expires the
store must be opened again.

Invariants:
    - A store session is scoped to one user and one store
    - An expired or undecodable value is removed and treated as absent
    - close() never fails

How to change safely:
    - Keep export()/parse() symmetric; deployed cookies carry this format
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass
from typing import Any

from .core.crypto import unwrap_key
from .errors import ErrorCode, StoreNotOpen, VaultError
from .storage.memberships import MembershipStore

logger = logging.getLogger(__name__)

SESSION_PREFIX = "_s:"
DEFAULT_LIFETIME_SECONDS = 300

Clock = Callable[[], float]
Session = MutableMapping[str, Any]


def session_key(store_id: int) -> str:
    """HTTP session key holding a store session."""
    return f"{SESSION_PREFIX}{store_id:x}"


@dataclass
class StoreSession:
    """Unwrapped store key with its validity window.

    Attributes:
        store_id: Store the key belongs to
        key: Store content key
        established: Unix seconds when the store was opened
        expires: Unix seconds after which the session is dead
    """

    store_id: int
    key: bytes
    established: int
    expires: int

    def is_live(self, now: float) -> bool:
        return now < self.expires

    def export(self) -> str:
        return f"/{self.store_id:x}/{self.key.hex()}/{self.established:x}/{self.expires:x}/"

    @classmethod
    def parse(cls, value: str) -> StoreSession:
        """Parse an exported session.

        Raises:
            ValueError: If value is not an exported store session
        """
        if not isinstance(value, str) or not value.startswith("/") or not value.endswith("/"):
            raise ValueError("Malformed store session")

        parts = value[1:-1].split("/")
        if len(parts) != 4:
            raise ValueError("Malformed store session")

        store, key, established, expires = parts
        return cls(
            store_id=int(store, 16),
            key=bytes.fromhex(key),
            established=int(established, 16),
            expires=int(expires, 16),
        )


class StoreSessionManager:
    """Opens, extends and closes store sessions.

    Example:
        >>> manager = StoreSessionManager(memberships, lifetime=300)
        >>> await manager.open(request.session, user_id, store_id, password_hash)
        >>> manager.get(request.session, store_id).key
    """

    def __init__(
        self,
        memberships: MembershipStore,
        lifetime: int = DEFAULT_LIFETIME_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self.memberships = memberships
        self.lifetime = lifetime
        self.clock = clock

    def _now(self) -> int:
        return int(self.clock())

    def _load(self, session: Session, store_id: int) -> StoreSession | None:
        key = session_key(store_id)
        value = session.get(key)
        if value is None:
            return None
        try:
            store_session = StoreSession.parse(value)
        except ValueError:
            logger.warning("Dropping undecodable store session", extra={"store_id": store_id})
            session.pop(key, None)
            return None
        if store_session.store_id != store_id:
            session.pop(key, None)
            return None
        return store_session

    def _save(self, session: Session, store_session: StoreSession) -> None:
        session[session_key(store_session.store_id)] = store_session.export()

    async def open(
        self,
        session: Session,
        user_id: int,
        store_id: int,
        password_hash: str,
    ) -> StoreSession:
        """Open a store, or extend it if already open.

        Raises:
            VaultError: 4003 if the user is not registered with the store,
                5010 if the registration carries no key
            InvalidCredentialsError: If the hash does not unwrap the key
        """
        now = self._now()
        current = self._load(session, store_id)
        if current is not None and current.is_live(now):
            current.expires = max(current.expires, now + self.lifetime)
            self._save(session, current)
            return current

        member = await self.memberships.get(store_id, user_id)
        if member is None:
            raise VaultError(ErrorCode.ACCESS_DENIED, details={"store": f":{store_id:x}"})
        if not member.wrapped_key:
            raise VaultError(ErrorCode.STORE_OPEN_FAILED)

        key = unwrap_key(password_hash, member.wrapped_key)
        store_session = StoreSession(store_id, key, now, now + self.lifetime)
        self._save(session, store_session)
        logger.info("Opened store session", extra={"store_id": store_id, "user_id": user_id})
        return store_session

    def extend(self, session: Session, store_id: int, minutes: int | None = None) -> StoreSession | None:
        """Push the expiry of a live session forward.

        Returns:
            The extended session, or None if the store is not open
        """
        now = self._now()
        current = self._load(session, store_id)
        if current is None or not current.is_live(now):
            return None
        current.expires = max(current.expires, now + (minutes * 60 if minutes else self.lifetime))
        self._save(session, current)
        return current

    def close(self, session: Session, store_id: int) -> None:
        session.pop(session_key(store_id), None)

    def is_open(self, session: Session, store_id: int, now: float | None = None) -> bool:
        current = self._load(session, store_id)
        return current is not None and current.is_live(self._now() if now is None else now)

    def get(self, session: Session, store_id: int) -> StoreSession:
        """Live session for a store.

        Raises:
            StoreNotOpen: If absent or expired
        """
        current = self._load(session, store_id)
        if current is None:
            raise StoreNotOpen()
        if not current.is_live(self._now()):
            session.pop(session_key(store_id), None)
            raise StoreNotOpen(details={"reason": "expired"})
        return current
