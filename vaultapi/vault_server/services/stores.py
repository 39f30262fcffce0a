"""
Store profile and store sessions.

Opening a store proves the caller can unwrap their copy of the store key;
the unwrapped key then lives in the session cookie until it expires or the
store is closed.
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.crypto import is_password_hash
from ..core.ids import ObjectType, to_external
from ..core.roles import FUNCTION_READ, SUBCATEGORY_STORE
from ..pipeline import Chain
from .base import Reply, ServiceBase, field_error, require_role
from .context import ObjectRequestContext
from .exports import export_store, iso_timestamp

logger = logging.getLogger(__name__)


class StoreService(ServiceBase):
    """Store lookup, open and close."""

    def context(self, session: Any, reference: int | str) -> ObjectRequestContext:
        return ObjectRequestContext(
            session=session, now=self.now(), kind=ObjectType.STORE, reference=reference
        )

    async def get_store(self, session: Any, reference: int | str) -> Reply:
        ctx = self.context(session, reference)
        await Chain(
            "get-store",
            self.require_session,
            self.load_store,
            self.load_member,
            require_role(SUBCATEGORY_STORE, FUNCTION_READ),
        ).run(ctx)
        return Reply({"store": export_store(ctx.store, ctx.store_state)})

    async def open(
        self,
        session: Any,
        org_reference: int | str,
        store_reference: int | str,
        credentials: Any,
    ) -> Reply:
        """Open a store session with the caller's password hash.

        Raises:
            VaultError: 5202 on a malformed hash, 4203 if the store is
                blocked, 3001 if the hash does not unwrap the store key
        """
        ctx = ObjectRequestContext(
            session=session, now=self.now(), kind=ObjectType.STORE, reference=org_reference
        )

        async def load_store(ctx: ObjectRequestContext) -> None:
            await self.load_org_store(ctx, store_reference)

        await Chain(
            "open-store",
            self.require_session,
            self.load_org,
            load_store,
            self.load_member,
            self.require_store_available,
        ).run(ctx)

        if not is_password_hash(credentials):
            raise field_error(credentials="Value is not a valid password hash")

        store_session = await self.services.store_sessions.open(
            session, ctx.user.require(), ctx.store.id, credentials
        )
        return Reply(
            {
                "store": export_store(ctx.store, ctx.store_state),
                "expires": iso_timestamp(store_session.expires),
            }
        )

    async def is_open(self, session: Any, reference: int | str) -> Reply:
        ctx = self.context(session, reference)
        await Chain("store-status", self.require_session, self.load_store, self.load_member).run(ctx)
        return Reply(
            {
                "store": to_external(ctx.store.id),
                "open": self.services.store_sessions.is_open(session, ctx.store.id, ctx.now),
            }
        )

    async def close(self, session: Any, reference: int | str) -> Reply:
        ctx = self.context(session, reference)
        await Chain("close-store", self.require_session, self.load_store).run(ctx)
        self.services.store_sessions.close(session, ctx.store.id)
        logger.info("Closed store session", extra={"store_id": ctx.store.id})
        return Reply({"store": to_external(ctx.store.id), "open": False})
