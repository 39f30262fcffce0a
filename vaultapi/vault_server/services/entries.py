"""
Encrypted entries of a store.

Titles and the folder tree are stored in clear; JSON values are encrypted
with the store key taken from the caller's open store session. Listing a
folder therefore works without opening the store, while reading or writing
a value needs the store session.

Invariants:
    - Entry 0 is the root folder and is never read, updated or deleted
    - A parent is 0 or an existing folder of the same store
    - Every entry reaches the root through its parents; a folder never moves
      into its own subtree
    - A successful operation on an open store extends its session
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..core.crypto import decrypt_value, encrypt_value
from ..core.ids import ObjectType
from ..core.roles import (
    FUNCTION_CREATE,
    FUNCTION_DELETE,
    FUNCTION_LIST,
    FUNCTION_READ,
    FUNCTION_UPDATE,
    SUBCATEGORY_OBJECT,
)
from ..errors import CryptoError, ErrorCode, VaultError
from ..pipeline import Abort, Chain
from ..storage.entries import ROOT_ENTRY, EntryType
from .base import Reply, ServiceBase, field_error, require_role
from .context import StoreRequestContext
from .exports import export_entry

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255


def parse_body(body: dict[str, Any], partial: bool = False) -> dict[str, Any]:
    """Validate an entry body ({type, title, values}).

    Args:
        body: Request body
        partial: Fields may be omitted (update)

    Raises:
        VaultError: 5202 with the failing fields
    """
    errors: dict[str, str] = {}
    parsed: dict[str, Any] = {}

    if "type" in body or not partial:
        try:
            parsed["type"] = EntryType.parse(body.get("type", EntryType.JSON))
        except ValueError:
            errors["type"] = "Value must be folder or json"

    if "title" in body or not partial:
        title = body.get("title")
        if not isinstance(title, str) or not title.strip() or len(title) > MAX_TITLE_LENGTH:
            errors["title"] = "Value is not a valid title"
        else:
            parsed["title"] = title.strip()

    if "values" in body:
        parsed["values"] = body["values"]

    if errors:
        raise field_error(**errors)
    return parsed


class EntryService(ServiceBase):
    """Folder tree and encrypted values of stores."""

    def context(self, session: Any, reference: int | str, **fields: Any) -> StoreRequestContext:
        return StoreRequestContext(
            session=session,
            now=self.now(),
            kind=ObjectType.STORE,
            reference=reference,
            **fields,
        )

    # --- Steps ---

    async def require_open(self, ctx: StoreRequestContext) -> None:
        ctx.store_session = self.services.store_sessions.get(ctx.session, ctx.store.id)

    async def load_parent(self, ctx: StoreRequestContext) -> None:
        if ctx.parent_id == ROOT_ENTRY:
            return
        parent = await self.repos.entries.get(ctx.store.id, ctx.parent_id)
        if parent is None:
            raise Abort(ErrorCode.ENTRY_NOT_FOUND, {"entry": ctx.parent_id})
        if not parent.is_folder:
            raise Abort(ErrorCode.NOT_A_FOLDER, {"entry": ctx.parent_id})

    async def load_entry(self, ctx: StoreRequestContext) -> None:
        if ctx.entry_id == ROOT_ENTRY:
            raise Abort(ErrorCode.ROOT_ENTRY)
        entry = await self.repos.entries.get(ctx.store.id, ctx.entry_id)
        if entry is None:
            raise Abort(ErrorCode.ENTRY_NOT_FOUND, {"entry": ctx.entry_id})
        ctx.entry = entry

    async def extend_session(self, ctx: StoreRequestContext) -> None:
        self.services.store_sessions.extend(ctx.session, ctx.store.id)

    def _chain(self, name: str, functions: int, *steps: Any) -> Chain:
        return Chain(
            name,
            self.require_session,
            self.load_store,
            self.load_member,
            self.require_store_available,
            require_role(SUBCATEGORY_OBJECT, functions),
            *steps,
        )

    def _encrypt(self, ctx: StoreRequestContext, values: Any) -> bytes:
        try:
            plaintext = json.dumps(values, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError):
            raise field_error(values="Value is not JSON serializable") from None
        return encrypt_value(ctx.store_key, plaintext)

    async def _is_below(self, store_id: int, folder_id: int, ancestor_id: int) -> bool:
        """Whether folder_id lies in the subtree of ancestor_id."""
        seen: set[int] = set()
        current = folder_id
        while current != ROOT_ENTRY and current not in seen:
            if current == ancestor_id:
                return True
            seen.add(current)
            folder = await self.repos.entries.get(store_id, current)
            if folder is None:
                return False
            current = folder.parent
        return False

    def _decrypt(self, ctx: StoreRequestContext) -> Any:
        if ctx.entry.ciphertext is None:
            return None
        plaintext = decrypt_value(ctx.store_key, ctx.entry.ciphertext)
        try:
            return json.loads(plaintext)
        except ValueError:
            raise CryptoError(details={"reason": "value is not valid JSON"}) from None

    # --- Operations ---

    async def list_entries(self, session: Any, reference: int | str, parent: int = ROOT_ENTRY) -> Reply:
        """Children of a folder: titles and types, no values."""
        ctx = self.context(session, reference, parent_id=parent)
        await self._chain("list-entries", FUNCTION_LIST, self.load_parent, self.extend_session).run(ctx)
        entries = await self.repos.entries.list_children(ctx.store.id, ctx.parent_id)
        return Reply({"entries": [export_entry(entry) for entry in entries]})

    async def get(self, session: Any, reference: int | str, entry_id: int) -> Reply:
        ctx = self.context(session, reference, entry_id=entry_id)
        await self._chain(
            "get-entry", FUNCTION_READ, self.require_open, self.load_entry, self.extend_session
        ).run(ctx)
        return Reply({"entry": export_entry(ctx.entry, self._decrypt(ctx))})

    async def create(
        self, session: Any, reference: int | str, parent: int, body: dict[str, Any]
    ) -> Reply:
        ctx = self.context(session, reference, parent_id=parent, body=body)
        await self._chain(
            "create-entry",
            FUNCTION_CREATE,
            self.require_store_writable,
            self.require_open,
            self.load_parent,
        ).run(ctx)

        fields = parse_body(body)
        ciphertext = None
        if fields["type"] == EntryType.JSON:
            ciphertext = self._encrypt(ctx, fields.get("values"))

        entry = await self.repos.entries.create(
            ctx.store.id, ctx.parent_id, fields["type"], fields["title"], ciphertext, ctx.user.require()
        )
        await self.extend_session(ctx)
        logger.info(
            "Created entry",
            extra={"store_id": ctx.store.id, "entry_id": entry.id, "type": entry.type.name},
        )
        return Reply({"entry": export_entry(entry)})

    async def update(
        self, session: Any, reference: int | str, parent: int, entry_id: int, body: dict[str, Any]
    ) -> Reply:
        """Rename, move (parent from the route) or replace the value of an entry."""
        ctx = self.context(session, reference, parent_id=parent, entry_id=entry_id, body=body)
        await self._chain(
            "update-entry",
            FUNCTION_UPDATE,
            self.require_store_writable,
            self.require_open,
            self.load_entry,
            self.load_parent,
        ).run(ctx)

        fields = parse_body(body, partial=True)
        entry = ctx.entry
        if "type" in fields and fields["type"] != entry.type:
            raise field_error(type="Entry type cannot change")
        if entry.is_folder and "values" in fields:
            raise field_error(values="Folders carry no values")
        if ctx.parent_id == entry.id:
            raise field_error(parent="Entry cannot be its own parent")
        if entry.is_folder and await self._is_below(ctx.store.id, ctx.parent_id, entry.id):
            raise field_error(parent="Folder cannot move below itself")

        entry.parent = ctx.parent_id
        entry.title = fields.get("title", entry.title)
        if "values" in fields:
            entry.ciphertext = self._encrypt(ctx, fields["values"])

        await self.repos.entries.update(entry, ctx.user.require())
        await self.extend_session(ctx)
        return Reply({"entry": export_entry(entry)})

    async def delete(self, session: Any, reference: int | str, entry_id: int) -> Reply:
        ctx = self.context(session, reference, entry_id=entry_id)
        await self._chain(
            "delete-entry", FUNCTION_DELETE, self.require_store_writable, self.load_entry
        ).run(ctx)

        if ctx.entry.is_folder and await self.repos.entries.count_children(ctx.store.id, ctx.entry.id):
            raise VaultError(ErrorCode.FOLDER_NOT_EMPTY, details={"entry": ctx.entry.id})

        await self.repos.entries.delete(ctx.store.id, ctx.entry.id)
        await self.extend_session(ctx)
        logger.info("Deleted entry", extra={"store_id": ctx.store.id, "entry_id": ctx.entry.id})
        return Reply({"entry": export_entry(ctx.entry)})
