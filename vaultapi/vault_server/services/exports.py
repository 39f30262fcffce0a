"""
JSON shapes returned in the "data" member of API responses.

Global ids are exported in their external ":<hex>" form; entry ids are
store-local integers and are exported as-is.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..core.ids import to_external
from ..core.states import State, has_all, has_any
from ..storage.entries import Entry
from ..storage.memberships import Membership, OrgStoreLink, UserLink
from ..storage.orgs import Store
from ..storage.registry import InvitationEntry, OrgEntry, UserEntry


def iso_timestamp(seconds: int) -> str:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def export_user(user: UserEntry, registered: bool | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": to_external(user.id),
        "alias": user.alias,
        "email": user.email,
        "name": user.name,
        "state": user.state,
    }
    if registered is not None:
        data["registered"] = registered
    return data


def export_org(org: OrgEntry) -> dict[str, Any]:
    return {
        "id": to_external(org.id),
        "alias": org.alias,
        "name": org.name,
        "state": org.state,
    }


def export_store(store: Store, state: int = 0) -> dict[str, Any]:
    return {
        "id": to_external(store.id),
        "organization": to_external(store.org_id),
        "alias": store.alias,
        "name": store.name,
        "state": state,
    }


def export_org_store(link: OrgStoreLink) -> dict[str, Any]:
    return {
        "organization": to_external(link.org_id),
        "store": to_external(link.store_id),
        "alias": link.alias,
        "state": link.state,
    }


def export_member(member: Membership, user: UserEntry | None = None) -> dict[str, Any]:
    """Object-user registration; email and name when the user row is known."""
    data: dict[str, Any] = {
        "object": to_external(member.object_id),
        "user": to_external(member.user_id),
        "username": member.username,
        "state": member.state,
        "roles": member.roles.to_csv(),
        "admin": has_all(member.state, State.SYSTEM),
        "locked": has_any(member.state, State.READONLY),
        "blocked": has_any(member.state, State.BLOCKED),
    }
    if user is not None:
        data["email"] = user.email
        data["name"] = user.name
    return data


def export_link(link: UserLink) -> dict[str, Any]:
    return {
        "user": to_external(link.user_id),
        "type": int(link.type),
        "object": to_external(link.object_id),
        "alias": link.alias,
        "favorite": link.favorite,
    }


def export_invitation(entry: InvitationEntry) -> dict[str, Any]:
    return {
        "id": to_external(entry.id),
        "uid": entry.uid,
        "object": to_external(entry.object_id),
        "creator": to_external(entry.creator),
        "invitee": entry.invitee,
        "expiration": iso_timestamp(entry.expiration),
        "state": entry.state,
    }


def export_entry(entry: Entry, values: Any = None) -> dict[str, Any]:
    data: dict[str, Any] = {
        "store": to_external(entry.store_id),
        "id": entry.id,
        "parent": entry.parent,
        "type": int(entry.type),
        "title": entry.title,
    }
    if values is not None:
        data["values"] = values
    return data
