"""
Storage module for the Vault server - sharded SQLite persistence.

This module handles:
- Shard databases and id routing (group 0 registry, group 1 data)
- Registry tables for shard-free lookups of users, orgs and invitations
- Data rows for users, organizations, stores, entries, keys, invitations
- Membership registries (forward, reverse and org-store)
- Sagas for writes that span shards

Invariants:
    - No SQLite transaction spans two shards
    - Source rows are written before registry rows
    - Forward and reverse membership rows exist as pairs

How to change safely:
    - Keep schema changes additive
    - Route every multi-shard write through a Saga
"""

from .database import ShardDatabase, now_seconds
from .entries import Entry, EntryStore, EntryType
from .invitations import Invitation, InvitationStore
from .keys import Key, KeyStore
from .memberships import Membership, MembershipStore, OrgStoreLink, UserLink
from .orgs import Org, OrgStore, Store
from .registry import InvitationEntry, InvitationState, OrgEntry, RegistryStore, UserEntry
from .router import ShardRouter
from .saga import Saga
from .users import User, UserStore

__all__ = [
    # Shards
    "ShardDatabase",
    "ShardRouter",
    "Saga",
    "now_seconds",
    # Registry
    "RegistryStore",
    "UserEntry",
    "OrgEntry",
    "InvitationEntry",
    "InvitationState",
    # Data rows
    "UserStore",
    "User",
    "OrgStore",
    "Org",
    "Store",
    "EntryStore",
    "Entry",
    "EntryType",
    "KeyStore",
    "Key",
    "InvitationStore",
    "Invitation",
    # Memberships
    "MembershipStore",
    "Membership",
    "UserLink",
    "OrgStoreLink",
]
