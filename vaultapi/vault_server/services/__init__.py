"""
Service layer for the Vault server - request chains over the storage layer.

This module handles:
- Accounts: sign-up, login/logout, profile, password change, favorites
- Organizations and stores: creation, lookup, store state
- Members: roles, admin toggle, lock/block/state of registrations
- Store sessions and encrypted entries
- Invitations: creation, accept variants, decline, revoke, resend, expiry

Every public operation builds a typed context and runs a Chain; failures
surface as VaultError with a response code.

Invariants:
    - Services hold no per-request state; contexts carry it
    - Data rows are written before registry rows, under a Saga
    - A queue failure never undoes the write that triggered it

How to change safely:
    - Add new operations as Chains of small named steps
    - Keep role requirements next to the chain that needs them
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from ..config import ServerConfig
from ..queue.base import OutboundQueue
from ..sessions import Clock, StoreSessionManager
from ..storage import (
    EntryStore,
    InvitationStore,
    KeyStore,
    MembershipStore,
    OrgStore,
    RegistryStore,
    ShardRouter,
    UserStore,
)
from .accounts import AccountService
from .base import Reply
from .entries import EntryService
from .invitations import InvitationService
from .members import MemberService
from .orgs import OrgService
from .stores import StoreService


@dataclass
class Repositories:
    """Storage access objects sharing one router."""

    registry: RegistryStore
    users: UserStore
    orgs: OrgStore
    memberships: MembershipStore
    entries: EntryStore
    keys: KeyStore
    invitations: InvitationStore

    @classmethod
    def build(cls, router: ShardRouter) -> Repositories:
        return cls(
            registry=RegistryStore(router),
            users=UserStore(router),
            orgs=OrgStore(router),
            memberships=MembershipStore(router),
            entries=EntryStore(router),
            keys=KeyStore(router),
            invitations=InvitationStore(router),
        )


class VaultServices:
    """All services of one server instance.

    Example:
        >>> services = VaultServices(router, InMemoryQueue(), ServerConfig())
        >>> reply = await services.accounts.me(session)
    """

    def __init__(
        self,
        router: ShardRouter,
        queue: OutboundQueue,
        config: ServerConfig,
        clock: Clock = time.time,
    ) -> None:
        self.router = router
        self.queue = queue
        self.config = config
        self.clock = clock
        self.repos = Repositories.build(router)
        self.store_sessions = StoreSessionManager(
            self.repos.memberships,
            lifetime=config.stores.session_minutes * 60,
            clock=clock,
        )

        self.accounts = AccountService(self)
        self.orgs = OrgService(self)
        self.members = MemberService(self)
        self.stores = StoreService(self)
        self.entries = EntryService(self)
        self.invitations = InvitationService(self)


__all__ = [
    "VaultServices",
    "Repositories",
    "Reply",
    "AccountService",
    "OrgService",
    "MemberService",
    "StoreService",
    "EntryService",
    "InvitationService",
]
