"""
Typed request contexts for service chains.

Each handler family runs its chain over one context type:
- RequestContext: HTTP session and clock (every request)
- LoginContext: credentials and the account logging in
- ObjectRequestContext: an organization or store plus the caller's and the
  target user's registrations
- StoreRequestContext: adds the open store session and entry fields
- InvitationRequestContext: invitation registry row, data row and the
  accept/create inputs

UserSession gives named access to the session keys written at login.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any

from ..core.ids import ObjectType
from ..core.roles import RoleSet
from ..errors import ErrorCode, VaultError
from ..pipeline import Context
from ..sessions import StoreSession
from ..storage.entries import Entry
from ..storage.invitations import Invitation
from ..storage.keys import Key
from ..storage.memberships import Membership
from ..storage.orgs import Store
from ..storage.registry import InvitationEntry, OrgEntry, UserEntry

USER_ID = "user-id"
USER_ALIAS = "user-username"
USER_EMAIL = "user-email"
USER_NAME = "user-name"
USER_HASH = "user-hash"
INVITATION_ID = "invitation-id"


class UserSession:
    """Named accessors over the HTTP session mapping."""

    def __init__(self, session: MutableMapping[str, Any]) -> None:
        self.session = session

    @property
    def user_id(self) -> int | None:
        return self.session.get(USER_ID)

    @property
    def alias(self) -> str | None:
        return self.session.get(USER_ALIAS)

    @property
    def email(self) -> str | None:
        return self.session.get(USER_EMAIL)

    @property
    def name(self) -> str | None:
        return self.session.get(USER_NAME)

    @property
    def password_hash(self) -> str | None:
        return self.session.get(USER_HASH)

    @property
    def is_registered(self) -> bool:
        return self.password_hash is not None

    @property
    def invitation_id(self) -> int | None:
        return self.session.get(INVITATION_ID)

    @invitation_id.setter
    def invitation_id(self, value: int | None) -> None:
        if value is None:
            self.session.pop(INVITATION_ID, None)
        else:
            self.session[INVITATION_ID] = value

    @property
    def is_logged_in(self) -> bool:
        return self.user_id is not None

    def require(self) -> int:
        """Session user id.

        Raises:
            VaultError: 3000 if nobody is logged in
        """
        user_id = self.user_id
        if user_id is None:
            raise VaultError(ErrorCode.NOT_LOGGED_IN)
        return user_id

    def login(self, user: UserEntry, password_hash: str | None = None) -> None:
        self.session[USER_ID] = user.id
        self.session[USER_ALIAS] = user.alias
        self.session[USER_EMAIL] = user.email
        self.session[USER_NAME] = user.name
        if password_hash is not None:
            self.session[USER_HASH] = password_hash

    def clear(self) -> None:
        self.session.clear()


@dataclass(kw_only=True)
class RequestContext(Context):
    """Context shared by every request.

    Attributes:
        session: HTTP session mapping (persisted by the cookie middleware)
        now: Request time in unix seconds
    """

    session: MutableMapping[str, Any]
    now: int

    @property
    def user(self) -> UserSession:
        return UserSession(self.session)


@dataclass(kw_only=True)
class ObjectRequestContext(RequestContext):
    """Request targeting an organization or a store.

    Attributes:
        kind: Whether the route targets an organization or a store
        reference: Raw object reference from the route
        target_reference: Raw user reference of a member operation
        org: Organization registry row
        store: Store row (store requests)
        store_state: State of the store in its organization
        member: Caller's registration with the object
        target_user: Registry row of the user a member operation targets
        target: Target user's registration with the object
    """

    kind: ObjectType = ObjectType.ORG
    reference: int | str | None = None
    target_reference: int | str | None = None
    org: OrgEntry | None = None
    store: Store | None = None
    store_state: int = 0
    member: Membership | None = None
    target_user: UserEntry | None = None
    target: Membership | None = None

    @property
    def object_id(self) -> int:
        if self.store is not None:
            return self.store.id
        if self.org is not None:
            return self.org.id
        raise VaultError(ErrorCode.INVALID_REQUEST, details={"reason": "no target object"})

    @property
    def roles(self) -> RoleSet:
        return self.member.roles if self.member is not None else RoleSet()


@dataclass(kw_only=True)
class StoreRequestContext(ObjectRequestContext):
    """Store request with entry fields.

    Attributes:
        store_session: Open store session (key available)
        parent_id: Parent entry id from the route
        entry_id: Entry id from the route
        entry: Loaded entry
        body: Parsed entry body ({type, title, values})
    """

    store_session: StoreSession | None = None
    parent_id: int = 0
    entry_id: int | None = None
    entry: Entry | None = None
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def store_key(self) -> bytes:
        if self.store_session is None:
            raise VaultError(ErrorCode.STORE_NOT_OPEN)
        return self.store_session.key


@dataclass(kw_only=True)
class InvitationRequestContext(ObjectRequestContext):
    """Invitation create/accept/decline/revoke request.

    Attributes:
        uid: Public invitation handle from the route
        registry: Invitation registry row
        invitation: Invitation data row
        key: Key row of a store invitation
        store_key: Store key recovered (accept) or taken from the open
            store session (create)
        invitee: Invitee email (create)
        invitee_user: Registry row of the invitee, if they have an account
        invite_roles: Roles granted on acceptance (create)
        message: Message for the invitee (create)
        expiry_days: Days until expiry (create)
        profile: Sign-up fields supplied on accept ({alias, name, hash})
        password_hash: Hash used to wrap the store key on accept
    """

    uid: str | None = None
    registry: InvitationEntry | None = None
    invitation: Invitation | None = None
    key: Key | None = None
    store_key: bytes | None = None
    invitee: str | None = None
    invitee_user: UserEntry | None = None
    invite_roles: RoleSet = field(default_factory=RoleSet)
    message: str | None = None
    expiry_days: int | None = None
    profile: dict[str, Any] = field(default_factory=dict)
    password_hash: str | None = None

    def forget_store_key(self) -> None:
        self.store_key = None


@dataclass(kw_only=True)
class LoginContext(RequestContext):
    """Login request.

    Attributes:
        reference: User id, alias or email from the route
        password_hash: Hash supplied by the client
        reset: Close an existing session of the same user
        register: Keep the hash in the session (needed to accept store invitations)
        account: Registry row of the user logging in
    """

    reference: int | str
    password_hash: str
    reset: bool = False
    register: bool = True
    account: UserEntry | None = None
