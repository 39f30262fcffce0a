"""
Invitation engine: creation, accept variants, decline, revoke, resend and
lazy expiry.

An invitation is three rows: the Invitation row on the invited object's
shard (roles, message, key reference), its registry mirror (uid, object,
invitee, expiration, state) and, for stores, a Key row carrying the store
key wrapped under a one-time secret.

Accepting an invitation:
    (a) organization, no session, invitee has no account: sign up with
        {alias, hash, name} and register
    (b) organization, no session, invitee has an account: answer 1001 and
        remember the invitation in the session until login
    (c) organization, logged in as the invitee: register, or merge the
        roles into an existing registration
    (d) store, logged in as the invitee: unwrap the store key with the
        one-time secret and rewrap it under the invitee's password hash

Invariants:
    - At most one pending invitation per (object, invitee)
    - A pending invitation read at or after its expiration becomes expired
      (data row first, then registry) and is reported as 4391
    - A failed email publish never undoes the invitation (2490 warning)
    - The Key row is deleted once the invitation leaves the pending state
    - An inactive, blocked or deleted invitee cannot accept (4001); a session
      belonging to one is closed
    - The recovered store key is dropped from the context when the accept
      chain exits

How to change safely:
    - Keep state transitions conditional on PENDING in both rows
    - Add accept variants as separate chains
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.crypto import (
    check_verifier,
    generate_secret,
    invitation_uid,
    is_password_hash,
    unwrap_key,
    wrap_key,
)
from ..core.ids import ObjectType, is_type, to_external, type_of
from ..core.roles import (
    FUNCTION_CREATE,
    FUNCTION_DELETE,
    FUNCTION_LIST,
    FUNCTION_READ,
    ORG_DEFAULT_ROLES,
    STORE_DEFAULT_ROLES,
    SUBCATEGORY_INVITE,
    RoleSet,
    is_valid_roles_csv,
)
from ..core.states import is_active
from ..errors import CryptoError, ErrorCode, InvalidCredentialsError, QueueError, VaultError
from ..pipeline import Abort, Chain, group
from ..queue.base import TEMPLATE_INVITE_ORG, TEMPLATE_INVITE_STORE, QueueMessage
from ..storage.invitations import Invitation
from ..storage.memberships import Membership
from ..storage.registry import InvitationEntry, InvitationState
from ..storage.saga import Saga
from .base import Reply, ServiceBase, category_for, field_error, normalize_email, require_role
from .context import InvitationRequestContext
from .exports import export_invitation, iso_timestamp

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class InvitationService(ServiceBase):
    """Invitations to organizations and stores."""

    def context(self, session: Any, **fields: Any) -> InvitationRequestContext:
        return InvitationRequestContext(session=session, now=self.now(), **fields)

    # --- Expiry ---

    async def expire(self, entry: InvitationEntry) -> None:
        """Move a pending invitation to EXPIRED and drop its key."""
        invitation = await self.repos.invitations.get(entry.id)
        await self.repos.invitations.set_state(entry.id, InvitationState.EXPIRED, None)
        await self.repos.registry.transition_invitation(entry.id, InvitationState.EXPIRED)
        if invitation is not None and invitation.key_id is not None:
            await self.repos.keys.delete(invitation.key_id)
        entry.state = InvitationState.EXPIRED
        logger.info("Invitation expired", extra={"invitation_id": entry.id})

    async def refresh(self, entry: InvitationEntry, now: int) -> InvitationEntry:
        """Apply lazy expiry to a registry row just read."""
        if entry.is_expired(now):
            await self.expire(entry)
        return entry

    async def revalidate(self, ctx: InvitationRequestContext) -> None:
        """Step: the loaded invitation must still be pending."""
        entry = ctx.registry
        if entry.is_expired(ctx.now):
            await self.expire(entry)
            raise Abort(ErrorCode.INVITATION_EXPIRED, {"invitation": entry.uid})
        if entry.state != InvitationState.PENDING:
            raise Abort(ErrorCode.INVALID_INVITATION, {"state": InvitationState(entry.state).name.lower()})

    async def sweep_expired(self, now: int | None = None, limit: int = 100) -> int:
        """Expire pending invitations past their expiration.

        Returns:
            Number of invitations expired
        """
        now = self.now() if now is None else now
        entries = await self.repos.registry.expired_invitations(now, limit)
        for entry in entries:
            await self.expire(entry)
        if entries:
            logger.info("Swept expired invitations", extra={"count": len(entries)})
        return len(entries)

    # --- Loading ---

    async def load_by_uid(self, ctx: InvitationRequestContext) -> None:
        entry = await self.repos.registry.find_invitation(ctx.uid or "")
        if entry is None:
            raise Abort(ErrorCode.INVALID_INVITATION)
        ctx.registry = entry

    async def load_by_id(self, ctx: InvitationRequestContext) -> None:
        entry = None
        if isinstance(ctx.reference, int) and is_type(ctx.reference, ObjectType.INVITATION):
            entry = await self.repos.registry.get_invitation(ctx.reference)
        if entry is None:
            raise Abort(ErrorCode.INVALID_INVITATION)
        ctx.registry = entry
        ctx.uid = entry.uid

    async def load_data_row(self, ctx: InvitationRequestContext) -> None:
        invitation = await self.repos.invitations.get(ctx.registry.id)
        if invitation is None:
            raise Abort(ErrorCode.INVALID_INVITATION, {"reason": "invitation row missing"})
        ctx.invitation = invitation

    async def load_invited_object(self, ctx: InvitationRequestContext) -> None:
        """Target object of a loaded invitation, plus the caller's registration."""
        ctx.kind = type_of(ctx.registry.object_id)
        ctx.reference = ctx.registry.object_id
        await self.load_object(ctx)
        await self.load_member(ctx)

    def require_creator_or(self, functions: int):
        """Step: the invitation's creator, or a member holding INVITE|functions."""
        check = require_role(SUBCATEGORY_INVITE, functions)

        async def check_creator(ctx: InvitationRequestContext) -> None:
            if ctx.registry.creator != ctx.user.user_id:
                await check(ctx)

        return check_creator

    async def _object_names(self, object_id: int) -> tuple[str, str]:
        """(alias, display name) of an organization or store."""
        if type_of(object_id) == ObjectType.STORE:
            store = await self.repos.orgs.get_store(object_id)
            if store is None:
                raise VaultError(ErrorCode.STORE_NOT_FOUND, details={"store": to_external(object_id)})
            return store.alias, store.name or store.alias
        org = await self.repos.registry.find_org(object_id)
        if org is None:
            raise VaultError(ErrorCode.ORG_NOT_FOUND, details={"organization": to_external(object_id)})
        return org.alias, org.name or org.alias

    # --- Create ---

    async def create(self, session: Any, kind: ObjectType, reference: int | str, body: dict[str, Any]) -> Reply:
        """Invite an email address to an organization or store.

        Body fields: invitee, roles (CSV, optional), message (optional),
        expiry_in_days (optional).

        Returns:
            Reply with the invitation; code 2490 if the email was not queued

        Raises:
            VaultError: 5202 on a malformed or own invitee, 3100 on bad roles
                or expiry, 4012 if already registered, 4051 if a store
                invitee is not an organization member, 4390 if a pending
                invitation exists, 4202 if the store is not open
        """
        ctx = self.context(session, kind=kind, reference=reference, profile=dict(body))
        steps = [
            self.require_session,
            self.load_object,
            self.load_member,
            require_role(SUBCATEGORY_INVITE, FUNCTION_CREATE),
            self._parse_request,
            self._check_invitee,
        ]
        if kind == ObjectType.STORE:
            steps[3:3] = [self.require_store_available]
            steps.append(self._take_store_key)
        steps.extend([self._write_invitation, self._notify])

        await Chain("create-invitation", *steps).run(ctx)
        return Reply({"invitation": export_invitation(ctx.registry)}, code=ctx.code)

    async def _parse_request(self, ctx: InvitationRequestContext) -> None:
        body = ctx.profile
        invitee = normalize_email(body.get("invitee"))
        if invitee is None:
            raise field_error(invitee="Value is not a valid email")
        if invitee == normalize_email(ctx.user.email):
            raise field_error(invitee="Cannot invite yourself")
        ctx.invitee = invitee

        roles_csv = body.get("roles")
        if roles_csv is None or roles_csv == "":
            ctx.invite_roles = RoleSet(STORE_DEFAULT_ROLES if ctx.kind == ObjectType.STORE else ORG_DEFAULT_ROLES)
        else:
            if not isinstance(roles_csv, str) or not is_valid_roles_csv(roles_csv):
                raise Abort(ErrorCode.INVALID_PARAMETER, {"roles": roles_csv})
            roles = RoleSet.from_csv(roles_csv)
            if not roles or not roles.in_category(category_for(ctx.kind)):
                raise Abort(ErrorCode.INVALID_PARAMETER, {"roles": roles_csv})
            ctx.invite_roles = roles

        settings = self.config.invitations
        days = body.get("expiry_in_days")
        if days is None:
            days = settings.expiry_days
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= settings.max_expiry_days:
            raise Abort(
                ErrorCode.INVALID_PARAMETER,
                {"expiry_in_days": days, "max": settings.max_expiry_days},
            )
        ctx.expiry_days = days

        message = body.get("message")
        if message is not None and not isinstance(message, str):
            raise field_error(message="Value is not a string")
        ctx.message = message.strip() if message else None

    async def _check_invitee(self, ctx: InvitationRequestContext) -> None:
        memberships = self.repos.memberships
        ctx.invitee_user = await self.repos.registry.find_user(ctx.invitee)
        if ctx.invitee_user is not None and await memberships.get(ctx.object_id, ctx.invitee_user.id):
            raise Abort(ErrorCode.ALREADY_REGISTERED, {"invitee": ctx.invitee})

        if ctx.kind == ObjectType.STORE:
            org_member = None
            if ctx.invitee_user is not None:
                org_member = await memberships.get(ctx.org.id, ctx.invitee_user.id)
            if org_member is None:
                raise Abort(ErrorCode.NOT_REGISTERED, {"invitee": ctx.invitee, "organization": ctx.org.alias})

        pending = await self.repos.registry.pending_invitation(ctx.object_id, ctx.invitee)
        if pending is not None:
            if not pending.is_expired(ctx.now):
                raise Abort(ErrorCode.INVALID_INVITATION, {"reason": "pending invitation exists"})
            await self.expire(pending)

    async def _take_store_key(self, ctx: InvitationRequestContext) -> None:
        ctx.store_key = self.services.store_sessions.get(ctx.session, ctx.store.id).key

    async def _write_invitation(self, ctx: InvitationRequestContext) -> None:
        creator = ctx.user.require()
        object_id = ctx.object_id
        expiration = ctx.now + ctx.expiry_days * SECONDS_PER_DAY
        uid = invitation_uid(creator, object_id, ctx.invitee, ctx.now)

        saga = Saga("create-invitation")
        key_id = secret = None
        if ctx.store_key is not None:
            secret = generate_secret()
            key = await saga.step(
                "key",
                lambda: self.repos.keys.create(wrap_key(secret, ctx.store_key), expiration, creator),
                lambda created: self.repos.keys.delete(created.id),
            )
            key_id = key.id

        invitation = await saga.step(
            "invitation",
            lambda: self.repos.invitations.create(
                Invitation(
                    id=0,
                    uid=uid,
                    object_id=object_id,
                    invitee=ctx.invitee,
                    expiration=expiration,
                    message=ctx.message,
                    roles=ctx.invite_roles,
                    key_id=key_id,
                    key_pick=secret,
                    creator=creator,
                    created=ctx.now,
                )
            ),
            lambda created: self.repos.invitations.delete(created.id),
        )
        entry = InvitationEntry(
            id=invitation.id,
            uid=uid,
            object_id=object_id,
            creator=creator,
            invitee=ctx.invitee,
            expiration=expiration,
            state=InvitationState.PENDING,
        )
        await saga.step("registry", lambda: self.repos.registry.add_invitation(entry))

        ctx.invitation = invitation
        ctx.registry = entry
        logger.info(
            "Created invitation",
            extra={"invitation_id": invitation.id, "object_id": object_id, "user_id": creator},
        )

    async def _notify(self, ctx: InvitationRequestContext) -> None:
        """Queue the invitation email; a failure only downgrades the reply."""
        invitation = ctx.invitation
        _, object_name = await self._object_names(invitation.object_id)
        at_user = ""
        if ctx.invitee_user is not None:
            at_user = ctx.invitee_user.name or ctx.invitee_user.alias
        template = TEMPLATE_INVITE_STORE if type_of(invitation.object_id) == ObjectType.STORE else TEMPLATE_INVITE_ORG
        message = QueueMessage(
            template=template,
            to=invitation.invitee,
            at_user=at_user,
            by_user=ctx.user.name or ctx.user.alias or "",
            code=invitation.uid,
            message=invitation.message or "",
            object_name=object_name,
            expiration=iso_timestamp(invitation.expiration),
        )
        try:
            await self.services.queue.publish(message)
        except QueueError as e:
            logger.warning(
                f"Invitation email not queued: {e.message}",
                extra={"invitation_id": invitation.id, "code": e.code},
            )
            ctx.warn(ErrorCode.INVITATION_NOT_SENT)

    # --- Public reads ---

    async def info(self, uid: str) -> Reply:
        """Public summary for the accept screen."""
        ctx = self.context({}, uid=uid)
        await Chain("invitation-info", self.load_by_uid, self.revalidate, self.load_data_row).run(ctx)

        _, object_name = await self._object_names(ctx.registry.object_id)
        creator = await self.repos.registry.get_user(ctx.registry.creator)
        data = export_invitation(ctx.registry)
        data.update(
            {
                "type": int(type_of(ctx.registry.object_id)),
                "object_name": object_name,
                "by_user": (creator.name or creator.alias) if creator else None,
                "message": ctx.invitation.message,
            }
        )
        return Reply({"invitation": data})

    # --- Accept ---

    async def accept(self, session: Any, uid: str, body: dict[str, Any]) -> Reply:
        """Accept an invitation (variants a-d, see module docstring)."""
        ctx = self.context(session, uid=uid, profile=dict(body or {}))
        await Chain("load-invitation", self.load_by_uid, self.revalidate, self.load_data_row).run(ctx)

        if type_of(ctx.registry.object_id) == ObjectType.STORE:
            ctx.defer(ctx.forget_store_key)
            await Chain(
                "accept-store-invitation",
                self._require_invitee_session,
                self._check_store_invitee,
                group(self._load_invitation_key, self._unwrap_invitation_key, name="invitation-key"),
                self._register_store_member,
                self._complete,
            ).run(ctx)
        elif ctx.user.is_logged_in:
            await Chain(
                "accept-org-invitation",
                self._require_invitee_session,
                self._register_org_member,
                self._complete,
            ).run(ctx)
        else:
            invitee = await self.repos.registry.find_user(ctx.registry.invitee)
            if invitee is not None:
                if not is_active(invitee.state):
                    raise VaultError(ErrorCode.USER_INACTIVE)
                ctx.user.invitation_id = ctx.registry.id
                return Reply({"invitation": export_invitation(ctx.registry)}, code=ErrorCode.LOGIN_TO_CONTINUE)

            await Chain(
                "accept-org-invitation-signup",
                self._sign_up_invitee,
                self._register_org_member,
                self._complete,
            ).run(ctx)

        return Reply({"invitation": export_invitation(ctx.registry), "object": to_external(ctx.registry.object_id)})

    async def _require_invitee_session(self, ctx: InvitationRequestContext) -> None:
        if not ctx.user.is_logged_in:
            ctx.user.invitation_id = ctx.registry.id
            raise Abort(ErrorCode.SESSION_REQUIRED)
        if normalize_email(ctx.user.email) != ctx.registry.invitee:
            ctx.user.clear()
            raise Abort(ErrorCode.INVALID_INVITATION, {"reason": "invitation belongs to another user"})

        ctx.invitee_user = await self.repos.registry.get_user(ctx.user.user_id)
        if ctx.invitee_user is None:
            ctx.user.clear()
            raise Abort(ErrorCode.USER_NOT_FOUND)
        if not is_active(ctx.invitee_user.state):
            ctx.user.clear()
            raise Abort(ErrorCode.USER_INACTIVE)

    async def _sign_up_invitee(self, ctx: InvitationRequestContext) -> None:
        accounts = self.services.accounts
        body = dict(ctx.profile, email=ctx.registry.invitee)
        profile = accounts.validate_profile(body)
        if profile["name"] is None:
            raise field_error(name="Value is required")

        user = await accounts.create_user(
            profile["alias"], ctx.registry.invitee, profile["name"], profile["hash"], ctx.registry.creator
        )
        ctx.user.login(user, profile["hash"])
        ctx.invitee_user = user

    async def _register_org_member(self, ctx: InvitationRequestContext) -> None:
        user = ctx.invitee_user
        invitation = ctx.invitation
        memberships = self.repos.memberships

        existing = await memberships.get(invitation.object_id, user.id)
        if existing is not None:
            existing.roles.add_all(invitation.roles)
            await memberships.update(existing, user.id)
            return

        alias, _ = await self._object_names(invitation.object_id)
        await memberships.register(
            Membership(
                object_id=invitation.object_id,
                user_id=user.id,
                username=user.alias,
                roles=invitation.roles,
                creator=invitation.creator,
            ),
            alias,
        )

    async def _check_store_invitee(self, ctx: InvitationRequestContext) -> None:
        """Verify the invitee's hash, organization membership and store."""
        user = ctx.invitee_user
        password_hash = ctx.profile.get("hash") or ctx.user.password_hash
        if not is_password_hash(password_hash):
            raise field_error(hash="Value is not a valid password hash")
        if not check_verifier(password_hash, user.verifier):
            raise InvalidCredentialsError()
        ctx.password_hash = password_hash

        store = await self.repos.orgs.get_store(ctx.invitation.object_id)
        if store is None:
            raise Abort(ErrorCode.STORE_NOT_FOUND, {"store": to_external(ctx.invitation.object_id)})
        ctx.store = store
        if await self.repos.memberships.get(store.org_id, user.id) is None:
            raise Abort(ErrorCode.ACCESS_DENIED, {"organization": to_external(store.org_id)})
        if await self.repos.memberships.get(store.id, user.id) is not None:
            raise Abort(ErrorCode.ALREADY_REGISTERED, {"store": store.alias})

    async def _load_invitation_key(self, ctx: InvitationRequestContext) -> None:
        invitation = ctx.invitation
        key = await self.repos.keys.get(invitation.key_id) if invitation.key_id is not None else None
        if key is None or not invitation.key_pick:
            raise Abort(ErrorCode.INVALID_INVITATION, {"reason": "invitation key missing"})
        if key.is_expired(ctx.now):
            raise Abort(ErrorCode.INVITATION_EXPIRED, {"invitation": invitation.uid})
        ctx.key = key

    async def _unwrap_invitation_key(self, ctx: InvitationRequestContext) -> None:
        """Recover the store key; only the key itself leaves the group."""
        try:
            ctx.store_key = unwrap_key(ctx.invitation.key_pick, ctx.key.ciphertext)
        except InvalidCredentialsError:
            raise CryptoError(details={"reason": "invitation key does not unwrap"}) from None
        ctx.export("store_key")

    async def _register_store_member(self, ctx: InvitationRequestContext) -> None:
        user = ctx.invitee_user
        await self.repos.memberships.register(
            Membership(
                object_id=ctx.store.id,
                user_id=user.id,
                username=user.alias,
                roles=ctx.invitation.roles,
                wrapped_key=wrap_key(ctx.password_hash, ctx.store_key),
                creator=ctx.invitation.creator,
            ),
            ctx.store.alias,
        )

    async def _complete(self, ctx: InvitationRequestContext) -> None:
        await self._finish(ctx, InvitationState.ACCEPTED, ctx.invitee_user.id)
        ctx.user.invitation_id = None
        logger.info(
            "Invitation accepted",
            extra={"invitation_id": ctx.registry.id, "user_id": ctx.invitee_user.id},
        )

    async def _finish(self, ctx: InvitationRequestContext, state: InvitationState, modifier: int | None) -> None:
        """Leave PENDING: data row, then registry, then drop the key."""
        entry = ctx.registry
        if not await self.repos.invitations.set_state(entry.id, state, modifier):
            raise Abort(ErrorCode.INVALID_INVITATION, {"reason": "invitation is no longer pending"})
        await self.repos.registry.transition_invitation(entry.id, state)
        if ctx.invitation is not None and ctx.invitation.key_id is not None:
            await self.repos.keys.delete(ctx.invitation.key_id)
        entry.state = state

    # --- Decline / revoke / resend ---

    async def decline(self, session: Any, uid: str) -> Reply:
        """Decline an invitation; no session needed."""
        ctx = self.context(session, uid=uid)

        async def finish(ctx: InvitationRequestContext) -> None:
            await self._finish(ctx, InvitationState.DECLINED, ctx.user.user_id)
            if ctx.user.invitation_id == ctx.registry.id:
                ctx.user.invitation_id = None

        await Chain("decline-invitation", self.load_by_uid, self.revalidate, self.load_data_row, finish).run(ctx)
        logger.info("Invitation declined", extra={"invitation_id": ctx.registry.id})
        return Reply({"invitation": export_invitation(ctx.registry)})

    async def revoke(self, session: Any, invitation_id: int | str) -> Reply:
        """Revoke a pending invitation (creator or INVITE|DELETE holder)."""
        ctx = self.context(session, reference=invitation_id)

        async def finish(ctx: InvitationRequestContext) -> None:
            await self._finish(ctx, InvitationState.REVOKED, ctx.user.user_id)

        await Chain(
            "revoke-invitation",
            self.require_session,
            self.load_by_id,
            self.load_invited_object,
            self.require_creator_or(FUNCTION_DELETE),
            self.revalidate,
            self.load_data_row,
            finish,
        ).run(ctx)
        logger.info("Invitation revoked", extra={"invitation_id": ctx.registry.id})
        return Reply({"invitation": export_invitation(ctx.registry)})

    async def resend(self, session: Any, invitation_id: int | str) -> Reply:
        """Publish the invitation email again (pending invitations only)."""
        ctx = self.context(session, reference=invitation_id)

        async def load_invitee(ctx: InvitationRequestContext) -> None:
            ctx.invitee_user = await self.repos.registry.find_user(ctx.registry.invitee)

        await Chain(
            "resend-invitation",
            self.require_session,
            self.load_by_id,
            self.load_invited_object,
            self.require_creator_or(FUNCTION_CREATE),
            self.revalidate,
            self.load_data_row,
            load_invitee,
            self._notify,
        ).run(ctx)
        return Reply({"invitation": export_invitation(ctx.registry)}, code=ctx.code)

    # --- Member reads ---

    async def get(self, session: Any, invitation_id: int | str) -> Reply:
        ctx = self.context(session, reference=invitation_id)
        await Chain(
            "get-invitation",
            self.require_session,
            self.load_by_id,
            self.load_invited_object,
            self.require_creator_or(FUNCTION_READ),
        ).run(ctx)
        entry = await self.refresh(ctx.registry, ctx.now)
        return Reply({"invitation": export_invitation(entry)})

    async def list_for_object(self, session: Any, reference: int | str) -> Reply:
        """Pending invitations of an organization or store."""
        kind = ObjectType.ORG
        if isinstance(reference, int):
            if is_type(reference, ObjectType.STORE):
                kind = ObjectType.STORE
            elif not is_type(reference, ObjectType.ORG):
                raise VaultError(ErrorCode.INVALID_PARAMETER, details={"object": to_external(reference)})

        ctx = self.context(session, kind=kind, reference=reference)
        await Chain(
            "list-invitations",
            self.require_session,
            self.load_object,
            self.load_member,
            require_role(SUBCATEGORY_INVITE, FUNCTION_LIST),
        ).run(ctx)

        pending = []
        for entry in await self.repos.registry.list_invitations(ctx.object_id):
            await self.refresh(entry, ctx.now)
            if entry.state == InvitationState.PENDING:
                pending.append(export_invitation(entry))
        return Reply({"invitations": pending})
