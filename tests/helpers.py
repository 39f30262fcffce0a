"""
Test helpers: fake clock, password hashes and account/organization setup.
"""

from vaultapi.vault_server.core.crypto import password_hash
from vaultapi.vault_server.core.ids import ObjectType, parse_reference

START_TIME = 1_700_000_000
DAY = 86400


class FakeClock:
    """Settable time source in unix seconds."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def hash_of(password: str) -> str:
    """Client-side password hash."""
    return password_hash(password)


def password_of(alias: str) -> str:
    return f"{alias}-password"


def id_of(data: dict, key: str = "id") -> int:
    """Global id from an exported ":<hex>" field."""
    return parse_reference(data[key])


async def sign_up(services, alias: str, name: str | None = None) -> dict:
    """Create an account and return a logged-in session for it."""
    await services.accounts.signup(
        {
            "alias": alias,
            "email": f"{alias}@example.com",
            "name": name,
            "hash": hash_of(password_of(alias)),
        }
    )
    session: dict = {}
    await services.accounts.login(session, alias, hash_of(password_of(alias)))
    return session


async def create_org(services, session: dict, alias: str = "acme") -> int:
    reply = await services.orgs.create_org(session, alias, alias.title())
    return id_of(reply.data["organization"])


async def create_store(services, session: dict, org_id: int, alias: str = "vault") -> int:
    password = password_of(session["user-username"])
    reply = await services.orgs.create_store(session, org_id, alias, alias.title(), hash_of(password))
    return id_of(reply.data["store"])


async def open_store(services, session: dict, org_id: int, store_id: int) -> None:
    password = password_of(session["user-username"])
    await services.stores.open(session, org_id, store_id, hash_of(password))


async def invite(services, session: dict, kind: ObjectType, object_id: int, email: str, **fields) -> str:
    """Create an invitation and return its uid."""
    reply = await services.invitations.create(session, kind, object_id, dict(fields, invitee=email))
    return reply.data["invitation"]["uid"]


async def join_org(services, admin: dict, org_id: int, member: dict, roles: str | None = None) -> None:
    """Invite a logged-in user to an organization and accept as them."""
    fields = {"roles": roles} if roles else {}
    uid = await invite(services, admin, ObjectType.ORG, org_id, member["user-email"], **fields)
    await services.invitations.accept(member, uid, {})


# --- HTTP ---


def api_sign_up(client, alias: str, name: str | None = None) -> dict:
    """Sign up and log in through the API; returns the user from the login reply."""
    password = hash_of(password_of(alias))
    client.post(
        "/1/signup",
        json={"alias": alias, "email": f"{alias}@example.com", "name": name, "hash": password},
    )
    response = client.post(f"/1/session/{alias}", json={"hash": password})
    return response.json()["data"]["user"]


def api_open_store(client, alias: str, org: str, store: str):
    return client.post(
        f"/1/org/{org}/store/{store}/open",
        data={"credentials": hash_of(password_of(alias))},
    )
