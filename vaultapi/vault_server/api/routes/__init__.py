"""
HTTP routes of the Vault API, one module per resource.
"""

from . import invitations, me, members, orgs, session, stores

__all__ = ["invitations", "me", "members", "orgs", "session", "stores"]
