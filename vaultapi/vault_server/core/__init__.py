"""
Core primitives for the Vault server.

- ids: 64-bit global id codec
- crypto: key wrapping and value encryption
- roles: role bitmasks and role sets
- states: registration state flags
"""

from .ids import GlobalId, ObjectType, pack, unpack
from .roles import RoleSet, role
from .states import State

__all__ = [
    "GlobalId",
    "ObjectType",
    "pack",
    "unpack",
    "RoleSet",
    "role",
    "State",
]
