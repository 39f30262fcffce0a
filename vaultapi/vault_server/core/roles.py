"""
Role bitmasks for organization and store registrations.

A role is a 32-bit integer:

    bits 31-24  category (SYSTEM, ORG, STORE)
    bits 23-16  subcategory (CONF, USER, ROLES, INVITE, ORG, STORE, OBJECT, TEMPLATE)
    bits 15-0   function mask (READ, LIST, CREATE, UPDATE, DELETE)

Roles are persisted as a CSV of decimal integers. A registration holds at most
one role per category/subcategory pair; adding a role with the same pair merges
the function bits.

Invariants:
    - A required role R is satisfied iff some held role has the same
      category/subcategory and a superset of R's function bits
    - Roles with an empty function mask are never kept in a RoleSet
    - CSV parsing skips invalid items instead of failing

How to change safely:
    - New subcategories take unused values; existing values are persisted
    - Keep manager definitions in sync with the mgr_* registry columns
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

# Function bits (low 16 bits)
FUNCTION_READ = 0x0001
FUNCTION_LIST = 0x0002
FUNCTION_READ_LIST = FUNCTION_READ | FUNCTION_LIST
FUNCTION_READONLY = 0x00FF
FUNCTION_CREATE = 0x0100
FUNCTION_UPDATE = 0x0200
FUNCTION_DELETE = 0x0400
FUNCTION_MODIFY = 0xFF00
FUNCTION_ALL = 0xFFFF

# Categories (high byte of the upper 16 bits)
CATEGORY_SYSTEM = 0x0100
CATEGORY_ORG = 0x0200
CATEGORY_STORE = 0x0300

# Subcategories (low byte of the upper 16 bits)
SUBCATEGORY_CONF = 0x01
SUBCATEGORY_USER = 0x02
SUBCATEGORY_ROLES = 0x03
SUBCATEGORY_INVITE = 0x04
SUBCATEGORY_ORG = 0x05
SUBCATEGORY_STORE = 0x06
SUBCATEGORY_OBJECT = 0x07
SUBCATEGORY_TEMPLATE = 0x08

CATEGORIES = (CATEGORY_SYSTEM, CATEGORY_ORG, CATEGORY_STORE)
SUBCATEGORIES = (
    SUBCATEGORY_CONF,
    SUBCATEGORY_USER,
    SUBCATEGORY_ROLES,
    SUBCATEGORY_INVITE,
    SUBCATEGORY_ORG,
    SUBCATEGORY_STORE,
    SUBCATEGORY_OBJECT,
    SUBCATEGORY_TEMPLATE,
)


def role(category_sub: int, functions: int) -> int:
    """Build a role from a category|subcategory value and a function mask."""
    return ((category_sub & 0xFFFF) << 16) | (functions & 0xFFFF)


def category_sub_of(value: int) -> int:
    """Category|subcategory half of a role."""
    return (value >> 16) & 0xFFFF


def category_of(value: int) -> int:
    """Category of a role (as a CATEGORY_* constant)."""
    return (value >> 16) & 0xFF00


def subcategory_of(value: int) -> int:
    """Subcategory of a role."""
    return (value >> 16) & 0x00FF


def functions_of(value: int) -> int:
    """Function mask of a role."""
    return value & 0xFFFF


def is_valid_role(value: int) -> bool:
    """Check that a role has a known category, subcategory and functions."""
    return (
        0 <= value <= 0xFFFFFFFF
        and category_of(value) in CATEGORIES
        and subcategory_of(value) in SUBCATEGORIES
        and functions_of(value) != 0
    )


def matches(required: int, held: int) -> bool:
    """Check a held role against one required role."""
    return category_sub_of(required) == category_sub_of(held) and (
        functions_of(held) & functions_of(required)
    ) == functions_of(required)


# Baseline organization access: read the organization profile.
ORG_READ = role(CATEGORY_ORG | SUBCATEGORY_ORG, FUNCTION_READ)
# Baseline store access: read the store profile and read/list its entries.
STORE_READ = role(CATEGORY_STORE | SUBCATEGORY_STORE, FUNCTION_READ)
STORE_OBJECTS_READ_LIST = role(CATEGORY_STORE | SUBCATEGORY_OBJECT, FUNCTION_READ_LIST)

ORG_DEFAULT_ROLES = (ORG_READ,)  # 33882113
STORE_DEFAULT_ROLES = (STORE_READ, STORE_OBJECTS_READ_LIST)  # 50724865, 50790403

ORG_ADMIN_ROLES = tuple(
    role(CATEGORY_ORG | sub, FUNCTION_ALL)
    for sub in (
        SUBCATEGORY_CONF,
        SUBCATEGORY_USER,
        SUBCATEGORY_ROLES,
        SUBCATEGORY_INVITE,
        SUBCATEGORY_ORG,
        SUBCATEGORY_STORE,
    )
)

STORE_ADMIN_ROLES = tuple(
    role(CATEGORY_STORE | sub, FUNCTION_ALL)
    for sub in (
        SUBCATEGORY_CONF,
        SUBCATEGORY_USER,
        SUBCATEGORY_ROLES,
        SUBCATEGORY_INVITE,
        SUBCATEGORY_STORE,
        SUBCATEGORY_OBJECT,
    )
)

# Roles removed when a registration loses its admin marker.
ORG_MANAGEMENT_ROLES = (
    role(CATEGORY_ORG | SUBCATEGORY_ROLES, FUNCTION_ALL),
    role(CATEGORY_ORG | SUBCATEGORY_INVITE, FUNCTION_ALL),
)
STORE_MANAGEMENT_ROLES = (
    role(CATEGORY_STORE | SUBCATEGORY_ROLES, FUNCTION_ALL),
    role(CATEGORY_STORE | SUBCATEGORY_INVITE, FUNCTION_ALL),
)


class RoleSet:
    """Set of roles held by one registration.

    Example:
        >>> roles = RoleSet.from_csv("33882113")
        >>> roles.add(role(CATEGORY_ORG | SUBCATEGORY_ORG, FUNCTION_LIST))
        >>> roles.allows([role(CATEGORY_ORG | SUBCATEGORY_ORG, FUNCTION_READ_LIST)])
        True
    """

    def __init__(self, roles: Iterable[int] = ()) -> None:
        self._roles: dict[int, int] = {}
        for value in roles:
            self.add(value)

    @classmethod
    def from_csv(cls, csv: str | None) -> RoleSet:
        """Parse a CSV of decimal roles, skipping invalid items."""
        roles = cls()
        if not csv:
            return roles

        for item in csv.split(","):
            item = item.strip()
            if not item.isdigit():
                continue
            value = int(item)
            if is_valid_role(value):
                roles.add(value)
        return roles

    def to_csv(self) -> str:
        """Serialize as a CSV of decimal integers (sorted)."""
        return ",".join(str(value) for value in self)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(role(cs, fn) for cs, fn in self._roles.items()))

    def __len__(self) -> int:
        return len(self._roles)

    def __bool__(self) -> bool:
        return bool(self._roles)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RoleSet):
            return NotImplemented
        return self._roles == other._roles

    def __repr__(self) -> str:
        return f"RoleSet([{', '.join(hex(value) for value in self)}])"

    def copy(self) -> RoleSet:
        """Independent copy of this set."""
        clone = RoleSet()
        clone._roles = dict(self._roles)
        return clone

    def get(self, category_sub: int) -> int:
        """Function mask held for a category|subcategory pair (0 if none)."""
        return self._roles.get(category_sub, 0)

    def get_subcategory(self, subcategory: int) -> int:
        """Function mask held for a subcategory, in any category."""
        mask = 0
        for category_sub, functions in self._roles.items():
            if category_sub & 0xFF == subcategory:
                mask |= functions
        return mask

    def add(self, value: int) -> bool:
        """Add a role, merging functions with an existing one.

        Returns:
            True if the set changed
        """
        category_sub = category_sub_of(value)
        functions = functions_of(value)
        if functions == 0:
            return False

        current = self._roles.get(category_sub, 0)
        merged = current | functions
        self._roles[category_sub] = merged
        return merged != current

    def add_all(self, values: Iterable[int]) -> bool:
        """Add several roles. Returns True if the set changed."""
        changed = False
        for value in values:
            changed = self.add(value) or changed
        return changed

    def remove(self, value: int) -> bool:
        """Clear a role's function bits, dropping the role when empty.

        Returns:
            True if the set changed
        """
        category_sub = category_sub_of(value)
        current = self._roles.get(category_sub)
        if current is None:
            return False

        remaining = current & ~functions_of(value)
        if remaining == 0:
            del self._roles[category_sub]
        else:
            self._roles[category_sub] = remaining
        return remaining != current

    def remove_all(self, values: Iterable[int]) -> bool:
        """Remove several roles. Returns True if the set changed."""
        changed = False
        for value in values:
            changed = self.remove(value) or changed
        return changed

    def has(self, required: int) -> bool:
        """Check a single required role."""
        held = self._roles.get(category_sub_of(required))
        return held is not None and matches(required, role(category_sub_of(required), held))

    def allows(self, required: Iterable[int]) -> bool:
        """Check that every required role is satisfied by a held role."""
        return all(self.has(value) for value in required)

    def in_category(self, category: int) -> bool:
        """Check that every held role belongs to category."""
        return all(category_sub & 0xFF00 == category for category_sub in self._roles)

    def is_roles_manager(self) -> bool:
        """Can read/list users and read/update their roles."""
        return _has_functions(
            self.get_subcategory(SUBCATEGORY_USER), FUNCTION_READ | FUNCTION_LIST
        ) and _has_functions(
            self.get_subcategory(SUBCATEGORY_ROLES), FUNCTION_READ | FUNCTION_UPDATE
        )

    def is_invites_manager(self) -> bool:
        """Can read/list users and read/create/delete invitations."""
        return _has_functions(
            self.get_subcategory(SUBCATEGORY_USER), FUNCTION_READ | FUNCTION_LIST
        ) and _has_functions(
            self.get_subcategory(SUBCATEGORY_INVITE),
            FUNCTION_READ | FUNCTION_CREATE | FUNCTION_DELETE,
        )


def _has_functions(held: int, required: int) -> bool:
    return held & required == required


def is_valid_roles_csv(csv: str) -> bool:
    """Check that every CSV item is a valid role."""
    items = [item.strip() for item in csv.split(",")]
    return bool(items) and all(item.isdigit() and is_valid_role(int(item)) for item in items)
