"""
Global id codec for the Vault server.

Every persisted row is addressed by one 64-bit integer:

    bits 63-56  shard group (0 = registry, 1 = data)
    bits 55-48  object type
    bits 47-32  shard id within the group
    bits 31-0   local row id

The high 32 bits route the id to its shard, the low 32 bits are the row id
allocated by that shard.

Invariants:
    - pack() and unpack() are exact inverses for in-range fields
    - Object type tags form a closed set; unknown tags are fatal
    - Local id 0 is never allocated (reserved for root/system rows)

How to change safely:
    - Never change the bit layout of persisted ids
    - New object types take an unused tag; tags are never reused
"""

from __future__ import annotations

import random
import re
from enum import IntEnum
from typing import NamedTuple

from ..errors import UnknownObjectTypeError

GROUP_REGISTRY = 0
GROUP_DATA = 1

MAX_GROUP = 0xFF
MAX_SHARD = 0xFFFF
MAX_LOCAL = 0xFFFFFFFF

_HEX_REFERENCE = re.compile(r"^:[0-9a-f]{1,16}$")
_DECIMAL_REFERENCE = re.compile(r"^[0-9]{1,20}$")


class ObjectType(IntEnum):
    """Object type tags stored in bits 55-48 of a global id."""

    USER = 0x01
    ORG = 0x02
    STORE = 0x03
    ENTRY = 0x04
    ACTION = 0xFB
    REQUEST = 0xFC
    KEY = 0xFD
    INVITATION = 0xFE
    OTHER = 0xFF


class GlobalId(NamedTuple):
    """Unpacked fields of a global id."""

    group: int
    type: ObjectType
    shard: int
    local: int


def object_type(tag: int) -> ObjectType:
    """Resolve a type tag.

    Raises:
        UnknownObjectTypeError: If tag is not a known object type
    """
    try:
        return ObjectType(tag)
    except ValueError:
        raise UnknownObjectTypeError(details={"type": tag}) from None


def pack(group: int, type: int, shard: int, local: int) -> int:
    """Pack id fields into a 64-bit global id.

    Args:
        group: Shard group (0-255)
        type: Object type tag
        shard: Shard id within the group (0-65535)
        local: Local row id (0-2^32-1)

    Returns:
        64-bit global id

    Raises:
        ValueError: If a field is out of range
        UnknownObjectTypeError: If type is not a known object type
    """
    if not 0 <= group <= MAX_GROUP:
        raise ValueError(f"Shard group out of range: {group}")
    if not 0 <= shard <= MAX_SHARD:
        raise ValueError(f"Shard id out of range: {shard}")
    if not 0 <= local <= MAX_LOCAL:
        raise ValueError(f"Local id out of range: {local}")

    tag = object_type(type)
    return (group << 56) | (int(tag) << 48) | (shard << 32) | local


def unpack(id: int) -> GlobalId:
    """Unpack a 64-bit global id into its fields.

    Raises:
        ValueError: If id is not a 64-bit unsigned integer
        UnknownObjectTypeError: If the type tag is unknown
    """
    if not 0 <= id <= 0xFFFFFFFFFFFFFFFF:
        raise ValueError(f"Global id out of range: {id}")

    return GlobalId(
        group=(id >> 56) & MAX_GROUP,
        type=object_type((id >> 48) & 0xFF),
        shard=(id >> 32) & MAX_SHARD,
        local=id & MAX_LOCAL,
    )


def local_id(id: int) -> int:
    """Local row id of a global id."""
    return id & MAX_LOCAL


def type_of(id: int) -> ObjectType:
    """Object type of a global id."""
    return object_type((id >> 48) & 0xFF)


def is_type(id: int, expected: ObjectType) -> bool:
    """Check an id's type without raising on unknown tags."""
    return (id >> 48) & 0xFF == int(expected)


def shard_key(id: int) -> tuple[int, int]:
    """(group, shard) pair that routes an id."""
    return (id >> 56) & MAX_GROUP, (id >> 32) & MAX_SHARD


def random_shard(start: int, end: int) -> int:
    """Pick a pseudo-random shard in the inclusive range [start, end]."""
    if start > end:
        raise ValueError(f"Empty shard range: {start}-{end}")
    return random.randint(start, end)


def to_external(id: int) -> str:
    """Canonical external form of an id (":<lowercase hex>")."""
    return f":{id:x}"


def parse_reference(value: str) -> int | str:
    """Parse a route reference.

    Accepts ":<hex>" ids, bare decimal ids, or alias strings.

    Args:
        value: Raw route parameter

    Returns:
        Integer id, or lowercase alias string

    Raises:
        ValueError: If value is empty or a malformed id
    """
    value = value.strip()
    if not value:
        raise ValueError("Empty reference")

    if value.startswith(":"):
        if not _HEX_REFERENCE.match(value.lower()):
            raise ValueError(f"Invalid id reference: {value}")
        return int(value[1:], 16)

    if _DECIMAL_REFERENCE.match(value):
        number = int(value)
        if number > 0xFFFFFFFFFFFFFFFF:
            raise ValueError(f"Id out of range: {value}")
        return number

    return value.lower()
