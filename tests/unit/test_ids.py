"""
Unit tests for the 64-bit global id codec.

Tests cover:
- pack/unpack inverses over the field ranges
- Routing helpers (shard_key, type_of, is_type)
- External id form and route reference parsing
"""

import random

import pytest

from vaultapi.vault_server.core.ids import (
    GROUP_DATA,
    GROUP_REGISTRY,
    MAX_LOCAL,
    MAX_SHARD,
    GlobalId,
    ObjectType,
    is_type,
    local_id,
    pack,
    parse_reference,
    random_shard,
    shard_key,
    to_external,
    type_of,
    unpack,
)
from vaultapi.vault_server.errors import ErrorCode, UnknownObjectTypeError


class TestPackUnpack:
    """Tests for pack() and unpack()."""

    def test_bit_layout(self):
        """Fields land in their documented bit ranges."""
        id = pack(GROUP_DATA, ObjectType.STORE, 0x0102, 0x0A0B0C0D)
        assert id == 0x01_03_0102_0A0B0C0D

    def test_unpack_returns_fields(self):
        """unpack() returns a GlobalId with a typed tag."""
        fields = unpack(0x01_04_0002_00000010)
        assert fields == GlobalId(GROUP_DATA, ObjectType.ENTRY, 2, 16)
        assert fields.type is ObjectType.ENTRY

    @pytest.mark.parametrize("type", list(ObjectType))
    def test_round_trip_extremes(self, type):
        """pack(unpack(x)) == x at the edges of every field."""
        for group, shard, local in [(0, 0, 0), (0xFF, MAX_SHARD, MAX_LOCAL), (1, 7, 1)]:
            id = pack(group, type, shard, local)
            assert unpack(id) == (group, type, shard, local)
            assert pack(*unpack(id)) == id

    def test_round_trip_random(self):
        """Random in-range inputs survive a round trip."""
        rng = random.Random(42)
        types = list(ObjectType)
        for _ in range(500):
            fields = (
                rng.randint(0, 0xFF),
                rng.choice(types),
                rng.randint(0, MAX_SHARD),
                rng.randint(0, MAX_LOCAL),
            )
            assert unpack(pack(*fields)) == fields

    @pytest.mark.parametrize(
        "fields",
        [(256, ObjectType.USER, 0, 1), (0, ObjectType.USER, MAX_SHARD + 1, 1), (0, ObjectType.USER, 0, MAX_LOCAL + 1), (-1, ObjectType.USER, 0, 1)],
    )
    def test_pack_rejects_out_of_range(self, fields):
        """Out-of-range fields raise ValueError."""
        with pytest.raises(ValueError):
            pack(*fields)

    def test_unknown_type_is_fatal(self):
        """Unknown type tags raise UnknownObjectTypeError (5303)."""
        with pytest.raises(UnknownObjectTypeError) as exc_info:
            pack(GROUP_DATA, 0x42, 0, 1)
        assert exc_info.value.code == ErrorCode.MISCONFIGURED

        with pytest.raises(UnknownObjectTypeError):
            unpack(0x01_42_0000_00000001)

    def test_unpack_rejects_negative(self):
        with pytest.raises(ValueError):
            unpack(-1)


class TestRoutingHelpers:
    """Tests for helpers used by the shard router."""

    def test_shard_key(self):
        id = pack(GROUP_DATA, ObjectType.USER, 3, 99)
        assert shard_key(id) == (GROUP_DATA, 3)
        assert shard_key(pack(GROUP_REGISTRY, ObjectType.OTHER, 0, 1)) == (GROUP_REGISTRY, 0)

    def test_local_id(self):
        assert local_id(pack(GROUP_DATA, ObjectType.KEY, 9, 1234)) == 1234

    def test_type_of(self):
        assert type_of(pack(GROUP_DATA, ObjectType.INVITATION, 0, 1)) is ObjectType.INVITATION

    def test_is_type_never_raises(self):
        """is_type() answers False for unknown tags instead of raising."""
        assert is_type(pack(GROUP_DATA, ObjectType.ORG, 0, 1), ObjectType.ORG)
        assert not is_type(0x01_42_0000_00000001, ObjectType.ORG)

    def test_random_shard_in_range(self):
        for _ in range(50):
            assert 2 <= random_shard(2, 4) <= 4

    def test_random_shard_empty_range(self):
        with pytest.raises(ValueError):
            random_shard(3, 2)


class TestReferences:
    """Tests for external ids and route references."""

    def test_to_external_lowercase_hex(self):
        id = pack(GROUP_DATA, ObjectType.STORE, 0, 0xAB)
        assert to_external(id) == ":1030000000000ab"

    def test_parse_hex_reference(self):
        id = pack(GROUP_DATA, ObjectType.ORG, 1, 5)
        assert parse_reference(to_external(id)) == id
        assert parse_reference(to_external(id).upper()) == id

    def test_parse_decimal_reference(self):
        assert parse_reference("72339073309605889") == 72339073309605889

    def test_parse_alias_lowercases(self):
        assert parse_reference("  Acme ") == "acme"
        assert parse_reference("bob@x") == "bob@x"

    @pytest.mark.parametrize("value", ["", "   ", ":", ":xyz", ":12345678901234567", "99999999999999999999"])
    def test_parse_rejects_malformed(self, value):
        """Empty values and malformed ids raise ValueError."""
        with pytest.raises(ValueError):
            parse_reference(value)
