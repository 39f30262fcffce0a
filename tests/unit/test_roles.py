"""
Unit tests for role bitmasks and role sets.

Tests cover:
- role() encoding and field accessors
- Role checks against required role sets
- CSV parsing and serialization
- Manager detection
"""

import itertools

import pytest

from vaultapi.vault_server.core.roles import (
    CATEGORY_ORG,
    CATEGORY_STORE,
    FUNCTION_ALL,
    FUNCTION_CREATE,
    FUNCTION_DELETE,
    FUNCTION_LIST,
    FUNCTION_READ,
    FUNCTION_READ_LIST,
    FUNCTION_UPDATE,
    ORG_ADMIN_ROLES,
    ORG_DEFAULT_ROLES,
    ORG_MANAGEMENT_ROLES,
    STORE_DEFAULT_ROLES,
    SUBCATEGORY_INVITE,
    SUBCATEGORY_OBJECT,
    SUBCATEGORY_ORG,
    SUBCATEGORY_ROLES,
    SUBCATEGORY_STORE,
    SUBCATEGORY_USER,
    RoleSet,
    category_of,
    functions_of,
    is_valid_role,
    is_valid_roles_csv,
    matches,
    role,
    subcategory_of,
)


class TestRoleEncoding:
    """Tests for role() and its accessors."""

    def test_layout(self):
        value = role(CATEGORY_ORG | SUBCATEGORY_ORG, FUNCTION_READ)
        assert value == 0x02050001
        assert category_of(value) == CATEGORY_ORG
        assert subcategory_of(value) == SUBCATEGORY_ORG
        assert functions_of(value) == FUNCTION_READ

    def test_default_role_integers(self):
        """Default roles keep their persisted decimal values."""
        assert ORG_DEFAULT_ROLES == (33882113,)
        assert STORE_DEFAULT_ROLES == (50724865, 50790403)

    def test_validity(self):
        assert is_valid_role(role(CATEGORY_STORE | SUBCATEGORY_OBJECT, FUNCTION_ALL))
        assert not is_valid_role(role(CATEGORY_STORE | SUBCATEGORY_OBJECT, 0))
        assert not is_valid_role(role(0x0400 | SUBCATEGORY_OBJECT, FUNCTION_READ))
        assert not is_valid_role(role(CATEGORY_STORE | 0x20, FUNCTION_READ))


class TestRoleChecks:
    """A required set is satisfied iff every role is matched by a held role."""

    SUBS = [CATEGORY_ORG | SUBCATEGORY_USER, CATEGORY_ORG | SUBCATEGORY_ROLES, CATEGORY_STORE | SUBCATEGORY_OBJECT]
    MASKS = [FUNCTION_READ, FUNCTION_LIST, FUNCTION_READ_LIST, FUNCTION_CREATE | FUNCTION_UPDATE, FUNCTION_ALL]

    def expected(self, required, held):
        return all(
            any(
                (r >> 16) == (c >> 16) and (functions_of(c) & functions_of(r)) == functions_of(r)
                for c in held
            )
            for r in required
        )

    def test_matches_definition(self):
        """allows() agrees with the quantified definition on a grid."""
        roles = [role(sub, mask) for sub, mask in itertools.product(self.SUBS, self.MASKS)]
        for held in itertools.combinations(roles, 2):
            for required in itertools.combinations(roles, 2):
                assert RoleSet(held).allows(required) == self.expected(required, RoleSet(held))

    def test_superset_functions_match(self):
        required = role(CATEGORY_ORG | SUBCATEGORY_USER, FUNCTION_READ)
        assert matches(required, role(CATEGORY_ORG | SUBCATEGORY_USER, FUNCTION_ALL))
        assert not matches(required, role(CATEGORY_ORG | SUBCATEGORY_ROLES, FUNCTION_ALL))

    def test_empty_required_is_allowed(self):
        assert RoleSet().allows([])

    def test_nothing_held_denies(self):
        assert not RoleSet().has(role(CATEGORY_ORG | SUBCATEGORY_ORG, FUNCTION_READ))


class TestRoleSet:
    """Tests for RoleSet mutation and CSV form."""

    def test_add_merges_functions(self):
        roles = RoleSet([role(CATEGORY_ORG | SUBCATEGORY_ORG, FUNCTION_READ)])
        assert roles.add(role(CATEGORY_ORG | SUBCATEGORY_ORG, FUNCTION_LIST))
        assert len(roles) == 1
        assert roles.get(CATEGORY_ORG | SUBCATEGORY_ORG) == FUNCTION_READ_LIST
        assert not roles.add(role(CATEGORY_ORG | SUBCATEGORY_ORG, FUNCTION_READ))

    def test_remove_drops_empty_roles(self):
        roles = RoleSet(ORG_ADMIN_ROLES)
        roles.remove_all(ORG_MANAGEMENT_ROLES)
        assert roles.get(CATEGORY_ORG | SUBCATEGORY_ROLES) == 0
        assert roles.get(CATEGORY_ORG | SUBCATEGORY_INVITE) == 0
        assert len(roles) == len(ORG_ADMIN_ROLES) - 2

    def test_csv_round_trip(self):
        roles = RoleSet(STORE_DEFAULT_ROLES)
        assert roles.to_csv() == "50724865,50790403"
        assert RoleSet.from_csv(roles.to_csv()) == roles

    def test_from_csv_skips_invalid_items(self):
        roles = RoleSet.from_csv("33882113, abc, 0, 99,")
        assert list(roles) == [33882113]

    def test_from_csv_empty(self):
        assert not RoleSet.from_csv(None)
        assert not RoleSet.from_csv("")

    @pytest.mark.parametrize("csv,valid", [("33882113", True), ("33882113,50724865", True), ("33882113,x", False), ("", False)])
    def test_is_valid_roles_csv(self, csv, valid):
        assert is_valid_roles_csv(csv) is valid

    def test_in_category(self):
        assert RoleSet(ORG_DEFAULT_ROLES).in_category(CATEGORY_ORG)
        assert not RoleSet(STORE_DEFAULT_ROLES).in_category(CATEGORY_ORG)

    def test_copy_is_independent(self):
        roles = RoleSet(ORG_DEFAULT_ROLES)
        clone = roles.copy()
        clone.add(role(CATEGORY_ORG | SUBCATEGORY_STORE, FUNCTION_LIST))
        assert clone != roles


class TestManagers:
    """Tests for roles/invites manager detection."""

    def test_admin_is_both_managers(self):
        roles = RoleSet(ORG_ADMIN_ROLES)
        assert roles.is_roles_manager()
        assert roles.is_invites_manager()

    def test_default_member_is_no_manager(self):
        roles = RoleSet(ORG_DEFAULT_ROLES)
        assert not roles.is_roles_manager()
        assert not roles.is_invites_manager()

    def test_invites_manager_needs_create_and_delete(self):
        roles = RoleSet(
            [
                role(CATEGORY_ORG | SUBCATEGORY_USER, FUNCTION_READ_LIST),
                role(CATEGORY_ORG | SUBCATEGORY_INVITE, FUNCTION_READ | FUNCTION_CREATE),
            ]
        )
        assert not roles.is_invites_manager()
        roles.add(role(CATEGORY_ORG | SUBCATEGORY_INVITE, FUNCTION_DELETE))
        assert roles.is_invites_manager()
