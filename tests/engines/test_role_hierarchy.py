"""
Tests for the role hierarchy validator.

Covers:
- Allowed changes per role profile (client, loan officer, admin, unassigned)
- Super admin exemption keyed on the target user
- Single add/remove validation with reasons
- Whole role-set validation and whole-set replacement
- Properties over every role set and operation
"""

from itertools import combinations
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from namlend_engines.role_hierarchy import (
    LEGAL_ROLE_SETS,
    RoleProfile,
    allowed_role_changes,
    classify,
    is_super_admin,
    validate_role_change,
    validate_role_operation,
    validate_role_set,
)
from namlend_kernel.domain.roles import ALL_ROLES, Role, RoleOperation

ALL_ROLE_SETS = [
    frozenset(combo)
    for size in range(len(ALL_ROLES) + 1)
    for combo in combinations(ALL_ROLES, size)
]

role_sets = st.sampled_from(ALL_ROLE_SETS)
roles = st.sampled_from(ALL_ROLES)
operations = st.sampled_from(list(RoleOperation))


class TestClassify:
    """Tests for picking the precedence rule that governs a role set."""

    def test_client_wins_over_everything(self):
        """Any set containing client is governed by the client rule."""
        assert classify({Role.CLIENT, Role.ADMIN}) == RoleProfile.CLIENT

    def test_loan_officer_alone(self):
        assert classify({Role.LOAN_OFFICER}) == RoleProfile.LOAN_OFFICER

    def test_admin_with_loan_officer_is_admin(self):
        """Admin precedence applies when loan_officer is held alongside admin."""
        assert classify({Role.ADMIN, Role.LOAN_OFFICER}) == RoleProfile.ADMIN

    def test_empty_is_unassigned(self):
        assert classify(set()) == RoleProfile.UNASSIGNED

    def test_super_admin_identity(self):
        """The configured super admin is classified by identity, not roles."""
        super_id = uuid4()
        assert classify({Role.CLIENT}, user_id=super_id, super_admin_id=str(super_id)) == (
            RoleProfile.SUPER_ADMIN
        )

    def test_is_super_admin_needs_both_ids(self):
        user_id = uuid4()
        assert not is_super_admin(user_id, None)
        assert not is_super_admin(None, user_id)
        assert is_super_admin(user_id, str(user_id))


class TestAllowedRoleChanges:
    """Tests for enumerating permitted additions and removals."""

    def test_client_is_locked(self):
        """A client can neither gain nor lose roles."""
        changes = allowed_role_changes([Role.CLIENT])

        assert changes.can_add == ()
        assert changes.can_remove == ()

    def test_loan_officer_is_locked(self):
        changes = allowed_role_changes([Role.LOAN_OFFICER])

        assert changes.can_add == ()
        assert changes.can_remove == ()

    def test_admin_can_gain_loan_officer(self):
        changes = allowed_role_changes([Role.ADMIN])

        assert changes.can_add == (Role.LOAN_OFFICER,)
        assert changes.can_remove == ()

    def test_admin_officer_can_drop_loan_officer(self):
        changes = allowed_role_changes([Role.ADMIN, Role.LOAN_OFFICER])

        assert changes.can_add == ()
        assert changes.can_remove == (Role.LOAN_OFFICER,)

    def test_unassigned_can_gain_any_role(self):
        """A user with no roles may be given any single role."""
        changes = allowed_role_changes([])

        assert changes.can_add == (Role.ADMIN, Role.LOAN_OFFICER, Role.CLIENT)
        assert changes.can_remove == ()

    def test_super_admin_unrestricted(self):
        super_id = uuid4()

        changes = allowed_role_changes(
            [Role.ADMIN], user_id=super_id, super_admin_id=super_id,
        )

        assert changes.can_add == (Role.LOAN_OFFICER, Role.CLIENT)
        assert changes.can_remove == (Role.ADMIN,)

    def test_super_admin_exemption_ignores_other_users(self):
        """The exemption applies only when the target user is the super admin."""
        changes = allowed_role_changes(
            [Role.CLIENT], user_id=uuid4(), super_admin_id=uuid4(),
        )

        assert changes.can_add == ()


class TestValidateRoleOperation:
    """Tests for single add/remove checks."""

    def test_client_cannot_gain_admin(self):
        result = validate_role_operation([Role.CLIENT], Role.ADMIN, RoleOperation.ADD)

        assert not result.allowed
        assert "exclusive" in result.reason

    def test_loan_officer_cannot_gain_admin(self):
        result = validate_role_operation([Role.LOAN_OFFICER], Role.ADMIN, RoleOperation.ADD)

        assert not result.allowed
        assert "Loan officer" in result.reason

    def test_admin_can_gain_loan_officer(self):
        result = validate_role_operation([Role.ADMIN], Role.LOAN_OFFICER, RoleOperation.ADD)

        assert result.allowed
        assert result.reason == ""

    def test_admin_cannot_gain_client(self):
        result = validate_role_operation([Role.ADMIN], Role.CLIENT, RoleOperation.ADD)

        assert not result.allowed
        assert "client" in result.reason

    def test_admin_cannot_drop_admin(self):
        result = validate_role_operation(
            [Role.ADMIN, Role.LOAN_OFFICER], Role.ADMIN, RoleOperation.REMOVE,
        )

        assert not result.allowed

    def test_adding_held_role_explains_duplicate(self):
        result = validate_role_operation([Role.ADMIN], Role.ADMIN, RoleOperation.ADD)

        assert not result.allowed
        assert result.reason == "User already has the admin role"

    def test_removing_missing_role_explains_absence(self):
        result = validate_role_operation([], Role.CLIENT, RoleOperation.REMOVE)

        assert not result.allowed
        assert result.reason == "User does not have the client role"

    def test_super_admin_may_combine_client(self):
        super_id = uuid4()

        result = validate_role_operation(
            [Role.ADMIN], Role.CLIENT, RoleOperation.ADD,
            user_id=super_id, super_admin_id=super_id,
        )

        assert result.allowed


class TestValidateRoleSet:
    """Tests for checking a complete target role set."""

    @pytest.mark.parametrize("held", sorted(LEGAL_ROLE_SETS, key=len))
    def test_legal_sets_pass(self, held):
        assert validate_role_set(held).allowed

    def test_client_combination_rejected(self):
        result = validate_role_set({Role.CLIENT, Role.LOAN_OFFICER})

        assert not result.allowed
        assert "Client role cannot be combined" in result.reason

    def test_super_admin_may_hold_anything(self):
        super_id = uuid4()

        assert validate_role_set(
            set(ALL_ROLES), user_id=super_id, super_admin_id=super_id,
        ).allowed


class TestValidateRoleChange:
    """Tests for replacing a whole role set at once."""

    def test_client_cannot_become_admin(self):
        result = validate_role_change({Role.CLIENT}, {Role.ADMIN})

        assert not result.allowed
        assert result.reason == "Client role is exclusive and cannot be combined or changed"

    def test_unassigned_may_take_any_legal_set(self):
        assert validate_role_change(set(), {Role.ADMIN, Role.LOAN_OFFICER}).allowed

    def test_illegal_target_reported_first(self):
        result = validate_role_change(set(), {Role.CLIENT, Role.ADMIN})

        assert result.reason == "Client role cannot be combined with other roles"

    def test_unchanged_set_allowed(self):
        assert validate_role_change({Role.LOAN_OFFICER}, {Role.LOAN_OFFICER}).allowed

    def test_super_admin_may_replace_anything(self):
        super_id = uuid4()

        assert validate_role_change(
            {Role.CLIENT}, {Role.ADMIN}, user_id=super_id, super_admin_id=super_id,
        ).allowed


class TestRoleHierarchyProperties:
    """Properties that hold for every role set and operation."""

    @given(held=role_sets, role=roles, operation=operations)
    def test_validation_agrees_with_enumeration(self, held, role, operation):
        """An operation is allowed exactly when the enumeration lists it."""
        changes = allowed_role_changes(held)
        listed = changes.can_add if operation == RoleOperation.ADD else changes.can_remove

        assert validate_role_operation(held, role, operation).allowed == (role in listed)

    @given(held=role_sets, role=roles, operation=operations)
    def test_denials_always_carry_a_reason(self, held, role, operation):
        result = validate_role_operation(held, role, operation)

        if not result.allowed:
            assert result.reason

    @given(held=role_sets)
    def test_clients_are_never_changeable(self, held):
        if Role.CLIENT in held:
            changes = allowed_role_changes(held)
            assert changes.can_add == () and changes.can_remove == ()

    @given(held=st.sampled_from(sorted(LEGAL_ROLE_SETS, key=len)), role=roles,
           operation=operations)
    def test_allowed_operations_keep_sets_legal(self, held, role, operation):
        """Applying an allowed change to a legal set yields a legal set."""
        if validate_role_operation(held, role, operation).allowed:
            after = held | {role} if operation == RoleOperation.ADD else held - {role}
            assert after in LEGAL_ROLE_SETS

    @given(held=st.sampled_from(sorted(LEGAL_ROLE_SETS, key=len)), role=roles,
           operation=operations)
    def test_single_role_replacement_matches_operation(self, held, role, operation):
        """Replacing a set with one role added or removed is judged like that operation."""
        if operation == RoleOperation.ADD and role not in held:
            target = held | {role}
        elif operation == RoleOperation.REMOVE and role in held:
            target = held - {role}
        else:
            return

        assert validate_role_change(held, target).allowed == (
            validate_role_operation(held, role, operation).allowed
        )

    @given(current=role_sets, target=role_sets)
    def test_allowed_replacements_are_legal(self, current, target):
        if validate_role_change(current, target).allowed:
            assert target in LEGAL_ROLE_SETS
