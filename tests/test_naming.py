"""
Tests for naming module
"""

import pytest

from irsa_binder import naming


@pytest.mark.unit
class TestBudgetName:
    """Test cases for budget_name function."""

    def test_joins_with_separator(self):
        assert naming.budget_name("prod", "external-dns", "role") == "prod-external-dns-role"

    def test_short_name_unchanged(self):
        assert naming.budget_name("a", "b") == "a-b"

    def test_truncates_to_128_characters(self):
        name = naming.budget_name("c" * 100, "w" * 100, "role")
        assert len(name) == 128
        assert name == ("c" * 100 + "-" + "w" * 100 + "-role")[:128]

    def test_exactly_128_is_kept(self):
        component = "x" * 123
        assert naming.budget_name(component, "role") == component + "-role"

    def test_deterministic(self):
        assert naming.budget_name("a" * 200, "b") == naming.budget_name("a" * 200, "b")

    def test_long_names_with_shared_prefix_collide(self):
        # Truncation is a raw cut; distinct long inputs may map to the same name.
        prefix = "p" * 130
        assert naming.budget_name(prefix, "one") == naming.budget_name(prefix, "two")


@pytest.mark.unit
class TestRoleAndPolicyNames:
    """Test cases for role_name and policy_name functions."""

    def test_role_name(self):
        assert naming.role_name("test-cluster", "external-dns") == "test-cluster-external-dns-role"

    def test_policy_name(self):
        assert naming.policy_name("test-cluster", "external-dns") == "test-cluster-external-dns-policy"

    def test_long_role_name_is_bounded(self):
        assert len(naming.role_name("c" * 64, "w" * 64)) == 128
