"""
Tests for issuer module
"""

import pulumi
import pytest

from irsa_binder import issuer


@pytest.mark.unit
class TestHostOnly:
    """Test cases for host_only function."""

    def test_strips_https_scheme(self):
        assert issuer.host_only("https://oidc.eks.us-east-1.amazonaws.com/id/ABC") == \
            "oidc.eks.us-east-1.amazonaws.com/id/ABC"

    def test_without_scheme_is_unchanged(self):
        assert issuer.host_only("oidc.eks.us-east-1.amazonaws.com/id/ABC") == \
            "oidc.eks.us-east-1.amazonaws.com/id/ABC"

    def test_github_issuer(self):
        assert issuer.host_only("https://token.actions.githubusercontent.com") == \
            "token.actions.githubusercontent.com"

    def test_idempotent(self):
        once = issuer.host_only("https://oidc.eks.us-east-1.amazonaws.com/id/ABC")
        assert issuer.host_only(once) == once

    def test_only_leading_scheme_is_removed(self):
        assert issuer.host_only("https://example.com/https://x") == "example.com/https://x"

    @pulumi.runtime.test
    def test_output_input_resolves_lazily(self):
        result = issuer.host_only(pulumi.Output.from_input("https://oidc.example.com/id/1"))
        assert isinstance(result, pulumi.Output)

        def check(value):
            assert value == "oidc.example.com/id/1"

        return result.apply(check)


@pytest.mark.unit
class TestCanonical:
    """Test cases for canonical function."""

    def test_returns_input(self):
        url = "https://oidc.eks.eu-west-1.amazonaws.com/id/XYZ"
        assert issuer.canonical(url) == url


@pytest.mark.unit
class TestProviderArn:
    """Test cases for provider_arn function."""

    def test_with_https(self):
        arn = issuer.provider_arn("123456789012", "https://token.actions.githubusercontent.com")
        assert arn == "arn:aws:iam::123456789012:oidc-provider/token.actions.githubusercontent.com"

    def test_without_https(self):
        arn = issuer.provider_arn("123456789012", "oidc.eks.us-east-1.amazonaws.com/id/ABC")
        assert arn == "arn:aws:iam::123456789012:oidc-provider/oidc.eks.us-east-1.amazonaws.com/id/ABC"

    @pulumi.runtime.test
    def test_output_account_id(self):
        result = issuer.provider_arn(pulumi.Output.from_input("210987654321"),
                                     "https://oidc.eks.us-east-1.amazonaws.com/id/ABC")
        assert isinstance(result, pulumi.Output)

        def check(value):
            assert value == "arn:aws:iam::210987654321:oidc-provider/oidc.eks.us-east-1.amazonaws.com/id/ABC"

        return result.apply(check)
