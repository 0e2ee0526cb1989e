"""
Tests for federation module
"""

import pulumi
import pytest
from unittest.mock import patch, MagicMock

from irsa_binder import constants
from irsa_binder.federation import Cluster, FederationProviderRegistry, lookup_cluster

from conftest import ACCOUNT_ID, ISSUER_HOST, ISSUER_URL, THUMBPRINT


@pytest.mark.unit
class TestFederationProviderRegistry:
    """Test cases for FederationProviderRegistry."""

    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_ensure_creates_provider(self, mock_provider_class, cluster):
        """Test that the first ensure declares an OpenIdConnectProvider."""
        registry = FederationProviderRegistry()
        provider = registry.ensure(cluster, thumbprints=[THUMBPRINT])

        mock_provider_class.assert_called_once()
        args, kwargs = mock_provider_class.call_args
        assert args[0] == "test-cluster-oidc-provider"
        assert kwargs["url"] == ISSUER_URL
        assert kwargs["client_id_lists"] == ["sts.amazonaws.com"]
        assert kwargs["thumbprint_lists"] == [THUMBPRINT]
        assert kwargs["tags"] == constants.DEFAULT_TAGS
        assert kwargs["opts"] is None

        assert provider.key == ISSUER_URL
        assert provider.resource is mock_provider_class.return_value
        assert provider.issuer_host == ISSUER_HOST

    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_ensure_reuses_provider_for_same_cluster(self, mock_provider_class, cluster):
        """Test that two bindings on one cluster share one provider."""
        registry = FederationProviderRegistry()
        first = registry.ensure(cluster, thumbprints=[THUMBPRINT])
        second = registry.ensure(cluster, thumbprints=[THUMBPRINT])

        assert first is second
        assert mock_provider_class.call_count == 1
        assert len(registry) == 1
        assert cluster in registry

    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_ensure_separate_providers_per_cluster(self, mock_provider_class, cluster):
        registry = FederationProviderRegistry()
        other = Cluster(name="other-cluster", issuer_url="https://oidc.eks.eu-west-1.amazonaws.com/id/XYZ")
        registry.ensure(cluster, thumbprints=[THUMBPRINT])
        registry.ensure(other, thumbprints=[THUMBPRINT])

        assert mock_provider_class.call_count == 2
        assert [provider.key for provider in registry] == [ISSUER_URL, other.issuer_url]

    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_ensure_by_issuer_url(self, mock_provider_class):
        """Test that bare issuer URLs are keyed by the URL."""
        registry = FederationProviderRegistry()
        url = "https://token.actions.githubusercontent.com"
        provider = registry.ensure(url, thumbprints=[THUMBPRINT])

        assert provider.key == url
        assert mock_provider_class.call_args[0][0] == "token.actions.githubusercontent.com-oidc-provider"
        assert registry.get(url) is provider
        assert registry.ensure(url) is provider

    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_cluster_then_issuer_url_share_provider(self, mock_provider_class, cluster):
        """Test that a cluster and its bare issuer URL resolve to one provider."""
        registry = FederationProviderRegistry()
        from_cluster = registry.ensure(cluster, thumbprints=[THUMBPRINT])
        from_url = registry.ensure(ISSUER_URL, thumbprints=[THUMBPRINT])

        assert from_cluster is from_url
        assert mock_provider_class.call_count == 1
        assert mock_provider_class.call_args[0][0] == "test-cluster-oidc-provider"
        assert ISSUER_URL in registry

    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_issuer_url_then_cluster_share_provider(self, mock_provider_class, cluster):
        registry = FederationProviderRegistry()
        from_url = registry.ensure(ISSUER_URL, thumbprints=[THUMBPRINT])
        from_cluster = registry.ensure(cluster, thumbprints=[THUMBPRINT])

        assert from_cluster is from_url
        assert mock_provider_class.call_count == 1
        assert len(registry) == 1

    @pulumi.runtime.test
    def test_unresolved_issuer_keyed_by_cluster_name(self):
        """Test that a cluster whose issuer is an Output is keyed by its name."""
        cluster = Cluster(name="looked-up", issuer_url=pulumi.Output.from_input(ISSUER_URL))
        assert FederationProviderRegistry.key_for(cluster) == "looked-up"
        assert FederationProviderRegistry.key_for(Cluster(name="known", issuer_url=ISSUER_URL)) == ISSUER_URL

    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_custom_tags_and_audiences(self, mock_provider_class, cluster):
        registry = FederationProviderRegistry(tags={"Team": "platform"}, audiences=["custom-aud"])
        registry.ensure(cluster, thumbprints=[THUMBPRINT])

        kwargs = mock_provider_class.call_args[1]
        assert kwargs["client_id_lists"] == ["custom-aud"]
        assert kwargs["tags"]["Team"] == "platform"
        assert kwargs["tags"]["ManagedBy"] == "IRSA-Binder"

    @patch('irsa_binder.federation.pulumi.ResourceOptions')
    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_explicit_aws_provider(self, mock_provider_class, mock_resource_options, cluster):
        aws_provider = MagicMock()
        registry = FederationProviderRegistry(aws_provider=aws_provider)
        registry.ensure(cluster, thumbprints=[THUMBPRINT])

        mock_resource_options.assert_called_once_with(provider=aws_provider)
        assert mock_provider_class.call_args[1]["opts"] is mock_resource_options.return_value

    @patch('irsa_binder.federation.tls.get_certificate_output')
    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_thumbprint_fetched_when_not_given(self, mock_provider_class, mock_get_certificate, cluster):
        """Test that the issuer certificate is fetched when no thumbprint is configured."""
        registry = FederationProviderRegistry()
        provider = registry.ensure(cluster)

        mock_get_certificate.assert_called_once_with(url=ISSUER_URL)
        assert provider.thumbprints == [mock_get_certificate.return_value.certificates.apply.return_value]

    def test_get_unknown(self, cluster):
        registry = FederationProviderRegistry()
        assert registry.get(cluster) is None
        assert cluster not in registry

    @patch('irsa_binder.federation.aws.iam.OpenIdConnectProvider')
    def test_arn_for(self, mock_provider_class, cluster):
        registry = FederationProviderRegistry()
        provider = registry.ensure(cluster, thumbprints=[THUMBPRINT])
        assert provider.arn_for(ACCOUNT_ID) == f"arn:aws:iam::{ACCOUNT_ID}:oidc-provider/{ISSUER_HOST}"
        assert provider.arn is mock_provider_class.return_value.arn


@pytest.mark.unit
class TestLookupCluster:
    """Test cases for lookup_cluster function."""

    @patch('irsa_binder.federation.aws.eks.get_cluster_output')
    def test_lookup_cluster(self, mock_get_cluster):
        cluster = lookup_cluster("prod", region="us-west-2")

        mock_get_cluster.assert_called_once_with(name="prod", opts=None)
        assert cluster.name == "prod"
        assert cluster.region == "us-west-2"
        assert cluster.issuer_url is mock_get_cluster.return_value.identities.apply.return_value

    @patch('irsa_binder.federation.aws.eks.get_cluster_output')
    def test_lookup_cluster_issuer_selection(self, mock_get_cluster):
        lookup_cluster("prod")
        select_issuer = mock_get_cluster.return_value.identities.apply.call_args[0][0]

        oidc = MagicMock(issuer=ISSUER_URL)
        identity = MagicMock(oidcs=[oidc])
        assert select_issuer([identity]) == ISSUER_URL


@pytest.mark.integration
class TestSharedProviderWithMocks:
    """Provider sharing against the Pulumi mock engine."""

    @pulumi.runtime.test
    def test_provider_arn_resolves(self):
        cluster = Cluster(name="test-cluster", issuer_url=ISSUER_URL)
        registry = FederationProviderRegistry()
        provider = registry.ensure(cluster, thumbprints=[THUMBPRINT])

        def check(arn):
            assert arn == f"arn:aws:iam::{ACCOUNT_ID}:oidc-provider/{ISSUER_HOST}"

        return provider.arn.apply(check)
