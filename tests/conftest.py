"""
Shared fixtures and Pulumi mocks for the test suite
"""

import json
import typing

import pulumi
import pytest

from irsa_binder.federation import Cluster, FederationProviderRegistry

ACCOUNT_ID = "123456789012"
ISSUER_URL = "https://oidc.eks.us-east-1.amazonaws.com/id/ABC"
ISSUER_HOST = "oidc.eks.us-east-1.amazonaws.com/id/ABC"
THUMBPRINT = "9e99a48a9960b14926bb7f3b02e22da2b0ab7280"

POLICY_DOCUMENT = json.dumps({
    "Version": "2012-10-17",
    "Statement": [{"Effect": "Allow", "Action": "s3:GetObject", "Resource": "*"}]
})


class IrsaPulumiMocks(pulumi.runtime.Mocks):
    """Echoes inputs back as outputs and fills in the ARNs IAM would assign."""

    def new_resource(self, args: pulumi.runtime.MockResourceArgs) -> tuple[str | None, dict[typing.Any, typing.Any]]:
        outputs = dict(args.inputs)
        if args.typ == "aws:iam/role:Role":
            outputs["arn"] = f"arn:aws:iam::{ACCOUNT_ID}:role/{args.inputs.get('name', args.name)}"
        elif args.typ == "aws:iam/policy:Policy":
            outputs["arn"] = f"arn:aws:iam::{ACCOUNT_ID}:policy/{args.inputs.get('name', args.name)}"
        elif args.typ == "aws:iam/openIdConnectProvider:OpenIdConnectProvider":
            url = args.inputs.get("url", "").replace("https://", "")
            outputs["arn"] = f"arn:aws:iam::{ACCOUNT_ID}:oidc-provider/{url}"
        return f"{args.name}_id", outputs

    def call(
        self, args: pulumi.runtime.MockCallArgs
    ) -> dict[typing.Any, typing.Any] | tuple[dict[typing.Any, typing.Any], list[tuple[str, str]] | None]:
        _ = args
        return {}


pulumi.runtime.set_mocks(IrsaPulumiMocks(), preview=False)


@pytest.fixture
def cluster() -> Cluster:
    return Cluster(name="test-cluster", issuer_url=ISSUER_URL, region="us-east-1")


@pytest.fixture
def registry() -> FederationProviderRegistry:
    return FederationProviderRegistry()


@pytest.fixture
def bindings_dir(tmp_path):
    """
    A bindings directory with one cluster, two service accounts and one
    GitHub Actions repository:

        bindings/
          test-cluster/
            cluster.json
            service-accounts/external-dns.json
            service-accounts/aws-load-balancer-controller.json
            iam-policy-docs/test-cluster-external-dns-policy.json
            iam-policy-docs/alb-controller-policy.json
          github-actions/
            app.json
            iam-policy-docs/deploy.json
    """
    base = tmp_path / "bindings"
    cluster_dir = base / "test-cluster"
    (cluster_dir / "service-accounts").mkdir(parents=True)
    (cluster_dir / "iam-policy-docs").mkdir()
    (cluster_dir / "cluster.json").write_text(json.dumps({
        "clusterName": "test-cluster",
        "oidcIssuerUrl": ISSUER_URL,
        "region": "us-east-1",
        "thumbprints": [THUMBPRINT],
        "tags": {"Environment": "Test"}
    }))
    (cluster_dir / "service-accounts" / "external-dns.json").write_text(json.dumps({
        "name": "external-dns",
        "namespace": "kube-system"
    }))
    (cluster_dir / "service-accounts" / "aws-load-balancer-controller.json").write_text(json.dumps({
        "name": "aws-load-balancer-controller",
        "namespace": "kube-system",
        "policyDocFileName": "alb-controller-policy.json",
        "labels": {"app.kubernetes.io/name": "aws-load-balancer-controller"}
    }))
    (cluster_dir / "iam-policy-docs" / "test-cluster-external-dns-policy.json").write_text(POLICY_DOCUMENT)
    (cluster_dir / "iam-policy-docs" / "alb-controller-policy.json").write_text(POLICY_DOCUMENT)

    github_dir = base / "github-actions"
    (github_dir / "iam-policy-docs").mkdir(parents=True)
    (github_dir / "app.json").write_text(json.dumps({
        "owner": "Org",
        "repository": "Repo",
        "policyDocFileName": "deploy.json"
    }))
    (github_dir / "iam-policy-docs" / "deploy.json").write_text(POLICY_DOCUMENT)
    return base
