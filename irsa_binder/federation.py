import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

import pulumi
import pulumi_aws as aws
import pulumi_tls as tls

from . import constants, issuer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cluster:
    """An existing EKS cluster whose OIDC issuer workloads federate through."""
    name: str
    issuer_url: str | pulumi.Output
    region: Optional[str] = None


def lookup_cluster(name: str, region: Optional[str] = None,
                   aws_provider: Optional[aws.Provider] = None) -> Cluster:
    """Reads the issuer URL of an existing cluster. The issuer resolves lazily."""
    opts = pulumi.InvokeOptions(provider=aws_provider) if aws_provider else None
    eks_cluster = aws.eks.get_cluster_output(name=name, opts=opts)
    issuer_url = eks_cluster.identities.apply(lambda identities: identities[0].oidcs[0].issuer)
    logger.info(f"Looking up OIDC issuer for cluster: {name}")
    return Cluster(name=name, issuer_url=issuer_url, region=region)


def _issuer_thumbprint(issuer_url: str | pulumi.Output) -> pulumi.Output[str]:
    certificate = tls.get_certificate_output(url=issuer_url)
    return certificate.certificates.apply(lambda certificates: certificates[0].sha1_fingerprint)


@dataclass
class FederationProvider:
    """The IAM OIDC provider registered for one issuer."""
    key: str
    issuer_url: str | pulumi.Output
    audiences: list[str]
    thumbprints: list
    resource: aws.iam.OpenIdConnectProvider
    tags: dict = field(default_factory=dict)

    @property
    def issuer_host(self) -> str | pulumi.Output[str]:
        return issuer.host_only(self.issuer_url)

    @property
    def arn(self) -> pulumi.Output[str]:
        return self.resource.arn

    def arn_for(self, account_id: str | pulumi.Output) -> str | pulumi.Output[str]:
        """The provider ARN built from the account id, as trust policies reference it."""
        return issuer.provider_arn(account_id, self.issuer_url)


class FederationProviderRegistry:
    """
    One OpenIdConnectProvider per issuer within a Pulumi program.

    The composition root creates a single registry and passes it to every
    binder, so bindings for the same cluster share one provider.
    """

    def __init__(self, aws_provider: Optional[aws.Provider] = None, tags: Optional[dict] = None,
                 audiences: Optional[list[str]] = None):
        self.aws_provider = aws_provider
        self.tags = tags or {}
        self.audiences = list(audiences or [constants.DEFAULT_AUDIENCE])
        self._providers: dict[str, FederationProvider] = {}

    @staticmethod
    def key_for(target: Cluster | str) -> str:
        if isinstance(target, Cluster):
            if isinstance(target.issuer_url, pulumi.Output):
                return target.name
            return issuer.canonical(target.issuer_url)
        return issuer.canonical(target)

    def ensure(self, target: Cluster | str, thumbprints: Optional[list[str]] = None) -> FederationProvider:
        """
        Returns the provider for a cluster or issuer URL, declaring it on first use.

        Known issuers are keyed by their canonical URL, so a cluster and a bare
        URL for the same issuer share one provider. A cluster whose issuer is
        still unresolved is keyed by its name.
        """
        key = self.key_for(target)
        existing = self._providers.get(key)
        if existing is not None:
            logger.debug(f"Reusing OIDC provider for {key}")
            return existing

        issuer_url = target.issuer_url if isinstance(target, Cluster) else issuer.canonical(target)
        if thumbprints is None:
            thumbprints = [_issuer_thumbprint(issuer_url)]

        tags = constants.DEFAULT_TAGS | self.tags
        label = target.name if isinstance(target, Cluster) else issuer.host_only(key)
        pulumi_resource_name = f"{label.replace('/', '-')}-oidc-provider"
        opts = pulumi.ResourceOptions(provider=self.aws_provider) if self.aws_provider else None
        resource = aws.iam.OpenIdConnectProvider(pulumi_resource_name,
                                                 url=issuer_url,
                                                 client_id_lists=self.audiences,
                                                 thumbprint_lists=thumbprints,
                                                 tags=tags,
                                                 opts=opts)
        logger.info(f"Defined aws.iam.OpenIdConnectProvider for {key} (Pulumi name: {pulumi_resource_name})")

        provider = FederationProvider(key=key,
                                      issuer_url=issuer_url,
                                      audiences=list(self.audiences),
                                      thumbprints=list(thumbprints),
                                      resource=resource,
                                      tags=tags)
        self._providers[key] = provider
        return provider

    def get(self, target: Cluster | str) -> Optional[FederationProvider]:
        return self._providers.get(self.key_for(target))

    def __contains__(self, target: Cluster | str) -> bool:
        return self.key_for(target) in self._providers

    def __iter__(self) -> Iterator[FederationProvider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)
