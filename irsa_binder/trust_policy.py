"""
Trust policy documents for OIDC web identity federation.

Documents are plain dicts built from condition variants and rendered with
json.dumps, so identical inputs always render to identical text.
"""

import json
import logging
from dataclasses import dataclass

import pulumi

from . import constants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExactMatch:
    """StringEquals condition: the claim must equal the value."""
    key: str
    value: str
    operator = "StringEquals"


@dataclass(frozen=True)
class PrefixMatch:
    """StringLike condition: the claim must match the wildcard pattern."""
    key: str
    value: str
    operator = "StringLike"


@dataclass(frozen=True)
class AllValuesExactMatch:
    """ForAllValues:StringEquals condition: every value of a multi-valued claim must match."""
    key: str
    value: str
    operator = "ForAllValues:StringEquals"


Condition = ExactMatch | PrefixMatch | AllValuesExactMatch


@dataclass(frozen=True)
class ServiceAccountSubject:
    """A Kubernetes ServiceAccount in a namespace."""
    namespace: str
    name: str

    @property
    def claim(self) -> str:
        return f"system:serviceaccount:{self.namespace}:{self.name}"


@dataclass(frozen=True)
class RepositorySubject:
    """Any workflow run of a GitHub repository matching a subject pattern."""
    owner: str
    repository: str
    pattern: str = "*"

    @property
    def claim(self) -> str:
        return f"repo:{self.owner}/{self.repository}:{self.pattern}"


SubjectBinding = ServiceAccountSubject | RepositorySubject


def build_conditions(issuer_host: str, subject: SubjectBinding,
                     audience: str = constants.DEFAULT_AUDIENCE) -> list[Condition]:
    """Returns the condition variants binding the issuer to the subject."""
    if isinstance(subject, ServiceAccountSubject):
        return [
            ExactMatch(f"{issuer_host}:aud", audience),
            ExactMatch(f"{issuer_host}:sub", subject.claim),
        ]
    if isinstance(subject, RepositorySubject):
        # Tokens may carry several aud/iss values; all of them must match.
        return [
            PrefixMatch(f"{issuer_host}:sub", subject.claim),
            AllValuesExactMatch(f"{issuer_host}:aud", audience),
            AllValuesExactMatch(f"{issuer_host}:iss", f"{constants.ISSUER_SCHEME}{issuer_host}"),
        ]
    raise TypeError(f"Unsupported subject binding: {subject!r}")


def render_conditions(conditions: list[Condition]) -> dict[str, dict[str, str]]:
    """Groups condition variants by operator into an IAM Condition block."""
    block: dict[str, dict[str, str]] = {}
    for condition in conditions:
        block.setdefault(condition.operator, {})[condition.key] = condition.value
    return block


def build_trust_policy(provider_arn: str, issuer_host: str, subject: SubjectBinding,
                       audience: str = constants.DEFAULT_AUDIENCE) -> dict:
    """Builds the assume role policy document for a federated subject."""
    return {
        "Version": constants.POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {
                    "Federated": provider_arn
                },
                "Action": constants.ASSUME_ROLE_ACTION,
                "Condition": render_conditions(build_conditions(issuer_host, subject, audience))
            }
        ]
    }


def render_trust_policy(provider_arn: str, issuer_host: str, subject: SubjectBinding,
                        audience: str = constants.DEFAULT_AUDIENCE) -> str:
    """Generates the JSON string for the IAM role's assume role policy document."""
    policy = json.dumps(build_trust_policy(provider_arn, issuer_host, subject, audience))
    logger.debug(f"Generated assume role policy document for OIDC provider ARN: {provider_arn}")
    return policy


def trust_policy_output(provider_arn: str | pulumi.Output, issuer_host: str | pulumi.Output,
                        subject: SubjectBinding,
                        audience: str = constants.DEFAULT_AUDIENCE) -> str | pulumi.Output[str]:
    """Renders the trust policy, deferring until the provider ARN and issuer host resolve."""
    if isinstance(provider_arn, pulumi.Output) or isinstance(issuer_host, pulumi.Output):
        return pulumi.Output.all(provider_arn, issuer_host).apply(
            lambda args: render_trust_policy(args[0], args[1], subject, audience)
        )
    return render_trust_policy(provider_arn, issuer_host, subject, audience)
