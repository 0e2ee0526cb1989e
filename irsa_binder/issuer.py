import logging

import pulumi

from . import constants

logger = logging.getLogger(__name__)


def canonical(url: str | pulumi.Output) -> str | pulumi.Output[str]:
    """Returns the issuer URL in canonical form. Issuer URLs are already canonical."""
    return url


def _strip_scheme(url: str) -> str:
    if url.startswith(constants.ISSUER_SCHEME):
        return url[len(constants.ISSUER_SCHEME):]
    return url


def host_only(url: str | pulumi.Output) -> str | pulumi.Output[str]:
    """
    Strips a leading https:// from the issuer URL.

    The host-only form prefixes every trust policy condition key. Input without
    the scheme is returned unchanged so already-stripped values pass through.
    """
    if isinstance(url, pulumi.Output):
        return url.apply(_strip_scheme)
    return _strip_scheme(url)


def _format_provider_arn(account_id: str, url: str) -> str:
    provider_arn = f"arn:aws:iam::{account_id}:oidc-provider/{_strip_scheme(url)}"
    logger.debug(f"Constructed OIDC provider ARN: {provider_arn}")
    return provider_arn


def provider_arn(account_id: str | pulumi.Output, url: str | pulumi.Output) -> str | pulumi.Output[str]:
    """Builds the account-scoped OIDC provider ARN for an issuer."""
    if isinstance(account_id, pulumi.Output) or isinstance(url, pulumi.Output):
        return pulumi.Output.all(account_id, url).apply(lambda args: _format_provider_arn(*args))
    return _format_provider_arn(account_id, url)
