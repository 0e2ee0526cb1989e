"""
IRSA Binder - IAM roles for Kubernetes service accounts via OIDC federation

This package declares, with Pulumi, the IAM OIDC provider of an EKS cluster,
per-workload IAM roles trusted through it, and the Kubernetes ServiceAccounts
annotated with those roles.
"""

__version__ = "1.0.0"

# Core components
from . import config_loader
from . import constants
from . import federation
from . import graph
from . import iam_resources
from . import issuer
from . import naming
from . import pulumi_manager
from . import trust_policy

__all__ = [
    "config_loader",
    "constants",
    "federation",
    "graph",
    "iam_resources",
    "issuer",
    "naming",
    "pulumi_manager",
    "trust_policy",
]
