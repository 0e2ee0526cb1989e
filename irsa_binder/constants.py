"""
IRSA Binder Constants
Global configuration constants for the application
"""

# Default tags applied to all IAM resources
DEFAULT_TAGS = {
    "ManagedBy": "IRSA-Binder",
    "Tool": "Pulumi",
    "Purpose": "OIDC-Workload-Federation"
}

# OIDC Configuration
DEFAULT_AUDIENCE = "sts.amazonaws.com"
ISSUER_SCHEME = "https://"
GITHUB_OIDC_PROVIDER_URL = "token.actions.githubusercontent.com"
ASSUME_ROLE_ACTION = "sts:AssumeRoleWithWebIdentity"
POLICY_VERSION = "2012-10-17"

# Kubernetes ServiceAccount Configuration
DEFAULT_NAMESPACE = "default"
ROLE_ARN_ANNOTATION = "eks.amazonaws.com/role-arn"

# AWS Resource Naming
MAX_NAME_LENGTH = 128
NAME_SEPARATOR = "-"
ROLE_SUFFIX = "role"
POLICY_SUFFIX = "policy"
GITHUB_ROLE_SUFFIX = "GitHubActionsOIDCIamRole"
GITHUB_ROLE_POLICY_SUFFIX = "GitHubActionsOIDCIamRolePolicy"

# Configuration layout
CLUSTER_CONFIG_FILE = "cluster.json"
SERVICE_ACCOUNTS_DIR = "service-accounts"
POLICY_DOCS_DIR = "iam-policy-docs"
GITHUB_ACTIONS_DIR = "github-actions"
REQUIRED_CLUSTER_FIELDS = ["clusterName"]
REQUIRED_SERVICE_ACCOUNT_FIELDS = ["name"]
REQUIRED_GITHUB_FIELDS = ["owner", "repository", "policyDocFileName"]
