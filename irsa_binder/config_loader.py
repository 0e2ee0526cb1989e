import os
import json
import logging

from . import constants, naming

logger = logging.getLogger(__name__)

class ConfigError(Exception):
    """Custom exception for configuration loading errors."""
    pass

class ServiceAccountConfig:
    """Configuration for one IAM-bound Kubernetes ServiceAccount."""
    def __init__(self, cluster_name: str, details: dict, base_dir: str):
        self.cluster_name = cluster_name
        self.details = details
        self.cluster_dir = os.path.join(base_dir, cluster_name)

    @property
    def name(self) -> str:
        return self.details.get('name')

    @property
    def namespace(self) -> str:
        return self.details.get('namespace', constants.DEFAULT_NAMESPACE)

    @property
    def policy_name(self) -> str | None:
        return self.details.get('policyName')

    @property
    def policy_file(self) -> tuple[str, str] | None:
        """(location, file name) of the permission document, if set explicitly."""
        file_name = self.details.get('policyDocFileName')
        if not file_name:
            return None
        location = self.details.get('policyDocFileLocation')
        if not location:
            return self.policy_docs_dir, file_name
        # Relative locations are relative to the cluster directory
        return os.path.join(self.cluster_dir, location), file_name

    @property
    def policy_docs_dir(self) -> str:
        return os.path.join(self.cluster_dir, constants.POLICY_DOCS_DIR)

    def policy_location(self) -> tuple[str, str]:
        """(location, file name) the permission document is loaded from."""
        if self.policy_file:
            return self.policy_file
        policy_name = self.policy_name or naming.policy_name(self.cluster_name, self.name)
        return self.policy_docs_dir, f"{policy_name}.json"

    @property
    def labels(self) -> dict:
        return self.details.get('labels', {})

    @property
    def extra_annotations(self) -> dict:
        return self.details.get('extraAnnotations', {})

    @property
    def exclude_role_arn_annotation(self) -> bool:
        return bool(self.details.get('excludeRoleArnAnnotation', False))

    @property
    def tags(self) -> dict:
        tags = self.details.get('tags', {})
        return tags if isinstance(tags, dict) else {}

    def __str__(self):
        return f"ServiceAccountConfig(cluster={self.cluster_name}, namespace={self.namespace}, name={self.name})"

class ClusterConfig:
    """Represents the fully loaded binding configuration for one cluster."""
    def __init__(self, details: dict, service_accounts: list[ServiceAccountConfig], base_dir: str):
        self.details = details
        self.service_accounts = service_accounts
        self.path = os.path.join(base_dir, self.cluster_name)

    @property
    def cluster_name(self) -> str:
        return self.details.get('clusterName')

    @property
    def issuer_url(self) -> str | None:
        return self.details.get('oidcIssuerUrl')

    @property
    def region(self) -> str | None:
        return self.details.get('region')

    @property
    def thumbprints(self) -> list[str] | None:
        return self.details.get('thumbprints')

    @property
    def tags(self) -> dict:
        tags = self.details.get('tags', {})
        return tags if isinstance(tags, dict) else {}

    def __str__(self):
        return f"ClusterConfig(cluster={self.cluster_name}, service_accounts={len(self.service_accounts)})"

class GitHubRepositoryConfig:
    """Configuration for a GitHub Actions role federated to one repository."""
    def __init__(self, details: dict, base_dir: str):
        self.details = details
        self.path = os.path.join(base_dir, constants.GITHUB_ACTIONS_DIR)

    @property
    def owner(self) -> str:
        return self.details.get('owner')

    @property
    def repository(self) -> str:
        return self.details.get('repository')

    @property
    def subject_pattern(self) -> str:
        return self.details.get('subjectPattern', '*')

    @property
    def policy_file(self) -> tuple[str, str]:
        location = self.details.get('policyDocFileLocation', constants.POLICY_DOCS_DIR)
        return os.path.join(self.path, location), self.details['policyDocFileName']

    @property
    def tags(self) -> dict:
        tags = self.details.get('tags', {})
        return tags if isinstance(tags, dict) else {}

    def __str__(self):
        return f"GitHubRepositoryConfig(repository={self.owner}/{self.repository})"

def _load_json_file(file_path: str) -> dict:
    """Helper to load and validate a JSON object file."""
    if not os.path.exists(file_path):
        raise ConfigError(f"Required config file not found: {file_path}")
    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error decoding JSON from {file_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Error reading file {file_path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {file_path} is not a valid JSON object.")
    logger.debug(f"Successfully loaded config file: {file_path}")
    return data

def _require_fields(data: dict, required_fields: list[str], file_path: str):
    missing_fields = [field for field in required_fields if not data.get(field)]
    if missing_fields:
        raise ConfigError(f"Missing required fields in '{file_path}': {missing_fields}")

def load_policy_document(location: str, file_name: str) -> str:
    """
    Loads a permission policy document and returns its text unchanged.

    The document must exist and parse as a JSON object; a missing document is
    fatal because no binding can be declared without one.
    """
    file_path = os.path.join(location, file_name)
    if not os.path.isfile(file_path):
        raise ConfigError(f"IAM policy document not found: {file_path}")
    try:
        with open(file_path, 'r') as f:
            text = f.read()
    except OSError as e:
        raise ConfigError(f"Error reading file {file_path}: {e}")
    try:
        if not isinstance(json.loads(text), dict):
            raise ConfigError(f"IAM policy document {file_path} is not a valid JSON object.")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error decoding JSON from {file_path}: {e}")
    logger.debug(f"Loaded IAM policy document: {file_path}")
    return text

def load_cluster_config(base_dir: str, cluster_name: str) -> ClusterConfig:
    """Loads the configuration for a single cluster and all of its service accounts."""
    logger.info(f"Loading configuration for cluster '{cluster_name}' from '{base_dir}'.")
    cluster_dir = os.path.join(base_dir, cluster_name)

    if not os.path.isdir(cluster_dir):
        raise ConfigError(f"Cluster directory not found: {cluster_dir}")

    cluster_file = os.path.join(cluster_dir, constants.CLUSTER_CONFIG_FILE)
    details = _load_json_file(cluster_file)
    _require_fields(details, constants.REQUIRED_CLUSTER_FIELDS, cluster_file)
    if details['clusterName'] != cluster_name:
        raise ConfigError(
            f"clusterName '{details['clusterName']}' in '{cluster_file}' does not match directory '{cluster_name}'"
        )

    service_accounts = []
    names = set()
    sa_dir = os.path.join(cluster_dir, constants.SERVICE_ACCOUNTS_DIR)
    if os.path.isdir(sa_dir):
        for item_name in sorted(os.listdir(sa_dir)):
            if not item_name.endswith(".json"):
                continue
            sa_file = os.path.join(sa_dir, item_name)
            sa_details = _load_json_file(sa_file)
            _require_fields(sa_details, constants.REQUIRED_SERVICE_ACCOUNT_FIELDS, sa_file)
            sa_config = ServiceAccountConfig(cluster_name, sa_details, base_dir)
            if (sa_config.namespace, sa_config.name) in names:
                raise ConfigError(f"Duplicate service account {sa_config.namespace}/{sa_config.name} in '{sa_dir}'")
            names.add((sa_config.namespace, sa_config.name))
            service_accounts.append(sa_config)
    else:
        logger.warning(f"No service account directory found: {sa_dir}")

    return ClusterConfig(details, service_accounts, base_dir)

def discover_cluster_configs(base_dir: str, target_cluster_name: str = None) -> list[ClusterConfig]:
    """Discovers and loads cluster configurations, optionally filtered by cluster name."""
    logger.info(f"Discovering cluster configurations in '{base_dir}'.")

    if not os.path.isdir(base_dir):
        raise ConfigError(f"Bindings directory not found: {base_dir}")

    if target_cluster_name:
        return [load_cluster_config(base_dir, target_cluster_name)]

    cluster_configs = []
    for candidate in sorted(os.listdir(base_dir)):
        if candidate == constants.GITHUB_ACTIONS_DIR:
            continue
        if os.path.isfile(os.path.join(base_dir, candidate, constants.CLUSTER_CONFIG_FILE)):
            cluster_configs.append(load_cluster_config(base_dir, candidate))

    if not cluster_configs:
        logger.warning(f"No cluster configurations found in '{base_dir}'.")
    return cluster_configs

def discover_github_configs(base_dir: str) -> list[GitHubRepositoryConfig]:
    """Loads GitHub Actions repository bindings, if any are configured."""
    github_dir = os.path.join(base_dir, constants.GITHUB_ACTIONS_DIR)
    if not os.path.isdir(github_dir):
        logger.debug(f"No GitHub Actions directory found: {github_dir}")
        return []

    configs = []
    for item_name in sorted(os.listdir(github_dir)):
        item_path = os.path.join(github_dir, item_name)
        if not item_name.endswith(".json") or not os.path.isfile(item_path):
            continue
        details = _load_json_file(item_path)
        _require_fields(details, constants.REQUIRED_GITHUB_FIELDS, item_path)
        configs.append(GitHubRepositoryConfig(details, base_dir))
        logger.info(f"Loaded GitHub Actions binding: {details['owner']}/{details['repository']}")
    return configs
