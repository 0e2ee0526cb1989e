import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as k8s
import logging
from irsa_binder import config_loader
from irsa_binder.federation import Cluster, FederationProvider, FederationProviderRegistry
from irsa_binder.graph import DependencyGraph
from irsa_binder.trust_policy import RepositorySubject, ServiceAccountSubject, trust_policy_output
from . import constants, naming

logger = logging.getLogger(__name__)

# Entity names inside a binding's dependency graph
OIDC_PROVIDER = "oidc-provider"
ROLE = "role"
POLICY = "policy"
POLICY_ATTACHMENT = "policy-attachment"
ROLE_POLICY = "role-policy"
SERVICE_ACCOUNT = "service-account"


class ServiceAccountBinding:
    """The IAM role, policy and ServiceAccount federated for one workload."""
    def __init__(self, cluster: Cluster, name: str, namespace: str, role_name: str, policy_name: str,
                 provider: FederationProvider, graph: DependencyGraph):
        self.cluster = cluster
        self.name = name
        self.namespace = namespace
        self.role_name = role_name
        self.policy_name = policy_name
        self.provider = provider
        self.graph = graph

    @property
    def role(self) -> aws.iam.Role:
        return self.graph.resource(ROLE)

    @property
    def policy(self) -> aws.iam.Policy:
        return self.graph.resource(POLICY)

    @property
    def attachment(self) -> aws.iam.RolePolicyAttachment:
        return self.graph.resource(POLICY_ATTACHMENT)

    @property
    def service_account(self) -> k8s.core.v1.ServiceAccount:
        return self.graph.resource(SERVICE_ACCOUNT)

    @property
    def role_arn(self) -> pulumi.Output[str]:
        return self.role.arn

    @property
    def dependables(self) -> list:
        """Everything this binding created, in creation order, for callers to depend on."""
        return [self.graph.resource(name) for name in self.graph.creation_order() if name != OIDC_PROVIDER]

    def __str__(self):
        return f"ServiceAccountBinding(cluster={self.cluster.name}, namespace={self.namespace}, name={self.name})"


class GitHubActionsRole:
    """The IAM role and inline policy federated to a GitHub repository."""
    def __init__(self, owner: str, repository: str, role_name: str, policy_name: str,
                 provider: FederationProvider, graph: DependencyGraph):
        self.owner = owner
        self.repository = repository
        self.role_name = role_name
        self.policy_name = policy_name
        self.provider = provider
        self.graph = graph

    @property
    def role(self) -> aws.iam.Role:
        return self.graph.resource(ROLE)

    @property
    def role_policy(self) -> aws.iam.RolePolicy:
        return self.graph.resource(ROLE_POLICY)

    @property
    def dependables(self) -> list:
        return [self.graph.resource(name) for name in self.graph.creation_order() if name != OIDC_PROVIDER]


def _prepare_tags(tags: dict | None) -> dict:
    """Merges default tags with caller-supplied tags."""
    current_tags = constants.DEFAULT_TAGS.copy()
    if isinstance(tags, dict):
        current_tags.update(tags)
    logger.debug(f"Prepared tags: {current_tags}")
    return current_tags

def _resolve_account_id(aws_provider: aws.Provider | None) -> pulumi.Output[str]:
    """Looks up the deploying account id; resolved by the engine, not here."""
    opts = pulumi.InvokeOptions(provider=aws_provider) if aws_provider else None
    return aws.get_caller_identity_output(opts=opts).account_id

def _resolve_policy_document(policy_document: str | None, policy_file: tuple[str, str] | None,
                             default_location: str, default_file_name: str) -> str:
    """Returns the caller's permission document or loads it from disk."""
    if policy_document is not None:
        return policy_document
    location, file_name = policy_file or (default_location, default_file_name)
    return config_loader.load_policy_document(location, file_name)

def _create_iam_role(pulumi_resource_name: str, role_name: str, description: str | None,
                     assume_role_policy_doc: str | pulumi.Output, tags: dict,
                     opts: pulumi.ResourceOptions | None) -> aws.iam.Role:
    """Creates the core aws.iam.Role Pulumi resource."""
    iam_role = aws.iam.Role(pulumi_resource_name,
                            name=role_name,
                            description=description,
                            assume_role_policy=assume_role_policy_doc,
                            tags=tags,
                            opts=opts)
    logger.info(f"Defined aws.iam.Role: {role_name} (Pulumi name: {pulumi_resource_name})")
    return iam_role

def _create_iam_policy(pulumi_resource_name: str, policy_name: str, policy_document: str,
                       tags: dict, opts: pulumi.ResourceOptions | None) -> aws.iam.Policy:
    """Creates the managed aws.iam.Policy holding the workload's permissions."""
    iam_policy = aws.iam.Policy(pulumi_resource_name,
                                name=policy_name,
                                policy=policy_document,
                                tags=tags,
                                opts=opts)
    logger.info(f"Defined aws.iam.Policy: {policy_name} (Pulumi name: {pulumi_resource_name})")
    return iam_policy

def _attach_policy(pulumi_resource_name: str, role_name_for_log: str, iam_role_name: pulumi.Output[str],
                   policy_arn: pulumi.Output[str], opts: pulumi.ResourceOptions | None) -> aws.iam.RolePolicyAttachment:
    """Attaches the managed policy to the IAM role."""
    attachment = aws.iam.RolePolicyAttachment(pulumi_resource_name,
                                              role=iam_role_name,
                                              policy_arn=policy_arn,
                                              opts=opts)
    logger.debug(f"Attaching policy to role {role_name_for_log} (Pulumi name: {pulumi_resource_name})")
    return attachment

def _service_account_annotations(role_arn: pulumi.Output[str] | str, extra_annotations: dict | None,
                                 exclude_role_arn_annotation: bool) -> dict:
    """Builds ServiceAccount annotations; extra annotations win over the role ARN."""
    if exclude_role_arn_annotation:
        return dict(extra_annotations or {})
    return {constants.ROLE_ARN_ANNOTATION: role_arn, **(extra_annotations or {})}

def _create_service_account(pulumi_resource_name: str, name: str, namespace: str, labels: dict,
                            annotations: dict, opts: pulumi.ResourceOptions | None) -> k8s.core.v1.ServiceAccount:
    """Creates the Kubernetes ServiceAccount workloads run as."""
    service_account = k8s.core.v1.ServiceAccount(
        pulumi_resource_name,
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=name,
            namespace=namespace,
            labels=labels,
            annotations=annotations,
        ),
        opts=opts,
    )
    logger.info(f"Defined ServiceAccount: {namespace}/{name} (Pulumi name: {pulumi_resource_name})")
    return service_account

def _safe_export(key: str, value: pulumi.Output) -> None:
    """Safely export a value, only if we're in a valid Pulumi stack context."""
    try:
        pulumi.export(key, value)
        logger.debug(f"Exported: {key}")
    except Exception as e:
        # This happens when not running in a Pulumi stack context (e.g., CLI validation)
        logger.debug(f"Skipping export '{key}' - not in Pulumi stack context: {e}")

def bind_service_account(cluster: Cluster, name: str, registry: FederationProviderRegistry,
                         namespace: str = constants.DEFAULT_NAMESPACE,
                         policy_document: str | None = None,
                         policy_name: str | None = None,
                         policy_file: tuple[str, str] | None = None,
                         policy_docs_dir: str = constants.POLICY_DOCS_DIR,
                         tags: dict | None = None,
                         labels: dict | None = None,
                         extra_annotations: dict | None = None,
                         exclude_role_arn_annotation: bool = False,
                         depends_on: list | None = None,
                         account_id: str | pulumi.Output | None = None,
                         thumbprints: list[str] | None = None,
                         aws_provider: aws.Provider | None = None,
                         k8s_provider: k8s.Provider | None = None) -> ServiceAccountBinding:
    """
    Federates a Kubernetes ServiceAccount with an IAM role through the cluster's OIDC provider.

    Resources are declared in dependency order: OIDC provider (shared, from the
    registry), role, policy, policy attachment, ServiceAccount. Each resource
    explicitly depends on every resource whose attributes it reads, plus the
    caller's prerequisites.

    The permission document is policy_document if given, otherwise it is read
    from policy_file, otherwise from <policy_docs_dir>/<policy name>.json. A
    missing document raises ConfigError before any resource is declared.
    """
    if not name:
        raise ValueError("A service account name is required")
    namespace = namespace or constants.DEFAULT_NAMESPACE
    prerequisites = list(depends_on or [])
    logger.info(f"--- Defining IRSA resources for {namespace}/{name} on cluster {cluster.name} ---")

    role_name = naming.role_name(cluster.name, name)
    policy_name = policy_name or naming.policy_name(cluster.name, name)
    iam_policy_document = _resolve_policy_document(policy_document, policy_file,
                                                   policy_docs_dir, f"{policy_name}.json")

    if account_id is None:
        account_id = _resolve_account_id(aws_provider)
    provider = registry.ensure(cluster, thumbprints=thumbprints)

    graph = DependencyGraph()
    graph.declare(OIDC_PROVIDER, provider.resource)

    assume_role_policy_doc = trust_policy_output(
        provider.arn_for(account_id),
        provider.issuer_host,
        ServiceAccountSubject(namespace=namespace, name=name),
    )

    tags = _prepare_tags(tags)
    pulumi_resource_name_base = f"{cluster.name}-{namespace}-{name}"

    iam_role = _create_iam_role(
        pulumi_resource_name=f"{pulumi_resource_name_base}-role",
        role_name=role_name,
        description=f"IRSA role for {namespace}/{name} on {cluster.name}",
        assume_role_policy_doc=assume_role_policy_doc,
        tags=tags,
        opts=graph.options([OIDC_PROVIDER], prerequisites, aws_provider)
    )
    graph.declare(ROLE, iam_role, reads=[OIDC_PROVIDER], depends_on=[OIDC_PROVIDER], external=prerequisites)

    iam_policy = _create_iam_policy(
        pulumi_resource_name=f"{pulumi_resource_name_base}-policy",
        policy_name=policy_name,
        policy_document=iam_policy_document,
        tags=tags,
        opts=graph.options([], prerequisites, aws_provider)
    )
    graph.declare(POLICY, iam_policy, external=prerequisites)

    attachment = _attach_policy(
        pulumi_resource_name=f"{pulumi_resource_name_base}-policy-attachment",
        role_name_for_log=role_name,
        iam_role_name=iam_role.name,
        policy_arn=iam_policy.arn,
        opts=graph.options([ROLE, POLICY], provider=aws_provider)
    )
    graph.declare(POLICY_ATTACHMENT, attachment, reads=[ROLE, POLICY], depends_on=[ROLE, POLICY])

    annotations = _service_account_annotations(iam_role.arn, extra_annotations, exclude_role_arn_annotation)
    service_account = _create_service_account(
        pulumi_resource_name=f"{pulumi_resource_name_base}-sa",
        name=name,
        namespace=namespace,
        labels=dict(labels or {}),
        annotations=annotations,
        opts=graph.options([ROLE, POLICY, POLICY_ATTACHMENT], prerequisites, k8s_provider)
    )
    graph.declare(SERVICE_ACCOUNT, service_account,
                  reads=[] if exclude_role_arn_annotation else [ROLE],
                  depends_on=[ROLE, POLICY, POLICY_ATTACHMENT],
                  external=prerequisites)

    _safe_export(f"{pulumi_resource_name_base}_role_arn", iam_role.arn)

    logger.info(f"--- Successfully defined all IRSA resources for {namespace}/{name} ---")
    return ServiceAccountBinding(cluster, name, namespace, role_name, policy_name, provider, graph)

def create_github_actions_role(owner: str, repository: str, registry: FederationProviderRegistry,
                               policy_document: str | None = None,
                               policy_file: tuple[str, str] | None = None,
                               subject_pattern: str = "*",
                               tags: dict | None = None,
                               account_id: str | pulumi.Output | None = None,
                               thumbprints: list[str] | None = None,
                               aws_provider: aws.Provider | None = None) -> GitHubActionsRole:
    """
    Creates an IAM role GitHub Actions workflows of one repository can assume.

    The trust policy matches the subject claim repo:<owner>/<repository>:<pattern>
    and requires every aud and iss claim to match the GitHub issuer.
    """
    if not owner or not repository:
        raise ValueError("GitHub repository owner and name are required")
    if policy_document is None and policy_file is None:
        raise config_loader.ConfigError(
            f"No IAM policy document configured for GitHub repository {owner}/{repository}"
        )
    if policy_document is None:
        policy_document = config_loader.load_policy_document(*policy_file)

    logger.info(f"--- Defining GitHub Actions OIDC role for {owner}/{repository} ---")
    role_name = naming.budget_name(repository, constants.GITHUB_ROLE_SUFFIX)
    policy_name = naming.budget_name(repository, constants.GITHUB_ROLE_POLICY_SUFFIX)

    if account_id is None:
        account_id = _resolve_account_id(aws_provider)
    provider = registry.ensure(f"{constants.ISSUER_SCHEME}{constants.GITHUB_OIDC_PROVIDER_URL}",
                               thumbprints=thumbprints)

    graph = DependencyGraph()
    graph.declare(OIDC_PROVIDER, provider.resource)

    assume_role_policy_doc = trust_policy_output(
        provider.arn_for(account_id),
        provider.issuer_host,
        RepositorySubject(owner=owner, repository=repository, pattern=subject_pattern),
    )

    pulumi_resource_name_base = f"github-{owner}-{repository}"
    iam_role = _create_iam_role(
        pulumi_resource_name=f"{pulumi_resource_name_base}-role",
        role_name=role_name,
        description=f"GitHub Actions OIDC role for {owner}/{repository}",
        assume_role_policy_doc=assume_role_policy_doc,
        tags=_prepare_tags(tags),
        opts=graph.options([OIDC_PROVIDER], provider=aws_provider)
    )
    graph.declare(ROLE, iam_role, reads=[OIDC_PROVIDER], depends_on=[OIDC_PROVIDER])

    role_policy = aws.iam.RolePolicy(f"{pulumi_resource_name_base}-role-policy",
                                     name=policy_name,
                                     role=iam_role.name,
                                     policy=policy_document,
                                     opts=graph.options([ROLE], provider=aws_provider))
    logger.debug(f"Attaching inline policy '{policy_name}' to role {role_name}")
    graph.declare(ROLE_POLICY, role_policy, reads=[ROLE], depends_on=[ROLE])

    _safe_export(f"{pulumi_resource_name_base}_role_arn", iam_role.arn)
    return GitHubActionsRole(owner, repository, role_name, policy_name, provider, graph)
