"""
Pulumi Automation API Manager
Handles programmatic Pulumi stack management and deployment
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as k8s
from pulumi import automation as auto

from irsa_binder import iam_resources
from irsa_binder.config_loader import ClusterConfig, GitHubRepositoryConfig
from irsa_binder.federation import Cluster, FederationProviderRegistry, lookup_cluster

logger = logging.getLogger(__name__)


class PulumiStackManager:
    """Manages Pulumi stack operations using the Automation API."""

    def __init__(self, project_name: str = "irsa-binder",
                 stack_name: str = "dev",
                 aws_region: Optional[str] = None,
                 aws_profile: Optional[str] = None,
                 backend_url: Optional[str] = None,
                 assume_role_arn: Optional[str] = None,
                 external_id: Optional[str] = None,
                 kubeconfig: Optional[str] = None,
                 kube_context: Optional[str] = None):
        self.project_name = project_name
        self.stack_name = stack_name
        self.aws_region = aws_region
        self.aws_profile = aws_profile
        self.assume_role_arn = assume_role_arn
        self.external_id = external_id
        self.kubeconfig = kubeconfig
        self.kube_context = kube_context
        self.work_dir = Path.cwd()
        self._current_stack = None

        # Explicit backend, then PULUMI_BACKEND_URL, then a local file backend
        self.backend_url = backend_url or os.getenv("PULUMI_BACKEND_URL")
        if not self.backend_url:
            state_dir = self.work_dir / '.pulumi-state'
            state_dir.mkdir(exist_ok=True)
            self.backend_url = f"file://{state_dir}"

    def _create_aws_provider(self) -> Optional[aws.Provider]:
        """Creates an explicit AWS provider when region or role assumption is configured."""
        if not self.aws_region and not self.assume_role_arn:
            return None
        provider_opts = {}
        if self.aws_region:
            provider_opts["region"] = self.aws_region
        if self.aws_profile:
            provider_opts["profile"] = self.aws_profile
        if self.assume_role_arn:
            provider_opts["assume_roles"] = [aws.ProviderAssumeRoleArgs(
                role_arn=self.assume_role_arn,
                session_name=f"{self.project_name}-{self.stack_name}",
                external_id=self.external_id,
            )]

        provider = aws.Provider("aws-provider", **provider_opts)
        logger.info(f"Configured AWS provider for region {self.aws_region}")
        return provider

    def _create_k8s_provider(self) -> Optional[k8s.Provider]:
        """Creates an explicit Kubernetes provider when a kubeconfig or context is configured."""
        if not self.kubeconfig and not self.kube_context:
            return None
        provider_opts = {}
        if self.kubeconfig:
            provider_opts["kubeconfig"] = self.kubeconfig
        if self.kube_context:
            provider_opts["context"] = self.kube_context
        provider = k8s.Provider("k8s-provider", **provider_opts)
        logger.info(f"Configured Kubernetes provider (context: {self.kube_context or 'default'})")
        return provider

    @staticmethod
    def _resolve_cluster(cluster_config: ClusterConfig, aws_provider: Optional[aws.Provider]) -> Cluster:
        if cluster_config.issuer_url:
            return Cluster(name=cluster_config.cluster_name,
                           issuer_url=cluster_config.issuer_url,
                           region=cluster_config.region)
        return lookup_cluster(cluster_config.cluster_name, cluster_config.region, aws_provider)

    def _create_pulumi_program(self, cluster_configs: List[ClusterConfig],
                               github_configs: Optional[List[GitHubRepositoryConfig]] = None):
        """Create the Pulumi program function that defines all resources."""

        def pulumi_program():
            aws_provider = self._create_aws_provider()
            k8s_provider = self._create_k8s_provider()
            # One registry per program, so each issuer gets exactly one OIDC provider
            registry = FederationProviderRegistry(aws_provider=aws_provider)

            bindings = {}
            for cluster_config in cluster_configs:
                cluster = self._resolve_cluster(cluster_config, aws_provider)
                for sa_config in cluster_config.service_accounts:
                    try:
                        binding = iam_resources.bind_service_account(
                            cluster,
                            sa_config.name,
                            registry,
                            namespace=sa_config.namespace,
                            policy_name=sa_config.policy_name,
                            policy_file=sa_config.policy_location(),
                            tags=cluster_config.tags | sa_config.tags,
                            labels=sa_config.labels,
                            extra_annotations=sa_config.extra_annotations,
                            exclude_role_arn_annotation=sa_config.exclude_role_arn_annotation,
                            thumbprints=cluster_config.thumbprints,
                            aws_provider=aws_provider,
                            k8s_provider=k8s_provider,
                        )
                    except Exception as e:
                        logger.error(f"Failed to define resources for {sa_config}: {e}")
                        raise
                    key = f"{cluster.name}/{binding.namespace}/{binding.name}"
                    bindings[key] = binding
                    logger.info(f"Defined resources for service account: {key}")

            for github_config in github_configs or []:
                github_role = iam_resources.create_github_actions_role(
                    github_config.owner,
                    github_config.repository,
                    registry,
                    policy_file=github_config.policy_file,
                    subject_pattern=github_config.subject_pattern,
                    tags=github_config.tags,
                    aws_provider=aws_provider,
                )
                bindings[f"github/{github_config.owner}/{github_config.repository}"] = github_role

            # Export binding information
            for key, binding in bindings.items():
                export_base = key.replace('/', '_')
                pulumi.export(f"{export_base}_arn", binding.role.arn)
                pulumi.export(f"{export_base}_name", binding.role.name)

            return bindings

        return pulumi_program

    def _get_stack_config(self) -> Dict[str, str]:
        """Get stack configuration."""
        config = {}

        # AWS configuration
        if self.aws_region:
            config["aws:region"] = self.aws_region
        if self.aws_profile:
            config["aws:profile"] = self.aws_profile
        if self.kube_context:
            config["kubernetes:context"] = self.kube_context

        return config

    def _create_workspace_settings(self) -> auto.LocalWorkspaceOptions:
        """Create workspace settings for local development."""
        return auto.LocalWorkspaceOptions(
            work_dir=str(self.work_dir),
            env_vars={
                "PULUMI_BACKEND_URL": self.backend_url,
                "PULUMI_SKIP_UPDATE_CHECK": "true",
                # Set a default passphrase for local development
                "PULUMI_CONFIG_PASSPHRASE": os.getenv("PULUMI_CONFIG_PASSPHRASE", "dev-passphrase-123"),
            }
        )

    def _select_stack(self, program) -> auto.Stack:
        """Create or select the stack and apply its configuration."""
        stack = auto.create_or_select_stack(
            stack_name=self.stack_name,
            project_name=self.project_name,
            program=program,
            opts=self._create_workspace_settings()
        )
        for key, value in self._get_stack_config().items():
            stack.set_config(key, auto.ConfigValue(value=value))
        return stack

    def preview_deployment(self, cluster_configs: List[ClusterConfig],
                           github_configs: Optional[List[GitHubRepositoryConfig]] = None) -> auto.PreviewResult:
        """Preview the deployment without making changes."""
        logger.info("Creating deployment preview...")

        program = self._create_pulumi_program(cluster_configs, github_configs)
        try:
            stack = self._select_stack(program)

            logger.info("Refreshing stack state...")
            stack.refresh(on_output=self._output_handler)

            logger.info("Generating preview...")
            return stack.preview(on_output=self._output_handler)

        except Exception as e:
            logger.error(f"Failed to create preview: {e}")
            raise

    def deploy(self, cluster_configs: List[ClusterConfig],
               github_configs: Optional[List[GitHubRepositoryConfig]] = None) -> auto.UpResult:
        """Deploy the resources to AWS and the cluster."""
        logger.info("Starting deployment...")

        program = self._create_pulumi_program(cluster_configs, github_configs)
        try:
            stack = self._select_stack(program)

            logger.info("Refreshing stack state...")
            stack.refresh(on_output=self._output_handler)

            logger.info("Applying changes...")
            up_result = stack.up(on_output=self._output_handler)

            logger.info("Deployment completed successfully!")
            self._current_stack = stack
            return up_result

        except Exception as e:
            logger.error(f"Deployment failed: {e}")
            raise

    def destroy(self) -> auto.DestroyResult:
        """Destroy all resources in the stack."""
        logger.warning("Starting resource destruction...")

        def empty_program():
            pass

        try:
            stack = self._select_stack(empty_program)
            destroy_result = stack.destroy(on_output=self._output_handler)

            logger.info("Resources destroyed successfully!")
            return destroy_result

        except Exception as e:
            logger.error(f"Destruction failed: {e}")
            raise

    def get_outputs(self) -> Dict[str, auto.OutputValue]:
        """Get stack outputs."""
        # Use stored stack from recent deployment if available
        if self._current_stack:
            try:
                return self._current_stack.outputs()
            except Exception as e:
                logger.debug(f"Failed to get outputs from current stack: {e}")

        def empty_program():
            pass

        try:
            return self._select_stack(empty_program).outputs()
        except Exception as e:
            logger.error(f"Failed to get outputs: {e}")
            raise

    def get_stack_info(self) -> Optional[auto.UpdateSummary]:
        """Get information about the most recent stack update."""
        def empty_program():
            pass

        try:
            return self._select_stack(empty_program).info()
        except Exception as e:
            logger.debug(f"Stack not found or error getting info: {e}")
            return None

    def _output_handler(self, output: str) -> None:
        """Handle Pulumi output for logging."""
        # Filter out noisy log messages
        if any(skip in output for skip in ['Downloading', 'Installing', 'diagnostic:']):
            return

        if any(keyword in output for keyword in ['error:', 'Error:', 'failed', 'Failed']):
            logger.error(f"Pulumi: {output.strip()}")
        elif any(keyword in output for keyword in ['warning:', 'Warning:']):
            logger.warning(f"Pulumi: {output.strip()}")
        else:
            logger.debug(f"Pulumi: {output.strip()}")
