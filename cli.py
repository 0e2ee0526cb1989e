#!/usr/bin/env python3
"""
IRSA Binder CLI
Binds Kubernetes service accounts to AWS IAM roles through EKS OIDC federation using Pulumi
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from irsa_binder import config_loader, constants, issuer, trust_policy
from irsa_binder.pulumi_manager import PulumiStackManager

console = Console()

# Exit codes for CI/CD systems
class ExitCodes:
    SUCCESS = 0
    GENERAL_ERROR = 1
    CONFIG_ERROR = 2
    VALIDATION_ERROR = 3
    AWS_ERROR = 4


def setup_logging(log_level: str, json_output: bool = False) -> logging.Logger:
    """Configure logging with optional JSON output for CI systems."""
    logger = logging.getLogger()
    logger.handlers.clear()

    if json_output:
        # Structured logging for CI/CD
        formatter = logging.Formatter(
            '{"timestamp":"%(asctime)s","level":"%(levelname)s","module":"%(name)s","message":"%(message)s"}'
        )
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
    else:
        # Rich formatting for human-readable output
        handler = RichHandler(console=console, show_time=True, show_path=False)

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Suppress verbose library logs
    logging.getLogger("pulumi").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logger


def validate_aws_account_id(ctx, param, value: Optional[str]) -> Optional[str]:
    """Validate AWS account ID format."""
    if value is None:
        return value
    if not (value.isdigit() and len(value) == 12):
        raise click.BadParameter(
            f"Invalid AWS Account ID format: {value}. Must be exactly 12 digits."
        )
    return value


def validate_bindings_directory(ctx, param, value: str) -> Path:
    """Validate bindings directory exists."""
    path = Path(value)
    if not path.exists():
        raise click.BadParameter(f"Bindings directory does not exist: {value}")
    if not path.is_dir():
        raise click.BadParameter(f"Path is not a directory: {value}")
    return path


def mask_secret(value: Optional[str]) -> Optional[str]:
    return "***" if value else value


def _print_outputs_table(outputs) -> None:
    table = Table()
    table.add_column("Output", style="cyan")
    table.add_column("Value", style="green")
    for key, output in outputs.items():
        table.add_row(key, str(output.value))
    console.print(table)


bindings_dir_option = click.option(
    "--bindings-dir",
    default=lambda: os.path.join(os.getcwd(), "bindings"),
    callback=validate_bindings_directory,
    envvar="IRSA_BINDINGS_DIR",
    help="Directory containing cluster binding definitions (env: IRSA_BINDINGS_DIR)"
)
cluster_name_option = click.option(
    "--cluster-name",
    required=True,
    envvar="IRSA_CLUSTER_NAME",
    help="EKS cluster whose service accounts are bound (env: IRSA_CLUSTER_NAME)"
)
stack_name_option = click.option(
    "--stack-name",
    default="dev",
    envvar="PULUMI_STACK_NAME",
    help="Base stack name (will be combined with the cluster name) (env: PULUMI_STACK_NAME)"
)
backend_url_option = click.option(
    "--backend-url",
    envvar="PULUMI_BACKEND_URL",
    help="Pulumi state backend URL (env: PULUMI_BACKEND_URL)"
)


@click.group()
@click.version_option(version="1.0.0", prog_name="irsa-binder")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default="INFO",
    envvar="IRSA_LOG_LEVEL",
    help="Set logging level (env: IRSA_LOG_LEVEL)"
)
@click.option(
    "--json-output",
    is_flag=True,
    envvar="IRSA_JSON_OUTPUT",
    help="Output structured JSON logs for CI/CD (env: IRSA_JSON_OUTPUT)"
)
@click.pass_context
def cli(ctx, log_level: str, json_output: bool):
    """IRSA Binder: IAM roles for EKS service accounts via OIDC federation."""
    ctx.ensure_object(dict)
    ctx.obj["logger"] = setup_logging(log_level, json_output)
    ctx.obj["json_output"] = json_output


@cli.command()
@cluster_name_option
@bindings_dir_option
@click.option("--aws-region", envvar="AWS_REGION", help="AWS region for resource creation (env: AWS_REGION)")
@click.option("--aws-profile", envvar="AWS_PROFILE", help="AWS profile to use (env: AWS_PROFILE)")
@click.option(
    "--assume-role-arn",
    envvar="AWS_ASSUME_ROLE_ARN",
    help="IAM role to assume for cross-account deployment (env: AWS_ASSUME_ROLE_ARN)"
)
@click.option("--external-id", envvar="AWS_EXTERNAL_ID", help="External ID for role assumption (env: AWS_EXTERNAL_ID)")
@click.option("--kubeconfig", envvar="KUBECONFIG", help="Kubeconfig for the cluster (env: KUBECONFIG)")
@click.option("--kube-context", envvar="IRSA_KUBE_CONTEXT", help="Kubeconfig context to use (env: IRSA_KUBE_CONTEXT)")
@click.option(
    "--with-github-actions",
    is_flag=True,
    help="Also deploy the GitHub Actions repository roles under <bindings-dir>/github-actions"
)
@stack_name_option
@backend_url_option
@click.option("--dry-run", is_flag=True, help="Preview changes without applying them")
@click.option(
    "--auto-approve",
    is_flag=True,
    envvar="IRSA_AUTO_APPROVE",
    help="Automatically approve deployment without confirmation (env: IRSA_AUTO_APPROVE)"
)
@click.pass_context
def deploy(ctx, cluster_name: str, bindings_dir: Path, aws_region: Optional[str], aws_profile: Optional[str],
           assume_role_arn: Optional[str], external_id: Optional[str], kubeconfig: Optional[str],
           kube_context: Optional[str], with_github_actions: bool, stack_name: str,
           backend_url: Optional[str], dry_run: bool, auto_approve: bool):
    """Deploy IAM roles and service accounts for a cluster."""
    logger = ctx.obj["logger"]
    json_output = ctx.obj["json_output"]

    cluster_stack_name = f"{stack_name}-{cluster_name}"

    try:
        deployment_info = {
            "cluster_name": cluster_name,
            "bindings_dir": str(bindings_dir),
            "aws_region": aws_region,
            "aws_profile": aws_profile,
            "assume_role_arn": assume_role_arn,
            "external_id": mask_secret(external_id),
            "stack_name": cluster_stack_name,
            "dry_run": dry_run
        }

        if json_output:
            logger.info(f"Starting deployment: {json.dumps(deployment_info)}")
        else:
            console.print("🚀 Starting IRSA Binder deployment", style="bold green")
            console.print(f"☸️  Cluster: {cluster_name}")
            console.print(f"📁 Bindings Directory: {bindings_dir}")
            console.print(f"📦 Stack: {cluster_stack_name}")
            if dry_run:
                console.print("🔍 Preview Mode: Showing changes without applying", style="yellow")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            disable=json_output
        ) as progress:
            progress.add_task("Loading binding configurations...", total=None)
            try:
                cluster_configs = config_loader.discover_cluster_configs(
                    base_dir=str(bindings_dir),
                    target_cluster_name=cluster_name
                )
                github_configs = (config_loader.discover_github_configs(str(bindings_dir))
                                  if with_github_actions else [])
            except config_loader.ConfigError as e:
                logger.error(f"Configuration error: {e}")
                sys.exit(ExitCodes.CONFIG_ERROR)

        service_accounts = [sa for cluster_config in cluster_configs for sa in cluster_config.service_accounts]
        if not service_accounts and not github_configs:
            if json_output:
                console.print(json.dumps({
                    "status": "success",
                    "message": "No bindings found",
                    "cluster_name": cluster_name,
                    "bindings_processed": 0
                }))
            else:
                console.print(f"ℹ️  No bindings found for cluster {cluster_name}", style="yellow")
            sys.exit(ExitCodes.SUCCESS)

        pulumi_manager = PulumiStackManager(
            project_name="irsa-binder",
            stack_name=cluster_stack_name,
            aws_region=aws_region,
            aws_profile=aws_profile,
            backend_url=backend_url,
            assume_role_arn=assume_role_arn,
            external_id=external_id,
            kubeconfig=kubeconfig,
            kube_context=kube_context
        )

        binding_names = [f"{sa.namespace}/{sa.name}" for sa in service_accounts]
        binding_names += [f"github:{gh.owner}/{gh.repository}" for gh in github_configs]

        if dry_run:
            if not json_output:
                console.print("🔍 Generating deployment preview...", style="bold blue")
            try:
                preview_result = pulumi_manager.preview_deployment(cluster_configs, github_configs)
            except Exception as e:
                logger.error(f"Preview failed: {e}")
                sys.exit(ExitCodes.GENERAL_ERROR)

            if json_output:
                change_summary = getattr(preview_result, "change_summary", None) or {}
                console.print(json.dumps({
                    "status": "success",
                    "deployment_mode": "preview",
                    "cluster_name": cluster_name,
                    "stack_name": cluster_stack_name,
                    "bindings_found": len(binding_names),
                    "changes_summary": {str(k): v for k, v in change_summary.items()}
                }, indent=2))
            else:
                console.print("\n📊 Preview Summary:", style="bold")
                console.print(f"☸️  Cluster: {cluster_name}")
                console.print(f"✅ Bindings to process: {len(binding_names)}")
                for binding_name in binding_names:
                    console.print(f"  - {binding_name}")
                console.print("\n✅ Dry run preview completed. No changes were applied.", style="green")
            sys.exit(ExitCodes.SUCCESS)

        if not auto_approve and not json_output:
            console.print("\n📋 About to deploy:", style="bold")
            console.print(f"☸️  Cluster: {cluster_name}")
            for binding_name in binding_names:
                console.print(f"  - {binding_name}")
            if not click.confirm("\nProceed with deployment?"):
                console.print("Deployment cancelled by user", style="yellow")
                sys.exit(ExitCodes.SUCCESS)

        try:
            if not json_output:
                console.print("🚀 Deploying resources...", style="bold green")
            up_result = pulumi_manager.deploy(cluster_configs, github_configs)
            outputs = pulumi_manager.get_outputs()
        except Exception as e:
            logger.error(f"Deployment failed: {e}")
            sys.exit(ExitCodes.GENERAL_ERROR)

        if json_output:
            console.print(json.dumps({
                "status": "success",
                "deployment_mode": "deploy",
                "cluster_name": cluster_name,
                "stack_name": cluster_stack_name,
                "bindings_deployed": len(binding_names),
                "outputs": {k: v.value for k, v in outputs.items()},
                "summary": up_result.summary.message if up_result.summary else None
            }, indent=2))
        else:
            console.print("\n🎉 Deployment successful!", style="bold green")
            console.print(f"☸️  Cluster: {cluster_name}")
            console.print(f"✅ Deployed {len(binding_names)} binding(s)")
            if outputs:
                console.print("\n📤 Stack Outputs:", style="bold")
                _print_outputs_table(outputs)

        sys.exit(ExitCodes.SUCCESS)

    except KeyboardInterrupt:
        logger.warning("Deployment interrupted by user")
        sys.exit(ExitCodes.GENERAL_ERROR)


@cli.command()
@cluster_name_option
@stack_name_option
@backend_url_option
@click.option(
    "--auto-approve",
    is_flag=True,
    envvar="IRSA_AUTO_APPROVE",
    help="Automatically approve destruction without confirmation (env: IRSA_AUTO_APPROVE)"
)
@click.pass_context
def destroy(ctx, cluster_name: str, stack_name: str, backend_url: Optional[str], auto_approve: bool):
    """Destroy all IAM roles and service accounts deployed for a cluster."""
    logger = ctx.obj["logger"]
    json_output = ctx.obj["json_output"]

    cluster_stack_name = f"{stack_name}-{cluster_name}"

    try:
        pulumi_manager = PulumiStackManager(
            project_name="irsa-binder",
            stack_name=cluster_stack_name,
            backend_url=backend_url
        )

        stack_info = pulumi_manager.get_stack_info()
        if not stack_info:
            if json_output:
                console.print(json.dumps({
                    "status": "error",
                    "message": "Stack not found",
                    "cluster_name": cluster_name,
                    "stack_name": cluster_stack_name
                }))
            else:
                console.print(f"❌ Stack '{cluster_stack_name}' not found", style="red")
                console.print(f"💡 No resources deployed for cluster {cluster_name}", style="blue")
            sys.exit(ExitCodes.CONFIG_ERROR)

        if not auto_approve and not json_output:
            console.print(f"⚠️  About to destroy stack: {cluster_stack_name}", style="bold red")
            console.print("This will delete all IAM roles and service accounts managed by this stack!")
            if not click.confirm("Are you sure you want to proceed?"):
                console.print("Destruction cancelled by user", style="yellow")
                sys.exit(ExitCodes.SUCCESS)

        if not json_output:
            console.print("🗑️  Destroying resources...", style="bold red")

        pulumi_manager.destroy()

        if json_output:
            console.print(json.dumps({
                "status": "success",
                "message": "Stack destroyed successfully",
                "cluster_name": cluster_name,
                "stack_name": cluster_stack_name
            }))
        else:
            console.print("✅ Stack destroyed successfully!", style="green")

        sys.exit(ExitCodes.SUCCESS)

    except Exception as e:
        logger.error(f"Destroy failed: {e}")
        sys.exit(ExitCodes.GENERAL_ERROR)


@cli.command()
@bindings_dir_option
@click.pass_context
def validate(ctx, bindings_dir: Path):
    """Validate binding configurations and policy documents without deploying."""
    logger = ctx.obj["logger"]

    try:
        cluster_configs = config_loader.discover_cluster_configs(str(bindings_dir))
        github_configs = config_loader.discover_github_configs(str(bindings_dir))
    except config_loader.ConfigError as e:
        console.print(f"❌ Configuration error: {e}", style="red")
        sys.exit(ExitCodes.CONFIG_ERROR)

    if not cluster_configs and not github_configs:
        console.print("❌ No bindings found", style="red")
        sys.exit(ExitCodes.CONFIG_ERROR)

    total_errors = 0
    for cluster_config in cluster_configs:
        console.print(f"\n🔍 Validating cluster: {cluster_config.cluster_name}")
        for sa_config in cluster_config.service_accounts:
            try:
                config_loader.load_policy_document(*sa_config.policy_location())
                console.print(f"  ✅ {sa_config.namespace}/{sa_config.name}")
            except config_loader.ConfigError as e:
                console.print(f"  ❌ {sa_config.namespace}/{sa_config.name}: {e}", style="red")
                total_errors += 1

    for github_config in github_configs:
        try:
            config_loader.load_policy_document(*github_config.policy_file)
            console.print(f"  ✅ github:{github_config.owner}/{github_config.repository}")
        except config_loader.ConfigError as e:
            console.print(f"  ❌ github:{github_config.owner}/{github_config.repository}: {e}", style="red")
            total_errors += 1

    if total_errors > 0:
        logger.debug(f"Validation found {total_errors} error(s)")
        console.print(f"\n❌ Validation completed with {total_errors} error(s)", style="red")
        sys.exit(ExitCodes.CONFIG_ERROR)

    console.print("\n✅ All configurations are valid!", style="green")
    sys.exit(ExitCodes.SUCCESS)


@cli.command()
@cluster_name_option
@stack_name_option
@backend_url_option
@click.pass_context
def status(ctx, cluster_name: str, stack_name: str, backend_url: Optional[str]):
    """Show deployment status and outputs for a cluster."""
    logger = ctx.obj["logger"]
    json_output = ctx.obj["json_output"]

    cluster_stack_name = f"{stack_name}-{cluster_name}"

    try:
        pulumi_manager = PulumiStackManager(
            project_name="irsa-binder",
            stack_name=cluster_stack_name,
            backend_url=backend_url
        )

        stack_info = pulumi_manager.get_stack_info()
        if not stack_info:
            if json_output:
                console.print(json.dumps({
                    "status": "not_found",
                    "cluster_name": cluster_name,
                    "stack_name": cluster_stack_name
                }))
            else:
                console.print(f"❌ Stack '{cluster_stack_name}' not found", style="red")
            sys.exit(ExitCodes.CONFIG_ERROR)

        outputs = pulumi_manager.get_outputs()
        end_time = getattr(stack_info, 'end_time', None)

        if json_output:
            console.print(json.dumps({
                "status": "found",
                "cluster_name": cluster_name,
                "stack_name": cluster_stack_name,
                "outputs": {k: v.value for k, v in outputs.items()},
                "last_update": str(end_time) if end_time else None
            }, indent=2))
        else:
            console.print(f"📦 Stack: {cluster_stack_name}", style="bold")
            console.print(f"☸️  Cluster: {cluster_name}")
            console.print(f"🕐 Last Update: {end_time or 'Unknown'}")
            if outputs:
                console.print("\n📤 Outputs:", style="bold")
                _print_outputs_table(outputs)
            else:
                console.print("No outputs available")

        sys.exit(ExitCodes.SUCCESS)

    except Exception as e:
        logger.error(f"Status check failed: {e}")
        sys.exit(ExitCodes.GENERAL_ERROR)


@cli.command("trust-policy")
@click.option("--issuer-url", help="OIDC issuer URL of the cluster (service account trust)")
@click.option("--account-id", callback=validate_aws_account_id, help="AWS account owning the OIDC provider")
@click.option("--namespace", default=constants.DEFAULT_NAMESPACE, show_default=True, help="ServiceAccount namespace")
@click.option("--name", help="ServiceAccount name")
@click.option("--owner", help="GitHub repository owner (repository trust)")
@click.option("--repository", help="GitHub repository name (repository trust)")
@click.option("--subject-pattern", default="*", show_default=True, help="Subject suffix pattern for repository trust")
@click.option("--audience", default=constants.DEFAULT_AUDIENCE, show_default=True, help="Token audience")
def trust_policy_command(issuer_url: Optional[str], account_id: Optional[str], namespace: str,
                         name: Optional[str], owner: Optional[str], repository: Optional[str],
                         subject_pattern: str, audience: str):
    """Print the trust policy a role would be created with."""
    if not account_id:
        console.print("❌ --account-id is required", style="red")
        sys.exit(ExitCodes.VALIDATION_ERROR)

    if owner or repository:
        if not (owner and repository):
            console.print("❌ --owner and --repository must be given together", style="red")
            sys.exit(ExitCodes.VALIDATION_ERROR)
        issuer_url = issuer_url or f"{constants.ISSUER_SCHEME}{constants.GITHUB_OIDC_PROVIDER_URL}"
        subject = trust_policy.RepositorySubject(owner=owner, repository=repository, pattern=subject_pattern)
    else:
        if not (issuer_url and name):
            console.print("❌ --issuer-url and --name are required for service account trust", style="red")
            sys.exit(ExitCodes.VALIDATION_ERROR)
        subject = trust_policy.ServiceAccountSubject(namespace=namespace, name=name)

    document = trust_policy.build_trust_policy(
        issuer.provider_arn(account_id, issuer_url),
        issuer.host_only(issuer.canonical(issuer_url)),
        subject,
        audience,
    )
    click.echo(json.dumps(document, indent=2))
    sys.exit(ExitCodes.SUCCESS)


if __name__ == "__main__":
    cli()
