"""
Deterministic, length-bounded names for IAM resources.

Names are joined with "-" and cut to the first 128 characters. The cut is a
raw character cut: two long names sharing a 128 character prefix collide, and
nothing here detects that.
"""

from . import constants


def budget_name(*components: str) -> str:
    """Joins name components and truncates the result to MAX_NAME_LENGTH."""
    return constants.NAME_SEPARATOR.join(components)[:constants.MAX_NAME_LENGTH]


def role_name(cluster_name: str, workload_name: str) -> str:
    return budget_name(cluster_name, workload_name, constants.ROLE_SUFFIX)


def policy_name(cluster_name: str, workload_name: str) -> str:
    return budget_name(cluster_name, workload_name, constants.POLICY_SUFFIX)
