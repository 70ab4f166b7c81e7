"""Project descriptor discovery.

Desired state is derived purely from the directory layout:

    projects/<project>/<environment>/policies/<policy-file>

Every (project, environment) pair holding at least one policy document is
one descriptor. Descriptors are recomputed on every run and never persisted,
so adding or removing a directory is all it takes to add or remove a role.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# IAM limit on role names
MAX_ROLE_NAME_LENGTH = 64


@dataclass(frozen=True)
class ProjectDescriptor:
    """A discovered (project, environment) unit of desired state."""
    project_name: str
    environment: str
    policy_document_path: Path

    @property
    def key(self) -> str:
        return f'{self.project_name}-{self.environment}'


@dataclass(frozen=True)
class RoleResource:
    """Desired-state projection of a deployment role.

    Built from a descriptor; the live role is only ever changed through the
    apply engine.
    """
    role_name: str
    repository: str
    subject: str
    audience: str
    attached_policy_arn: str
    registry_path: str

    def to_tfvars(self) -> dict:
        return {
            'role_name': self.role_name,
            'repository': self.repository,
            'subject': self.subject,
            'audience': self.audience,
            'policy_arn': self.attached_policy_arn,
            'policy_name': self.attached_policy_arn.rsplit('/', 1)[-1],
            'registry_path': self.registry_path,
        }


def scan_projects(projects_root: Path) -> dict[str, ProjectDescriptor]:
    """Discover descriptors under a projects directory.

    Args:
        projects_root: The projects/ directory

    Returns:
        Mapping of "<project>-<environment>" to descriptor. Empty when the
        directory does not exist (nothing to deploy).
    """
    descriptors: dict[str, ProjectDescriptor] = {}
    if not projects_root.is_dir():
        logger.debug(f"No projects directory at {projects_root}")
        return descriptors

    for policy in sorted(projects_root.glob('*/*/policies/*')):
        if not policy.is_file():
            continue
        environment_dir = policy.parent.parent
        descriptor = ProjectDescriptor(
            project_name=environment_dir.parent.name,
            environment=environment_dir.name,
            policy_document_path=policy,
        )
        # First policy file (sorted) wins for a given environment
        if descriptor.key not in descriptors:
            descriptors[descriptor.key] = descriptor
            logger.debug(f"Discovered {descriptor.key}: {policy}")

    return descriptors


def role_name_for(project_name: str, environment: str, prefix: str = 'gharole-') -> str:
    return f'{prefix}{project_name}-{environment}'


def policy_name_for(project_name: str, environment: str, prefix: str = 'ghpolicy-') -> str:
    return f'{prefix}{project_name}-{environment}'


def validate_role_name(role_name: str) -> Optional[str]:
    """Return an error message if the role name exceeds the IAM limit."""
    if len(role_name) > MAX_ROLE_NAME_LENGTH:
        return (
            f"Role name '{role_name}' exceeds {MAX_ROLE_NAME_LENGTH} characters "
            f"({len(role_name)})"
        )
    return None


def desired_roles(descriptors: dict[str, ProjectDescriptor], config,
                  account_id: str) -> dict[str, RoleResource]:
    """Project descriptors onto the roles the apply engine should converge to.

    Args:
        descriptors: Output of scan_projects()
        config: OrchestratorConfig (naming conventions, repository org)
        account_id: AWS account owning the roles
    """
    org = config.repo.org if config.repo else 'unknown'
    roles = {}
    for key, d in sorted(descriptors.items()):
        policy_name = policy_name_for(d.project_name, d.environment, config.policy_prefix)
        roles[key] = RoleResource(
            role_name=role_name_for(d.project_name, d.environment, config.role_prefix),
            repository=f'{org}/{d.project_name}',
            subject=f'repo:{org}/{d.project_name}:environment:{d.environment}',
            audience=config.oidc_audience,
            attached_policy_arn=f'arn:aws:iam::{account_id}:policy/{policy_name}',
            registry_path=f'{config.registry_prefix}/{org}-{d.project_name}/{d.environment}/role-arn',
        )
    return roles
