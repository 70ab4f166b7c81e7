"""Scaffold new project descriptors from the repository template."""

import logging
import re
import shutil
from pathlib import Path

from descriptors import role_name_for, validate_role_name
from guard import is_self_deployment

logger = logging.getLogger(__name__)

TEMPLATE_ENVIRONMENT = 'prd'
TEMPLATE_SUFFIX = '.template'

# One path segment of IAM role-name characters
_SEGMENT_RE = re.compile(r'[\w+=,.@-]+', re.ASCII)


class ProjectError(Exception):
    """Project cannot be created."""


def create_project(config, name: str, environment: str = TEMPLATE_ENVIRONMENT) -> Path:
    """Copy the project template to projects/<name>.

    All validation happens before anything touches the filesystem.

    Args:
        config: OrchestratorConfig
        name: Project (target repository) name
        environment: Environment directory to create

    Returns:
        Path of the new project directory

    Raises:
        ProjectError: On an invalid name or environment, self-reference,
            over-long role name, existing project or missing template
    """
    for label, value in (('project name', name), ('environment', environment)):
        if not _SEGMENT_RE.fullmatch(value) or value in ('.', '..'):
            raise ProjectError(
                f"Invalid {label} '{value}'\n"
                f"  Use a single directory name of letters, digits and +=,.@_-"
            )

    if is_self_deployment(config.repo_project, name):
        raise ProjectError(
            f"Cannot create deployment role for this project itself\n"
            f"  Current project: {config.repo_project}\n"
            f"  Requested project: {name}\n"
            f"  This would create a circular dependency"
        )

    role_name = role_name_for(name, environment, config.role_prefix)
    if error := validate_role_name(role_name):
        raise ProjectError(f"{error}\n  Please use a shorter project name")

    target = config.projects_root / name
    if target.exists():
        raise ProjectError(f"Project '{name}' already exists at {target}")

    template = config.root / config.template_dir
    if not template.is_dir():
        raise ProjectError(f"Template directory not found at {template}")

    logger.info(f"Creating project {name} (role {role_name}) at {target}")
    shutil.copytree(template, target)

    env_dir = target / environment
    if environment != TEMPLATE_ENVIRONMENT and (target / TEMPLATE_ENVIRONMENT).is_dir():
        (target / TEMPLATE_ENVIRONMENT).rename(env_dir)

    for path in sorted((env_dir / 'policies').glob(f'*.json{TEMPLATE_SUFFIX}')):
        path.rename(path.with_name(path.name[:-len(TEMPLATE_SUFFIX)]))

    return target
