"""Self-deployment guard.

The orchestrator repository must never create a deployment role for itself:
a role that can redeploy the roles would be a circular trust.
"""

from typing import Iterable, Optional


def is_self_deployment(repo_project: Optional[str], project_name: str) -> bool:
    """True when project_name names the hosting repository."""
    return bool(repo_project) and project_name == repo_project


def find_self_references(repo_project: Optional[str], descriptors: Iterable) -> list[str]:
    """Return keys of descriptors that target the hosting repository."""
    return sorted(
        d.key for d in descriptors
        if is_self_deployment(repo_project, d.project_name)
    )
