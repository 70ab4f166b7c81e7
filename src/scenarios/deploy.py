"""Deploy scenario.

Reconciles the deployment roles described under projects/ against the
cloud account through the apply engine.
"""

from actions import (
    AssumeBootstrapRoleAction,
    ClearStaleLocksAction,
    DiscoverBackendAction,
    PrerequisiteAction,
    TofuApplyAction,
    TofuInitAction,
    TofuPlanAction,
)
from config import OrchestratorConfig
from scenarios import register_scenario


@register_scenario
class Deploy:
    """Create or update every described deployment role."""

    name = 'deploy'
    description = 'Verify prerequisites, resolve backend, plan and apply deployment roles'

    def get_phases(self, config: OrchestratorConfig) -> list[tuple[str, object, str]]:
        """Return phases for deployment."""
        return [
            ('prerequisites', PrerequisiteAction(
                name='verify-prerequisites',
            ), 'Verify prerequisites'),

            ('assume_role', AssumeBootstrapRoleAction(
                name='assume-bootstrap-role',
            ), 'Assume foundation bootstrap role if published'),

            ('backend', DiscoverBackendAction(
                name='discover-backend',
                required=True,
            ), 'Resolve remote state backend'),

            ('clear_locks', ClearStaleLocksAction(
                name='clear-stale-locks',
            ), 'Clear stale state locks'),

            ('init', TofuInitAction(
                name='tofu-init',
            ), 'Initialize apply engine'),

            ('plan', TofuPlanAction(
                name='tofu-plan',
            ), 'Plan deployment roles'),

            ('apply', TofuApplyAction(
                name='tofu-apply',
            ), 'Apply deployment roles'),
        ]
