"""Destroy scenario.

Tears down every deployment role resource. After the backend phase all
phases are best-effort: the engine destroy may fail on a broken state and
the manual sweep still removes whatever matches the naming conventions.
"""

from actions import (
    AssumeBootstrapRoleAction,
    DiscoverBackendAction,
    ManualSweepAction,
    PrerequisiteAction,
    PurgeStateAction,
    TofuDestroyAction,
)
from config import OrchestratorConfig
from scenarios import register_scenario


@register_scenario
class Destroy:
    """Remove every deployment role, policy, registry entry and the state."""

    name = 'destroy'
    description = 'Destroy via apply engine, purge state, sweep remaining resources'

    def get_phases(self, config: OrchestratorConfig) -> list[tuple[str, object, str]]:
        """Return phases for teardown."""
        return [
            ('prerequisites', PrerequisiteAction(
                name='verify-prerequisites',
                remediate=False,
            ), 'Verify prerequisites'),

            ('assume_role', AssumeBootstrapRoleAction(
                name='assume-bootstrap-role',
            ), 'Assume foundation bootstrap role if published'),

            ('backend', DiscoverBackendAction(
                name='discover-backend',
                required=False,
            ), 'Resolve remote state backend'),

            ('engine_destroy', TofuDestroyAction(
                name='tofu-destroy',
            ), 'Destroy through apply engine'),

            ('state_purge', PurgeStateAction(
                name='purge-state',
            ), 'Delete state object and locks'),

            ('manual_sweep', ManualSweepAction(
                name='manual-sweep',
            ), 'Sweep remaining parameters, roles and policies'),
        ]
