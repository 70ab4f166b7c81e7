"""Phase actions for deployment role lifecycles."""

from actions.tofu import (
    TofuInitAction,
    TofuPlanAction,
    TofuApplyAction,
    TofuDestroyAction,
)
from actions.aws import (
    AssumeBootstrapRoleAction,
    DiscoverBackendAction,
    ClearStaleLocksAction,
    PurgeStateAction,
    ManualSweepAction,
)
from actions.preflight import PrerequisiteAction

__all__ = [
    'TofuInitAction',
    'TofuPlanAction',
    'TofuApplyAction',
    'TofuDestroyAction',
    'AssumeBootstrapRoleAction',
    'DiscoverBackendAction',
    'ClearStaleLocksAction',
    'PurgeStateAction',
    'ManualSweepAction',
    'PrerequisiteAction',
]
