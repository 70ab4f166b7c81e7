"""Read-only enumeration of deployed deployment role resources.

Lists roles, custom policies and registry entries matching the naming
conventions, plus the backend's state object. Resources missing an expected
tag, or registry entries pointing at no listed role, are reported as orphan
candidates. Nothing here mutates cloud state. Reconciling against the apply
engine's own state record is left to manual verification.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from actions.tofu import TofuEngine
from backend import BackendNotConfigured, StateChannelConfig, resolve_backend
from cloud import IdentityControlPlane, ParameterRegistry, StateStore

logger = logging.getLogger(__name__)

_AWS_ERRORS = (ClientError, BotoCoreError)

MANUAL_VERIFICATION = [
    "Compare AWS resources with the apply engine state",
    "Check for resources created outside of this project",
    "Verify all registry parameters match expected projects",
]


@dataclass
class InventoryReport:
    """Everything found under the naming conventions."""
    repository: str
    region: str
    backend: Optional[StateChannelConfig] = None
    state_exists: Optional[bool] = None
    outputs: dict = field(default_factory=dict)
    roles: list[dict] = field(default_factory=list)
    policies: list[dict] = field(default_factory=list)
    parameters: list[dict] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'repository': self.repository,
            'region': self.region,
            'backend': {
                'bucket': self.backend.object_store_location,
                'key': self.backend.state_key,
                'lock_table': self.backend.lock_table_location,
            } if self.backend else None,
            'state_exists': self.state_exists,
            'outputs': self.outputs,
            'roles': self.roles,
            'policies': self.policies,
            'parameters': self.parameters,
            'orphans': self.orphans,
            'errors': self.errors,
            'manual_verification': MANUAL_VERIFICATION,
        }


def _missing_tags(tags: Optional[dict], expected: list[str]) -> list[str]:
    # None means the tags could not be read; that is an error, not an orphan
    if tags is None:
        return []
    return [key for key in expected if key not in tags]


def find_orphans(roles: list[dict], policies: list[dict], parameters: list[dict],
                 expected_tags: list[str]) -> list[str]:
    """Identify orphan candidates.

    A role or policy is a candidate when it lacks any expected tag; a
    registry entry is a candidate when its value names no listed role.
    """
    orphans = []
    for role in roles:
        if missing := _missing_tags(role.get('tags', {}), expected_tags):
            orphans.append(f"role {role['name']}: missing tags {', '.join(missing)}")
    for policy in policies:
        if missing := _missing_tags(policy.get('tags', {}), expected_tags):
            orphans.append(f"policy {policy['name']}: missing tags {', '.join(missing)}")

    role_arns = {role['arn'] for role in roles}
    for param in parameters:
        if param['value'] not in role_arns:
            orphans.append(f"parameter {param['name']}: references unknown role {param['value']}")
    return orphans


def enumerate_resources(config, registry=None, plane=None, store=None,
                        engine: Optional[TofuEngine] = None,
                        read_outputs: bool = True) -> InventoryReport:
    """Collect the inventory report.

    Args:
        config: OrchestratorConfig
        registry: ParameterRegistry override (tests)
        plane: IdentityControlPlane override (tests)
        store: StateStore override (tests)
        engine: TofuEngine override (tests)
        read_outputs: Initialize the engine and read its outputs when the
            state object exists and main.tf is present

    Returns:
        InventoryReport; listing failures are recorded in errors, never raised
    """
    report = InventoryReport(
        repository=config.repo.full_name if config.repo else 'unknown/unknown',
        region=config.region,
    )

    try:
        registry = registry or ParameterRegistry(config)
        plane = plane or IdentityControlPlane(config)
    except _AWS_ERRORS as e:
        report.errors.append(f"Cannot create AWS clients: {e}")
        return report

    try:
        report.backend = resolve_backend(registry, config)
    except BackendNotConfigured as e:
        report.errors.append(str(e))
    except _AWS_ERRORS as e:
        report.errors.append(f"Cannot read backend configuration: {e}")

    if report.backend:
        try:
            store = store or StateStore(config)
            report.state_exists = store.object_exists(
                report.backend.object_store_location, report.backend.state_key)
        except _AWS_ERRORS as e:
            report.errors.append(f"Cannot check state object: {e}")

        if report.state_exists and read_outputs and (config.root / 'main.tf').exists():
            engine = engine or TofuEngine(config.root, env=config.subprocess_env())
            if engine.init(report.backend, config.region).success:
                report.outputs = engine.outputs()
            else:
                report.errors.append("Engine init failed, outputs unavailable")

    try:
        roles = plane.list_roles(config.role_prefix)
    except _AWS_ERRORS as e:
        report.errors.append(f"Cannot list roles: {e}")
        roles = []
    for role in roles:
        name = role['RoleName']
        entry = {
            'name': name,
            'arn': role.get('Arn', ''),
            'created': str(role.get('CreateDate', '')),
            'tags': None,
            'policies': [],
        }
        try:
            entry['tags'] = plane.role_tags(name)
            entry['policies'] = plane.attached_policy_arns(name)
        except _AWS_ERRORS as e:
            report.errors.append(f"Cannot describe role {name}: {e}")
        report.roles.append(entry)

    try:
        policies = plane.list_policies(config.policy_prefix)
    except _AWS_ERRORS as e:
        report.errors.append(f"Cannot list policies: {e}")
        policies = []
    for policy in policies:
        entry = {
            'name': policy['PolicyName'],
            'arn': policy['Arn'],
            'created': str(policy.get('CreateDate', '')),
            'tags': None,
        }
        try:
            entry['tags'] = plane.policy_tags(policy['Arn'])
        except _AWS_ERRORS as e:
            report.errors.append(f"Cannot describe policy {policy['PolicyName']}: {e}")
        report.policies.append(entry)

    try:
        report.parameters = registry.get_by_path(config.registry_prefix, recursive=True)
    except _AWS_ERRORS as e:
        report.errors.append(f"Cannot list parameters: {e}")

    report.orphans = find_orphans(report.roles, report.policies, report.parameters,
                                  config.expected_tags)
    return report


def format_inventory(report: InventoryReport) -> str:
    """Render the inventory for the terminal."""
    lines = [
        "📋 DEPLOYED DEPLOYMENT ROLE RESOURCES 📋",
        "",
        f"Repository: {report.repository}",
        f"Control Plane Region: {report.region}",
        "",
        "=== STATE ===",
    ]
    if report.backend:
        lines += [
            f"  Bucket: {report.backend.object_store_location}",
            f"  Key: {report.backend.state_key}",
            f"  Lock table: {report.backend.lock_table_location}",
        ]
        if report.state_exists is True:
            lines.append("  Status: ✓ State file exists")
        elif report.state_exists is False:
            lines.append("  Status: ⚠ State file not found")
    else:
        lines.append("  ✗ Foundation backend configuration not found")

    if report.outputs:
        lines += ["", "=== OUTPUTS ==="]
        for name, value in sorted(report.outputs.items()):
            lines.append(f"  {name}: {value}")

    lines += ["", "=== IAM ROLES ==="]
    if not report.roles:
        lines.append("  No deployment roles found")
    for role in report.roles:
        lines.append(f"  {role['name']} ({role['arn']})")
        if role['tags'] is None:
            tags = 'unavailable'
        else:
            tags = ', '.join(f"{k}={v}" for k, v in sorted(role['tags'].items())) or 'None'
        lines.append(f"    Tags: {tags}")
        for arn in role['policies']:
            lines.append(f"    Policy: {arn}")

    lines += ["", "=== IAM POLICIES ==="]
    if not report.policies:
        lines.append("  No deployment policies found")
    for policy in report.policies:
        lines.append(f"  {policy['name']} ({policy['arn']})")

    lines += ["", "=== SSM PARAMETERS ==="]
    if not report.parameters:
        lines.append("  No deployment role parameters found")
    for param in report.parameters:
        lines.append(f"  {param['name']}: {param['value']}")

    lines += ["", "=== ORPHANED RESOURCE CANDIDATES ==="]
    if not report.orphans:
        lines.append("  None detected")
    for orphan in report.orphans:
        lines.append(f"  ⚠ {orphan}")
    lines.append("")
    lines.append("⚠ Manual verification recommended:")
    for i, step in enumerate(MANUAL_VERIFICATION, 1):
        lines.append(f"  {i}. {step}")

    if report.errors:
        lines += ["", "=== ERRORS ==="]
        lines += [f"  ✗ {error}" for error in report.errors]
    return '\n'.join(lines)
