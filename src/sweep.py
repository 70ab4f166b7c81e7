"""Manual cleanup of deployment role resources.

Used by destroy after the apply engine has had its chance. Enumerates
resources by naming convention and deletes each one independently, so a
corrupt or missing engine state never leaves resources behind. Individual
failures are recorded and the sweep moves on.
"""

import logging

from botocore.exceptions import BotoCoreError, ClientError

from common import ResourceOutcome

logger = logging.getLogger(__name__)

_AWS_ERRORS = (ClientError, BotoCoreError)


def sweep_parameters(registry, prefix: str) -> list[ResourceOutcome]:
    """Delete every registry entry under prefix."""
    print("Cleaning up SSM parameters...")
    try:
        params = registry.get_by_path(prefix, recursive=True)
    except _AWS_ERRORS as e:
        print(f"  ⚠ Cannot list parameters under {prefix}: {e}")
        return [ResourceOutcome('parameter', prefix, 'failed', f"list failed: {e}")]

    outcomes = []
    for param in params:
        name = param['name']
        print(f"  Deleting SSM parameter: {name}")
        try:
            registry.delete(name)
            outcomes.append(ResourceOutcome('parameter', name, 'deleted'))
        except _AWS_ERRORS as e:
            print(f"    ⚠ Failed to delete {name}: {e}")
            outcomes.append(ResourceOutcome('parameter', name, 'failed', str(e)))
    return outcomes


def _delete_role(plane, role_name: str) -> ResourceOutcome:
    """Detach/remove every permission set from a role, then delete it."""
    print(f"  Processing role: {role_name}")
    problems = []

    try:
        for policy_arn in plane.attached_policy_arns(role_name):
            print(f"    Detaching policy: {policy_arn}")
            try:
                plane.detach_role_policy(role_name, policy_arn)
            except _AWS_ERRORS as e:
                print(f"      ⚠ Failed to detach {policy_arn}: {e}")
                problems.append(f"detach {policy_arn}: {e}")

        for policy_name in plane.inline_policy_names(role_name):
            print(f"    Deleting inline policy: {policy_name}")
            try:
                plane.delete_role_policy(role_name, policy_name)
            except _AWS_ERRORS as e:
                print(f"      ⚠ Failed to delete inline policy {policy_name}: {e}")
                problems.append(f"inline {policy_name}: {e}")
    except _AWS_ERRORS as e:
        print(f"    ⚠ Cannot list policies for {role_name}: {e}")
        problems.append(f"list policies: {e}")

    print(f"    Deleting role: {role_name}")
    try:
        plane.delete_role(role_name)
    except _AWS_ERRORS as e:
        print(f"      ⚠ Failed to delete {role_name}: {e}")
        problems.append(f"delete: {e}")
        return ResourceOutcome('role', role_name, 'failed', '; '.join(problems))

    return ResourceOutcome('role', role_name, 'deleted', '; '.join(problems))


def sweep_roles(plane, prefix: str) -> list[ResourceOutcome]:
    """Delete every role whose name starts with prefix."""
    print("Cleaning up IAM roles...")
    try:
        roles = plane.list_roles(prefix)
    except _AWS_ERRORS as e:
        print(f"  ⚠ Cannot list roles: {e}")
        return [ResourceOutcome('role', f'{prefix}*', 'failed', f"list failed: {e}")]
    return [_delete_role(plane, role['RoleName']) for role in roles]


def sweep_policies(plane, prefix: str) -> list[ResourceOutcome]:
    """Delete every customer-managed policy whose name starts with prefix."""
    print("Cleaning up IAM policies...")
    try:
        policies = plane.list_policies(prefix)
    except _AWS_ERRORS as e:
        print(f"  ⚠ Cannot list policies: {e}")
        return [ResourceOutcome('policy', f'{prefix}*', 'failed', f"list failed: {e}")]

    outcomes = []
    for policy in policies:
        arn = policy['Arn']
        print(f"  Deleting policy: {arn}")
        try:
            plane.delete_policy(arn)
            outcomes.append(ResourceOutcome('policy', arn, 'deleted'))
        except _AWS_ERRORS as e:
            print(f"    ⚠ Failed to delete {arn}: {e}")
            outcomes.append(ResourceOutcome('policy', arn, 'failed', str(e)))
    return outcomes


def sweep_all(registry, plane, config) -> list[ResourceOutcome]:
    """Sweep registry entries, roles, then policies."""
    outcomes = sweep_parameters(registry, config.registry_prefix)
    outcomes += sweep_roles(plane, config.role_prefix)
    outcomes += sweep_policies(plane, config.policy_prefix)
    return outcomes
