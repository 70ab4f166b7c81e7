"""Narrow interfaces to the AWS services the orchestrator touches.

- ParameterRegistry: SSM Parameter Store (service discovery, cleanup)
- IdentityControlPlane: IAM roles, policies and tags, policy simulation
- StateStore: S3 state object + DynamoDB lock table
- CredentialBroker: STS caller identity and role assumption

Each wrapper takes the OrchestratorConfig and builds its boto3 client from
the config's active session, so an assumed role applies to every client
created afterwards. Errors propagate as botocore exceptions; callers decide
whether a failure is fatal or best-effort.
"""

import logging
import time
from typing import Optional

from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


def error_code(exc: ClientError) -> str:
    """Extract the AWS error code from a ClientError."""
    return exc.response.get('Error', {}).get('Code', '')


class ParameterRegistry:
    """SSM parameter store."""

    def __init__(self, config):
        self.client = config.client('ssm')

    def get(self, name: str) -> Optional[str]:
        """Get a parameter value, or None when it does not exist."""
        try:
            resp = self.client.get_parameter(Name=name)
        except ClientError as e:
            if error_code(e) == 'ParameterNotFound':
                return None
            raise
        return resp['Parameter']['Value']

    def get_by_path(self, path: str, recursive: bool = True) -> list[dict]:
        """List parameters under a path as [{'name': ..., 'value': ...}]."""
        params = []
        paginator = self.client.get_paginator('get_parameters_by_path')
        for page in paginator.paginate(Path=path, Recursive=recursive):
            for p in page.get('Parameters', []):
                params.append({'name': p['Name'], 'value': p.get('Value', '')})
        return params

    def put(self, name: str, value: str) -> None:
        self.client.put_parameter(Name=name, Value=value, Type='String', Overwrite=True)

    def delete(self, name: str) -> None:
        self.client.delete_parameter(Name=name)


class IdentityControlPlane:
    """IAM roles and customer-managed policies."""

    def __init__(self, config):
        self.client = config.client('iam')

    def list_roles(self, prefix: str) -> list[dict]:
        """List roles whose name starts with prefix."""
        roles = []
        for page in self.client.get_paginator('list_roles').paginate():
            roles.extend(r for r in page.get('Roles', []) if r['RoleName'].startswith(prefix))
        return roles

    def list_policies(self, prefix: str) -> list[dict]:
        """List customer-managed policies whose name starts with prefix."""
        policies = []
        for page in self.client.get_paginator('list_policies').paginate(Scope='Local'):
            policies.extend(p for p in page.get('Policies', []) if p['PolicyName'].startswith(prefix))
        return policies

    def role_tags(self, role_name: str) -> dict[str, str]:
        resp = self.client.list_role_tags(RoleName=role_name)
        return {t['Key']: t['Value'] for t in resp.get('Tags', [])}

    def policy_tags(self, policy_arn: str) -> dict[str, str]:
        resp = self.client.list_policy_tags(PolicyArn=policy_arn)
        return {t['Key']: t['Value'] for t in resp.get('Tags', [])}

    def attached_policy_arns(self, role_name: str) -> list[str]:
        arns = []
        paginator = self.client.get_paginator('list_attached_role_policies')
        for page in paginator.paginate(RoleName=role_name):
            arns.extend(p['PolicyArn'] for p in page.get('AttachedPolicies', []))
        return arns

    def inline_policy_names(self, role_name: str) -> list[str]:
        names = []
        for page in self.client.get_paginator('list_role_policies').paginate(RoleName=role_name):
            names.extend(page.get('PolicyNames', []))
        return names

    def detach_role_policy(self, role_name: str, policy_arn: str) -> None:
        self.client.detach_role_policy(RoleName=role_name, PolicyArn=policy_arn)

    def delete_role_policy(self, role_name: str, policy_name: str) -> None:
        self.client.delete_role_policy(RoleName=role_name, PolicyName=policy_name)

    def delete_role(self, role_name: str) -> None:
        self.client.delete_role(RoleName=role_name)

    def delete_policy(self, policy_arn: str) -> None:
        """Delete a policy, removing non-default versions first."""
        resp = self.client.list_policy_versions(PolicyArn=policy_arn)
        for version in resp.get('Versions', []):
            if not version.get('IsDefaultVersion'):
                self.client.delete_policy_version(PolicyArn=policy_arn, VersionId=version['VersionId'])
        self.client.delete_policy(PolicyArn=policy_arn)

    def denied_actions(self, principal_arn: str, actions: list[str]) -> list[str]:
        """Simulate actions for a principal in one batched call.

        Returns:
            Actions whose evaluation decision is not 'allowed'
        """
        denied = []
        paginator = self.client.get_paginator('simulate_principal_policy')
        for page in paginator.paginate(
            PolicySourceArn=principal_arn,
            ActionNames=actions,
            ResourceArns=['*'],
        ):
            for result in page.get('EvaluationResults', []):
                if result.get('EvalDecision') != 'allowed':
                    denied.append(result['EvalActionName'])
        return denied


class StateStore:
    """Remote state object (S3) and lock table (DynamoDB)."""

    def __init__(self, config):
        self.s3 = config.client('s3')
        self.dynamodb = config.client('dynamodb')

    def object_exists(self, bucket: str, key: str) -> bool:
        try:
            self.s3.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if error_code(e) in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise
        return True

    def delete_object(self, bucket: str, key: str) -> None:
        self.s3.delete_object(Bucket=bucket, Key=key)

    def scan_locks(self, table: str, substring: str) -> list[str]:
        """Return LockIDs containing substring."""
        lock_ids = []
        paginator = self.dynamodb.get_paginator('scan')
        for page in paginator.paginate(
            TableName=table,
            FilterExpression='contains(LockID, :key)',
            ExpressionAttributeValues={':key': {'S': substring}},
            ProjectionExpression='LockID',
        ):
            for item in page.get('Items', []):
                lock_ids.append(item['LockID']['S'])
        return lock_ids

    def delete_lock(self, table: str, lock_id: str) -> None:
        self.dynamodb.delete_item(TableName=table, Key={'LockID': {'S': lock_id}})


class CredentialBroker:
    """STS identity and role assumption."""

    def __init__(self, config):
        self.client = config.client('sts')

    def caller_identity(self) -> dict:
        """Return {'Account', 'Arn', 'UserId'} for the active credentials."""
        return self.client.get_caller_identity()

    def assume_role(self, role_arn: str, session_prefix: str = 'deployment-roles') -> dict:
        """Assume a role and return its temporary Credentials dict."""
        resp = self.client.assume_role(
            RoleArn=role_arn,
            RoleSessionName=f'{session_prefix}-{int(time.time())}',
        )
        return resp['Credentials']


def principal_arn_for_simulation(caller_arn: str) -> Optional[str]:
    """Map a caller ARN to one accepted by SimulatePrincipalPolicy.

    Assumed-role session ARNs are converted to the underlying role ARN.
    Returns None for principals that cannot be simulated (account root,
    federated users).

    Example:
        arn:aws:sts::123:assumed-role/Admin/me -> arn:aws:iam::123:role/Admin
    """
    parts = caller_arn.split(':', 5)
    if len(parts) != 6:
        return None
    _, partition, service, _, account, resource = parts

    if service == 'sts' and resource.startswith('assumed-role/'):
        role_name = resource.split('/')[1]
        return f'arn:{partition}:iam::{account}:role/{role_name}'
    if service == 'iam' and resource.startswith(('user/', 'role/')):
        return caller_arn
    return None
