"""Shared pytest fixtures for deployment-roles tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import OrchestratorConfig, RepoIdentity  # noqa: E402


class FakeRegistry:
    """In-memory parameter registry."""

    def __init__(self, params=None, fail_delete=()):
        self.params = dict(params or {})
        self.fail_delete = set(fail_delete)
        self.deleted = []

    def get(self, name):
        return self.params.get(name)

    def get_by_path(self, path, recursive=True):
        return [
            {'name': name, 'value': value}
            for name, value in sorted(self.params.items())
            if name.startswith(path.rstrip('/') + '/')
        ]

    def put(self, name, value):
        self.params[name] = value

    def delete(self, name):
        if name in self.fail_delete:
            from botocore.exceptions import ClientError
            raise ClientError({'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'DeleteParameter')
        self.params.pop(name, None)
        self.deleted.append(name)


class FakeStateStore:
    """In-memory state object store and lock table."""

    def __init__(self, objects=None, locks=None):
        self.objects = set(objects or ())
        self.locks = {table: list(ids) for table, ids in (locks or {}).items()}

    def object_exists(self, bucket, key):
        return (bucket, key) in self.objects

    def delete_object(self, bucket, key):
        self.objects.discard((bucket, key))

    def scan_locks(self, table, substring):
        return [lock_id for lock_id in self.locks.get(table, []) if substring in lock_id]

    def delete_lock(self, table, lock_id):
        self.locks[table].remove(lock_id)


@pytest.fixture
def project_root(tmp_path):
    """Project root with main.tf and two project descriptors."""
    (tmp_path / 'main.tf').write_text('# deployment roles\n')
    for project, env in [('static-site', 'prd'), ('api-gateway', 'prd'), ('api-gateway', 'stg')]:
        policies = tmp_path / 'projects' / project / env / 'policies'
        policies.mkdir(parents=True)
        (policies / 'deployment-policy.json').write_text('{"Version": "2012-10-17", "Statement": []}')
    return tmp_path


@pytest.fixture
def make_config(tmp_path):
    """Factory for OrchestratorConfig rooted at a temp directory."""
    def _make(root=None, **kwargs):
        defaults = dict(
            root=root or tmp_path,
            repo=RepoIdentity('acme', 'deployment-roles'),
            env={'PATH': '/usr/bin:/bin'},
            interactive=False,
        )
        defaults.update(kwargs)
        return OrchestratorConfig(**defaults)
    return _make


@pytest.fixture
def fake_registry():
    return FakeRegistry({
        '/terraform/foundation/s3-state-bucket': 'acme-tfstate',
        '/terraform/foundation/dynamodb-lock-table': 'acme-tflock',
    })


@pytest.fixture
def fake_state_store():
    return FakeStateStore(
        objects={('acme-tfstate', 'deployment-roles/acme/deployment-roles/terraform.tfstate')},
        locks={'acme-tflock': [
            'acme-tfstate/deployment-roles/acme/deployment-roles/terraform.tfstate',
            'acme-tfstate/deployment-roles/acme/deployment-roles/terraform.tfstate-md5',
            'acme-tfstate/foundation/terraform.tfstate',
        ]},
    )
