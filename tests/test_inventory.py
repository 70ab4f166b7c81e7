"""Tests for the read-only resource inventory."""

from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError, ProfileNotFound

from actions.tofu import EngineResult
from conftest import FakeRegistry, FakeStateStore
from inventory import enumerate_resources, find_orphans, format_inventory

TAGS = {'Project': 'web', 'Environment': 'prd'}


def _plane():
    plane = MagicMock()
    plane.list_roles.return_value = [
        {'RoleName': 'gharole-web-prd', 'Arn': 'arn:aws:iam::1:role/gharole-web-prd'},
        {'RoleName': 'gharole-old-prd', 'Arn': 'arn:aws:iam::1:role/gharole-old-prd'},
    ]
    plane.role_tags.side_effect = lambda name: TAGS if name == 'gharole-web-prd' else {}
    plane.attached_policy_arns.return_value = ['arn:aws:iam::1:policy/ghpolicy-web-prd']
    plane.list_policies.return_value = [
        {'PolicyName': 'ghpolicy-web-prd', 'Arn': 'arn:aws:iam::1:policy/ghpolicy-web-prd'},
    ]
    plane.policy_tags.return_value = TAGS
    return plane


class TestEnumerateResources:

    def test_lists_and_flags_orphans(self, make_config, fake_registry, fake_state_store):
        fake_registry.put('/deployment-roles/acme-web/prd/role-arn', 'arn:aws:iam::1:role/gharole-web-prd')
        fake_registry.put('/deployment-roles/acme-gone/prd/role-arn', 'arn:aws:iam::1:role/gharole-gone-prd')

        report = enumerate_resources(make_config(), registry=fake_registry, plane=_plane(),
                                     store=fake_state_store, read_outputs=False)

        assert report.state_exists is True
        assert [r['name'] for r in report.roles] == ['gharole-web-prd', 'gharole-old-prd']
        assert len(report.policies) == 1
        assert len(report.parameters) == 2
        assert report.orphans == [
            'role gharole-old-prd: missing tags Project, Environment',
            'parameter /deployment-roles/acme-gone/prd/role-arn: references unknown role '
            'arn:aws:iam::1:role/gharole-gone-prd',
        ]
        assert report.errors == []

    def test_never_mutates(self, make_config, fake_registry, fake_state_store):
        plane = _plane()
        enumerate_resources(make_config(), registry=fake_registry, plane=plane,
                            store=fake_state_store, read_outputs=False)
        for method in ('delete_role', 'delete_policy', 'detach_role_policy', 'delete_role_policy'):
            getattr(plane, method).assert_not_called()
        assert fake_registry.deleted == []
        assert len(fake_state_store.locks['acme-tflock']) == 3

    def test_reads_engine_outputs(self, tmp_path, make_config, fake_registry, fake_state_store):
        (tmp_path / 'main.tf').write_text('')
        engine = MagicMock()
        engine.init.return_value = EngineResult(success=True)
        engine.outputs.return_value = {'role_arns': {'web-prd': 'arn:r'}}

        report = enumerate_resources(make_config(), registry=fake_registry, plane=_plane(),
                                     store=fake_state_store, engine=engine)

        assert report.outputs == {'role_arns': {'web-prd': 'arn:r'}}

    def test_missing_backend_recorded(self, make_config):
        report = enumerate_resources(make_config(), registry=FakeRegistry(), plane=_plane(),
                                     store=FakeStateStore(), read_outputs=False)
        assert report.backend is None
        assert report.state_exists is None
        assert 'Foundation backend configuration not found' in report.errors[0]

    def test_listing_errors_recorded(self, make_config, fake_registry, fake_state_store):
        plane = MagicMock()
        plane.list_roles.side_effect = ClientError({'Error': {'Code': 'AccessDenied'}}, 'ListRoles')
        plane.list_policies.return_value = []

        report = enumerate_resources(make_config(), registry=fake_registry, plane=plane,
                                     store=fake_state_store, read_outputs=False)

        assert any('Cannot list roles' in e for e in report.errors)

    def test_one_unreadable_role_keeps_the_rest(self, make_config, fake_registry, fake_state_store):
        plane = _plane()

        def role_tags(name):
            if name == 'gharole-web-prd':
                raise ClientError({'Error': {'Code': 'Throttling'}}, 'ListRoleTags')
            return {}
        plane.role_tags.side_effect = role_tags

        report = enumerate_resources(make_config(), registry=fake_registry, plane=plane,
                                     store=fake_state_store, read_outputs=False)

        assert [r['name'] for r in report.roles] == ['gharole-web-prd', 'gharole-old-prd']
        assert report.roles[0]['tags'] is None
        assert any('Cannot describe role gharole-web-prd' in e for e in report.errors)
        assert report.orphans == ['role gharole-old-prd: missing tags Project, Environment']
        assert 'Tags: unavailable' in format_inventory(report)

    def test_client_creation_failure_recorded(self, make_config):
        with patch('inventory.ParameterRegistry',
                   side_effect=ProfileNotFound(profile='no-such-profile')):
            report = enumerate_resources(make_config(), read_outputs=False)
        assert report.roles == []
        assert 'Cannot create AWS clients' in report.errors[0]
        assert 'no-such-profile' in report.errors[0]


class TestFormatInventory:

    def test_includes_manual_verification_gap(self, make_config, fake_registry, fake_state_store):
        report = enumerate_resources(make_config(), registry=fake_registry, plane=_plane(),
                                     store=fake_state_store, read_outputs=False)
        text = format_inventory(report)
        assert 'Repository: acme/deployment-roles' in text
        assert '✓ State file exists' in text
        assert 'gharole-old-prd' in text
        assert 'Manual verification recommended' in text

    def test_to_dict_is_json_ready(self, make_config, fake_registry, fake_state_store):
        report = enumerate_resources(make_config(), registry=fake_registry, plane=_plane(),
                                     store=fake_state_store, read_outputs=False)
        data = report.to_dict()
        assert data['backend']['key'] == 'deployment-roles/acme/deployment-roles/terraform.tfstate'
        assert len(data['manual_verification']) == 3


class TestFindOrphans:

    def test_tagged_resources_are_clean(self):
        roles = [{'name': 'r', 'arn': 'arn:r', 'tags': TAGS}]
        policies = [{'name': 'p', 'tags': TAGS}]
        params = [{'name': '/deployment-roles/x/prd/role-arn', 'value': 'arn:r'}]
        assert find_orphans(roles, policies, params, ['Project', 'Environment']) == []

    def test_policy_missing_tag(self):
        policies = [{'name': 'p', 'tags': {'Project': 'x'}}]
        assert find_orphans([], policies, [], ['Project', 'Environment']) == [
            'policy p: missing tags Environment',
        ]
