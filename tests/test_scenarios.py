"""Tests for the orchestrator and the deploy/destroy scenarios."""

import json
from dataclasses import dataclass
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from common import ActionResult
from conftest import FakeRegistry
from scenarios import (
    Orchestrator,
    RequiredPhaseError,
    UnknownPhaseError,
    get_scenario,
    list_scenarios,
)
from validation import FAIL, CheckResult, PrerequisiteReport


@dataclass
class StubAction:
    """Action returning a canned result and recording calls."""
    name: str
    result: ActionResult = None
    calls: int = 0

    def run(self, config, context):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result or ActionResult(success=True, context_updates={self.name: True})


class StubScenario:
    name = 'stub'
    description = 'Stub scenario'

    def __init__(self, actions):
        self.actions = actions

    def get_phases(self, config):
        return [(a.name, a, f'{a.name} phase') for a in self.actions]


class TestOrchestrator:

    def test_runs_all_phases_and_merges_context(self, make_config):
        actions = [StubAction('a'), StubAction('b')]
        orchestrator = Orchestrator(StubScenario(actions), make_config())

        assert orchestrator.run() is True
        assert orchestrator.context == {'a': True, 'b': True}
        assert [p.status for p in orchestrator.report.phases] == ['passed', 'passed']

    def test_stops_on_failure(self, make_config):
        actions = [StubAction('a', ActionResult(success=False, message='nope')), StubAction('b')]
        orchestrator = Orchestrator(StubScenario(actions), make_config())

        assert orchestrator.run() is False
        assert actions[1].calls == 0
        assert orchestrator.report.to_dict()['error'] == 'nope'

    def test_continue_on_failure(self, make_config):
        actions = [
            StubAction('a', ActionResult(success=False, continue_on_failure=True)),
            StubAction('b'),
        ]
        orchestrator = Orchestrator(StubScenario(actions), make_config())

        assert orchestrator.run() is False
        assert actions[1].calls == 1

    def test_degraded_counts_as_passed(self, make_config):
        actions = [StubAction('a', ActionResult(success=True, degraded=True, message='fallback'))]
        orchestrator = Orchestrator(StubScenario(actions), make_config())

        assert orchestrator.run() is True
        assert orchestrator.report.phases[0].status == 'degraded'

    def test_exception_fails_phase(self, make_config):
        actions = [StubAction('a', RuntimeError('boom')), StubAction('b')]
        orchestrator = Orchestrator(StubScenario(actions), make_config())

        assert orchestrator.run() is False
        assert orchestrator.report.phases[0].message == 'boom'
        assert actions[1].calls == 0

    def test_skip_phases(self, make_config):
        actions = [StubAction('a'), StubAction('b')]
        orchestrator = Orchestrator(StubScenario(actions), make_config(), skip_phases=['a'])

        assert orchestrator.run() is True
        assert actions[0].calls == 0
        assert orchestrator.report.phases[0].status == 'skipped'

    def test_dry_run_executes_nothing(self, make_config, capsys):
        actions = [StubAction('a')]
        orchestrator = Orchestrator(StubScenario(actions), make_config(), dry_run=True)

        assert orchestrator.run() is True
        assert actions[0].calls == 0
        out = capsys.readouterr().out
        assert 'dry run, nothing executed' in out
        assert '[run ] a: a phase (StubAction)' in out

    def test_unknown_skip_phase_rejected(self, make_config):
        actions = [StubAction('a')]
        orchestrator = Orchestrator(StubScenario(actions), make_config(), skip_phases=['b'])

        with pytest.raises(UnknownPhaseError, match='Available: a'):
            orchestrator.run()
        assert actions[0].calls == 0

    def test_prerequisites_cannot_be_skipped(self, make_config):
        actions = [StubAction('prerequisites'), StubAction('b')]
        orchestrator = Orchestrator(StubScenario(actions), make_config(), skip_phases=['prerequisites'])

        with pytest.raises(RequiredPhaseError, match='cannot be skipped: prerequisites'):
            orchestrator.run()
        assert actions[1].calls == 0

    def test_cleanup_hooks_run_after_early_stop(self, make_config):
        cleaned = []

        @dataclass
        class CleaningAction(StubAction):
            def cleanup(self, context):
                cleaned.append((self.name, dict(context)))

        actions = [
            CleaningAction('a'),
            StubAction('b', ActionResult(success=False, message='nope')),
            CleaningAction('c'),
        ]
        orchestrator = Orchestrator(StubScenario(actions), make_config())

        assert orchestrator.run() is False
        assert actions[2].calls == 0
        assert cleaned == [('a', {'a': True}), ('c', {'a': True})]

    def test_writes_reports_only_with_report_dir(self, tmp_path, make_config):
        Orchestrator(StubScenario([StubAction('a')]), make_config()).run()
        assert not (tmp_path / 'reports').exists()

        report_dir = tmp_path / 'reports'
        Orchestrator(StubScenario([StubAction('a')]), make_config(), report_dir=report_dir).run()
        files = sorted(p.suffix for p in report_dir.iterdir())
        assert files == ['.json', '.md']
        data = json.loads(next(report_dir.glob('*.json')).read_text())
        assert data['repository'] == 'acme/deployment-roles'
        assert data['success'] is True


class TestRegistry:

    def test_scenarios_registered(self):
        assert list_scenarios() == ['deploy', 'destroy']

    def test_deploy_phase_order(self, make_config):
        phases = [name for name, _, _ in get_scenario('deploy').get_phases(make_config())]
        assert phases == ['prerequisites', 'assume_role', 'backend', 'clear_locks',
                          'init', 'plan', 'apply']

    def test_destroy_phase_order(self, make_config):
        phases = [name for name, _, _ in get_scenario('destroy').get_phases(make_config())]
        assert phases == ['prerequisites', 'assume_role', 'backend', 'engine_destroy',
                          'state_purge', 'manual_sweep']


def _plane():
    plane = MagicMock()
    plane.list_roles.return_value = [{'RoleName': 'gharole-web-prd'}]
    plane.list_policies.return_value = [{'Arn': 'arn:aws:iam::1:policy/ghpolicy-web-prd'}]
    plane.attached_policy_arns.return_value = ['arn:aws:iam::1:policy/ghpolicy-web-prd']
    plane.inline_policy_names.return_value = []
    return plane


class TestDestroyScenario:
    """Destroy always reaches the manual sweep."""

    def _run(self, config, registry, store, plane, engine_results):
        broker = MagicMock()
        broker.caller_identity.return_value = {'Account': '123456789012'}
        with patch('actions.preflight.run_prerequisite_checks', return_value=PrerequisiteReport()), \
             patch('actions.aws.ParameterRegistry', return_value=registry), \
             patch('actions.aws.StateStore', return_value=store), \
             patch('actions.aws.IdentityControlPlane', return_value=plane), \
             patch('actions.tofu.CredentialBroker', return_value=broker), \
             patch('actions.tofu.run_command', side_effect=engine_results) as mock_cmd:
            orchestrator = Orchestrator(get_scenario('destroy'), config)
            success = orchestrator.run()
        return orchestrator, success, mock_cmd

    def test_engine_failure_still_sweeps(self, make_config, fake_registry, fake_state_store):
        fake_registry.put('/deployment-roles/acme-web/prd/role-arn', 'arn:aws:iam::1:role/gharole-web-prd')
        plane = _plane()

        orchestrator, success, _ = self._run(
            make_config(), fake_registry, fake_state_store, plane,
            [(0, '', ''), (1, '', 'Error: state corrupt')],
        )

        assert success is True
        statuses = {p.name: p.status for p in orchestrator.report.phases}
        assert statuses['engine_destroy'] == 'degraded'
        assert statuses['manual_sweep'] == 'passed'
        plane.delete_role.assert_called_once_with('gharole-web-prd')
        plane.delete_policy.assert_called_once_with('arn:aws:iam::1:policy/ghpolicy-web-prd')
        assert '/deployment-roles/acme-web/prd/role-arn' in fake_registry.deleted
        assert fake_state_store.objects == set()

    def test_missing_backend_skips_engine_and_sweeps(self, make_config, fake_state_store):
        registry = FakeRegistry({'/deployment-roles/acme-web/prd/role-arn': 'arn:r'})
        plane = _plane()

        orchestrator, success, mock_cmd = self._run(make_config(), registry, fake_state_store, plane, [])

        assert success is True
        mock_cmd.assert_not_called()
        assert orchestrator.report.phases[2].status == 'degraded'
        plane.delete_role.assert_called_once()
        assert registry.deleted == ['/deployment-roles/acme-web/prd/role-arn']

    def test_sweep_failures_do_not_fail_run(self, make_config, fake_registry, fake_state_store):
        plane = _plane()
        from botocore.exceptions import ClientError
        plane.delete_role.side_effect = ClientError(
            {'Error': {'Code': 'DeleteConflict', 'Message': 'attached'}}, 'DeleteRole')

        orchestrator, success, _ = self._run(
            make_config(), fake_registry, fake_state_store, plane, [(0, '', ''), (0, '', '')])

        assert success is True
        assert orchestrator.report.phases[-1].status == 'degraded'
        outcomes = orchestrator.context['sweep_outcomes']
        assert sum(1 for o in outcomes if o.failed) == 1

    def test_prerequisite_failure_stops_before_mutation(self, make_config, fake_registry, fake_state_store):
        plane = _plane()
        failing = PrerequisiteReport([CheckResult('jq', FAIL, 'jq not found')])
        with patch('actions.preflight.run_prerequisite_checks', return_value=failing), \
             patch('actions.aws.ParameterRegistry', return_value=fake_registry), \
             patch('actions.aws.IdentityControlPlane', return_value=plane), \
             patch('actions.tofu.run_command') as mock_cmd:
            success = Orchestrator(get_scenario('destroy'), make_config()).run()

        assert success is False
        mock_cmd.assert_not_called()
        plane.delete_role.assert_not_called()


class TestDeployScenario:

    def test_backend_missing_is_fatal(self, make_config):
        with patch('actions.preflight.run_prerequisite_checks', return_value=PrerequisiteReport()), \
             patch('actions.aws.ParameterRegistry', return_value=FakeRegistry()), \
             patch('actions.tofu.run_command') as mock_cmd:
            orchestrator = Orchestrator(get_scenario('deploy'), make_config())
            success = orchestrator.run()

        assert success is False
        assert orchestrator.report.phases[-1].name == 'backend'
        mock_cmd.assert_not_called()

    def test_full_deploy(self, project_root, make_config, fake_registry, fake_state_store):
        broker = MagicMock()
        broker.caller_identity.return_value = {'Account': '123456789012'}
        with patch('actions.preflight.run_prerequisite_checks', return_value=PrerequisiteReport()), \
             patch('actions.aws.ParameterRegistry', return_value=fake_registry), \
             patch('actions.aws.StateStore', return_value=fake_state_store), \
             patch('actions.tofu.CredentialBroker', return_value=broker), \
             patch('actions.tofu.run_command',
                   side_effect=[(0, '', ''), (2, '', ''), (0, '', '')]) as mock_cmd:
            orchestrator = Orchestrator(get_scenario('deploy'), make_config(root=project_root))
            success = orchestrator.run()

        assert success is True
        assert [c[0][0][1] for c in mock_cmd.call_args_list] == ['init', 'plan', 'apply']
        assert fake_state_store.locks['acme-tflock'] == ['acme-tfstate/foundation/terraform.tfstate']
        assert len(orchestrator.context['desired_roles']) == 3

    def test_skipped_apply_leaves_no_plan_file(self, project_root, make_config, fake_registry,
                                               fake_state_store):
        broker = MagicMock()
        broker.caller_identity.return_value = {'Account': '123456789012'}
        with patch('actions.preflight.run_prerequisite_checks', return_value=PrerequisiteReport()), \
             patch('actions.aws.ParameterRegistry', return_value=fake_registry), \
             patch('actions.aws.StateStore', return_value=fake_state_store), \
             patch('actions.tofu.CredentialBroker', return_value=broker), \
             patch('actions.tofu.run_command', side_effect=[(0, '', ''), (2, '', '')]) as mock_cmd:
            orchestrator = Orchestrator(get_scenario('deploy'), make_config(root=project_root),
                                        skip_phases=['apply'])
            assert orchestrator.run() is True

        assert [c[0][0][1] for c in mock_cmd.call_args_list] == ['init', 'plan']
        plan_file = Path(orchestrator.context['plan_file'])
        assert plan_file.name.startswith('tfplan-deployment-roles-')
        assert not plan_file.exists()
