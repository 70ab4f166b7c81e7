"""Tests for the prerequisite phase and its bootstrap remediation."""

from unittest.mock import patch

from actions.preflight import PrerequisiteAction
from bootstrap import BootstrapError
from validation import CAUSE_VARIABLE_MISSING, FAIL, PASS, WARN, CheckResult, PrerequisiteReport


def _missing_variable():
    return PrerequisiteReport([
        CheckResult('git-repository', PASS, 'ok'),
        CheckResult('automation-variable', FAIL, 'not set', cause=CAUSE_VARIABLE_MISSING),
    ])


def _passing(warn=False):
    results = [CheckResult('git-repository', PASS, 'ok')]
    if warn:
        results.append(CheckResult('upstream-configured', WARN, 'no upstream'))
    return PrerequisiteReport(results)


class TestPrerequisiteAction:

    def test_pass(self, make_config):
        with patch('actions.preflight.run_prerequisite_checks', return_value=_passing()):
            result = PrerequisiteAction(name='prereq').run(make_config(), {})
        assert result.success and not result.degraded

    def test_warnings_are_degraded_success(self, make_config):
        with patch('actions.preflight.run_prerequisite_checks', return_value=_passing(warn=True)):
            result = PrerequisiteAction(name='prereq').run(make_config(), {})
        assert result.success and result.degraded

    def test_bootstrap_then_reverify_once(self, make_config):
        """Interactive runs bootstrap once and re-run the checks once."""
        with patch('actions.preflight.run_prerequisite_checks',
                   side_effect=[_missing_variable(), _passing()]) as mock_checks, \
             patch('actions.preflight.bootstrap_automation_variable',
                   return_value='AWS_ACCOUNT_ID set to 1') as mock_bootstrap:
            result = PrerequisiteAction(name='prereq').run(make_config(interactive=True), {})

        assert result.success
        assert mock_bootstrap.call_count == 1
        assert mock_checks.call_count == 2

    def test_no_second_remediation(self, make_config):
        """A still-failing re-verification gives up instead of looping."""
        with patch('actions.preflight.run_prerequisite_checks',
                   side_effect=[_missing_variable(), _missing_variable()]) as mock_checks, \
             patch('actions.preflight.bootstrap_automation_variable',
                   return_value='ok') as mock_bootstrap:
            result = PrerequisiteAction(name='prereq').run(make_config(interactive=True), {})

        assert not result.success
        assert mock_bootstrap.call_count == 1
        assert mock_checks.call_count == 2

    def test_never_bootstraps_in_ci(self, make_config):
        config = make_config(interactive=True, env={'GITHUB_ACTIONS': 'true'})
        with patch('actions.preflight.run_prerequisite_checks', return_value=_missing_variable()), \
             patch('actions.preflight.bootstrap_automation_variable') as mock_bootstrap:
            result = PrerequisiteAction(name='prereq').run(config, {})
        assert not result.success
        mock_bootstrap.assert_not_called()

    def test_never_bootstraps_non_interactive(self, make_config):
        with patch('actions.preflight.run_prerequisite_checks', return_value=_missing_variable()), \
             patch('actions.preflight.bootstrap_automation_variable') as mock_bootstrap:
            result = PrerequisiteAction(name='prereq').run(make_config(interactive=False), {})
        assert not result.success
        assert 'automation-variable' in result.message
        mock_bootstrap.assert_not_called()

    def test_remediation_disabled(self, make_config):
        with patch('actions.preflight.run_prerequisite_checks', return_value=_missing_variable()), \
             patch('actions.preflight.bootstrap_automation_variable') as mock_bootstrap:
            result = PrerequisiteAction(name='prereq', remediate=False).run(
                make_config(interactive=True), {})
        assert not result.success
        mock_bootstrap.assert_not_called()

    def test_other_failures_not_remediated(self, make_config):
        report = PrerequisiteReport([CheckResult('jq', FAIL, 'jq not found')])
        with patch('actions.preflight.run_prerequisite_checks', return_value=report), \
             patch('actions.preflight.bootstrap_automation_variable') as mock_bootstrap:
            result = PrerequisiteAction(name='prereq').run(make_config(interactive=True), {})
        assert not result.success
        mock_bootstrap.assert_not_called()

    def test_bootstrap_error(self, make_config):
        with patch('actions.preflight.run_prerequisite_checks', return_value=_missing_variable()), \
             patch('actions.preflight.bootstrap_automation_variable',
                   side_effect=BootstrapError('no gh')):
            result = PrerequisiteAction(name='prereq').run(make_config(interactive=True), {})
        assert not result.success
        assert 'no gh' in result.message

    def test_no_bootstrap_alongside_unrelated_failure(self, make_config):
        """A dirty checkout blocks the run before the variable store is touched."""
        report = PrerequisiteReport([
            CheckResult('uncommitted-changes', FAIL, 'Uncommitted changes'),
            CheckResult('automation-variable', FAIL, 'not set', cause=CAUSE_VARIABLE_MISSING),
        ])
        with patch('actions.preflight.run_prerequisite_checks', return_value=report) as mock_checks, \
             patch('actions.preflight.bootstrap_automation_variable') as mock_bootstrap:
            result = PrerequisiteAction(name='prereq').run(make_config(interactive=True), {})
        assert not result.success
        assert 'uncommitted-changes' in result.message
        mock_bootstrap.assert_not_called()
        assert mock_checks.call_count == 1
