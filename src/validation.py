"""Prerequisite checks run before every deploy or destroy.

This module provides an ordered battery of independent, side-effect-free
checks. Every check runs regardless of earlier failures so one run shows the
full diagnostic picture, and each prints its own result as it completes.
Checks that only warn never fail the aggregate.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from cloud import CredentialBroker, IdentityControlPlane, principal_arn_for_simulation
from common import run_command, tool_available, tool_version
from descriptors import scan_projects
from guard import find_self_references
from repo_variables import GitHubError, open_variable_store

logger = logging.getLogger(__name__)

PASS = 'pass'
FAIL = 'fail'
WARN = 'warn'

# Failure cause that a bootstrap run can remediate
CAUSE_VARIABLE_MISSING = 'automation-variable-missing'

REQUIRED_ACTIONS = [
    'iam:CreateRole',
    'iam:CreatePolicy',
    'iam:AttachRolePolicy',
    'iam:GetRole',
    'iam:GetPolicy',
    'iam:ListRoles',
    'iam:ListPolicies',
    'iam:DeleteRole',
    'iam:DeletePolicy',
    'iam:DetachRolePolicy',
    'ssm:PutParameter',
    'ssm:GetParameter',
    'ssm:DeleteParameter',
    'ssm:GetParameters',
    's3:GetObject',
    's3:PutObject',
    'dynamodb:GetItem',
    'dynamodb:PutItem',
    'dynamodb:DeleteItem',
]

_SYMBOLS = {PASS: '✓', FAIL: '✗', WARN: '⚠'}


@dataclass
class CheckResult:
    """Outcome of a single prerequisite check."""
    name: str
    status: str
    detail: str = ''
    cause: str = ''

    @property
    def symbol(self) -> str:
        return _SYMBOLS.get(self.status, '?')

    def format(self) -> str:
        lines = self.detail.split('\n') if self.detail else [self.name]
        out = [f"{self.symbol} {lines[0]}"]
        out.extend(f"  {line}" for line in lines[1:])
        return '\n'.join(out)


@dataclass
class PrerequisiteReport:
    """Aggregated prerequisite results."""
    results: list[CheckResult] = field(default_factory=list)

    @property
    def failures(self) -> list[CheckResult]:
        return [r for r in self.results if r.status == FAIL]

    @property
    def warnings(self) -> list[CheckResult]:
        return [r for r in self.results if r.status == WARN]

    @property
    def passed(self) -> bool:
        return not self.failures

    @property
    def needs_bootstrap(self) -> bool:
        return any(r.cause == CAUSE_VARIABLE_MISSING for r in self.failures)

    @property
    def only_bootstrap_missing(self) -> bool:
        """True when every failure is one a bootstrap run can remediate."""
        return bool(self.failures) and all(
            r.cause == CAUSE_VARIABLE_MISSING for r in self.failures)


# -----------------------------------------------------------------------------
# Repository state
# -----------------------------------------------------------------------------

def _git(config, *args: str) -> tuple[int, str, str]:
    return run_command(['git', *args], cwd=config.root, timeout=60)


def check_git_repository(config) -> CheckResult:
    rc, _, _ = _git(config, 'rev-parse', '--git-dir')
    if rc == 0:
        return CheckResult('git-repository', PASS, "Inside git repository")
    return CheckResult('git-repository', FAIL, f"Not in a git repository: {config.root}")


def check_uncommitted_changes(config) -> CheckResult:
    rc, _, _ = _git(config, 'diff-index', '--quiet', 'HEAD', '--')
    if rc == 0:
        return CheckResult('uncommitted-changes', PASS, "No uncommitted changes")
    return CheckResult(
        'uncommitted-changes', FAIL,
        "Uncommitted changes detected\n"
        "Commit or stash changes before deployment"
    )


def check_untracked_files(config) -> CheckResult:
    rc, out, err = _git(config, 'ls-files', '--others', '--exclude-standard')
    if rc != 0:
        return CheckResult('untracked-files', FAIL, f"Cannot list untracked files: {err.strip()}")
    files = [line for line in out.splitlines() if line.strip()]
    if not files:
        return CheckResult('untracked-files', PASS, "No untracked files")
    listing = '\n'.join(f"  {f}" for f in files[:20])
    more = f"\n  ... and {len(files) - 20} more" if len(files) > 20 else ''
    return CheckResult(
        'untracked-files', FAIL,
        "Untracked files detected\n"
        "Add or ignore untracked files before deployment\n"
        f"{listing}{more}"
    )


def check_detached_head(config) -> CheckResult:
    rc, _, _ = _git(config, 'symbolic-ref', '-q', 'HEAD')
    if rc == 0:
        return CheckResult('detached-head', PASS, "Not in detached HEAD state")
    return CheckResult(
        'detached-head', FAIL,
        "In detached HEAD state\n"
        "Switch to a proper branch before deployment"
    )


def check_upstream(config) -> CheckResult:
    rc, out, _ = _git(config, 'rev-parse', '--abbrev-ref', '@{u}')
    if rc == 0:
        return CheckResult('upstream-configured', PASS, f"Branch tracks {out.strip()}")
    _, branch, _ = _git(config, 'branch', '--show-current')
    return CheckResult(
        'upstream-configured', WARN,
        "Branch has no upstream configured\n"
        f"Consider setting upstream: git push -u origin {branch.strip() or '<branch>'}"
    )


def check_unpushed_commits(config) -> CheckResult:
    rc_remote, remote, _ = _git(config, 'rev-parse', '@{u}')
    if rc_remote != 0:
        return CheckResult('unpushed-commits', PASS, "No upstream to compare against")
    _, local, _ = _git(config, 'rev-parse', '@')
    if local.strip() == remote.strip():
        return CheckResult('unpushed-commits', PASS, "No unpushed commits")
    return CheckResult(
        'unpushed-commits', FAIL,
        "Unpushed commits detected\n"
        "Push commits before deployment: git push"
    )


# -----------------------------------------------------------------------------
# Tooling
# -----------------------------------------------------------------------------

def check_apply_engine(config) -> CheckResult:  # pylint: disable=unused-argument
    for binary, label in (('tofu', 'OpenTofu'), ('terraform', 'Terraform')):
        if tool_available(binary):
            version = tool_version([binary, 'version'])
            return CheckResult('apply-engine', PASS, f"{label} installed: {version or 'unknown version'}")
    return CheckResult(
        'apply-engine', FAIL,
        "Neither OpenTofu nor Terraform found\n"
        "Install OpenTofu: https://opentofu.org/docs/intro/install/"
    )


def check_aws_cli(config) -> CheckResult:  # pylint: disable=unused-argument
    if tool_available('aws'):
        return CheckResult('aws-cli', PASS, f"AWS CLI installed: {tool_version(['aws', '--version'])}")
    return CheckResult(
        'aws-cli', FAIL,
        "AWS CLI not found\n"
        "Install AWS CLI: https://docs.aws.amazon.com/cli/latest/userguide/getting-started-install.html"
    )


def check_jq(config) -> CheckResult:  # pylint: disable=unused-argument
    if tool_available('jq'):
        return CheckResult('jq', PASS, f"jq installed: {tool_version(['jq', '--version'])}")
    return CheckResult(
        'jq', FAIL,
        "jq not found\n"
        "Install jq: https://jqlang.github.io/jq/download/"
    )


# -----------------------------------------------------------------------------
# AWS credentials and permissions
# -----------------------------------------------------------------------------

def check_aws_credentials(config, broker: Optional[CredentialBroker] = None) -> CheckResult:
    broker = broker or CredentialBroker(config)
    try:
        identity = broker.caller_identity()
    except Exception as e:
        return CheckResult(
            'aws-credentials', FAIL,
            "AWS authentication failed\n"
            f"{e}\n"
            "Configure AWS credentials: aws configure"
        )
    return CheckResult('aws-credentials', PASS, f"AWS authenticated: {identity['Arn']}")


def check_aws_permissions(config, broker: Optional[CredentialBroker] = None,
                          plane: Optional[IdentityControlPlane] = None) -> CheckResult:
    broker = broker or CredentialBroker(config)
    try:
        caller_arn = broker.caller_identity()['Arn']
    except Exception as e:
        return CheckResult('aws-permissions', FAIL, f"Cannot check AWS permissions without credentials: {e}")

    principal = principal_arn_for_simulation(caller_arn)
    if principal is None:
        return CheckResult(
            'aws-permissions', WARN,
            f"Cannot simulate policies for {caller_arn}\n"
            "Permission check skipped"
        )

    plane = plane or IdentityControlPlane(config)
    denied = plane.denied_actions(principal, REQUIRED_ACTIONS)
    if not denied:
        return CheckResult('aws-permissions', PASS, "Required AWS permissions available")
    listing = '\n'.join(f"  {action}" for action in denied)
    return CheckResult('aws-permissions', FAIL, f"Missing AWS permissions:\n{listing}")


# -----------------------------------------------------------------------------
# Project configuration
# -----------------------------------------------------------------------------

def check_required_files(config) -> CheckResult:
    missing = [name for name in config.required_files if not (config.root / name).is_file()]
    if not missing:
        return CheckResult('required-files', PASS,
                           f"Engine configuration found: {', '.join(config.required_files)}")
    return CheckResult('required-files', FAIL, f"Engine configuration missing: {', '.join(missing)}")


def check_self_deployment(config) -> CheckResult:
    repo_project = config.repo_project
    if not repo_project:
        return CheckResult('self-deployment', WARN, "Could not determine project name from git remote")

    offenders = find_self_references(repo_project, scan_projects(config.projects_root).values())
    project_dir = config.projects_root / repo_project
    if offenders or project_dir.exists():
        return CheckResult(
            'self-deployment', FAIL,
            f"Self-deployment detected: {config.projects_dir}/{repo_project}\n"
            "This repository cannot create a deployment role for itself\n"
            f"Remove the {config.projects_dir}/{repo_project} directory"
        )
    return CheckResult('self-deployment', PASS, "No self-deployment detected")


def check_automation_variable(config, store=None) -> CheckResult:
    name = config.account_variable

    if config.ci:
        if config.env.get(name):
            return CheckResult('automation-variable', PASS, f"{name} available in GitHub Actions")
        return CheckResult(
            'automation-variable', FAIL,
            f"{name} variable not configured in GitHub repository\n"
            "BOOTSTRAP REQUIRED: this workflow cannot build deployment role ARNs.\n"
            "Someone with repository admin permissions must run, locally:\n"
            "  deployment-roles bootstrap",
            cause=CAUSE_VARIABLE_MISSING,
        )

    store = store or open_variable_store(config)
    if store is None:
        return CheckResult(
            'automation-variable', WARN,
            "GitHub credentials not available\n"
            "GitHub variable check skipped"
        )
    try:
        value = store.get(name)
    except GitHubError as e:
        return CheckResult('automation-variable', WARN, f"GitHub variable check skipped: {e}")

    if value:
        return CheckResult('automation-variable', PASS, f"{name} GitHub variable configured")
    return CheckResult(
        'automation-variable', FAIL,
        f"{name} GitHub variable not set\n"
        "Run 'deployment-roles bootstrap' to configure",
        cause=CAUSE_VARIABLE_MISSING,
    )


# -----------------------------------------------------------------------------
# Combined validation
# -----------------------------------------------------------------------------

def _safe(name: str, check: Callable[[], CheckResult]) -> CheckResult:
    """Run a check, turning unexpected errors into a failed result."""
    try:
        return check()
    except Exception as e:
        logger.debug(f"Check {name} raised", exc_info=True)
        return CheckResult(name, FAIL, f"{name} check error: {e}")


def run_prerequisite_checks(config, broker=None, plane=None, store=None,
                            echo: bool = True) -> PrerequisiteReport:
    """Run every prerequisite check in order.

    Args:
        config: OrchestratorConfig
        broker: CredentialBroker override (tests)
        plane: IdentityControlPlane override (tests)
        store: VariableStore override (tests)
        echo: Print each result as it completes

    Returns:
        PrerequisiteReport; never raises
    """
    checks: list[tuple[str, Callable[[], CheckResult]]] = [
        ('git-repository', lambda: check_git_repository(config)),
        ('uncommitted-changes', lambda: check_uncommitted_changes(config)),
        ('untracked-files', lambda: check_untracked_files(config)),
        ('detached-head', lambda: check_detached_head(config)),
        ('upstream-configured', lambda: check_upstream(config)),
        ('unpushed-commits', lambda: check_unpushed_commits(config)),
        ('apply-engine', lambda: check_apply_engine(config)),
        ('aws-cli', lambda: check_aws_cli(config)),
        ('jq', lambda: check_jq(config)),
        ('aws-credentials', lambda: check_aws_credentials(config, broker)),
        ('aws-permissions', lambda: check_aws_permissions(config, broker, plane)),
        ('required-files', lambda: check_required_files(config)),
        ('self-deployment', lambda: check_self_deployment(config)),
        ('automation-variable', lambda: check_automation_variable(config, store)),
    ]

    if echo:
        print("Verifying prerequisites for deployment roles...\n")

    report = PrerequisiteReport()
    for name, check in checks:
        result = _safe(name, check)
        report.results.append(result)
        if echo:
            print(result.format())
    return report


def format_prerequisite_results(report: PrerequisiteReport) -> str:
    """Format the aggregate verdict for display."""
    if report.passed:
        suffix = f" ({len(report.warnings)} warnings)" if report.warnings else ''
        return f"\n✓ All prerequisites satisfied{suffix}"

    lines = ["", "✗ Prerequisites failed:"]
    for failure in report.failures:
        summary = failure.detail.splitlines()[0] if failure.detail else failure.name
        lines.append(f"  - {failure.name}: {summary}")
    lines.append("")
    lines.append("Please resolve the above issues before proceeding.")
    return '\n'.join(lines)
