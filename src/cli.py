#!/usr/bin/env python3
"""CLI entry point for deployment-roles.

Commands:
- create-project: Scaffold a project descriptor from the template
- verify-prerequisites: Run every prerequisite check and report
- deploy: Plan and apply all described deployment roles
- destroy: Tear down every deployment role resource
- list-deployed-resources: Read-only inventory report
- bootstrap: Configure the automation variable (interactive only)
"""

import argparse
import json
import logging
import subprocess
import sys
from pathlib import Path
from typing import Optional

from bootstrap import BootstrapError, bootstrap_automation_variable
from config import ConfigError, load_config
from inventory import enumerate_resources, format_inventory
from projects import ProjectError, create_project
from scenarios import Orchestrator, SkipPhaseError, get_scenario
from validation import format_prerequisite_results, run_prerequisite_checks

logger = logging.getLogger(__name__)

COMMANDS = {
    "create-project": "Create a new project from the template",
    "verify-prerequisites": "Verify repository, tooling and AWS prerequisites",
    "deploy": "Create or update all deployment roles",
    "destroy": "Destroy all deployment role resources",
    "list-deployed-resources": "List deployed deployment role resources",
    "bootstrap": "Set the AWS_ACCOUNT_ID repository variable (interactive)",
}


def get_version():
    """Get version from git tags."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except OSError:
        return 'dev'


def _configure_logging(args) -> None:
    """Configure root logging; --json-output moves logs to stderr."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    root_logger = logging.getLogger()
    if getattr(args, 'json_output', False):
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(stderr_handler)
    if getattr(args, 'verbose', False):
        root_logger.setLevel(logging.DEBUG)


def _common_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        '--root',
        type=Path,
        help='Project root (default: current directory)'
    )
    common.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    common.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs go to stderr)'
    )
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_parser()
    parser = argparse.ArgumentParser(
        prog='deployment-roles',
        description='Deployment Role Orchestrator - manages GitHub Actions deployment roles in AWS'
    )
    parser.add_argument('--version', action='version', version=f'deployment-roles {get_version()}')
    sub = parser.add_subparsers(dest='command', metavar='<command>')

    p = sub.add_parser('create-project', parents=[common], help=COMMANDS['create-project'])
    p.add_argument('name', help='Project (repository) name; role will be gharole-<name>-<env>')
    p.add_argument('--environment', '-e', default='prd', help='Environment name (default: prd)')

    sub.add_parser('verify-prerequisites', parents=[common], help=COMMANDS['verify-prerequisites'])

    for name in ('deploy', 'destroy'):
        p = sub.add_parser(name, parents=[common], help=COMMANDS[name])
        p.add_argument(
            '--report-dir', '-r',
            type=Path,
            help='Write JSON and Markdown run reports to this directory'
        )
        p.add_argument(
            '--skip', '-s',
            action='append',
            default=[],
            help='Phases to skip (can be repeated; prerequisites cannot be skipped)'
        )
        p.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be executed without running actions'
        )
        p.add_argument(
            '--list-phases',
            action='store_true',
            help='List phases and exit'
        )
        if name == 'destroy':
            p.add_argument(
                '--yes', '-y',
                action='store_true',
                help='Skip confirmation prompt'
            )

    p = sub.add_parser('list-deployed-resources', parents=[common], help=COMMANDS['list-deployed-resources'])
    p.add_argument(
        '--no-outputs',
        action='store_true',
        help='Do not initialize the apply engine to read outputs'
    )

    sub.add_parser('bootstrap', parents=[common], help=COMMANDS['bootstrap'])
    return parser


def print_usage():
    """Print top-level usage showing commands."""
    print(f"deployment-roles {get_version()}")
    print()
    print("Usage: deployment-roles <command> [options]")
    print()
    print("Commands:")
    for command, desc in COMMANDS.items():
        print(f"  {command:<26} {desc}")
    print()
    print("Run 'deployment-roles <command> --help' for command-specific options.")


def cmd_create_project(args, config) -> int:
    try:
        target = create_project(config, args.name, args.environment)
    except ProjectError as e:
        print(f"Error: {e}")
        return 1

    policy = target / args.environment / 'policies' / 'deployment-policy.json'
    print(f"✓ Project created: {target}")
    print()
    print("Next steps:")
    print("1. Review and customize the deployment policy:")
    print(f"   {policy}")
    print()
    print("2. Deploy all roles:")
    print("   deployment-roles deploy")
    print()
    print("3. The role ARN will be available at SSM parameter:")
    org = config.repo.org if config.repo else '<org>'
    print(f"   {config.registry_prefix}/{org}-{args.name}/{args.environment}/role-arn")
    return 0


def cmd_verify_prerequisites(args, config) -> int:
    report = run_prerequisite_checks(config, echo=not args.json_output)
    if args.json_output:
        print(json.dumps({
            'success': report.passed,
            'checks': [
                {'name': r.name, 'status': r.status, 'detail': r.detail}
                for r in report.results
            ],
        }, indent=2))
    else:
        print(format_prerequisite_results(report))
    return 0 if report.passed else 1


def _confirm_destroy(args, config) -> bool:
    """Ask before destroying; refuse when nobody can answer."""
    if args.yes:
        return True
    if not config.interactive:
        print("Error: destroy requires --yes when not running interactively")
        return False
    repository = config.repo.full_name if config.repo else str(config.root)
    print("\nWARNING: This will destroy ALL deployment roles, policies and")
    print(f"registry entries managed from {repository}.")
    print("\nThis action cannot be undone.")
    response = input("Continue? [y/N] ").strip().lower()
    if response != 'y':
        print("Aborted.")
        return False
    return True


def cmd_scenario(args, config) -> int:
    """Run the deploy or destroy scenario."""
    scenario = get_scenario(args.command)

    if args.list_phases:
        print(f"Phases for '{args.command}':")
        for name, _action, desc in scenario.get_phases(config):
            print(f"  {name}: {desc}")
        return 0

    orchestrator = Orchestrator(
        scenario=scenario,
        config=config,
        report_dir=args.report_dir,
        skip_phases=args.skip,
        dry_run=args.dry_run
    )

    try:
        orchestrator.phases()
    except SkipPhaseError as e:
        print(f"Error: {e}")
        return 1

    if args.command == 'destroy' and not args.dry_run and not _confirm_destroy(args, config):
        return 1

    success = orchestrator.run()

    if args.json_output:
        print(json.dumps(orchestrator.report.to_dict(orchestrator.context), indent=2))
    elif not args.dry_run:
        status = "✓ completed" if success else "✗ failed"
        print(f"\n{args.command} {status}")
    return 0 if success else 1


def cmd_list_deployed_resources(args, config) -> int:
    """Always exits 0; problems are part of the report."""
    report = enumerate_resources(config, read_outputs=not args.no_outputs)
    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        print(format_inventory(report))
    return 0


def cmd_bootstrap(args, config) -> int:
    try:
        message = bootstrap_automation_variable(config)
    except BootstrapError as e:
        print(f"Error: {e}")
        return 1
    print(f"✓ {message}")
    return 0


HANDLERS = {
    'create-project': cmd_create_project,
    'verify-prerequisites': cmd_verify_prerequisites,
    'deploy': cmd_scenario,
    'destroy': cmd_scenario,
    'list-deployed-resources': cmd_list_deployed_resources,
    'bootstrap': cmd_bootstrap,
}


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print_usage()
        return 0

    args = build_parser().parse_args(argv)
    if args.command is None:
        print_usage()
        return 0

    _configure_logging(args)

    try:
        config = load_config(root=args.root)
    except ConfigError as e:
        print(f"Error: {e}")
        return 0 if args.command == 'list-deployed-resources' else 1

    logger.debug(f"Repository: {config.repo.full_name if config.repo else 'unknown'}, region: {config.region}")
    return HANDLERS[args.command](args, config)


if __name__ == '__main__':
    sys.exit(main())
