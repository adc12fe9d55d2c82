"""CLI handlers for stack verb commands (plan, apply, destroy, validate) and state.

Usage:
    stack-driver stack plan -c <config> [--set K=V ...] [--json-output]
    stack-driver stack apply -c <config> [--yes] [--skip-preflight] [--rollback-policy P]
    stack-driver stack destroy -c <config> [--yes]
    stack-driver stack validate -c <config>
    stack-driver state list -c <config>

Exit codes:
    0  success (plan: no changes pending)
    1  error, failed apply, or aborted
    2  plan: changes pending
"""

import argparse
import dataclasses
import json
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path

from config import ROLLBACK_POLICIES, PROVIDERS, ConfigError, get_base_dir, get_state_dir, load_config
from providers import get_provider
from reporting import RunReport
from stack_opr.applier import Applier
from stack_opr.graph import BuildError, ResourceGraph, build
from stack_opr.planner import PlanError, plan
from stack_opr.state import AmbiguousStateError, StateStore
from validation import format_preflight_results, run_preflight_checks

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CHANGES = 2


def _common_parser(verb: str, noun: str = 'stack') -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'stack-driver {noun} {verb}',
        description=f'{verb.capitalize()} the application stack',
    )
    parser.add_argument(
        '--config', '-c',
        help='Path to configuration file (YAML or JSON)',
    )
    parser.add_argument(
        '--set',
        action='append',
        default=[],
        metavar='KEY=VALUE',
        help='Override a configuration value (repeatable, dotted keys for nesting)',
    )
    parser.add_argument(
        '--state-dir',
        type=Path,
        help='State directory (default: $STACKDRIVER_STATE_DIR or .states/)',
    )
    parser.add_argument(
        '--provider',
        choices=PROVIDERS,
        help='Provider backend (overrides settings.provider)',
    )
    parser.add_argument(
        '--endpoint',
        help='Provider endpoint URL (overrides settings.endpoint)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load(args):
    """Load record and settings from parsed args, applying CLI overrides.

    Returns:
        (record, settings) tuple

    Raises:
        ConfigError: On invalid configuration
    """
    if not args.config and not args.set:
        raise ConfigError("specify a configuration with -c/--config or --set")
    record, settings = load_config(args.config, args.set)

    changes = {}
    if args.provider:
        changes['provider'] = args.provider
    if args.endpoint:
        changes['endpoint'] = args.endpoint
    if getattr(args, 'rollback_policy', None):
        changes['rollback_policy'] = args.rollback_policy
    if changes:
        settings = dataclasses.replace(settings, **changes)
    return record, settings


def _open(args, record, settings):
    """Open the state store and provider for a record.

    Returns:
        (store, provider) tuple
    """
    state_dir = args.state_dir or get_state_dir()
    store = StateStore.load(record.resource_prefix, state_dir / record.resource_prefix / 'state.json')
    provider = get_provider(settings, record, state_dir)
    return store, provider


def _print_plan(changeset) -> None:
    for item in changeset:
        print(f"  {item}")
    summary = changeset.summary
    print(f"\nPlan: {summary['create']} to create, {summary['update']} to update, "
          f"{summary['destroy']} to destroy, {summary['no-op']} unchanged")


def _confirm(prompt: str) -> bool:
    response = input(f"{prompt} [y/N] ").strip().lower()
    return response == 'y'


@contextmanager
def _cancel_on_signal(event: threading.Event):
    """Set event on SIGINT/SIGTERM for the duration of the block."""
    def _handler(signum, _frame):
        logger.warning(f"Received {signal.Signals(signum).name}: finishing in-flight calls, then rolling back")
        event.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield event
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _report_errors(e: Exception) -> int:
    print(f"Error: {e}", file=sys.stderr)
    return EXIT_ERROR


def plan_main(argv: list) -> int:
    """Handle 'stack plan' verb."""
    parser = _common_parser('plan')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        record, settings = _load(args)
        store, _ = _open(args, record, settings)
        changeset = plan(build(record), store)
    except (ConfigError, BuildError, PlanError, ValueError) as e:
        return _report_errors(e)

    if args.json_output:
        print(json.dumps({'stack': record.resource_prefix, **changeset.to_dict()}, indent=2))
    else:
        print(f"Stack '{record.resource_prefix}':")
        _print_plan(changeset)

    return EXIT_CHANGES if changeset.has_changes else EXIT_OK


def _run(args, record, settings, store, provider, changeset, command: str) -> int:
    """Apply a change-set with signal-driven cancellation and reporting."""
    report = RunReport(
        stack=record.resource_prefix,
        report_dir=args.report_dir,
        command=command,
        changeset=changeset,
    )
    report.start()

    applier = Applier(provider, store, settings)
    with _cancel_on_signal(applier.cancel_event):
        result = applier.apply(changeset)

    paths = report.finish(result, write=not args.no_report)
    for path in paths:
        logger.debug(f"Report written: {path}")

    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print()
        for line in report.summary_lines():
            print(line)
    return EXIT_OK if result.success else EXIT_ERROR


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Skip confirmation prompt',
    )
    parser.add_argument(
        '--report-dir', '-r',
        type=Path,
        default=get_base_dir() / 'reports',
        help='Directory for run reports',
    )
    parser.add_argument(
        '--no-report',
        action='store_true',
        help='Do not write report files',
    )


def apply_main(argv: list) -> int:
    """Handle 'stack apply' verb."""
    parser = _common_parser('apply')
    _add_run_options(parser)
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip pre-flight validation checks',
    )
    parser.add_argument(
        '--rollback-policy',
        choices=ROLLBACK_POLICIES,
        help='Rollback policy on failure (overrides settings.rollback_policy)',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        record, settings = _load(args)
        store, provider = _open(args, record, settings)
        changeset = plan(build(record), store)
    except (ConfigError, BuildError, PlanError, ValueError) as e:
        return _report_errors(e)

    if not changeset.has_changes:
        print(f"Stack '{record.resource_prefix}' is up to date.")
        return EXIT_OK

    if not args.skip_preflight:
        ok, results = run_preflight_checks(record, settings, provider, store)
        if not ok:
            print(format_preflight_results(record, results))
            print("\nUse --skip-preflight to bypass these checks")
            return EXIT_ERROR
        logger.info("Pre-flight validation passed")

    if not args.json_output:
        print(f"Stack '{record.resource_prefix}':")
        _print_plan(changeset)

    if not args.yes and not _confirm("\nApply these changes?"):
        print("Aborted.")
        return EXIT_ERROR

    logger.info(f"Applying stack '{record.resource_prefix}' (provider: {settings.provider}, "
                f"rollback: {settings.rollback_policy})")
    return _run(args, record, settings, store, provider, changeset, 'apply')


def destroy_main(argv: list) -> int:
    """Handle 'stack destroy' verb."""
    parser = _common_parser('destroy')
    _add_run_options(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        record, settings = _load(args)
        store, provider = _open(args, record, settings)
        changeset = plan(ResourceGraph.empty(), store)
    except (ConfigError, BuildError, PlanError, ValueError) as e:
        return _report_errors(e)

    if not changeset.has_changes:
        print(f"Stack '{record.resource_prefix}' has no resources.")
        return EXIT_OK

    # Confirmation for destructive operation
    if not args.yes:
        print(f"\nWARNING: This will destroy {len(changeset)} resources of stack '{record.resource_prefix}'.")
        print("This action cannot be undone.")
        if not _confirm("Continue?"):
            print("Aborted.")
            return EXIT_ERROR

    settings = dataclasses.replace(settings, rollback_policy='none')
    logger.info(f"Destroying stack '{record.resource_prefix}'")
    return _run(args, record, settings, store, provider, changeset, 'destroy')


def validate_main(argv: list) -> int:
    """Handle 'stack validate' verb.

    Validates the configuration record and builds the resource graph
    without touching the provider or state.
    """
    parser = _common_parser('validate')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        record, _ = _load(args)
        graph = build(record)
    except (ConfigError, BuildError) as e:
        return _report_errors(e)

    if args.json_output:
        print(json.dumps({
            'stack': record.resource_prefix,
            'valid': True,
            'nodes': sorted(graph.nodes),
            'edges': len(graph.edges),
        }, indent=2))
        return EXIT_OK

    for node in graph.create_order():
        logger.debug(f"rank {graph.ranks[node.identity]}: {node.identity}")
    count = len(graph)
    print(f"Stack '{record.resource_prefix}' is valid ({count} resource{'s' if count != 1 else ''}, "
          f"{len(graph.edges)} dependencies)")
    return EXIT_OK


def state_list_main(argv: list) -> int:
    """Handle 'state list'."""
    parser = _common_parser('list', noun='state')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        record, settings = _load(args)
        store, _ = _open(args, record, settings)
    except (ConfigError, ValueError, AmbiguousStateError) as e:
        return _report_errors(e)

    entries = store.all()
    if args.json_output:
        print(json.dumps([e.to_dict() for e in entries], indent=2))
        return EXIT_OK

    if not entries:
        print(f"No state for stack '{record.resource_prefix}'.")
        return EXIT_OK
    width = max(len(e.identity) for e in entries)
    for entry in entries:
        line = f"{entry.identity:<{width}}  {entry.status:<9}  {entry.external_id or '-'}"
        if entry.error:
            line += f"  ({entry.error})"
        print(line)
    return EXIT_OK
