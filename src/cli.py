#!/usr/bin/env python3
"""CLI entry point for stack-driver.

Noun-action subcommands:
- stack: Stack lifecycle (plan/apply/destroy/validate)
- state: Stored state inspection (list)
"""

import logging
import subprocess
import sys
from pathlib import Path

# Noun commands (noun-action subcommands)
NOUN_COMMANDS = {
    "stack": "Stack lifecycle (plan/apply/destroy/validate)",
    "state": "Stored state inspection (list)",
}

STACK_ACTIONS = {
    "plan": "Show the changes needed to reach the configuration",
    "apply": "Plan and apply changes, rolling back on failure",
    "destroy": "Destroy every resource recorded in state",
    "validate": "Validate configuration and build the resource graph",
}

STATE_ACTIONS = {
    "list": "List stored resource entries",
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def _print_actions(noun: str, actions: dict) -> None:
    print(f"Usage: stack-driver {noun} <action> [options]")
    print()
    print("Actions:")
    for action, desc in actions.items():
        print(f"  {action:<10}{desc}")
    print()
    print(f"Run 'stack-driver {noun} <action> --help' for action-specific options.")


def dispatch_stack(argv: list) -> int:
    """Dispatch 'stack' noun to action-specific handler.

    Args:
        argv: Arguments after 'stack' (e.g., ['apply', '-c', 'shop.yaml'])

    Returns:
        Exit code
    """
    if not argv or argv[0].startswith('-'):
        _print_actions('stack', STACK_ACTIONS)
        return 1 if not argv else 0

    action = argv[0]
    rest = argv[1:]

    if action == "plan":
        from stack_opr.cli import plan_main
        rc: int = plan_main(rest)
        return rc
    if action == "apply":
        from stack_opr.cli import apply_main
        rc = apply_main(rest)
        return rc
    if action == "destroy":
        from stack_opr.cli import destroy_main
        rc = destroy_main(rest)
        return rc
    if action == "validate":
        from stack_opr.cli import validate_main
        rc = validate_main(rest)
        return rc

    print(f"Error: Unknown stack action '{action}'")
    print(f"Available actions: {', '.join(STACK_ACTIONS)}")
    return 1


def dispatch_state(argv: list) -> int:
    """Dispatch 'state' noun to action-specific handler."""
    if not argv or argv[0].startswith('-'):
        _print_actions('state', STATE_ACTIONS)
        return 1 if not argv else 0

    if argv[0] == "list":
        from stack_opr.cli import state_list_main
        rc: int = state_list_main(argv[1:])
        return rc

    print(f"Error: Unknown state action '{argv[0]}'")
    print(f"Available actions: {', '.join(STATE_ACTIONS)}")
    return 1


def dispatch_noun(noun: str, argv: list) -> int:
    """Dispatch to noun-specific CLI handler.

    Args:
        noun: The noun command (e.g., "stack", "state")
        argv: Remaining command line arguments

    Returns:
        Exit code
    """
    if noun == "stack":
        return dispatch_stack(argv)
    if noun == "state":
        return dispatch_state(argv)

    print(f"Error: Noun '{noun}' not yet implemented")
    return 1


def get_version():
    """Get version from git tags, 'dev' outside a tagged checkout."""
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


def print_usage():
    """Print top-level usage showing noun commands."""
    print(f"stack-driver {get_version()}")
    print()
    print("Usage: stack-driver <noun> <action> [options]")
    print()
    print("Commands:")
    for noun, desc in NOUN_COMMANDS.items():
        print(f"  {noun:<12} {desc}")
    print()
    print("Run 'stack-driver <noun> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  stack-driver stack validate -c shop.yaml")
    print("  stack-driver stack plan -c shop.yaml --set environment=prod")
    print("  stack-driver stack apply -c shop.yaml --yes")
    print("  stack-driver stack destroy -c shop.yaml")
    print("  stack-driver state list -c shop.yaml")


def main(argv=None):
    """CLI entry point: dispatch to noun-action handlers."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv:
        print_usage()
        return 0

    first_arg = argv[0]
    if first_arg in ('--version', '-V'):
        print(f"stack-driver {get_version()}")
        return 0
    if first_arg in ('--help', '-h'):
        print_usage()
        return 0
    if first_arg in NOUN_COMMANDS:
        return dispatch_noun(first_arg, argv[1:])

    print(f"Error: Unknown command '{first_arg}'")
    print_usage()
    return 1


if __name__ == '__main__':
    sys.exit(main())
