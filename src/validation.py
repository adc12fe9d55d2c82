"""Pre-flight validation checks before apply.

Catches conditions that would make the first provider calls fail, with
actionable error messages, before any resource is touched.
"""

import logging

import requests
import urllib3

from catalog import PREFLIGHT_NAMES
from config import ApplySettings, ConfigurationRecord
from providers.base import Provider, ProviderError
from stack_opr.state import StateStore

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Provider endpoint
# -----------------------------------------------------------------------------

def validate_endpoint(settings: ApplySettings, timeout: float = 10.0) -> list[str]:
    """Check that the rest provider endpoint answers GET /health.

    Returns:
        List of validation error messages (empty if valid)
    """
    if settings.provider != 'rest':
        return []

    if not settings.endpoint:
        return [
            "Provider endpoint not configured\n"
            "  Set settings.endpoint in the config file or pass --endpoint"
        ]

    if settings.insecure:
        # Self-signed certs
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    headers = {}
    if settings.token:
        headers['Authorization'] = f'Bearer {settings.token}'

    try:
        resp = requests.get(
            f"{settings.endpoint.rstrip('/')}/health",
            headers=headers,
            verify=not settings.insecure,
            timeout=timeout,
        )
    except requests.exceptions.ConnectionError as e:
        return [f"Cannot connect to {settings.endpoint}: {e}"]
    except requests.exceptions.Timeout:
        return [f"Timeout connecting to {settings.endpoint}"]

    if resp.status_code == 401:
        return [
            f"Provider rejected credentials at {settings.endpoint}\n"
            f"  Export a valid token in ${settings.token_env}"
        ]
    if resp.status_code != 200:
        return [f"Unexpected health response: {resp.status_code} - {resp.text[:100]}"]

    logger.debug(f"Provider endpoint {settings.endpoint} healthy")
    return []


# -----------------------------------------------------------------------------
# Name conflicts
# -----------------------------------------------------------------------------

def validate_name_conflicts(
    record: ConfigurationRecord,
    provider: Provider,
    store: StateStore,
) -> list[str]:
    """Check that core resource names are free before the first apply.

    Skipped once state exists: the resources are then ours.
    """
    if len(store) > 0:
        return []

    errors = []
    for resource_type, suffix in PREFLIGHT_NAMES:
        name = record.name(suffix)
        try:
            existing = provider.find(resource_type, name)
        except ProviderError as e:
            errors.append(f"Cannot look up {resource_type} '{name}': {e}")
            continue
        if existing is not None:
            errors.append(
                f"{resource_type} '{name}' already exists ({existing.external_id})\n"
                f"  Remove it, or choose a different app_name/environment"
            )
    return errors


def run_preflight_checks(
    record: ConfigurationRecord,
    settings: ApplySettings,
    provider: Provider,
    store: StateStore,
) -> tuple[bool, dict]:
    """Run every pre-flight check.

    Returns:
        (success, results) tuple where results maps category ->
        {'passed': [...], 'failed': [...]}
    """
    results: dict[str, dict[str, list[str]]] = {
        'provider': {'passed': [], 'failed': []},
        'names': {'passed': [], 'failed': []},
    }

    endpoint_errors = validate_endpoint(settings)
    if endpoint_errors:
        results['provider']['failed'].extend(endpoint_errors)
    else:
        label = settings.endpoint if settings.provider == 'rest' else 'in-memory'
        results['provider']['passed'].append(f"Provider reachable ({label})")

    # Name lookups need a reachable provider
    if not endpoint_errors:
        name_errors = validate_name_conflicts(record, provider, store)
        if name_errors:
            results['names']['failed'].extend(name_errors)
        elif len(store) > 0:
            results['names']['passed'].append(f"Existing state ({len(store)} resources)")
        else:
            results['names']['passed'].append("VPC, ECR repository and ECS cluster names are free")

    success = not any(cat['failed'] for cat in results.values())
    return success, results


def format_preflight_results(record: ConfigurationRecord, results: dict) -> str:
    """Format preflight check results for display."""
    lines = [f"\nPreflight checks for '{record.resource_prefix}':\n"]

    category_names = {
        'provider': 'Provider',
        'names': 'Resource names',
    }

    for key, name in category_names.items():
        category = results.get(key, {'passed': [], 'failed': []})
        if category['passed'] or category['failed']:
            lines.append(f"{name}:")
            for item in category['passed']:
                lines.append(f"✓ {item}")
            for item in category['failed']:
                # Handle multi-line errors
                first_line, *rest = item.split('\n')
                lines.append(f"✗ {first_line}")
                for line in rest:
                    lines.append(f"  {line}")
            lines.append("")

    if all(not cat['failed'] for cat in results.values()):
        lines.append("All checks passed.")
    else:
        lines.append("Some checks failed. Fix issues before applying.")

    return '\n'.join(lines)
