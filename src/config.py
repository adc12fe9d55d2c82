"""Stack configuration management.

Configuration is loaded from a single YAML (or JSON) file produced by a
front-end or written by hand:

    app_name: shop
    environment: dev
    region: ap-south-1
    selected_features: [mysql, redis]
    compute_mode: fargate
    enable_autoscaling: false
    tags:
      Team: platform
    settings:
      rollback_policy: steps
      max_attempts: 5

The top-level keys form the ConfigurationRecord (what to build). The optional
settings block forms ApplySettings (how the engine applies it).
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml


class ConfigError(Exception):
    """Configuration error."""


# Closed enums
ENVIRONMENTS = ('dev', 'stage', 'prod')
FEATURES = ('mysql', 'redis', 'documentdb')
COMPUTE_MODES = ('fargate', 'ec2')
ROLLBACK_POLICIES = ('steps', 'all', 'none')
PROVIDERS = ('memory', 'rest')

DEFAULT_REGION = 'ap-south-1'
MANAGED_BY = 'stack-driver'

RECORD_FIELDS = (
    'app_name',
    'region',
    'environment',
    'selected_features',
    'compute_mode',
    'enable_autoscaling',
    'resource_prefix',
    'tags',
)

_APP_NAME_RE = re.compile(r'^[a-z][a-z0-9-]*$')


@dataclass(frozen=True)
class ConfigurationRecord:
    """Validated, immutable description of the stack to build.

    Construction validates every field at once; on any error a single
    ConfigError lists all problems and no record is created.

    Attributes:
        app_name: Application name (lowercase)
        environment: One of ENVIRONMENTS
        region: Target region
        selected_features: Subset of FEATURES
        compute_mode: One of COMPUTE_MODES
        enable_autoscaling: Attach service autoscaling
        resource_prefix: Name prefix for all resources ({app}-{env} if empty)
        tags: User tags merged into every resource
    """
    app_name: str
    environment: str
    region: str = DEFAULT_REGION
    selected_features: frozenset = frozenset()
    compute_mode: str = 'fargate'
    enable_autoscaling: bool = False
    resource_prefix: str = ''
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        errors = _validate_record(self)
        if errors:
            raise ConfigError(
                "Invalid configuration:\n" + '\n'.join(f"  - {e}" for e in errors)
            )

        # Normalize (frozen: bypass __setattr__)
        object.__setattr__(self, 'selected_features', frozenset(self.selected_features))
        object.__setattr__(self, 'tags', MappingProxyType(dict(self.tags)))
        if not self.resource_prefix:
            object.__setattr__(self, 'resource_prefix', f'{self.app_name}-{self.environment}')

    def has_feature(self, feature: str) -> bool:
        return feature in self.selected_features

    @property
    def has_database(self) -> bool:
        """True if any managed database is selected."""
        return bool(self.selected_features)

    @property
    def is_production(self) -> bool:
        return self.environment == 'prod'

    @property
    def common_tags(self) -> dict[str, str]:
        """Built-in tags with user tags layered on top."""
        tags = {
            'Application': self.app_name,
            'Environment': self.environment,
            'ManagedBy': MANAGED_BY,
        }
        tags.update(self.tags)
        return tags

    def tags_for(self, name: str) -> dict[str, str]:
        """Tags for a single resource: common tags plus its Name tag."""
        tags = self.common_tags
        tags['Name'] = name
        return tags

    def name(self, suffix: str) -> str:
        """Prefixed resource name (e.g. 'shop-dev-vpc')."""
        return f'{self.resource_prefix}-{suffix}'

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'app_name': self.app_name,
            'region': self.region,
            'environment': self.environment,
            'selected_features': sorted(self.selected_features),
            'compute_mode': self.compute_mode,
            'enable_autoscaling': self.enable_autoscaling,
            'resource_prefix': self.resource_prefix,
            'tags': dict(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ConfigurationRecord':
        """Create ConfigurationRecord from a flat key-value mapping.

        Accepts front-end friendly forms: features as a comma separated
        string, booleans as 'true'/'false'.

        Raises:
            ConfigError: If any field is missing, unknown or invalid
        """
        unknown = sorted(set(data) - set(RECORD_FIELDS))
        if unknown:
            raise ConfigError(f"Unknown configuration field(s): {', '.join(unknown)}")

        missing = [k for k in ('app_name', 'environment') if not data.get(k)]
        if missing:
            raise ConfigError(f"Missing required field(s): {', '.join(missing)}")

        try:
            enable_autoscaling = _parse_bool(data.get('enable_autoscaling', False))
        except ValueError as e:
            raise ConfigError(f"enable_autoscaling: {e}")

        return cls(
            app_name=str(data['app_name']),
            environment=str(data['environment']).lower(),
            region=str(data.get('region') or DEFAULT_REGION),
            selected_features=frozenset(_parse_features(data.get('selected_features'))),
            compute_mode=str(data.get('compute_mode') or 'fargate').lower(),
            enable_autoscaling=enable_autoscaling,
            resource_prefix=str(data.get('resource_prefix') or ''),
            tags=data.get('tags') or {},
        )


def _validate_record(record: ConfigurationRecord) -> list[str]:
    """Collect all validation errors for a record."""
    errors = []

    if not isinstance(record.app_name, str) or not _APP_NAME_RE.match(record.app_name):
        errors.append(
            f"app_name must be lowercase letters, digits and '-' "
            f"(starting with a letter), got {record.app_name!r}"
        )

    if record.environment not in ENVIRONMENTS:
        errors.append(
            f"environment must be one of {', '.join(ENVIRONMENTS)}, got {record.environment!r}"
        )

    if not record.region:
        errors.append("region must not be empty")

    invalid = sorted(str(f) for f in set(record.selected_features) - set(FEATURES))
    if invalid:
        errors.append(
            f"selected_features contains unknown feature(s) {', '.join(invalid)}; "
            f"options: {', '.join(FEATURES)}"
        )

    if record.compute_mode not in COMPUTE_MODES:
        errors.append(
            f"compute_mode must be one of {', '.join(COMPUTE_MODES)}, got {record.compute_mode!r}"
        )

    if not isinstance(record.enable_autoscaling, bool):
        errors.append(f"enable_autoscaling must be a boolean, got {record.enable_autoscaling!r}")

    if not isinstance(record.tags, Mapping):
        errors.append("tags must be a mapping of string to string")
    else:
        for key, value in record.tags.items():
            if not isinstance(key, str) or not isinstance(value, str):
                errors.append(f"tag {key!r} must map a string to a string, got {value!r}")

    return errors


def _parse_features(value: Any) -> list[str]:
    """Normalize feature selection.

    Accepts None, a list, or a string separated by commas and/or spaces
    ("mysql, Redis" -> ['mysql', 'redis']).
    """
    if value is None:
        return []
    if isinstance(value, str):
        items = value.replace(',', ' ').split()
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = [str(v) for v in value]
    else:
        raise ConfigError(f"selected_features must be a list or string, got {type(value).__name__}")
    return [item.strip().lower() for item in items if item.strip()]


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'yes', '1'):
        return True
    if isinstance(value, str) and value.strip().lower() in ('false', 'no', '0', ''):
        return False
    raise ValueError(f"expected true/false, got {value!r}")


@dataclass
class ApplySettings:
    """Engine settings for plan/apply execution.

    Attributes:
        max_attempts: Attempt cap per provider call on transient errors
        base_delay: First backoff delay in seconds (doubled per retry)
        max_delay: Backoff ceiling in seconds
        max_workers: Parallel provider calls within one rank
        rollback_policy: 'steps' (reverse completed steps), 'all' (tear
            down everything in state) or 'none'
        provider: Provider name ('memory' or 'rest')
        endpoint: Base URL for the rest provider
        token_env: Environment variable holding the rest provider token
        insecure: Skip TLS certificate verification for the rest provider
    """
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_workers: int = 4
    rollback_policy: str = 'steps'
    provider: str = 'memory'
    endpoint: str = ''
    token_env: str = 'STACKDRIVER_TOKEN'
    insecure: bool = False

    def __post_init__(self):
        if self.rollback_policy not in ROLLBACK_POLICIES:
            raise ConfigError(
                f"rollback_policy must be one of {', '.join(ROLLBACK_POLICIES)}, "
                f"got {self.rollback_policy!r}"
            )
        if self.provider not in PROVIDERS:
            raise ConfigError(
                f"provider must be one of {', '.join(PROVIDERS)}, got {self.provider!r}"
            )
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")

    @property
    def token(self) -> str:
        return os.environ.get(self.token_env, '')

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ApplySettings':
        """Create ApplySettings from dictionary."""
        if not data:
            return cls()
        try:
            return cls(
                max_attempts=int(data.get('max_attempts', 5)),
                base_delay=float(data.get('base_delay', 1.0)),
                max_delay=float(data.get('max_delay', 30.0)),
                max_workers=int(data.get('max_workers', 4)),
                rollback_policy=data.get('rollback_policy', 'steps'),
                provider=data.get('provider', 'memory'),
                endpoint=data.get('endpoint', ''),
                token_env=data.get('token_env', 'STACKDRIVER_TOKEN'),
                insecure=_parse_bool(data.get('insecure', False)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid settings: {e}")


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a YAML object (dict)")
    return data


def parse_overrides(pairs: list[str]) -> dict[str, Any]:
    """Parse KEY=VALUE overrides from the command line.

    Values are parsed as YAML scalars so 'true', '3' and '[a, b]' keep
    their types. Dotted keys address nested maps ('tags.Team=ops').
    """
    overrides: dict[str, Any] = {}
    for pair in pairs:
        if '=' not in pair:
            raise ConfigError(f"Invalid override '{pair}'. Expected KEY=VALUE")
        key, raw = pair.split('=', 1)
        try:
            value = yaml.safe_load(raw) if raw else ''
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid override '{pair}': {e}")
        target = overrides
        parts = key.strip().split('.')
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value
    return overrides


def _merge(base: dict, overrides: dict) -> dict:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    file_path: Optional[str] = None,
    overrides: Optional[list[str]] = None,
) -> tuple[ConfigurationRecord, ApplySettings]:
    """Load configuration record and engine settings.

    Args:
        file_path: Path to YAML/JSON config file (optional when overrides
            supply every required field)
        overrides: KEY=VALUE pairs applied on top of the file

    Returns:
        (record, settings) tuple

    Raises:
        ConfigError: If file missing or any value invalid
    """
    data: dict = {}
    if file_path:
        path = Path(file_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        data = _parse_yaml(path)

    if overrides:
        data = _merge(data, parse_overrides(overrides))

    settings_data = data.pop('settings', None)
    record = ConfigurationRecord.from_dict(data)
    settings = ApplySettings.from_dict(settings_data)
    return record, settings


def get_base_dir() -> Path:
    """Get the stack-driver directory.

    Resolution order:
    1. The checkout root when running from source (src/ -> stack-driver/)
    2. The current working directory for an installed package
    """
    checkout = Path(__file__).parent.parent
    if (checkout / "pyproject.toml").exists():
        return checkout
    return Path.cwd()


def get_state_dir() -> Path:
    """Discover the state directory.

    Resolution order:
    1. $STACKDRIVER_STATE_DIR environment variable
    2. .states/ under the stack-driver directory
    """
    if env_path := os.environ.get('STACKDRIVER_STATE_DIR'):
        return Path(env_path)
    return get_base_dir() / '.states'
