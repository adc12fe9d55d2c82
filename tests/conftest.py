"""Shared pytest fixtures for stack-driver tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import ApplySettings, ConfigurationRecord
from providers.memory import MemoryProvider
from resources import Ref, ResourceTemplate
from stack_opr.state import StateStore


def make_record(**overrides) -> ConfigurationRecord:
    """ConfigurationRecord with test defaults."""
    values = {'app_name': 'shop', 'environment': 'dev'}
    values.update(overrides)
    return ConfigurationRecord(**values)


def chain_templates(count: int = 5, resource_type: str = 'test_item') -> list[ResourceTemplate]:
    """Templates item1..itemN where each item references the previous one."""
    templates = []
    for i in range(1, count + 1):
        attrs = {'index': i}
        if i > 1:
            attrs['parent_id'] = Ref(f'{resource_type}.item{i - 1}')
        templates.append(ResourceTemplate(
            type=resource_type,
            name=f'item{i}',
            attributes=lambda c, attrs=attrs: dict(attrs),
        ))
    return templates


@pytest.fixture(autouse=True)
def _isolated_state_dir(tmp_path, monkeypatch):
    """Keep every test away from the repository .states/ directory."""
    monkeypatch.setenv('STACKDRIVER_STATE_DIR', str(tmp_path / 'states'))


@pytest.fixture
def record():
    return make_record()


@pytest.fixture
def settings():
    """Settings with no backoff delay so retry tests run instantly."""
    return ApplySettings(max_attempts=3, base_delay=0.0, max_delay=0.0, max_workers=4)


@pytest.fixture
def provider():
    return MemoryProvider()


@pytest.fixture
def store(tmp_path):
    return StateStore('shop-dev', tmp_path / 'state' / 'state.json')


@pytest.fixture
def config_file(tmp_path):
    """Minimal configuration file."""
    path = tmp_path / 'shop.yaml'
    path.write_text("""
app_name: shop
environment: dev
selected_features: [mysql]
compute_mode: fargate
tags:
  Team: platform
settings:
  base_delay: 0
  max_delay: 0
""")
    return path
