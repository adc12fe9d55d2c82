"""In-memory provider.

Simulates a cloud API: AWS-style identifiers, ARNs and a few type-specific
outputs (endpoints, repository URLs). Optionally persists its inventory to a
JSON file so separate CLI runs share the same simulated account.

Failures can be injected per operation and identity for exercising retry and
rollback paths:

    provider.fail('create', 'aws_db_instance.mysql', TerminalError('quota'))
"""

import json
import logging
import threading
import time
from pathlib import Path
from typing import Optional

from providers.base import NotFoundError, ProviderResponse
from resources import identity_of

logger = logging.getLogger(__name__)

ACCOUNT_ID = '000000000000'

# Resource type -> identifier prefix
ID_PREFIXES = {
    'aws_vpc': 'vpc',
    'aws_subnet': 'subnet',
    'aws_internet_gateway': 'igw',
    'aws_eip': 'eipalloc',
    'aws_nat_gateway': 'nat',
    'aws_route_table': 'rtb',
    'aws_route_table_association': 'rtbassoc',
    'aws_security_group': 'sg',
    'aws_instance': 'i',
    'aws_launch_template': 'lt',
}

# Attribute keys that carry the cloud-side name, in lookup order
NAME_KEYS = ('name', 'identifier', 'cluster_id', 'cluster_identifier', 'family')


def cloud_name(attributes: dict, fallback: str) -> str:
    """Cloud-side name of a resource (explicit name, identifier, or Name tag)."""
    for key in NAME_KEYS:
        value = attributes.get(key)
        if isinstance(value, str) and value:
            return value
    tags = attributes.get('tags') or {}
    return tags.get('Name') or fallback


class MemoryProvider:
    """Thread-safe simulated provider."""

    name = 'memory'

    def __init__(self, region: str = 'ap-south-1', path: Optional[Path] = None, latency: float = 0.0):
        self.region = region
        self.path = Path(path) if path else None
        self.latency = latency
        self.resources: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], list[Exception]] = {}
        self._last_id = 0
        self._lock = threading.Lock()
        if self.path and self.path.exists():
            self._load()

    # -- fault injection -----------------------------------------------------

    def fail(self, operation: str, identity: str, *errors: Exception) -> None:
        """Queue errors for the next calls of operation on identity."""
        with self._lock:
            self._failures.setdefault((operation, identity), []).extend(errors)

    def _record(self, operation: str, identity: str) -> None:
        """Log the call and raise any queued failure for it."""
        with self._lock:
            self.calls.append((operation, identity))
            queue = self._failures.get((operation, identity))
            error = queue.pop(0) if queue else None
        if self.latency:
            time.sleep(self.latency)
        if error is not None:
            logger.debug(f"Injected failure for {operation} {identity}: {error}")
            raise error

    # -- operations ----------------------------------------------------------

    def create(self, resource_type: str, name: str, attributes: dict) -> ProviderResponse:
        identity = identity_of(resource_type, name)
        self._record('create', identity)
        with self._lock:
            external_id = self._new_id(resource_type)
            self.resources[external_id] = {
                'type': resource_type,
                'name': name,
                'attributes': attributes,
            }
            self._save()
        logger.debug(f"Created {identity} as {external_id}")
        return self._response(external_id)

    def read(self, resource_type: str, external_id: str) -> ProviderResponse:
        with self._lock:
            if external_id not in self.resources:
                raise NotFoundError(f"{resource_type} {external_id} not found")
        return self._response(external_id)

    def update(self, resource_type: str, external_id: str, attributes: dict) -> ProviderResponse:
        record = self._get(resource_type, external_id)
        self._record('update', identity_of(resource_type, record['name']))
        with self._lock:
            record['attributes'] = attributes
            self._save()
        return self._response(external_id)

    def delete(self, resource_type: str, external_id: str) -> None:
        record = self._get(resource_type, external_id)
        self._record('delete', identity_of(resource_type, record['name']))
        with self._lock:
            self.resources.pop(external_id, None)
            self._save()
        logger.debug(f"Deleted {resource_type} {external_id}")

    def find(self, resource_type: str, name: str) -> Optional[ProviderResponse]:
        with self._lock:
            for external_id, record in self.resources.items():
                if record['type'] != resource_type:
                    continue
                if cloud_name(record['attributes'], record['name']) == name:
                    break
            else:
                return None
        return self._response(external_id)

    def identities(self) -> list[str]:
        """Identities of every resource currently held (sorted)."""
        with self._lock:
            return sorted(identity_of(r['type'], r['name']) for r in self.resources.values())

    # -- internals -----------------------------------------------------------

    def _get(self, resource_type: str, external_id: str) -> dict:
        with self._lock:
            record = self.resources.get(external_id)
        if record is None or record['type'] != resource_type:
            raise NotFoundError(f"{resource_type} {external_id} not found")
        return record

    def _new_id(self, resource_type: str) -> str:
        prefix = ID_PREFIXES.get(resource_type, resource_type.removeprefix('aws_').replace('_', '-'))
        self._last_id += 1
        return f'{prefix}-{self._last_id:017x}'

    def _response(self, external_id: str) -> ProviderResponse:
        with self._lock:
            record = self.resources[external_id]
            return ProviderResponse(external_id=external_id, outputs=self._outputs(external_id, record))

    def _outputs(self, external_id: str, record: dict) -> dict:
        resource_type = record['type']
        attrs = record['attributes']
        name = cloud_name(attrs, record['name'])
        service = resource_type.removeprefix('aws_').split('_')[0]
        outputs = {
            'id': external_id,
            'name': name,
            'arn': f'arn:aws:{service}:{self.region}:{ACCOUNT_ID}:{resource_type}/{name}',
        }

        if resource_type == 'aws_ecr_repository':
            outputs['repository_url'] = f'{ACCOUNT_ID}.dkr.ecr.{self.region}.amazonaws.com/{name}'
        elif resource_type == 'aws_lb':
            outputs['dns_name'] = f'{name}-{external_id[-6:]}.{self.region}.elb.amazonaws.com'
        elif resource_type == 'aws_db_instance':
            outputs['address'] = f'{name}.{external_id[-6:]}.{self.region}.rds.amazonaws.com'
            outputs['port'] = 3306
            outputs['endpoint'] = f"{outputs['address']}:3306"
        elif resource_type == 'aws_elasticache_cluster':
            outputs['address'] = f'{name}.{external_id[-6:]}.cache.amazonaws.com'
            outputs['port'] = 6379
        elif resource_type in ('aws_docdb_cluster', 'aws_docdb_cluster_instance'):
            outputs['endpoint'] = f'{name}.cluster-{external_id[-6:]}.{self.region}.docdb.amazonaws.com'
            outputs['port'] = 27017
        elif resource_type == 'aws_instance':
            outputs['public_ip'] = f'203.0.113.{int(external_id[-2:], 16) % 250 + 1}'
        return outputs

    def _load(self) -> None:
        data = json.loads(self.path.read_text())
        self.resources = data.get('resources', {})
        self._last_id = data.get('counter', 0)
        logger.debug(f"Loaded {len(self.resources)} simulated resources from {self.path}")

    def _save(self) -> None:
        """Persist inventory (caller holds the lock)."""
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix('.tmp')
        tmp.write_text(json.dumps({'counter': self._last_id, 'resources': self.resources}, indent=2))
        tmp.replace(self.path)
