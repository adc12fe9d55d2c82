"""State store for stack orchestration.

Records, per resource identity, what was last applied: the symbolic
attributes, the provider-side id and outputs, and the apply status. Persists
to .states/{resource_prefix}/state.json so later plans can diff against it
and destroy can find provider ids without the create context.
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from config import get_state_dir
from resources import Ref, decode_attributes, encode_attributes, split_identity

logger = logging.getLogger(__name__)

APPLIED = 'applied'
FAILED = 'failed'
DESTROYED = 'destroyed'
STATUSES = (APPLIED, FAILED, DESTROYED)


class AmbiguousStateError(Exception):
    """An identity has more than one entry in the store."""

    def __init__(self, identity: str, count: int):
        self.identity = identity
        self.count = count
        super().__init__(f"'{identity}' has {count} state entries")


@dataclass(frozen=True)
class StateEntry:
    """Last known state of one resource.

    Attributes:
        identity: Resource identity ('aws_vpc.main')
        attributes: Symbolic attributes as applied (Refs unresolved)
        depends_on: Dependencies at apply time (for destroy ordering)
        external_id: Provider-assigned identifier
        outputs: Provider-returned values (id, arn, name, ...)
        applied_at: Timestamp of the last successful operation
        status: applied, failed or destroyed
        error: Last error message when status is failed
    """
    identity: str
    attributes: dict = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    external_id: Optional[str] = None
    outputs: dict = field(default_factory=dict)
    applied_at: Optional[float] = None
    status: str = APPLIED
    error: Optional[str] = None

    @property
    def type(self) -> str:
        return split_identity(self.identity)[0]

    @property
    def name(self) -> str:
        return split_identity(self.identity)[1]

    def mark_failed(self, error: str) -> 'StateEntry':
        return replace(self, status=FAILED, error=error)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'identity': self.identity,
            'type': self.type,
            'status': self.status,
            'attributes': encode_attributes(self.attributes),
            'depends_on': list(self.depends_on),
            'external_id': self.external_id,
            'outputs': self.outputs,
        }
        if self.applied_at is not None:
            d['applied_at'] = self.applied_at
        if self.error is not None:
            d['error'] = self.error
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'StateEntry':
        return cls(
            identity=data['identity'],
            attributes=decode_attributes(data.get('attributes', {})),
            depends_on=tuple(data.get('depends_on', ())),
            external_id=data.get('external_id'),
            outputs=data.get('outputs', {}),
            applied_at=data.get('applied_at'),
            status=data.get('status', APPLIED),
            error=data.get('error'),
        )


class StateStore:
    """Persisted mapping of identity -> StateEntry.

    Writes are serialized under one lock; every mutation rewrites the file
    through a temporary file and os.replace so it is never left half
    written. Entries are kept as a list so duplicates in a corrupted file
    are preserved and reported instead of silently collapsed.
    """

    def __init__(self, name: str, path: Optional[Path] = None):
        """Initialize a store.

        Args:
            name: Stack name (the resource prefix)
            path: State file. Default: {state_dir}/{name}/state.json
        """
        self.name = name
        self.path = Path(path) if path else get_state_dir() / name / 'state.json'
        self.serial = 0
        self.updated_at: Optional[float] = None
        self._entries: list[StateEntry] = []
        self._lock = threading.RLock()

    # -- reads ----------------------------------------------------------------

    def find(self, identity: str) -> list[StateEntry]:
        """All entries for an identity (normally zero or one)."""
        with self._lock:
            return [e for e in self._entries if e.identity == identity]

    def get(self, identity: str) -> Optional[StateEntry]:
        """Entry for identity, or None.

        Raises:
            AmbiguousStateError: If more than one entry matches
        """
        matches = self.find(identity)
        if len(matches) > 1:
            raise AmbiguousStateError(identity, len(matches))
        return matches[0] if matches else None

    def all(self) -> list[StateEntry]:
        """Snapshot of every entry, in identity order."""
        with self._lock:
            return sorted(self._entries, key=lambda e: e.identity)

    def lookup(self, ref: Ref) -> Any:
        """Concrete value of a Ref.

        'id' resolves to the external id, any other output from outputs.

        Raises:
            KeyError: If the entry or output is not known
        """
        entry = self.get(ref.identity)
        if entry is None or entry.status == DESTROYED:
            raise KeyError(f"no state for {ref.identity}")
        if ref.output == 'id' and entry.external_id:
            return entry.external_id
        if ref.output not in entry.outputs:
            raise KeyError(f"{ref.identity} has no output '{ref.output}'")
        return entry.outputs[ref.output]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -- writes ---------------------------------------------------------------

    def put(self, entry: StateEntry) -> None:
        """Insert or replace the entry for entry.identity and persist."""
        with self._lock:
            self._entries = [e for e in self._entries if e.identity != entry.identity]
            self._entries.append(entry)
            self.save()
        logger.debug(f"State: put {entry.identity} ({entry.status})")

    def delete(self, identity: str) -> None:
        """Remove every entry for identity and persist."""
        with self._lock:
            self._entries = [e for e in self._entries if e.identity != identity]
            self.save()
        logger.debug(f"State: deleted {identity}")

    def save(self) -> Path:
        """Write state to disk atomically.

        Returns:
            Path where state was saved
        """
        with self._lock:
            self.serial += 1
            self.updated_at = time.time()
            data = {
                'name': self.name,
                'serial': self.serial,
                'updated_at': self.updated_at,
                'resources': [e.to_dict() for e in self.all()],
            }
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(f'.{self.path.name}.tmp')
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        return self.path

    @classmethod
    def load(cls, name: str, path: Optional[Path] = None) -> 'StateStore':
        """Load a store from disk; a missing file yields an empty store.

        Raises:
            ValueError: If the file exists but is not valid state JSON
        """
        store = cls(name, path)
        if not store.path.exists():
            logger.debug(f"No state at {store.path}, starting empty")
            return store

        with open(store.path, encoding='utf-8') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid state file {store.path}: {e}") from e

        try:
            store.serial = data.get('serial', 0)
            store.updated_at = data.get('updated_at')
            store._entries = [StateEntry.from_dict(d) for d in data.get('resources', [])]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid state file {store.path}: malformed entry ({e!r})") from e
        logger.debug(f"Loaded {len(store._entries)} state entries from {store.path}")
        return store
