"""Planner: diff the desired graph against stored state.

Produces a ChangeSet in execution order. Creates, updates and no-ops run
first by ascending rank; destroys follow by descending rank so dependents
go before what they depend on.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from resources import ResourceNode, encode_attributes
from stack_opr.graph import ResourceGraph, compute_ranks, find_cycle
from stack_opr.state import DESTROYED, FAILED, StateEntry, StateStore

logger = logging.getLogger(__name__)

CREATE = 'create'
UPDATE = 'update'
DESTROY = 'destroy'
NO_OP = 'no-op'
ACTIONS = (CREATE, UPDATE, DESTROY, NO_OP)

AMBIGUOUS_DIFF = 'AmbiguousDiff'
CYCLIC_STATE = 'CyclicState'

APPLY_PHASE = 'apply'
DESTROY_PHASE = 'destroy'


class PlanError(Exception):
    """Raised when state cannot be reconciled without operator intervention.

    Attributes:
        kind: AmbiguousDiff or CyclicState
        identities: Identities involved
    """

    def __init__(self, kind: str, message: str, identities: Iterable[str] = ()):
        self.kind = kind
        self.identities = tuple(identities)
        super().__init__(f"{kind}: {message}")


@dataclass(frozen=True)
class ChangeSetItem:
    """One planned action.

    Attributes:
        identity: Resource identity
        action: create, update, destroy or no-op
        rank: Topological rank in the combined graph
        node: Desired node (None for destroy)
        prior: Stored entry (None for create)
        changed: Attribute keys that differ (update only)
    """
    identity: str
    action: str
    rank: int
    node: Optional[ResourceNode] = None
    prior: Optional[StateEntry] = None
    changed: tuple[str, ...] = ()

    @property
    def phase(self) -> str:
        return DESTROY_PHASE if self.action == DESTROY else APPLY_PHASE

    def to_dict(self) -> dict:
        d = {'identity': self.identity, 'action': self.action, 'rank': self.rank}
        if self.changed:
            d['changed'] = list(self.changed)
        return d

    def __str__(self) -> str:
        suffix = f" ({', '.join(self.changed)})" if self.changed else ''
        return f"{self.action:<8} {self.identity}{suffix}"


@dataclass(frozen=True)
class Wave:
    """Items that may run concurrently: same phase and rank."""
    phase: str
    rank: int
    items: tuple[ChangeSetItem, ...]


@dataclass(frozen=True)
class ChangeSet:
    """Ordered plan output."""
    items: tuple[ChangeSetItem, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def by_action(self, action: str) -> list[ChangeSetItem]:
        return [i for i in self.items if i.action == action]

    @property
    def summary(self) -> dict[str, int]:
        counts = {action: 0 for action in ACTIONS}
        for item in self.items:
            counts[item.action] += 1
        return counts

    @property
    def has_changes(self) -> bool:
        return any(i.action != NO_OP for i in self.items)

    def waves(self) -> list[Wave]:
        """Executable items grouped by (phase, rank), in execution order.

        No-op items are left out.
        """
        waves: list[Wave] = []
        current: list[ChangeSetItem] = []
        key = None
        for item in self.items:
            if item.action == NO_OP:
                continue
            item_key = (item.phase, item.rank)
            if current and item_key != key:
                waves.append(Wave(key[0], key[1], tuple(current)))
                current = []
            key = item_key
            current.append(item)
        if current:
            waves.append(Wave(key[0], key[1], tuple(current)))
        return waves

    def to_dict(self) -> dict:
        return {
            'summary': self.summary,
            'items': [i.to_dict() for i in self.items],
        }


def _changed_keys(desired: dict, stored: dict) -> tuple[str, ...]:
    keys = set(desired) | set(stored)
    return tuple(sorted(k for k in keys if desired.get(k) != stored.get(k)))


def _index_entries(entries: Iterable[StateEntry]) -> dict[str, StateEntry]:
    """Map identity -> entry, ignoring destroyed entries.

    Raises:
        PlanError: If an identity has more than one live entry
    """
    grouped: dict[str, list[StateEntry]] = defaultdict(list)
    for entry in entries:
        if entry.status != DESTROYED:
            grouped[entry.identity].append(entry)
    duplicates = sorted(i for i, group in grouped.items() if len(group) > 1)
    if duplicates:
        raise PlanError(
            AMBIGUOUS_DIFF,
            f"multiple state entries for {', '.join(duplicates)}",
            duplicates,
        )
    return {identity: group[0] for identity, group in grouped.items()}


def plan(desired: ResourceGraph, current: Union[StateStore, Iterable[StateEntry]]) -> ChangeSet:
    """Compute the change-set that moves current state to the desired graph.

    Args:
        desired: Graph built from the configuration record
        current: State store, or any iterable of state entries

    Returns:
        ChangeSet in execution order

    Raises:
        PlanError: AmbiguousDiff on duplicate entries, CyclicState when the
            stored dependencies of entries to destroy form a cycle
    """
    entries = current.all() if isinstance(current, StateStore) else list(current)
    stored = _index_entries(entries)
    nodes = desired.nodes

    deps: dict[str, tuple[str, ...]] = {i: n.dependencies for i, n in nodes.items()}
    orphans = sorted(set(stored) - set(nodes))
    for identity in orphans:
        deps[identity] = stored[identity].depends_on

    cycle = find_cycle({i: deps[i] for i in orphans})
    if cycle:
        raise PlanError(CYCLIC_STATE, ' -> '.join(cycle), cycle)
    ranks = compute_ranks(deps)

    forward: list[ChangeSetItem] = []
    for identity, node in nodes.items():
        prior = stored.get(identity)
        if prior is None:
            forward.append(ChangeSetItem(identity, CREATE, ranks[identity], node=node))
            continue
        changed = _changed_keys(node.encoded_attributes(), encode_attributes(prior.attributes))
        if prior.status == FAILED or changed:
            forward.append(ChangeSetItem(identity, UPDATE, ranks[identity], node=node, prior=prior,
                                         changed=changed))
        else:
            forward.append(ChangeSetItem(identity, NO_OP, ranks[identity], node=node, prior=prior))

    destroys = [
        ChangeSetItem(identity, DESTROY, ranks[identity], prior=stored[identity])
        for identity in orphans
    ]

    forward.sort(key=lambda i: (i.rank, i.identity))
    destroys.sort(key=lambda i: (-i.rank, i.identity))
    changeset = ChangeSet(tuple(forward + destroys))
    logger.debug(f"Plan: {changeset.summary}")
    return changeset
