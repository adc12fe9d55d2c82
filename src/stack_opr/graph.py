"""Resource graph builder.

Renders the stack templates against a ConfigurationRecord and wires the
dependency edges implied by Refs and explicit depends_on. Computes traversal
orderings for create (dependencies first) and destroy (dependents first).
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Optional

from catalog import STACK_TEMPLATES
from config import ConfigurationRecord
from resources import ResourceNode, ResourceTemplate

logger = logging.getLogger(__name__)

DUPLICATE_IDENTITY = 'DuplicateIdentity'
UNRESOLVED_REFERENCE = 'UnresolvedReference'
CYCLIC_DEPENDENCY = 'CyclicDependency'


class BuildError(Exception):
    """Raised when the templates cannot form a valid graph.

    Attributes:
        kind: DuplicateIdentity, UnresolvedReference or CyclicDependency
        identities: Identities involved (the cycle path for CyclicDependency)
    """

    def __init__(self, kind: str, message: str, identities: Iterable[str] = ()):
        self.kind = kind
        self.identities = tuple(identities)
        super().__init__(f"{kind}: {message}")


def find_cycle(deps: Mapping[str, Iterable[str]]) -> Optional[list[str]]:
    """Return one dependency cycle as a closed path, or None if acyclic.

    Args:
        deps: Mapping of identity -> identities it depends on. Targets that
            are not keys are treated as leaves.
    """
    visited: set[str] = set()
    stack: list[str] = []
    in_stack: set[str] = set()

    def _visit(name: str) -> Optional[list[str]]:
        if name in in_stack:
            return stack[stack.index(name):] + [name]
        if name in visited:
            return None
        visited.add(name)
        in_stack.add(name)
        stack.append(name)
        for dep in sorted(deps.get(name, ())):
            cycle = _visit(dep)
            if cycle:
                return cycle
        stack.pop()
        in_stack.discard(name)
        return None

    for name in sorted(deps):
        cycle = _visit(name)
        if cycle:
            return cycle
    return None


def compute_ranks(deps: Mapping[str, Iterable[str]]) -> dict[str, int]:
    """Topological level of every key: 0 for nodes without dependencies,
    otherwise one more than the deepest dependency.

    Dependencies that are not keys are ignored. The mapping must be acyclic.
    """
    ranks: dict[str, int] = {}

    def _rank(name: str) -> int:
        if name not in ranks:
            known = [d for d in deps[name] if d in deps]
            ranks[name] = 1 + max((_rank(d) for d in known), default=-1)
        return ranks[name]

    for name in sorted(deps):
        _rank(name)
    return ranks


class ResourceGraph:
    """Immutable DAG of present resources.

    Provides ordered traversal for lifecycle operations:
    - create_order(): dependencies before dependents
    - destroy_order(): dependents before dependencies

    Ties within a rank are broken by identity, so the order is stable.
    """

    def __init__(self, nodes: Iterable[ResourceNode]):
        self._nodes: dict[str, ResourceNode] = {}
        for node in nodes:
            if node.identity in self._nodes:
                raise BuildError(
                    DUPLICATE_IDENTITY,
                    f"'{node.identity}' is defined more than once",
                    [node.identity],
                )
            self._nodes[node.identity] = node
        self._nodes = dict(sorted(self._nodes.items()))
        self._validate()
        self._ranks = compute_ranks(self._deps())

    @classmethod
    def empty(cls) -> 'ResourceGraph':
        """Graph with no nodes (desired state of a full destroy)."""
        return cls([])

    def _deps(self) -> dict[str, tuple[str, ...]]:
        return {identity: node.dependencies for identity, node in self._nodes.items()}

    def _validate(self) -> None:
        for identity, node in self._nodes.items():
            for dep in node.dependencies:
                if dep not in self._nodes:
                    raise BuildError(
                        UNRESOLVED_REFERENCE,
                        f"'{identity}' depends on '{dep}' which is not in the graph",
                        [identity, dep],
                    )
        cycle = find_cycle(self._deps())
        if cycle:
            raise BuildError(CYCLIC_DEPENDENCY, ' -> '.join(cycle), cycle)

    @property
    def nodes(self) -> dict[str, ResourceNode]:
        return dict(self._nodes)

    @property
    def edges(self) -> frozenset[tuple[str, str]]:
        """All (dependent, dependency) pairs."""
        return frozenset(
            (identity, dep)
            for identity, node in self._nodes.items()
            for dep in node.dependencies
        )

    @property
    def ranks(self) -> dict[str, int]:
        return dict(self._ranks)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, identity: str) -> bool:
        return identity in self._nodes

    def get_node(self, identity: str) -> ResourceNode:
        """Get a node by identity.

        Raises:
            KeyError: If identity not in graph
        """
        return self._nodes[identity]

    def dependencies(self, identity: str) -> tuple[str, ...]:
        return self._nodes[identity].dependencies

    def dependents(self, identity: str) -> tuple[str, ...]:
        return tuple(sorted(i for i, n in self._nodes.items() if identity in n.dependencies))

    def create_order(self) -> list[ResourceNode]:
        """Nodes by ascending rank, then identity."""
        order = sorted(self._nodes, key=lambda i: (self._ranks[i], i))
        return [self._nodes[i] for i in order]

    def destroy_order(self) -> list[ResourceNode]:
        """Nodes by descending rank, then identity."""
        order = sorted(self._nodes, key=lambda i: (-self._ranks[i], i))
        return [self._nodes[i] for i in order]

    def __repr__(self) -> str:
        return f"ResourceGraph({len(self._nodes)} nodes, {len(self.edges)} edges)"


def build(config: ConfigurationRecord, templates: Iterable[ResourceTemplate] = STACK_TEMPLATES) -> ResourceGraph:
    """Build the resource graph for a configuration record.

    Args:
        config: Validated configuration record
        templates: Resource templates (defaults to the application stack)

    Returns:
        ResourceGraph of the present nodes

    Raises:
        BuildError: On duplicate identities, unresolved references or cycles
    """
    nodes = []
    for template in templates:
        node = template.render(config)
        if node is None:
            logger.debug(f"Elided {template.identity} (not present for this configuration)")
            continue
        nodes.append(node)
    graph = ResourceGraph(nodes)
    logger.debug(f"Built {graph!r} for {config.resource_prefix}")
    return graph
