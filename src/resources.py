"""Resource model for stack orchestration.

A ResourceTemplate describes one provisionable unit in terms of the
ConfigurationRecord. Rendering a template yields a ResourceNode (present)
or None (absent). Attributes that need another resource's output hold a
Ref instead of a value; refs are resolved through the state store once the
referenced resource has been applied, so nodes stay immutable and
serializable.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Optional, Union

from config import ConfigurationRecord

REF_KEY = '$ref'


@dataclass(frozen=True)
class Ref:
    """Symbolic reference to an output of another resource.

    Attributes:
        identity: Identity of the referenced resource ('aws_vpc.main')
        output: Output name ('id', 'arn', 'name', ...)
    """
    identity: str
    output: str = 'id'

    def to_dict(self) -> dict:
        return {REF_KEY: self.identity, 'output': self.output}

    def __str__(self) -> str:
        return f'${{{self.identity}.{self.output}}}'


def identity_of(resource_type: str, name: str) -> str:
    """Build a resource identity ('aws_vpc' + 'main' -> 'aws_vpc.main')."""
    return f'{resource_type}.{name}'


def split_identity(identity: str) -> tuple[str, str]:
    """Split an identity into (type, name)."""
    resource_type, _, name = identity.partition('.')
    if not name:
        raise ValueError(f"Invalid resource identity: '{identity}'")
    return resource_type, name


def iter_refs(value: Any) -> Iterator[Ref]:
    """Yield every Ref nested anywhere inside value."""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_refs(item)


def encode_attributes(value: Any) -> Any:
    """Convert attributes to a JSON-compatible form (Refs become markers)."""
    if isinstance(value, Ref):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {str(k): encode_attributes(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_attributes(v) for v in value]
    return value


def decode_attributes(value: Any) -> Any:
    """Inverse of encode_attributes."""
    if isinstance(value, dict):
        if set(value) == {REF_KEY, 'output'}:
            return Ref(identity=value[REF_KEY], output=value['output'])
        return {k: decode_attributes(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_attributes(v) for v in value]
    return value


def resolve_attributes(value: Any, lookup: Callable[[Ref], Any]) -> Any:
    """Replace every Ref with its concrete value.

    Args:
        value: Attribute structure possibly containing Refs
        lookup: Callable returning the concrete value for a Ref; expected
            to raise KeyError when the value is not known yet

    Returns:
        Structure with the same shape and no Refs
    """
    if isinstance(value, Ref):
        return lookup(value)
    if isinstance(value, Mapping):
        return {k: resolve_attributes(v, lookup) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_attributes(v, lookup) for v in value]
    return value


@dataclass(frozen=True)
class ResourceNode:
    """A present resource in one build of the graph.

    Attributes:
        type: Resource type ('aws_vpc')
        name: Logical name, unique per type ('main')
        attributes: Desired attributes (may contain Refs)
        depends_on: Explicit dependencies beyond those implied by Refs
    """
    type: str
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()

    @property
    def identity(self) -> str:
        return identity_of(self.type, self.name)

    @property
    def references(self) -> tuple[str, ...]:
        """Identities referenced from attributes (sorted, unique)."""
        return tuple(sorted({ref.identity for ref in iter_refs(self.attributes)}))

    @property
    def dependencies(self) -> tuple[str, ...]:
        """All identities this node depends on (explicit + referenced)."""
        return tuple(sorted(set(self.depends_on) | set(self.references)))

    def encoded_attributes(self) -> dict:
        return encode_attributes(self.attributes)

    def __repr__(self) -> str:
        return f"ResourceNode({self.identity})"


def always(_config: ConfigurationRecord) -> bool:
    return True


@dataclass(frozen=True)
class ResourceTemplate:
    """Definition of a resource as a function of the configuration.

    Attributes:
        type: Resource type
        name: Logical name
        attributes: Callable building the attribute mapping from the record
        present: Presence predicate; the node is elided when it returns False
        depends_on: Explicit dependencies (identities), or a callable
            returning them for the record
        description: Human readable summary for plan output
    """
    type: str
    name: str
    attributes: Callable[[ConfigurationRecord], dict]
    present: Callable[[ConfigurationRecord], bool] = always
    depends_on: Union[tuple[str, ...], Callable[[ConfigurationRecord], tuple]] = ()
    description: str = ''

    @property
    def identity(self) -> str:
        return identity_of(self.type, self.name)

    def render(self, config: ConfigurationRecord) -> Optional[ResourceNode]:
        """Evaluate the template against a record.

        Returns:
            ResourceNode if the presence predicate holds, else None
        """
        if not self.present(config):
            return None
        depends_on = self.depends_on(config) if callable(self.depends_on) else self.depends_on
        return ResourceNode(
            type=self.type,
            name=self.name,
            attributes=self.attributes(config),
            depends_on=tuple(sorted(depends_on)),
        )
