"""Tests for stack_opr.graph module."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from conftest import chain_templates, make_record
from resources import Ref, ResourceNode, ResourceTemplate
from stack_opr.graph import (
    CYCLIC_DEPENDENCY,
    DUPLICATE_IDENTITY,
    UNRESOLVED_REFERENCE,
    BuildError,
    ResourceGraph,
    build,
    compute_ranks,
    find_cycle,
)


def _template(name, deps=(), refs=()):
    attrs = {f'ref_{i}': Ref(r) for i, r in enumerate(refs)}
    return ResourceTemplate(type='t', name=name, attributes=lambda c, attrs=attrs: dict(attrs), depends_on=tuple(deps))


class TestHelpers:
    """Tests for find_cycle and compute_ranks."""

    def test_find_cycle_none(self):
        assert find_cycle({'a': ['b'], 'b': ['c'], 'c': []}) is None

    def test_find_cycle_path(self):
        cycle = find_cycle({'a': ['b'], 'b': ['c'], 'c': ['a']})
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {'a', 'b', 'c'}

    def test_find_cycle_self_loop(self):
        assert find_cycle({'a': ['a']}) == ['a', 'a']

    def test_compute_ranks(self):
        ranks = compute_ranks({'a': [], 'b': ['a'], 'c': ['a', 'b'], 'd': []})
        assert ranks == {'a': 0, 'b': 1, 'c': 2, 'd': 0}

    def test_compute_ranks_ignores_unknown(self):
        assert compute_ranks({'a': ['elsewhere']}) == {'a': 0}


class TestBuildErrors:
    """Tests for BuildError kinds."""

    def test_cyclic_dependency(self):
        templates = [
            _template('a', refs=['t.c']),
            _template('b', refs=['t.a']),
            _template('c', deps=['t.b']),
        ]
        with pytest.raises(BuildError) as exc_info:
            build(make_record(), templates)
        assert exc_info.value.kind == CYCLIC_DEPENDENCY
        assert ' -> ' in str(exc_info.value)
        assert set(exc_info.value.identities) == {'t.a', 't.b', 't.c'}

    def test_unresolved_reference(self):
        with pytest.raises(BuildError) as exc_info:
            build(make_record(), [_template('a', refs=['t.missing'])])
        assert exc_info.value.kind == UNRESOLVED_REFERENCE
        assert 't.missing' in str(exc_info.value)

    def test_reference_to_absent_node(self):
        templates = [
            ResourceTemplate(type='t', name='gone', attributes=lambda c: {}, present=lambda c: False),
            _template('a', refs=['t.gone']),
        ]
        with pytest.raises(BuildError) as exc_info:
            build(make_record(), templates)
        assert exc_info.value.kind == UNRESOLVED_REFERENCE

    def test_duplicate_identity(self):
        with pytest.raises(BuildError) as exc_info:
            build(make_record(), [_template('a'), _template('a')])
        assert exc_info.value.kind == DUPLICATE_IDENTITY


class TestResourceGraph:
    """Tests for ResourceGraph structure and ordering."""

    def test_chain_ranks_and_order(self):
        graph = build(make_record(), chain_templates(3))
        assert graph.ranks == {'test_item.item1': 0, 'test_item.item2': 1, 'test_item.item3': 2}
        assert [n.identity for n in graph.create_order()] == [
            'test_item.item1', 'test_item.item2', 'test_item.item3',
        ]
        assert [n.identity for n in graph.destroy_order()] == [
            'test_item.item3', 'test_item.item2', 'test_item.item1',
        ]

    def test_edges_and_neighbours(self):
        graph = build(make_record(), chain_templates(3))
        assert graph.edges == frozenset({
            ('test_item.item2', 'test_item.item1'),
            ('test_item.item3', 'test_item.item2'),
        })
        assert graph.dependencies('test_item.item2') == ('test_item.item1',)
        assert graph.dependents('test_item.item2') == ('test_item.item3',)

    def test_ties_broken_by_identity(self):
        graph = ResourceGraph([
            ResourceNode(type='t', name='b'),
            ResourceNode(type='t', name='a'),
            ResourceNode(type='t', name='c', depends_on=('t.a', 't.b')),
        ])
        assert [n.identity for n in graph.create_order()] == ['t.a', 't.b', 't.c']
        assert [n.identity for n in graph.destroy_order()] == ['t.c', 't.a', 't.b']

    def test_create_order_respects_edges(self):
        graph = build(make_record(selected_features=frozenset({'mysql', 'redis'}), compute_mode='ec2'))
        position = {n.identity: i for i, n in enumerate(graph.create_order())}
        for dependent, dependency in graph.edges:
            assert position[dependency] < position[dependent]

    def test_get_node_missing(self):
        with pytest.raises(KeyError):
            ResourceGraph.empty().get_node('t.a')

    def test_empty(self):
        graph = ResourceGraph.empty()
        assert len(graph) == 0
        assert graph.edges == frozenset()


class TestDeterminism:
    """Building twice yields identical graphs."""

    @pytest.mark.parametrize('overrides', [
        {},
        {'selected_features': frozenset({'mysql', 'redis', 'documentdb'})},
        {'compute_mode': 'ec2', 'enable_autoscaling': True, 'environment': 'prod'},
    ])
    def test_build_twice_identical(self, overrides):
        first = build(make_record(**overrides))
        second = build(make_record(**overrides))
        assert first.nodes == second.nodes
        assert first.edges == second.edges
        assert [n.identity for n in first.create_order()] == [n.identity for n in second.create_order()]

    def test_built_graph_is_acyclic(self):
        graph = build(make_record(selected_features=frozenset({'mysql', 'redis', 'documentdb'}),
                                  compute_mode='ec2', enable_autoscaling=True))
        deps = {i: graph.dependencies(i) for i in graph.nodes}
        assert find_cycle(deps) is None
