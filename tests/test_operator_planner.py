"""Tests for stack_opr.planner module."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from conftest import chain_templates, make_record
from resources import Ref
from stack_opr.graph import ResourceGraph, build
from stack_opr.planner import (
    AMBIGUOUS_DIFF,
    CREATE,
    CYCLIC_STATE,
    DESTROY,
    NO_OP,
    UPDATE,
    PlanError,
    plan,
)
from stack_opr.state import DESTROYED, StateEntry


def _applied(graph):
    """State entries matching every node of graph exactly."""
    return [
        StateEntry(
            identity=node.identity,
            attributes=dict(node.attributes),
            depends_on=node.dependencies,
            external_id=f'id-{node.name}',
        )
        for node in graph.nodes.values()
    ]


class TestPlanActions:
    """Tests for create/update/destroy/no-op classification."""

    def test_empty_state_all_create(self):
        graph = build(make_record(), chain_templates(3))
        changeset = plan(graph, [])
        assert [i.action for i in changeset] == [CREATE, CREATE, CREATE]
        assert [i.identity for i in changeset] == ['test_item.item1', 'test_item.item2', 'test_item.item3']
        assert changeset.has_changes

    def test_matching_state_all_no_op(self):
        graph = build(make_record(), chain_templates(3))
        changeset = plan(graph, _applied(graph))
        assert {i.action for i in changeset} == {NO_OP}
        assert not changeset.has_changes
        assert changeset.waves() == []

    def test_changed_attributes_update(self):
        graph = build(make_record(), chain_templates(2))
        entries = _applied(graph)
        entries[0] = StateEntry(identity=entries[0].identity, attributes={'index': 99},
                                external_id='id-item1')
        changeset = plan(graph, entries)
        item = changeset.items[0]
        assert item.action == UPDATE
        assert item.changed == ('index',)
        assert item.prior.external_id == 'id-item1'

    def test_failed_entry_always_update(self):
        graph = build(make_record(), chain_templates(1))
        entries = [e.mark_failed('rollback failed') for e in _applied(graph)]
        changeset = plan(graph, entries)
        assert changeset.items[0].action == UPDATE
        assert changeset.items[0].changed == ()

    def test_destroyed_entry_counts_as_absent(self):
        graph = build(make_record(), chain_templates(1))
        entry = StateEntry(identity='test_item.item1', status=DESTROYED)
        assert plan(graph, [entry]).items[0].action == CREATE
        assert len(plan(ResourceGraph.empty(), [entry])) == 0

    def test_orphan_entries_destroy(self):
        graph = build(make_record(), chain_templates(3))
        changeset = plan(ResourceGraph.empty(), _applied(graph))
        assert [i.action for i in changeset] == [DESTROY] * 3
        assert all(i.node is None for i in changeset)

    def test_dependent_destroyed_before_dependency(self):
        graph = build(make_record(), chain_templates(3))
        order = [i.identity for i in plan(ResourceGraph.empty(), _applied(graph))]
        assert order.index('test_item.item2') < order.index('test_item.item1')
        assert order == ['test_item.item3', 'test_item.item2', 'test_item.item1']

    def test_destroys_after_creates(self):
        old = build(make_record(selected_features=frozenset({'redis'})))
        new = build(make_record(selected_features=frozenset({'mysql'})))
        changeset = plan(new, _applied(old))
        actions = [i.action for i in changeset if i.action != NO_OP]
        first_destroy = actions.index(DESTROY)
        assert CREATE not in actions[first_destroy:]
        destroyed = {i.identity for i in changeset.by_action(DESTROY)}
        assert 'aws_elasticache_cluster.redis' in destroyed
        assert 'aws_instance.bastion' not in destroyed

    def test_summary(self):
        graph = build(make_record(), chain_templates(2))
        summary = plan(graph, []).summary
        assert summary == {'create': 2, 'update': 0, 'destroy': 0, 'no-op': 0}


class TestWaves:
    """Tests for ChangeSet.waves grouping."""

    def test_grouped_by_phase_and_rank(self):
        old = build(make_record(), chain_templates(2, 'old_item'))
        new = build(make_record(), chain_templates(2))
        waves = plan(new, _applied(old)).waves()
        assert [(w.phase, w.rank) for w in waves] == [
            ('apply', 0), ('apply', 1), ('destroy', 1), ('destroy', 0),
        ]
        assert [i.identity for i in waves[2].items] == ['old_item.item2']

    def test_same_rank_shares_wave(self):
        graph = build(make_record())
        waves = plan(graph, []).waves()
        first = waves[0]
        assert first.rank == 0
        assert len(first.items) > 1
        assert 'aws_vpc.main' in {i.identity for i in first.items}


class TestPlanErrors:
    """Tests for PlanError kinds."""

    def test_ambiguous_diff(self):
        graph = build(make_record(), chain_templates(1))
        entries = _applied(graph) * 2
        with pytest.raises(PlanError) as exc_info:
            plan(graph, entries)
        assert exc_info.value.kind == AMBIGUOUS_DIFF
        assert exc_info.value.identities == ('test_item.item1',)

    def test_cyclic_state(self):
        entries = [
            StateEntry(identity='x.a', depends_on=('x.b',), external_id='1'),
            StateEntry(identity='x.b', depends_on=('x.a',), external_id='2'),
        ]
        with pytest.raises(PlanError) as exc_info:
            plan(ResourceGraph.empty(), entries)
        assert exc_info.value.kind == CYCLIC_STATE


class TestStateAgnostic:
    """plan accepts a StateStore as well as entry lists."""

    def test_store(self, store):
        graph = build(make_record(), chain_templates(2))
        for entry in _applied(graph):
            store.put(entry)
        assert not plan(graph, store).has_changes

    def test_ref_attributes_compare_symbolically(self):
        graph = build(make_record(), chain_templates(2))
        entries = _applied(graph)
        assert entries[1].attributes['parent_id'] == Ref('test_item.item1')
        assert not plan(graph, entries).has_changes
