"""Tests for stack_opr.state module."""

import json
import sys
import threading
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from resources import Ref
from stack_opr.state import (
    APPLIED,
    DESTROYED,
    FAILED,
    AmbiguousStateError,
    StateEntry,
    StateStore,
)


def _entry(identity='aws_vpc.main', **kwargs):
    values = {'external_id': 'vpc-1', 'outputs': {'id': 'vpc-1', 'arn': 'arn:vpc'}}
    values.update(kwargs)
    return StateEntry(identity=identity, **values)


class TestStateEntry:
    """Tests for StateEntry dataclass."""

    def test_defaults(self):
        entry = StateEntry(identity='aws_vpc.main')
        assert entry.status == APPLIED
        assert entry.type == 'aws_vpc'
        assert entry.name == 'main'
        assert entry.error is None

    def test_mark_failed(self):
        entry = _entry().mark_failed('delete refused')
        assert entry.status == FAILED
        assert entry.error == 'delete refused'
        assert entry.external_id == 'vpc-1'

    def test_to_dict_encodes_refs(self):
        entry = _entry('aws_subnet.a', attributes={'vpc_id': Ref('aws_vpc.main')}, depends_on=('aws_vpc.main',))
        d = entry.to_dict()
        assert d['type'] == 'aws_subnet'
        assert d['attributes'] == {'vpc_id': {'$ref': 'aws_vpc.main', 'output': 'id'}}
        assert d['depends_on'] == ['aws_vpc.main']
        assert 'error' not in d

    def test_from_dict_roundtrip(self):
        original = _entry('aws_subnet.a', attributes={'vpc_id': Ref('aws_vpc.main')},
                          depends_on=('aws_vpc.main',), applied_at=1000.0)
        restored = StateEntry.from_dict(json.loads(json.dumps(original.to_dict())))
        assert restored == original


class TestStateStore:
    """Tests for StateStore reads, writes and persistence."""

    def test_put_get(self, store):
        store.put(_entry())
        assert store.get('aws_vpc.main').external_id == 'vpc-1'
        assert store.get('aws_vpc.other') is None
        assert len(store) == 1

    def test_put_replaces(self, store):
        store.put(_entry())
        store.put(_entry(external_id='vpc-2'))
        assert len(store) == 1
        assert store.get('aws_vpc.main').external_id == 'vpc-2'

    def test_delete(self, store):
        store.put(_entry())
        store.delete('aws_vpc.main')
        assert store.get('aws_vpc.main') is None

    def test_all_sorted(self, store):
        store.put(_entry('b.x'))
        store.put(_entry('a.x'))
        assert [e.identity for e in store.all()] == ['a.x', 'b.x']

    def test_lookup(self, store):
        store.put(_entry())
        assert store.lookup(Ref('aws_vpc.main')) == 'vpc-1'
        assert store.lookup(Ref('aws_vpc.main', 'arn')) == 'arn:vpc'

    def test_lookup_missing(self, store):
        store.put(_entry())
        with pytest.raises(KeyError):
            store.lookup(Ref('aws_vpc.main', 'dns_name'))
        with pytest.raises(KeyError):
            store.lookup(Ref('aws_lb.main'))

    def test_lookup_destroyed(self, store):
        store.put(_entry(status=DESTROYED))
        with pytest.raises(KeyError):
            store.lookup(Ref('aws_vpc.main'))

    def test_save_and_load(self, store):
        store.put(_entry())
        store.put(_entry('aws_subnet.a', attributes={'vpc_id': Ref('aws_vpc.main')}))

        loaded = StateStore.load('shop-dev', store.path)
        assert loaded.serial == store.serial
        assert loaded.get('aws_subnet.a').attributes == {'vpc_id': Ref('aws_vpc.main')}

    def test_file_layout(self, store):
        store.put(_entry())
        data = json.loads(store.path.read_text())
        assert data['name'] == 'shop-dev'
        assert data['serial'] == 1
        assert isinstance(data['resources'], list)
        assert 'updated_at' in data

    def test_no_temp_file_left(self, store):
        store.put(_entry())
        assert [p.name for p in store.path.parent.iterdir()] == ['state.json']

    def test_load_missing_is_empty(self, tmp_path):
        store = StateStore.load('shop-dev', tmp_path / 'none' / 'state.json')
        assert len(store) == 0

    def test_load_invalid(self, tmp_path):
        path = tmp_path / 'state.json'
        path.write_text('{not json')
        with pytest.raises(ValueError, match='Invalid state file'):
            StateStore.load('shop-dev', path)

    @pytest.mark.parametrize('content', [
        {'name': 'shop-dev', 'resources': [{'external_id': 'vpc-1'}]},
        {'name': 'shop-dev', 'resources': ['aws_vpc.main']},
        ['not', 'a', 'mapping'],
    ])
    def test_load_malformed_entries(self, tmp_path, content):
        path = tmp_path / 'state.json'
        path.write_text(json.dumps(content))
        with pytest.raises(ValueError, match='Invalid state file'):
            StateStore.load('shop-dev', path)

    def test_default_path_uses_state_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv('STACKDRIVER_STATE_DIR', str(tmp_path))
        assert StateStore('shop-dev').path == tmp_path / 'shop-dev' / 'state.json'

    def test_duplicates_survive_load(self, tmp_path):
        path = tmp_path / 'state.json'
        path.write_text(json.dumps({
            'name': 'shop-dev',
            'serial': 3,
            'resources': [_entry().to_dict(), _entry(external_id='vpc-9').to_dict()],
        }))
        store = StateStore.load('shop-dev', path)
        assert len(store.find('aws_vpc.main')) == 2
        with pytest.raises(AmbiguousStateError):
            store.get('aws_vpc.main')

    def test_concurrent_puts(self, store):
        def _put(i):
            store.put(_entry(f'test_item.item{i}', external_id=f'id-{i}'))

        threads = [threading.Thread(target=_put, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 20
        loaded = StateStore.load('shop-dev', store.path)
        assert len(loaded) == 20
