"""Event replay, log persistence and the JSON-RPC event source"""

import random

import pytest
import requests
from eth_utils import function_signature_to_4byte_selector

from config import ConfigError, TreeConfig
from merkle import FieldElement, IncrementalMerkleTree, hash2
from mirror import (
    COMMIT_TOPIC,
    EventMirror,
    EventSourceError,
    InsertionEvent,
    JsonRpcEventSource,
    MirrorDivergence,
    MirrorError,
    load_event_log,
    order_events,
    rebuild,
    save_event_log,
)
from voting_session import VotingSession

CONTRACT = "0x" + "ab" * 20


def _events(leaves):
    return [InsertionEvent(commitment=leaf, leaf_index=i, timestamp=1000 + i)
            for i, leaf in enumerate(leaves)]


class TestRebuild:

    def test_rebuild_matches_authoritative_at_every_step(self, small_tree_config):
        authoritative = IncrementalMerkleTree(small_tree_config.levels)
        events = []
        for i in range(12):
            leaf = hash2(i, 77)
            index = authoritative.insert(leaf)
            events.append(InsertionEvent(leaf, index))
            assert rebuild(events, small_tree_config).current_root() == authoritative.current_root()

    def test_depth_20_third_leaf_path_matches_rebuild(self):
        leaves = [hash2(1, 2), hash2(3, 4), hash2(5, 6)]
        authoritative = IncrementalMerkleTree(20)
        for leaf in leaves:
            authoritative.insert(leaf)

        path = authoritative.path_for(2)
        assert path.levels == 20
        assert path.leaf == leaves[2]
        assert path.compute_root() == authoritative.current_root()

        mirrored = rebuild([InsertionEvent(leaf, i) for i, leaf in enumerate(leaves)], TreeConfig())
        assert mirrored.path_for(2) == path

    def test_order_independent(self, small_tree_config):
        events = _events(range(1, 10))
        shuffled = list(events)
        random.Random(7).shuffle(shuffled)
        assert rebuild(shuffled, small_tree_config).current_root() == \
            rebuild(events, small_tree_config).current_root()

    def test_redelivered_event_is_dropped(self, small_tree_config):
        events = _events([1, 2, 3])
        with_copy = events + [InsertionEvent(2, 1, 1001)]
        assert rebuild(with_copy, small_tree_config).current_root() == \
            rebuild(events, small_tree_config).current_root()

    def test_conflicting_event_diverges(self):
        events = _events([1, 2, 3]) + [InsertionEvent(9, 1)]
        with pytest.raises(MirrorDivergence):
            order_events(events)

    def test_gap_diverges(self, small_tree_config):
        events = _events([1, 2, 3])
        del events[1]
        with pytest.raises(MirrorDivergence):
            rebuild(events, small_tree_config)

    def test_accepts_dict_events(self, small_tree_config):
        events = [{'commitment': '0x01', 'leafIndex': 0, 'timestamp': 5}]
        tree = rebuild(events, small_tree_config)
        assert tree.leaves == (1,)

    def test_empty_log(self, small_tree_config):
        tree = rebuild([], small_tree_config)
        assert tree.current_root() == tree.zeros[small_tree_config.levels]


class TestInsertionEvent:

    def test_dict_layout(self):
        event = InsertionEvent(commitment=1, leaf_index=3, timestamp=99)
        assert event.to_dict() == {
            'commitment': FieldElement(1).to_hex(),
            'leafIndex': 3,
            'timestamp': 99,
        }
        assert InsertionEvent.from_dict(event.to_dict()) == event

    def test_rejects_negative_index(self):
        with pytest.raises(ValueError):
            InsertionEvent(commitment=1, leaf_index=-1)


class TestEventLogFile:

    def test_save_and_load(self, tmp_path, small_tree_config):
        path = tmp_path / "events.json"
        events = _events([4, 5, 6])
        save_event_log(reversed(events), path, small_tree_config)
        assert load_event_log(path, small_tree_config) == events

    def test_fingerprint_mismatch_refused(self, tmp_path, small_tree_config):
        path = tmp_path / "events.json"
        save_event_log(_events([4]), path, small_tree_config)
        with pytest.raises(ConfigError):
            load_event_log(path, TreeConfig(levels=5, root_history_size=3))


class TestEventMirror:

    def test_sync_against_session(self, small_tree_config):
        session = VotingSession(small_tree_config)
        commitments = [hash2(i, 1) for i in range(5)]
        for c in commitments:
            session.register(c)

        mirror = EventMirror(session, small_tree_config)
        assert mirror.sync() == session.current_root()

        path = mirror.path_for_commitment(commitments[3])
        assert path == session.path_for(3)
        assert len(mirror.event_log()) == 5

    def test_streaming_source(self, small_tree_config):
        session = VotingSession(small_tree_config)
        for i in range(3):
            session.register(hash2(i, 2))

        class StreamingSource:
            def fetch_events(self):
                yield from reversed(session.event_log())

            def get_last_root(self):
                return session.current_root()

            def is_known_root(self, root):
                return session.is_known_root(root)

        mirror = EventMirror(StreamingSource(), small_tree_config)
        assert mirror.sync() == session.current_root()
        assert len(mirror.tree) == 3
        assert mirror.event_log() == session.event_log()

    def test_unsynced_mirror(self):
        with pytest.raises(MirrorError):
            EventMirror(VotingSession(TreeConfig(levels=4))).current_root()

    def test_divergent_source(self, small_tree_config):
        class LyingSource:
            def fetch_events(self):
                return _events([1, 2])

            def get_last_root(self):
                return 12345

            def is_known_root(self, root):
                return False

        with pytest.raises(MirrorDivergence):
            EventMirror(LyingSource(), small_tree_config).sync()

    def test_lagging_source_within_history(self, small_tree_config):
        session = VotingSession(small_tree_config)
        session.register(1)
        stale_events = session.event_log()
        session.register(2)

        class RacingSource:
            def fetch_events(self):
                return stale_events

            def get_last_root(self):
                return session.current_root()

            def is_known_root(self, root):
                return session.is_known_root(root)

        mirror = EventMirror(RacingSource(), small_tree_config)
        assert mirror.sync() == rebuild(stale_events, small_tree_config).current_root()


class FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.body


class FakeSession:
    """Answers JSON-RPC calls from canned handlers keyed by method"""

    def __init__(self, handlers):
        self.handlers = handlers
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append(json)
        handler = self.handlers[json['method']]
        result = handler(json['params'])
        if isinstance(result, FakeResponse):
            return result
        return FakeResponse({'jsonrpc': '2.0', 'id': json['id'], 'result': result})


def _word(value: int) -> str:
    return value.to_bytes(32, 'big').hex()


def _commit_log(commitment: int, index: int, timestamp: int):
    return {
        'topics': [COMMIT_TOPIC, '0x' + _word(commitment)],
        'data': '0x' + _word(index) + _word(timestamp),
    }


class TestJsonRpcEventSource:

    def test_rejects_bad_address(self):
        with pytest.raises(ValueError):
            JsonRpcEventSource("http://localhost:8545", "0x1234")

    def test_fetch_events_decodes_logs(self):
        session = FakeSession({'eth_getLogs': lambda params: [
            _commit_log(7, 1, 1700000001),
            _commit_log(5, 0, 1700000000),
        ]})
        source = JsonRpcEventSource("http://rpc", CONTRACT, from_block=16, session=session)

        events = source.fetch_events()
        assert events == [InsertionEvent(7, 1, 1700000001), InsertionEvent(5, 0, 1700000000)]

        params = session.requests[0]['params'][0]
        assert params['address'] == CONTRACT
        assert params['fromBlock'] == '0x10'
        assert params['topics'] == [COMMIT_TOPIC]

    def test_contract_calls(self):
        root = hash2(1, 2)
        calls = []

        def eth_call(params):
            data = params[0]['data']
            calls.append(data)
            if data.startswith('0x' + function_signature_to_4byte_selector('getLastRoot()').hex()):
                return '0x' + _word(root)
            return '0x' + _word(1)

        source = JsonRpcEventSource("http://rpc", CONTRACT, session=FakeSession({'eth_call': eth_call}))
        assert source.get_last_root() == root
        assert source.is_known_root(root) is True
        assert source.is_spent(3) is True

        selector = function_signature_to_4byte_selector('nullifiers(bytes32)').hex()
        assert calls[-1] == '0x' + selector + _word(3)

    def test_rpc_error_is_retryable(self):
        session = FakeSession({'eth_getLogs': lambda params: FakeResponse(
            {'jsonrpc': '2.0', 'id': 1, 'error': {'code': -32000, 'message': 'boom'}})})
        source = JsonRpcEventSource("http://rpc", CONTRACT, session=session)
        with pytest.raises(EventSourceError) as exc_info:
            source.fetch_events()
        assert exc_info.value.retryable

    def test_http_error(self):
        session = FakeSession({'eth_getLogs': lambda params: FakeResponse({}, status=502)})
        with pytest.raises(EventSourceError):
            JsonRpcEventSource("http://rpc", CONTRACT, session=session).fetch_events()

    def test_mirror_over_rpc(self, small_tree_config):
        leaves = [hash2(i, 3) for i in range(3)]
        root = rebuild(_events(leaves), small_tree_config).current_root()
        session = FakeSession({
            'eth_getLogs': lambda params: [_commit_log(leaf, i, 0) for i, leaf in enumerate(leaves)],
            'eth_call': lambda params: '0x' + _word(root),
        })
        source = JsonRpcEventSource("http://rpc", CONTRACT, session=session)
        assert EventMirror(source, small_tree_config).sync() == root
