"""
Off-chain mirror of the registration accumulator.

The mirror never trusts incremental state: every sync replays the complete
insertion event log into a fresh IncrementalMerkleTree and checks the result
against the authoritative root before serving membership paths from it.
"""

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import requests
from eth_utils import (
    decode_hex,
    encode_hex,
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
    is_address,
)

from config import ConfigError, TreeConfig
from merkle import FieldElement, IncrementalMerkleTree, MembershipPath, to_field

logger = logging.getLogger(__name__)

COMMIT_EVENT_SIGNATURE = "Commit(bytes32,uint32,uint256)"
COMMIT_TOPIC = encode_hex(event_signature_to_log_topic(COMMIT_EVENT_SIGNATURE))

EVENT_LOG_FORMAT = "accumulator-event-log/1"


class MirrorError(Exception):
    """Base exception for mirror operations"""
    retryable = False


class MirrorDivergence(MirrorError):
    """Replayed state disagrees with the authoritative accumulator"""
    pass


class EventSourceError(MirrorError):
    """Event source could not be reached or returned an error"""
    retryable = True


# ============================================================================
# INSERTION EVENTS
# ============================================================================


@dataclass(frozen=True)
class InsertionEvent:
    commitment: FieldElement
    leaf_index: int
    timestamp: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'commitment', to_field(self.commitment))
        if isinstance(self.leaf_index, bool) or not isinstance(self.leaf_index, int):
            raise TypeError(f"leaf_index must be an int, got {type(self.leaf_index).__name__}")
        if self.leaf_index < 0:
            raise ValueError(f"leaf_index must be non-negative, got {self.leaf_index}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InsertionEvent':
        return cls(
            commitment=to_field(data['commitment']),
            leaf_index=int(data['leafIndex']),
            timestamp=int(data.get('timestamp', 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'commitment': self.commitment.to_hex(),
            'leafIndex': self.leaf_index,
            'timestamp': self.timestamp,
        }


def order_events(events: Iterable[Union[InsertionEvent, Dict[str, Any]]]) -> List[InsertionEvent]:
    """
    Sort events by leaf index and drop redelivered copies.

    A repeated index carrying the same commitment is a redelivery and is
    dropped; a repeated index with a different commitment, or any gap in
    the index sequence, raises MirrorDivergence.
    """
    by_index: Dict[int, InsertionEvent] = {}
    for event in events:
        if not isinstance(event, InsertionEvent):
            event = InsertionEvent.from_dict(event)
        seen = by_index.get(event.leaf_index)
        if seen is None:
            by_index[event.leaf_index] = event
        elif seen.commitment != event.commitment:
            raise MirrorDivergence(
                f"Conflicting commitments at leaf index {event.leaf_index}: "
                f"{seen.commitment.to_hex()} vs {event.commitment.to_hex()}")
        else:
            logger.debug(f"Dropping redelivered event for leaf index {event.leaf_index}")

    ordered = [by_index[i] for i in sorted(by_index)]
    for expected, event in enumerate(ordered):
        if event.leaf_index != expected:
            raise MirrorDivergence(
                f"Event log has a gap: expected leaf index {expected}, got {event.leaf_index}")
    return ordered


def rebuild(events: Iterable[Union[InsertionEvent, Dict[str, Any]]],
            tree_config: Optional[TreeConfig] = None) -> IncrementalMerkleTree:
    """Replay the full event log into a fresh accumulator"""
    tree_config = tree_config or TreeConfig()
    tree = IncrementalMerkleTree(tree_config.levels, tree_config.zero_value)
    for event in order_events(events):
        tree.insert(event.commitment)
    logger.debug(f"Rebuilt tree from {len(tree)} events, root {tree.current_root()}")
    return tree


# ============================================================================
# EVENT LOG PERSISTENCE
# ============================================================================


def save_event_log(events: Iterable[InsertionEvent], filepath: Path,
                   tree_config: Optional[TreeConfig] = None):
    tree_config = tree_config or TreeConfig()
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    ordered = order_events(events)
    payload = {
        'format': EVENT_LOG_FORMAT,
        'scheme_fingerprint': tree_config.fingerprint(),
        'levels': tree_config.levels,
        'events': [event.to_dict() for event in ordered],
    }
    with open(filepath, 'w') as f:
        json.dump(payload, f, indent=2)

    logger.info(f"Saved {len(ordered)} insertion events to {filepath}")


def load_event_log(filepath: Path, tree_config: Optional[TreeConfig] = None) -> List[InsertionEvent]:
    """Load an exported log; refuses logs written under other scheme constants"""
    tree_config = tree_config or TreeConfig()
    with open(filepath, 'r') as f:
        payload = json.load(f)

    if isinstance(payload, list):
        # Bare event arrays carry no fingerprint to check
        raw_events = payload
    else:
        stored = payload.get('scheme_fingerprint')
        if stored is not None and stored != tree_config.fingerprint():
            raise ConfigError(
                f"Event log {filepath} was written for scheme {stored}, "
                f"expected {tree_config.fingerprint()}")
        raw_events = payload.get('events', [])

    return [InsertionEvent.from_dict(item) for item in raw_events]


# ============================================================================
# MIRROR
# ============================================================================


class EventMirror:
    """
    Rebuild-and-verify mirror over an event source.

    The source must provide fetch_events(), get_last_root() and
    is_known_root(root); both VotingSession and JsonRpcEventSource do.
    """

    def __init__(self, source, tree_config: Optional[TreeConfig] = None):
        self.source = source
        self.tree_config = tree_config or TreeConfig()
        self.tree: Optional[IncrementalMerkleTree] = None
        self._events: List[InsertionEvent] = []
        self._lock = threading.Lock()

    def sync(self) -> FieldElement:
        """Full rebuild from the source, checked against its latest root"""
        events = order_events(self.source.fetch_events())
        tree = rebuild(events, self.tree_config)
        local_root = tree.current_root()
        authoritative = to_field(self.source.get_last_root())

        if local_root != authoritative:
            if self.source.is_known_root(local_root):
                # Source advanced between the log fetch and the root query
                logger.warning(
                    f"Mirror root {local_root} trails authoritative root {authoritative} "
                    f"but is still in its history window")
            else:
                logger.error(
                    f"Mirror divergence: rebuilt root {local_root} from {len(tree)} events, "
                    f"authoritative root {authoritative}")
                raise MirrorDivergence(
                    f"Rebuilt root {local_root.to_hex()} does not match "
                    f"authoritative root {authoritative.to_hex()}")

        with self._lock:
            self.tree = tree
            self._events = events
        logger.info(f"Mirror synced: {len(tree)} leaves, root {local_root}")
        return local_root

    def _synced_tree(self) -> IncrementalMerkleTree:
        with self._lock:
            if self.tree is None:
                raise MirrorError("Mirror has not been synced")
            return self.tree

    def event_log(self) -> List[InsertionEvent]:
        self._synced_tree()
        with self._lock:
            return list(self._events)

    def current_root(self) -> FieldElement:
        return self._synced_tree().current_root()

    def path_for(self, index: int) -> MembershipPath:
        return self._synced_tree().path_for(index)

    def path_for_commitment(self, commitment: Union[int, str]) -> MembershipPath:
        return self._synced_tree().path_for_commitment(commitment)


# ============================================================================
# JSON-RPC EVENT SOURCE
# ============================================================================


class JsonRpcEventSource:
    """Reads Commit events and root/nullifier state from the voting contract"""

    def __init__(self, rpc_url: str, contract_address: str, from_block: int = 0,
                 timeout: float = 30, session: Optional[requests.Session] = None):
        if not is_address(contract_address):
            raise ValueError(f"Invalid contract address: {contract_address!r}")
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.from_block = from_block
        self.timeout = timeout
        self.session = session or requests.Session()
        self._request_id = 0

    @classmethod
    def from_config(cls, chain_config, session: Optional[requests.Session] = None) -> 'JsonRpcEventSource':
        if not is_address(chain_config.contract_address):
            raise ConfigError(
                f"Invalid contract_address in chain_config: {chain_config.contract_address!r}")
        return cls(chain_config.rpc_url, chain_config.contract_address,
                   chain_config.from_block, chain_config.request_timeout, session)

    def _request(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise EventSourceError(f"{method} request to {self.rpc_url} failed: {e}") from e

        if body.get('error'):
            raise EventSourceError(f"{method} returned error: {body['error']}")
        return body.get('result')

    def _call(self, signature: str, *args: FieldElement) -> bytes:
        data = function_signature_to_4byte_selector(signature)
        for arg in args:
            data += arg.to_bytes32()
        result = self._request("eth_call", [
            {"to": self.contract_address, "data": encode_hex(data)},
            "latest",
        ])
        return decode_hex(result or "0x")

    @staticmethod
    def decode_commit_log(log: Dict[str, Any]) -> InsertionEvent:
        """Commitment from topics[1]; leafIndex and timestamp from the data words"""
        topics = log.get('topics', [])
        if len(topics) < 2:
            raise EventSourceError(f"Commit log without indexed commitment: {log}")
        data = decode_hex(log.get('data', '0x'))
        if len(data) < 64:
            raise EventSourceError(f"Commit log data too short ({len(data)} bytes)")

        return InsertionEvent(
            commitment=to_field(decode_hex(topics[1])),
            leaf_index=int.from_bytes(data[0:32], 'big'),
            timestamp=int.from_bytes(data[32:64], 'big'),
        )

    def fetch_events(self) -> List[InsertionEvent]:
        logs = self._request("eth_getLogs", [{
            "address": self.contract_address,
            "fromBlock": hex(self.from_block),
            "toBlock": "latest",
            "topics": [COMMIT_TOPIC],
        }])
        events = [self.decode_commit_log(log) for log in logs or []]
        logger.debug(f"Fetched {len(events)} Commit events from {self.rpc_url}")
        return events

    def get_last_root(self) -> FieldElement:
        return to_field(self._call("getLastRoot()"))

    def is_known_root(self, root: Union[int, str]) -> bool:
        result = self._call("isKnownRoot(bytes32)", to_field(root))
        return int.from_bytes(result, 'big') != 0 if result else False

    def is_spent(self, nullifier_hash: Union[int, str]) -> bool:
        result = self._call("nullifiers(bytes32)", to_field(nullifier_hash))
        return int.from_bytes(result, 'big') != 0 if result else False
