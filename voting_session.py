#!/usr/bin/env python3
"""
Registrar and vote acceptance for one election.

VotingSession owns the authoritative accumulator, its root history, the
nullifier registry and the insertion event log. Registration and nullifier
consumption are serialized by the session lock; proof verification runs
outside it.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Union

from config import TreeConfig
from merkle import (
    DuplicateCommitment,
    FieldElement,
    IncrementalMerkleTree,
    LeafNotFound,
    MembershipPath,
    NullifierAlreadyUsed,
    NullifierRegistry,
    RootHistory,
    RootInjectionDisabled,
    UnknownRoot,
    to_field,
)
from mirror import InsertionEvent
from zk import ProofRejected, VerifierArgs

logger = logging.getLogger(__name__)

# ============================================================================
# VOTING SESSION
# ============================================================================


@dataclass(frozen=True)
class AcceptedVote:
    nullifier_hash: FieldElement
    root: FieldElement
    accepted_at: float = field(default_factory=time.time)


class VotingSession:
    """Authoritative registration accumulator plus vote acceptance"""

    def __init__(self, tree_config: Optional[TreeConfig] = None):
        self.tree_config = tree_config or TreeConfig()
        self.tree = IncrementalMerkleTree(self.tree_config.levels, self.tree_config.zero_value)
        self.root_history = RootHistory(self.tree_config.root_history_size)
        self.nullifiers = NullifierRegistry()
        self._events: List[InsertionEvent] = []
        self._lock = threading.RLock()

        self.root_history.record(self.tree.current_root())
        logger.info(
            f"Voting session initialized: {self.tree_config.levels} levels, "
            f"root history {self.tree_config.root_history_size}, "
            f"scheme {self.tree_config.fingerprint()[:16]}")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, commitment: Union[int, str]) -> InsertionEvent:
        """Insert a voter commitment, record the new root and emit its event"""
        commitment = to_field(commitment)
        with self._lock:
            try:
                existing = self.tree.index_of(commitment)
            except LeafNotFound:
                pass
            else:
                raise DuplicateCommitment(commitment, existing)

            index = self.tree.insert(commitment)
            root = self.tree.current_root()
            self.root_history.record(root)
            event = InsertionEvent(commitment=commitment, leaf_index=index,
                                   timestamp=int(time.time()))
            self._events.append(event)

        logger.info(f"Registered commitment at leaf {index}, root {root}")
        return event

    def current_root(self) -> FieldElement:
        with self._lock:
            return self.tree.current_root()

    def path_for(self, index: int) -> MembershipPath:
        with self._lock:
            return self.tree.path_for(index)

    def path_for_commitment(self, commitment: Union[int, str]) -> MembershipPath:
        with self._lock:
            return self.tree.path_for_commitment(commitment)

    def is_known_root(self, root: Union[int, str]) -> bool:
        return self.root_history.is_known(root)

    def is_spent(self, nullifier_hash: Union[int, str]) -> bool:
        return self.nullifiers.is_spent(nullifier_hash)

    def event_log(self) -> List[InsertionEvent]:
        with self._lock:
            return list(self._events)

    # Event source interface used by EventMirror
    fetch_events = event_log

    def get_last_root(self) -> FieldElement:
        return self.current_root()

    # ------------------------------------------------------------------
    # Vote acceptance
    # ------------------------------------------------------------------

    def _check_acceptable(self, args: VerifierArgs):
        if not self.root_history.is_known(args.root):
            raise UnknownRoot(f"Cannot find your merkle root {args.root.to_hex()}")
        if self.nullifiers.is_spent(args.nullifier_hash):
            raise NullifierAlreadyUsed(args.nullifier_hash.to_hex())

    async def cast_vote(self, args: VerifierArgs, verifier) -> AcceptedVote:
        """
        Accept a vote: known root, unused nullifier, valid proof, then consume.

        The nullifier is consumed only after verification succeeds; a
        concurrent vote with the same nullifier that wins the race makes
        this one fail with NullifierAlreadyUsed.
        """
        with self._lock:
            self._check_acceptable(args)

        if not await verifier.verify(args):
            raise ProofRejected(f"Invalid proof for root {args.root.to_hex()}")

        with self._lock:
            self._check_acceptable(args)
            self.nullifiers.consume(args.nullifier_hash)

        logger.info(f"Vote accepted for nullifier {args.nullifier_hash.to_hex()}")
        return AcceptedVote(nullifier_hash=args.nullifier_hash, root=args.root)

    # ------------------------------------------------------------------
    # Test networks
    # ------------------------------------------------------------------

    def add_root_for_testing(self, root: Union[int, str]):
        """Record a root this session never produced; test networks only"""
        if not self.tree_config.allow_test_roots:
            raise RootInjectionDisabled(
                "Root injection is disabled; set merkle_tree.allow_test_roots to enable it")
        root = to_field(root)
        logger.warning(f"Injecting externally supplied root {root.to_hex()} into root history")
        with self._lock:
            self.root_history.record(root)
