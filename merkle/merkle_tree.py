"""
Incremental Merkle accumulator with root history and nullifier bookkeeping.

The same IncrementalMerkleTree class backs both the authoritative registrar
and every off-chain mirror, so there is exactly one implementation of the
insertion and path logic that has to agree with the on-chain contract.
"""

import logging
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .exceptions import AccumulatorFull, FieldRangeError, LeafNotFound, NullifierAlreadyUsed
from .field import FieldElement, canonical_key, to_field
from .mimc_sponge import hash2

logger = logging.getLogger(__name__)

# keccak256("tornado") % FIELD_SIZE
ZERO_VALUE = 21663839004416932945382355908790599225266501822907911457504978515578255421292

DEFAULT_LEVELS = 20
ROOT_HISTORY_SIZE = 30
MAX_LEVELS = 32

# ============================================================================
# ZERO-VALUE LADDER
# ============================================================================


@lru_cache(maxsize=16)
def _zero_ladder(seed: int, depth: int) -> Tuple[FieldElement, ...]:
    zeros = [FieldElement(seed)]
    for _ in range(depth):
        zeros.append(hash2(zeros[-1], zeros[-1]))
    return tuple(zeros)


def zero_ladder(seed: Union[int, str] = ZERO_VALUE, depth: int = DEFAULT_LEVELS) -> Tuple[FieldElement, ...]:
    """Empty-subtree hash for every level 0..depth"""
    if depth < 0:
        raise ValueError(f"Depth must be non-negative, got {depth}")
    return _zero_ladder(int(to_field(seed)), depth)


# ============================================================================
# MEMBERSHIP PATH
# ============================================================================


@dataclass(frozen=True)
class MembershipPath:
    """Siblings and left/right bits from a leaf up to the root"""
    leaf: FieldElement
    leaf_index: int
    root: FieldElement
    path_elements: Tuple[FieldElement, ...]
    path_indices: Tuple[int, ...]

    @property
    def levels(self) -> int:
        return len(self.path_elements)

    def compute_root(self) -> FieldElement:
        """Fold the leaf with its siblings, honoring each level's bit"""
        current = self.leaf
        for sibling, bit in zip(self.path_elements, self.path_indices):
            if bit:
                current = hash2(sibling, current)
            else:
                current = hash2(current, sibling)
        return current

    def is_valid(self) -> bool:
        return self.compute_root() == self.root

    def to_dict(self) -> Dict[str, object]:
        return {
            'leaf': str(self.leaf),
            'leafIndex': self.leaf_index,
            'root': str(self.root),
            'pathElements': [str(e) for e in self.path_elements],
            'pathIndices': list(self.path_indices),
        }


# ============================================================================
# INCREMENTAL ACCUMULATOR
# ============================================================================


class IncrementalMerkleTree:
    """
    Fixed-depth append-only Merkle tree.

    Insertion follows the filled-subtree algorithm of the on-chain
    MerkleTreeWithHistory contract. Every node produced on an insertion walk
    is also retained per level so that paths for any inserted leaf can be
    served in O(levels) without re-walking history.
    """

    def __init__(self, levels: int = DEFAULT_LEVELS, zero_value: Union[int, str] = ZERO_VALUE):
        if not 1 <= levels <= MAX_LEVELS:
            raise ValueError(
                f"Tree levels must be between 1 and {MAX_LEVELS}, got {levels}")

        self.levels = levels
        self.zeros = zero_ladder(zero_value, levels)
        self.filled_subtrees: List[FieldElement] = list(self.zeros[:levels])
        self._layers: List[List[FieldElement]] = [[] for _ in range(levels + 1)]
        self._leaf_index: Dict[FieldElement, int] = {}
        self._root = self.zeros[levels]
        self._lock = threading.RLock()

    @property
    def capacity(self) -> int:
        return 1 << self.levels

    @property
    def next_index(self) -> int:
        with self._lock:
            return len(self._layers[0])

    @property
    def leaves(self) -> Tuple[FieldElement, ...]:
        with self._lock:
            return tuple(self._layers[0])

    def __len__(self) -> int:
        return self.next_index

    def current_root(self) -> FieldElement:
        with self._lock:
            return self._root

    @property
    def root(self) -> FieldElement:
        return self.current_root()

    def insert(self, leaf: Union[int, str]) -> int:
        """Append a leaf and return its index"""
        leaf = to_field(leaf)

        with self._lock:
            index = len(self._layers[0])
            if index >= self.capacity:
                raise AccumulatorFull(
                    f"Merkle tree is full. No more leaves can be added (capacity {self.capacity})")

            filled = list(self.filled_subtrees)
            nodes = [leaf]
            current_index = index
            current = leaf

            for level in range(self.levels):
                if current_index % 2 == 0:
                    left, right = current, self.zeros[level]
                    filled[level] = current
                else:
                    left, right = self.filled_subtrees[level], current
                current = hash2(left, right)
                nodes.append(current)
                current_index //= 2

            # Commit only after the whole walk succeeded
            self.filled_subtrees = filled
            for level, node in enumerate(nodes):
                position = index >> level
                layer = self._layers[level]
                if position == len(layer):
                    layer.append(node)
                else:
                    layer[position] = node
            self._leaf_index.setdefault(leaf, index)
            self._root = current

        logger.debug(f"Inserted leaf at index {index}, new root: {current}")
        return index

    def path_for(self, index: int) -> MembershipPath:
        """Membership path for the leaf at index against the current root"""
        with self._lock:
            if isinstance(index, bool) or not isinstance(index, int):
                raise TypeError(f"Leaf index must be an int, got {type(index).__name__}")
            if not 0 <= index < len(self._layers[0]):
                raise LeafNotFound(
                    f"Leaf index {index} out of bounds ({len(self._layers[0])} leaves inserted)")

            elements = []
            indices = []
            position = index
            for level in range(self.levels):
                sibling = position ^ 1
                layer = self._layers[level]
                elements.append(layer[sibling] if sibling < len(layer) else self.zeros[level])
                indices.append(position & 1)
                position >>= 1

            return MembershipPath(
                leaf=self._layers[0][index],
                leaf_index=index,
                root=self._root,
                path_elements=tuple(elements),
                path_indices=tuple(indices),
            )

    def index_of(self, commitment: Union[int, str]) -> int:
        """Index of the first leaf equal to commitment"""
        commitment = to_field(commitment)
        with self._lock:
            try:
                return self._leaf_index[commitment]
            except KeyError:
                raise LeafNotFound(f"Commitment {commitment} not found in the Merkle tree") from None

    def path_for_commitment(self, commitment: Union[int, str]) -> MembershipPath:
        with self._lock:
            return self.path_for(self.index_of(commitment))

    def __contains__(self, commitment) -> bool:
        try:
            self.index_of(commitment)
        except (LeafNotFound, FieldRangeError, TypeError, ValueError):
            return False
        return True


# ============================================================================
# FROM-SCRATCH REFERENCE
# ============================================================================


def _build_layers(leaves: Sequence[FieldElement], levels: int, zeros: Sequence[FieldElement]) -> List[List[FieldElement]]:
    if len(leaves) > (1 << levels):
        raise AccumulatorFull('Tree is full')

    layers = [list(leaves)]
    for level in range(1, levels + 1):
        below = layers[level - 1]
        layer = []
        for i in range((len(below) + 1) // 2):
            right = below[2 * i + 1] if 2 * i + 1 < len(below) else zeros[level - 1]
            layer.append(hash2(below[2 * i], right))
        layers.append(layer)
    return layers


def merkle_root(leaves: Iterable[Union[int, str]], levels: int = DEFAULT_LEVELS,
                zero_value: Union[int, str] = ZERO_VALUE) -> FieldElement:
    """Root recomputed level by level from the complete leaf list"""
    zeros = zero_ladder(zero_value, levels)
    layers = _build_layers([to_field(leaf) for leaf in leaves], levels, zeros)
    return layers[levels][0] if layers[levels] else zeros[levels]


def compute_path_from_leaves(leaves: Iterable[Union[int, str]], index: int, levels: int = DEFAULT_LEVELS,
                             zero_value: Union[int, str] = ZERO_VALUE) -> MembershipPath:
    """Membership path recomputed from the complete leaf list"""
    zeros = zero_ladder(zero_value, levels)
    layers = _build_layers([to_field(leaf) for leaf in leaves], levels, zeros)
    if not 0 <= index < len(layers[0]):
        raise LeafNotFound(f"Leaf index {index} out of bounds")

    elements = []
    indices = []
    position = index
    for level in range(levels):
        sibling = position ^ 1
        elements.append(layers[level][sibling] if sibling < len(layers[level]) else zeros[level])
        indices.append(position % 2)
        position //= 2

    return MembershipPath(
        leaf=layers[0][index],
        leaf_index=index,
        root=layers[levels][0],
        path_elements=tuple(elements),
        path_indices=tuple(indices),
    )


# ============================================================================
# ROOT HISTORY RING
# ============================================================================


class RootHistory:
    """Last `size` roots in a circular buffer"""

    def __init__(self, size: int = ROOT_HISTORY_SIZE):
        if size < 1:
            raise ValueError(f"Root history size must be positive, got {size}")
        self.size = size
        self._roots: List[Optional[FieldElement]] = [None] * size
        self._cursor = -1
        self._lock = threading.Lock()

    def record(self, root: Union[int, str]) -> None:
        root = to_field(root)
        with self._lock:
            self._cursor = (self._cursor + 1) % self.size
            self._roots[self._cursor] = root

    def is_known(self, root: Union[int, str]) -> bool:
        root = to_field(root)
        if root == 0:
            return False

        with self._lock:
            if self._cursor < 0:
                return False
            i = self._cursor
            for _ in range(self.size):
                if self._roots[i] == root:
                    return True
                i = (i - 1) % self.size
            return False

    @property
    def latest(self) -> Optional[FieldElement]:
        with self._lock:
            return None if self._cursor < 0 else self._roots[self._cursor]

    def recent(self) -> List[FieldElement]:
        """Stored roots, newest first"""
        with self._lock:
            if self._cursor < 0:
                return []
            ordered = []
            i = self._cursor
            for _ in range(self.size):
                if self._roots[i] is None:
                    break
                ordered.append(self._roots[i])
                i = (i - 1) % self.size
            return ordered

    def __len__(self) -> int:
        return len(self.recent())


# ============================================================================
# NULLIFIER REGISTRY
# ============================================================================


class NullifierRegistry:
    """Permanently consumed nullifier hashes keyed by their 32-byte encoding"""

    def __init__(self):
        self._spent = set()
        self._lock = threading.Lock()

    def is_spent(self, nullifier_hash: Union[int, str]) -> bool:
        key = canonical_key(nullifier_hash)
        with self._lock:
            return key in self._spent

    def consume(self, nullifier_hash: Union[int, str]) -> str:
        """Mark as spent; a second consumption raises NullifierAlreadyUsed"""
        key = canonical_key(nullifier_hash)
        with self._lock:
            if key in self._spent:
                logger.warning(f"Nullifier replay detected: {key}")
                raise NullifierAlreadyUsed(key)
            self._spent.add(key)
        return key

    def __contains__(self, nullifier_hash) -> bool:
        return self.is_spent(nullifier_hash)

    def __len__(self) -> int:
        with self._lock:
            return len(self._spent)
