"""
Merkle accumulator core: BN254 field elements, the MiMC sponge hash,
the incremental tree with root history, and the nullifier registry.
"""

from .exceptions import (
    AccumulatorError,
    FieldRangeError,
    AccumulatorFull,
    LeafNotFound,
    DuplicateCommitment,
    UnknownRoot,
    NullifierAlreadyUsed,
    RootInjectionDisabled,
)
from .field import FIELD_SIZE, FieldElement, to_field, canonical_key
from .mimc_sponge import (
    MIMC_ROUNDS,
    MIMC_SEED,
    ROUND_CONSTANTS,
    mimc_sponge_permute,
    hash2,
    compute_commitment,
    compute_nullifier_hash,
)
from .merkle_tree import (
    ZERO_VALUE,
    DEFAULT_LEVELS,
    ROOT_HISTORY_SIZE,
    zero_ladder,
    MembershipPath,
    IncrementalMerkleTree,
    RootHistory,
    NullifierRegistry,
    merkle_root,
    compute_path_from_leaves,
)

__version__ = "1.0.0"

__all__ = [
    # Field
    'FIELD_SIZE',
    'FieldElement',
    'to_field',
    'canonical_key',

    # Hash
    'MIMC_ROUNDS',
    'MIMC_SEED',
    'ROUND_CONSTANTS',
    'mimc_sponge_permute',
    'hash2',
    'compute_commitment',
    'compute_nullifier_hash',

    # Tree
    'ZERO_VALUE',
    'DEFAULT_LEVELS',
    'ROOT_HISTORY_SIZE',
    'zero_ladder',
    'MembershipPath',
    'IncrementalMerkleTree',
    'RootHistory',
    'NullifierRegistry',
    'merkle_root',
    'compute_path_from_leaves',

    # Exceptions
    'AccumulatorError',
    'FieldRangeError',
    'AccumulatorFull',
    'LeafNotFound',
    'DuplicateCommitment',
    'UnknownRoot',
    'NullifierAlreadyUsed',
    'RootInjectionDisabled',
]
