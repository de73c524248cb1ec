"""
MiMC sponge hash matching circomlib's MiMCSponge and the on-chain hasher.

The permutation is the 220-round Feistel network from circomlib
(mimcsponge.js). hash2 applies it twice around an absorption of the right
input, exactly as the Solidity hashLeftRight and the membership circuit do.
"""

from typing import Tuple, Union

from eth_utils import keccak

from .field import FIELD_SIZE, FieldElement, to_field

MIMC_SEED = "mimcsponge"
MIMC_ROUNDS = 220
MIMC_EXPONENT = 5

# ============================================================================
# ROUND CONSTANTS
# ============================================================================


def generate_round_constants(seed: str = MIMC_SEED, rounds: int = MIMC_ROUNDS) -> Tuple[int, ...]:
    """Iterated keccak256 constants; first and last rounds use zero"""
    constants = [0] * rounds
    digest = keccak(text=seed)
    for i in range(1, rounds):
        digest = keccak(digest)
        constants[i] = int.from_bytes(digest, 'big') % FIELD_SIZE
    constants[rounds - 1] = 0
    return tuple(constants)


ROUND_CONSTANTS = generate_round_constants()

# ============================================================================
# PERMUTATION AND HASH
# ============================================================================


def mimc_sponge_permute(xl: int, xr: int, k: int = 0) -> Tuple[int, int]:
    """One MiMC Feistel permutation of the (xL, xR) state with key k"""
    xl, xr, k = int(to_field(xl)), int(to_field(xr)), int(to_field(k))
    last = MIMC_ROUNDS - 1
    for i, c in enumerate(ROUND_CONSTANTS):
        t = (xl + k + c) % FIELD_SIZE
        t5 = pow(t, MIMC_EXPONENT, FIELD_SIZE)
        if i < last:
            xl, xr = (xr + t5) % FIELD_SIZE, xl
        else:
            xr = (xr + t5) % FIELD_SIZE
    return xl, xr


def hash2(left: Union[int, str], right: Union[int, str]) -> FieldElement:
    """
    Two-step sponge hash of (left, right).

    Left is absorbed before the first permutation and right between the two,
    so the arguments are not interchangeable.
    """
    left = to_field(left)
    right = to_field(right)

    r, c = mimc_sponge_permute(int(left), 0, 0)
    r = (r + int(right)) % FIELD_SIZE
    r, c = mimc_sponge_permute(r, c, 0)
    return FieldElement(r)


def compute_commitment(nullifier: Union[int, str], secret: Union[int, str]) -> FieldElement:
    """Leaf committed at registration"""
    return hash2(nullifier, secret)


def compute_nullifier_hash(nullifier: Union[int, str]) -> FieldElement:
    """Public one-time tag; the zero second input separates it from commitments"""
    return hash2(nullifier, 0)
