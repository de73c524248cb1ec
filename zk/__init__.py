"""
Proof bridge: prover inputs, snarkjs proving and verification, and
packaging for the on-chain Groth16 verifier.
"""

from .zk_proofs import (
    # Core classes
    VoterNote,
    ProverInput,
    VerifierArgs,
    SnarkjsProver,
    SnarkjsVerifier,

    # Functions
    generate_voter_note,
    prepare_inputs,
    package_for_verifier,
    run_snarkjs,
    to_hex32,

    # Exceptions
    ZKError,
    ProverTimeout,
    ProverUnavailable,
    VerifierUnavailable,
    ProofShapeError,
    WitnessMismatch,
    ProofRejected,
)

__version__ = "1.0.0"

__all__ = [
    # Classes
    'VoterNote',
    'ProverInput',
    'VerifierArgs',
    'SnarkjsProver',
    'SnarkjsVerifier',

    # Functions
    'generate_voter_note',
    'prepare_inputs',
    'package_for_verifier',
    'run_snarkjs',
    'to_hex32',

    # Exceptions
    'ZKError',
    'ProverTimeout',
    'ProverUnavailable',
    'VerifierUnavailable',
    'ProofShapeError',
    'WitnessMismatch',
    'ProofRejected',
]
