"""
Proof bridge between the accumulator and the external Groth16 toolchain.

Builds prover inputs from a membership path, drives snarkjs for proving and
local verification, and packages proofs into the argument layout of the
on-chain verifier.
"""

import asyncio
import json
import logging
import secrets
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Dict, Tuple, Optional, Any, Sequence, Union

from config import ProverConfig
from merkle import (
    FIELD_SIZE,
    FieldElement,
    MembershipPath,
    compute_commitment,
    compute_nullifier_hash,
    to_field,
)
from utils import PerformanceMonitor

logger = logging.getLogger(__name__)

# BN254 base field; proof coordinates live here, not in the scalar field
BN254_BASE_FIELD = 21888242871839275222246405745257275088696311157297823662689037894645226208583

PUBLIC_SIGNAL_COUNT = 2

# ============================================================================
# EXCEPTIONS
# ============================================================================


class ZKError(Exception):
    """Base exception for proof bridge operations"""
    retryable = False


class ProverTimeout(ZKError):
    """External prover or verifier exceeded its time bound and was killed"""
    retryable = True


class ProverUnavailable(ZKError):
    """External prover could not be started or failed to produce a proof"""
    retryable = True


class VerifierUnavailable(ZKError):
    """External verifier could not be started or its key is missing"""
    retryable = True


class ProofShapeError(ZKError, ValueError):
    """Proof or public signals do not have the expected layout"""
    pass


class WitnessMismatch(ZKError):
    """Prover inputs or outputs disagree with the accumulator state"""
    pass


class ProofRejected(ZKError):
    """Verifier returned false for a well-formed proof"""
    pass


# ============================================================================
# VOTER NOTES
# ============================================================================


@dataclass(frozen=True)
class VoterNote:
    """Private nullifier/secret pair with its public derivations"""
    nullifier: FieldElement
    secret: FieldElement
    commitment: FieldElement
    nullifier_hash: FieldElement

    @classmethod
    def from_secrets(cls, nullifier: Union[int, str], secret: Union[int, str]) -> 'VoterNote':
        nullifier = to_field(nullifier)
        secret = to_field(secret)
        return cls(
            nullifier=nullifier,
            secret=secret,
            commitment=compute_commitment(nullifier, secret),
            nullifier_hash=compute_nullifier_hash(nullifier),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VoterNote':
        note = cls.from_secrets(data['nullifier'], data['secret'])
        for key, value in (('commitment', note.commitment), ('nullifierHash', note.nullifier_hash)):
            if key in data and to_field(data[key]) != value:
                raise WitnessMismatch(f"Note {key} does not match its nullifier and secret")
        return note

    def to_dict(self) -> Dict[str, str]:
        return {
            'nullifier': str(self.nullifier),
            'secret': str(self.secret),
            'commitment': str(self.commitment),
            'nullifierHash': str(self.nullifier_hash),
        }


def generate_voter_note() -> VoterNote:
    return VoterNote.from_secrets(secrets.randbelow(FIELD_SIZE), secrets.randbelow(FIELD_SIZE))


# ============================================================================
# PROVER INPUT
# ============================================================================


@dataclass(frozen=True)
class ProverInput:
    nullifier: FieldElement
    secret: FieldElement
    path_elements: Tuple[FieldElement, ...]
    path_indices: Tuple[int, ...]
    # Public values the proof is expected to expose
    root: FieldElement
    nullifier_hash: FieldElement

    def to_json(self) -> Dict[str, Any]:
        """Circuit input object; values as decimal strings"""
        return {
            'nullifier': str(self.nullifier),
            'secret': str(self.secret),
            'pathElements': [str(e) for e in self.path_elements],
            'pathIndices': list(self.path_indices),
        }


def prepare_inputs(nullifier: Union[int, str], secret: Union[int, str], path: MembershipPath,
                   levels: Optional[int] = None) -> ProverInput:
    """Check the witness against its path and build the circuit input"""
    nullifier = to_field(nullifier)
    secret = to_field(secret)

    expected_levels = path.levels if levels is None else levels
    if len(path.path_elements) != expected_levels or len(path.path_indices) != expected_levels:
        raise ProofShapeError(
            f"Path has {len(path.path_elements)} elements and {len(path.path_indices)} indices, "
            f"expected {expected_levels}")
    if any(bit not in (0, 1) for bit in path.path_indices):
        raise ProofShapeError(f"Path indices must be 0 or 1, got {list(path.path_indices)}")

    commitment = compute_commitment(nullifier, secret)
    if commitment != path.leaf:
        raise WitnessMismatch(
            f"Commitment {commitment} from nullifier/secret is not the path leaf {path.leaf}")
    if not path.is_valid():
        raise WitnessMismatch(f"Path for leaf {path.leaf_index} does not recombine to root {path.root}")

    return ProverInput(
        nullifier=nullifier,
        secret=secret,
        path_elements=tuple(to_field(e) for e in path.path_elements),
        path_indices=tuple(int(bit) for bit in path.path_indices),
        root=path.root,
        nullifier_hash=compute_nullifier_hash(nullifier),
    )


# ============================================================================
# VERIFIER PACKAGING
# ============================================================================


def to_hex32(value: int) -> str:
    """0x-prefixed, zero-padded 32-byte big-endian hex"""
    return '0x' + int(value).to_bytes(32, 'big').hex()


def _coordinate(value: Any) -> int:
    if isinstance(value, bool):
        raise ProofShapeError(f"Invalid proof coordinate: {value!r}")
    try:
        if isinstance(value, str):
            number = int(value, 16) if value.lower().startswith('0x') else int(value, 10)
        elif isinstance(value, int):
            number = value
        else:
            raise ProofShapeError(f"Invalid proof coordinate type: {type(value).__name__}")
    except ValueError as e:
        raise ProofShapeError(f"Invalid proof coordinate {value!r}") from e

    if not 0 <= number < BN254_BASE_FIELD:
        raise ProofShapeError(f"Proof coordinate {number} outside the BN254 base field")
    return number


def _point(values: Sequence[Any], name: str) -> Tuple[int, int]:
    if not isinstance(values, (list, tuple)) or len(values) < 2:
        raise ProofShapeError(f"{name} must have at least 2 coordinates")
    return _coordinate(values[0]), _coordinate(values[1])


@dataclass(frozen=True)
class VerifierArgs:
    """Proof in the on-chain verifier's (a, b, c, input) layout"""
    a: Tuple[int, int]
    b: Tuple[Tuple[int, int], Tuple[int, int]]
    c: Tuple[int, int]
    nullifier_hash: FieldElement
    root: FieldElement

    def __post_init__(self):
        if not isinstance(self.b, (list, tuple)) or len(self.b) != 2:
            raise ProofShapeError("b must have exactly 2 rows")
        object.__setattr__(self, 'a', _point(self.a, 'a'))
        object.__setattr__(self, 'b', (_point(self.b[0], 'b[0]'), _point(self.b[1], 'b[1]')))
        object.__setattr__(self, 'c', _point(self.c, 'c'))
        object.__setattr__(self, 'nullifier_hash', to_field(self.nullifier_hash))
        object.__setattr__(self, 'root', to_field(self.root))

    @property
    def public_signals(self) -> List[FieldElement]:
        return [self.nullifier_hash, self.root]

    def to_contract_args(self) -> Dict[str, Any]:
        return {
            'a': [to_hex32(x) for x in self.a],
            'b': [[to_hex32(x) for x in row] for row in self.b],
            'c': [to_hex32(x) for x in self.c],
            'input': [s.to_hex() for s in self.public_signals],
        }

    def to_snarkjs_proof(self) -> Dict[str, Any]:
        """Undo the G2 coordinate swap for snarkjs verification"""
        (b00, b01), (b10, b11) = self.b
        return {
            'pi_a': [str(self.a[0]), str(self.a[1]), '1'],
            'pi_b': [[str(b01), str(b00)], [str(b11), str(b10)], ['1', '0']],
            'pi_c': [str(self.c[0]), str(self.c[1]), '1'],
            'protocol': 'groth16',
            'curve': 'bn128',
        }

    def to_json(self) -> Dict[str, Any]:
        return {
            'proof': self.to_snarkjs_proof(),
            'publicSignals': [str(s) for s in self.public_signals],
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'VerifierArgs':
        return package_for_verifier(data['proof'], data['publicSignals'])


def package_for_verifier(proof: Dict[str, Any], public_signals: Sequence[Any]) -> VerifierArgs:
    """Convert snarkjs proof output into verifier arguments"""
    if len(public_signals) != PUBLIC_SIGNAL_COUNT:
        raise ProofShapeError(
            f"Expected {PUBLIC_SIGNAL_COUNT} public signals [nullifierHash, root], "
            f"got {len(public_signals)}")

    protocol = proof.get('protocol', 'groth16')
    curve = proof.get('curve', 'bn128')
    if protocol != 'groth16' or curve != 'bn128':
        raise ProofShapeError(f"Unsupported proof system {protocol}/{curve}")

    try:
        pi_b = proof['pi_b']
        a = _point(proof['pi_a'], 'pi_a')
        c = _point(proof['pi_c'], 'pi_c')
    except KeyError as e:
        raise ProofShapeError(f"Proof is missing {e.args[0]}") from e

    if not isinstance(pi_b, (list, tuple)) or len(pi_b) < 2:
        raise ProofShapeError("pi_b must have at least 2 rows")
    b0 = _point(pi_b[0], 'pi_b[0]')
    b1 = _point(pi_b[1], 'pi_b[1]')

    return VerifierArgs(
        a=a,
        # Solidity pairing expects each Fp2 coordinate as (imaginary, real)
        b=((b0[1], b0[0]), (b1[1], b1[0])),
        c=c,
        nullifier_hash=to_field(public_signals[0]),
        root=to_field(public_signals[1]),
    )


# ============================================================================
# SNARKJS DRIVER
# ============================================================================


async def run_snarkjs(binary: str, args: List[str], timeout: float,
                      unavailable=ProverUnavailable) -> Tuple[int, str, str]:
    """Run snarkjs with a hard time bound; the process is killed on expiry"""
    try:
        process = await asyncio.create_subprocess_exec(
            binary, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise unavailable(f"Cannot start {binary}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"{binary} {args[0] if args else ''} timed out after {timeout}s, process killed")
        raise ProverTimeout(f"{binary} did not finish within {timeout}s") from None
    finally:
        # Also reached on cancellation
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    return process.returncode, stdout.decode(errors='replace'), stderr.decode(errors='replace')


class SnarkjsProver:
    """Groth16 fullprove through the snarkjs CLI"""

    def __init__(self, config: Optional[ProverConfig] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.config = config or ProverConfig()
        self.monitor = monitor or PerformanceMonitor()

    def _check_artifacts(self):
        for path in (self.config.wasm_file, self.config.zkey_file):
            if not Path(path).exists():
                raise ProverUnavailable(f"Circuit artifact not found: {path}")

    async def full_prove(self, inputs: ProverInput) -> Tuple[Dict[str, Any], List[str]]:
        """Raw snarkjs (proof, publicSignals)"""
        self._check_artifacts()

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            input_file = temp_path / "input.json"
            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"
            input_file.write_text(json.dumps(inputs.to_json()))

            with self.monitor.start_operation('groth16_fullprove'):
                returncode, stdout, stderr = await run_snarkjs(
                    self.config.snarkjs_bin,
                    ['groth16', 'fullprove', str(input_file), str(self.config.wasm_file),
                     str(self.config.zkey_file), str(proof_file), str(public_file)],
                    self.config.proof_timeout,
                )

            if returncode != 0:
                raise ProverUnavailable(
                    f"snarkjs fullprove exited with {returncode}: {stderr.strip() or stdout.strip()}")
            try:
                proof = json.loads(proof_file.read_text())
                public_signals = json.loads(public_file.read_text())
            except (OSError, ValueError) as e:
                raise ProverUnavailable(f"snarkjs produced unreadable output: {e}") from e

        duration = self.monitor.durations('groth16_fullprove')[-1]
        logger.info(f"Generated membership proof in {duration:.2f}s")
        return proof, public_signals

    async def prove(self, inputs: ProverInput) -> VerifierArgs:
        """Prove and check the public outputs match the witness"""
        proof, public_signals = await self.full_prove(inputs)
        args = package_for_verifier(proof, public_signals)

        if args.nullifier_hash != inputs.nullifier_hash:
            raise WitnessMismatch(
                f"Proof exposes nullifier hash {args.nullifier_hash}, expected {inputs.nullifier_hash}")
        if args.root != inputs.root:
            raise WitnessMismatch(f"Proof exposes root {args.root}, expected {inputs.root}")
        return args


class SnarkjsVerifier:
    """Local Groth16 verification through the snarkjs CLI"""

    def __init__(self, config: Optional[ProverConfig] = None):
        self.config = config or ProverConfig()

    async def verify(self, args: VerifierArgs) -> bool:
        if not Path(self.config.vkey_file).exists():
            raise VerifierUnavailable(f"Verification key not found: {self.config.vkey_file}")

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"
            proof_file.write_text(json.dumps(args.to_snarkjs_proof()))
            public_file.write_text(json.dumps([str(s) for s in args.public_signals]))

            returncode, stdout, stderr = await run_snarkjs(
                self.config.snarkjs_bin,
                ['groth16', 'verify', str(self.config.vkey_file), str(public_file), str(proof_file)],
                self.config.verify_timeout,
                unavailable=VerifierUnavailable,
            )

        is_valid = returncode == 0 and "OK!" in stdout
        if not is_valid:
            logger.warning(f"Proof for root {args.root} rejected by snarkjs: {stderr.strip() or stdout.strip()}")
        return is_valid
