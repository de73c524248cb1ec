import os
import stat
import sys
import textwrap
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import ProverConfig, TreeConfig  # noqa: E402


@pytest.fixture
def small_tree_config():
    return TreeConfig(levels=4, root_history_size=3)


@pytest.fixture
def write_stub(tmp_path):
    """Create an executable shell script standing in for snarkjs"""

    def _write(body: str, name: str = "snarkjs") -> Path:
        script = tmp_path / name
        script.write_text("#!/bin/sh\n" + textwrap.dedent(body))
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _write


@pytest.fixture
def circuit_files(tmp_path):
    """Placeholder circuit artifacts; the stub prover never reads them"""
    out = tmp_path / "circuits"
    out.mkdir()
    wasm = out / "Verifier.wasm"
    zkey = out / "Verifier_0001.zkey"
    vkey = out / "verification_key.json"
    for path in (wasm, zkey, vkey):
        path.write_bytes(b"")
    return wasm, zkey, vkey


@pytest.fixture
def prover_config_for(circuit_files):
    wasm, zkey, vkey = circuit_files

    def _config(binary: Path, proof_timeout: float = 10, verify_timeout: float = 10) -> ProverConfig:
        return ProverConfig(
            snarkjs_bin=os.fspath(binary),
            wasm_file=wasm,
            zkey_file=zkey,
            vkey_file=vkey,
            proof_timeout=proof_timeout,
            verify_timeout=verify_timeout,
        )

    return _config
