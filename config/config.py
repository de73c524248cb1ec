import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

from merkle import FIELD_SIZE, MIMC_ROUNDS, MIMC_SEED, ZERO_VALUE, FieldElement
from merkle.merkle_tree import DEFAULT_LEVELS, MAX_LEVELS, ROOT_HISTORY_SIZE

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Configuration file is inconsistent with the loaded scheme constants"""
    pass


@dataclass
class TreeConfig:
    levels: int = DEFAULT_LEVELS
    root_history_size: int = ROOT_HISTORY_SIZE
    zero_value: int = ZERO_VALUE
    # Test networks only: lets a session accept roots it never produced
    allow_test_roots: bool = False

    def __post_init__(self):
        if not 1 <= self.levels <= MAX_LEVELS:
            raise ValueError(
                f"levels must be between 1 and {MAX_LEVELS}, got {self.levels}")
        if self.root_history_size < 1:
            raise ValueError(
                f"root_history_size must be positive, got {self.root_history_size}")
        self.zero_value = int(FieldElement.parse(self.zero_value))

    def fingerprint(self) -> str:
        """Hash of every constant that stored roots and proofs depend on"""
        scheme = {
            'field_size': str(FIELD_SIZE),
            'hash': f"mimcsponge-{MIMC_ROUNDS}-{MIMC_SEED}",
            'levels': self.levels,
            'root_history_size': self.root_history_size,
            'zero_value': str(self.zero_value),
        }
        return hashlib.sha256(json.dumps(scheme, sort_keys=True).encode()).hexdigest()


@dataclass
class ProverConfig:
    snarkjs_bin: str = "snarkjs"
    wasm_file: Path = field(default_factory=lambda: Path(
        "circuits/out/Verifier_js/Verifier.wasm"))
    zkey_file: Path = field(default_factory=lambda: Path(
        "circuits/out/Verifier_0001.zkey"))
    vkey_file: Path = field(default_factory=lambda: Path(
        "circuits/out/verification_key.json"))
    proof_timeout: float = 300
    verify_timeout: float = 60

    def __post_init__(self):
        self.wasm_file = Path(self.wasm_file)
        self.zkey_file = Path(self.zkey_file)
        self.vkey_file = Path(self.vkey_file)
        if self.proof_timeout <= 0 or self.verify_timeout <= 0:
            raise ValueError("Prover timeouts must be positive")


@dataclass
class ChainConfig:
    rpc_url: str = "http://127.0.0.1:8545"
    contract_address: str = ""
    from_block: int = 0
    request_timeout: float = 30


@dataclass
class SystemConfig:
    tree_config: TreeConfig = field(default_factory=TreeConfig)
    prover_config: ProverConfig = field(default_factory=ProverConfig)
    chain_config: ChainConfig = field(default_factory=ChainConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

    @property
    def log_level(self) -> str:
        return 'DEBUG' if self.enable_debug_mode else 'INFO'


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if not config_path.exists():
        logger.info(f"No config file at {config_path}, using defaults")
        return SystemConfig()

    with open(config_path, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    tree_data = config_data.get('merkle_tree', {})
    tree_config = TreeConfig(
        levels=tree_data.get('levels', DEFAULT_LEVELS),
        root_history_size=tree_data.get('root_history_size', ROOT_HISTORY_SIZE),
        zero_value=tree_data.get('zero_value', ZERO_VALUE),
        allow_test_roots=tree_data.get('allow_test_roots', False)
    )

    stored_fingerprint = config_data.get('scheme_fingerprint')
    if stored_fingerprint and stored_fingerprint != tree_config.fingerprint():
        raise ConfigError(
            f"Config {config_path} was written for scheme {stored_fingerprint}, "
            f"but its constants hash to {tree_config.fingerprint()}")

    prover_data = config_data.get('prover', {})
    prover_config = ProverConfig(
        snarkjs_bin=prover_data.get('snarkjs_bin', 'snarkjs'),
        wasm_file=Path(prover_data.get(
            'wasm_file', 'circuits/out/Verifier_js/Verifier.wasm')),
        zkey_file=Path(prover_data.get(
            'zkey_file', 'circuits/out/Verifier_0001.zkey')),
        vkey_file=Path(prover_data.get(
            'vkey_file', 'circuits/out/verification_key.json')),
        proof_timeout=prover_data.get('proof_timeout', 300),
        verify_timeout=prover_data.get('verify_timeout', 60)
    )

    chain_data = config_data.get('chain', {})
    chain_config = ChainConfig(
        rpc_url=chain_data.get('rpc_url', 'http://127.0.0.1:8545'),
        contract_address=chain_data.get('contract_address', ''),
        from_block=chain_data.get('from_block', 0),
        request_timeout=chain_data.get('request_timeout', 30)
    )

    return SystemConfig(
        tree_config=tree_config,
        prover_config=prover_config,
        chain_config=chain_config,
        log_dir=Path(config_data.get('log_dir', 'logs')),
        results_dir=Path(config_data.get('results_dir', 'results')),
        enable_debug_mode=config_data.get('enable_debug_mode', False)
    )


def config_to_dict(config: SystemConfig) -> Dict[str, Any]:
    return {
        'scheme_fingerprint': config.tree_config.fingerprint(),
        'merkle_tree': {
            'levels': config.tree_config.levels,
            'root_history_size': config.tree_config.root_history_size,
            'zero_value': str(config.tree_config.zero_value),
            'allow_test_roots': config.tree_config.allow_test_roots
        },
        'prover': {
            'snarkjs_bin': config.prover_config.snarkjs_bin,
            'wasm_file': str(config.prover_config.wasm_file),
            'zkey_file': str(config.prover_config.zkey_file),
            'vkey_file': str(config.prover_config.vkey_file),
            'proof_timeout': config.prover_config.proof_timeout,
            'verify_timeout': config.prover_config.verify_timeout
        },
        'chain': {
            'rpc_url': config.chain_config.rpc_url,
            'contract_address': config.chain_config.contract_address,
            'from_block': config.chain_config.from_block,
            'request_timeout': config.chain_config.request_timeout
        },
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'enable_debug_mode': config.enable_debug_mode
    }


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        yaml.dump(config_to_dict(config), f, default_flow_style=False)

    logger.info(f"Configuration saved to {config_path}")
