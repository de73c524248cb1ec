"""YAML configuration and scheme fingerprint"""

from pathlib import Path

import pytest
import yaml

from config import (
    ConfigError,
    ProverConfig,
    SystemConfig,
    TreeConfig,
    load_config,
    save_config,
)
from merkle import ZERO_VALUE


class TestTreeConfig:

    def test_defaults(self):
        config = TreeConfig()
        assert config.levels == 20
        assert config.root_history_size == 30
        assert config.zero_value == ZERO_VALUE
        assert config.allow_test_roots is False

    def test_zero_value_from_hex(self):
        assert TreeConfig(zero_value=hex(ZERO_VALUE)).zero_value == ZERO_VALUE

    @pytest.mark.parametrize("kwargs", [
        {'levels': 0},
        {'levels': 33},
        {'root_history_size': 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            TreeConfig(**kwargs)

    def test_fingerprint_tracks_scheme_constants(self):
        base = TreeConfig().fingerprint()
        assert base == TreeConfig().fingerprint()
        assert base != TreeConfig(levels=21).fingerprint()
        assert base != TreeConfig(root_history_size=31).fingerprint()
        assert base != TreeConfig(zero_value=0).fingerprint()
        assert base == TreeConfig(allow_test_roots=True).fingerprint()

    def test_prover_timeouts(self):
        with pytest.raises(ValueError):
            ProverConfig(proof_timeout=0)


class TestLoadSave:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert isinstance(config, SystemConfig)
        assert config.tree_config.levels == 20

    def test_roundtrip(self, tmp_path):
        path = tmp_path / "config.yaml"
        original = SystemConfig(
            tree_config=TreeConfig(levels=8, root_history_size=5, allow_test_roots=True),
            prover_config=ProverConfig(snarkjs_bin="/opt/snarkjs", proof_timeout=12),
            enable_debug_mode=True,
        )
        original.chain_config.contract_address = "0x" + "11" * 20
        save_config(original, path)

        loaded = load_config(path)
        assert loaded.tree_config == original.tree_config
        assert loaded.prover_config == original.prover_config
        assert loaded.chain_config == original.chain_config
        assert loaded.log_level == 'DEBUG'

    def test_fingerprint_written(self, tmp_path):
        path = tmp_path / "config.yaml"
        save_config(SystemConfig(), path)
        data = yaml.safe_load(path.read_text())
        assert data['scheme_fingerprint'] == TreeConfig().fingerprint()

    def test_edited_constants_refused(self, tmp_path):
        path = tmp_path / "config.yaml"
        save_config(SystemConfig(), path)
        data = yaml.safe_load(path.read_text())
        data['merkle_tree']['levels'] = 16
        path.write_text(yaml.dump(data))

        with pytest.raises(ConfigError):
            load_config(path)

    def test_file_without_fingerprint(self, tmp_path):
        path = Path(tmp_path / "config.yaml")
        path.write_text("merkle_tree:\n  levels: 10\n")
        assert load_config(path).tree_config.levels == 10
