"""Configuration management for the registration accumulator."""

from .config import (
    SystemConfig,
    TreeConfig,
    ProverConfig,
    ChainConfig,
    ConfigError,
    load_config,
    save_config,
    config_to_dict,
)

__all__ = ['SystemConfig', 'TreeConfig', 'ProverConfig', 'ChainConfig',
           'ConfigError', 'load_config', 'save_config', 'config_to_dict']
