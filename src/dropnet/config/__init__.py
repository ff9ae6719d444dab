"""
Configuration for DropNet simulations.
"""

from .simulation_config import (
    SimulationConfig,
    RESISTANCE_MODEL_RECTANGULAR,
    RESISTANCE_MODEL_TEST,
    config_from_dict,
    load_config,
    save_config,
)

__all__ = [
    "SimulationConfig",
    "RESISTANCE_MODEL_RECTANGULAR",
    "RESISTANCE_MODEL_TEST",
    "config_from_dict",
    "load_config",
    "save_config",
]
