"""
Configuration loading and validation for droplet simulations.

All values use SI units. A YAML file may hold any subset of the keys of
``SimulationConfig``; missing keys keep their defaults.

Example:
    maximal_adaptive_time_step: 0.0
    resistance_model: 0
    slip_factor: 1.28
    stall_duration: 0.0
    max_states: 500
"""

import yaml
from dataclasses import dataclass, fields, asdict
from typing import Optional
from pathlib import Path


RESISTANCE_MODEL_RECTANGULAR = 0
RESISTANCE_MODEL_TEST = 1


@dataclass
class SimulationConfig:
    """
    Engine settings for one ``simulate`` call.

    Attributes:
        maximal_adaptive_time_step: Upper bound on one step [s]; 0 means steps
            are purely event-driven.
        resistance_model: Resistance model selector (0 rectangular duct, 1 test model).
        slip_factor: Ratio of droplet velocity to mean carrier velocity.
        droplet_resistance: Add the per-droplet resistance to occupied channels.
        enable_merging: Allow droplets that touch to merge.
        max_iterations: Hard bound on engine iterations.
        max_time: Simulated-time bound [s]; None runs until no droplet is active.
        stall_duration: Time a droplet may sit without net flow before it is
            TRAPPED [s]; None never traps.
        time_tolerance: Relative tolerance for coincident event times.
        volume_tolerance: Relative tolerance of the volume reconciliation check; breakup
            pieces at or below this fraction of the droplet volume are dropped.
        max_states: Number of most recent states kept; None keeps all.
    """
    maximal_adaptive_time_step: float = 0.0
    resistance_model: int = RESISTANCE_MODEL_RECTANGULAR
    slip_factor: float = 1.28
    droplet_resistance: bool = True
    enable_merging: bool = True
    max_iterations: int = 1_000_000
    max_time: Optional[float] = None
    stall_duration: Optional[float] = 0.0
    time_tolerance: float = 1e-9
    volume_tolerance: float = 1e-6
    max_states: Optional[int] = None

    def validate(self) -> tuple[bool, Optional[str]]:
        if self.maximal_adaptive_time_step < 0:
            return False, "maximal_adaptive_time_step must be non-negative"
        if self.resistance_model not in (RESISTANCE_MODEL_RECTANGULAR, RESISTANCE_MODEL_TEST):
            return False, f"Unknown resistance_model: {self.resistance_model}"
        if self.slip_factor <= 0:
            return False, "slip_factor must be positive"
        if self.max_iterations < 1:
            return False, "max_iterations must be >= 1"
        if self.max_time is not None and self.max_time <= 0:
            return False, "max_time must be positive"
        if self.stall_duration is not None and self.stall_duration < 0:
            return False, "stall_duration must be non-negative"
        if not (0 < self.time_tolerance < 1):
            return False, "time_tolerance must be in (0, 1)"
        if not (0 < self.volume_tolerance < 1):
            return False, "volume_tolerance must be in (0, 1)"
        if self.max_states is not None and self.max_states < 1:
            return False, "max_states must be >= 1"
        return True, None

    def to_dict(self) -> dict:
        return asdict(self)


def config_from_dict(raw: Optional[dict]) -> SimulationConfig:
    """
    Build and validate a config from a plain mapping.

    Raises:
        ValueError: On unknown keys or invalid values.
    """
    raw = raw or {}
    known = {f.name for f in fields(SimulationConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Invalid configuration: unknown keys {unknown}")

    config = SimulationConfig(**raw)
    is_valid, error = config.validate()
    if not is_valid:
        raise ValueError(f"Invalid configuration: {error}")
    return config


def load_config(path: Path) -> SimulationConfig:
    """
    Load and validate configuration from a YAML file.

    Raises:
        ValueError: If config is invalid.
        FileNotFoundError: If file doesn't exist.
    """
    with open(path, 'r') as f:
        raw = yaml.safe_load(f)

    if raw is not None and not isinstance(raw, dict):
        raise ValueError("Invalid configuration: top level must be a mapping")
    return config_from_dict(raw)


def save_config(config: SimulationConfig, path: Path) -> None:
    """Write a config as YAML so a run can be reproduced."""
    with open(path, 'w') as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
