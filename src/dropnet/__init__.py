"""
DropNet - droplet microfluidics network simulator.

Solves the hydraulic network of a lab-on-chip (channels, pumps, grounds)
and tracks droplets as they move, split, merge, get trapped and leave
through sinks, recording a time series of system states.

Units (SI):
    - Length: m
    - Pressure: Pa
    - Flow rate: m^3/s
    - Viscosity: Pa*s
    - Time: s

Usage:
    from dropnet import ChipBuilder, ChannelPosition
    builder = ChipBuilder()
    ...
    result = builder.simulate()
"""

__version__ = "0.1.0"

from .config import SimulationConfig, load_config
from .models import (
    ChannelType,
    ChannelPosition,
    Channel,
    FlowRatePump,
    PressurePump,
    Chip,
    Fluid,
    Droplet,
    Injection,
    DropletState,
    BoundaryState,
    BoundarySnapshot,
    DropletPosition,
    State,
    SimulationResult,
    DropNetError,
    TopologyError,
    GeometryError,
    ConfigurationError,
    SolverError,
    ConservationViolation,
    SchedulingDeadlock,
    StateOrderError,
)
from .managers import ChipBuilder
from .managers.network import ChipGraph, ValidityReport, Violation
from .core import SimulationEngine, FlowSolver
